"""Celery tasks for bookings."""

from __future__ import annotations

import logging

from celery import shared_task

from .settlement import complete_ended_bookings as run_completion_job

logger = logging.getLogger(__name__)


@shared_task(name="bookings.complete_ended_bookings")
def complete_ended_bookings() -> dict:
    """
    Scheduled entry point for the Booking Completion & Payout job.

    Returns the run summary so it is visible in the result backend.
    """
    summary = run_completion_job()
    if summary.errors:
        logger.warning(
            "complete_ended_bookings: %s row(s) failed",
            len(summary.errors),
            extra={"errors": summary.errors},
        )
    return summary.as_response()
