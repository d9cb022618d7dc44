"""Celery tasks for sale settlement."""

from __future__ import annotations

import logging

from celery import shared_task

from . import settlement

logger = logging.getLogger(__name__)


@shared_task(name="sales.auto_release_sale_payouts")
def auto_release_sale_payouts() -> dict:
    summary = settlement.auto_release_sale_payouts()
    if summary.errors:
        logger.warning(
            "auto_release_sale_payouts: %s row(s) failed",
            len(summary.errors),
            extra={"errors": summary.errors},
        )
    return summary.as_response()


@shared_task(name="sales.retry_pending_payouts")
def retry_pending_payouts() -> dict:
    return settlement.retry_pending_payouts().as_response()
