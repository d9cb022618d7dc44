"""Fire-and-forget hand-off of notification work to Celery."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def enqueue(task, *args, **kwargs) -> bool:
    """
    Queue ``task`` with the given arguments.

    Failures are logged and swallowed; the caller's financial operation has
    already committed and must not be affected.
    """
    task_name = getattr(task, "name", None) or getattr(task, "__name__", repr(task))
    try:
        task.delay(*args, **kwargs)
    except Exception:
        logger.warning(
            "notifications: failed to queue %s",
            task_name,
            extra={"task": task_name},
            exc_info=True,
        )
        return False
    return True
