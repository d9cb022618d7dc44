"""Step logging in the ``[JOB-NAME] step - {details}`` format used by all handlers."""

from __future__ import annotations

import json
import logging
from typing import Any


class StepLogger:
    """Bind a handler name to a module logger and emit one line per step."""

    def __init__(self, name: str, logger: logging.Logger):
        self.prefix = f"[{name}]"
        self.logger = logger

    def _format(self, step: str, details: dict[str, Any] | None) -> str:
        if not details:
            return f"{self.prefix} {step}"
        return f"{self.prefix} {step} - {json.dumps(details, default=str, sort_keys=True)}"

    def __call__(self, step: str, details: dict[str, Any] | None = None) -> None:
        self.logger.info(self._format(step, details))

    def warning(self, step: str, details: dict[str, Any] | None = None) -> None:
        self.logger.warning(self._format(step, details))

    def error(self, step: str, details: dict[str, Any] | None = None) -> None:
        self.logger.error(self._format(step, details))
