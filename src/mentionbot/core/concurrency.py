"""Admission gate bounding concurrent agent executions."""

from typing import Optional

import structlog

from src.mentionbot.metrics import BotMetrics

logger = structlog.get_logger(__name__)


class ConcurrencyGate:
    """A non-blocking counting gate.

    Unlike a semaphore, rejected callers are not queued: try_admit returns
    False immediately and the caller notifies the user instead. Every
    successful try_admit must be paired with exactly one release.

    Attributes:
        limit: Maximum number of simultaneously admitted executions.
    """

    def __init__(self, limit: int, metrics: Optional[BotMetrics] = None):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._active = 0
        self._metrics = metrics

    @property
    def active(self) -> int:
        return self._active

    def try_admit(self) -> bool:
        """Admit one execution if a slot is free."""
        if self._active >= self.limit:
            return False
        self._active += 1
        self._report()
        return True

    def release(self) -> None:
        """Free a slot taken by a successful try_admit."""
        if self._active == 0:
            logger.error("Concurrency gate released more times than admitted")
            return
        self._active -= 1
        self._report()

    def _report(self) -> None:
        if self._metrics is not None:
            self._metrics.set_active(self._active)
