"""Delivery idempotency guard.

Two tiers suppress duplicate processing of a webhook delivery:

1. An in-memory reservation table keyed by delivery id. A delivery is
   reserved synchronously, before the first await, so two concurrent
   deliveries sharing an id cannot both get past the check.
2. A durable check against the issue's comment thread, looking for the
   hidden delivery marker embedded in the tracking comment. This survives
   process restarts.

Reservations expire after a retention window and are removed lazily by a
periodic sweep.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional

import structlog

from src.mentionbot.core.tracking_comment import is_already_processed
from src.mentionbot.models import BotContext

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60


class IdempotencyGuard:
    """Claims webhook deliveries so each is processed at most once.

    The reservation table is the only state the guard owns. It is mutated
    exclusively by synchronous single-step operations, so no check-then-act
    sequence on it ever spans an await.

    Attributes:
        ttl_seconds: Retention window for reservations.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        durable_check: Callable[[BotContext], Awaitable[bool]] = is_already_processed,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._durable_check = durable_check
        self._clock = clock
        self._reservations: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._reservations)

    def __contains__(self, delivery_id: str) -> bool:
        return delivery_id in self._reservations

    def try_reserve(self, delivery_id: str) -> bool:
        """Reserve a delivery id if it has not been claimed.

        Returns:
            True if this call created the reservation, False if the id was
            already present.
        """
        if delivery_id in self._reservations:
            return False
        self._reservations[delivery_id] = self._clock()
        return True

    def release(self, delivery_id: str) -> None:
        self._reservations.pop(delivery_id, None)

    async def should_skip(self, ctx: BotContext) -> bool:
        """Decide whether a delivery must be skipped, claiming it if not.

        Args:
            ctx: Request context of the delivery.

        Returns:
            True when the delivery was already claimed in this process or
            already has a tracking comment on GitHub.

        Raises:
            Exception: Whatever the durable check raised. The reservation is
                       dropped first so a redelivery can try again.
        """
        if not self.try_reserve(ctx.delivery_id):
            ctx.log.info("Skipping duplicate delivery (in-memory)")
            return True

        try:
            found = await self._durable_check(ctx)
        except Exception:
            self.release(ctx.delivery_id)
            raise

        if found:
            # The reservation stays so later redeliveries hit the fast path
            ctx.log.info("Skipping duplicate delivery (durable marker found)")
            return True
        return False

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove reservations older than the retention window.

        Returns:
            Number of reservations removed.
        """
        cutoff = (self._clock() if now is None else now) - self.ttl_seconds
        stale = [key for key, ts in self._reservations.items() if ts < cutoff]
        for key in stale:
            del self._reservations[key]
        if stale:
            logger.debug("Swept stale delivery reservations", removed=len(stale))
        return len(stale)

    async def run_periodic_sweep(self, interval_seconds: Optional[float] = None) -> None:
        """Sweep forever at a fixed interval. Cancel the task to stop it."""
        interval = interval_seconds or self.ttl_seconds
        while True:
            await asyncio.sleep(interval)
            self.sweep()
