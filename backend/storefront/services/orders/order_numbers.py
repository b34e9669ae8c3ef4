"""
Order number generation.

Numbers look like ``ORD-20240315-0042``. The generator probes the order store
for a free random suffix; the unique constraint on ``orders.order_number``
remains the authority, and the service retries the insert when it still
collides.
"""

import random
from datetime import datetime
from typing import Optional

from storefront.core.logging import get_logger
from storefront.services.orders.stores import OrderStore, bounded

logger = get_logger(__name__)

ORDER_NUMBER_PREFIX = "ORD"


class OrderNumberGenerator:
    """Draws random order numbers until one is free, with a timestamp fallback."""

    def __init__(
        self,
        orders: OrderStore,
        max_attempts: int = 10,
        timeout: float = 5.0,
        rng: Optional[random.Random] = None,
    ):
        self.orders = orders
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.rng = rng or random.SystemRandom()
        self._last_fallback_millis = 0

    @staticmethod
    def format(now: datetime, suffix: str) -> str:
        return f"{ORDER_NUMBER_PREFIX}-{now:%Y%m%d}-{suffix}"

    def random_candidate(self, now: datetime) -> str:
        return self.format(now, f"{self.rng.randint(0, 9999):04d}")

    def fallback_candidate(self, now: datetime) -> str:
        """
        Last six digits of the millisecond timestamp.

        Strictly increasing per generator, so a regenerated fallback never
        repeats one this generator already handed out.
        """
        millis = max(int(now.timestamp() * 1000), self._last_fallback_millis + 1)
        self._last_fallback_millis = millis
        return self.format(now, f"{millis % 1_000_000:06d}")

    async def next(self, now: datetime) -> str:
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.random_candidate(now)
            exists = await bounded(
                self.orders.order_number_exists(candidate),
                "order_number_exists",
                self.timeout,
            )
            if not exists:
                return candidate
            logger.debug("Order number collision", order_number=candidate, attempt=attempt)

        fallback = self.fallback_candidate(now)
        logger.warning(
            "Random order numbers exhausted, using timestamp fallback",
            attempts=self.max_attempts,
            order_number=fallback,
        )
        return fallback
