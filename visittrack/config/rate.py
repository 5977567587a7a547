"""
Process-wide mileage rate cache
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

RateSource = Callable[[], Awaitable[float]]


class MileageRateCache:
    """
    Fetches the reimbursement rate once and keeps it for the process lifetime
    There is no invalidation; a stale rate only affects displayed reimbursement
    """

    def __init__(self, source: RateSource):
        self._source = source
        self._rate: Optional[float] = None
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def fixed(cls, rate: float) -> "MileageRateCache":
        """Cache backed by a constant, typically TrackerSettings.mileage_rate"""
        async def source() -> float:
            return rate

        return cls(source)

    @property
    def cached_rate(self) -> Optional[float]:
        return self._rate

    async def get_rate(self) -> float:
        if self._rate is not None:
            return self._rate

        async with self._lock:
            if self._rate is None:
                rate = await self._source()
                if rate < 0:
                    raise ValueError(f"Mileage rate cannot be negative: {rate}")
                self._rate = float(rate)
                self.logger.info(f"Mileage rate cached at {self._rate:.4f} per mile")

        return self._rate
