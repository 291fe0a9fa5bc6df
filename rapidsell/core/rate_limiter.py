"""
Shared request pacing for all wallets of one sell run
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from rapidsell.core.logger import get_logger
from rapidsell.core.metrics import get_metrics


logger = get_logger(__name__)
metrics = get_metrics()

T = TypeVar("T")


class RateLimiter:
    """
    Spaces call start times at least 1/ceiling seconds apart

    Every caller reserves the next free slot before its first await, so
    concurrent tasks on the same loop can never share a slot. Calls are
    delayed, never dropped; exceptions raised by the wrapped call
    propagate unchanged.

    Usage:
        limiter = RateLimiter(ceiling_rps=45)
        balance = await limiter.run(lambda: rpc.get_balance(account))
    """

    def __init__(self, ceiling_rps: float, clock: Optional[Callable[[], float]] = None):
        if ceiling_rps <= 0:
            raise ValueError(f"ceiling_rps must be positive, got {ceiling_rps}")

        self.ceiling_rps = ceiling_rps
        self.min_interval_s = 1.0 / ceiling_rps
        self._clock = clock or time.monotonic
        self._next_slot = 0.0
        self._dispatched = 0

    @classmethod
    def from_provider_limit(cls, provider_rps: float, safety_margin_rps: float) -> "RateLimiter":
        """Build a limiter that stays safety_margin_rps under the provider's limit"""
        return cls(provider_rps - safety_margin_rps)

    @property
    def dispatched(self) -> int:
        """Number of calls started through this limiter"""
        return self._dispatched

    def _reserve_slot(self) -> float:
        """Claim the next dispatch time and return how long to wait for it"""
        now = self._clock()
        slot = max(now, self._next_slot)
        self._next_slot = slot + self.min_interval_s
        return slot - now

    async def run(self, thunk: Callable[[], Awaitable[T]]) -> T:
        """
        Run thunk once its slot comes up

        Args:
            thunk: Zero-argument callable returning an awaitable

        Returns:
            Whatever the awaitable returns
        """
        wait_s = self._reserve_slot()
        if wait_s > 0:
            await asyncio.sleep(wait_s)

        self._dispatched += 1
        metrics.increment_counter("rate_limited_dispatch")
        return await thunk()
