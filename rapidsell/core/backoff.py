"""
Backoff policy keyed by error class
"""

from dataclasses import dataclass
from typing import Optional

from rapidsell.core.config import BackoffConfig
from rapidsell.core.errors import ErrorClass


@dataclass
class BackoffPolicy:
    """
    Sleep durations before the next same-state retry

    TRANSIENT_NOT_READY and UNEXPECTED use the base delay, NETWORK a
    fixed medium delay, RATE_LIMITED grows exponentially with the number
    of consecutive rate-limit hits and is capped. ON_CHAIN_REJECTED uses
    the base delay since the task rebuilds from a fresh balance anyway.
    """
    base_delay_s: float = 0.02
    rate_limited_factor: float = 2.0
    rate_limited_max_s: float = 0.3
    network_delay_s: float = 0.1

    @classmethod
    def from_config(cls, config: Optional[BackoffConfig]) -> "BackoffPolicy":
        if config is None:
            return cls()
        return cls(
            base_delay_s=config.base_delay_s,
            rate_limited_factor=config.rate_limited_factor,
            rate_limited_max_s=config.rate_limited_max_s,
            network_delay_s=config.network_delay_s,
        )

    def delay_for(
        self,
        error_class: ErrorClass,
        consecutive_rate_limits: int = 0,
        retry_after_s: Optional[float] = None
    ) -> float:
        """
        Seconds to sleep after an attempt that ended with error_class

        Args:
            error_class: Classification of the failure
            consecutive_rate_limits: Rate-limit hits in a row, including this one
            retry_after_s: Provider Retry-After hint; can lengthen the wait
                but never past rate_limited_max_s
        """
        if error_class == ErrorClass.RATE_LIMITED:
            exponent = max(consecutive_rate_limits - 1, 0)
            delay = self.base_delay_s * (self.rate_limited_factor ** exponent)
            if retry_after_s is not None and retry_after_s > delay:
                delay = retry_after_s
            return min(delay, self.rate_limited_max_s)

        if error_class == ErrorClass.NETWORK:
            return self.network_delay_s

        return self.base_delay_s
