"""
Confirmation polling for submitted sell transactions
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from rapidsell.core.errors import classify_error
from rapidsell.core.interfaces import SubmissionChannel, TxStatus, TxStatusKind
from rapidsell.core.logger import get_logger, short_address
from rapidsell.core.metrics import get_metrics, LatencyTimer
from rapidsell.core.rate_limiter import RateLimiter


logger = get_logger(__name__)
metrics = get_metrics()


class ConfirmationOutcome(Enum):
    """How a polling window ended"""
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ConfirmationResult:
    """Result of polling one signature"""
    outcome: ConfirmationOutcome
    signature: str
    checks: int
    status: Optional[TxStatus] = None

    @property
    def error(self) -> Optional[str]:
        return self.status.error if self.status else None


class ConfirmationPoller:
    """
    Polls a signature at a fixed interval for a bounded number of checks

    A status lookup that raises counts as a check and polling continues;
    only an explicit on-chain error or a confirmed/finalized status ends
    the window early.

    Usage:
        poller = ConfirmationPoller(channel, limiter, interval_s=0.1, max_checks=100)
        result = await poller.wait(signature)
    """

    def __init__(
        self,
        channel: SubmissionChannel,
        limiter: RateLimiter,
        interval_s: float = 0.1,
        max_checks: int = 100
    ):
        if max_checks < 1:
            raise ValueError("max_checks must be at least 1")

        self.channel = channel
        self.limiter = limiter
        self.interval_s = interval_s
        self.max_checks = max_checks

    @property
    def window_s(self) -> float:
        """Approximate length of one polling window"""
        return self.interval_s * self.max_checks

    async def wait(self, signature: str) -> ConfirmationResult:
        """
        Poll until confirmed, rejected, or out of checks

        Args:
            signature: Transaction signature to track

        Returns:
            ConfirmationResult
        """
        last_status: Optional[TxStatus] = None

        with LatencyTimer(metrics, "confirmation_wait"):
            for check in range(1, self.max_checks + 1):
                await asyncio.sleep(self.interval_s)

                try:
                    status = await self.limiter.run(
                        lambda: self.channel.get_status(signature)
                    )
                except Exception as e:
                    metrics.increment_counter(
                        "confirmation_status_errors",
                        labels={"class": classify_error(e).value}
                    )
                    logger.debug(
                        "confirmation_status_error",
                        signature=short_address(signature),
                        check=check,
                        error=str(e)
                    )
                    continue

                if status is None:
                    continue

                last_status = status

                if status.kind == TxStatusKind.ONCHAIN_ERROR:
                    metrics.increment_counter("transactions_rejected")
                    return ConfirmationResult(
                        outcome=ConfirmationOutcome.REJECTED,
                        signature=signature,
                        checks=check,
                        status=status
                    )

                if status.is_landed:
                    metrics.increment_counter(
                        "transactions_confirmed",
                        labels={"status": status.kind.value}
                    )
                    return ConfirmationResult(
                        outcome=ConfirmationOutcome.CONFIRMED,
                        signature=signature,
                        checks=check,
                        status=status
                    )

        metrics.increment_counter("transaction_confirmations_timeout")
        return ConfirmationResult(
            outcome=ConfirmationOutcome.TIMED_OUT,
            signature=signature,
            checks=self.max_checks,
            status=last_status
        )
