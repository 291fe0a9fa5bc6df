"""
Data model for a sell run: wallets, per-wallet tasks, shared signals and results
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from solders.keypair import Keypair


class WalletRole(Enum):
    """Why a wallet holds the token"""
    CREATOR = "creator"
    BUNDLE = "bundle"
    HOLDER = "holder"

    @classmethod
    def parse(cls, value) -> "WalletRole":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


@dataclass(frozen=True)
class Wallet:
    """A signing wallet taking part in the run (owned by the caller)"""
    keypair: Keypair
    role: WalletRole = WalletRole.BUNDLE
    eligible: bool = True
    buy_amount_sol: Optional[float] = None

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())

    @property
    def pubkey(self):
        return self.keypair.pubkey()


@dataclass(frozen=True)
class TokenAccountRef:
    """Token account holding a wallet's balance of the target mint"""
    address: str
    mint: str
    owner: str
    program_id: Optional[str] = None


@dataclass(frozen=True)
class Route:
    """Sell route returned by the quote provider (opaque payload kept intact)"""
    mint: str
    in_amount: int
    out_amount: int
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


class SellState(Enum):
    """Per-wallet task states"""
    SEARCHING_ACCOUNT = "searching_account"
    HAS_ACCOUNT = "has_account"
    HAS_BALANCE = "has_balance"
    ROUTE_READY = "route_ready"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CLEARED = "cleared"
    RETRIES_EXHAUSTED = "retries_exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    SellState.CONFIRMED,
    SellState.CLEARED,
    SellState.RETRIES_EXHAUSTED,
})


@dataclass
class SellTask:
    """Mutable bookkeeping for one wallet during one run"""
    wallet: Wallet
    target_mint: str
    state: SellState = SellState.SEARCHING_ACCOUNT
    attempts: int = 0
    last_error: Optional[str] = None
    cached_account_ref: Optional[TokenAccountRef] = None
    cached_balance: Optional[int] = None
    tokens_detected: bool = False
    route_ever_obtained: bool = False
    submissions: int = 0
    submit_attempted: bool = False
    last_signature: Optional[str] = None
    state_history: List[SellState] = field(default_factory=list)

    def __post_init__(self):
        if not self.state_history:
            self.state_history.append(self.state)

    @property
    def wallet_address(self) -> str:
        return self.wallet.address

    def transition(self, new_state: SellState) -> None:
        """Move to new_state and record it"""
        self.state = new_state
        self.state_history.append(new_state)


class BondingCurveState:
    """
    Set-once signal that the market became tradable

    Shared by every task of one run. The first task to receive a route
    marks it; later calls are no-ops. Tasks may await `wait()`.
    """

    def __init__(self, clock=None):
        self._clock = clock or time.monotonic
        self.detected = False
        self.detected_at_attempt: Optional[int] = None
        self.detected_at: Optional[float] = None
        self.detected_by: Optional[str] = None
        self._event = asyncio.Event()

    def mark_detected(self, attempt: int, wallet_address: str) -> bool:
        """
        Record detection if nobody has yet

        Returns:
            True only for the call that flipped the flag
        """
        if self.detected:
            return False

        self.detected = True
        self.detected_at_attempt = attempt
        self.detected_at = self._clock()
        self.detected_by = wallet_address
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(frozen=True)
class SellResult:
    """Terminal outcome of one wallet's task"""
    wallet_address: str
    success: bool
    attempts: int
    tokens_detected: bool
    route_ever_obtained: bool
    signature: Optional[str] = None
    final_state: SellState = SellState.RETRIES_EXHAUSTED
    last_error: Optional[str] = None

    @classmethod
    def from_task(cls, task: SellTask) -> "SellResult":
        return cls(
            wallet_address=task.wallet_address,
            success=task.state in (SellState.CONFIRMED, SellState.CLEARED),
            attempts=task.attempts,
            tokens_detected=task.tokens_detected,
            route_ever_obtained=task.route_ever_obtained,
            signature=task.last_signature if task.state == SellState.CONFIRMED else None,
            final_state=task.state,
            last_error=task.last_error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "success": self.success,
            "signature": self.signature,
            "attempts": self.attempts,
            "tokens_detected": self.tokens_detected,
            "route_ever_obtained": self.route_ever_obtained,
            "final_state": self.final_state.value,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class RunSummary:
    """Aggregate of all SellResults in a run"""
    total: int
    successful: int
    failed: int
    average_attempts: float
    elapsed_s: float
    time_to_first_route_s: Optional[float]
    tokens_detected_count: int
    route_obtained_count: int

    @property
    def all_succeeded(self) -> bool:
        return self.total > 0 and self.failed == 0

    @classmethod
    def from_results(
        cls,
        results: List[SellResult],
        elapsed_s: float,
        time_to_first_route_s: Optional[float] = None
    ) -> "RunSummary":
        total = len(results)
        successful = sum(1 for r in results if r.success)
        average = sum(r.attempts for r in results) / total if total else 0.0
        return cls(
            total=total,
            successful=successful,
            failed=total - successful,
            average_attempts=average,
            elapsed_s=elapsed_s,
            time_to_first_route_s=time_to_first_route_s,
            tokens_detected_count=sum(1 for r in results if r.tokens_detected),
            route_obtained_count=sum(1 for r in results if r.route_ever_obtained),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "average_attempts": round(self.average_attempts, 2),
            "elapsed_s": round(self.elapsed_s, 3),
            "time_to_first_route_s": (
                round(self.time_to_first_route_s, 3)
                if self.time_to_first_route_s is not None else None
            ),
            "tokens_detected_count": self.tokens_detected_count,
            "route_obtained_count": self.route_obtained_count,
        }
