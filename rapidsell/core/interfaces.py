"""
Collaborators the engine talks to, kept opaque

The engine never prices, routes or builds swaps itself. Concrete
implementations live in rapidsell.clients; tests use in-memory fakes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from rapidsell.core.models import Route, TokenAccountRef, Wallet


class TxStatusKind(Enum):
    """Status of a submitted signature"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    ONCHAIN_ERROR = "onchain_error"


@dataclass(frozen=True)
class TxStatus:
    """Status report for a signature"""
    kind: TxStatusKind
    slot: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_landed(self) -> bool:
        return self.kind in (TxStatusKind.CONFIRMED, TxStatusKind.FINALIZED)


@runtime_checkable
class AccountSource(Protocol):
    """Token account discovery and balance reads"""

    async def find_token_account(self, owner: str, mint: str) -> Optional[TokenAccountRef]:
        ...

    async def get_balance(self, account: TokenAccountRef) -> int:
        ...


@runtime_checkable
class QuoteProvider(Protocol):
    """Returns a full-amount sell route, or None while the market isn't tradable"""

    async def get_route(self, mint: str, raw_amount: int) -> Optional[Route]:
        ...


@runtime_checkable
class SubmissionChannel(Protocol):
    """Signs, broadcasts and reports on sell transactions"""

    async def sign(self, route: Route, wallet: Wallet) -> Any:
        ...

    async def submit(self, signed_tx: Any) -> str:
        ...

    async def get_status(self, signature: str) -> Optional[TxStatus]:
        ...
