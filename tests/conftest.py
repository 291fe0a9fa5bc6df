"""
Pytest configuration and shared fixtures
These fixtures are available to all test files
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pytest
from solders.keypair import Keypair

from rapidsell.core.backoff import BackoffPolicy
from rapidsell.core.confirmation import ConfirmationPoller
from rapidsell.core.errors import NetworkError
from rapidsell.core.interfaces import TxStatus, TxStatusKind
from rapidsell.core.metrics import MetricsCollector, get_metrics
from rapidsell.core.models import Route, TokenAccountRef, Wallet, WalletRole
from rapidsell.core.rate_limiter import RateLimiter


MINT = "MintM1111111111111111111111111111111111111"

# Outcomes a submission can be scripted to have
CONFIRM = "confirm"          # lands, balance goes to zero
REJECT = "reject"            # on-chain error, balance unchanged
DRAINED = "drained"          # on-chain error, balance drained by someone else
PENDING = "pending"          # never shows up in status lookups
LANDED_LATE = "landed_late"  # never reported, but the balance is gone
SENT_THEN_TIMEOUT = "sent_then_timeout"  # broadcast and lands, but submit raises


@dataclass
class WalletScript:
    """
    Scripted chain behaviour for one owner

    account_after: find_token_account calls answered None before the
        account appears (None = the account never appears)
    balances: successive balance reads; the last value sticks
    outcomes: one outcome per submission (default CONFIRM)
    """
    account_after: Optional[int] = 0
    balances: List[int] = field(default_factory=lambda: [100])
    outcomes: List[str] = field(default_factory=list)
    find_calls: int = 0
    balance_reads: int = 0
    balance_override: Optional[int] = None


@dataclass
class FakeSignedTx:
    owner: str
    amount: int


class FakeChain:
    """
    In-memory AccountSource, QuoteProvider and SubmissionChannel

    The market is closed (get_route returns None) for the first
    market_opens_after quote requests, counted across all wallets.
    Exceptions queued in raise_next[method] are raised by the next
    calls to that method.
    """

    def __init__(self, market_opens_after: int = 0):
        self.scripts: Dict[str, WalletScript] = {}
        self.market_opens_after = market_opens_after
        self.quote_calls = 0
        self.raise_next: Dict[str, List[Exception]] = {}
        self.submissions: List[FakeSignedTx] = []
        self.quoted_amounts: List[int] = []
        self.status_calls = 0
        self.call_log: List[str] = []
        self._statuses: Dict[str, Optional[TxStatus]] = {}

    def script(self, wallet: Wallet, **kwargs) -> WalletScript:
        script = WalletScript(**kwargs)
        self.scripts[wallet.address] = script
        return script

    def _maybe_raise(self, method: str) -> None:
        self.call_log.append(method)
        queued = self.raise_next.get(method)
        if queued:
            raise queued.pop(0)

    # AccountSource

    async def find_token_account(self, owner: str, mint: str) -> Optional[TokenAccountRef]:
        self._maybe_raise("find_token_account")
        script = self.scripts.setdefault(owner, WalletScript())
        script.find_calls += 1
        if script.account_after is None or script.find_calls <= script.account_after:
            return None
        return TokenAccountRef(address=f"ata-{owner[:8]}", mint=mint, owner=owner)

    async def get_balance(self, account: TokenAccountRef) -> int:
        self._maybe_raise("get_balance")
        script = self.scripts[account.owner]
        if script.balance_override is not None:
            return script.balance_override
        index = min(script.balance_reads, len(script.balances) - 1)
        script.balance_reads += 1
        return script.balances[index]

    # QuoteProvider

    async def get_route(self, mint: str, raw_amount: int) -> Optional[Route]:
        self._maybe_raise("get_route")
        self.quote_calls += 1
        self.quoted_amounts.append(raw_amount)
        if self.quote_calls <= self.market_opens_after:
            return None
        return Route(
            mint=mint,
            in_amount=raw_amount,
            out_amount=raw_amount // 2,
            raw={"inAmount": str(raw_amount), "outAmount": str(raw_amount // 2)}
        )

    # SubmissionChannel

    async def sign(self, route: Route, wallet: Wallet) -> FakeSignedTx:
        self._maybe_raise("sign")
        return FakeSignedTx(owner=wallet.address, amount=route.in_amount)

    async def submit(self, signed_tx: FakeSignedTx) -> str:
        self._maybe_raise("submit")
        self.submissions.append(signed_tx)
        script = self.scripts[signed_tx.owner]
        signature = f"sig-{signed_tx.owner[:6]}-{len(self.submissions)}"

        outcome = script.outcomes.pop(0) if script.outcomes else CONFIRM
        if outcome == CONFIRM:
            script.balance_override = 0
            self._statuses[signature] = TxStatus(kind=TxStatusKind.CONFIRMED, slot=1)
        elif outcome == REJECT:
            self._statuses[signature] = TxStatus(kind=TxStatusKind.ONCHAIN_ERROR, error="SlippageExceeded")
        elif outcome == DRAINED:
            script.balance_override = 0
            self._statuses[signature] = TxStatus(kind=TxStatusKind.ONCHAIN_ERROR, error="InsufficientFunds")
        elif outcome == PENDING:
            self._statuses[signature] = None
        elif outcome == LANDED_LATE:
            script.balance_override = 0
            self._statuses[signature] = None
        elif outcome == SENT_THEN_TIMEOUT:
            script.balance_override = 0
            raise NetworkError("sendTransaction timed out after 10s")
        else:
            raise AssertionError(f"unknown outcome {outcome}")

        return signature

    async def get_status(self, signature: str) -> Optional[TxStatus]:
        self._maybe_raise("get_status")
        self.status_calls += 1
        return self._statuses.get(signature)

    def submissions_for(self, wallet: Wallet) -> List[FakeSignedTx]:
        return [s for s in self.submissions if s.owner == wallet.address]


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with empty global metrics"""
    get_metrics().reset()
    yield
    get_metrics().reset()


@pytest.fixture
def metrics_collector() -> MetricsCollector:
    """
    Create fresh metrics collector for each test

    Returns clean MetricsCollector instance
    """
    collector = MetricsCollector(enable_histogram=True)
    yield collector
    collector.reset()


@pytest.fixture
def make_wallet():
    """Factory for wallets with fresh keypairs"""

    def _make(role: WalletRole = WalletRole.BUNDLE, **kwargs) -> Wallet:
        return Wallet(keypair=Keypair(), role=role, **kwargs)

    return _make


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def limiter() -> RateLimiter:
    """Limiter fast enough not to slow tests down"""
    return RateLimiter(ceiling_rps=10000)


@pytest.fixture
def fast_policy() -> BackoffPolicy:
    return BackoffPolicy(
        base_delay_s=0.001,
        rate_limited_factor=2.0,
        rate_limited_max_s=0.004,
        network_delay_s=0.002
    )


@pytest.fixture
def make_poller(limiter):
    """Factory for pollers with a short window"""

    def _make(channel, interval_s: float = 0.001, max_checks: int = 3) -> ConfirmationPoller:
        return ConfirmationPoller(channel, limiter, interval_s=interval_s, max_checks=max_checks)

    return _make


@pytest.fixture
def test_config_dict() -> Dict:
    """
    Sample configuration dictionary for testing

    Returns valid config that can be modified per test
    """
    return {
        "rpc": {
            "url": "https://api.devnet.solana.com",
            "provider_rps": 50,
            "safety_margin_rps": 5,
            "timeout_s": 10,
        },
        "jupiter": {
            "slippage_bps": 500,
        },
        "sell": {
            "max_retries": 300,
            "stagger_ms": 25,
            "initial_delay_ms": 100,
            "priority_first": True,
            "poll_interval_s": 0.2,
            "poll_max_checks": 50,
        },
        "backoff": {
            "base_delay_s": 0.05,
        },
        "priority_fees": {
            "tier": "high",
            "randomize": False,
            "tiers": {"high": 6000000},
        },
        "logging": {
            "level": "DEBUG",
            "format": "json",
            "output_file": None,
        },
        "metrics": {
            "enable_histogram": True,
        },
    }


@pytest.fixture
def test_config_file(test_config_dict, tmp_path):
    """
    Create a temporary config file for testing

    Returns path to temporary YAML config file
    """
    import yaml

    config_file = tmp_path / "test_config.yml"
    with open(config_file, 'w') as f:
        yaml.dump(test_config_dict, f)

    return str(config_file)
