"""
Unit tests for the per-wallet sell state machine (core/wallet_sell_task.py)

Tests:
- Happy path and waiting for account/balance/route
- Confirmation timeout and on-chain rejection back-edges
- Fresh balance before every submission
- Error classification and retry budget
"""

import pytest
from unittest.mock import MagicMock

from conftest import CONFIRM, DRAINED, LANDED_LATE, MINT, PENDING, REJECT, SENT_THEN_TIMEOUT, FakeChain
from rapidsell.core.errors import NetworkError, RateLimitedError, TransientNotReady
from rapidsell.core.metrics import get_metrics
from rapidsell.core.models import BondingCurveState, SellState, SellTask
from rapidsell.core.wallet_sell_task import WalletSellTask


@pytest.fixture
def build_runner(limiter, fast_policy, make_poller):
    """Factory wiring a WalletSellTask to a FakeChain"""

    def _build(chain: FakeChain, wallet, max_retries: int = 50, bonding_curve=None, max_checks: int = 3):
        return WalletSellTask(
            SellTask(wallet=wallet, target_mint=MINT),
            chain,
            chain,
            chain,
            limiter,
            bonding_curve or BondingCurveState(),
            make_poller(chain, max_checks=max_checks),
            policy=fast_policy,
            max_retries=max_retries
        )

    return _build


class TestHappyPath:
    """Test straightforward sells"""

    @pytest.mark.asyncio
    async def test_confirms_on_first_attempt(self, chain, make_wallet, build_runner):
        """Test a funded wallet with a live market sells in one attempt"""
        wallet = make_wallet()
        chain.script(wallet, balances=[100])
        runner = build_runner(chain, wallet)

        result = await runner.run()

        assert result.success is True
        assert result.final_state == SellState.CONFIRMED
        assert result.attempts == 1
        assert result.signature is not None
        assert result.tokens_detected is True
        assert result.route_ever_obtained is True
        assert [s.amount for s in chain.submissions_for(wallet)] == [100]
        assert runner.task.state_history == [
            SellState.SEARCHING_ACCOUNT,
            SellState.HAS_ACCOUNT,
            SellState.HAS_BALANCE,
            SellState.ROUTE_READY,
            SellState.SUBMITTED,
            SellState.CONFIRMED,
        ]

    @pytest.mark.asyncio
    async def test_waits_for_balance(self, chain, make_wallet, build_runner):
        """Test zero balance for three reads, then 50"""
        wallet = make_wallet()
        chain.script(wallet, balances=[0, 0, 0, 50])

        result = await build_runner(chain, wallet).run()

        assert result.final_state == SellState.CONFIRMED
        assert result.attempts >= 4
        assert [s.amount for s in chain.submissions_for(wallet)] == [50]

    @pytest.mark.parametrize("k", [0, 1, 5])
    @pytest.mark.asyncio
    async def test_route_ready_within_k_plus_one(self, chain, make_wallet, build_runner, k):
        """Test a balance that turns positive after k zero reads is quoted on attempt k+1"""
        wallet = make_wallet()
        chain.script(wallet, balances=[0] * k + [25])
        runner = build_runner(chain, wallet)

        result = await runner.run()

        assert result.attempts == k + 1
        assert SellState.ROUTE_READY in runner.task.state_history

    @pytest.mark.asyncio
    async def test_waits_for_token_account(self, chain, make_wallet, build_runner):
        """Test the account appearing on the third lookup"""
        wallet = make_wallet()
        script = chain.script(wallet, account_after=2)

        result = await build_runner(chain, wallet).run()

        assert result.final_state == SellState.CONFIRMED
        assert result.attempts == 3
        assert script.find_calls == 3

    @pytest.mark.asyncio
    async def test_account_cached_after_discovery(self, chain, make_wallet, build_runner):
        """Test the account is looked up once and only its balance re-read"""
        wallet = make_wallet()
        script = chain.script(wallet, balances=[0, 0, 0, 0, 10])

        result = await build_runner(chain, wallet).run()

        assert result.success is True
        assert script.find_calls == 1
        assert script.balance_reads == 5

    @pytest.mark.asyncio
    async def test_waits_for_market(self, make_wallet, build_runner):
        """Test no route until the market opens, then bonding curve detection"""
        chain = FakeChain(market_opens_after=3)
        wallet = make_wallet()
        chain.script(wallet)
        bonding_curve = BondingCurveState()

        result = await build_runner(chain, wallet, bonding_curve=bonding_curve).run()

        assert result.final_state == SellState.CONFIRMED
        assert result.attempts == 4
        assert bonding_curve.detected is True
        assert bonding_curve.detected_at_attempt == 4
        assert bonding_curve.detected_by == wallet.address


class TestRetryBudget:
    """Test exhaustion of the attempt budget"""

    @pytest.mark.asyncio
    async def test_never_gains_tokens(self, chain, make_wallet, build_runner):
        """Test a wallet whose account never appears"""
        wallet = make_wallet()
        chain.script(wallet, account_after=None)

        result = await build_runner(chain, wallet, max_retries=5).run()

        assert result.success is False
        assert result.final_state == SellState.RETRIES_EXHAUSTED
        assert result.attempts == 5
        assert result.tokens_detected is False
        assert result.route_ever_obtained is False
        assert chain.submissions_for(wallet) == []
        assert "gave up after 5 attempts" in result.last_error
        assert get_metrics().get_counter("wallets_exhausted") == 1

    @pytest.mark.asyncio
    async def test_attempts_never_exceed_budget(self, chain, make_wallet, build_runner):
        """Test attempts stop exactly at max_retries"""
        wallet = make_wallet()
        chain.script(wallet, balances=[0])

        result = await build_runner(chain, wallet, max_retries=7).run()

        assert result.attempts == 7
        assert result.tokens_detected is True
        assert result.final_state == SellState.RETRIES_EXHAUSTED

    def test_invalid_budget_rejected(self, chain, make_wallet, build_runner):
        """Test max_retries below 1 is refused"""
        with pytest.raises(ValueError):
            build_runner(chain, make_wallet(), max_retries=0)


class TestBackEdges:
    """Test timeout and rejection handling"""

    @pytest.mark.asyncio
    async def test_timeout_returns_to_route_ready(self, chain, make_wallet, build_runner):
        """Test an unconfirmed submission is rebuilt, not failed"""
        wallet = make_wallet()
        chain.script(wallet, outcomes=[PENDING, CONFIRM])
        runner = build_runner(chain, wallet)

        result = await runner.run()

        assert result.final_state == SellState.CONFIRMED
        assert len(chain.submissions_for(wallet)) == 2
        history = runner.task.state_history
        first_submit = history.index(SellState.SUBMITTED)
        assert history[first_submit + 1] == SellState.ROUTE_READY
        assert SellState.FAILED not in history

    @pytest.mark.asyncio
    async def test_repeated_timeouts_exhaust(self, chain, make_wallet, build_runner):
        """Test a transaction that never confirms ends in RETRIES_EXHAUSTED"""
        wallet = make_wallet()
        chain.script(wallet, outcomes=[PENDING] * 10)

        result = await build_runner(chain, wallet, max_retries=3).run()

        assert result.final_state == SellState.RETRIES_EXHAUSTED
        assert result.route_ever_obtained is True
        assert result.signature is None
        assert len(chain.submissions_for(wallet)) == 3
        assert result.last_error.startswith("not confirmed")

    @pytest.mark.asyncio
    async def test_rejection_then_retry(self, chain, make_wallet, build_runner):
        """Test a rejected sell is retried against a freshly read balance"""
        wallet = make_wallet()
        script = chain.script(wallet, balances=[100, 40], outcomes=[REJECT, CONFIRM])
        runner = build_runner(chain, wallet)

        result = await runner.run()

        assert result.final_state == SellState.CONFIRMED
        assert SellState.FAILED in runner.task.state_history
        assert [s.amount for s in chain.submissions_for(wallet)] == [100, 40]
        assert script.balance_reads == 2

    @pytest.mark.asyncio
    async def test_rejection_with_drained_balance_is_noop(self, chain, make_wallet, build_runner):
        """Test a rejection followed by a zero balance ends without resubmitting"""
        wallet = make_wallet()
        chain.script(wallet, outcomes=[DRAINED])
        runner = build_runner(chain, wallet)

        result = await runner.run()

        assert result.success is True
        assert result.final_state == SellState.CLEARED
        assert result.signature is None
        assert "InsufficientFunds" in result.last_error
        assert len(chain.submissions_for(wallet)) == 1
        assert runner.task.state_history[-2:] == [SellState.FAILED, SellState.CLEARED]

    @pytest.mark.asyncio
    async def test_late_landing_is_not_resubmitted(self, chain, make_wallet, build_runner):
        """Test a sale that lands after its polling window is never sent twice"""
        wallet = make_wallet()
        chain.script(wallet, outcomes=[LANDED_LATE])

        result = await build_runner(chain, wallet).run()

        assert result.final_state == SellState.CLEARED
        assert len(chain.submissions_for(wallet)) == 1

    @pytest.mark.asyncio
    async def test_submit_error_after_broadcast_is_cleared(self, chain, make_wallet, build_runner):
        """Test a sale that lands although submit raised ends as CLEARED"""
        wallet = make_wallet()
        chain.script(wallet, outcomes=[SENT_THEN_TIMEOUT])
        runner = build_runner(chain, wallet, max_retries=20)

        result = await runner.run()

        assert result.success is True
        assert result.final_state == SellState.CLEARED
        assert result.attempts == 2
        assert len(chain.submissions_for(wallet)) == 1
        assert runner.task.submissions == 0
        assert "timed out" in result.last_error

    @pytest.mark.asyncio
    async def test_every_submission_preceded_by_balance_read(self, chain, make_wallet, build_runner):
        """Test no two submissions happen without a balance read between them"""
        wallet = make_wallet()
        chain.script(wallet, outcomes=[PENDING, REJECT, PENDING, CONFIRM])

        await build_runner(chain, wallet).run()

        calls = [c for c in chain.call_log if c in ("get_balance", "submit")]
        for previous, current in zip(calls, calls[1:]):
            assert not (previous == "submit" and current == "submit")
        assert calls[0] == "get_balance"


class TestErrorHandling:
    """Test classified failures mid-attempt"""

    @pytest.mark.asyncio
    async def test_rate_limits_are_retried(self, chain, make_wallet, build_runner):
        """Test 429s back off and retry"""
        wallet = make_wallet()
        chain.script(wallet)
        chain.raise_next["get_balance"] = [RateLimitedError(), RateLimitedError()]

        result = await build_runner(chain, wallet).run()

        assert result.final_state == SellState.CONFIRMED
        assert result.attempts == 3
        assert get_metrics().get_counter("attempt_errors", labels={"class": "rate_limited"}) == 2

    @pytest.mark.asyncio
    async def test_retry_after_hint_passed_to_policy(self, chain, make_wallet, build_runner):
        """Test the provider's Retry-After reaches the backoff policy"""
        wallet = make_wallet()
        chain.script(wallet)
        chain.raise_next["get_route"] = [RateLimitedError(retry_after=0.002)]
        runner = build_runner(chain, wallet)
        runner.policy = MagicMock(wraps=runner.policy)

        result = await runner.run()

        assert result.final_state == SellState.CONFIRMED
        runner.policy.delay_for.assert_called_once()
        error_class, consecutive, retry_after_s = runner.policy.delay_for.call_args.args
        assert error_class.value == "rate_limited"
        assert consecutive == 1
        assert retry_after_s == 0.002

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self, chain, make_wallet, build_runner):
        """Test connection failures keep the task alive"""
        wallet = make_wallet()
        chain.script(wallet)
        chain.raise_next["find_token_account"] = [NetworkError("fetch failed")]
        chain.raise_next["submit"] = [ConnectionError("ECONNRESET")]

        result = await build_runner(chain, wallet).run()

        assert result.final_state == SellState.CONFIRMED
        assert get_metrics().get_counter("attempt_errors", labels={"class": "network"}) == 2

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_retried(self, chain, make_wallet, build_runner):
        """Test unknown exceptions are recorded, not raised"""
        wallet = make_wallet()
        chain.script(wallet)
        chain.raise_next["sign"] = [RuntimeError("blockhash not found")]

        result = await build_runner(chain, wallet).run()

        assert result.final_state == SellState.CONFIRMED
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_last_error_recorded_on_exhaustion(self, chain, make_wallet, build_runner):
        """Test the final error message survives into the result"""
        wallet = make_wallet()
        chain.script(wallet)
        chain.raise_next["get_route"] = [TransientNotReady("no quote available")] * 3

        result = await build_runner(chain, wallet, max_retries=3).run()

        assert result.final_state == SellState.RETRIES_EXHAUSTED
        assert result.last_error == "no quote available"

    @pytest.mark.asyncio
    async def test_status_lookup_errors_do_not_fail_task(self, chain, make_wallet, build_runner):
        """Test a failing status poll just counts as a check"""
        wallet = make_wallet()
        chain.script(wallet)
        chain.raise_next["get_status"] = [NetworkError("timeout")]

        result = await build_runner(chain, wallet).run()

        assert result.final_state == SellState.CONFIRMED
        assert result.attempts == 1


class TestSubmittedSignal:
    """Test the event the orchestrator waits on for priority launches"""

    @pytest.mark.asyncio
    async def test_set_after_submission(self, chain, make_wallet, build_runner):
        wallet = make_wallet()
        chain.script(wallet)
        runner = build_runner(chain, wallet)

        assert not runner.submitted.is_set()
        await runner.run()
        assert runner.submitted.is_set()

    @pytest.mark.asyncio
    async def test_set_when_exhausted_without_submitting(self, chain, make_wallet, build_runner):
        wallet = make_wallet()
        chain.script(wallet, account_after=None)
        runner = build_runner(chain, wallet, max_retries=2)

        await runner.run()

        assert runner.submitted.is_set()

    @pytest.mark.asyncio
    async def test_submit_attempt_recorded_when_submit_raises(self, chain, make_wallet, build_runner):
        """Test a submit that raises still counts as sent"""
        wallet = make_wallet()
        chain.script(wallet)
        chain.raise_next["submit"] = [NetworkError("sendTransaction timed out")]
        runner = build_runner(chain, wallet, max_retries=1)

        result = await runner.run()

        assert result.final_state == SellState.RETRIES_EXHAUSTED
        assert runner.task.submit_attempted is True
        assert runner.submitted.is_set()
