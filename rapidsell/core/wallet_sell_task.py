"""
Per-wallet sell state machine

One WalletSellTask drives one wallet from "no token account yet" to a
confirmed full-balance sale, retrying until its attempt budget runs out.
"""

import asyncio
from typing import Optional

from rapidsell.core.backoff import BackoffPolicy
from rapidsell.core.confirmation import ConfirmationOutcome, ConfirmationPoller
from rapidsell.core.errors import ErrorClass, OnChainRejected, RetriesExhausted, classify_error
from rapidsell.core.interfaces import AccountSource, QuoteProvider, SubmissionChannel
from rapidsell.core.logger import get_logger, short_address
from rapidsell.core.metrics import get_metrics, LatencyTimer
from rapidsell.core.models import BondingCurveState, SellResult, SellState, SellTask
from rapidsell.core.rate_limiter import RateLimiter


logger = get_logger(__name__)
metrics = get_metrics()


class WalletSellTask:
    """
    Sells a wallet's entire balance of one mint

    Each attempt runs forward from the current state as far as it can:
    find the token account (cached forever once found), read the balance,
    ask for a route, sign, submit, poll for confirmation. Not-ready
    conditions (no account, zero balance, no route) end the attempt and
    sleep the base delay.

    Back-edges:
    - on-chain rejection -> FAILED, next attempt re-reads the balance
    - confirmation timeout -> ROUTE_READY, next attempt re-reads the
      balance and re-quotes
    Every attempt that reaches the quote step has just re-read the
    balance, so a wallet is never resubmitted against a stale balance.
    A zero balance after this task sent (or tried to send) a transaction
    means the sale landed, or someone else drained it: the task ends as
    CLEARED.

    Usage:
        runner = WalletSellTask(task, accounts, quotes, channel, limiter,
                                bonding_curve, poller)
        result = await runner.run()
    """

    def __init__(
        self,
        task: SellTask,
        accounts: AccountSource,
        quotes: QuoteProvider,
        channel: SubmissionChannel,
        limiter: RateLimiter,
        bonding_curve: BondingCurveState,
        poller: ConfirmationPoller,
        policy: Optional[BackoffPolicy] = None,
        max_retries: int = 500,
        progress_log_every: int = 20,
        label: Optional[str] = None
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.task = task
        self.accounts = accounts
        self.quotes = quotes
        self.channel = channel
        self.limiter = limiter
        self.bonding_curve = bonding_curve
        self.poller = poller
        self.policy = policy or BackoffPolicy()
        self.max_retries = max_retries
        self.progress_log_every = max(progress_log_every, 1)
        self.label = label or short_address(task.wallet_address)

        # Set before the first submit, or on termination without one
        self.submitted = asyncio.Event()
        self._consecutive_rate_limits = 0
        self._retry_after_s: Optional[float] = None

    async def run(self) -> SellResult:
        """
        Drive the task to a terminal state

        Returns:
            SellResult for this wallet (never raises for per-wallet failures)
        """
        task = self.task

        logger.info(
            "wallet_sell_started",
            wallet=self.label,
            role=task.wallet.role.value
        )

        while not task.state.is_terminal:
            task.attempts += 1
            self._log_progress()

            try:
                delay_class = await self._attempt()
                self._consecutive_rate_limits = 0
            except Exception as e:
                delay_class = self._record_failure(e)

            if task.state.is_terminal:
                break

            if task.attempts >= self.max_retries:
                self._exhaust()
                break

            if delay_class is not None:
                await asyncio.sleep(
                    self.policy.delay_for(
                        delay_class, self._consecutive_rate_limits, self._retry_after_s
                    )
                )

        self.submitted.set()
        return SellResult.from_task(task)

    async def _attempt(self) -> Optional[ErrorClass]:
        """
        Run one attempt

        Returns:
            ErrorClass whose delay to sleep before the next attempt, or
            None to continue immediately
        """
        task = self.task

        if task.state == SellState.SEARCHING_ACCOUNT:
            account = await self.limiter.run(
                lambda: self.accounts.find_token_account(task.wallet_address, task.target_mint)
            )
            if account is None:
                if task.attempts % 30 == 0:
                    logger.debug("token_account_not_found", wallet=self.label, attempt=task.attempts)
                return ErrorClass.TRANSIENT_NOT_READY

            task.cached_account_ref = account
            task.tokens_detected = True
            task.transition(SellState.HAS_ACCOUNT)
            logger.info(
                "token_account_found",
                wallet=self.label,
                account=short_address(account.address),
                attempt=task.attempts
            )

        account = task.cached_account_ref
        balance = await self.limiter.run(lambda: self.accounts.get_balance(account))

        if balance <= 0:
            task.cached_balance = 0
            if task.submit_attempted:
                task.transition(SellState.CLEARED)
                logger.info(
                    "wallet_balance_cleared",
                    wallet=self.label,
                    attempts=task.attempts,
                    submissions=task.submissions
                )
                return None
            if task.state != SellState.HAS_ACCOUNT:
                task.transition(SellState.HAS_ACCOUNT)
            return ErrorClass.TRANSIENT_NOT_READY

        task.cached_balance = balance
        if task.state != SellState.HAS_BALANCE:
            task.transition(SellState.HAS_BALANCE)

        with LatencyTimer(metrics, "get_route"):
            route = await self.limiter.run(
                lambda: self.quotes.get_route(task.target_mint, balance)
            )

        if route is None:
            if task.attempts % 30 == 0:
                logger.debug("route_not_ready", wallet=self.label, attempt=task.attempts)
            return ErrorClass.TRANSIENT_NOT_READY

        task.route_ever_obtained = True
        if self.bonding_curve.mark_detected(task.attempts, task.wallet_address):
            logger.info(
                "bonding_curve_live",
                wallet=self.label,
                attempt=task.attempts
            )
        task.transition(SellState.ROUTE_READY)

        signed_tx = await self.limiter.run(lambda: self.channel.sign(route, task.wallet))

        # A submit that raises may still have been broadcast
        task.submit_attempted = True
        self.submitted.set()
        with LatencyTimer(metrics, "submit"):
            signature = await self.limiter.run(lambda: self.channel.submit(signed_tx))

        task.submissions += 1
        task.last_signature = signature
        task.transition(SellState.SUBMITTED)
        metrics.increment_counter("transactions_submitted")

        confirmation = await self.poller.wait(signature)

        if confirmation.outcome == ConfirmationOutcome.CONFIRMED:
            task.transition(SellState.CONFIRMED)
            logger.info(
                "wallet_sell_confirmed",
                wallet=self.label,
                signature=signature,
                amount=balance,
                attempts=task.attempts
            )
            return None

        if confirmation.outcome == ConfirmationOutcome.REJECTED:
            task.transition(SellState.FAILED)
            logger.warning(
                "wallet_sell_rejected",
                wallet=self.label,
                signature=signature,
                error=confirmation.error,
                attempt=task.attempts
            )
            raise OnChainRejected(signature, confirmation.error)

        task.last_error = f"not confirmed within {confirmation.checks} checks"
        task.transition(SellState.ROUTE_READY)
        logger.warning(
            "wallet_sell_unconfirmed",
            wallet=self.label,
            signature=signature,
            checks=confirmation.checks,
            attempt=task.attempts
        )
        return None

    def _record_failure(self, error: Exception) -> ErrorClass:
        """Classify an exception raised mid-attempt"""
        error_class = classify_error(error)
        self.task.last_error = str(error) or error.__class__.__name__
        metrics.increment_counter("attempt_errors", labels={"class": error_class.value})

        if error_class == ErrorClass.RATE_LIMITED:
            self._consecutive_rate_limits += 1
            self._retry_after_s = getattr(error, "retry_after", None)
        else:
            self._consecutive_rate_limits = 0
            self._retry_after_s = None

        if error_class == ErrorClass.UNEXPECTED:
            logger.warning(
                "unexpected_attempt_error",
                wallet=self.label,
                state=self.task.state.value,
                attempt=self.task.attempts,
                error=self.task.last_error,
                error_type=error.__class__.__name__
            )
        elif error_class == ErrorClass.NETWORK and self.task.attempts % 10 == 0:
            logger.warning(
                "network_error_retrying",
                wallet=self.label,
                attempt=self.task.attempts,
                error=self.task.last_error
            )
        else:
            logger.debug(
                "attempt_error",
                wallet=self.label,
                error_class=error_class.value,
                attempt=self.task.attempts
            )

        return error_class

    def _exhaust(self) -> None:
        task = self.task
        task.transition(SellState.RETRIES_EXHAUSTED)
        if task.last_error is None:
            task.last_error = str(RetriesExhausted(task.wallet_address, task.attempts))
        metrics.increment_counter("wallets_exhausted")
        logger.warning(
            "wallet_sell_retries_exhausted",
            wallet=self.label,
            attempts=task.attempts,
            tokens_detected=task.tokens_detected,
            route_ever_obtained=task.route_ever_obtained,
            last_error=task.last_error
        )

    def _log_progress(self) -> None:
        attempts = self.task.attempts
        if attempts == 1 or attempts % self.progress_log_every == 0:
            logger.info(
                "wallet_sell_progress",
                wallet=self.label,
                attempt=attempts,
                max_retries=self.max_retries,
                state=self.task.state.value
            )
