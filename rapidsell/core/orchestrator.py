"""
Rapid-sell orchestration: fan out one WalletSellTask per wallet, fan in results
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from rapidsell.core.backoff import BackoffPolicy
from rapidsell.core.config import EngineConfig
from rapidsell.core.confirmation import ConfirmationPoller
from rapidsell.core.interfaces import AccountSource, QuoteProvider, SubmissionChannel
from rapidsell.core.logger import bound_run_context, get_logger, short_address
from rapidsell.core.metrics import get_metrics
from rapidsell.core.models import (
    BondingCurveState,
    RunSummary,
    SellResult,
    SellTask,
    Wallet,
)
from rapidsell.core.rate_limiter import RateLimiter
from rapidsell.core.wallet_sell_task import WalletSellTask
from rapidsell.core.wallet_selection import order_priority_first


logger = get_logger(__name__)
metrics = get_metrics()


CompletionHook = Callable[[RunSummary], Awaitable[None]]


@dataclass
class SellOptions:
    """Per-run knobs supplied by the trigger"""
    max_retries: int = 500
    initial_delay_ms: int = 0
    stagger_ms: int = 0
    priority_wallet: Optional[str] = None
    poll_interval_s: float = 0.1
    poll_max_checks: int = 100
    progress_log_every: int = 20

    @classmethod
    def from_config(cls, config: EngineConfig, **overrides) -> "SellOptions":
        sell = config.sell_config
        options = cls(
            max_retries=sell.max_retries,
            initial_delay_ms=sell.initial_delay_ms,
            stagger_ms=sell.stagger_ms,
            poll_interval_s=sell.poll_interval_s,
            poll_max_checks=sell.poll_max_checks,
            progress_log_every=sell.progress_log_every,
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(options, key, value)
        return options


@dataclass
class RunReport:
    """Everything a run produced"""
    results: List[SellResult]
    summary: RunSummary
    bonding_curve: BondingCurveState
    run_id: Optional[str] = None


class RapidSellOrchestrator:
    """
    Sells every eligible wallet's balance of one mint concurrently

    Features:
    - One shared RateLimiter and BondingCurveState per run
    - Optional start stagger (index * stagger_ms)
    - Optional priority wallet launched before everyone else
    - Waits for every wallet; no early exit on first success
    - Optional completion hook when every wallet succeeded

    Usage:
        orchestrator = RapidSellOrchestrator(rpc, jupiter, rpc, limiter)
        results = await orchestrator.run(wallets, mint, SellOptions(stagger_ms=50))
    """

    def __init__(
        self,
        accounts: AccountSource,
        quotes: QuoteProvider,
        channel: SubmissionChannel,
        limiter: RateLimiter,
        policy: Optional[BackoffPolicy] = None,
        completion_hook: Optional[CompletionHook] = None
    ):
        self.accounts = accounts
        self.quotes = quotes
        self.channel = channel
        self.limiter = limiter
        self.policy = policy or BackoffPolicy()
        self.completion_hook = completion_hook

    async def run(
        self,
        wallets: Sequence[Wallet],
        target_mint: str,
        options: Optional[SellOptions] = None
    ) -> List[SellResult]:
        """Sell all wallets and return one SellResult per eligible wallet"""
        report = await self.execute(wallets, target_mint, options)
        return report.results

    async def execute(
        self,
        wallets: Sequence[Wallet],
        target_mint: str,
        options: Optional[SellOptions] = None
    ) -> RunReport:
        """
        Sell all wallets and return results with a run summary

        Raises:
            ValueError: If the mint is empty or no wallet is eligible
        """
        options = options or SellOptions()

        if not target_mint:
            raise ValueError("target_mint is required")

        eligible = [w for w in wallets if w.eligible]
        if not eligible:
            raise ValueError("No eligible wallets to sell")

        with bound_run_context(target_mint) as run_id:
            report = await self._execute(eligible, len(wallets) - len(eligible), target_mint, options)
        report.run_id = run_id
        return report

    async def _execute(
        self,
        eligible: List[Wallet],
        skipped: int,
        target_mint: str,
        options: SellOptions
    ) -> RunReport:
        ordered = self._order(eligible, options.priority_wallet)
        has_priority = (
            options.priority_wallet is not None
            and ordered[0].address == options.priority_wallet
        )

        bonding_curve = BondingCurveState()
        poller = ConfirmationPoller(
            self.channel,
            self.limiter,
            interval_s=options.poll_interval_s,
            max_checks=options.poll_max_checks
        )
        runners = [
            WalletSellTask(
                SellTask(wallet=wallet, target_mint=target_mint),
                self.accounts,
                self.quotes,
                self.channel,
                self.limiter,
                bonding_curve,
                poller,
                policy=self.policy,
                max_retries=options.max_retries,
                progress_log_every=options.progress_log_every,
                label=f"{index + 1}/{len(ordered)} {short_address(wallet.address)}"
            )
            for index, wallet in enumerate(ordered)
        ]

        logger.info(
            "rapid_sell_starting",
            mint=target_mint,
            wallets=len(runners),
            skipped=skipped,
            priority_wallet=short_address(ordered[0].address) if has_priority else None,
            stagger_ms=options.stagger_ms,
            max_retries=options.max_retries,
            ceiling_rps=self.limiter.ceiling_rps
        )

        if options.initial_delay_ms > 0:
            logger.info("initial_delay", delay_ms=options.initial_delay_ms)
            await asyncio.sleep(options.initial_delay_ms / 1000)

        started_at = time.monotonic()
        results = await self._launch(runners, options.stagger_ms, has_priority)
        elapsed = time.monotonic() - started_at

        first_route = None
        if bonding_curve.detected_at is not None:
            first_route = max(bonding_curve.detected_at - started_at, 0.0)

        summary = RunSummary.from_results(results, elapsed, first_route)
        self._log_summary(results, summary)
        metrics.increment_counter("runs_completed")

        if summary.all_succeeded and self.completion_hook is not None:
            await self._notify_completion(summary)

        return RunReport(results=results, summary=summary, bonding_curve=bonding_curve)

    async def _launch(
        self,
        runners: List[WalletSellTask],
        stagger_ms: int,
        has_priority: bool
    ) -> List[SellResult]:
        """Start every runner and wait for all of them, preserving order"""

        async def staggered(runner: WalletSellTask, delay_s: float) -> SellResult:
            if delay_s > 0:
                await asyncio.sleep(delay_s)
            return await runner.run()

        if has_priority:
            first = asyncio.ensure_future(runners[0].run())
            await runners[0].submitted.wait()
            rest = [
                asyncio.ensure_future(staggered(runner, index * stagger_ms / 1000))
                for index, runner in enumerate(runners[1:], start=1)
            ]
            return list(await asyncio.gather(first, *rest))

        futures = [
            asyncio.ensure_future(staggered(runner, index * stagger_ms / 1000))
            for index, runner in enumerate(runners)
        ]
        return list(await asyncio.gather(*futures))

    @staticmethod
    def _order(wallets: List[Wallet], priority_wallet: Optional[str]) -> List[Wallet]:
        ordered = order_priority_first(wallets, priority_wallet)
        if priority_wallet is not None and ordered[0].address != priority_wallet:
            logger.warning("priority_wallet_not_in_set", wallet=short_address(priority_wallet))
        return ordered

    async def _notify_completion(self, summary: RunSummary) -> None:
        try:
            await self.completion_hook(summary)
        except Exception as e:
            logger.error("completion_hook_failed", error=str(e), exc_info=True)

    @staticmethod
    def _log_summary(results: List[SellResult], summary: RunSummary) -> None:
        for index, result in enumerate(results, start=1):
            if result.success:
                logger.info(
                    "wallet_result",
                    index=index,
                    wallet=short_address(result.wallet_address),
                    outcome=result.final_state.value,
                    attempts=result.attempts,
                    signature=result.signature
                )
            else:
                logger.warning(
                    "wallet_result",
                    index=index,
                    wallet=short_address(result.wallet_address),
                    outcome=result.final_state.value,
                    attempts=result.attempts,
                    tokens_detected=result.tokens_detected,
                    route_ever_obtained=result.route_ever_obtained,
                    last_error=result.last_error
                )

        logger.info("rapid_sell_complete", **summary.to_dict())
