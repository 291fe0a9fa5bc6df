#!/usr/bin/env python3
"""
Rapid sell: dump every wallet's balance of a freshly launched token

Usage:
    rapidsell --config config/config.yml --keys keys.json --mint <MINT>
    rapidsell --config config/config.yml --keys keys.json --mint <MINT> \\
        --priority-fee high --stagger-ms 50 --initial-delay-ms 200
    rapidsell --config config/config.yml --keys keys.json --mint <MINT> --stage 1
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from rapidsell.clients.jupiter_client import JupiterClient
from rapidsell.clients.solana_rpc import SolanaRpcClient
from rapidsell.clients.submission import SwapSubmissionChannel
from rapidsell.core.backoff import BackoffPolicy
from rapidsell.core.config import ConfigurationManager, EngineConfig
from rapidsell.core.logger import setup_logging, get_logger, short_address
from rapidsell.core.metrics import configure_metrics, get_metrics
from rapidsell.core.models import RunSummary, Wallet, WalletRole
from rapidsell.core.orchestrator import RapidSellOrchestrator, SellOptions
from rapidsell.core.priority_fees import PriorityFeeSchedule, PriorityFeeTier
from rapidsell.core.rate_limiter import RateLimiter
from rapidsell.core.wallet_loader import load_wallets
from rapidsell.core.wallet_selection import dedupe, select_stage


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Parallel rapid sell across many wallets")
    parser.add_argument('--config', type=str, default='config/config.yml', help='Config file (default: config/config.yml)')
    parser.add_argument('--env-file', type=str, default=None, help='Optional .env file for ${VAR} substitution')
    parser.add_argument('--keys', type=str, required=True, help='JSON key file (list of {"secret_key", "role"})')
    parser.add_argument('--mint', type=str, required=True, help='Token mint to sell')
    parser.add_argument('--priority-fee', type=str, default=None,
                        choices=[tier.value for tier in PriorityFeeTier],
                        help='Priority fee tier (default: from config)')
    parser.add_argument('--initial-delay-ms', type=int, default=None, help='Wait before starting any wallet')
    parser.add_argument('--stagger-ms', type=int, default=None, help='Delay between wallet starts')
    parser.add_argument('--max-retries', type=int, default=None, help='Attempt budget per wallet')
    parser.add_argument('--priority-wallet', type=str, default=None,
                        help='Address launched before all others (default: the creator wallet)')
    parser.add_argument('--stage', type=int, default=None, choices=[1, 2, 3],
                        help='Staged sell: largest bundle wallets first, creator last in stage 3')
    parser.add_argument('--stage-percentages', type=float, nargs=2, default=[30.0, 30.0],
                        metavar=('P1', 'P2'), help='Shares of bundle wallets sold in stages 1 and 2')
    return parser


def resolve_priority_wallet(
    wallets: List[Wallet],
    explicit: Optional[str],
    priority_first: bool
) -> Optional[str]:
    """Explicit address wins; otherwise the creator wallet when priority_first is on"""
    if explicit:
        return explicit
    if not priority_first:
        return None
    for wallet in wallets:
        if wallet.role == WalletRole.CREATOR and wallet.eligible:
            return wallet.address
    return None


def print_summary(summary: RunSummary) -> None:
    print("\n" + "=" * 60)
    print("RAPID SELL SUMMARY")
    print("=" * 60)
    print(f"Wallets:          {summary.total}")
    print(f"Successful:       {summary.successful}")
    print(f"Failed:           {summary.failed}")
    print(f"Average attempts: {summary.average_attempts:.1f}")
    print(f"Elapsed:          {summary.elapsed_s:.2f}s")
    if summary.time_to_first_route_s is not None:
        print(f"First route after {summary.time_to_first_route_s:.2f}s")
    else:
        print("No route was ever obtained")
    print("=" * 60)


async def run(args: argparse.Namespace, config: EngineConfig) -> int:
    logger = get_logger("rapidsell")

    wallets = dedupe(load_wallets(args.keys))
    priority_first = config.sell_config.priority_first
    if args.stage is not None:
        wallets = select_stage(wallets, args.stage, tuple(args.stage_percentages))
        # Stage 3 sells the creator last
        priority_first = False
        logger.info("stage_selected", stage=args.stage, wallets=len(wallets))
        if not wallets:
            print(f"No wallets to sell in stage {args.stage}")
            return 0

    priority_wallet = resolve_priority_wallet(wallets, args.priority_wallet, priority_first)

    fee_config = config.fee_config
    tier = PriorityFeeTier.parse(args.priority_fee) if args.priority_fee else fee_config.tier
    fee_schedule = PriorityFeeSchedule(
        tier=tier,
        tier_lamports=fee_config.tier_lamports,
        randomize=fee_config.randomize
    )

    rpc = SolanaRpcClient(config.rpc_config)
    jupiter = JupiterClient(config.jupiter_config)
    channel = SwapSubmissionChannel(rpc, jupiter, fee_schedule)
    limiter = RateLimiter(config.rpc_config.ceiling_rps)

    options = SellOptions.from_config(
        config,
        initial_delay_ms=args.initial_delay_ms,
        stagger_ms=args.stagger_ms,
        max_retries=args.max_retries,
        priority_wallet=priority_wallet
    )

    logger.info(
        "rapid_sell_configured",
        mint=short_address(args.mint),
        wallets=len(wallets),
        priority_fee=fee_schedule.describe(),
        priority_wallet=short_address(priority_wallet) if priority_wallet else None
    )

    orchestrator = RapidSellOrchestrator(
        accounts=rpc,
        quotes=jupiter,
        channel=channel,
        limiter=limiter,
        policy=BackoffPolicy.from_config(config.backoff_config)
    )

    try:
        report = await orchestrator.execute(wallets, args.mint, options)
    finally:
        await rpc.close()
        await jupiter.close()

    print_summary(report.summary)
    logger.debug("metrics_snapshot", **get_metrics().export_metrics())
    return 0 if report.summary.all_succeeded else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = ConfigurationManager(args.config, env_file=args.env_file).load_config()
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(
        level=config.log_config.level,
        format=config.log_config.format,
        output_file=config.log_config.output_file
    )
    configure_metrics(config.metrics_config.enable_histogram)

    try:
        return asyncio.run(run(args, config))
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
