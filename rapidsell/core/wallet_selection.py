"""
Eligibility helpers callers apply before handing wallets to the orchestrator
"""

import math
from typing import Iterable, List, Optional, Sequence, Tuple

from rapidsell.core.models import Wallet, WalletRole


def dedupe(wallets: Iterable[Wallet]) -> List[Wallet]:
    """Drop repeated addresses, keeping the first occurrence"""
    seen = set()
    unique = []
    for wallet in wallets:
        if wallet.address in seen:
            continue
        seen.add(wallet.address)
        unique.append(wallet)
    return unique


def order_priority_first(wallets: Iterable[Wallet], priority_address: Optional[str]) -> List[Wallet]:
    """
    Put the priority wallet (usually the creator) first and drop duplicates

    A creator key that also appears among bundle or holder keys is sold
    once, as the priority wallet.
    """
    unique = dedupe(wallets)
    if priority_address is None:
        return unique

    first = [w for w in unique if w.address == priority_address]
    return first + [w for w in unique if w.address != priority_address]


def select_roles(wallets: Iterable[Wallet], roles: Iterable[WalletRole]) -> List[Wallet]:
    """Keep wallets whose role is in roles"""
    wanted = set(roles)
    return [w for w in wallets if w.role in wanted]


def exclude_addresses(wallets: Iterable[Wallet], addresses: Iterable[str]) -> List[Wallet]:
    """Drop wallets already handled elsewhere (e.g. sold in an earlier partial sell)"""
    skip = set(addresses)
    return [w for w in wallets if w.address not in skip]


def select_top_half_by_buy_amount(
    wallets: Sequence[Wallet],
    default_buy_amount_sol: float = 0.3
) -> List[Wallet]:
    """
    Pick the larger half of the bundle wallets by buy amount

    Creator wallets are never part of a partial sell. With an odd count
    the extra wallet is sold too (5 wallets -> 3 sold).

    Args:
        wallets: Candidate wallets
        default_buy_amount_sol: Amount assumed when a wallet has none recorded

    Returns:
        Wallets to sell, largest buy first
    """
    candidates = [w for w in dedupe(wallets) if w.role != WalletRole.CREATOR]
    if not candidates:
        return []

    ranked = sorted(
        candidates,
        key=lambda w: w.buy_amount_sol if w.buy_amount_sol is not None else default_buy_amount_sol,
        reverse=True
    )
    return ranked[:math.ceil(len(ranked) / 2)]


def select_stage(
    wallets: Sequence[Wallet],
    stage: int,
    percentages: Tuple[float, float] = (30.0, 30.0),
    default_buy_amount_sol: float = 0.3
) -> List[Wallet]:
    """
    Pick the wallets for one stage of a three-stage sell

    Bundle wallets are ranked by buy amount, largest first. Stage 1 takes
    the first ceil(n * p1 / 100), stage 2 the next ceil(n * p2 / 100), and
    stage 3 the rest followed by the creator wallet, which is always sold
    last and only in stage 3.

    Args:
        wallets: Candidate wallets
        stage: 1, 2 or 3
        percentages: Shares of the bundle wallets sold in stages 1 and 2
        default_buy_amount_sol: Amount assumed when a wallet has none recorded

    Returns:
        Wallets to sell in this stage, in launch order
    """
    if stage not in (1, 2, 3):
        raise ValueError(f"stage must be 1, 2 or 3, got {stage}")
    first_pct, second_pct = percentages
    if first_pct < 0 or second_pct < 0 or first_pct + second_pct > 100:
        raise ValueError(f"Invalid stage percentages: {percentages}")

    unique = dedupe(wallets)
    creators = [w for w in unique if w.role == WalletRole.CREATOR]
    ranked = sorted(
        [w for w in unique if w.role != WalletRole.CREATOR],
        key=lambda w: w.buy_amount_sol if w.buy_amount_sol is not None else default_buy_amount_sol,
        reverse=True
    )

    first_count = math.ceil(len(ranked) * first_pct / 100)
    second_count = math.ceil(len(ranked) * second_pct / 100)

    if stage == 1:
        return ranked[:first_count]
    if stage == 2:
        return ranked[first_count:first_count + second_count]
    return ranked[first_count + second_count:] + creators
