"""
Priority fee tiers for sell transactions
Fee tier only changes cost and inclusion speed, never engine behaviour
"""

import random
from enum import Enum
from typing import Dict, Optional


class PriorityFeeTier(Enum):
    """Priority fee level requested by the trigger"""
    NONE = "none"      # base fee only
    LOW = "low"        # manual / cheap sells
    MEDIUM = "medium"  # rapid sell default
    HIGH = "high"      # market-cap threshold triggers
    ULTRA = "ultra"    # fastest possible inclusion

    @classmethod
    def parse(cls, value) -> "PriorityFeeTier":
        """Accept a tier or its case-insensitive name"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown priority fee tier '{value}' (expected one of: {valid})")


# lamports
DEFAULT_TIER_LAMPORTS: Dict[PriorityFeeTier, int] = {
    PriorityFeeTier.NONE: 0,
    PriorityFeeTier.LOW: 100_000,
    PriorityFeeTier.MEDIUM: 500_000,
    PriorityFeeTier.HIGH: 5_000_000,
    PriorityFeeTier.ULTRA: 10_000_000,
}

LAMPORTS_PER_SOL = 1_000_000_000


def randomized_fee(
    tier: PriorityFeeTier,
    lamports: int,
    rng: Optional[random.Random] = None
) -> int:
    """
    Vary a tier's fee per submission so wallets don't pay identical fees

    Variation narrows as the fee grows: expensive tiers stay close to
    their target, cheap tiers are drawn from a wide low range.

    Args:
        tier: Requested tier
        lamports: Configured lamports for the tier
        rng: Optional random source (for tests)

    Returns:
        Fee in lamports to attach to the swap
    """
    rng = rng or random

    if tier == PriorityFeeTier.NONE:
        return 100 + int(rng.random() * 4_900)

    if lamports >= 5_000_000:
        spread = 0.02
    elif lamports >= 1_000_000:
        spread = 0.05
    elif lamports >= 100_000:
        spread = 0.20
    else:
        return 1_000 + int(rng.random() * 74_000)

    variation = rng.random() * (2 * spread) - spread
    return int(lamports * (1 + variation))


class PriorityFeeSchedule:
    """Resolves the fee to attach to each sell transaction"""

    def __init__(
        self,
        tier: PriorityFeeTier = PriorityFeeTier.MEDIUM,
        tier_lamports: Optional[Dict[PriorityFeeTier, int]] = None,
        randomize: bool = True,
        rng: Optional[random.Random] = None
    ):
        self.tier = tier
        self.tier_lamports = dict(DEFAULT_TIER_LAMPORTS)
        if tier_lamports:
            self.tier_lamports.update(tier_lamports)
        self.randomize = randomize
        self._rng = rng

    @property
    def base_lamports(self) -> int:
        return self.tier_lamports[self.tier]

    def next_fee(self) -> int:
        """Fee in lamports for the next submission"""
        if not self.randomize:
            return self.base_lamports
        return randomized_fee(self.tier, self.base_lamports, self._rng)

    def describe(self) -> str:
        return f"{self.tier.value} ({self.base_lamports / LAMPORTS_PER_SOL:.4f} SOL)"
