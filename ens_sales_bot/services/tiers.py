"""
Price tier classification.

Each transaction category has four USD bands [min, max) that partition
[0, inf). Every band carries an ETH floor for auto-post eligibility.
"""

import logging
from typing import Dict, Iterable, List

from ..core.exceptions import ConfigurationError
from ..core.interfaces import PriceTier, SaleEvent, TransactionCategory

logger = logging.getLogger(__name__)

TIER_COUNT = 4


def validate_tiers(category: TransactionCategory, tiers: Iterable[PriceTier]) -> List[PriceTier]:
    """Return the bands sorted by min_usd, or raise ConfigurationError."""
    bands = sorted(tiers, key=lambda t: t.min_usd)
    name = category.value

    if len(bands) != TIER_COUNT:
        raise ConfigurationError(f"{name}: expected {TIER_COUNT} tiers, got {len(bands)}")

    if bands[0].min_usd != 0:
        raise ConfigurationError(f"{name}: lowest tier must start at 0, starts at {bands[0].min_usd}")

    for i, band in enumerate(bands):
        if band.category != category:
            raise ConfigurationError(f"{name}: tier {band.level} belongs to {band.category.value}")
        if band.min_eth < 0:
            raise ConfigurationError(f"{name}: tier {band.level} has negative min_eth")

        is_top = i == len(bands) - 1
        if is_top:
            if band.max_usd is not None:
                raise ConfigurationError(f"{name}: top tier must be unbounded, has max {band.max_usd}")
            continue

        if band.max_usd is None:
            raise ConfigurationError(f"{name}: only the top tier may be unbounded (tier {band.level})")
        if band.max_usd <= band.min_usd:
            raise ConfigurationError(f"{name}: tier {band.level} has max {band.max_usd} <= min {band.min_usd}")

        next_min = bands[i + 1].min_usd
        if band.max_usd < next_min:
            raise ConfigurationError(f"{name}: gap between {band.max_usd} and {next_min}")
        if band.max_usd > next_min:
            raise ConfigurationError(f"{name}: overlap between {next_min} and {band.max_usd}")

    levels = sorted(b.level for b in bands)
    if levels != list(range(1, TIER_COUNT + 1)):
        raise ConfigurationError(f"{name}: tier levels must be 1..{TIER_COUNT}, got {levels}")

    return bands


class TierClassifier:
    """Maps USD amounts to price tiers. Validates every category at load time."""

    def __init__(self, tiers: Iterable[PriceTier]):
        grouped: Dict[TransactionCategory, List[PriceTier]] = {}
        for tier in tiers:
            grouped.setdefault(tier.category, []).append(tier)

        self._tiers: Dict[TransactionCategory, List[PriceTier]] = {}
        for category, bands in grouped.items():
            self._tiers[category] = validate_tiers(category, bands)

    def categories(self) -> List[TransactionCategory]:
        return list(self._tiers)

    def tiers_for(self, category: TransactionCategory) -> List[PriceTier]:
        if category not in self._tiers:
            raise ConfigurationError(f"No price tiers configured for {category.value}")
        return list(self._tiers[category])

    def classify(self, usd_amount: float, category: TransactionCategory = TransactionCategory.SALES) -> PriceTier:
        """Return the tier whose [min, max) band contains the amount."""
        if usd_amount < 0:
            raise ValueError(f"USD amount cannot be negative: {usd_amount}")

        for tier in self.tiers_for(category):
            if tier.contains(usd_amount):
                return tier

        # unreachable for a validated partition
        raise ConfigurationError(f"No {category.value} tier contains {usd_amount}")

    def tier_index(self, usd_amount: float, category: TransactionCategory = TransactionCategory.SALES) -> int:
        """Zero-based position of the matching tier."""
        tier = self.classify(usd_amount, category)
        return self._tiers[category].index(tier)

    def tier_for_sale(self, sale: SaleEvent, category: TransactionCategory = TransactionCategory.SALES) -> PriceTier:
        return self.classify(sale.price_usd or 0.0, category)

    def is_auto_post_eligible(self, sale: SaleEvent, category: TransactionCategory = TransactionCategory.SALES) -> bool:
        """True if the sale meets the ETH floor of its USD tier."""
        tier = self.tier_for_sale(sale, category)
        eligible = sale.price_eth >= tier.min_eth
        if not eligible:
            logger.debug(
                f"{sale.name}: {sale.price_eth} ETH below tier {tier.level} floor {tier.min_eth} ETH"
            )
        return eligible
