"""
Dedup/filter stage for incoming sale batches.

Drops sales that are already stored (or repeated inside the batch),
below the ETH price floor, or below the block-height floor.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Set

from ..core.interfaces import SaleEvent

logger = logging.getLogger(__name__)


@dataclass
class FilterResult:
    """Accepted sales plus rejection counters."""
    accepted: List[SaleEvent] = field(default_factory=list)
    duplicates: int = 0
    below_price: int = 0
    below_block: int = 0


class SaleFilter:
    """Pure filter over a batch of sales; the caller persists what it accepts."""

    def __init__(self, min_price_eth: float, min_block_number: int):
        self.min_price_eth = min_price_eth
        self.min_block_number = min_block_number

    def apply(self, batch: Iterable[SaleEvent], is_known: Callable[[str], bool]) -> FilterResult:
        """
        Filter a batch, keeping input order.

        is_known answers whether a transaction hash is already stored.
        """
        result = FilterResult()
        seen: Set[str] = set()

        for sale in batch:
            tx_hash = sale.transaction_hash
            if not tx_hash or tx_hash in seen or is_known(tx_hash):
                result.duplicates += 1
                logger.debug(f"Skipping duplicate sale: {tx_hash}")
                continue
            seen.add(tx_hash)

            if sale.block_number < self.min_block_number:
                result.below_block += 1
                logger.debug(f"Skipping sale below block floor {self.min_block_number}: {tx_hash}")
                continue

            if sale.price_eth < self.min_price_eth:
                result.below_price += 1
                logger.debug(f"Filtering out sale below {self.min_price_eth} ETH: {sale.price_eth} ETH (tx: {tx_hash})")
                continue

            result.accepted.append(sale)

        return result
