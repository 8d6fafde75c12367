"""
Sale pipeline - one scheduler tick.

fetch -> dedup/filter -> persist -> auto-post -> advance cursor.
The scheduler state goes in and comes back out; persisting it is up to
the caller.
"""

import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..core.events import EventBus, EventType
from ..core.exceptions import StoreError, TransientFetchError
from ..core.interfaces import (
    SaleEvent,
    SaleFormatter,
    SalesSource,
    SchedulerState,
    TickReport,
    TransactionCategory,
)
from .publisher import Publisher
from .sale_filter import SaleFilter
from .store import SalesStore
from .tiers import TierClassifier

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """New scheduler state plus what happened during the tick."""
    state: SchedulerState
    report: TickReport


def parse_block_timestamp(value: Optional[str]) -> Optional[float]:
    """Parse a Moralis ISO-8601 block timestamp into epoch seconds."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


class SalePipeline:
    """Runs a single fetch/filter/persist/post cycle."""

    def __init__(
        self,
        source: SalesSource,
        store: SalesStore,
        sale_filter: SaleFilter,
        classifier: TierClassifier,
        formatter: SaleFormatter,
        publisher: Publisher,
        event_bus: Optional[EventBus] = None,
        auto_post_enabled: Callable[[], bool] = lambda: False,
        max_age_hours: Callable[[], float] = lambda: 1.0,
        clock: Callable[[], float] = time.time,
    ):
        self.source = source
        self.store = store
        self.sale_filter = sale_filter
        self.classifier = classifier
        self.formatter = formatter
        self.publisher = publisher
        self.event_bus = event_bus
        self.auto_post_enabled = auto_post_enabled
        self.max_age_hours = max_age_hours
        self.clock = clock

    async def _emit(self, event_type: EventType, **data) -> None:
        if self.event_bus:
            await self.event_bus.emit(event_type, **data)

    def is_recent(self, sale: SaleEvent, now: float) -> bool:
        """True when the sale's block is within the auto-post age window."""
        ts = parse_block_timestamp(sale.block_timestamp)
        if ts is None:
            return False
        return now - ts <= self.max_age_hours() * 3600

    def should_auto_post(self, sale: SaleEvent, now: float) -> Optional[str]:
        """Return the reason a sale is not auto-posted, or None if it should be."""
        if not self.classifier.is_auto_post_eligible(sale, TransactionCategory.SALES):
            tier = self.classifier.tier_for_sale(sale, TransactionCategory.SALES)
            return f"below tier {tier.level} floor of {tier.min_eth} ETH"
        if not self.is_recent(sale, now):
            return f"older than {self.max_age_hours()} hours"
        return None

    async def tick(self, state: SchedulerState) -> TickResult:
        """Run one cycle. Never raises for fetch or store failures."""
        report = TickReport()
        now = self.clock()

        try:
            sales, source_cursor = await self.source.fetch_sales_since(state.cursor)
            report.fetched = len(sales)
            for sale in sales:
                await self._emit(EventType.SALE_DETECTED, **sale.to_dict())

            result = self.sale_filter.apply(sales, self.store.is_sale_known)
            report.duplicates = result.duplicates
            report.below_price = result.below_price
            report.below_block = result.below_block

            stored: List[SaleEvent] = []
            for sale in result.accepted:
                saved = self.store.insert_sale(sale)
                if saved is None:
                    report.duplicates += 1
                    continue
                stored.append(saved)
                await self._emit(EventType.SALE_ACCEPTED, **saved.to_dict())
            report.accepted = len(stored)
        except (TransientFetchError, StoreError) as e:
            kind = type(e).__name__
            logger.warning(f"Tick failed ({kind}): {e}")
            report.error = f"{kind}: {e}"
            new_state = replace(
                state,
                consecutive_errors=state.consecutive_errors + 1,
                last_run_at=now,
                last_result=report.to_dict(),
            )
            await self._emit(EventType.TICK_FAILED, error=report.error,
                             consecutive_errors=new_state.consecutive_errors)
            return TickResult(state=new_state, report=report)

        if self.auto_post_enabled():
            for sale in stored:
                reason = self.should_auto_post(sale, now)
                if reason:
                    logger.debug(f"Not auto-posting {sale.name}: {reason}")
                    continue
                outcome = await self.publisher.publish(self.formatter.format(sale), sale.id)
                report.results.append(outcome.to_dict())
                if outcome.success:
                    report.posted += 1
                elif outcome.skipped:
                    report.skipped += 1
                else:
                    report.failed += 1

        new_state = replace(
            state,
            # the source reports how far ingestion is complete
            cursor=max(state.cursor, source_cursor),
            consecutive_errors=0,
            last_run_at=now,
            last_result=report.to_dict(),
        )

        logger.info(
            f"[TICK] fetched={report.fetched} accepted={report.accepted} "
            f"duplicates={report.duplicates} posted={report.posted} "
            f"skipped={report.skipped} failed={report.failed} cursor={new_state.cursor}"
        )
        await self._emit(EventType.TICK_COMPLETED, cursor=new_state.cursor, **report.to_dict())
        return TickResult(state=new_state, report=report)
