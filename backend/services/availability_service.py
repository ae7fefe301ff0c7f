"""Read-only availability queries over the slot calendar."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from backend.domain.constraints import InventoryConfig, validate_date_range, validate_priority
from backend.domain.models import (
    ApplicationItem,
    BannerType,
    DaySummary,
    SearchTopPlan,
    Slot,
    SlotKey,
    SlotStatus,
)
from backend.domain.pricing import PricingEngine
from backend.repository.slot_calendar import SlotCalendar
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iter_dates(date_from: date, date_to: date) -> list[date]:
    return [date_from + timedelta(days=offset) for offset in range((date_to - date_from).days + 1)]


class AvailabilityService:
    """Answers range questions from one calendar snapshot, without taking locks.

    Results are advisory: acquisition re-checks every slot, so a stale read
    can only lead to a conflict, never to a double booking.
    """

    def __init__(
        self,
        calendar: SlotCalendar,
        pricing: PricingEngine,
        config: InventoryConfig,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._calendar = calendar
        self._pricing = pricing
        self._config = config
        self._clock = clock or _utc_now

    def list_slots(
        self,
        banner_type: BannerType,
        date_from: date,
        date_to: date,
    ) -> list[Slot]:
        """Every (date, rank) in the inclusive range, synthesized AVAILABLE where absent."""
        validate_date_range(date_from, date_to, self._config)
        materialized = {
            slot.key: slot
            for slot in self._calendar.list_range(banner_type, date_from, date_to, self._clock())
        }
        slots: list[Slot] = []
        for slot_date in iter_dates(date_from, date_to):
            for rank in range(1, self._config.max_priority(banner_type) + 1):
                key = SlotKey(banner_type=banner_type, slot_date=slot_date, priority=rank)
                slot = materialized.get(key)
                if slot is None:
                    slot = Slot(
                        key=key,
                        status=SlotStatus.AVAILABLE,
                        price=self._pricing.price_for_key(key),
                    )
                slots.append(slot)
        return slots

    def day_summaries(
        self,
        banner_type: BannerType,
        date_from: date,
        date_to: date,
    ) -> list[DaySummary]:
        by_date: dict[date, DaySummary] = {}
        for slot in self.list_slots(banner_type, date_from, date_to):
            summary = by_date.setdefault(
                slot.slot_date,
                DaySummary(slot_date=slot.slot_date, open_ranks=[], taken_ranks=[]),
            )
            if slot.is_available:
                summary.open_ranks.append(slot.priority)
            else:
                summary.taken_ranks.append(slot.priority)
        return [by_date[slot_date] for slot_date in sorted(by_date)]

    def is_rank_open(self, slot_date: date, rank: int) -> bool:
        """HERO: a rank is open when its slot is AVAILABLE."""
        validate_priority(BannerType.HERO, rank, self._config)
        key = SlotKey(banner_type=BannerType.HERO, slot_date=slot_date, priority=rank)
        return self._calendar.get(key, self._clock()).is_available

    def is_date_exhausted(self, slot_date: date) -> bool:
        """SEARCH_TOP: exhausted once every rank of the day is taken."""
        summary = self.day_summaries(BannerType.SEARCH_TOP, slot_date, slot_date)[0]
        return summary.is_exhausted

    def is_range_fully_available(self, date_from: date, date_to: date) -> bool:
        """SEARCH_TOP: every date in the inclusive span keeps at least one open rank."""
        return not any(
            summary.is_exhausted
            for summary in self.day_summaries(BannerType.SEARCH_TOP, date_from, date_to)
        )

    def plan_search_top_items(self, date_from: date, date_to: date) -> SearchTopPlan:
        """Pick the best open rank per date and skip exhausted dates.

        The resulting items are what a client submits; pricing only counts
        days that were actually open.
        """
        items: list[ApplicationItem] = []
        skipped: list[date] = []
        for summary in self.day_summaries(BannerType.SEARCH_TOP, date_from, date_to):
            if summary.is_exhausted:
                skipped.append(summary.slot_date)
                continue
            rank = min(summary.open_ranks)
            items.append(
                ApplicationItem(
                    slot_date=summary.slot_date,
                    priority=rank,
                    price=self._pricing.price(BannerType.SEARCH_TOP, rank),
                )
            )
        total = self._pricing.total_amount(BannerType.SEARCH_TOP, items)
        logger.debug(
            "Planned %s SEARCH_TOP days (%s skipped) totalling %s",
            len(items),
            len(skipped),
            total,
        )
        return SearchTopPlan(items=items, skipped_dates=skipped, total_amount=total)
