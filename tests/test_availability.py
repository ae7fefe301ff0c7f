from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from backend.domain.constraints import InventoryConfig
from backend.domain.errors import ReservationValidationError
from backend.domain.models import ApplicationItem, BannerType, ReservationRequest, SlotStatus
from backend.domain.pricing import PricingEngine
from backend.repository.application_ledger import ApplicationLedger
from backend.repository.data_repository import DataRepository
from backend.repository.slot_calendar import SlotCalendar
from backend.services.availability_service import AvailabilityService
from backend.services.reservation_service import ReservationService
from backend.utils.config import get_settings


def _build_services(tmp_path, clock, filename: str = "availability.db"):
    get_settings.cache_clear()
    settings = replace(get_settings(), database_path=tmp_path / filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    config = InventoryConfig.from_settings(settings)
    pricing = PricingEngine(config)
    calendar = SlotCalendar(repository, pricing)
    availability = AvailabilityService(calendar, pricing, config, clock=clock)
    reservation = ReservationService(
        calendar, ApplicationLedger(repository), pricing, config, clock=clock
    )
    return availability, reservation


def _hold(
    reservation: ReservationService,
    banner_type: BannerType,
    pairs: list[tuple[date, int]],
    event_id: int = 1,
    lock_minutes: int | None = None,
) -> int:
    return reservation.submit(
        ReservationRequest(
            event_id=event_id,
            banner_type=banner_type,
            title="Spring Expo",
            image_url="https://cdn.example.com/banner.png",
            items=[ApplicationItem(slot_date, priority) for slot_date, priority in pairs],
            lock_minutes=lock_minutes,
        )
    ).application_id


def test_list_slots_returns_full_grid(tmp_path, clock) -> None:
    availability, _ = _build_services(tmp_path, clock)
    slots = availability.list_slots(BannerType.HERO, date(2025, 3, 1), date(2025, 3, 2))

    assert len(slots) == 20
    assert [(slot.slot_date.day, slot.priority) for slot in slots[:3]] == [(1, 1), (1, 2), (1, 3)]
    assert all(slot.status is SlotStatus.AVAILABLE for slot in slots)
    assert slots[0].price == 2_500_000
    assert slots[9].price == 600_000


def test_list_slots_reflects_locks(tmp_path, clock) -> None:
    availability, reservation = _build_services(tmp_path, clock)
    _hold(reservation, BannerType.SEARCH_TOP, [(date(2025, 5, 2), 2)])

    slots = availability.list_slots(BannerType.SEARCH_TOP, date(2025, 5, 1), date(2025, 5, 3))

    assert len(slots) == 6
    statuses = {(slot.slot_date.day, slot.priority): slot.status for slot in slots}
    assert statuses[(2, 2)] is SlotStatus.LOCKED
    assert statuses[(2, 1)] is SlotStatus.AVAILABLE


def test_lock_expiry_makes_slot_available_without_reaper(tmp_path, clock) -> None:
    availability, reservation = _build_services(tmp_path, clock)
    day = date(2025, 3, 10)
    _hold(reservation, BannerType.HERO, [(day, 1)], event_id=1, lock_minutes=1)

    assert availability.is_rank_open(day, 1) is False

    clock.advance(minutes=2)
    assert availability.is_rank_open(day, 1) is True
    assert availability.list_slots(BannerType.HERO, day, day)[0].status is SlotStatus.AVAILABLE

    # Another event can now take the slot.
    _hold(reservation, BannerType.HERO, [(day, 1)], event_id=2)
    assert availability.is_rank_open(day, 1) is False


def test_search_top_hold_lapses_back_to_available(tmp_path, clock) -> None:
    availability, reservation = _build_services(tmp_path, clock)
    day = date(2025, 4, 10)
    _hold(reservation, BannerType.SEARCH_TOP, [(day, 1)], event_id=1, lock_minutes=1)

    summary = availability.day_summaries(BannerType.SEARCH_TOP, day, day)[0]
    assert summary.taken_ranks == [1]

    clock.advance(minutes=2)
    slots = availability.list_slots(BannerType.SEARCH_TOP, day, day)
    assert [(slot.priority, slot.status) for slot in slots] == [
        (1, SlotStatus.AVAILABLE),
        (2, SlotStatus.AVAILABLE),
    ]
    assert availability.day_summaries(BannerType.SEARCH_TOP, day, day)[0].open_ranks == [1, 2]

    _hold(reservation, BannerType.SEARCH_TOP, [(day, 1)], event_id=2)
    summary = availability.day_summaries(BannerType.SEARCH_TOP, day, day)[0]
    assert summary.taken_ranks == [1]
    assert summary.open_ranks == [2]


def test_reversed_range_rejected(tmp_path, clock) -> None:
    availability, _ = _build_services(tmp_path, clock)
    with pytest.raises(ReservationValidationError):
        availability.list_slots(BannerType.HERO, date(2025, 3, 5), date(2025, 3, 1))


def test_is_rank_open_rejects_invalid_rank(tmp_path, clock) -> None:
    availability, _ = _build_services(tmp_path, clock)
    with pytest.raises(ReservationValidationError):
        availability.is_rank_open(date(2025, 3, 1), 11)


def test_search_top_date_exhausted_when_both_ranks_taken(tmp_path, clock) -> None:
    availability, reservation = _build_services(tmp_path, clock)
    day = date(2025, 5, 2)
    _hold(reservation, BannerType.SEARCH_TOP, [(day, 1)], event_id=1)
    assert availability.is_date_exhausted(day) is False

    _hold(reservation, BannerType.SEARCH_TOP, [(day, 2)], event_id=2)
    assert availability.is_date_exhausted(day) is True
    assert availability.is_range_fully_available(date(2025, 5, 1), date(2025, 5, 3)) is False
    assert availability.is_range_fully_available(date(2025, 5, 3), date(2025, 5, 4)) is True


def test_day_summaries_split_open_and_taken_ranks(tmp_path, clock) -> None:
    availability, reservation = _build_services(tmp_path, clock)
    _hold(reservation, BannerType.SEARCH_TOP, [(date(2025, 5, 1), 1)])

    summaries = availability.day_summaries(BannerType.SEARCH_TOP, date(2025, 5, 1), date(2025, 5, 2))

    assert [summary.slot_date for summary in summaries] == [date(2025, 5, 1), date(2025, 5, 2)]
    assert summaries[0].open_ranks == [2]
    assert summaries[0].taken_ranks == [1]
    assert summaries[1].open_ranks == [1, 2]


def test_plan_skips_exhausted_dates_and_prices_open_days(tmp_path, clock) -> None:
    availability, reservation = _build_services(tmp_path, clock)
    blocked = date(2025, 5, 2)
    _hold(reservation, BannerType.SEARCH_TOP, [(blocked, 1)], event_id=1)
    _hold(reservation, BannerType.SEARCH_TOP, [(blocked, 2)], event_id=2)
    _hold(reservation, BannerType.SEARCH_TOP, [(date(2025, 5, 3), 1)], event_id=3)

    plan = availability.plan_search_top_items(date(2025, 5, 1), date(2025, 5, 3))

    assert plan.skipped_dates == [blocked]
    assert [(item.slot_date, item.priority) for item in plan.items] == [
        (date(2025, 5, 1), 1),
        (date(2025, 5, 3), 2),
    ]
    assert plan.total_amount == 2 * 500_000

    # The plan is directly submittable.
    application_id = reservation.submit(
        ReservationRequest(
            event_id=4,
            banner_type=BannerType.SEARCH_TOP,
            title="Spring Expo",
            image_url="https://cdn.example.com/banner.png",
            items=plan.items,
        )
    ).application_id
    assert reservation.get_application(application_id).total_amount == plan.total_amount


def test_plan_over_fully_booked_range_is_empty(tmp_path, clock) -> None:
    availability, reservation = _build_services(tmp_path, clock)
    day = date(2025, 5, 2)
    _hold(reservation, BannerType.SEARCH_TOP, [(day, 1), (day, 2)])

    plan = availability.plan_search_top_items(day, day)

    assert plan.items == []
    assert plan.skipped_dates == [day]
    assert plan.total_amount == 0
