from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta

import pytest

from backend.domain.constraints import InventoryConfig
from backend.domain.errors import LockExpiredError
from backend.domain.models import BannerType, SlotKey, SlotStatus
from backend.domain.pricing import PricingEngine
from backend.repository.data_repository import DataRepository
from backend.repository.slot_calendar import SlotCalendar
from backend.utils.config import get_settings


HERO_KEY = SlotKey(BannerType.HERO, date(2025, 3, 1), 1)


def _build_calendar(tmp_path, filename: str = "calendar.db") -> SlotCalendar:
    get_settings.cache_clear()
    settings = replace(get_settings(), database_path=tmp_path / filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    return SlotCalendar(repository, PricingEngine(InventoryConfig.from_settings(settings)))


def test_unmaterialized_slot_is_available_at_standard_price(tmp_path) -> None:
    calendar = _build_calendar(tmp_path)
    slot = calendar.get(HERO_KEY)
    assert slot.status is SlotStatus.AVAILABLE
    assert slot.price == 2_500_000
    assert slot.holder is None
    assert calendar.list_range(BannerType.HERO, date(2025, 3, 1), date(2025, 3, 31)) == []


def test_compare_and_lock_refuses_second_holder(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    until = now + timedelta(minutes=30)

    assert calendar.compare_and_lock(HERO_KEY, "holder-a", until, now) is True
    assert calendar.compare_and_lock(HERO_KEY, "holder-b", until, now) is False

    slot = calendar.get(HERO_KEY, now)
    assert slot.status is SlotStatus.LOCKED
    assert slot.holder == "holder-a"
    assert slot.locked_until == until


def test_same_holder_cannot_relock_live_lock(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    assert calendar.compare_and_lock(HERO_KEY, "holder-a", now + timedelta(minutes=5), now)
    assert not calendar.compare_and_lock(HERO_KEY, "holder-a", now + timedelta(minutes=5), now)


def test_expired_lock_can_be_acquired_by_another_holder(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    start = clock()
    assert calendar.compare_and_lock(HERO_KEY, "holder-a", start + timedelta(minutes=1), start)

    later = clock.advance(minutes=2)
    assert calendar.compare_and_lock(HERO_KEY, "holder-b", later + timedelta(minutes=1), later)
    assert calendar.get(HERO_KEY, later).holder == "holder-b"


def test_expired_lock_reads_as_available_at_exact_deadline(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    start = clock()
    calendar.compare_and_lock(HERO_KEY, "holder-a", start + timedelta(minutes=10), start)

    just_before = start + timedelta(minutes=10) - timedelta(seconds=1)
    assert calendar.get(HERO_KEY, just_before).status is SlotStatus.LOCKED
    assert calendar.get(HERO_KEY, start + timedelta(minutes=10)).status is SlotStatus.AVAILABLE
    # Without a reference time the raw stored state is returned.
    assert calendar.get(HERO_KEY).status is SlotStatus.LOCKED


def test_sold_slot_is_never_reacquired(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    calendar.compare_and_lock(HERO_KEY, "holder-a", now + timedelta(minutes=5), now)
    calendar.mark_sold(HERO_KEY, "holder-a", now)

    far_future = now + timedelta(days=30)
    assert not calendar.compare_and_lock(HERO_KEY, "holder-b", far_future, far_future)
    assert calendar.get(HERO_KEY, far_future).status is SlotStatus.SOLD


def test_release_unlocked_slot_is_noop(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    assert calendar.release(HERO_KEY, clock()) is False


def test_release_guarded_by_holder(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    calendar.compare_and_lock(HERO_KEY, "holder-a", now + timedelta(minutes=5), now)

    assert calendar.release(HERO_KEY, now, holder="holder-b") is False
    assert calendar.get(HERO_KEY, now).status is SlotStatus.LOCKED
    assert calendar.release(HERO_KEY, now, holder="holder-a") is True
    assert calendar.get(HERO_KEY, now).status is SlotStatus.AVAILABLE


def test_release_guarded_by_expiry(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    calendar.compare_and_lock(HERO_KEY, "holder-a", now + timedelta(minutes=5), now)
    assert calendar.release(HERO_KEY, now, expired_before=now) is False
    later = now + timedelta(minutes=5)
    assert calendar.release(HERO_KEY, later, expired_before=later) is True


def test_release_does_not_touch_sold_slot(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    calendar.compare_and_lock(HERO_KEY, "holder-a", now + timedelta(minutes=5), now)
    calendar.mark_sold(HERO_KEY, "holder-a", now)
    assert calendar.release(HERO_KEY, now) is False
    assert calendar.get(HERO_KEY).status is SlotStatus.SOLD


def test_mark_sold_by_wrong_holder_raises(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    calendar.compare_and_lock(HERO_KEY, "holder-a", now + timedelta(minutes=5), now)
    with pytest.raises(LockExpiredError):
        calendar.mark_sold(HERO_KEY, "holder-b", now)


def test_mark_sold_after_expiry_raises(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    calendar.compare_and_lock(HERO_KEY, "holder-a", now + timedelta(minutes=1), now)
    with pytest.raises(LockExpiredError):
        calendar.mark_sold(HERO_KEY, "holder-a", now + timedelta(minutes=1))


def test_mark_sold_on_available_slot_raises(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    with pytest.raises(LockExpiredError):
        calendar.mark_sold(HERO_KEY, "holder-a", clock())


def test_mark_sold_twice_by_same_holder_is_noop(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    calendar.compare_and_lock(HERO_KEY, "holder-a", now + timedelta(minutes=5), now)
    calendar.mark_sold(HERO_KEY, "holder-a", now)
    calendar.mark_sold(HERO_KEY, "holder-a", now)
    assert calendar.get(HERO_KEY).status is SlotStatus.SOLD


def test_mark_sold_all_is_all_or_nothing(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    first = SlotKey(BannerType.HERO, date(2025, 3, 1), 1)
    second = SlotKey(BannerType.HERO, date(2025, 3, 2), 1)
    calendar.compare_and_lock(first, "holder-a", now + timedelta(minutes=5), now)
    calendar.compare_and_lock(second, "holder-b", now + timedelta(minutes=5), now)

    with pytest.raises(LockExpiredError):
        calendar.mark_sold_all([first, second], "holder-a", now)
    assert calendar.get(first, now).status is SlotStatus.LOCKED


def test_release_held_by_frees_only_that_holder(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    keys = [SlotKey(BannerType.SEARCH_TOP, date(2025, 5, day), 1) for day in (1, 2, 3)]
    for key in keys:
        calendar.compare_and_lock(key, "holder-a", now + timedelta(minutes=5), now)
    calendar.compare_and_lock(
        SlotKey(BannerType.SEARCH_TOP, date(2025, 5, 1), 2),
        "holder-b",
        now + timedelta(minutes=5),
        now,
    )

    assert calendar.release_held_by("holder-a", now) == 3
    assert all(calendar.get(key, now).is_available for key in keys)
    assert calendar.get(SlotKey(BannerType.SEARCH_TOP, date(2025, 5, 1), 2), now).holder == "holder-b"
    assert calendar.release_held_by("holder-a", now) == 0


def test_list_expired_locks_only_returns_elapsed_holds(tmp_path, clock) -> None:
    calendar = _build_calendar(tmp_path)
    now = clock()
    short = SlotKey(BannerType.HERO, date(2025, 3, 1), 1)
    long = SlotKey(BannerType.HERO, date(2025, 3, 1), 2)
    calendar.compare_and_lock(short, "holder-a", now + timedelta(minutes=1), now)
    calendar.compare_and_lock(long, "holder-b", now + timedelta(minutes=60), now)

    expired = calendar.list_expired_locks(now + timedelta(minutes=2), limit=10)
    assert [slot.key for slot in expired] == [short]
