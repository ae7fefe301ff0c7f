from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from backend.domain.constraints import InventoryConfig
from backend.domain.errors import ReservationValidationError
from backend.domain.models import ApplicationItem, BannerType, SlotKey
from backend.domain.pricing import PricingEngine
from backend.utils.config import DEFAULT_HERO_PRICE_LADDER, Settings


def _build_pricing() -> PricingEngine:
    return PricingEngine(InventoryConfig.from_settings(Settings()))


def test_hero_rank_one_is_most_expensive() -> None:
    pricing = _build_pricing()
    assert pricing.price(BannerType.HERO, 1) == DEFAULT_HERO_PRICE_LADDER[0]
    prices = [pricing.price(BannerType.HERO, rank) for rank in range(1, 11)]
    assert all(higher > lower for higher, lower in zip(prices, prices[1:]))


def test_search_top_price_is_flat_per_day() -> None:
    pricing = _build_pricing()
    assert pricing.price(BannerType.SEARCH_TOP, 1) == 500_000
    assert pricing.price(BannerType.SEARCH_TOP, 2) == 500_000


def test_hero_total_sums_ladder_entries() -> None:
    pricing = _build_pricing()
    items = [
        ApplicationItem(date(2025, 3, 1), 1),
        ApplicationItem(date(2025, 3, 1), 3),
        ApplicationItem(date(2025, 3, 2), 1),
    ]
    expected = 2 * DEFAULT_HERO_PRICE_LADDER[0] + DEFAULT_HERO_PRICE_LADDER[2]
    assert pricing.total_amount(BannerType.HERO, items) == expected


def test_search_top_total_is_days_times_rate() -> None:
    pricing = _build_pricing()
    items = [ApplicationItem(date(2025, 5, day), 1) for day in (1, 3, 4)]
    assert pricing.total_amount(BannerType.SEARCH_TOP, items) == 3 * 500_000


def test_total_for_keys_matches_total_amount() -> None:
    pricing = _build_pricing()
    keys = [SlotKey(BannerType.HERO, date(2025, 3, 1), rank) for rank in (2, 5)]
    assert pricing.total_for_keys(keys) == DEFAULT_HERO_PRICE_LADDER[1] + DEFAULT_HERO_PRICE_LADDER[4]


def test_price_outside_capacity_rejected() -> None:
    pricing = _build_pricing()
    with pytest.raises(ReservationValidationError):
        pricing.price(BannerType.HERO, 11)
    with pytest.raises(ReservationValidationError):
        pricing.price(BannerType.SEARCH_TOP, 3)


def test_raised_search_top_capacity_refuses_to_build() -> None:
    config = replace(InventoryConfig.from_settings(Settings()), search_top_max_priority=3)
    with pytest.raises(ValueError):
        PricingEngine(config)


def test_invalid_ladder_refuses_to_build() -> None:
    settings = Settings(hero_price_ladder=(100, 200, 300, 400, 500, 600, 700, 800, 900, 1000))
    with pytest.raises(ValueError):
        PricingEngine(InventoryConfig.from_settings(settings))
