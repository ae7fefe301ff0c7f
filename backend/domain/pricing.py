"""Slot pricing: a rank ladder for HERO and a flat day rate for SEARCH_TOP."""

from __future__ import annotations

from typing import Iterable

from backend.domain.constraints import InventoryConfig, validate_inventory_config, validate_priority
from backend.domain.models import ApplicationItem, BannerType, SlotKey


class PricingEngine:
    """Pure price function of (banner type, priority)."""

    def __init__(self, config: InventoryConfig) -> None:
        validate_inventory_config(config)
        self._config = config

    def price(self, banner_type: BannerType, priority: int) -> int:
        validate_priority(banner_type, priority, self._config)
        if banner_type is BannerType.HERO:
            return self._config.hero_price_ladder[priority - 1]
        return self._config.search_top_daily_rate

    def price_for_key(self, key: SlotKey) -> int:
        return self.price(key.banner_type, key.priority)

    def total_amount(self, banner_type: BannerType, items: Iterable[ApplicationItem]) -> int:
        return sum(self.price(banner_type, item.priority) for item in items)

    def total_for_keys(self, keys: Iterable[SlotKey]) -> int:
        return sum(self.price_for_key(key) for key in keys)
