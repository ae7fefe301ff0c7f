"""Domain-level rules for slot capacity, pricing configuration and request shape."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from backend.domain.errors import ReservationValidationError
from backend.domain.models import BannerType, ReservationRequest, SlotKey
from backend.utils.config import Settings


# Fixed inventory shape: ten ranked HERO positions and two SEARCH_TOP seats per day.
HERO_CAPACITY = 10
SEARCH_TOP_CAPACITY = 2


@dataclass(frozen=True)
class InventoryConfig:
    hero_max_priority: int
    search_top_max_priority: int
    hero_price_ladder: tuple[int, ...]
    search_top_daily_rate: int
    default_lock_minutes: int
    max_lock_minutes: int
    max_items_per_application: int
    availability_max_range_days: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "InventoryConfig":
        return cls(
            hero_max_priority=HERO_CAPACITY,
            search_top_max_priority=SEARCH_TOP_CAPACITY,
            hero_price_ladder=tuple(settings.hero_price_ladder),
            search_top_daily_rate=settings.search_top_daily_rate,
            default_lock_minutes=settings.default_lock_minutes,
            max_lock_minutes=settings.max_lock_minutes,
            max_items_per_application=settings.max_items_per_application,
            availability_max_range_days=settings.availability_max_range_days,
        )

    def max_priority(self, banner_type: BannerType) -> int:
        if banner_type is BannerType.HERO:
            return self.hero_max_priority
        return self.search_top_max_priority


def validate_inventory_config(config: InventoryConfig) -> None:
    if config.hero_max_priority != HERO_CAPACITY:
        raise ValueError(f"HERO capacity is fixed at {HERO_CAPACITY} ranks")
    if config.search_top_max_priority != SEARCH_TOP_CAPACITY:
        raise ValueError(f"SEARCH_TOP capacity is fixed at {SEARCH_TOP_CAPACITY} seats per day")
    if len(config.hero_price_ladder) != config.hero_max_priority:
        raise ValueError("hero_price_ladder must have one price per HERO rank")
    if any(price <= 0 for price in config.hero_price_ladder):
        raise ValueError("hero_price_ladder prices must be > 0")
    ladder = config.hero_price_ladder
    if any(higher <= lower for higher, lower in zip(ladder, ladder[1:])):
        raise ValueError("hero_price_ladder must be strictly decreasing by rank")
    if config.search_top_daily_rate <= 0:
        raise ValueError("search_top_daily_rate must be > 0")
    if not 0 < config.default_lock_minutes <= config.max_lock_minutes:
        raise ValueError("default_lock_minutes must be in (0, max_lock_minutes]")
    if config.max_items_per_application <= 0:
        raise ValueError("max_items_per_application must be > 0")
    if config.availability_max_range_days <= 0:
        raise ValueError("availability_max_range_days must be > 0")


def validate_priority(banner_type: BannerType, priority: int, config: InventoryConfig) -> None:
    upper = config.max_priority(banner_type)
    if not 1 <= priority <= upper:
        raise ReservationValidationError(
            f"priority {priority} is out of range for {banner_type.value} (1-{upper})"
        )


def validate_date_range(date_from: date, date_to: date, config: InventoryConfig) -> None:
    if date_from > date_to:
        raise ReservationValidationError("from must be on or before to")
    span_days = (date_to - date_from).days + 1
    if span_days > config.availability_max_range_days:
        raise ReservationValidationError(
            f"date range spans {span_days} days; at most "
            f"{config.availability_max_range_days} are allowed"
        )


def resolve_lock_minutes(lock_minutes: int | None, config: InventoryConfig) -> int:
    if lock_minutes is None:
        return config.default_lock_minutes
    if not 1 <= lock_minutes <= config.max_lock_minutes:
        raise ReservationValidationError(
            f"lockMinutes must be between 1 and {config.max_lock_minutes}"
        )
    return lock_minutes


def validate_reservation_request(
    request: ReservationRequest,
    config: InventoryConfig,
) -> list[SlotKey]:
    """Reject malformed requests and return their keys in acquisition order."""
    if request.event_id <= 0:
        raise ReservationValidationError("eventId must be a positive integer")
    if not request.title or not request.title.strip():
        raise ReservationValidationError("title must not be blank")
    if not request.image_url or not request.image_url.strip():
        raise ReservationValidationError("imageUrl must not be blank")
    if not request.items:
        raise ReservationValidationError("items must contain at least one slot")
    if len(request.items) > config.max_items_per_application:
        raise ReservationValidationError(
            f"items may contain at most {config.max_items_per_application} slots"
        )

    seen: set[tuple[date, int]] = set()
    for item in request.items:
        validate_priority(request.banner_type, item.priority, config)
        pair = (item.slot_date, item.priority)
        if pair in seen:
            raise ReservationValidationError(
                f"duplicate slot {item.slot_date.isoformat()} priority {item.priority} in request"
            )
        seen.add(pair)

    resolve_lock_minutes(request.lock_minutes, config)
    return sorted(item.to_key(request.banner_type) for item in request.items)
