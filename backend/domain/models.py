"""Domain models for banner slot inventory and applications."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class BannerType(str, Enum):
    HERO = "HERO"
    SEARCH_TOP = "SEARCH_TOP"


class SlotStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    LOCKED = "LOCKED"
    SOLD = "SOLD"


class ApplicationStatus(str, Enum):
    HELD = "HELD"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_active(self) -> bool:
        """Still holding its slots: awaiting review or awaiting payment."""
        return self in ACTIVE_APPLICATION_STATUSES


ACTIVE_APPLICATION_STATUSES = (ApplicationStatus.HELD, ApplicationStatus.APPROVED)


@dataclass(frozen=True, order=True)
class SlotKey:
    """Composite identity of a slot; ordering is (date, priority) per banner type."""

    banner_type: BannerType
    slot_date: date
    priority: int

    def describe(self) -> str:
        return f"{self.banner_type.value} {self.slot_date.isoformat()} priority {self.priority}"


@dataclass(frozen=True)
class Slot:
    key: SlotKey
    status: SlotStatus
    price: int
    holder: Optional[str] = None
    locked_until: Optional[datetime] = None

    @property
    def slot_date(self) -> date:
        return self.key.slot_date

    @property
    def priority(self) -> int:
        return self.key.priority

    @property
    def is_available(self) -> bool:
        return self.status is SlotStatus.AVAILABLE


@dataclass(frozen=True)
class ApplicationItem:
    slot_date: date
    priority: int
    price: Optional[int] = None

    def to_key(self, banner_type: BannerType) -> SlotKey:
        return SlotKey(banner_type=banner_type, slot_date=self.slot_date, priority=self.priority)


@dataclass(frozen=True)
class ReservationRequest:
    event_id: int
    banner_type: BannerType
    title: str
    image_url: str
    items: list[ApplicationItem]
    link_url: Optional[str] = None
    lock_minutes: Optional[int] = None


@dataclass(frozen=True)
class Application:
    application_id: int
    event_id: int
    banner_type: BannerType
    title: str
    image_url: str
    link_url: Optional[str]
    status: ApplicationStatus
    total_amount: int
    holder: str
    fingerprint: str
    lock_minutes: int
    locked_until: datetime
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    admin_comment: Optional[str] = None
    items: list[ApplicationItem] = field(default_factory=list)

    def slot_keys(self) -> list[SlotKey]:
        return [item.to_key(self.banner_type) for item in self.items]

    @property
    def can_cancel(self) -> bool:
        return self.status.is_active

    def can_pay(self, now: datetime) -> bool:
        return self.status.is_active and self.locked_until > now


@dataclass(frozen=True)
class ReservationResult:
    application_id: int
    total_amount: int
    locked_until: datetime
    reused: bool = False


@dataclass(frozen=True)
class ApplicationPage:
    content: list[Application]
    total_elements: int
    page: int
    size: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total_elements + self.size - 1) // self.size


@dataclass(frozen=True)
class DaySummary:
    slot_date: date
    open_ranks: list[int]
    taken_ranks: list[int]

    @property
    def is_exhausted(self) -> bool:
        return not self.open_ranks


@dataclass(frozen=True)
class SearchTopPlan:
    items: list[ApplicationItem]
    skipped_dates: list[date]
    total_amount: int


@dataclass(frozen=True)
class ReaperReport:
    expired_applications: int
    released_slots: int
