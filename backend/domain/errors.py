"""Error taxonomy shared by the calendar, ledger and coordinator."""

from __future__ import annotations

from datetime import date


class ReservationError(Exception):
    """Base exception for slot reservation failures."""


class ReservationValidationError(ReservationError):
    """Raised when a request is malformed; nothing has been locked."""


class SlotConflictError(ReservationError):
    """Raised when a requested slot was not available at acquisition time."""

    def __init__(self, banner_type: str, slot_date: date, priority: int) -> None:
        self.banner_type = banner_type
        self.slot_date = slot_date
        self.priority = priority
        super().__init__(
            f"{banner_type} slot {slot_date.isoformat()} priority {priority} "
            "already has an application. Reload availability and try again."
        )


class LockExpiredError(ReservationError):
    """Raised when a hold expired before it could be converted to a sale."""


class StorageUnavailableError(ReservationError):
    """Raised when the persistence layer cannot serve the request."""


class ApplicationNotFoundError(ReservationError):
    """Raised when an application id does not exist."""


class ApplicationStateError(ReservationError):
    """Raised when an application cannot make the requested transition."""
