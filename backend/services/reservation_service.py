"""All-or-nothing acquisition of banner slot sets and the hold lifecycle."""

from __future__ import annotations

import hashlib
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Sequence
from uuid import uuid4

from backend.domain.constraints import (
    InventoryConfig,
    resolve_lock_minutes,
    validate_reservation_request,
)
from backend.domain.errors import (
    ApplicationStateError,
    LockExpiredError,
    ReservationValidationError,
    SlotConflictError,
    StorageUnavailableError,
)
from backend.domain.models import (
    ACTIVE_APPLICATION_STATUSES,
    Application,
    ApplicationItem,
    ApplicationPage,
    ApplicationStatus,
    BannerType,
    ReservationRequest,
    ReservationResult,
    SlotKey,
)
from backend.domain.pricing import PricingEngine
from backend.repository.application_ledger import ApplicationLedger
from backend.repository.slot_calendar import SlotCalendar
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def request_fingerprint(request: ReservationRequest, lock_minutes: int) -> str:
    """Stable digest of everything that makes two submissions the same application.

    Covers the event, banner type, creative fields, the resolved hold length
    and the sorted items. Any difference is a new application, which then
    competes for the slots like any other.
    """
    parts = [
        str(request.event_id),
        request.banner_type.value,
        request.title.strip(),
        request.image_url.strip(),
        (request.link_url or "").strip(),
        str(lock_minutes),
    ]
    parts.extend(
        f"{slot_date.isoformat()}:{priority}"
        for slot_date, priority in sorted((item.slot_date, item.priority) for item in request.items)
    )
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class ReservationService:
    """Acquires every requested slot or none of them.

    Keys are locked one by one in (date, priority) order with the calendar's
    compare-and-lock. The first refusal rolls back what this attempt already
    holds and surfaces a ``SlotConflictError``; nothing is retried here.
    """

    def __init__(
        self,
        calendar: SlotCalendar,
        ledger: ApplicationLedger,
        pricing: PricingEngine,
        config: InventoryConfig,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._calendar = calendar
        self._ledger = ledger
        self._pricing = pricing
        self._config = config
        self._clock = clock or _utc_now

    def submit(self, request: ReservationRequest) -> ReservationResult:
        keys = validate_reservation_request(request, self._config)
        lock_minutes = resolve_lock_minutes(request.lock_minutes, self._config)
        now = self._clock()
        fingerprint = request_fingerprint(request, lock_minutes)

        existing = self._ledger.find_active_by_fingerprint(request.event_id, fingerprint, now)
        if existing is not None:
            logger.info(
                "Resubmission for event %s matches held application %s",
                request.event_id,
                existing.application_id,
            )
            return ReservationResult(
                application_id=existing.application_id,
                total_amount=existing.total_amount,
                locked_until=existing.locked_until,
                reused=True,
            )

        holder = uuid4().hex
        locked_until = now + timedelta(minutes=lock_minutes)
        acquired: list[SlotKey] = []
        try:
            for key in keys:
                if not self._calendar.compare_and_lock(key, holder, locked_until, now):
                    logger.info(
                        "Conflict on %s for event %s; rolling back %s lock(s)",
                        key.describe(),
                        request.event_id,
                        len(acquired),
                    )
                    self._rollback(acquired, holder, now)
                    raise SlotConflictError(key.banner_type.value, key.slot_date, key.priority)
                acquired.append(key)

            prices = {key: self._pricing.price_for_key(key) for key in keys}
            items = [
                ApplicationItem(
                    slot_date=item.slot_date,
                    priority=item.priority,
                    price=prices[item.to_key(request.banner_type)],
                )
                for item in request.items
            ]
            total_amount = self._pricing.total_for_keys(keys)
            application = self._ledger.create(
                event_id=request.event_id,
                banner_type=request.banner_type,
                title=request.title.strip(),
                image_url=request.image_url.strip(),
                link_url=request.link_url.strip() if request.link_url else None,
                items=items,
                total_amount=total_amount,
                holder=holder,
                fingerprint=fingerprint,
                lock_minutes=lock_minutes,
                locked_until=locked_until,
                now=now,
            )
        except StorageUnavailableError:
            logger.error(
                "Storage failure while acquiring for event %s; rolling back %s lock(s)",
                request.event_id,
                len(acquired),
            )
            self._rollback(acquired, holder, now)
            raise

        return ReservationResult(
            application_id=application.application_id,
            total_amount=application.total_amount,
            locked_until=application.locked_until,
        )

    def _rollback(self, keys: Sequence[SlotKey], holder: str, now: datetime) -> None:
        """Release this attempt's locks; whatever cannot be released expires via the reaper."""
        for key in reversed(keys):
            try:
                self._calendar.release(key, now, holder=holder)
            except StorageUnavailableError:
                logger.warning(
                    "Could not release %s for holder %s; it will expire with its hold",
                    key.describe(),
                    holder,
                )

    def confirm_payment(self, application_id: int) -> Application:
        """Convert an active application to a sale once the payment collaborator confirms it."""
        application = self._ledger.get(application_id)
        if application.status is ApplicationStatus.PAID:
            return application
        if not application.status.is_active:
            raise ApplicationStateError(
                f"Application {application_id} is {application.status.value} and cannot be paid"
            )

        now = self._clock()
        if application.locked_until <= now:
            self._expire(application, now)
            raise LockExpiredError(
                f"Hold for application {application_id} expired; submit a new application"
            )

        # Claiming the ledger row first keeps cancel, review and the reaper away from it.
        if not self._ledger.transition(
            application_id, application.status, ApplicationStatus.PAID, now
        ):
            current = self._ledger.get(application_id)
            if current.status is ApplicationStatus.PAID:
                return current
            raise ApplicationStateError(
                f"Application {application_id} is {current.status.value} and cannot be paid"
            )

        try:
            self._calendar.mark_sold_all(application.slot_keys(), application.holder, now)
        except LockExpiredError:
            self._ledger.transition(
                application_id, ApplicationStatus.PAID, ApplicationStatus.EXPIRED, now
            )
            self._calendar.release_held_by(application.holder, now)
            logger.warning("Payment for application %s arrived after its hold was lost", application_id)
            raise
        except StorageUnavailableError:
            try:
                self._ledger.transition(
                    application_id, ApplicationStatus.PAID, application.status, now
                )
            except StorageUnavailableError:
                logger.exception(
                    "Could not revert application %s to %s",
                    application_id,
                    application.status.value,
                )
            raise

        logger.info(
            "Application %s paid; %s slot(s) sold for %s",
            application_id,
            len(application.items),
            application.total_amount,
        )
        return self._ledger.get(application_id)

    def approve(self, application_id: int) -> Application:
        """Admin review: HELD to APPROVED. The hold keeps running until payment."""
        application = self._ledger.get(application_id)
        if application.status is ApplicationStatus.APPROVED:
            return application
        if application.status is not ApplicationStatus.HELD:
            raise ApplicationStateError(
                f"Application {application_id} is {application.status.value} and cannot be approved"
            )

        now = self._clock()
        if application.locked_until <= now:
            self._expire(application, now)
            raise LockExpiredError(
                f"Hold for application {application_id} expired before it was reviewed"
            )

        if not self._ledger.transition(
            application_id, ApplicationStatus.HELD, ApplicationStatus.APPROVED, now
        ):
            current = self._ledger.get(application_id)
            if current.status is ApplicationStatus.APPROVED:
                return current
            raise ApplicationStateError(
                f"Application {application_id} is {current.status.value} and cannot be approved"
            )
        logger.info("Application %s approved; awaiting payment", application_id)
        return self._ledger.get(application_id)

    def reject(self, application_id: int, admin_comment: str) -> Application:
        """Admin review: an active application is refused and its slots are freed."""
        comment = (admin_comment or "").strip()
        if not comment:
            raise ReservationValidationError("adminComment must not be blank when rejecting")
        application = self._ledger.get(application_id)
        if application.status is ApplicationStatus.REJECTED:
            return application
        if not application.status.is_active:
            raise ApplicationStateError(
                f"Application {application_id} is {application.status.value} and cannot be rejected"
            )

        now = self._clock()
        if not self._ledger.transition(
            application_id,
            ACTIVE_APPLICATION_STATUSES,
            ApplicationStatus.REJECTED,
            now,
            admin_comment=comment,
        ):
            current = self._ledger.get(application_id)
            if current.status is ApplicationStatus.REJECTED:
                return current
            raise ApplicationStateError(
                f"Application {application_id} is {current.status.value} and cannot be rejected"
            )

        released = self._calendar.release_held_by(application.holder, now)
        logger.info("Application %s rejected; released %s slot(s)", application_id, released)
        return self._ledger.get(application_id)

    def cancel(self, application_id: int) -> Application:
        application = self._ledger.get(application_id)
        if application.status is ApplicationStatus.CANCELLED:
            return application
        if not application.status.is_active:
            raise ApplicationStateError(
                f"Application {application_id} is {application.status.value} and cannot be cancelled"
            )

        now = self._clock()
        if not self._ledger.transition(
            application_id, ACTIVE_APPLICATION_STATUSES, ApplicationStatus.CANCELLED, now
        ):
            current = self._ledger.get(application_id)
            if current.status is ApplicationStatus.CANCELLED:
                return current
            raise ApplicationStateError(
                f"Application {application_id} is {current.status.value} and cannot be cancelled"
            )

        released = self._calendar.release_held_by(application.holder, now)
        logger.info("Application %s cancelled; released %s slot(s)", application_id, released)
        return self._ledger.get(application_id)

    def _expire(self, application: Application, now: datetime) -> None:
        self._calendar.release_held_by(application.holder, now)
        self._ledger.transition(
            application.application_id,
            ACTIVE_APPLICATION_STATUSES,
            ApplicationStatus.EXPIRED,
            now,
        )

    def current_time(self) -> datetime:
        return self._clock()

    def get_application(self, application_id: int) -> Application:
        return self._ledger.get(application_id)

    def list_event_applications(self, event_id: Optional[int] = None) -> list[Application]:
        return self._ledger.list_for_event(event_id)

    def search_applications(
        self,
        *,
        event_id: Optional[int] = None,
        status: Optional[ApplicationStatus] = None,
        banner_type: Optional[BannerType] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 0,
        size: int = 20,
    ) -> ApplicationPage:
        return self._ledger.search(
            event_id=event_id,
            status=status,
            banner_type=banner_type,
            start_date=start_date,
            end_date=end_date,
            page=page,
            size=size,
        )
