"""HTTP controller layer for banner slot availability and applications."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from backend.controllers.dependencies import (
    get_app_settings,
    get_availability_service,
    get_reservation_service,
)
from backend.domain.errors import (
    ApplicationNotFoundError,
    ApplicationStateError,
    LockExpiredError,
    ReservationValidationError,
    SlotConflictError,
    StorageUnavailableError,
)
from backend.domain.models import (
    Application,
    ApplicationItem,
    ApplicationStatus,
    BannerType,
    ReservationRequest,
    Slot,
    SlotStatus,
)
from backend.services.availability_service import AvailabilityService
from backend.services.reservation_service import ReservationService
from backend.utils.config import Settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["banner"])

STORAGE_UNAVAILABLE_DETAIL = "Reservation storage is temporarily unavailable. Please retry."


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SlotResponse(CamelModel):
    slot_date: date
    priority: Optional[int] = Field(default=None, gt=0)
    status: SlotStatus
    price: int = Field(ge=0)


class DaySummaryResponse(CamelModel):
    slot_date: date
    open_ranks: list[int]
    taken_ranks: list[int]
    exhausted: bool


class ApplicationItemRequest(CamelModel):
    slot_date: date = Field(alias="date")
    priority: int


class ApplicationCreateRequest(CamelModel):
    """Input DTO; business rules (ranges, duplicates) are enforced by the service."""

    event_id: int = Field(gt=0)
    banner_type: BannerType
    title: str = Field(max_length=200)
    image_url: str = Field(max_length=2048)
    link_url: Optional[str] = Field(default=None, max_length=2048)
    items: list[ApplicationItemRequest]
    lock_minutes: Optional[int] = None


class ApplicationItemResponse(CamelModel):
    slot_date: date = Field(alias="date")
    priority: int = Field(gt=0)
    price: int = Field(ge=0)


class ApplicationResponse(CamelModel):
    id: int = Field(gt=0)
    event_id: int = Field(gt=0)
    banner_type: BannerType
    title: str
    image_url: str
    link_url: Optional[str] = None
    status: ApplicationStatus
    total_amount: int = Field(ge=0)
    lock_minutes: int = Field(gt=0)
    locked_until: datetime
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    admin_comment: Optional[str] = None
    can_cancel: bool
    can_pay: bool
    items: list[ApplicationItemResponse]


class ApplicationRejectRequest(CamelModel):
    admin_comment: str = Field(max_length=1000)


class ApplicationPageResponse(CamelModel):
    content: list[ApplicationResponse]
    total_pages: int = Field(ge=0)
    total_elements: int = Field(ge=0)
    page: int = Field(ge=0)
    size: int = Field(gt=0)


class SearchTopPlanResponse(CamelModel):
    items: list[ApplicationItemResponse]
    skipped_dates: list[date]
    total_amount: int = Field(ge=0)


def _slot_response(slot: Slot) -> SlotResponse:
    return SlotResponse(
        slot_date=slot.slot_date,
        priority=slot.priority,
        status=slot.status,
        price=slot.price,
    )


def _item_response(item: ApplicationItem) -> ApplicationItemResponse:
    return ApplicationItemResponse(
        slot_date=item.slot_date,
        priority=item.priority,
        price=item.price or 0,
    )


def _application_response(application: Application, now: datetime) -> ApplicationResponse:
    return ApplicationResponse(
        id=application.application_id,
        event_id=application.event_id,
        banner_type=application.banner_type,
        title=application.title,
        image_url=application.image_url,
        link_url=application.link_url,
        status=application.status,
        total_amount=application.total_amount,
        lock_minutes=application.lock_minutes,
        locked_until=application.locked_until,
        created_at=application.created_at,
        updated_at=application.updated_at,
        paid_at=application.paid_at,
        approved_at=application.approved_at,
        admin_comment=application.admin_comment,
        can_cancel=application.can_cancel,
        can_pay=application.can_pay(now),
        items=[_item_response(item) for item in application.items],
    )


def _storage_unavailable(exc: StorageUnavailableError) -> HTTPException:
    logger.error("Storage unavailable: %s", exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=STORAGE_UNAVAILABLE_DETAIL,
    )


@router.get(
    "/api/banner/slots",
    response_model=list[SlotResponse],
    status_code=status.HTTP_200_OK,
)
def list_slots(
    banner_type: BannerType = Query(alias="type"),
    date_from: date = Query(alias="from"),
    date_to: date = Query(alias="to"),
    service: AvailabilityService = Depends(get_availability_service),
) -> list[SlotResponse]:
    """One entry per (date, rank) in the inclusive range."""
    try:
        return [_slot_response(slot) for slot in service.list_slots(banner_type, date_from, date_to)]
    except ReservationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected availability failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load slots",
        ) from exc


@router.get(
    "/api/banner/slots/summary",
    response_model=list[DaySummaryResponse],
    status_code=status.HTTP_200_OK,
)
def list_day_summaries(
    banner_type: BannerType = Query(alias="type"),
    date_from: date = Query(alias="from"),
    date_to: date = Query(alias="to"),
    service: AvailabilityService = Depends(get_availability_service),
) -> list[DaySummaryResponse]:
    try:
        return [
            DaySummaryResponse(
                slot_date=summary.slot_date,
                open_ranks=summary.open_ranks,
                taken_ranks=summary.taken_ranks,
                exhausted=summary.is_exhausted,
            )
            for summary in service.day_summaries(banner_type, date_from, date_to)
        ]
    except ReservationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc


@router.get(
    "/api/banner/slots/search-top-plan",
    response_model=SearchTopPlanResponse,
    status_code=status.HTTP_200_OK,
)
def plan_search_top(
    date_from: date = Query(alias="from"),
    date_to: date = Query(alias="to"),
    service: AvailabilityService = Depends(get_availability_service),
) -> SearchTopPlanResponse:
    """Open days of a SEARCH_TOP range with the price of only those days."""
    try:
        plan = service.plan_search_top_items(date_from, date_to)
    except ReservationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc
    return SearchTopPlanResponse(
        items=[_item_response(item) for item in plan.items],
        skipped_dates=plan.skipped_dates,
        total_amount=plan.total_amount,
    )


@router.post(
    "/api/banner/applications",
    response_model=int,
    status_code=status.HTTP_200_OK,
)
def create_application(
    payload: ApplicationCreateRequest,
    service: ReservationService = Depends(get_reservation_service),
) -> int:
    """Hold every requested slot or none; answers with the application id."""
    request = ReservationRequest(
        event_id=payload.event_id,
        banner_type=payload.banner_type,
        title=payload.title,
        image_url=payload.image_url,
        link_url=payload.link_url,
        items=[
            ApplicationItem(slot_date=item.slot_date, priority=item.priority)
            for item in payload.items
        ],
        lock_minutes=payload.lock_minutes,
    )
    try:
        return service.submit(request).application_id
    except ReservationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SlotConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected application failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit application",
        ) from exc


@router.get(
    "/api/banner/applications/my",
    response_model=list[ApplicationResponse],
    status_code=status.HTTP_200_OK,
)
def list_my_applications(
    event_id: Optional[int] = Query(default=None, alias="eventId", gt=0),
    service: ReservationService = Depends(get_reservation_service),
) -> list[ApplicationResponse]:
    """Applications of one event, or every application when ``eventId`` is omitted.

    Scoping to the signed-in host belongs to the portal's auth layer.
    """
    try:
        now = service.current_time()
        return [
            _application_response(application, now)
            for application in service.list_event_applications(event_id)
        ]
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc


@router.get(
    "/api/banner/applications/{application_id}",
    response_model=ApplicationResponse,
    status_code=status.HTTP_200_OK,
)
def get_application(
    application_id: int,
    service: ReservationService = Depends(get_reservation_service),
) -> ApplicationResponse:
    try:
        return _application_response(
            service.get_application(application_id), service.current_time()
        )
    except ApplicationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc


@router.post(
    "/api/banner/applications/{application_id}/payment",
    response_model=ApplicationResponse,
    status_code=status.HTTP_200_OK,
)
def confirm_payment(
    application_id: int,
    service: ReservationService = Depends(get_reservation_service),
) -> ApplicationResponse:
    """Called by the payment collaborator once the host has paid."""
    try:
        return _application_response(
            service.confirm_payment(application_id), service.current_time()
        )
    except ApplicationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ApplicationStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except LockExpiredError as exc:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected payment confirmation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to confirm payment",
        ) from exc


@router.post(
    "/api/admin/banner/applications/{application_id}/approve",
    response_model=ApplicationResponse,
    status_code=status.HTTP_200_OK,
)
def approve_application(
    application_id: int,
    service: ReservationService = Depends(get_reservation_service),
) -> ApplicationResponse:
    try:
        return _application_response(service.approve(application_id), service.current_time())
    except ApplicationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ApplicationStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except LockExpiredError as exc:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc


@router.post(
    "/api/admin/banner/applications/{application_id}/reject",
    response_model=ApplicationResponse,
    status_code=status.HTTP_200_OK,
)
def reject_application(
    application_id: int,
    payload: ApplicationRejectRequest,
    service: ReservationService = Depends(get_reservation_service),
) -> ApplicationResponse:
    """Refuse an application under review or awaiting payment; its slots are freed."""
    try:
        return _application_response(
            service.reject(application_id, payload.admin_comment), service.current_time()
        )
    except ReservationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ApplicationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ApplicationStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc


@router.get(
    "/api/host/banner-management/applications",
    response_model=ApplicationPageResponse,
    status_code=status.HTTP_200_OK,
)
def search_applications(
    event_id: Optional[int] = Query(default=None, alias="eventId", gt=0),
    application_status: Optional[ApplicationStatus] = Query(default=None, alias="status"),
    banner_type: Optional[BannerType] = Query(default=None, alias="bannerType"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1),
    settings: Settings = Depends(get_app_settings),
    service: ReservationService = Depends(get_reservation_service),
) -> ApplicationPageResponse:
    if size > settings.application_page_size_max:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"size must be at most {settings.application_page_size_max}",
        )
    if start_date is not None and end_date is not None and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="startDate must be on or before endDate",
        )
    try:
        result = service.search_applications(
            event_id=event_id,
            status=application_status,
            banner_type=banner_type,
            start_date=start_date,
            end_date=end_date,
            page=page,
            size=size,
        )
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc
    now = service.current_time()
    return ApplicationPageResponse(
        content=[_application_response(application, now) for application in result.content],
        total_pages=result.total_pages,
        total_elements=result.total_elements,
        page=result.page,
        size=result.size,
    )


@router.delete(
    "/api/host/banner-management/applications/{application_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def cancel_application(
    application_id: int,
    service: ReservationService = Depends(get_reservation_service),
) -> Response:
    try:
        service.cancel(application_id)
    except ApplicationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ApplicationStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise _storage_unavailable(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
