from datetime import date, datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, require_escape_owner
from ..domain.errors import BookingError
from ..http_errors import booking_error_to_http, storage_error_to_http
from ..infrastructure.repositories import (
    SqlAlchemyLedgerRepository,
    SqlAlchemyRoomRepository,
    SqlAlchemyTimeSlotRepository,
)
from ..schemas import TimeSlotCreate, TimeSlotRead, TimeSlotUpdate
from ..usecases import time_slots as slot_usecase
from ..utils.audit_log import AuditAction, emit_audit_log
from ..utils.auth import Principal
from ..utils.time import to_utc_naive, utc_now_naive

router = APIRouter(prefix="/time-slots", tags=["time-slots"])


def _require_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start_time_requires_timezone")
    return to_utc_naive(value)


def _audit(
    action: AuditAction,
    *,
    principal: Principal,
    slot_id: int,
    room_id: int,
    status_from: Any,
    status_to: Any,
) -> None:
    try:
        emit_audit_log(
            action=action,
            initiator="owner",
            slot_id=slot_id,
            room_id=room_id,
            user_id=principal.user_id,
            status_from=status_from,
            status_to=status_to,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit_log_failed") from exc


@router.post("", response_model=TimeSlotRead, status_code=status.HTTP_201_CREATED)
async def create_time_slot(
    payload: TimeSlotCreate,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_escape_owner),
) -> TimeSlotRead:
    start_time = _require_aware(payload.start_time)
    slot_repo = SqlAlchemyTimeSlotRepository(session)
    room_repo = SqlAlchemyRoomRepository(session)
    try:
        async with session.begin():
            slot = await slot_usecase.create_slot(
                slot_repo,
                room_repo,
                owner_id=principal.user_id,
                room_id=payload.room_id,
                start_time=start_time,
                min_players_override=payload.min_players_override,
                max_players_override=payload.max_players_override,
            )
    except BookingError as exc:
        raise booking_error_to_http(exc) from exc
    except DBAPIError as exc:
        raise storage_error_to_http(exc) from exc

    _audit(
        "slot.created",
        principal=principal,
        slot_id=slot.id,
        room_id=slot.room_id,
        status_from=None,
        status_to=slot.status,
    )
    return TimeSlotRead.from_db(slot=slot)


@router.put("/{slot_id}", response_model=TimeSlotRead)
async def update_time_slot(
    payload: TimeSlotUpdate,
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_escape_owner),
) -> TimeSlotRead:
    changes = slot_usecase.SlotChanges(
        start_time=_require_aware(payload.start_time),
        status=payload.status,
        min_players_override=payload.min_players_override,
        max_players_override=payload.max_players_override,
    )
    try:
        async with session.begin():
            slot, previous = await slot_usecase.update_slot(
                SqlAlchemyTimeSlotRepository(session),
                SqlAlchemyRoomRepository(session),
                SqlAlchemyLedgerRepository(session),
                owner_id=principal.user_id,
                slot_id=slot_id,
                changes=changes,
            )
    except BookingError as exc:
        raise booking_error_to_http(exc) from exc
    except DBAPIError as exc:
        raise storage_error_to_http(exc) from exc

    _audit(
        "slot.updated",
        principal=principal,
        slot_id=slot.id,
        room_id=slot.room_id,
        status_from=previous,
        status_to=slot.status,
    )
    return TimeSlotRead.from_db(slot=slot)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_time_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_escape_owner),
) -> Response:
    try:
        async with session.begin():
            slot, previous = await slot_usecase.cancel_slot(
                SqlAlchemyTimeSlotRepository(session),
                SqlAlchemyRoomRepository(session),
                owner_id=principal.user_id,
                slot_id=slot_id,
            )
    except BookingError as exc:
        raise booking_error_to_http(exc) from exc
    except DBAPIError as exc:
        raise storage_error_to_http(exc) from exc

    if previous != slot.status:
        _audit(
            "slot.cancelled",
            principal=principal,
            slot_id=slot.id,
            room_id=slot.room_id,
            status_from=previous,
            status_to=slot.status,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/available-dates", response_model=List[date])
async def list_available_dates(
    room_id: int = Query(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> list[date]:
    return await slot_usecase.list_available_dates(
        SqlAlchemyTimeSlotRepository(session),
        room_id=room_id,
        now=utc_now_naive(),
    )


@router.get("", response_model=List[TimeSlotRead])
async def list_time_slots(
    room_id: int = Query(..., ge=1),
    day: Optional[date] = Query(default=None, alias="date", description="Calendar date in the display time zone"),
    session: AsyncSession = Depends(get_session),
) -> list[TimeSlotRead]:
    slots = await slot_usecase.list_slots(
        SqlAlchemyTimeSlotRepository(session),
        room_id=room_id,
        now=utc_now_naive(),
        day=day,
    )
    return [TimeSlotRead.from_db(slot=slot) for slot in slots]
