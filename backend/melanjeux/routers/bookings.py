from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Response, status
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, require_escape_owner, require_player
from ..domain.errors import BookingError
from ..http_errors import booking_error_to_http, storage_error_to_http
from ..infrastructure.repositories import (
    SqlAlchemyLedgerRepository,
    SqlAlchemyRoomRepository,
    SqlAlchemyTimeSlotRepository,
)
from ..schemas import LedgerEntryRead, MyBookingRead, RosterEntryRead, SlotMembershipRequest
from ..usecases import bookings as booking_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.auth import Principal

router = APIRouter(prefix="/time-slot-players", tags=["bookings"])


@router.post("/join", response_model=LedgerEntryRead)
async def join_time_slot(
    payload: SlotMembershipRequest,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_player),
) -> LedgerEntryRead:
    slot_repo = SqlAlchemyTimeSlotRepository(session)
    ledger = SqlAlchemyLedgerRepository(session)
    try:
        async with session.begin():
            result = await booking_usecase.join_slot(
                slot_repo,
                ledger,
                slot_id=payload.time_slot_id,
                user_id=principal.user_id,
            )
    except BookingError as exc:
        raise booking_error_to_http(exc) from exc
    except DBAPIError as exc:
        raise storage_error_to_http(exc) from exc

    if result.seat_taken:
        try:
            emit_audit_log(
                action="booking.joined",
                initiator="player",
                slot_id=result.slot.id,
                room_id=result.slot.room_id,
                user_id=principal.user_id,
                entry_id=result.entry.id,
                status_from=result.transition.status_from,
                status_to=result.transition.status_to,
                players_count=result.transition.count_to,
            )
        except RuntimeError as exc:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit_log_failed") from exc

    return LedgerEntryRead.from_db(entry=result.entry)


@router.post("/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_time_slot(
    payload: SlotMembershipRequest,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_player),
) -> Response:
    slot_repo = SqlAlchemyTimeSlotRepository(session)
    ledger = SqlAlchemyLedgerRepository(session)
    try:
        async with session.begin():
            result = await booking_usecase.leave_slot(
                slot_repo,
                ledger,
                slot_id=payload.time_slot_id,
                user_id=principal.user_id,
            )
    except BookingError as exc:
        raise booking_error_to_http(exc) from exc
    except DBAPIError as exc:
        raise storage_error_to_http(exc) from exc

    if result.left and result.transition is not None:
        try:
            emit_audit_log(
                action="booking.left",
                initiator="player",
                slot_id=result.slot.id,
                room_id=result.slot.room_id,
                user_id=principal.user_id,
                status_from=result.transition.status_from,
                status_to=result.transition.status_to,
                players_count=result.transition.count_to,
            )
        except RuntimeError as exc:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit_log_failed") from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/my-bookings", response_model=List[MyBookingRead])
async def list_my_bookings(
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_player),
) -> list[MyBookingRead]:
    ledger = SqlAlchemyLedgerRepository(session)
    rows = await booking_usecase.list_my_bookings(ledger, user_id=principal.user_id)
    return [MyBookingRead.from_db(entry=entry, slot=slot, room=room) for entry, slot, room in rows]


@router.get("/by-slot/{slot_id}", response_model=List[RosterEntryRead])
async def list_slot_roster(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_escape_owner),
) -> list[RosterEntryRead]:
    try:
        rows = await booking_usecase.list_by_slot(
            SqlAlchemyTimeSlotRepository(session),
            SqlAlchemyRoomRepository(session),
            SqlAlchemyLedgerRepository(session),
            slot_id=slot_id,
            owner_id=principal.user_id,
        )
    except BookingError as exc:
        raise booking_error_to_http(exc) from exc
    return [RosterEntryRead.from_db(entry=entry, user=user) for entry, user in rows]
