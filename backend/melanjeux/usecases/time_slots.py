from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional

from ..domain.errors import ForbiddenError, NotFoundError
from ..domain.repositories import LedgerRepository, RoomRepository, TimeSlotRepository
from ..domain.services import effective_bounds, validate_bounds, validate_owner_transition
from ..models import Room, TimeSlot, TimeSlotStatus
from ..utils.time import local_day_bounds, utc_naive_to_display
from . import capacity as capacity_usecase
from .slot_state import recompute

LIST_LIMIT = 200


@dataclass(frozen=True)
class SlotChanges:
    """Owner edits; None keeps the stored value."""

    start_time: Optional[datetime] = None
    status: Optional[TimeSlotStatus] = None
    min_players_override: Optional[int] = None
    max_players_override: Optional[int] = None


async def _ensure_owner(room_repo: RoomRepository, *, room_id: int, owner_id: int) -> Room:
    row = await room_repo.get_with_owner(room_id)
    if row is None:
        raise NotFoundError("room not found", code="room_not_found")
    room, owner_user_id = row
    if owner_user_id != owner_id:
        raise ForbiddenError("room belongs to another escape game")
    return room


async def create_slot(
    slot_repo: TimeSlotRepository,
    room_repo: RoomRepository,
    *,
    owner_id: int,
    room_id: int,
    start_time: datetime,
    min_players_override: int | None,
    max_players_override: int | None,
) -> TimeSlot:
    room = await _ensure_owner(room_repo, room_id=room_id, owner_id=owner_id)
    effective_min, effective_max = effective_bounds(
        room_min=room.min_players,
        room_max=room.max_players,
        min_override=min_players_override,
        max_override=max_players_override,
    )
    validate_bounds(effective_min=effective_min, effective_max=effective_max)
    return await slot_repo.create(
        room_id=room_id,
        start_time=start_time,
        min_players_override=min_players_override,
        max_players_override=max_players_override,
    )


async def update_slot(
    slot_repo: TimeSlotRepository,
    room_repo: RoomRepository,
    ledger: LedgerRepository,
    *,
    owner_id: int,
    slot_id: int,
    changes: SlotChanges,
) -> tuple[TimeSlot, TimeSlotStatus]:
    slot, room, _ = await capacity_usecase.resolve(slot_repo, slot_id=slot_id, for_update=True)
    await _ensure_owner(room_repo, room_id=slot.room_id, owner_id=owner_id)
    previous = slot.status
    if changes.status is not None:
        validate_owner_transition(slot.status, changes.status)

    min_override = (
        changes.min_players_override
        if changes.min_players_override is not None
        else slot.min_players_override
    )
    max_override = (
        changes.max_players_override
        if changes.max_players_override is not None
        else slot.max_players_override
    )
    effective_min, effective_max = effective_bounds(
        room_min=room.min_players,
        room_max=room.max_players,
        min_override=min_override,
        max_override=max_override,
    )
    committed = await ledger.committed_count(slot.id)
    validate_bounds(effective_min=effective_min, effective_max=effective_max, committed=committed)

    slot.min_players_override = min_override
    slot.max_players_override = max_override
    if changes.start_time is not None:
        slot.start_time = changes.start_time

    if changes.status is not None:
        slot.status = changes.status
        slot.current_players_count = committed
        await slot_repo.save(slot)
    else:
        await recompute(slot_repo, ledger, slot=slot, effective_min=effective_min)
    return slot, previous


async def cancel_slot(
    slot_repo: TimeSlotRepository,
    room_repo: RoomRepository,
    *,
    owner_id: int,
    slot_id: int,
) -> tuple[TimeSlot, TimeSlotStatus]:
    slot, _, _ = await capacity_usecase.resolve(slot_repo, slot_id=slot_id, for_update=True)
    await _ensure_owner(room_repo, room_id=slot.room_id, owner_id=owner_id)
    previous = slot.status
    if previous != TimeSlotStatus.CANCELLED:
        slot.status = TimeSlotStatus.CANCELLED
        await slot_repo.save(slot)
    return slot, previous


async def list_available_dates(
    slot_repo: TimeSlotRepository,
    *,
    room_id: int,
    now: datetime,
) -> List[date]:
    start_times = await slot_repo.list_upcoming_start_times(room_id, start=now)
    return sorted({utc_naive_to_display(start).date() for start in start_times})


async def list_slots(
    slot_repo: TimeSlotRepository,
    *,
    room_id: int,
    now: datetime,
    day: date | None = None,
) -> List[TimeSlot]:
    if day is None:
        return await slot_repo.list_upcoming(room_id, start=now, limit=LIST_LIMIT)
    day_start, day_end = local_day_bounds(day)
    if day_end <= now:
        return []
    return await slot_repo.list_upcoming(
        room_id,
        start=max(day_start, now),
        end=day_end,
        limit=LIST_LIMIT,
    )
