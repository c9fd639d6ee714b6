from dataclasses import dataclass
from typing import Optional

from ..domain.errors import ForbiddenError, NotFoundError
from ..domain.repositories import LedgerRepository, RoomRepository, TimeSlotRepository
from ..domain.services import JoinSnapshot, validate_join
from ..models import COMMITTED_PLAYER_STATUSES, TERMINAL_SLOT_STATUSES, Room, TimeSlot, TimeSlotPlayer, User
from . import capacity as capacity_usecase
from .slot_state import SlotTransition, recompute


@dataclass(frozen=True)
class JoinResult:
    entry: TimeSlotPlayer
    slot: TimeSlot
    transition: SlotTransition
    seat_taken: bool


@dataclass(frozen=True)
class LeaveResult:
    slot: TimeSlot
    left: bool
    transition: Optional[SlotTransition]


async def join_slot(
    slot_repo: TimeSlotRepository,
    ledger: LedgerRepository,
    *,
    slot_id: int,
    user_id: int,
) -> JoinResult:
    slot, _, capacity = await capacity_usecase.resolve(slot_repo, slot_id=slot_id, for_update=True)

    existing = await ledger.get(slot_id, user_id)
    committed = await ledger.committed_count(slot_id)
    snapshot = JoinSnapshot(
        status=slot.status,
        effective_max=capacity.effective_max,
        committed=committed,
        user_already_committed=existing is not None and existing.status in COMMITTED_PLAYER_STATUSES,
    )
    seat_taken = validate_join(snapshot)

    if seat_taken or existing is None:
        entry = await ledger.upsert_join(slot_id, user_id)
    else:
        entry = existing
    transition = await recompute(slot_repo, ledger, slot=slot, effective_min=capacity.effective_min)
    return JoinResult(entry=entry, slot=slot, transition=transition, seat_taken=seat_taken)


async def leave_slot(
    slot_repo: TimeSlotRepository,
    ledger: LedgerRepository,
    *,
    slot_id: int,
    user_id: int,
) -> LeaveResult:
    slot, _, capacity = await capacity_usecase.resolve(slot_repo, slot_id=slot_id, for_update=True)
    # Terminal slots no longer react to player changes; leaving them is a no-op.
    if slot.status in TERMINAL_SLOT_STATUSES:
        return LeaveResult(slot=slot, left=False, transition=None)

    left = await ledger.mark_left(slot_id, user_id)
    transition = await recompute(slot_repo, ledger, slot=slot, effective_min=capacity.effective_min)
    return LeaveResult(slot=slot, left=left, transition=transition)


async def list_my_bookings(
    ledger: LedgerRepository,
    *,
    user_id: int,
) -> list[tuple[TimeSlotPlayer, TimeSlot, Room]]:
    return await ledger.list_for_user(user_id, exclude_cancelled=True)


async def list_by_slot(
    slot_repo: TimeSlotRepository,
    room_repo: RoomRepository,
    ledger: LedgerRepository,
    *,
    slot_id: int,
    owner_id: int,
) -> list[tuple[TimeSlotPlayer, User]]:
    row = await slot_repo.get_with_room(slot_id)
    if row is None:
        raise NotFoundError("time slot not found", code="time_slot_not_found")
    slot, _ = row
    owned = await room_repo.get_with_owner(slot.room_id)
    if owned is None or owned[1] != owner_id:
        raise ForbiddenError("slot belongs to another escape game")
    return await ledger.list_for_slot(slot_id)
