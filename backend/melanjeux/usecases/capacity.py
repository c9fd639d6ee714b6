from ..domain.errors import NotFoundError
from ..domain.repositories import TimeSlotRepository
from ..domain.services import SlotCapacity, resolve_capacity
from ..models import Room, TimeSlot


async def resolve(
    slot_repo: TimeSlotRepository,
    *,
    slot_id: int,
    for_update: bool = False,
) -> tuple[TimeSlot, Room, SlotCapacity]:
    """
    Load a slot with its room in one statement and compute its effective capacity.
    With `for_update` the slot row stays locked until the caller's transaction ends.
    """
    if for_update:
        row = await slot_repo.get_with_room_for_update(slot_id)
    else:
        row = await slot_repo.get_with_room(slot_id)
    if row is None:
        raise NotFoundError("time slot not found", code="time_slot_not_found")
    slot, room = row
    return slot, room, resolve_capacity(slot, room)
