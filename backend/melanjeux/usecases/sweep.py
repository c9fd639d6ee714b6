from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..domain.repositories import TimeSlotRepository
from ..domain.services import evaluate_sweep, resolve_capacity
from ..models import TimeSlotStatus


@dataclass(frozen=True)
class SweepOutcome:
    slot_id: int
    room_id: int
    status_from: TimeSlotStatus
    status_to: TimeSlotStatus
    players_count: int
    chat_archived: bool

    @property
    def changed(self) -> bool:
        return self.chat_archived or self.status_from != self.status_to


async def sweep_slot(
    slot_repo: TimeSlotRepository,
    *,
    slot_id: int,
    now: datetime,
) -> Optional[SweepOutcome]:
    """
    Apply the time-driven rules to one slot under its row lock. The count used is the
    cached one: every ledger writer recomputes it while holding the same lock.
    Returns None when the slot no longer exists.
    """
    row = await slot_repo.get_with_room_for_update(slot_id)
    if row is None:
        return None
    slot, room = row
    capacity = resolve_capacity(slot, room)
    decision = evaluate_sweep(
        status=slot.status,
        start_time=slot.start_time,
        count=slot.current_players_count,
        effective_min=capacity.effective_min,
        is_chat_active=slot.is_chat_active,
        now=now,
    )
    outcome = SweepOutcome(
        slot_id=slot.id,
        room_id=slot.room_id,
        status_from=slot.status,
        status_to=decision.status,
        players_count=slot.current_players_count,
        chat_archived=decision.chat_archived,
    )
    if decision.changed:
        slot.status = decision.status
        slot.is_chat_active = decision.is_chat_active
        await slot_repo.save(slot)
    return outcome
