from dataclasses import dataclass

from ..domain.repositories import LedgerRepository, TimeSlotRepository
from ..domain.services import status_after_count_change
from ..models import TimeSlot, TimeSlotStatus


@dataclass(frozen=True)
class SlotTransition:
    slot_id: int
    status_from: TimeSlotStatus
    status_to: TimeSlotStatus
    count_from: int
    count_to: int

    @property
    def status_changed(self) -> bool:
        return self.status_from != self.status_to


async def recompute(
    slot_repo: TimeSlotRepository,
    ledger: LedgerRepository,
    *,
    slot: TimeSlot,
    effective_min: int,
) -> SlotTransition:
    """
    Re-derive the slot's cached count and status from the ledger. Must run in the
    transaction that holds the slot lock; both columns are written even when unchanged.
    """
    count = await ledger.committed_count(slot.id)
    transition = SlotTransition(
        slot_id=slot.id,
        status_from=slot.status,
        status_to=status_after_count_change(slot.status, count=count, effective_min=effective_min),
        count_from=slot.current_players_count,
        count_to=count,
    )
    slot.current_players_count = count
    slot.status = transition.status_to
    await slot_repo.save(slot)
    return transition
