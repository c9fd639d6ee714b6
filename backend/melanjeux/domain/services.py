from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..models import TERMINAL_SLOT_STATUSES, Room, TimeSlot, TimeSlotStatus
from .errors import BookingValidationError, NotJoinableError, SlotFullError

PAYMENT_WINDOW = timedelta(hours=48)
CHAT_RETENTION = timedelta(hours=24)

NOT_JOINABLE_STATUSES: frozenset[TimeSlotStatus] = frozenset(
    {TimeSlotStatus.CANCELLED, TimeSlotStatus.CONFIRMED, TimeSlotStatus.FINISHED}
)
_UNCONFIRMED_STATUSES: frozenset[TimeSlotStatus] = frozenset(
    {
        TimeSlotStatus.EMPTY,
        TimeSlotStatus.FILLING,
        TimeSlotStatus.PAYMENT_PENDING,
        TimeSlotStatus.WAITING_VALIDATION,
    }
)
_OPEN_STATUSES: frozenset[TimeSlotStatus] = frozenset({TimeSlotStatus.EMPTY, TimeSlotStatus.FILLING})


@dataclass(frozen=True)
class SlotCapacity:
    effective_min: int
    effective_max: int
    current_count: int
    status: TimeSlotStatus


@dataclass(frozen=True)
class SweepDecision:
    status: TimeSlotStatus
    is_chat_active: bool
    status_changed: bool
    chat_archived: bool

    @property
    def changed(self) -> bool:
        return self.status_changed or self.chat_archived


def effective_bounds(
    *,
    room_min: int,
    room_max: int,
    min_override: Optional[int],
    max_override: Optional[int],
) -> tuple[int, int]:
    effective_min = min_override if min_override is not None else room_min
    effective_max = max_override if max_override is not None else room_max
    return effective_min, effective_max


def resolve_capacity(slot: TimeSlot, room: Room) -> SlotCapacity:
    """Effective min/max for a slot: the slot override when set, else the room default."""
    effective_min, effective_max = effective_bounds(
        room_min=room.min_players,
        room_max=room.max_players,
        min_override=slot.min_players_override,
        max_override=slot.max_players_override,
    )
    return SlotCapacity(
        effective_min=effective_min,
        effective_max=effective_max,
        current_count=slot.current_players_count,
        status=slot.status,
    )


@dataclass(frozen=True)
class JoinSnapshot:
    status: TimeSlotStatus
    effective_max: int
    committed: int
    user_already_committed: bool


def validate_join(snapshot: JoinSnapshot) -> bool:
    """
    Pure validation: the slot must still accept players and have a free seat.
    `committed` must be the ledger count read under the slot lock, not the cached value.
    Returns False when the user already holds a seat (repeat join, nothing to write).
    """
    if snapshot.status in NOT_JOINABLE_STATUSES:
        raise NotJoinableError(f"slot is {snapshot.status.value}")
    if snapshot.user_already_committed:
        return False
    if snapshot.committed >= snapshot.effective_max:
        raise SlotFullError("slot is full")
    return True


def status_after_count_change(
    current: TimeSlotStatus,
    *,
    count: int,
    effective_min: int,
) -> TimeSlotStatus:
    if current in TERMINAL_SLOT_STATUSES:
        return current
    if count == 0:
        return TimeSlotStatus.EMPTY
    if count < effective_min:
        return TimeSlotStatus.FILLING
    # Reaching the minimum only holds the slot in filling; the sweep moves it to payment.
    if current in _OPEN_STATUSES:
        return TimeSlotStatus.FILLING
    return current


def evaluate_sweep(
    *,
    status: TimeSlotStatus,
    start_time: datetime,
    count: int,
    effective_min: int,
    is_chat_active: bool,
    now: datetime,
) -> SweepDecision:
    """
    Time-driven transitions for one slot. `start_time` and `now` must share the same
    timezone convention (naive UTC in this service).
    """
    new_status = status
    if start_time <= now:
        if status == TimeSlotStatus.CONFIRMED:
            new_status = TimeSlotStatus.FINISHED
        elif status in _UNCONFIRMED_STATUSES:
            new_status = TimeSlotStatus.CANCELLED
    elif start_time <= now + PAYMENT_WINDOW and status in _OPEN_STATUSES:
        if count >= effective_min:
            new_status = TimeSlotStatus.PAYMENT_PENDING
        elif count == 0:
            new_status = TimeSlotStatus.CANCELLED
        # 0 < count < min: left filling until start.

    archive_chat = is_chat_active and start_time <= now - CHAT_RETENTION
    return SweepDecision(
        status=new_status,
        is_chat_active=is_chat_active and not archive_chat,
        status_changed=new_status != status,
        chat_archived=archive_chat,
    )


def validate_owner_transition(current: TimeSlotStatus, target: TimeSlotStatus) -> None:
    if current in (TimeSlotStatus.FINISHED, TimeSlotStatus.CANCELLED) and target != current:
        raise BookingValidationError(
            f"slot is {current.value}",
            code="slot_not_editable",
        )


def validate_bounds(*, effective_min: int, effective_max: int, committed: int = 0) -> None:
    if effective_min < 1 or effective_max < 1:
        raise BookingValidationError("player bounds must be positive", code="invalid_player_bounds")
    if effective_min > effective_max:
        raise BookingValidationError("min players exceeds max players", code="invalid_player_bounds")
    if effective_max < committed:
        raise BookingValidationError(
            "max players below current players",
            code="max_below_current_players",
        )
