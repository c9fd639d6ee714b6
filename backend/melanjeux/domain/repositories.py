from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..models import Room, TimeSlot, TimeSlotPlayer, User


class TimeSlotRepository(Protocol):
    async def get_with_room(self, slot_id: int) -> tuple[TimeSlot, Room] | None: ...

    async def get_with_room_for_update(self, slot_id: int) -> tuple[TimeSlot, Room] | None: ...

    async def create(
        self,
        *,
        room_id: int,
        start_time: datetime,
        min_players_override: int | None,
        max_players_override: int | None,
    ) -> TimeSlot: ...

    async def save(self, slot: TimeSlot) -> TimeSlot: ...

    async def list_sweep_candidates(self, now: datetime) -> list[int]: ...

    async def list_upcoming(
        self,
        room_id: int,
        *,
        start: datetime,
        end: datetime | None = None,
        limit: int = 200,
    ) -> list[TimeSlot]: ...

    async def list_upcoming_start_times(self, room_id: int, *, start: datetime) -> list[datetime]: ...


class RoomRepository(Protocol):
    async def get_with_owner(self, room_id: int) -> tuple[Room, int] | None: ...


class LedgerRepository(Protocol):
    async def get(self, slot_id: int, user_id: int) -> TimeSlotPlayer | None: ...

    async def upsert_join(self, slot_id: int, user_id: int) -> TimeSlotPlayer: ...

    async def mark_left(self, slot_id: int, user_id: int) -> bool: ...

    async def committed_count(self, slot_id: int) -> int: ...

    async def list_for_user(
        self,
        user_id: int,
        *,
        exclude_cancelled: bool = True,
    ) -> list[tuple[TimeSlotPlayer, TimeSlot, Room]]: ...

    async def list_for_slot(self, slot_id: int) -> list[tuple[TimeSlotPlayer, User]]: ...
