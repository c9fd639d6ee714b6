from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.services import effective_bounds
from .models import PlayerStatus, Room, TimeSlot, TimeSlotPlayer, TimeSlotStatus, User
from .utils.time import display_zone, utc_naive_to_display


class SlotMembershipRequest(BaseModel):
    time_slot_id: int = Field(ge=1)


class LedgerEntryRead(BaseModel):
    id: int
    time_slot_id: int
    user_id: int
    status: PlayerStatus
    created_at: datetime

    @field_serializer("created_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(display_zone()).isoformat()

    @classmethod
    def from_db(cls, *, entry: TimeSlotPlayer) -> "LedgerEntryRead":
        return cls(
            id=entry.id,
            time_slot_id=entry.time_slot_id,
            user_id=entry.user_id,
            status=entry.status,
            created_at=utc_naive_to_display(entry.created_at),
        )


class MyBookingRead(BaseModel):
    slot_id: int
    start_time: datetime
    slot_status: TimeSlotStatus
    current_players_count: int
    room_id: int
    room_title: str
    room_image: Optional[str]
    min_players: int
    max_players: int
    player_status: PlayerStatus

    @field_serializer("start_time")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(display_zone()).isoformat()

    @classmethod
    def from_db(cls, *, entry: TimeSlotPlayer, slot: TimeSlot, room: Room) -> "MyBookingRead":
        min_players, max_players = effective_bounds(
            room_min=room.min_players,
            room_max=room.max_players,
            min_override=slot.min_players_override,
            max_override=slot.max_players_override,
        )
        return cls(
            slot_id=slot.id,
            start_time=utc_naive_to_display(slot.start_time),
            slot_status=slot.status,
            current_players_count=slot.current_players_count,
            room_id=room.id,
            room_title=room.name,
            room_image=room.image_url,
            min_players=min_players,
            max_players=max_players,
            player_status=entry.status,
        )


class RosterEntryRead(BaseModel):
    id: int
    status: PlayerStatus
    created_at: datetime
    user_id: int
    email: str
    pseudo: Optional[str] = None

    @field_serializer("created_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(display_zone()).isoformat()

    @classmethod
    def from_db(cls, *, entry: TimeSlotPlayer, user: User) -> "RosterEntryRead":
        return cls(
            id=entry.id,
            status=entry.status,
            created_at=utc_naive_to_display(entry.created_at),
            user_id=user.id,
            email=user.email,
            pseudo=user.pseudo,
        )


class TimeSlotCreate(BaseModel):
    room_id: int = Field(ge=1)
    start_time: datetime
    min_players_override: Optional[int] = Field(default=None, ge=1)
    max_players_override: Optional[int] = Field(default=None, ge=1)


class TimeSlotUpdate(BaseModel):
    start_time: Optional[datetime] = None
    status: Optional[TimeSlotStatus] = None
    min_players_override: Optional[int] = Field(default=None, ge=1)
    max_players_override: Optional[int] = Field(default=None, ge=1)


class TimeSlotRead(BaseModel):
    id: int
    room_id: int
    start_time: datetime
    status: TimeSlotStatus
    min_players_override: Optional[int]
    max_players_override: Optional[int]
    current_players_count: int
    is_chat_active: bool

    @field_serializer("start_time")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(display_zone()).isoformat()

    @classmethod
    def from_db(cls, *, slot: TimeSlot) -> "TimeSlotRead":
        return cls(
            id=slot.id,
            room_id=slot.room_id,
            start_time=utc_naive_to_display(slot.start_time),
            status=slot.status,
            min_players_override=slot.min_players_override,
            max_players_override=slot.max_players_override,
            current_players_count=slot.current_players_count,
            is_chat_active=slot.is_chat_active,
        )
