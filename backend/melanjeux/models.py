from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, Integer, String


class Base(DeclarativeBase):
    pass


class UserRole(StrEnum):
    PLAYER = "player"
    ESCAPE_OWNER = "escape_owner"


class TimeSlotStatus(StrEnum):
    EMPTY = "empty"
    FILLING = "filling"
    PAYMENT_PENDING = "payment_pending"
    WAITING_VALIDATION = "waiting_validation"
    CONFIRMED = "confirmed"
    FINISHED = "finished"
    CANCELLED = "cancelled"


class PlayerStatus(StrEnum):
    JOINED = "joined"
    PAYING = "paying"
    PAID = "paid"
    CANCELLED = "cancelled"


# Ledger states that hold a seat.
COMMITTED_PLAYER_STATUSES: frozenset[PlayerStatus] = frozenset(
    {PlayerStatus.JOINED, PlayerStatus.PAYING, PlayerStatus.PAID}
)

# Slot states that no longer react to player-count changes.
TERMINAL_SLOT_STATUSES: frozenset[TimeSlotStatus] = frozenset(
    {TimeSlotStatus.CONFIRMED, TimeSlotStatus.FINISHED, TimeSlotStatus.CANCELLED}
)


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    pseudo: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[UserRole] = mapped_column(_str_enum(UserRole), nullable=False, default=UserRole.PLAYER)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class EscapeGame(Base):
    __tablename__ = "escape_games"
    __table_args__ = (Index("idx_escape_games_owner", "owner_user_id"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)

    rooms: Mapped[list["Room"]] = relationship(back_populates="escape_game")


class Room(Base):
    __tablename__ = "rooms"
    __table_args__ = (
        CheckConstraint("min_players >= 1", name="chk_rooms_min_players"),
        CheckConstraint("max_players >= min_players", name="chk_rooms_max_players"),
        Index("idx_rooms_escape_game", "escape_game_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    escape_game_id: Mapped[int] = mapped_column(ForeignKey("escape_games.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    min_players: Mapped[int] = mapped_column(Integer, nullable=False)
    max_players: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    escape_game: Mapped["EscapeGame"] = relationship(back_populates="rooms")
    time_slots: Mapped[list["TimeSlot"]] = relationship(back_populates="room")


class TimeSlot(Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        CheckConstraint("current_players_count >= 0", name="chk_time_slots_count"),
        CheckConstraint(
            "min_players_override IS NULL OR min_players_override >= 1",
            name="chk_time_slots_min_override",
        ),
        CheckConstraint(
            "max_players_override IS NULL OR max_players_override >= 1",
            name="chk_time_slots_max_override",
        ),
        Index("idx_time_slots_room_start", "room_id", "start_time"),
        Index("idx_time_slots_status", "status"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id"), nullable=False)
    # naive UTC
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    status: Mapped[TimeSlotStatus] = mapped_column(
        _str_enum(TimeSlotStatus),
        nullable=False,
        default=TimeSlotStatus.EMPTY,
    )
    min_players_override: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_players_override: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_players_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_chat_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    room: Mapped["Room"] = relationship(back_populates="time_slots")
    players: Mapped[list["TimeSlotPlayer"]] = relationship(back_populates="time_slot")


class TimeSlotPlayer(Base):
    __tablename__ = "time_slot_players"
    __table_args__ = (
        UniqueConstraint("time_slot_id", "user_id", name="uq_time_slot_players_slot_user"),
        Index("idx_time_slot_players_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    time_slot_id: Mapped[int] = mapped_column(ForeignKey("time_slots.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[PlayerStatus] = mapped_column(
        _str_enum(PlayerStatus),
        nullable=False,
        default=PlayerStatus.JOINED,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    time_slot: Mapped["TimeSlot"] = relationship(back_populates="players")
