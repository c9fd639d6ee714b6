from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Tuple, cast

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import LedgerRepository, RoomRepository, TimeSlotRepository
from ..domain.services import CHAT_RETENTION, PAYMENT_WINDOW
from ..models import (
    COMMITTED_PLAYER_STATUSES,
    TERMINAL_SLOT_STATUSES,
    EscapeGame,
    PlayerStatus,
    Room,
    TimeSlot,
    TimeSlotPlayer,
    TimeSlotStatus,
    User,
)
from ..utils.time import utc_now_naive


def lock_slot_statement(slot_id: int) -> Select[Tuple[TimeSlot]]:
    """Row lock on one slot. Only time_slots may appear in the FROM clause: MySQL has no
    FOR UPDATE OF, so any joined table would be locked too."""
    return (
        select(TimeSlot)
        .where(TimeSlot.id == slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


class SqlAlchemyTimeSlotRepository(TimeSlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _with_room(self, slot_id: int) -> Select[Tuple[TimeSlot, Room]]:
        return select(TimeSlot, Room).join(Room, TimeSlot.room_id == Room.id).where(TimeSlot.id == slot_id)

    async def get_with_room(self, slot_id: int) -> Optional[Tuple[TimeSlot, Room]]:
        row = (await self.session.execute(self._with_room(slot_id))).first()
        return cast(Optional[Tuple[TimeSlot, Room]], row)

    async def get_with_room_for_update(self, slot_id: int) -> Optional[Tuple[TimeSlot, Room]]:
        slot = (await self.session.execute(lock_slot_statement(slot_id))).scalar_one_or_none()
        if slot is None:
            return None
        room = (await self.session.execute(select(Room).where(Room.id == slot.room_id))).scalar_one()
        return slot, room

    async def create(
        self,
        *,
        room_id: int,
        start_time: datetime,
        min_players_override: int | None,
        max_players_override: int | None,
    ) -> TimeSlot:
        now = utc_now_naive()
        slot = TimeSlot(
            room_id=room_id,
            start_time=start_time,
            status=TimeSlotStatus.EMPTY,
            min_players_override=min_players_override,
            max_players_override=max_players_override,
            current_players_count=0,
            is_chat_active=True,
            created_at=now,
            updated_at=now,
        )
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def save(self, slot: TimeSlot) -> TimeSlot:
        slot.updated_at = utc_now_naive()
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def list_sweep_candidates(self, now: datetime) -> List[int]:
        stmt = (
            select(TimeSlot.id)
            .where(
                or_(
                    # No time rule applies to a slot starting after the payment window.
                    and_(
                        TimeSlot.status.not_in(TERMINAL_SLOT_STATUSES),
                        TimeSlot.start_time <= now + PAYMENT_WINDOW,
                    ),
                    and_(
                        TimeSlot.is_chat_active.is_(True),
                        TimeSlot.start_time <= now - CHAT_RETENTION,
                    ),
                    and_(
                        TimeSlot.status == TimeSlotStatus.CONFIRMED,
                        TimeSlot.start_time <= now,
                    ),
                )
            )
            .order_by(TimeSlot.start_time)
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_upcoming(
        self,
        room_id: int,
        *,
        start: datetime,
        end: datetime | None = None,
        limit: int = 200,
    ) -> List[TimeSlot]:
        stmt = (
            select(TimeSlot)
            .where(
                TimeSlot.room_id == room_id,
                TimeSlot.start_time >= start,
                TimeSlot.status != TimeSlotStatus.CANCELLED,
            )
            .order_by(TimeSlot.start_time)
            .limit(limit)
        )
        if end is not None:
            stmt = stmt.where(TimeSlot.start_time < end)
        return list((await self.session.scalars(stmt)).all())

    async def list_upcoming_start_times(self, room_id: int, *, start: datetime) -> List[datetime]:
        stmt = (
            select(TimeSlot.start_time)
            .where(
                TimeSlot.room_id == room_id,
                TimeSlot.start_time >= start,
                TimeSlot.status != TimeSlotStatus.CANCELLED,
            )
            .order_by(TimeSlot.start_time)
        )
        return list((await self.session.scalars(stmt)).all())


class SqlAlchemyRoomRepository(RoomRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_with_owner(self, room_id: int) -> Optional[Tuple[Room, int]]:
        stmt: Select[Tuple[Room, int]] = (
            select(Room, EscapeGame.owner_user_id)
            .join(EscapeGame, Room.escape_game_id == EscapeGame.id)
            .where(Room.id == room_id)
        )
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[Tuple[Room, int]], row)


class SqlAlchemyLedgerRepository(LedgerRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, slot_id: int, user_id: int) -> TimeSlotPlayer | None:
        stmt = select(TimeSlotPlayer).where(
            TimeSlotPlayer.time_slot_id == slot_id,
            TimeSlotPlayer.user_id == user_id,
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, TimeSlotPlayer) else None

    async def upsert_join(self, slot_id: int, user_id: int) -> TimeSlotPlayer:
        """
        Keyed on (slot, user): a cancelled row is flipped back to joined, a committed row is
        returned untouched. A concurrent insert of the same pair surfaces as IntegrityError.
        """
        now = utc_now_naive()
        entry = await self.get(slot_id, user_id)
        if entry is None:
            entry = TimeSlotPlayer(
                time_slot_id=slot_id,
                user_id=user_id,
                status=PlayerStatus.JOINED,
                created_at=now,
                updated_at=now,
            )
            self.session.add(entry)
        elif entry.status == PlayerStatus.CANCELLED:
            entry.status = PlayerStatus.JOINED
            entry.updated_at = now
        await self.session.flush()
        return entry

    async def mark_left(self, slot_id: int, user_id: int) -> bool:
        stmt = (
            update(TimeSlotPlayer)
            .where(
                TimeSlotPlayer.time_slot_id == slot_id,
                TimeSlotPlayer.user_id == user_id,
                TimeSlotPlayer.status.in_(COMMITTED_PLAYER_STATUSES),
            )
            .values(status=PlayerStatus.CANCELLED, updated_at=utc_now_naive())
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def committed_count(self, slot_id: int) -> int:
        stmt = select(func.count(TimeSlotPlayer.id)).where(
            TimeSlotPlayer.time_slot_id == slot_id,
            TimeSlotPlayer.status.in_(COMMITTED_PLAYER_STATUSES),
        )
        return int(await self.session.scalar(stmt) or 0)

    async def list_for_user(
        self,
        user_id: int,
        *,
        exclude_cancelled: bool = True,
    ) -> List[Tuple[TimeSlotPlayer, TimeSlot, Room]]:
        stmt: Select[Tuple[TimeSlotPlayer, TimeSlot, Room]] = (
            select(TimeSlotPlayer, TimeSlot, Room)
            .join(TimeSlot, TimeSlotPlayer.time_slot_id == TimeSlot.id)
            .join(Room, TimeSlot.room_id == Room.id)
            .where(TimeSlotPlayer.user_id == user_id)
            .order_by(TimeSlot.start_time.desc())
        )
        if exclude_cancelled:
            stmt = stmt.where(TimeSlotPlayer.status != PlayerStatus.CANCELLED)
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[TimeSlotPlayer, TimeSlot, Room]], list(rows.all()))

    async def list_for_slot(self, slot_id: int) -> List[Tuple[TimeSlotPlayer, User]]:
        stmt: Select[Tuple[TimeSlotPlayer, User]] = (
            select(TimeSlotPlayer, User)
            .join(User, TimeSlotPlayer.user_id == User.id)
            .where(TimeSlotPlayer.time_slot_id == slot_id)
            .order_by(TimeSlotPlayer.created_at, TimeSlotPlayer.id)
        )
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[TimeSlotPlayer, User]], list(rows.all()))
