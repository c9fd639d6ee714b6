import asyncio
import itertools
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple

import pytest
from melanjeux.domain.services import CHAT_RETENTION, PAYMENT_WINDOW
from melanjeux.models import (
    COMMITTED_PLAYER_STATUSES,
    TERMINAL_SLOT_STATUSES,
    EscapeGame,
    PlayerStatus,
    Room,
    TimeSlot,
    TimeSlotPlayer,
    TimeSlotStatus,
    User,
    UserRole,
)


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class InMemoryStore:
    """
    Stand-in for the database. Each slot has an asyncio.Lock playing the part of the
    row lock taken by SELECT ... FOR UPDATE; it is held until the transaction exits.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.users: dict[int, User] = {}
        self.escape_games: dict[int, EscapeGame] = {}
        self.rooms: dict[int, Room] = {}
        self.slots: dict[int, TimeSlot] = {}
        self.entries: dict[tuple[int, int], TimeSlotPlayer] = {}
        self.locks: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.failing_slots: set[int] = set()
        self.saves = 0

    def next_id(self) -> int:
        return next(self._ids)

    def add_user(self, *, role: UserRole = UserRole.PLAYER, email: Optional[str] = None) -> User:
        user_id = self.next_id()
        user = User(
            id=user_id,
            email=email or f"user{user_id}@example.com",
            pseudo=f"player{user_id}",
            role=role,
            created_at=utc_now_naive(),
        )
        self.users[user_id] = user
        return user

    def add_room(self, *, owner_id: Optional[int] = None, min_players: int = 2, max_players: int = 4) -> Room:
        if owner_id is None:
            owner_id = self.add_user(role=UserRole.ESCAPE_OWNER).id
        game = EscapeGame(id=self.next_id(), owner_user_id=owner_id, display_name="Melanjeux HQ")
        self.escape_games[game.id] = game
        room = Room(
            id=self.next_id(),
            escape_game_id=game.id,
            name="Le Secret de la Momie",
            image_url=None,
            min_players=min_players,
            max_players=max_players,
            is_active=True,
        )
        self.rooms[room.id] = room
        return room

    def add_slot(
        self,
        room: Room,
        *,
        start_time: datetime,
        status: TimeSlotStatus = TimeSlotStatus.EMPTY,
        min_players_override: Optional[int] = None,
        max_players_override: Optional[int] = None,
        is_chat_active: bool = True,
    ) -> TimeSlot:
        now = utc_now_naive()
        slot = TimeSlot(
            id=self.next_id(),
            room_id=room.id,
            start_time=start_time,
            status=status,
            min_players_override=min_players_override,
            max_players_override=max_players_override,
            current_players_count=0,
            is_chat_active=is_chat_active,
            created_at=now,
            updated_at=now,
        )
        self.slots[slot.id] = slot
        return slot

    def add_entry(self, slot: TimeSlot, user_id: int, status: PlayerStatus = PlayerStatus.JOINED) -> TimeSlotPlayer:
        now = utc_now_naive()
        entry = TimeSlotPlayer(
            id=self.next_id(),
            time_slot_id=slot.id,
            user_id=user_id,
            status=status,
            created_at=now,
            updated_at=now,
        )
        self.entries[(slot.id, user_id)] = entry
        if status in COMMITTED_PLAYER_STATUSES:
            slot.current_players_count += 1
        return entry

    def committed(self, slot_id: int) -> int:
        return sum(
            1
            for (entry_slot_id, _), entry in self.entries.items()
            if entry_slot_id == slot_id and entry.status in COMMITTED_PLAYER_STATUSES
        )

    def transaction(self) -> "FakeTransaction":
        return FakeTransaction(self)


class FakeTransaction:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self.held: List[int] = []
        self.slot_repo = FakeTimeSlotRepo(self)
        self.room_repo = FakeRoomRepo(store)
        self.ledger = FakeLedgerRepo(store)

    async def __aenter__(self) -> "FakeTransaction":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        for slot_id in self.held:
            self.store.locks[slot_id].release()
        self.held.clear()
        return False

    async def lock(self, slot_id: int) -> None:
        if slot_id in self.held:
            return
        await self.store.locks[slot_id].acquire()
        self.held.append(slot_id)


class FakeTimeSlotRepo:
    def __init__(self, tx: FakeTransaction) -> None:
        self.tx = tx
        self.store = tx.store

    async def get_with_room(self, slot_id: int) -> Optional[Tuple[TimeSlot, Room]]:
        await asyncio.sleep(0)
        slot = self.store.slots.get(slot_id)
        if slot is None:
            return None
        return slot, self.store.rooms[slot.room_id]

    async def get_with_room_for_update(self, slot_id: int) -> Optional[Tuple[TimeSlot, Room]]:
        if slot_id in self.store.failing_slots:
            raise RuntimeError("lock wait timeout exceeded")
        await self.tx.lock(slot_id)
        return await self.get_with_room(slot_id)

    async def create(
        self,
        *,
        room_id: int,
        start_time: datetime,
        min_players_override: int | None,
        max_players_override: int | None,
    ) -> TimeSlot:
        return self.store.add_slot(
            self.store.rooms[room_id],
            start_time=start_time,
            min_players_override=min_players_override,
            max_players_override=max_players_override,
        )

    async def save(self, slot: TimeSlot) -> TimeSlot:
        await asyncio.sleep(0)
        self.store.saves += 1
        self.store.slots[slot.id] = slot
        return slot

    async def list_sweep_candidates(self, now: datetime) -> List[int]:
        return [
            slot.id
            for slot in sorted(self.store.slots.values(), key=lambda s: s.start_time)
            if (slot.status not in TERMINAL_SLOT_STATUSES and slot.start_time <= now + PAYMENT_WINDOW)
            or (slot.is_chat_active and slot.start_time <= now - CHAT_RETENTION)
            or (slot.status == TimeSlotStatus.CONFIRMED and slot.start_time <= now)
        ]

    async def list_upcoming(
        self,
        room_id: int,
        *,
        start: datetime,
        end: datetime | None = None,
        limit: int = 200,
    ) -> List[TimeSlot]:
        slots = [
            slot
            for slot in self.store.slots.values()
            if slot.room_id == room_id
            and slot.start_time >= start
            and (end is None or slot.start_time < end)
            and slot.status != TimeSlotStatus.CANCELLED
        ]
        return sorted(slots, key=lambda s: s.start_time)[:limit]

    async def list_upcoming_start_times(self, room_id: int, *, start: datetime) -> List[datetime]:
        return [slot.start_time for slot in await self.list_upcoming(room_id, start=start, limit=10_000)]


class FakeRoomRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get_with_owner(self, room_id: int) -> Optional[Tuple[Room, int]]:
        room = self.store.rooms.get(room_id)
        if room is None:
            return None
        return room, self.store.escape_games[room.escape_game_id].owner_user_id


class FakeLedgerRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get(self, slot_id: int, user_id: int) -> Optional[TimeSlotPlayer]:
        await asyncio.sleep(0)
        return self.store.entries.get((slot_id, user_id))

    async def upsert_join(self, slot_id: int, user_id: int) -> TimeSlotPlayer:
        await asyncio.sleep(0)
        entry = self.store.entries.get((slot_id, user_id))
        if entry is None:
            now = utc_now_naive()
            entry = TimeSlotPlayer(
                id=self.store.next_id(),
                time_slot_id=slot_id,
                user_id=user_id,
                status=PlayerStatus.JOINED,
                created_at=now,
                updated_at=now,
            )
            self.store.entries[(slot_id, user_id)] = entry
        elif entry.status == PlayerStatus.CANCELLED:
            entry.status = PlayerStatus.JOINED
        return entry

    async def mark_left(self, slot_id: int, user_id: int) -> bool:
        await asyncio.sleep(0)
        entry = self.store.entries.get((slot_id, user_id))
        if entry is None or entry.status not in COMMITTED_PLAYER_STATUSES:
            return False
        entry.status = PlayerStatus.CANCELLED
        return True

    async def committed_count(self, slot_id: int) -> int:
        await asyncio.sleep(0)
        return self.store.committed(slot_id)

    async def list_for_user(
        self,
        user_id: int,
        *,
        exclude_cancelled: bool = True,
    ) -> List[Tuple[TimeSlotPlayer, TimeSlot, Room]]:
        rows = []
        for (slot_id, entry_user_id), entry in self.store.entries.items():
            if entry_user_id != user_id:
                continue
            if exclude_cancelled and entry.status == PlayerStatus.CANCELLED:
                continue
            slot = self.store.slots[slot_id]
            rows.append((entry, slot, self.store.rooms[slot.room_id]))
        return sorted(rows, key=lambda row: row[1].start_time, reverse=True)

    async def list_for_slot(self, slot_id: int) -> List[Tuple[TimeSlotPlayer, User]]:
        return [
            (entry, self.store.users[entry.user_id])
            for (entry_slot_id, _), entry in self.store.entries.items()
            if entry_slot_id == slot_id
        ]


class FakeSession:
    """Async session double for code that opens `session_factory()` and `session.begin()` itself."""

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self.tx: Any = None

    async def __aenter__(self) -> "FakeSession":
        self.tx = self.store.transaction()
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        await self.tx.__aexit__(exc_type, exc, tb)
        return False

    def begin(self) -> "FakeSession":
        return _NoopBegin()  # type: ignore[return-value]


class _NoopBegin:
    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def now() -> datetime:
    return utc_now_naive().replace(microsecond=0)


@pytest.fixture
def in_five_days(now: datetime) -> datetime:
    return now + timedelta(days=5)
