from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from whiteboard_sync.protocol.messages import RoomSnapshot, SegEvent

if TYPE_CHECKING:
    from .persistence import SnapshotStore

LOGGER = logging.getLogger(__name__)


@dataclass
class RoomState:
    id: str
    history: list[SegEvent] = field(default_factory=list)
    page_count: int = 1
    last_ts: int = 0

    # Held by the engine for the whole normalize -> append -> broadcast step.
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def append(self, evt: SegEvent) -> None:
        self.history.append(evt)
        if evt.page + 1 > self.page_count:
            self.page_count = evt.page + 1

    def raise_page_count(self, count: int) -> bool:
        """Apply a page-count update; only strictly larger values take effect."""
        if count <= self.page_count:
            return False
        self.page_count = count
        return True

    def next_ts(self, now_ms: int) -> int:
        # Wall clock may step backwards; intra-room order must not.
        self.last_ts = max(self.last_ts, now_ms)
        return self.last_ts

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(room=self.id, pageCount=self.page_count, history=list(self.history))

    def restore(self, snap: RoomSnapshot) -> None:
        history = [e for e in snap.history if isinstance(e, SegEvent) and e.room == self.id]
        dropped = len(snap.history) - len(history)
        if dropped:
            LOGGER.warning("room %s: ignored %d foreign events in snapshot", self.id, dropped)
        self.history = history
        derived = max((e.page + 1 for e in history), default=1)
        self.page_count = max(snap.pageCount or 1, derived)
        self.last_ts = max((e.ts for e in history), default=0)


class RoomStore:
    """Room id -> RoomState, loaded lazily from snapshots on first touch."""

    def __init__(self, snapshots: SnapshotStore | None = None) -> None:
        self._snapshots = snapshots
        self._rooms: dict[str, RoomState] = {}
        # One lock per room id still loading; other rooms never wait on it.
        self._loading: dict[str, asyncio.Lock] = {}

    def get(self, room_id: str) -> RoomState | None:
        return self._rooms.get(room_id)

    def __len__(self) -> int:
        return len(self._rooms)

    async def get_or_create(self, room_id: str) -> RoomState:
        room = self._rooms.get(room_id)
        if room is not None:
            return room
        lock = self._loading.setdefault(room_id, asyncio.Lock())
        async with lock:
            room = self._rooms.get(room_id)
            if room is not None:
                return room
            room = RoomState(room_id)
            try:
                if self._snapshots is not None:
                    snap = await asyncio.to_thread(self._snapshots.load, room_id)
                    if snap is not None:
                        room.restore(snap)
                        LOGGER.info(
                            "room %s loaded: %d events, %d pages", room_id, len(room.history), room.page_count
                        )
                self._rooms[room_id] = room
            finally:
                self._loading.pop(room_id, None)
            return room

    def append(self, room_id: str, evt: SegEvent) -> RoomState:
        room = self._rooms[room_id]
        room.append(evt)
        return room
