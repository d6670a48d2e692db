from __future__ import annotations

import logging
import time
from typing import Callable

from whiteboard_sync.protocol.constants import T_PAGEINFO, T_SEG
from whiteboard_sync.protocol.messages import Hello, RoomSnapshot, dump
from whiteboard_sync.protocol.normalize import (
    MessageDecodeError,
    decode_message,
    normalize_pageinfo,
    normalize_seg,
)

from .config import Settings
from .connections import Connection, ConnectionRegistry, TextTransport, encode
from .persistence import SaveScheduler, SnapshotStore
from .rooms import RoomState, RoomStore

LOGGER = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class SyncEngine:
    """
    Server-side authority for every room.

    Each inbound message is handled under its room's lock, so append order,
    broadcast order and replay order are the same sequence. Different rooms
    never wait on each other.
    """

    def __init__(
        self,
        rooms: RoomStore,
        registry: ConnectionRegistry,
        saver: SaveScheduler | None = None,
        *,
        flush_on_shutdown: bool = True,
        debug_log_msgs: bool = False,
        now_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.rooms = rooms
        self.registry = registry
        self.saver = saver
        self.flush_on_shutdown = flush_on_shutdown
        self.debug_log_msgs = debug_log_msgs
        self._now_ms = now_ms

    @classmethod
    def from_settings(cls, settings: Settings) -> SyncEngine:
        store = SnapshotStore(settings.storage_dir)
        return cls(
            RoomStore(store),
            ConnectionRegistry(),
            SaveScheduler(store, interval_s=settings.save_interval_s),
            flush_on_shutdown=settings.flush_on_shutdown,
            debug_log_msgs=settings.debug_log_msgs,
        )

    async def join(self, transport: TextTransport, room_id: str, client_id: str) -> Connection:
        """Register a connection and queue its replay (`hello`) as the first frame."""
        room = await self.rooms.get_or_create(room_id)
        conn = Connection(transport, room_id, client_id)
        async with room.lock:
            self.registry.register(conn)
            hello = Hello(pageCount=room.page_count, history=list(room.history))
            conn.send(encode(dump(hello)))
        LOGGER.info(
            "joined room=%s client=%s (%d events, %d connected)",
            room_id,
            client_id,
            len(room.history),
            len(self.registry.in_room(room_id)),
        )
        return conn

    async def leave(self, conn: Connection) -> None:
        self.registry.discard(conn)
        await conn.close()
        LOGGER.info("left room=%s client=%s", conn.room_id, conn.client_id)

    async def handle_raw(self, conn: Connection, raw: str | bytes) -> None:
        try:
            msg = decode_message(raw)
        except MessageDecodeError as exc:
            LOGGER.warning("bad message from room=%s client=%s: %s", conn.room_id, conn.client_id, exc)
            return
        await self.handle_message(conn, msg)

    async def handle_message(self, conn: Connection, msg: dict) -> None:
        t = msg.get("type")
        if self.debug_log_msgs:
            LOGGER.debug("[ws:%s] in type=%s from=%s", conn.room_id, t, conn.client_id)

        room = await self.rooms.get_or_create(conn.room_id)
        if t == T_SEG:
            await self._on_seg(conn, room, msg)
        elif t == T_PAGEINFO:
            await self._on_pageinfo(conn, room, msg)
        # anything else is ignored

    async def _on_seg(self, conn: Connection, room: RoomState, msg: dict) -> None:
        async with room.lock:
            evt = normalize_seg(room.id, msg, room.next_ts(self._now_ms()))
            if evt is None:
                return
            self.rooms.append(room.id, evt)
            self.registry.broadcast(room.id, dump(evt), exclude=conn)
        self._persist(room)

    async def _on_pageinfo(self, conn: Connection, room: RoomState, msg: dict) -> None:
        async with room.lock:
            evt = normalize_pageinfo(room.id, msg, room.next_ts(self._now_ms()))
            if evt is None or not room.raise_page_count(evt.count):
                return
            # sender included: every client converges on the same count
            self.registry.broadcast(room.id, dump(evt))
        self._persist(room)

    def _persist(self, room: RoomState) -> None:
        if self.saver is not None:
            self.saver.request(room)

    async def snapshot(self, room_id: str) -> RoomSnapshot:
        room = await self.rooms.get_or_create(room_id)
        async with room.lock:
            return room.snapshot()

    async def shutdown(self) -> None:
        if self.saver is None:
            return
        if self.flush_on_shutdown:
            await self.saver.flush()
        else:
            await self.saver.cancel()
