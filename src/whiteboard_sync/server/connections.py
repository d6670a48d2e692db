from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Protocol

LOGGER = logging.getLogger(__name__)


class TextTransport(Protocol):
    async def send_text(self, data: str) -> None: ...


def encode(msg: dict) -> str:
    return json.dumps(msg, separators=(",", ":"), ensure_ascii=False)


class Connection:
    """
    One live client socket bound to a room.

    Outbound frames go through a FIFO outbox drained by a dedicated writer
    task, so a slow peer only delays itself and per-connection order matches
    enqueue order.
    """

    def __init__(self, transport: TextTransport, room_id: str, client_id: str) -> None:
        self.transport = transport
        self.room_id = room_id
        self.client_id = client_id
        self.alive = True
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._writer: asyncio.Task | None = None
        self._on_dead: Callable[[Connection], Any] | None = None

    def __repr__(self) -> str:
        return f"<Connection room={self.room_id!r} client={self.client_id!r} alive={self.alive}>"

    def start(self, on_dead: Callable[[Connection], Any] | None = None) -> None:
        self._on_dead = on_dead
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(self._write_loop())

    def send(self, data: str) -> None:
        if self.alive:
            self._outbox.put_nowait(data)

    async def drain(self) -> None:
        """Wait until every queued frame was sent (or dropped)."""
        await self._outbox.join()

    async def close(self) -> None:
        self.alive = False
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None
        self._discard_outbox()

    async def _write_loop(self) -> None:
        while True:
            data = await self._outbox.get()
            try:
                await self.transport.send_text(data)
            except Exception as exc:
                LOGGER.warning("send failed, dropping %r: %s", self, exc)
                self.alive = False
                break
            finally:
                self._outbox.task_done()
        self._discard_outbox()
        if self._on_dead is not None:
            self._on_dead(self)

    def _discard_outbox(self) -> None:
        while True:
            try:
                self._outbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._outbox.task_done()


class ConnectionRegistry:
    """Live connections grouped by room id. Duplicate client ids are kept apart."""

    def __init__(self) -> None:
        self._by_room: dict[str, set[Connection]] = {}

    def register(self, conn: Connection) -> None:
        self._by_room.setdefault(conn.room_id, set()).add(conn)
        conn.start(on_dead=self.discard)

    def discard(self, conn: Connection) -> None:
        peers = self._by_room.get(conn.room_id)
        if peers is None:
            return
        peers.discard(conn)
        if not peers:
            self._by_room.pop(conn.room_id, None)

    def in_room(self, room_id: str) -> list[Connection]:
        return [c for c in self._by_room.get(room_id, ()) if c.alive]

    def __len__(self) -> int:
        return sum(len(peers) for peers in self._by_room.values())

    def broadcast(self, room_id: str, msg: dict, exclude: Connection | None = None) -> int:
        """Queue `msg` for every live connection in the room; returns the fan-out."""
        data = encode(msg)
        sent = 0
        for conn in self.in_room(room_id):
            if conn is exclude:
                continue
            conn.send(data)
            sent += 1
        return sent
