"""Room snapshot files and debounced saving."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Coroutine

from pydantic import ValidationError

from whiteboard_sync.protocol.messages import RoomSnapshot, dump

from .rooms import RoomState

LOGGER = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_\-]")


def safe_name(room_id: str) -> str:
    return _UNSAFE.sub("_", str(room_id))


class SnapshotStore:
    """One `<safe room id>.json` file per room, overwritten wholesale on save."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, room_id: str) -> Path:
        return self.root / f"{safe_name(room_id)}.json"

    def load(self, room_id: str) -> RoomSnapshot | None:
        """Return the stored snapshot, or None when missing or unreadable."""
        path = self.path_for(room_id)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fp:
                data = json.load(fp)
            return RoomSnapshot.model_validate(data)
        except (OSError, ValueError, ValidationError) as exc:
            LOGGER.warning("snapshot load failed (%s): %s", room_id, exc)
            return None

    def save(self, snap: RoomSnapshot) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.path_for(snap.room)
        snap = snap.model_copy(update={"savedAt": datetime.now(timezone.utc).isoformat()})
        tmp_fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as fp:
                json.dump(dump(snap), fp, ensure_ascii=False, separators=(",", ":"))
            os.replace(tmp_path, path)
            LOGGER.debug("snapshot saved: %s (%d events)", snap.room, len(snap.history))
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
        return path


class SaveScheduler:
    """
    Debounced, best-effort persistence per room.

    - A request with the window open writes right away and opens a new window.
    - Requests inside the window coalesce into one trailing write, fired when
      the window reopens. The snapshot is taken at write time, so the trailing
      write always carries the latest in-memory state.
    - Writes run in a worker thread and never block the caller; failures are
      logged and retried one window later, until `cancel` or `flush`.
    """

    def __init__(
        self,
        store: SnapshotStore,
        *,
        interval_s: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.interval_s = interval_s
        self._clock = clock
        self._last_attempt: dict[str, float] = {}
        self._trailing: dict[str, asyncio.Task] = {}
        self._unsaved: dict[str, RoomState] = {}
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()
        self._stopping = False

    def request(self, room: RoomState) -> None:
        self._unsaved[room.id] = room
        if room.id in self._trailing:
            return
        now = self._clock()
        last = self._last_attempt.get(room.id)
        if last is None or now - last >= self.interval_s:
            self._last_attempt[room.id] = now
            self._spawn(self._write(room))
        else:
            delay = last + self.interval_s - now
            self._trailing[room.id] = self._spawn(self._write_later(room, delay))

    def pending(self) -> set[str]:
        return set(self._unsaved)

    async def idle(self) -> None:
        """Wait until every scheduled write (trailing ones included) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel(self) -> None:
        """Drop trailing timers and wait for in-flight writes; failures stop retrying."""
        self._stopping = True
        for task in self._trailing.values():
            task.cancel()
        self._trailing.clear()
        await self.idle()

    async def flush(self) -> None:
        """Write every room with unsaved changes now, skipping the window."""
        await self.cancel()
        for room in list(self._unsaved.values()):
            self._last_attempt[room.id] = self._clock()
            await self._write(room)

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _write_later(self, room: RoomState, delay: float) -> None:
        await asyncio.sleep(delay)
        self._trailing.pop(room.id, None)
        self._last_attempt[room.id] = self._clock()
        await self._write(room)

    async def _write(self, room: RoomState) -> None:
        self._unsaved.pop(room.id, None)
        snap = room.snapshot()
        lock = self._write_locks.setdefault(room.id, asyncio.Lock())
        async with lock:
            try:
                await asyncio.to_thread(self.store.save, snap)
            except Exception:
                LOGGER.exception("snapshot save failed: %s", room.id)
                self._unsaved.setdefault(room.id, room)
                self._retry(room)

    def _retry(self, room: RoomState) -> None:
        # A quiet room gets no further requests; retry on the next window.
        self._last_attempt[room.id] = self._clock()
        if self._stopping or room.id in self._trailing:
            return
        self._trailing[room.id] = self._spawn(self._write_later(room, self.interval_s))
