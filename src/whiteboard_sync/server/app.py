from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from whiteboard_sync.protocol.messages import dump

from .config import Settings, get_settings
from .engine import SyncEngine

LOGGER = logging.getLogger(__name__)


async def _receive_frame(ws: WebSocket) -> str | bytes:
    # Like ws.receive_text(), but binary frames reach the decoder instead of raising.
    message = await ws.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))
    text = message.get("text")
    if text is not None:
        return text
    return message.get("bytes") or b""


def create_app(settings: Settings | None = None, engine: SyncEngine | None = None) -> FastAPI:
    settings = settings or get_settings()
    engine = engine or SyncEngine.from_settings(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await engine.shutdown()

    app = FastAPI(title="whiteboard-sync", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz():
        return "ok"

    @app.get("/rooms/{room_id}/snapshot")
    async def room_snapshot(room_id: str):
        snap = await engine.snapshot(room_id)
        snap = snap.model_copy(update={"savedAt": datetime.now(timezone.utc).isoformat()})
        return dump(snap)

    @app.websocket("/ws")
    async def ws(
        ws: WebSocket,
        room: str | None = Query(None),
        client_id: str | None = Query(None, alias="id"),
    ):
        await ws.accept()
        conn = await engine.join(ws, room or settings.default_room, client_id or uuid.uuid4().hex[:10])
        try:
            while True:
                raw = await _receive_frame(ws)
                await engine.handle_raw(conn, raw)
        except WebSocketDisconnect:
            pass
        except Exception:
            LOGGER.exception("connection error: room=%s client=%s", conn.room_id, conn.client_id)
        finally:
            await engine.leave(conn)

    return app


app = create_app()
