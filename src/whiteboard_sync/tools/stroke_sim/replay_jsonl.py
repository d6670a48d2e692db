from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

import websockets

from whiteboard_sync.protocol.constants import T_HELLO, T_PAGEINFO, T_SEG

from .record_jsonl import room_url

REPLAYABLE = (T_SEG, T_PAGEINFO)


def load_events(jsonl_path: Path, room: str) -> list[tuple[int | None, dict]]:
    """
    Read replayable client messages from a JSONL file.

    Expected JSONL format:
      - record_jsonl.py output: {"ts": <ms>, "msg": {...}}
      - or raw messages per line: {...}

    A recorded `hello` is expanded into its history, so a recording taken
    from a late joiner still reproduces the board. Every message is
    retargeted at `room`; server-assigned `ts` is dropped.
    """
    events: list[tuple[int | None, dict]] = []
    for line in jsonl_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        obj = json.loads(line)
        ts = None
        if isinstance(obj, dict) and isinstance(obj.get("msg"), dict):
            raw_ts = obj.get("ts")
            ts = int(raw_ts) if isinstance(raw_ts, (int, float)) else None
            obj = obj["msg"]
        if not isinstance(obj, dict):
            continue

        msgs = [obj]
        if obj.get("type") == T_HELLO:
            msgs = [m for m in obj.get("history") or [] if isinstance(m, dict)]
            count = obj.get("pageCount")
            if isinstance(count, int) and count > 1:
                msgs.append({"type": T_PAGEINFO, "count": count})
        for msg in msgs:
            if msg.get("type") not in REPLAYABLE:
                continue
            out = {k: v for k, v in msg.items() if k != "ts"}
            out["room"] = room
            events.append((ts, out))
    return events


async def replay(
    ws_url: str,
    events: list[tuple[int | None, dict]],
    *,
    speed: float = 1.0,
    default_dt_ms: int = 0,
) -> None:
    async with websockets.connect(ws_url, max_size=2**24) as ws:
        await ws.recv()  # hello
        prev_ts: int | None = None
        for ts, msg in events:
            if ts is not None and prev_ts is not None:
                dt_ms = max(0, ts - prev_ts)
            else:
                dt_ms = default_dt_ms

            prev_ts = ts if ts is not None else prev_ts
            if dt_ms:
                await asyncio.sleep((dt_ms / 1000.0) / max(0.01, speed))

            await ws.send(json.dumps(msg, ensure_ascii=False, separators=(",", ":")))


def main() -> None:
    ap = argparse.ArgumentParser(description="Replay stroke JSONL into a room.")
    ap.add_argument("--ws", default="ws://127.0.0.1:3000", help="Server base URL, e.g. ws://127.0.0.1:3000")
    ap.add_argument("--room", default="main", help="Target room (messages are retargeted)")
    ap.add_argument("--id", dest="client_id", default="replay", help="Client id to join as")
    ap.add_argument("--in", dest="inp", required=True, help="Input JSONL path")
    ap.add_argument("--speed", type=float, default=1.0, help="Speed multiplier (2.0 = 2x faster)")
    ap.add_argument("--default-dt-ms", type=int, default=0, help="Delay between messages if no timestamps")
    args = ap.parse_args()

    asyncio.run(
        replay(
            room_url(args.ws, args.room, args.client_id),
            load_events(Path(args.inp), args.room),
            speed=args.speed,
            default_dt_ms=args.default_dt_ms,
        )
    )


if __name__ == "__main__":
    main()
