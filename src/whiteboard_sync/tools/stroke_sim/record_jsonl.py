from __future__ import annotations

import argparse
import asyncio
import json
import time
from collections import Counter
from pathlib import Path
from urllib.parse import urlencode

import websockets

from whiteboard_sync.protocol.constants import T_HELLO, T_PAGEINFO, T_SEG


def _now_ms() -> int:
    return int(time.time() * 1000)


def room_url(base: str, room: str, client_id: str | None = None) -> str:
    """`ws://host:port` -> `ws://host:port/ws?room=...&id=...`"""
    params = {"room": room}
    if client_id:
        params["id"] = client_id
    return f"{base.rstrip('/')}/ws?{urlencode(params)}"


async def record(ws_url: str, out_path: Path, *, echo: bool, limit: int | None = None) -> Counter:
    """
    Append every frame the room sends to `out_path` as `{"ts", "msg"}` lines.

    Stops when the server closes the socket or after `limit` messages.
    Returns message counts by type.
    """
    counts: Counter = Counter()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("a", encoding="utf-8") as f:
        async with websockets.connect(ws_url, max_size=2**24) as ws:
            while limit is None or sum(counts.values()) < limit:
                try:
                    raw = await ws.recv()
                except websockets.ConnectionClosed:
                    break
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                try:
                    msg = json.loads(raw)
                except ValueError:
                    print(f"[record] skipped undecodable frame: {raw[:80]!r}")
                    continue
                t = msg.get("type") if isinstance(msg, dict) else None
                counts[t] += 1
                if echo:
                    print(f"[record] {_describe(msg)}")
                f.write(json.dumps({"ts": _now_ms(), "msg": msg}, ensure_ascii=False) + "\n")
                f.flush()
    return counts


def _describe(msg) -> str:
    if not isinstance(msg, dict):
        return f"type=? msg={msg!r}"
    t = msg.get("type")
    if t == T_HELLO:
        return f"hello pages={msg.get('pageCount')} history={len(msg.get('history') or [])}"
    if t == T_SEG:
        return f"seg page={msg.get('page')} from={msg.get('from')} tool={msg.get('tool')} end={msg.get('end')}"
    if t == T_PAGEINFO:
        return f"pageinfo count={msg.get('count')}"
    return f"type={t} msg={msg}"


def main() -> None:
    ap = argparse.ArgumentParser(description="Record a room's WS traffic to a JSONL file.")
    ap.add_argument("--ws", default="ws://127.0.0.1:3000", help="Server base URL, e.g. ws://127.0.0.1:3000")
    ap.add_argument("--room", default="main", help="Room to join")
    ap.add_argument("--id", dest="client_id", default="recorder", help="Client id to join as")
    ap.add_argument("--out", required=True, help="Output JSONL path")
    ap.add_argument("--print", action="store_true", help="Print a summary of each received message")
    ap.add_argument("--limit", type=int, default=None, help="Stop after this many messages")
    args = ap.parse_args()

    url = room_url(args.ws, args.room, args.client_id)
    counts = asyncio.run(record(url, Path(args.out), echo=args.print, limit=args.limit))
    summary = ", ".join(f"{t}={n}" for t, n in sorted(counts.items(), key=str))
    print(f"[record] done: {summary or 'nothing'}")


if __name__ == "__main__":
    main()
