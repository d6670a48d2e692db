import asyncio
import json

import websockets

from whiteboard_sync.tools.stroke_sim import record_jsonl
from whiteboard_sync.tools.stroke_sim.record_jsonl import record, room_url
from whiteboard_sync.tools.stroke_sim.replay_jsonl import load_events


class _FakeServerSocket:
    """Yields queued frames, then behaves like a server-side close."""

    def __init__(self, frames) -> None:
        self.frames = list(frames)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> bool:
        return False

    async def recv(self):
        if not self.frames:
            raise websockets.ConnectionClosedOK(None, None)
        return self.frames.pop(0)


def _connect_to(fake, urls):
    def connect(url, **kwargs):
        urls.append(url)
        return fake

    return connect


def test_room_url_builds_query() -> None:
    assert room_url("ws://host:3000/", "my room", "bot") == "ws://host:3000/ws?room=my+room&id=bot"
    assert room_url("ws://host:3000", "demo") == "ws://host:3000/ws?room=demo"


def test_record_writes_frames_until_server_closes(tmp_path, monkeypatch, capsys) -> None:
    seg = {"type": "seg", "room": "demo", "page": 0, "from": "a", "a": {"x": 0, "y": 0}, "b": {"x": 1, "y": 1}}
    frames = [
        json.dumps({"type": "hello", "pageCount": 1, "history": []}),
        json.dumps(seg).encode("utf-8"),
        "not json",
        json.dumps({"type": "pageinfo", "room": "demo", "count": 2}),
    ]
    urls: list[str] = []
    monkeypatch.setattr(record_jsonl.websockets, "connect", _connect_to(_FakeServerSocket(frames), urls))
    out = tmp_path / "rec" / "demo.jsonl"
    out.parent.mkdir()
    out.write_text(json.dumps({"ts": 1, "msg": {"type": "hello", "pageCount": 1, "history": []}}) + "\n")

    counts = asyncio.run(record("ws://host/ws?room=demo", out, echo=True))

    assert urls == ["ws://host/ws?room=demo"]
    assert counts == {"hello": 1, "seg": 1, "pageinfo": 1}
    lines = [json.loads(line) for line in out.read_text(encoding="utf-8").splitlines()]
    assert len(lines) == 4
    assert [line["msg"]["type"] for line in lines] == ["hello", "hello", "seg", "pageinfo"]
    assert all(isinstance(line["ts"], int) for line in lines)
    assert lines[2]["msg"] == seg
    printed = capsys.readouterr().out
    assert "seg page=0 from=a" in printed
    assert "skipped undecodable frame" in printed


def test_record_stops_after_limit(tmp_path, monkeypatch) -> None:
    frames = [json.dumps({"type": "pageinfo", "room": "demo", "count": n}) for n in range(2, 6)]
    fake = _FakeServerSocket(frames)
    monkeypatch.setattr(record_jsonl.websockets, "connect", _connect_to(fake, []))
    out = tmp_path / "rec.jsonl"

    counts = asyncio.run(record("ws://host/ws?room=demo", out, echo=False, limit=2))

    assert counts == {"pageinfo": 2}
    assert len(out.read_text(encoding="utf-8").splitlines()) == 2
    assert len(fake.frames) == 2


def test_recorded_file_replays_into_another_room(tmp_path, monkeypatch) -> None:
    seg = {"type": "seg", "room": "demo", "page": 1, "a": {"x": 0, "y": 0}, "b": {"x": 1, "y": 1}, "ts": 5}
    frames = [json.dumps({"type": "hello", "pageCount": 2, "history": [seg]}), json.dumps(seg)]
    monkeypatch.setattr(record_jsonl.websockets, "connect", _connect_to(_FakeServerSocket(frames), []))
    out = tmp_path / "rec.jsonl"
    asyncio.run(record("ws://host/ws?room=demo", out, echo=False))

    events = load_events(out, "copy")

    assert [m["type"] for _, m in events] == ["seg", "pageinfo", "seg"]
    assert all(m["room"] == "copy" for _, m in events)


def test_load_events_retargets_and_expands_hello(tmp_path) -> None:
    seg = {"type": "seg", "room": "old", "page": 0, "a": {"x": 0, "y": 0}, "b": {"x": 1, "y": 1}, "ts": 99}
    lines = [
        {"ts": 1000, "msg": {"type": "hello", "pageCount": 2, "history": [seg]}},
        {"ts": 1500, "msg": dict(seg, page=1)},
        {"ts": 1600, "msg": {"type": "cursor", "x": 0.5}},
        {"type": "pageinfo", "room": "old", "count": 3, "ts": 5},
    ]
    path = tmp_path / "rec.jsonl"
    path.write_text("\n".join(json.dumps(line) for line in lines) + "\n\n", encoding="utf-8")

    events = load_events(path, "new")

    assert [(ts, m["type"]) for ts, m in events] == [
        (1000, "seg"),
        (1000, "pageinfo"),
        (1500, "seg"),
        (None, "pageinfo"),
    ]
    assert all(m["room"] == "new" for _, m in events)
    assert all("ts" not in m for _, m in events)
    assert events[1][1]["count"] == 2
