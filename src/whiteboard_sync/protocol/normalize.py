from __future__ import annotations

import json
import math

from .constants import (
    COLOR_DEFAULT,
    SENDER_DEFAULT,
    SIZE_DEFAULT,
    SIZE_MAX,
    SIZE_MIN,
    TOOL_ERASER,
    TOOL_PEN,
)
from .messages import PageInfoEvent, Point, SegEvent


class MessageDecodeError(ValueError):
    """Inbound frame is not a JSON object."""


def decode_message(raw: str | bytes) -> dict:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MessageDecodeError(f"payload is not utf-8: {e}") from e
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MessageDecodeError(f"bad json: {e}") from e
    if not isinstance(msg, dict):
        raise MessageDecodeError("message must be an object")
    return msg


def _is_number(v: object) -> bool:
    # bool is an int subclass; JSON true/false are not coordinates
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def _clamp01(x: float) -> float:
    return 0.0 if x < 0.0 else 1.0 if x > 1.0 else float(x)


def _coerce_int(v: object, default: int) -> int:
    if isinstance(v, bool) or v is None:
        return default
    try:
        f = float(v)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(f):
        return default
    return int(f)


def _clamp_point(pt: object) -> Point:
    if not isinstance(pt, dict):
        return Point(x=0.0, y=0.0)
    x, y = pt.get("x"), pt.get("y")
    if not _is_number(x) or not _is_number(y):
        return Point(x=0.0, y=0.0)
    return Point(x=_clamp01(x), y=_clamp01(y))


def normalize_seg(room_id: str, msg: dict, ts: int) -> SegEvent | None:
    """
    Coerce an untrusted client `seg` message into the canonical event.

    Returns None when the message targets a different room than the
    connection is bound to; every other field is coerced, never rejected.
    """
    if msg.get("room") != room_id:
        return None
    sender = msg.get("from")
    size = max(SIZE_MIN, min(SIZE_MAX, _coerce_int(msg.get("size"), SIZE_DEFAULT)))
    color = msg.get("color")
    return SegEvent(
        room=room_id,
        page=max(0, _coerce_int(msg.get("page"), 0)),
        from_=sender if isinstance(sender, str) and sender else SENDER_DEFAULT,
        tool=TOOL_ERASER if msg.get("tool") == TOOL_ERASER else TOOL_PEN,
        size=size,
        color=color if isinstance(color, str) else COLOR_DEFAULT,
        a=_clamp_point(msg.get("a")),
        b=_clamp_point(msg.get("b")),
        end=bool(msg.get("end")),
        ts=ts,
    )


def normalize_pageinfo(room_id: str, msg: dict, ts: int) -> PageInfoEvent | None:
    if msg.get("room") != room_id:
        return None
    return PageInfoEvent(room=room_id, count=max(1, _coerce_int(msg.get("count"), 1)), ts=ts)
