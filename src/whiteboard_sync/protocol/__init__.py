from .constants import (
    T_HELLO,
    T_PAGEINFO,
    T_SEG,
)
from .messages import Event, Hello, PageInfoEvent, Point, RoomSnapshot, SegEvent, dump
from .normalize import MessageDecodeError, decode_message, normalize_pageinfo, normalize_seg

__all__ = [
    "T_HELLO",
    "T_PAGEINFO",
    "T_SEG",
    "Event",
    "Hello",
    "PageInfoEvent",
    "Point",
    "RoomSnapshot",
    "SegEvent",
    "dump",
    "MessageDecodeError",
    "decode_message",
    "normalize_pageinfo",
    "normalize_seg",
]
