from __future__ import annotations

from typing import Annotated, Literal, TypeAlias, Union

from pydantic import BaseModel, ConfigDict, Field


# Normalized points:
# - x,y in [0,1], relative to the page
class Point(BaseModel):
    x: float = 0.0
    y: float = 0.0


class SegEvent(BaseModel):
    """One stroke segment between two points on a page."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["seg"] = "seg"
    room: str
    page: int = 0
    from_: str = Field("anon", alias="from")
    tool: Literal["pen", "eraser"] = "pen"
    size: int = 8
    color: str = "#111111"
    a: Point
    b: Point
    end: bool = False
    ts: Annotated[int, Field(description="server-assigned ms timestamp")]


class PageInfoEvent(BaseModel):
    type: Literal["pageinfo"] = "pageinfo"
    room: str
    count: int
    ts: int


Event: TypeAlias = Annotated[Union[SegEvent, PageInfoEvent], Field(discriminator="type")]


class Hello(BaseModel):
    type: Literal["hello"] = "hello"
    pageCount: int
    history: list[Event]


class RoomSnapshot(BaseModel):
    """Persisted shape of a room; also what the export endpoint returns."""

    room: str
    # Older snapshots carry no page count; the store derives it from history.
    pageCount: int | None = None
    savedAt: str | None = None
    history: list[Event] = Field(default_factory=list)


def dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)
