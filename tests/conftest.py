import asyncio
import json

import pytest


class FakeSocket:
    """Records frames sent by the server; optionally fails or stalls."""

    def __init__(self, *, fail: bool = False, stall: bool = False) -> None:
        self.fail = fail
        self.stall = stall
        self.frames: list[str] = []

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionError("peer went away")
        if self.stall:
            await asyncio.Event().wait()
        self.frames.append(data)

    @property
    def messages(self) -> list[dict]:
        return [json.loads(f) for f in self.frames]


@pytest.fixture
def fake_socket():
    return FakeSocket
