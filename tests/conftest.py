"""Shared fixtures for edlink tests."""

import anyio
import pytest

from edlink_channel import Channel

BLOCK = object()


class FakeStream:
    """In-memory stand-in for an anyio byte stream.

    `chunks` are returned by receive() in order; an exception instance is
    raised instead, BLOCK waits forever, and running out means EOF.
    """

    def __init__(self, chunks=()):
        self.sent: list[bytes] = []
        self.closed = False
        self._chunks = list(chunks)

    @property
    def data(self) -> bytes:
        return b"".join(self.sent)

    async def send(self, data: bytes):
        self.sent.append(bytes(data))

    async def receive(self, max_bytes: int = 65536) -> bytes:
        if not self._chunks:
            raise anyio.EndOfStream
        chunk = self._chunks.pop(0)
        if chunk is BLOCK:
            await anyio.sleep_forever()
        if isinstance(chunk, Exception):
            raise chunk
        return chunk

    async def aclose(self):
        self.closed = True


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake_stream():
    return FakeStream


@pytest.fixture
def fake_channel():
    def make(chunks=()):
        stream = FakeStream(chunks)
        return Channel(stream), stream
    return make


@pytest.fixture
def block():
    return BLOCK
