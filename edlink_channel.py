"""
edlink channel: the live connection to the server.

Writes are accumulated and only hit the wire when a line is complete or
the buffer is full, so a request built from many small pieces goes out in
one packet. Reads are plain chunked reads; framing is the dispatcher's job.
"""

from __future__ import annotations

import errno

import anyio
import anyio.abc

from edlink_console import log
from edlink_errors import FatalLocalError, TransportError, TransportKind
from edlink_locator import Descriptor, Local, Remote

SEND_BUFFER_SIZE = 4096
RECV_CHUNK_SIZE = 4096


class Channel:
    """A connected byte stream with a line-coalescing write buffer."""

    def __init__(self, stream: anyio.abc.ByteStream, descriptor: Descriptor | None = None):
        self.descriptor = descriptor
        self._stream = stream
        self._pending = bytearray()
        self._lock = anyio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> bytes:
        """Bytes accepted by send() but not yet written."""
        return bytes(self._pending)

    async def send(self, data: str | bytes):
        """Queue data, writing whenever the buffer fills or a line ends."""
        if isinstance(data, str):
            data = data.encode("utf-8", errors="surrogateescape")
        view = memoryview(data)
        while view:
            room = SEND_BUFFER_SIZE - len(self._pending)
            part, view = view[:room], view[room:]
            self._pending += part
            if len(self._pending) == SEND_BUFFER_SIZE or self._pending.endswith(b"\n"):
                await self.flush()

    async def flush(self):
        """Write out everything queued so far."""
        async with self._lock:
            if not self._pending:
                return
            if self._closed:
                raise FatalLocalError("connection already closed")
            data = bytes(self._pending)
            try:
                await self._stream.send(data)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as e:
                raise FatalLocalError(
                    f"failed to send {len(data)} bytes to socket: {e}"
                ) from e
            # The stream either took everything or raised.
            del self._pending[:len(data)]
            log(">>>", {"bytes": len(data)})

    async def recv(self) -> bytes:
        """Read one chunk; b"" at end of stream."""
        try:
            data = await self._stream.receive(RECV_CHUNK_SIZE)
        except anyio.EndOfStream:
            return b""
        except (anyio.BrokenResourceError, OSError) as e:
            raise TransportError(TransportKind.UNREACHABLE, f"recv: {e}") from e
        log("<<<", {"bytes": len(data)})
        return data

    async def aclose(self):
        """Flush what we can and release the connection. Safe to call twice."""
        if self._closed:
            return
        try:
            await self.flush()
        except FatalLocalError:
            pass
        finally:
            self._closed = True
            await self._stream.aclose()


def _transport_error(e: OSError, what: str) -> TransportError:
    if e.errno in (errno.ECONNREFUSED,):
        kind = TransportKind.REFUSED
    elif e.errno in (errno.EACCES, errno.EPERM):
        kind = TransportKind.AUTH_REJECTED
    else:
        kind = TransportKind.UNREACHABLE
    return TransportError(kind, f"{what}: {e.strerror or e}")


async def open_channel(descriptor: Descriptor) -> Channel:
    """Connect to a located endpoint.

    For TCP the authentication preamble is queued before anything else,
    so it leads the first line the server receives.
    """
    if isinstance(descriptor, Local):
        try:
            stream = await anyio.connect_unix(descriptor.path)
        except OSError as e:
            raise _transport_error(e, "connect") from e
        log("CONN", {"kind": "local", "path": descriptor.path})
        return Channel(stream, descriptor)

    if isinstance(descriptor, Remote):
        try:
            stream = await anyio.connect_tcp(descriptor.host, descriptor.port)
        except OSError as e:
            raise _transport_error(e, "connect") from e
        log("CONN", {"kind": "remote", "host": descriptor.host, "port": descriptor.port})
        channel = Channel(stream, descriptor)
        await channel.send(b"-auth " + descriptor.auth_token + b" ")
        return channel

    raise TypeError(f"unknown transport: {descriptor!r}")
