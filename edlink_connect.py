"""
edlink connect: choose a transport, launching a server if allowed.

    TRY_LOCAL / TRY_REMOTE  one per candidate, strictly in order
    NO_TRANSPORT            every candidate failed
    LAUNCH_DAEMON           only with an empty alternate editor, only once
    CONNECTED | FAILED

Candidates are never tried concurrently: an attempt can print things
("connected to remote socket at ...") that must not appear twice.
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Awaitable, Callable, Mapping

import anyio

from edlink_channel import Channel, open_channel
from edlink_config import RetryContext, SessionConfig
from edlink_console import log, notice, warn
from edlink_errors import FatalLocalError, NoTransportError, TransportError
from edlink_locator import LOCALHOST, Descriptor, Remote, candidates, locate


class ConnectState(Enum):
    TRY_LOCAL = "try-local"
    TRY_REMOTE = "try-remote"
    NO_TRANSPORT = "no-transport"
    LAUNCH_DAEMON = "launch-daemon"
    CONNECTED = "connected"
    FAILED = "failed"


def daemon_command(config: SessionConfig) -> list[str]:
    if config.socket_name:
        return [config.daemon_program, f"--daemon={config.socket_name}"]
    return [config.daemon_program, "--daemon"]


async def launch_daemon(config: SessionConfig):
    """Start the server in daemon mode and wait until it reports readiness.

    The daemon's parent process exits once the server socket is up, with a
    non-zero status if startup failed.
    """
    command = daemon_command(config)
    log("STATE", {"launch": command})
    try:
        result = await anyio.run_process(command, stdout=None, stderr=None, check=False)
    except OSError as e:
        raise FatalLocalError(f"error starting server daemon: {e.strerror or e}") from e
    if result.returncode != 0:
        raise FatalLocalError("Could not start the server daemon")


class ConnectionStrategy:
    """Walks the candidate transports and escalates to a daemon launch."""

    def __init__(
        self,
        config: SessionConfig,
        ctx: RetryContext,
        environ: Mapping[str, str] | None = None,
        opener: Callable[[Descriptor], Awaitable[Channel]] = open_channel,
        launcher: Callable[[SessionConfig], Awaitable[None]] = launch_daemon,
    ):
        self.config = config
        self.ctx = ctx
        self.environ = os.environ if environ is None else environ
        self._open = opener
        self._launch = launcher
        self.state = ConnectState.TRY_LOCAL
        self.attempted: list[tuple[str, str]] = []

    def _set_state(self, state: ConnectState, **info):
        self.state = state
        log("STATE", {"state": state.value, **info})

    async def _attempt(self, kind: str, name: str) -> Channel | None:
        self._set_state(
            ConnectState.TRY_LOCAL if kind == "local" else ConnectState.TRY_REMOTE,
            name=name,
        )
        self.attempted.append((kind, name))
        try:
            descriptor = locate(kind, name, self.environ)
            if descriptor is None:
                return None
            if isinstance(descriptor, Remote) and descriptor.host != LOCALHOST and not self.config.quiet:
                notice(f"connected to remote socket at {descriptor.host}")
            return await self._open(descriptor)
        except TransportError as e:
            log("STATE", {"failed": name, "kind": e.kind.value})
            warn(str(e))
            return None

    async def _try_all(self) -> Channel | None:
        for kind, name in candidates(self.config.socket_name, self.config.server_file):
            channel = await self._attempt(kind, name)
            if channel is not None:
                self._set_state(ConnectState.CONNECTED, kind=kind, name=name)
                return channel
        self._set_state(ConnectState.NO_TRANSPORT)
        return None

    def _no_transport_message(self) -> str:
        if self.config.socket_name:
            return f"error accessing socket \"{self.config.socket_name}\""
        if self.config.server_file:
            return f"error accessing server file \"{self.config.server_file}\""
        return (
            "No socket or alternate editor.  Please use:\n\n"
            "\t--socket-name\n"
            "\t--server-file      (or environment variable EMACS_SERVER_FILE)\n"
            "\t--alternate-editor (or environment variable ALTERNATE_EDITOR)"
        )

    async def connect(self) -> Channel:
        """Return an open channel, or raise NoTransportError / FatalLocalError."""
        channel = await self._try_all()
        if channel is not None:
            return channel

        if not self.config.start_daemon_if_needed or self.ctx.daemon_launched:
            self._set_state(ConnectState.FAILED)
            raise NoTransportError(self._no_transport_message())

        self._set_state(ConnectState.LAUNCH_DAEMON)
        self.ctx.daemon_launched = True
        await self._launch(self.config)
        warn("Server daemon should have started, trying to connect again")

        channel = await self._try_all()
        if channel is None:
            self._set_state(ConnectState.FAILED)
            raise FatalLocalError("Cannot connect even after starting the server daemon")
        return channel
