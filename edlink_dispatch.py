"""
edlink dispatch: interpret what the server sends back.

Replies are newline-terminated lines, each starting with a directive:

    -emacs-pid PID               server process id (for signal forwarding)
    -window-system-unsupported   server cannot use our display; retry
    -print TEXT                  show TEXT
    -print-nonl TEXT             continue the previous -print
    -error TEXT                  show TEXT as an error, exit status 1
    -suspend                     stop this process (the tty frame was suspended)

Lines may arrive split across reads at any byte; the unterminated tail is
kept until the rest shows up.
"""

from __future__ import annotations

import os
import signal
import sys
from enum import Enum
from typing import Awaitable, Callable, TextIO

from edlink_codec import unescape
from edlink_console import log
from edlink_errors import TransportError


class Outcome(Enum):
    SUCCESS = 0
    FAILURE = 1

    @property
    def exit_code(self) -> int:
        return self.value


def stop_process_group():
    """Stop every process in our group, as a tty suspend does."""
    os.kill(0, signal.SIGSTOP)


class ResponseDispatcher:
    """Line splitter plus the per-directive side effects."""

    def __init__(
        self,
        out: TextIO | None = None,
        err: TextIO | None = None,
        suppress_output: bool = False,
        on_retry: Callable[[], Awaitable[None]] | None = None,
        on_suspend: Callable[[], None] = stop_process_group,
        skip_newline: bool = True,
    ):
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.suppress_output = suppress_output
        self._on_retry = on_retry
        self._on_suspend = on_suspend
        # True when the last thing printed ended a line.
        self.skip_newline = skip_newline
        self.outcome = Outcome.SUCCESS
        self.server_pid: int | None = None
        self._partial = b""
        self._handlers = {
            "-emacs-pid": self._emacs_pid,
            "-window-system-unsupported": self._window_system_unsupported,
            "-print": self._print,
            "-print-nonl": self._print_nonl,
            "-error": self._error,
            "-suspend": self._suspend,
        }

    # -------------------------------------------------------------------------
    # Framing
    # -------------------------------------------------------------------------

    async def feed(self, data: bytes):
        """Dispatch every complete line in data, keeping any partial tail."""
        buf = self._partial + data
        *lines, self._partial = buf.split(b"\n")
        for raw in lines:
            if raw:
                await self.dispatch(raw.decode("utf-8", errors="surrogateescape"))

    async def run(self, channel):
        """Read until end of stream or a read error."""
        while True:
            try:
                data = await channel.recv()
            except TransportError as e:
                log("ERR", {"error": str(e), "context": "recv"})
                self.outcome = Outcome.FAILURE
                break
            if not data:
                break
            await self.feed(data)

    def finish(self):
        """End the last line of output if needed."""
        if not self.skip_newline:
            self._write("\n")
        self.out.flush()

    # -------------------------------------------------------------------------
    # Directives
    # -------------------------------------------------------------------------

    async def dispatch(self, line: str):
        name, _, arg = line.partition(" ")
        log("<<<", {"directive": name})
        handler = self._handlers.get(name)
        if handler is None:
            self._unknown(line)
            return
        result = handler(arg)
        if result is not None:
            await result

    def _write(self, text: str, stream: TextIO | None = None):
        stream = stream or self.out
        buffer = getattr(stream, "buffer", None)
        if buffer is None:
            stream.write(text)
        else:
            # Bytes that were not UTF-8 on the wire go out unchanged.
            stream.flush()
            buffer.write(text.encode("utf-8", errors="surrogateescape"))
        stream.flush()

    def _track(self, text: str):
        if text:
            self.skip_newline = text.endswith("\n")

    def _emacs_pid(self, arg: str):
        try:
            self.server_pid = int(arg.strip())
        except ValueError:
            self._unknown(f"-emacs-pid {arg}")

    def _window_system_unsupported(self, arg: str):
        if self._on_retry is None:
            return None
        return self._on_retry()

    def _print(self, arg: str):
        if self.suppress_output:
            return
        text = unescape(arg)
        self._write(text if self.skip_newline else "\n" + text)
        self._track(text)

    def _print_nonl(self, arg: str):
        if self.suppress_output:
            return
        text = unescape(arg)
        self._write(text)
        self._track(text)

    def _error(self, arg: str):
        text = unescape(arg)
        if not self.skip_newline:
            self._write("\n")
        self._write(f"*ERROR*: {text}", self.err)
        self._track(text)
        self.outcome = Outcome.FAILURE

    def _suspend(self, arg: str):
        if not self.skip_newline:
            self._write("\n")
        self.skip_newline = True
        self._on_suspend()

    def _unknown(self, line: str):
        prefix = "" if self.skip_newline else "\n"
        self._write(f"{prefix}*ERROR*: Unknown message: {line}\n")
        self.skip_newline = True
