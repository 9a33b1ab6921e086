"""
edlink signals: keep a tty frame in step with shell job control.

    SIGWINCH         forwarded to the server process
    SIGCONT          foreground: tell the server "-resume"
                     background: stop again with SIGTTIN
    SIGTSTP/SIGTTOU  tell the server "-suspend", then really stop

Signals are received through anyio: the OS-level handler only records
the signal and this task acts on it between other awaits, so the wire
never sees a directive in the middle of another write.
"""

from __future__ import annotations

import os
import signal
import sys
from typing import Callable

import anyio

from edlink_console import log
from edlink_errors import FatalLocalError

BRIDGED_SIGNALS = (signal.SIGWINCH, signal.SIGCONT, signal.SIGTSTP, signal.SIGTTOU)


def terminal_pgrp(fd: int) -> int:
    """Foreground process group of the terminal on fd, or -1."""
    try:
        return os.tcgetpgrp(fd)
    except OSError:
        return -1


def ensure_foreground(fd: int | None = None):
    """Stop ourselves if started in the background of the terminal we want."""
    if fd is None:
        fd = sys.stdout.fileno()
    pgrp = os.getpgrp()
    tcpgrp = terminal_pgrp(fd)
    if 0 <= tcpgrp and tcpgrp != pgrp:
        log("SIG", {"background": True, "pgrp": pgrp, "tcpgrp": tcpgrp})
        os.killpg(pgrp, signal.SIGTTIN)


class TerminalSignalBridge:
    """Turns job-control signals into wire directives."""

    def __init__(self, channel, server_pid: Callable[[], int | None], tty: bool, fd: int | None = None):
        self.channel = channel
        self._server_pid = server_pid
        self.tty = tty
        self.fd = sys.stdout.fileno() if fd is None else fd

    async def run(self, *, task_status=anyio.TASK_STATUS_IGNORED):
        """Handle signals until cancelled."""
        with anyio.open_signal_receiver(*BRIDGED_SIGNALS) as signals:
            task_status.started()
            async for signum in signals:
                await self.handle(signum)

    async def handle(self, signum: int):
        log("SIG", {"signal": signal.Signals(signum).name})
        if signum == signal.SIGWINCH:
            self.forward(signum)
        elif signum == signal.SIGCONT:
            await self.on_continue()
        elif signum in (signal.SIGTSTP, signal.SIGTTOU):
            await self.on_stop(signum)

    def forward(self, signum: int):
        pid = self._server_pid()
        if pid:
            try:
                os.kill(pid, signum)
            except OSError as e:
                # Not ours to signal, or on another host.
                log("SIG", {"forward": e.strerror or str(e), "pid": pid})

    async def _notify(self, directive: str):
        try:
            await self.channel.send(directive)
        except FatalLocalError as e:
            log("ERR", {"error": str(e), "context": directive.strip()})

    async def on_continue(self):
        pgrp = os.getpgrp()
        tcpgrp = terminal_pgrp(self.fd)
        if tcpgrp == pgrp:
            await self._notify("-resume \n")
        elif 0 <= tcpgrp and self.tty:
            # Continued in the background: cancel the continue.
            os.killpg(pgrp, signal.SIGTTIN)

    async def on_stop(self, signum: int):
        if not self.channel.closed:
            await self._notify("-suspend \n")
        # Let the default action stop us, then take the signal back.
        previous = signal.signal(signum, signal.SIG_DFL)
        try:
            os.kill(os.getpid(), signum)
        finally:
            signal.signal(signum, previous)
