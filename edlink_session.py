"""
edlink session: one connect / request / reply exchange.

    connect phase   ConnectionStrategy -> Channel
    request phase   preamble + request body, one line
    reply phase     ResponseDispatcher reads until the server hangs up

A `-window-system-unsupported` reply re-enters the request phase with an
updated RetryContext on the same connection.
"""

from __future__ import annotations

import functools
import os
import sys
from typing import Callable, Mapping, TextIO

import anyio
from anyio import to_thread

from edlink_channel import Channel
from edlink_config import RetryContext, SessionConfig
from edlink_connect import ConnectionStrategy
from edlink_console import log, warn
from edlink_dispatch import Outcome, ResponseDispatcher
from edlink_errors import EdlinkError
from edlink_request import TerminalInfo, build_preamble, build_request, find_terminal
from edlink_signals import TerminalSignalBridge, ensure_foreground

WAITING_MESSAGE = "Waiting for server..."


class Session:
    """Drives the request and reply phases over an open channel."""

    def __init__(
        self,
        config: SessionConfig,
        channel: Channel,
        ctx: RetryContext | None = None,
        environ: Mapping[str, str] | None = None,
        out: TextIO | None = None,
        err: TextIO | None = None,
        stdin: TextIO | None = None,
        terminal: Callable[[], TerminalInfo] | None = None,
        bridge_factory: Callable[..., TerminalSignalBridge] | None = TerminalSignalBridge,
    ):
        self.config = config
        self.channel = channel
        self.ctx = ctx or RetryContext.for_config(config)
        environ = os.environ if environ is None else environ
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.stdin = stdin or sys.stdin
        self._terminal = terminal or functools.partial(find_terminal, environ)
        self._bridge_factory = bridge_factory
        self._bridge: TerminalSignalBridge | None = None
        self._stdin_lines: list[str] = []
        self._tg = None
        self.dispatcher = ResponseDispatcher(
            out=self.out,
            err=self.err,
            suppress_output=config.suppress_output,
            on_retry=self._retry,
        )

    def _body(self):
        return build_request(self.config, self.ctx, self._terminal, self._stdin_lines)

    async def _start_bridge(self):
        if self._bridge is not None or self._bridge_factory is None or self._tg is None:
            return
        self._bridge = self._bridge_factory(
            self.channel, lambda: self.dispatcher.server_pid, self.ctx.tty
        )
        await self._tg.start(self._bridge.run)

    async def _send(self, request):
        if request.terminal is not None:
            await self._start_bridge()
        await self.channel.send(request.encode())

    async def _retry(self):
        """The server cannot use our display: rebuild and resend the body."""
        self.ctx.window_system_unsupported()
        log("STATE", {"retry": "window-system-unsupported", "display": self.ctx.display, "tty": self.ctx.tty})
        await self._send(self._body())

    async def _exchange(self):
        request = build_preamble(self.config)
        request.extend(self._body())
        await self._send(request)

        if not (self.config.eval or self.ctx.tty or self.ctx.nowait or self.config.quiet):
            self.out.write(WAITING_MESSAGE)
            self.out.flush()
            self.dispatcher.skip_newline = False

        timed_out = False
        try:
            with anyio.fail_after(self.config.timeout):
                await self.dispatcher.run(self.channel)
        except TimeoutError:
            timed_out = True
            self.dispatcher.outcome = Outcome.FAILURE
        self.dispatcher.finish()
        if timed_out:
            warn(f"no reply from the server after {self.config.timeout:g} seconds")

    async def run(self) -> Outcome:
        if self.config.eval and not self.config.items:
            self._stdin_lines = await to_thread.run_sync(self.stdin.readlines)

        failure = None
        async with anyio.create_task_group() as tg:
            self._tg = tg
            try:
                await self._exchange()
            except EdlinkError as e:
                # Re-raised outside the group so callers see it unwrapped.
                failure = e
            tg.cancel_scope.cancel()

        if failure is not None:
            raise failure
        return self.dispatcher.outcome


async def run_session(config: SessionConfig, environ: Mapping[str, str] | None = None) -> Outcome:
    """Connect (launching a daemon if configured) and run one session."""
    ctx = RetryContext.for_config(config)
    if config.tty:
        ensure_foreground()

    channel = await ConnectionStrategy(config, ctx, environ).connect()
    try:
        return await Session(config, channel, ctx, environ).run()
    finally:
        await channel.aclose()
