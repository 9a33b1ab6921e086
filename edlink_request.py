"""
edlink request: build the single request line sent to the server.

A request is a sequence of directives, each `-name` followed by zero or
more quoted arguments and a space, the whole terminated by one newline:

    -dir /home/u/ -current-frame -tty /dev/pts/3 xterm -file /tmp/a.txt \\n

It is sent in two parts. The preamble (`-env`, `-dir`) goes out once per
connection; the body can be rebuilt and resent when the server rejects
our display.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping

from edlink_codec import escape
from edlink_config import RetryContext, SessionConfig
from edlink_errors import FatalLocalError

_POSITION = re.compile(r"\+\d+(:\d+)?")


@dataclass(frozen=True)
class Directive:
    name: str
    args: tuple[str, ...] = ()

    def encode(self) -> str:
        return "".join(f"{part} " for part in (f"-{self.name}", *self.args))


@dataclass
class Request:
    directives: list[Directive] = field(default_factory=list)
    # Set when a -tty directive is included; the signal bridge needs it.
    terminal: "TerminalInfo | None" = None

    def add(self, name: str, *args: str):
        self.directives.append(Directive(name, args))

    def extend(self, other: "Request"):
        self.directives.extend(other.directives)
        if other.terminal is not None:
            self.terminal = other.terminal

    def names(self) -> list[str]:
        return [d.name for d in self.directives]

    def encode(self) -> str:
        return "".join(d.encode() for d in self.directives) + "\n"


# ============================================================================
# Terminal info
# ============================================================================

@dataclass(frozen=True)
class TerminalInfo:
    name: str
    type: str


class TerminalUnavailable(Exception):
    """No usable controlling terminal."""


def find_terminal(environ: Mapping[str, str], fd: int = 1) -> TerminalInfo:
    """Name and type of the terminal on fd (stdout by default)."""
    try:
        name = os.ttyname(fd)
    except OSError:
        raise TerminalUnavailable("could not get terminal name") from None

    term = environ.get("TERM")
    if not term:
        raise TerminalUnavailable("please set the TERM variable to your terminal type")

    # Nesting a frame inside an Emacs term buffer locks up input.
    inside = environ.get("INSIDE_EMACS", "")
    if ",term:" in inside and term.startswith("eterm"):
        raise TerminalUnavailable("opening a frame in an Emacs term buffer is not supported")

    return TerminalInfo(name, term)


# ============================================================================
# Building
# ============================================================================

def is_position(item: str) -> bool:
    return _POSITION.fullmatch(item) is not None


def build_preamble(config: SessionConfig) -> Request:
    """Environment (new frames only) and working directory."""
    req = Request()
    if config.create_frame:
        for entry in config.environment:
            req.add("env", escape(entry))

    prefix = escape(config.tramp_prefix) if config.tramp_prefix else ""
    req.add("dir", prefix + escape(config.cwd) + "/")
    return req


def build_request(
    config: SessionConfig,
    ctx: RetryContext,
    terminal: Callable[[], TerminalInfo],
    stdin_lines: Iterable[str] = (),
) -> Request:
    """Everything after the preamble, for the current retry state."""
    req = Request()

    if ctx.nowait:
        req.add("nowait")
    if not config.create_frame:
        req.add("current-frame")
    if ctx.display:
        req.add("display", escape(ctx.display))
    if config.parent_id:
        req.add("parent-id", escape(config.parent_id))
    if config.frame_parameters and config.create_frame:
        req.add("frame-parameters", escape(config.frame_parameters))

    # Unless this is a plain evaluation, offer our tty: a daemon with no
    # other frame may need it.
    if config.create_frame or not config.eval:
        try:
            info = terminal()
        except TerminalUnavailable as e:
            if ctx.tty:
                raise FatalLocalError(str(e)) from e
        else:
            req.add("tty", escape(info.name), escape(info.type))
            req.terminal = info

    if config.create_frame and not ctx.tty:
        req.add("window-system")

    if config.items:
        for item in config.items:
            if config.eval:
                req.add("eval", escape(item))
            elif is_position(item):
                req.add("position", escape(item))
            else:
                path = escape(item)
                if config.tramp_prefix and os.path.isabs(item):
                    path = escape(config.tramp_prefix) + path
                req.add("file", path)
    elif config.eval:
        for line in stdin_lines:
            req.add("eval", escape(line))

    return req
