"""
edlink config: the immutable per-invocation session configuration.

Everything the protocol engine reads is resolved here, once, from parsed
command-line options and an environment mapping. The only state that
changes during a session lives in RetryContext.
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Mapping

from edlink_errors import FatalLocalError

DEFAULT_DAEMON = "emacs"


def current_directory(environ: Mapping[str, str]) -> str:
    """Return the working directory, preferring $PWD when it is accurate.

    $PWD keeps the user's symlinked spelling of the path, which is what
    they expect the server to see.
    """
    pwd = environ.get("PWD")
    try:
        if pwd and os.path.isabs(pwd) and os.path.samefile(pwd, "."):
            return pwd
        return os.getcwd()
    except OSError as e:
        raise FatalLocalError(f"Cannot get current working directory: {e.strerror}") from e


def _float_or_none(value: str | None) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except ValueError:
        raise FatalLocalError(f"invalid timeout: {value!r}") from None


@dataclass(frozen=True)
class SessionConfig:
    """Options for one client invocation."""
    items: tuple[str, ...] = ()
    socket_name: str | None = None
    server_file: str | None = None
    display: str | None = None
    alt_display: str | None = None
    parent_id: str | None = None
    tty: bool = False
    create_frame: bool = False
    nowait: bool = False
    quiet: bool = False
    suppress_output: bool = False
    eval: bool = False
    alternate_editor: str | None = None
    tramp_prefix: str | None = None
    frame_parameters: str | None = None
    cwd: str = "/"
    environment: tuple[str, ...] = ()
    timeout: float | None = None
    daemon_program: str = DEFAULT_DAEMON

    @property
    def start_daemon_if_needed(self) -> bool:
        """An empty alternate editor means: launch the server ourselves."""
        return self.alternate_editor == ""

    @property
    def needs_target(self) -> bool:
        return not (self.items or self.eval or self.create_frame)

    @classmethod
    def from_args(
        cls,
        args: argparse.Namespace,
        environ: Mapping[str, str],
        platform: str = sys.platform,
    ) -> "SessionConfig":
        """Resolve options against the environment."""
        tty = bool(args.tty)
        create_frame = bool(args.create_frame or args.tty or args.parent_id)

        alternate_editor = args.alternate_editor
        if alternate_editor is None:
            alternate_editor = environ.get("ALTERNATE_EDITOR")

        tramp_prefix = args.tramp
        if tramp_prefix is None:
            tramp_prefix = environ.get("EMACSCLIENT_TRAMP")

        # Without -c, $DISPLAY is only used when asked for explicitly.
        display = args.display
        alt_display = None
        if create_frame and not tty and not display:
            if platform == "darwin":
                alt_display = "ns"
            display = environ.get("DISPLAY")

        if not display:
            display, alt_display = alt_display, None

        if display == "":
            display = None

        # No display available: new frames go on this terminal.
        if create_frame and not display:
            tty = True

        timeout = args.timeout
        if timeout is None:
            timeout = _float_or_none(environ.get("EDLINK_TIMEOUT"))

        return cls(
            items=tuple(args.items),
            socket_name=args.socket_name or environ.get("EMACS_SOCKET_NAME") or None,
            server_file=args.server_file or environ.get("EMACS_SERVER_FILE") or None,
            display=display,
            alt_display=alt_display,
            parent_id=args.parent_id,
            tty=tty,
            create_frame=create_frame,
            nowait=bool(args.nowait),
            quiet=bool(args.quiet),
            suppress_output=bool(args.suppress_output),
            eval=bool(args.eval),
            alternate_editor=alternate_editor,
            tramp_prefix=tramp_prefix,
            frame_parameters=args.frame_parameters,
            cwd=current_directory(environ),
            environment=tuple(f"{k}={v}" for k, v in environ.items()),
            timeout=timeout,
            daemon_program=environ.get("EDLINK_DAEMON") or DEFAULT_DAEMON,
        )


@dataclass
class RetryContext:
    """Request-phase state that may change while a session runs."""
    display: str | None
    alt_display: str | None
    tty: bool
    nowait: bool
    daemon_launched: bool = False

    @classmethod
    def for_config(cls, config: SessionConfig) -> "RetryContext":
        return cls(
            display=config.display,
            alt_display=config.alt_display,
            tty=config.tty,
            nowait=config.nowait,
        )

    def window_system_unsupported(self):
        """The server cannot open our display: try the alternate one, else the terminal."""
        if self.alt_display:
            self.display, self.alt_display = self.alt_display, None
        else:
            self.nowait = False
            self.tty = True
