#!/usr/bin/env python3
"""
edlink - Tell a running editor server to visit files or evaluate code

Usage:
    edlink [options] FILE...           Visit files ([+LINE[:COLUMN]] FILE)
    edlink -e EXPR...                  Evaluate expressions
    edlink -e < exprs                  Evaluate one expression per input line
    edlink -c / -t                     Open a new graphical / terminal frame

Options:
    -V, --version                 Print version info and exit
    -H, --help                    Print this usage information
    -nw, -t, --tty                Open a new frame on the current terminal
    -c, --create-frame            Create a new frame instead of reusing one
    -F, --frame-parameters ALIST  Parameters for a new frame
    -e, --eval                    Treat arguments as expressions
    -n, --no-wait                 Don't wait for the server to return
    -q, --quiet                   Don't display messages on success
    -u, --suppress-output         Don't display return values from the server
    -d, --display DISPLAY         Visit the file in the given display
    --parent-id ID                Open in parent window ID, via XEmbed
    -s, --socket-name SOCKET      Unix socket of the server
    -f, --server-file SERVER      TCP authentication file of the server
    -a, --alternate-editor EDITOR Editor to run if no server is reachable;
                                  "" starts the server as a daemon instead
    -T, --tramp PREFIX            Prefix for file names sent to the server
    --timeout SECONDS             Give up waiting for replies after SECONDS
    --debug                       Log protocol traffic to stderr
"""

import argparse
import os
import sys
from typing import NoReturn, Sequence

import anyio
from rich.markup import escape

from edlink_config import SessionConfig
from edlink_console import PROG, console, set_debug, warn
from edlink_errors import EdlinkError, NoTransportError
from edlink_session import run_session

VERSION = "0.1.0"


def error(msg: str) -> NoReturn:
    """Print error and exit."""
    console.print(f"[red]error:[/red] {escape(msg)}")
    sys.exit(1)


# ============================================================================
# Alternate editor
# ============================================================================

def split_alternate_editor(value: str) -> list[str]:
    """Split an ALTERNATE_EDITOR value into argv.

    Tokens are separated by spaces; a token that follows a double quote
    runs to the next double quote and may contain spaces.
    """
    tokens = []
    i, n = 0, len(value)
    while i < n:
        start = i
        while i < n and value[i] in ' "':
            i += 1
        if i >= n:
            break
        sep = '"' if i > start and value[i - 1] == '"' else " "
        end = value.find(sep, i)
        if end < 0:
            tokens.append(value[i:])
            break
        tokens.append(value[i:end])
        i = end + 1
    return tokens


def fail(alternate_editor: str | None, items: Sequence[str]) -> NoReturn:
    """Replace this process with the alternate editor, or exit with failure."""
    if alternate_editor:
        argv = split_alternate_editor(alternate_editor) + list(items)
        if argv:
            try:
                os.execvp(argv[0], argv)
            except OSError:
                pass
        warn(f"error executing alternate editor \"{alternate_editor}\"")
    sys.exit(1)


# ============================================================================
# CLI
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Tell a running editor server to visit files or evaluate code",
        add_help=False,
    )
    parser.add_argument("-H", "-h", "--help", action="help", help="Print this usage information")
    parser.add_argument("-V", "--version", action="version", version=f"{PROG} {VERSION}")
    parser.add_argument("-t", "-nw", "--tty", action="store_true", help="New frame on the current terminal")
    parser.add_argument("-c", "--create-frame", action="store_true", help="Create a new frame")
    parser.add_argument("-F", "--frame-parameters", help="Parameters for a new frame")
    parser.add_argument("-e", "--eval", action="store_true", help="Evaluate arguments as expressions")
    parser.add_argument("-n", "--no-wait", dest="nowait", action="store_true", help="Don't wait for the server")
    parser.add_argument("-q", "--quiet", action="store_true", help="Don't display messages on success")
    parser.add_argument("-u", "--suppress-output", action="store_true", help="Don't display return values")
    parser.add_argument("-d", "--display", help="Visit the file in the given display")
    parser.add_argument("--parent-id", help="Open in parent window ID, via XEmbed")
    parser.add_argument("-s", "--socket-name", help="Unix socket of the server")
    parser.add_argument("-f", "--server-file", help="TCP authentication file of the server")
    parser.add_argument("-a", "--alternate-editor", help="Editor to fall back to")
    parser.add_argument("-T", "--tramp", help="Prefix for file names sent to the server")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for replies")
    parser.add_argument("--debug", action="store_true", help=argparse.SUPPRESS)
    parser.add_argument("items", nargs="*", help="[+LINE[:COLUMN]] FILE, or expressions with -e")
    return parser


def main(argv: Sequence[str] | None = None):
    parser = build_parser()
    args = parser.parse_intermixed_args(argv)

    if args.debug:
        set_debug(True)

    try:
        config = SessionConfig.from_args(args, os.environ)
    except EdlinkError as e:
        warn(str(e))
        alternate = args.alternate_editor
        if alternate is None:
            alternate = os.environ.get("ALTERNATE_EDITOR")
        fail(alternate, args.items)

    if config.needs_target:
        error(f"file name or argument required\nTry '{PROG} --help' for more information")

    try:
        outcome = anyio.run(run_session, config)
    except NoTransportError as e:
        if not config.alternate_editor:
            warn(str(e))
        fail(config.alternate_editor, config.items)
    except EdlinkError as e:
        warn(str(e))
        fail(config.alternate_editor, config.items)

    sys.exit(outcome.exit_code)


if __name__ == "__main__":
    main()
