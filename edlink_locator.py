"""
edlink locator: find where the server is listening.

Two kinds of endpoint:

    Local(path)                      Unix domain socket, normally
                                     ${TMPDIR:-/tmp}/emacs<uid>/<name>
    Remote(host, port, auth_token)   TCP, described by a server file:
                                         127.0.0.1:<port> [...]\\n
                                         <64 bytes of auth token>

Relative server file names are looked up in ~/.emacs.d/server/.
"""

from __future__ import annotations

import os
import pwd
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from edlink_errors import ProtocolViolation, TransportError, TransportKind

AUTH_KEY_LENGTH = 64
IMPLICIT_NAME = "server"
# sizeof(sockaddr_un.sun_path) on Linux, including the terminating NUL.
SUN_PATH_MAX = 108
SERVER_DIR = ".emacs.d/server"
LOCALHOST = "127.0.0.1"

_ADDRESS_LINE_MAX = 32


@dataclass(frozen=True)
class Local:
    path: str


@dataclass(frozen=True)
class Remote:
    host: str
    port: int
    auth_token: bytes

    def __repr__(self) -> str:
        return f"Remote(host={self.host!r}, port={self.port})"


Descriptor = Local | Remote


# ============================================================================
# Local sockets
# ============================================================================

def socket_dir(tmpdir: str, uid: int) -> str:
    return f"{tmpdir}/emacs{uid}"


def socket_status(path: str) -> tuple[int, OSError | None]:
    """Return 0 if the socket exists and is ours, 1 if owned by someone else, 2 if missing."""
    try:
        st = os.stat(path)
    except OSError as e:
        return 2, e
    if st.st_uid != os.geteuid():
        return 1, None
    return 0, None


def _check_length(path: str):
    if len(os.fsencode(path)) >= SUN_PATH_MAX:
        raise TransportError(TransportKind.NAME_TOO_LONG, f"socket-name {path} too long")


def _other_user_uid(environ: Mapping[str, str]) -> int | None:
    """Uid of $LOGNAME/$USER when it is not us, i.e. we are running under su."""
    user_name = environ.get("LOGNAME") or environ.get("USER")
    if not user_name:
        return None
    try:
        pw = pwd.getpwnam(user_name)
    except KeyError:
        return None
    if pw.pw_uid == os.geteuid():
        return None
    return pw.pw_uid


def locate_local(name: str, environ: Mapping[str, str]) -> Local:
    """Resolve a socket name to a path we may connect to.

    Raises TransportError when the socket is missing, belongs to another
    user, or its path does not fit in a sockaddr.
    """
    tmpdir = None
    path = name
    if "/" not in name and "\\" not in name:
        tmpdir = environ.get("TMPDIR") or "/tmp"
        path = f"{socket_dir(tmpdir, os.geteuid())}/{name}"

    _check_length(path)
    status, err = socket_status(path)

    if status and tmpdir:
        uid = _other_user_uid(environ)
        if uid is not None:
            path = f"{socket_dir(tmpdir, uid)}/{name}"
            _check_length(path)
            status, err = socket_status(path)

    if status == 1:
        raise TransportError(TransportKind.AUTH_REJECTED, "Invalid socket owner")
    if status == 2:
        if isinstance(err, FileNotFoundError):
            raise TransportError(
                TransportKind.UNREACHABLE,
                "can't find socket; have you started the server?\n"
                "To start the server in Emacs, type \"M-x server-start\".",
            )
        raise TransportError(
            TransportKind.UNREACHABLE, f"can't stat {path}: {err.strerror}"
        )
    return Local(path)


# ============================================================================
# Server files (TCP)
# ============================================================================

def server_file_path(name: str, environ: Mapping[str, str]) -> Path | None:
    if os.path.isabs(name):
        return Path(name)
    home = environ.get("HOME")
    if not home:
        return None
    return Path(home) / SERVER_DIR / name


def parse_server_file(data: bytes) -> Remote:
    """Parse the contents of a server file.

    Raises ProtocolViolation if the address line or the token is malformed.
    """
    newline = data.find(b"\n", 0, _ADDRESS_LINE_MAX - 1)
    end = newline + 1 if newline >= 0 else min(len(data), _ADDRESS_LINE_MAX - 1)
    line, rest = data[:end], data[end:]

    host, sep, port_text = line.decode("latin-1").partition(":")
    if not sep:
        raise ProtocolViolation("invalid configuration info")
    # The port may be followed by the server pid.
    m = re.match(r"\s*(\d+)", port_text)
    port = int(m.group(1)) if m else 0

    if len(rest) < AUTH_KEY_LENGTH:
        raise ProtocolViolation("cannot read authentication info")
    return Remote(host=host.strip(), port=port, auth_token=rest[:AUTH_KEY_LENGTH])


def locate_remote(name: str, environ: Mapping[str, str]) -> Remote | None:
    """Read a server file; None when it does not exist."""
    path = server_file_path(name, environ)
    if path is None:
        return None
    try:
        data = path.read_bytes()
    except OSError:
        return None
    return parse_server_file(data)


# ============================================================================
# Candidate order
# ============================================================================

def candidates(socket_name: str | None, server_file: str | None) -> list[tuple[str, str]]:
    """Transports to try, in order, as (kind, name) pairs.

    Explicitly configured transports are the only ones tried when present;
    otherwise the implicit local socket, then the implicit server file.
    """
    explicit = []
    if socket_name:
        explicit.append(("local", socket_name))
    if server_file:
        explicit.append(("remote", server_file))
    if explicit:
        return explicit
    return [("local", IMPLICIT_NAME), ("remote", IMPLICIT_NAME)]


def locate(kind: str, name: str, environ: Mapping[str, str]) -> Descriptor | None:
    if kind == "local":
        return locate_local(name, environ)
    return locate_remote(name, environ)
