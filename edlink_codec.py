"""
edlink codec: argument quoting for the server line protocol.

A request is one line of whitespace-separated tokens, so every argument is
quoted before it goes on the wire:

    space      ->  &_
    newline    ->  &n
    &          ->  &&
    leading -  ->  &-     (so a value is never mistaken for a directive)

Replies carry arguments quoted the same way.
"""

from __future__ import annotations


_UNQUOTE = {
    "&": "&",
    "_": " ",
    "n": "\n",
    "-": "-",
}


def escape(raw: str) -> str:
    """Quote a value for use as a single protocol token."""
    out = []
    for i, ch in enumerate(raw):
        if ch == " ":
            out.append("&_")
        elif ch == "\n":
            out.append("&n")
        elif ch == "&" or (ch == "-" and i == 0):
            out.append("&" + ch)
        else:
            out.append(ch)
    return "".join(out)


def unescape(wire: str) -> str:
    """Undo `escape`.

    An `&` followed by anything else is dropped and the next character
    kept as is; servers have always been allowed to send that.
    """
    if "&" not in wire:
        return wire

    out = []
    chars = iter(wire)
    for ch in chars:
        if ch != "&":
            out.append(ch)
            continue
        nxt = next(chars, "")
        out.append(_UNQUOTE.get(nxt, nxt))
    return "".join(out)
