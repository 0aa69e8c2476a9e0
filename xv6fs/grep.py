"""A small grep supporting only the ^ . * $ operators."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from typing import BinaryIO

_BUFSIZE = 1024
_STAR = ord("*")
_DOT = ord(".")
_DOLLAR = ord("$")
_CARET = ord("^")


def _as_bytes(s: str | bytes) -> bytes:
    return s.encode() if isinstance(s, str) else bytes(s)


def _matchhere(r: bytes, ri: int, t: bytes, ti: int) -> bool:
    while True:
        if ri == len(r):
            return True
        if ri + 1 < len(r) and r[ri + 1] == _STAR:
            return _matchstar(r[ri], r, ri + 2, t, ti)
        if r[ri] == _DOLLAR and ri + 1 == len(r):
            return ti == len(t)
        if ti < len(t) and (r[ri] == _DOT or r[ri] == t[ti]):
            ri += 1
            ti += 1
            continue
        return False


def _matchstar(c: int, r: bytes, ri: int, t: bytes, ti: int) -> bool:
    while True:
        if _matchhere(r, ri, t, ti):
            return True
        if ti < len(t) and (t[ti] == c or c == _DOT):
            ti += 1
        else:
            return False


def match(re: str | bytes, text: str | bytes) -> bool:
    """Whether the pattern re matches anywhere in text."""
    r = _as_bytes(re)
    t = _as_bytes(text)
    if r[:1] == bytes([_CARET]):
        return _matchhere(r, 1, t, 0)
    return any(_matchhere(r, 0, t, i) for i in range(len(t) + 1))


def grep(pattern: str | bytes, stream: BinaryIO) -> Iterator[bytes]:
    """Yield the newline-terminated lines of stream that match pattern."""
    pat = _as_bytes(pattern)
    buf = b""
    while chunk := stream.read(_BUFSIZE - 1 - len(buf)):
        buf += chunk
        *lines, rest = buf.split(b"\n")
        for line in lines:
            if match(pat, line):
                yield line + b"\n"
        # A buffer without any newline is dropped.
        buf = rest if lines else b""


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("usage: grep pattern [file ...]", file=sys.stderr)
        return 1
    pattern, *paths = args
    out = sys.stdout.buffer
    if not paths:
        out.writelines(grep(pattern, sys.stdin.buffer))
        out.flush()
        return 0
    for path in paths:
        try:
            stream = open(path, "rb")
        except OSError:
            out.write(f"grep: cannot open {path}\n".encode())
            out.flush()
            return 1
        with stream:
            out.writelines(grep(pattern, stream))
    out.flush()
    return 0