"""Formatted output that understands only %d, %x, %p, %s, %c and %%."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any, TextIO


def _next(args: Iterator[Any]) -> Any:
    try:
        return next(args)
    except StopIteration:
        raise TypeError("not enough arguments for format string") from None


def _fmtint(value: int, base: int, signed: bool) -> str:
    x = int(value) & 0xFFFFFFFF
    neg = signed and x >= 1 << 31
    if neg:
        x = (1 << 32) - x
    digits = str(x) if base == 10 else format(x, "X")
    return "-" + digits if neg else digits


def sprintf(fmt: str, *args: Any) -> str:
    """Format args by fmt; unknown directives are kept as written."""
    values = iter(args)
    out: list[str] = []
    pending = False
    for ch in fmt:
        if not pending:
            if ch == "%":
                pending = True
            else:
                out.append(ch)
            continue
        pending = False
        if ch == "d":
            out.append(_fmtint(_next(values), 10, True))
        elif ch in ("x", "p"):
            out.append(_fmtint(_next(values), 16, False))
        elif ch == "s":
            s = _next(values)
            if s is None:
                out.append("(null)")
            elif isinstance(s, (bytes, bytearray)):
                out.append(bytes(s).decode(errors="replace"))
            else:
                out.append(str(s))
        elif ch == "c":
            v = _next(values)
            out.append(chr(v & 0xFF) if isinstance(v, int) else str(v)[:1])
        elif ch == "%":
            out.append("%")
        else:
            out.append("%" + ch)
    return "".join(out)


def printf(stream: TextIO, fmt: str, *args: Any) -> None:
    """Write the formatted text to stream."""
    stream.write(sprintf(fmt, *args))