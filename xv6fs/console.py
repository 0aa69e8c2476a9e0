"""Console: formatted kernel output, a text screen, line-edited input and the keyboard."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from typing import Any

from .layout import Panic

BACKSPACE = 0x100
INPUT_BUF = 128
COLS = 80
ROWS = 25

# Keyboard modifier state bits.
SHIFT = 1 << 0
CTL = 1 << 1
ALT = 1 << 2
CAPSLOCK = 1 << 3
NUMLOCK = 1 << 4
SCROLLLOCK = 1 << 5
E0ESC = 1 << 6

# Special key codes.
KEY_HOME = 0xE0
KEY_END = 0xE1
KEY_UP = 0xE2
KEY_DN = 0xE3
KEY_LF = 0xE4
KEY_RT = 0xE5
KEY_PGUP = 0xE6
KEY_PGDN = 0xE7
KEY_INS = 0xE8
KEY_DEL = 0xE9


def _ctrl(ch: str) -> int:
    """Code of Control-ch, as stored in an unsigned byte."""
    return (ord(ch) - ord("@")) & 0xFF


def _int32(value: Any) -> int:
    return int(value) & 0xFFFFFFFF


def _fmtint(value: Any, base: int, signed: bool) -> str:
    x = _int32(value)
    neg = signed and x >= 1 << 31
    if neg:
        x = (1 << 32) - x
    digits = str(x) if base == 10 else format(x, "x")
    return "-" + digits if neg else digits


def cformat(fmt: str, *args: Any) -> str:
    """Format like the kernel's console printer: only %d, %x, %p, %s and %%."""
    values = iter(args)

    def take() -> Any:
        try:
            return next(values)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    out: list[str] = []
    chars = iter(fmt)
    for ch in chars:
        if ch != "%":
            out.append(ch)
            continue
        directive = next(chars, None)
        if directive is None:
            break
        if directive == "d":
            out.append(_fmtint(take(), 10, True))
        elif directive in ("x", "p"):
            out.append(_fmtint(take(), 16, False))
        elif directive == "s":
            s = take()
            if s is None:
                out.append("(null)")
            elif isinstance(s, (bytes, bytearray)):
                out.append(bytes(s).decode(errors="replace"))
            else:
                out.append(str(s))
        elif directive == "%":
            out.append("%")
        else:
            out.append("%" + directive)
    return "".join(out)


def _code(c: int | str) -> int:
    return ord(c) if isinstance(c, str) else int(c)


class CgaScreen:
    """An 80x25 text screen with a cursor that scrolls after 24 rows."""

    def __init__(self) -> None:
        self.cells = [0] * (COLS * ROWS)
        self.pos = 0

    def putc(self, c: int | str) -> None:
        """Put one character (or BACKSPACE) at the cursor."""
        c = _code(c)
        pos = self.pos
        if c == ord("\n"):
            pos += COLS - pos % COLS
        elif c == BACKSPACE:
            if pos > 0:
                pos -= 1
        else:
            self.cells[pos] = c & 0xFF
            pos += 1

        if pos < 0 or pos > ROWS * COLS:
            raise Panic("pos under/overflow")

        if pos // COLS >= 24:
            self.cells[0:23 * COLS] = self.cells[COLS:24 * COLS]
            pos -= COLS
            self.cells[pos:24 * COLS] = [0] * (24 * COLS - pos)

        self.pos = pos
        self.cells[pos] = ord(" ")

    def text(self) -> str:
        """The screen contents, rows without trailing blanks or trailing empty rows."""
        rows = [
            "".join(chr(ch) if ch else " " for ch in self.cells[r * COLS:(r + 1) * COLS]).rstrip()
            for r in range(ROWS)
        ]
        while rows and not rows[-1]:
            rows.pop()
        return "\n".join(rows)


class Console:
    """Line-edited console input and echoing output to a serial line and a screen."""

    def __init__(
        self,
        screen: CgaScreen | None = None,
        procdump: Callable[[], None] | None = None,
    ) -> None:
        self.screen = screen if screen is not None else CgaScreen()
        self.procdump = procdump
        self.output = bytearray()
        self._cond = threading.Condition()
        self._buf = [0] * INPUT_BUF
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index

    def _putc(self, c: int) -> None:
        if c == BACKSPACE:
            self.output += b"\b \b"
        else:
            self.output.append(c & 0xFF)
        self.screen.putc(c)

    def intr(self, chars: Iterable[int | str] | str | bytes) -> None:
        """Handle typed characters: editing keys, echo and line completion."""
        doprocdump = False
        with self._cond:
            for raw in chars:
                c = _code(raw)
                if c == _ctrl("P"):
                    doprocdump = True
                elif c == _ctrl("U"):
                    while self._e != self._w and self._buf[(self._e - 1) % INPUT_BUF] != ord("\n"):
                        self._e -= 1
                        self._putc(BACKSPACE)
                elif c in (_ctrl("H"), 0x7F):
                    if self._e != self._w:
                        self._e -= 1
                        self._putc(BACKSPACE)
                elif c != 0 and self._e - self._r < INPUT_BUF:
                    if c == ord("\r"):
                        c = ord("\n")
                    self._buf[self._e % INPUT_BUF] = c
                    self._e += 1
                    self._putc(c)
                    if c in (ord("\n"), _ctrl("D")) or self._e == self._r + INPUT_BUF:
                        self._w = self._e
                        self._cond.notify_all()
        if doprocdump and self.procdump is not None:
            self.procdump()

    def read(self, n: int) -> bytes:
        """Read up to n bytes, stopping after a newline; Control-D marks end of input."""
        target = n
        out = bytearray()
        with self._cond:
            while n > 0:
                while self._r == self._w:
                    self._cond.wait()
                c = self._buf[self._r % INPUT_BUF]
                self._r += 1
                if c == _ctrl("D"):
                    if n < target:
                        # Keep ^D so the next read returns nothing.
                        self._r -= 1
                    break
                out.append(c & 0xFF)
                n -= 1
                if c == ord("\n"):
                    break
        return bytes(out)

    def write(self, data: bytes | str) -> int:
        """Echo data to the serial line and the screen."""
        raw = data.encode() if isinstance(data, str) else bytes(data)
        with self._cond:
            for b in raw:
                self._putc(b)
        return len(raw)


_SPECIALS = {
    0xC8: KEY_UP, 0xD0: KEY_DN,
    0xC9: KEY_PGUP, 0xD1: KEY_PGDN,
    0xCB: KEY_LF, 0xCD: KEY_RT,
    0x97: KEY_HOME, 0xCF: KEY_END,
    0xD2: KEY_INS, 0xD3: KEY_DEL,
}

_KEYPAD = (
    b"\x00" * 7 + b"7"
    + b"89-456+1"
    + b"230.\x00\x00\x00\x00"
)


def _keymap(base: bytes, extra: dict[int, int]) -> tuple[int, ...]:
    table = [0] * 256
    table[:len(base)] = base
    for key, value in {**_SPECIALS, **extra}.items():
        table[key] = value
    return tuple(table)


_NORMALMAP = _keymap(
    b"\x00\x1b123456"
    b"7890-=\b\t"
    b"qwertyui"
    b"op[]\n\x00as"
    b"dfghjkl;"
    b"'`\x00\\zxcv"
    b"bnm,./\x00*"
    b"\x00 \x00\x00\x00\x00\x00\x00"
    + _KEYPAD,
    {0x9C: ord("\n"), 0xB5: ord("/")},
)

_SHIFTMAP = _keymap(
    b"\x00\x1b!@#$%^"
    b"&*()_+\b\t"
    b"QWERTYUI"
    b"OP{}\n\x00AS"
    b"DFGHJKL:"
    b"\"~\x00|ZXCV"
    b"BNM<>?\x00*"
    b"\x00 \x00\x00\x00\x00\x00\x00"
    + _KEYPAD,
    {0x9C: ord("\n"), 0xB5: ord("/")},
)

_CTLMAP = _keymap(
    bytes(16)
    + bytes(_ctrl(c) for c in "QWERTYUI")
    + bytes([_ctrl("O"), _ctrl("P"), 0, 0, ord("\r"), 0, _ctrl("A"), _ctrl("S")])
    + bytes([*(_ctrl(c) for c in "DFGHJKL"), 0])
    + bytes([0, 0, 0, _ctrl("\\"), *(_ctrl(c) for c in "ZXCV")])
    + bytes([*(_ctrl(c) for c in "BNM"), 0, 0, _ctrl("/"), 0, 0]),
    {0x9C: ord("\r"), 0xB5: _ctrl("/")},
)

_SHIFTCODE = {0x1D: CTL, 0x2A: SHIFT, 0x36: SHIFT, 0x38: ALT, 0x9D: CTL, 0xB8: ALT}
_TOGGLECODE = {0x3A: CAPSLOCK, 0x45: NUMLOCK, 0x46: SCROLLLOCK}
_CHARCODE = (_NORMALMAP, _SHIFTMAP, _CTLMAP, _CTLMAP)


class Keyboard:
    """Turns PC keyboard scan codes into characters, tracking modifier keys."""

    def __init__(self) -> None:
        self.shift = 0

    def getc(self, data: int) -> int:
        """Character for one scan code byte, or 0 when the byte yields none."""
        data &= 0xFF
        if data == 0xE0:
            self.shift |= E0ESC
            return 0
        if data & 0x80:
            # Key released.
            data = data if self.shift & E0ESC else data & 0x7F
            self.shift &= ~(_SHIFTCODE.get(data, 0) | E0ESC)
            return 0
        if self.shift & E0ESC:
            data |= 0x80
            self.shift &= ~E0ESC

        self.shift |= _SHIFTCODE.get(data, 0)
        self.shift ^= _TOGGLECODE.get(data, 0)
        c = _CHARCODE[self.shift & (CTL | SHIFT)][data]
        if self.shift & CAPSLOCK:
            if ord("a") <= c <= ord("z"):
                c += ord("A") - ord("a")
            elif ord("A") <= c <= ord("Z"):
                c += ord("a") - ord("A")
        return c