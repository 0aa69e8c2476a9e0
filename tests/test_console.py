import pytest

from xv6fs.console import (
    BACKSPACE,
    KEY_UP,
    CgaScreen,
    Console,
    Keyboard,
    cformat,
)


def test_cformat_decimal_and_hex():
    assert cformat("%d", -5) == "-5"
    assert cformat("%d %x", 42, 255) == "42 ff"
    assert cformat("%p", -1) == "ffffffff"


def test_cformat_strings_and_percent():
    assert cformat("%s!", "hi") == "hi!"
    assert cformat("%s", None) == "(null)"
    assert cformat("100%%") == "100%"


def test_cformat_unknown_and_trailing_percent():
    assert cformat("%q") == "%q"
    assert cformat("ab%") == "ab"


def test_cformat_missing_argument():
    with pytest.raises(TypeError):
        cformat("%d")


def test_screen_text_and_newline():
    s = CgaScreen()
    for ch in "hi\nyo":
        s.putc(ch)
    assert s.text() == "hi\nyo"


def test_screen_backspace():
    s = CgaScreen()
    s.putc("a")
    s.putc(BACKSPACE)
    s.putc("b")
    assert s.text() == "b"
    assert s.pos == 1


def test_screen_scrolls():
    s = CgaScreen()
    for i in range(30):
        for ch in f"line{i}\n":
            s.putc(ch)
    lines = s.text().splitlines()
    assert lines[-1] == "line29"
    assert "line0" not in lines
    assert len(lines) <= 24


def test_console_line_and_echo():
    c = Console()
    c.intr("abc\n")
    assert c.read(10) == b"abc\n"
    assert bytes(c.output) == b"abc\n"
    assert c.screen.text() == "abc"


def test_console_backspace_edits_line():
    c = Console()
    c.intr("ab\x7fc\n")
    assert c.read(10) == b"ac\n"
    assert bytes(c.output) == b"ab\b \bc\n"


def test_console_kill_line():
    c = Console()
    c.intr("abc\x15d\n")
    assert c.read(10) == b"d\n"


def test_console_carriage_return_becomes_newline():
    c = Console()
    c.intr("x\r")
    assert c.read(10) == b"x\n"


def test_console_eof():
    c = Console()
    c.intr("ab\x04")
    assert c.read(10) == b"ab"
    assert c.read(10) == b""


def test_console_partial_reads():
    c = Console()
    c.intr("abcdef\n")
    assert c.read(3) == b"abc"
    assert c.read(10) == b"def\n"


def test_console_full_buffer_is_delivered():
    c = Console()
    c.intr("x" * 130)
    assert c.read(128) == b"x" * 128


def test_console_procdump_callback():
    calls = []
    c = Console(procdump=lambda: calls.append(1))
    c.intr("\x10")
    assert calls == [1]
    assert bytes(c.output) == b""


def test_console_write():
    c = Console()
    assert c.write(b"hey") == 3
    assert bytes(c.output) == b"hey"
    assert c.screen.text() == "hey"


def test_keyboard_plain_and_shift():
    kb = Keyboard()
    assert kb.getc(0x1E) == ord("a")
    assert kb.getc(0x2A) == 0
    assert kb.getc(0x1E) == ord("A")
    assert kb.getc(0xAA) == 0
    assert kb.getc(0x1E) == ord("a")


def test_keyboard_capslock_and_ctrl():
    kb = Keyboard()
    kb.getc(0x3A)
    assert kb.getc(0x1E) == ord("A")
    kb.getc(0x2A)
    assert kb.getc(0x1E) == ord("a")

    kb2 = Keyboard()
    kb2.getc(0x1D)
    assert kb2.getc(0x1E) == 1


def test_keyboard_escaped_keys():
    kb = Keyboard()
    assert kb.getc(0xE0) == 0
    assert kb.getc(0x48) == KEY_UP
    assert kb.getc(0xE0) == 0
    assert kb.getc(0x1C) == ord("\n")


def test_keyboard_feeds_console():
    kb = Keyboard()
    c = Console()
    c.intr(kb.getc(s) for s in [0x23, 0x17, 0x1C])
    assert c.read(10) == b"hi\n"