"""User commands working on a file system: cat, echo and ls."""

from __future__ import annotations

import errno
import sys
from collections.abc import Sequence
from typing import BinaryIO

from .fs import FileSystem, Inode
from .layout import DIRSIZ, Dirent, InodeType, Stat
from .printf import sprintf

_BUFSIZE = 512


def _as_bytes(s: str | bytes) -> bytes:
    return s.encode() if isinstance(s, str) else bytes(s)


def _show(s: str | bytes) -> str:
    return s.decode(errors="replace") if isinstance(s, (bytes, bytearray)) else s


def _lookup(fs: FileSystem, path: str | bytes) -> Inode | None:
    with fs.log.transaction():
        return fs.namei(path)


def _release(fs: FileSystem, ip: Inode) -> None:
    with fs.log.transaction():
        fs.iput(ip)


def _stat(fs: FileSystem, ip: Inode) -> Stat:
    fs.ilock(ip)
    try:
        return fs.stati(ip)
    finally:
        fs.iunlock(ip)


def cat(fs: FileSystem, paths: Sequence[str | bytes], out: BinaryIO) -> int:
    """Copy the named files to out; with no names copy standard input.

    Returns 0 on success and 1 when a file cannot be opened or read.
    """
    if not paths:
        while chunk := sys.stdin.buffer.read(_BUFSIZE):
            out.write(chunk)
        return 0
    for path in paths:
        ip = _lookup(fs, path)
        if ip is None:
            out.write(f"cat: cannot open {_show(path)}\n".encode())
            return 1
        try:
            off = 0
            while True:
                fs.ilock(ip)
                try:
                    chunk = fs.readi(ip, off, _BUFSIZE)
                finally:
                    fs.iunlock(ip)
                if not chunk:
                    break
                out.write(chunk)
                off += len(chunk)
        except (OSError, ValueError):
            out.write(b"cat: read error\n")
            return 1
        finally:
            _release(fs, ip)
    return 0


def echo(args: Sequence[str]) -> str:
    """The arguments separated by spaces and ended by a newline."""
    if not args:
        return ""
    return " ".join(args) + "\n"


def fmtname(path: str | bytes) -> str:
    """The last path element, padded with blanks to DIRSIZ characters."""
    name = _show(path).rsplit("/", 1)[-1]
    if len(name) >= DIRSIZ:
        return name
    return name + " " * (DIRSIZ - len(name))


def ls(fs: FileSystem, path: str | bytes) -> list[str]:
    """Listing lines for a file, or for each entry of a directory."""
    raw = _as_bytes(path)
    ip = _lookup(fs, raw)
    if ip is None:
        raise FileNotFoundError(errno.ENOENT, "ls: cannot open", _show(path))
    try:
        fs.ilock(ip)
        try:
            st = fs.stati(ip)
            data = fs.readi(ip, 0, ip.size) if st.type == InodeType.DIR else b""
        finally:
            fs.iunlock(ip)
    finally:
        _release(fs, ip)

    lines: list[str] = []
    if st.type == InodeType.FILE:
        lines.append(sprintf("%s %d %d %d", fmtname(raw), st.type, st.ino, st.size))
    elif st.type == InodeType.DIR:
        if len(raw) + 1 + DIRSIZ + 1 > _BUFSIZE:
            lines.append("ls: path too long")
            return lines
        whole = len(data) - len(data) % Dirent.SIZE
        for off in range(0, whole, Dirent.SIZE):
            de = Dirent.unpack(data[off:off + Dirent.SIZE])
            if de.inum == 0:
                continue
            child = raw + b"/" + de.name
            cip = _lookup(fs, child)
            if cip is None:
                lines.append(f"ls: cannot stat {_show(child)}")
                continue
            try:
                cst = _stat(fs, cip)
            finally:
                _release(fs, cip)
            lines.append(sprintf("%s %d %d %d", fmtname(child), cst.type, cst.ino, cst.size))
    return lines