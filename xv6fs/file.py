"""Open files: a shared table of file structures and in-memory pipes."""

from __future__ import annotations

import errno
import threading
from dataclasses import dataclass
from enum import Enum

from .fs import FileSystem, Inode
from .layout import BSIZE, LOGSIZE, NFILE, Panic, Stat

PIPESIZE = 512


class FileType(Enum):
    NONE = 0
    PIPE = 1
    INODE = 2


class Pipe:
    """A bounded byte channel with a read end and a write end."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._buf = bytearray()
        self.readopen = True
        self.writeopen = True

    def write(self, data: bytes) -> int:
        """Write all of data, waiting while the pipe is full."""
        data = bytes(data)
        with self._cond:
            for byte in data:
                while len(self._buf) == PIPESIZE:
                    if not self.readopen:
                        raise BrokenPipeError(errno.EPIPE, "pipe has no reader")
                    self._cond.notify_all()
                    self._cond.wait()
                self._buf.append(byte)
            self._cond.notify_all()
        return len(data)

    def read(self, n: int) -> bytes:
        """Read up to n bytes; waits for data while the write end is open."""
        with self._cond:
            while not self._buf and self.writeopen:
                self._cond.wait()
            n = max(n, 0)
            out = bytes(self._buf[:n])
            del self._buf[:n]
            self._cond.notify_all()
            return out

    def close(self, writable: bool) -> None:
        """Close the write end if writable, otherwise the read end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()


@dataclass(eq=False)
class File:
    """An open file: a pipe end or an inode with an offset."""

    type: FileType = FileType.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: Inode | None = None
    off: int = 0


class FileTable:
    """The system-wide table of open files."""

    def __init__(self, fs: FileSystem | None = None, nfile: int = NFILE) -> None:
        self.fs = fs
        self._lock = threading.Lock()
        self.files = [File() for _ in range(nfile)]

    def _require_fs(self) -> FileSystem:
        if self.fs is None:
            raise Panic("file table has no file system")
        return self.fs

    def alloc(self) -> File:
        """Take a free file structure with one reference."""
        with self._lock:
            for f in self.files:
                if f.ref == 0:
                    f.ref = 1
                    f.type = FileType.NONE
                    f.readable = f.writable = False
                    f.pipe = None
                    f.ip = None
                    f.off = 0
                    return f
        raise OSError(errno.ENFILE, "file table full")

    def dup(self, f: File) -> File:
        """Take another reference to f."""
        with self._lock:
            if f.ref < 1:
                raise Panic("filedup")
            f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; release the pipe end or inode on the last one."""
        with self._lock:
            if f.ref < 1:
                raise Panic("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, ip, writable = f.type, f.pipe, f.ip, f.writable
            f.type = FileType.NONE
            f.pipe = None
            f.ip = None
        if kind is FileType.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileType.INODE and ip is not None:
            fs = self._require_fs()
            with fs.log.transaction():
                fs.iput(ip)

    def stat(self, f: File) -> Stat:
        """Metadata of an inode file."""
        if f.type is not FileType.INODE or f.ip is None:
            raise OSError(errno.EBADF, "not an inode file")
        fs = self._require_fs()
        fs.ilock(f.ip)
        try:
            return fs.stati(f.ip)
        finally:
            fs.iunlock(f.ip)

    def read(self, f: File, n: int) -> bytes:
        """Read up to n bytes from f, advancing its offset."""
        if not f.readable:
            raise OSError(errno.EBADF, "file not open for reading")
        if f.type is FileType.PIPE and f.pipe is not None:
            return f.pipe.read(n)
        if f.type is FileType.INODE and f.ip is not None:
            fs = self._require_fs()
            fs.ilock(f.ip)
            try:
                data = fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                fs.iunlock(f.ip)
            return data
        raise Panic("fileread")

    def write(self, f: File, data: bytes) -> int:
        """Write data to f, a few blocks per transaction for inode files."""
        if not f.writable:
            raise OSError(errno.EBADF, "file not open for writing")
        data = bytes(data)
        if f.type is FileType.PIPE and f.pipe is not None:
            return f.pipe.write(data)
        if f.type is FileType.INODE and f.ip is not None:
            fs = self._require_fs()
            # Inode, indirect block, bitmap and two blocks of slop for
            # unaligned writes must fit in the log beside the data.
            max_chunk = ((LOGSIZE - 1 - 1 - 2) // 2) * BSIZE
            i = 0
            while i < len(data):
                chunk = data[i:i + max_chunk]
                with fs.log.transaction():
                    fs.ilock(f.ip)
                    try:
                        r = fs.writei(f.ip, chunk, f.off)
                        f.off += r
                    finally:
                        fs.iunlock(f.ip)
                if r != len(chunk):
                    raise Panic("short filewrite")
                i += r
            return len(data)
        raise Panic("filewrite")


def pipealloc(table: FileTable) -> tuple[File, File]:
    """Create a pipe and return its read end and its write end."""
    f0 = table.alloc()
    try:
        f1 = table.alloc()
    except OSError:
        table.close(f0)
        raise
    p = Pipe()
    f0.type = FileType.PIPE
    f0.readable = True
    f0.writable = False
    f0.pipe = p
    f1.type = FileType.PIPE
    f1.readable = False
    f1.writable = True
    f1.pipe = p
    return f0, f1