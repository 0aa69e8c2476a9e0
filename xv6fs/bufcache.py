"""Buffer cache of disk blocks with most-recently-used ordering."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Union

from .disk import FileDisk, MemoryDisk
from .layout import BSIZE, NBUF, ROOTDEV, Panic

_Disk = Union[MemoryDisk, FileDisk]


class BufFlag(IntFlag):
    BUSY = 0x1   # held by a caller between bread and brelse
    VALID = 0x2  # data has been read from disk
    DIRTY = 0x4  # data must be written to disk


@dataclass(eq=False)
class Buf:
    """A cached copy of one disk block."""

    dev: int = -1
    blockno: int = 0
    flags: BufFlag = BufFlag(0)
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))


class BufferCache:
    """A fixed pool of buffers; at most one holder per buffer at a time."""

    def __init__(self, disks: Mapping[int, _Disk] | _Disk, nbuf: int = NBUF) -> None:
        if isinstance(disks, (MemoryDisk, FileDisk)):
            self._disks: dict[int, _Disk] = {ROOTDEV: disks}
        else:
            self._disks = dict(disks)
        self._cond = threading.Condition()
        # Most recently used first.
        self._bufs = [Buf() for _ in range(nbuf)]

    def _get(self, dev: int, blockno: int) -> Buf:
        with self._cond:
            while True:
                for b in self._bufs:
                    if b.dev == dev and b.blockno == blockno:
                        if not b.flags & BufFlag.BUSY:
                            b.flags |= BufFlag.BUSY
                            return b
                        self._cond.wait()
                        break
                else:
                    # Not cached: recycle the least recently used clean buffer.
                    for b in reversed(self._bufs):
                        if not b.flags & (BufFlag.BUSY | BufFlag.DIRTY):
                            b.dev = dev
                            b.blockno = blockno
                            b.flags = BufFlag.BUSY
                            return b
                    raise Panic("bget: no buffers")

    def _rw(self, b: Buf) -> None:
        if not b.flags & BufFlag.BUSY:
            raise Panic("iderw: buf not busy")
        if (b.flags & (BufFlag.VALID | BufFlag.DIRTY)) == BufFlag.VALID:
            raise Panic("iderw: nothing to do")
        disk = self._disks.get(b.dev)
        if disk is None:
            raise Panic(f"iderw: disk {b.dev} not present")
        if b.flags & BufFlag.DIRTY:
            disk.write_block(b.blockno, bytes(b.data))
            b.flags &= ~BufFlag.DIRTY
        else:
            b.data[:] = disk.read_block(b.blockno)
        b.flags |= BufFlag.VALID

    def bread(self, dev: int, blockno: int) -> Buf:
        """Return a busy buffer holding the contents of the block."""
        b = self._get(dev, blockno)
        if not b.flags & BufFlag.VALID:
            self._rw(b)
        return b

    def bwrite(self, buf: Buf) -> None:
        """Write a busy buffer's contents to disk."""
        if not buf.flags & BufFlag.BUSY:
            raise Panic("bwrite")
        buf.flags |= BufFlag.DIRTY
        self._rw(buf)

    def brelse(self, buf: Buf) -> None:
        """Release a busy buffer and mark it most recently used."""
        if not buf.flags & BufFlag.BUSY:
            raise Panic("brelse")
        with self._cond:
            self._bufs.remove(buf)
            self._bufs.insert(0, buf)
            buf.flags &= ~BufFlag.BUSY
            self._cond.notify_all()