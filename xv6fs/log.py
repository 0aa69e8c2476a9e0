"""Write-ahead redo log that makes groups of block writes atomic."""

from __future__ import annotations

import struct
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .bufcache import Buf, BufferCache, BufFlag
from .layout import BSIZE, LOGSIZE, MAXOPBLOCKS, ROOTDEV, Panic, Superblock

_HEADER = struct.Struct(f"<i{LOGSIZE}i")


class Log:
    """On-disk log: a header block listing block numbers, then their copies."""

    def __init__(self, cache: BufferCache, dev: int = ROOTDEV) -> None:
        if _HEADER.size >= BSIZE:
            raise Panic("initlog: too big logheader")
        self.cache = cache
        self.dev = dev
        buf = cache.bread(dev, 1)
        try:
            sb = Superblock.unpack(buf.data)
        finally:
            cache.brelse(buf)
        self.start = sb.logstart
        self.size = sb.nlog
        self.outstanding = 0
        self.committing = False
        self.blocks: list[int] = []
        self._cond = threading.Condition()
        self._recover()

    def _read_head(self) -> None:
        buf = self.cache.bread(self.dev, self.start)
        n, *blocks = _HEADER.unpack_from(buf.data)
        self.cache.brelse(buf)
        self.blocks = blocks[:max(0, min(n, LOGSIZE))]

    def _write_head(self) -> None:
        """Write the in-memory header; this is the commit point."""
        buf = self.cache.bread(self.dev, self.start)
        fields = list(_HEADER.unpack_from(buf.data))
        fields[0] = len(self.blocks)
        fields[1:1 + len(self.blocks)] = self.blocks
        buf.data[:_HEADER.size] = _HEADER.pack(*fields)
        self.cache.bwrite(buf)
        self.cache.brelse(buf)

    def _copy_blocks(self, to_log: bool) -> None:
        for tail, blockno in enumerate(self.blocks):
            lbuf = self.cache.bread(self.dev, self.start + tail + 1)
            hbuf = self.cache.bread(self.dev, blockno)
            src, dst = (hbuf, lbuf) if to_log else (lbuf, hbuf)
            dst.data[:] = src.data
            self.cache.bwrite(dst)
            self.cache.brelse(lbuf)
            self.cache.brelse(hbuf)

    def _recover(self) -> None:
        self._read_head()
        self._copy_blocks(to_log=False)
        self.blocks = []
        self._write_head()

    def _commit(self) -> None:
        if self.blocks:
            self._copy_blocks(to_log=True)
            self._write_head()
            self._copy_blocks(to_log=False)
            self.blocks = []
            self._write_head()

    def begin_op(self) -> None:
        """Start a file system operation, waiting while the log is busy or full."""
        with self._cond:
            while True:
                if self.committing:
                    self._cond.wait()
                elif len(self.blocks) + (self.outstanding + 1) * MAXOPBLOCKS > LOGSIZE:
                    self._cond.wait()
                else:
                    self.outstanding += 1
                    return

    def end_op(self) -> None:
        """Finish an operation; the last one out commits."""
        with self._cond:
            self.outstanding -= 1
            if self.committing:
                raise Panic("log.committing")
            do_commit = self.outstanding == 0
            if do_commit:
                self.committing = True
            else:
                self._cond.notify_all()
        if do_commit:
            try:
                self._commit()
            finally:
                with self._cond:
                    self.committing = False
                    self._cond.notify_all()

    def log_write(self, buf: Buf) -> None:
        """Record a modified buffer in the current transaction and pin it."""
        if len(self.blocks) >= LOGSIZE or len(self.blocks) >= self.size - 1:
            raise Panic("too big a transaction")
        if self.outstanding < 1:
            raise Panic("log_write outside of trans")
        with self._cond:
            if buf.blockno not in self.blocks:
                self.blocks.append(buf.blockno)
            buf.flags |= BufFlag.DIRTY

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run the enclosed block as one file system operation."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()