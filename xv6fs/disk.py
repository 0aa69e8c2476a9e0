"""Block devices: an in-memory disk and a disk backed by an image file."""

from __future__ import annotations

import os
from typing import BinaryIO

from .layout import BSIZE, FSSIZE, Panic


class DiskError(Panic):
    """A block request the disk cannot serve."""


def _check_block(blockno: int, nblocks: int) -> None:
    if not 0 <= blockno < nblocks:
        raise DiskError(f"block {blockno} out of range (disk has {nblocks})")


def _check_data(data: bytes) -> None:
    if len(data) != BSIZE:
        raise DiskError(f"block data must be {BSIZE} bytes, got {len(data)}")


class MemoryDisk:
    """A disk whose blocks live in memory."""

    def __init__(self, image: bytes | None = None, nblocks: int = FSSIZE) -> None:
        if image is None:
            self._data = bytearray(nblocks * BSIZE)
        else:
            self._data = bytearray(image)
        self.nblocks = len(self._data) // BSIZE

    def read_block(self, blockno: int) -> bytes:
        _check_block(blockno, self.nblocks)
        start = blockno * BSIZE
        return bytes(self._data[start:start + BSIZE])

    def write_block(self, blockno: int, data: bytes) -> None:
        _check_block(blockno, self.nblocks)
        _check_data(data)
        start = blockno * BSIZE
        self._data[start:start + BSIZE] = data

    def to_bytes(self) -> bytes:
        return bytes(self._data)


class FileDisk:
    """A disk backed by an existing image file, opened for reading and writing."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._file: BinaryIO = open(path, "r+b")
        self.nblocks = os.fstat(self._file.fileno()).st_size // BSIZE

    def read_block(self, blockno: int) -> bytes:
        _check_block(blockno, self.nblocks)
        self._file.seek(blockno * BSIZE)
        data = self._file.read(BSIZE)
        if len(data) != BSIZE:
            raise DiskError(f"short read of block {blockno}")
        return data

    def write_block(self, blockno: int, data: bytes) -> None:
        _check_block(blockno, self.nblocks)
        _check_data(data)
        self._file.seek(blockno * BSIZE)
        self._file.write(data)
        self._file.flush()

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> FileDisk:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()