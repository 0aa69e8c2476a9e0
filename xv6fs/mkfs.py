"""Build a file system image holding a root directory and some files."""

from __future__ import annotations

import os
import struct
import sys
from collections.abc import Iterable, Mapping
from pathlib import Path

from .disk import MemoryDisk
from .layout import (
    BSIZE,
    DIRSIZ,
    FSSIZE,
    IPB,
    LOGSIZE,
    MAXFILE,
    NDIRECT,
    ROOTINO,
    DInode,
    Dirent,
    InodeType,
    Superblock,
    iblock,
)

NINODES = 200
NBITMAP = FSSIZE // (BSIZE * 8) + 1
NINODEBLOCKS = NINODES // IPB + 1
NLOG = LOGSIZE
NMETA = 2 + NLOG + NINODEBLOCKS + NBITMAP
NBLOCKS = FSSIZE - NMETA

_ADDR = struct.Struct("<I")

_Files = Mapping[str | bytes, bytes] | Iterable[tuple[str | bytes, bytes]]


class _ImageBuilder:
    """Lays out a fresh image block by block."""

    def __init__(self) -> None:
        self.disk = MemoryDisk(nblocks=FSSIZE)
        self.sb = Superblock(
            size=FSSIZE,
            nblocks=NBLOCKS,
            ninodes=NINODES,
            nlog=NLOG,
            logstart=2,
            inodestart=2 + NLOG,
            bmapstart=2 + NLOG + NINODEBLOCKS,
        )
        self.freeinode = 1
        self.freeblock = NMETA
        self.disk.write_block(1, self.sb.pack().ljust(BSIZE, b"\0"))

    def _inode_slot(self, inum: int) -> tuple[int, slice]:
        start = (inum % IPB) * DInode.SIZE
        return iblock(inum, self.sb), slice(start, start + DInode.SIZE)

    def rinode(self, inum: int) -> DInode:
        bn, slot = self._inode_slot(inum)
        return DInode.unpack(self.disk.read_block(bn)[slot])

    def winode(self, inum: int, din: DInode) -> None:
        bn, slot = self._inode_slot(inum)
        block = bytearray(self.disk.read_block(bn))
        block[slot] = din.pack()
        self.disk.write_block(bn, bytes(block))

    def ialloc(self, type: int) -> int:
        if self.freeinode >= NINODES:
            raise ValueError("file system image has no free inodes")
        inum = self.freeinode
        self.freeinode += 1
        self.winode(inum, DInode(type=int(type), nlink=1, size=0))
        return inum

    def _alloc_block(self) -> int:
        if self.freeblock >= FSSIZE:
            raise ValueError("file system image has no free blocks")
        b = self.freeblock
        self.freeblock += 1
        return b

    def iappend(self, inum: int, data: bytes) -> None:
        din = self.rinode(inum)
        off = din.size
        pos = 0
        while pos < len(data):
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError("file too large for the file system")
            if fbn < NDIRECT:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._alloc_block()
                x = din.addrs[fbn]
            else:
                if din.addrs[NDIRECT] == 0:
                    din.addrs[NDIRECT] = self._alloc_block()
                indirect = bytearray(self.disk.read_block(din.addrs[NDIRECT]))
                (x,) = _ADDR.unpack_from(indirect, (fbn - NDIRECT) * 4)
                if x == 0:
                    x = self._alloc_block()
                    _ADDR.pack_into(indirect, (fbn - NDIRECT) * 4, x)
                    self.disk.write_block(din.addrs[NDIRECT], bytes(indirect))
            n1 = min(len(data) - pos, (fbn + 1) * BSIZE - off)
            block = bytearray(self.disk.read_block(x))
            start = off - fbn * BSIZE
            block[start:start + n1] = data[pos:pos + n1]
            self.disk.write_block(x, bytes(block))
            pos += n1
            off += n1
        din.size = off
        self.winode(inum, din)

    def _write_bitmap(self, used: int) -> None:
        if used >= BSIZE * 8:
            raise ValueError("too many blocks in use for one bitmap block")
        bitmap = bytearray(BSIZE)
        for i in range(used):
            bitmap[i // 8] |= 1 << (i % 8)
        self.disk.write_block(self.sb.bmapstart, bytes(bitmap))

    def build(self, files: _Files) -> bytes:
        rootino = self.ialloc(InodeType.DIR)
        if rootino != ROOTINO:
            raise ValueError("root directory did not get the root inode number")
        self.iappend(rootino, Dirent(rootino, b".").pack())
        self.iappend(rootino, Dirent(rootino, b"..").pack())

        items = files.items() if isinstance(files, Mapping) else files
        for name, data in items:
            raw = name.encode() if isinstance(name, str) else bytes(name)
            if b"/" in raw:
                raise ValueError(f"file name {raw!r} contains a slash")
            # Build outputs are named _cat, _rm, ... to keep them apart
            # from the host's own programs.
            if raw.startswith(b"_"):
                raw = raw[1:]
            inum = self.ialloc(InodeType.FILE)
            self.iappend(rootino, Dirent(inum, raw[:DIRSIZ]).pack())
            self.iappend(inum, bytes(data))

        root = self.rinode(rootino)
        root.size = (root.size // BSIZE + 1) * BSIZE
        self.winode(rootino, root)

        self._write_bitmap(self.freeblock)
        return self.disk.to_bytes()


def build_image(files: _Files) -> bytes:
    """Return an image whose root directory holds the given (name, data) files."""
    return _ImageBuilder().build(files)


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    image, *paths = args
    print(
        f"nmeta {NMETA} (boot, super, log blocks {NLOG} inode blocks {NINODEBLOCKS}, "
        f"bitmap blocks {NBITMAP}) blocks {NBLOCKS} total {FSSIZE}"
    )
    try:
        files = [(os.path.basename(p), Path(p).read_bytes()) for p in paths]
    except OSError as exc:
        print(f"{exc.filename}: {exc.strerror}", file=sys.stderr)
        return 1
    builder = _ImageBuilder()
    try:
        data = builder.build(files)
    except ValueError as exc:
        print(f"mkfs: {exc}", file=sys.stderr)
        return 1
    print(f"balloc: first {builder.freeblock} blocks have been allocated")
    print(f"balloc: write bitmap block at sector {builder.sb.bmapstart}")
    try:
        Path(image).write_bytes(data)
    except OSError as exc:
        print(f"{exc.filename}: {exc.strerror}", file=sys.stderr)
        return 1
    return 0