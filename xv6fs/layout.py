"""On-disk layout of the file system and its size parameters."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

# System-wide limits.
NPROC = 64
KSTACKSIZE = 4096
NCPU = 8
NOFILE = 16
NFILE = 100
NINODE = 50
NDEV = 10
ROOTDEV = 1
MAXARG = 32
MAXOPBLOCKS = 10
LOGSIZE = MAXOPBLOCKS * 3
NBUF = MAXOPBLOCKS * 3
FSSIZE = 1000

# Disk format.
ROOTINO = 1
BSIZE = 512
NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT
DIRSIZ = 14

_SUPERBLOCK = struct.Struct("<7I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

IPB = BSIZE // _DINODE.size
BPB = BSIZE * 8


class Panic(Exception):
    """An unrecoverable inconsistency detected by the file system."""


class InodeType(IntEnum):
    """Type of an inode; FREE marks an unallocated on-disk inode."""

    FREE = 0
    DIR = 1
    FILE = 2
    DEV = 3


def _require(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


@dataclass
class Superblock:
    """Describes the disk layout: [boot | super | log | inodes | bitmap | data]."""

    size: int = 0
    nblocks: int = 0
    ninodes: int = 0
    nlog: int = 0
    logstart: int = 0
    inodestart: int = 0
    bmapstart: int = 0

    SIZE = _SUPERBLOCK.size

    def pack(self) -> bytes:
        return _SUPERBLOCK.pack(
            self.size, self.nblocks, self.ninodes, self.nlog,
            self.logstart, self.inodestart, self.bmapstart,
        )

    @classmethod
    def unpack(cls, data: bytes) -> Superblock:
        _require(data, _SUPERBLOCK.size, "superblock")
        return cls(*_SUPERBLOCK.unpack_from(data))


@dataclass
class DInode:
    """On-disk inode."""

    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    SIZE = _DINODE.size

    def pack(self) -> bytes:
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"inode needs {NDIRECT + 1} block addresses")
        return _DINODE.pack(
            self.type, self.major, self.minor, self.nlink, self.size, *self.addrs
        )

    @classmethod
    def unpack(cls, data: bytes) -> DInode:
        _require(data, _DINODE.size, "inode")
        type_, major, minor, nlink, size, *addrs = _DINODE.unpack_from(data)
        return cls(type_, major, minor, nlink, size, list(addrs))


@dataclass
class Dirent:
    """Directory entry: an inode number and a name of at most DIRSIZ bytes."""

    inum: int = 0
    name: bytes = b""

    SIZE = _DIRENT.size

    def pack(self) -> bytes:
        name = self.name.split(b"\0", 1)[0][:DIRSIZ]
        return _DIRENT.pack(self.inum, name)

    @classmethod
    def unpack(cls, data: bytes) -> Dirent:
        _require(data, _DIRENT.size, "directory entry")
        inum, raw = _DIRENT.unpack_from(data)
        return cls(inum, raw.split(b"\0", 1)[0])


@dataclass
class Stat:
    """Metadata reported for a file."""

    type: int
    dev: int
    ino: int
    nlink: int
    size: int


def iblock(inum: int, sb: Superblock) -> int:
    """Block holding inode inum."""
    return inum // IPB + sb.inodestart


def bblock(b: int, sb: Superblock) -> int:
    """Bitmap block holding the bit for block b."""
    return b // BPB + sb.bmapstart