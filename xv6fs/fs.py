"""Inodes, directories and path names on top of the buffer cache and log."""

from __future__ import annotations

import errno
import struct
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from .bufcache import BufferCache
from .layout import (
    BPB,
    BSIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    NINODE,
    ROOTDEV,
    ROOTINO,
    DInode,
    Dirent,
    InodeType,
    Panic,
    Stat,
    Superblock,
    bblock,
    iblock,
)
from .log import Log

_ADDR = struct.Struct("<I")


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode, with cache bookkeeping."""

    dev: int = 0
    inum: int = 0
    ref: int = 0
    busy: bool = False
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))


@dataclass
class Device:
    """Functions serving reads and writes for one major device number."""

    read: Callable[[Inode, int], bytes] | None = None
    write: Callable[[Inode, bytes], int] | None = None


def readsb(cache: BufferCache, dev: int) -> Superblock:
    """Read the superblock of a device."""
    bp = cache.bread(dev, 1)
    try:
        return Superblock.unpack(bytes(bp.data))
    finally:
        cache.brelse(bp)


def _as_bytes(s: str | bytes) -> bytes:
    return s.encode() if isinstance(s, str) else bytes(s)


def namecmp(s: str | bytes, t: str | bytes) -> int:
    """Compare two names over at most DIRSIZ bytes, like strncmp."""
    a = _as_bytes(s)[:DIRSIZ]
    b = _as_bytes(t)[:DIRSIZ]
    for i in range(DIRSIZ):
        ca = a[i] if i < len(a) else 0
        cb = b[i] if i < len(b) else 0
        if ca != cb or ca == 0:
            return ca - cb
    return 0


def skipelem(path: str | bytes) -> tuple[bytes, bytes] | None:
    """Split off the first path element.

    Returns the element (cut to DIRSIZ bytes) and the rest of the path without
    leading slashes, or None if the path holds no element.
    """
    p = _as_bytes(path).lstrip(b"/")
    if not p:
        return None
    elem, _, rest = p.partition(b"/")
    return elem[:DIRSIZ], rest.lstrip(b"/")


class FileSystem:
    """The file system on one device: blocks, inodes, directories and paths."""

    def __init__(
        self,
        cache: BufferCache,
        dev: int = ROOTDEV,
        log: Log | None = None,
        devices: Mapping[int, Device] | None = None,
    ) -> None:
        self.cache = cache
        self.dev = dev
        self.sb = readsb(cache, dev)
        self.log = log if log is not None else Log(cache, dev)
        self.devices: dict[int, Device] = dict(devices or {})
        self._cond = threading.Condition()
        self._icache = [Inode() for _ in range(NINODE)]

    # Blocks.

    def _bzero(self, bno: int) -> None:
        bp = self.cache.bread(self.dev, bno)
        bp.data[:] = bytes(BSIZE)
        self.log.log_write(bp)
        self.cache.brelse(bp)

    def _balloc(self) -> int:
        size = self.sb.size
        for b in range(0, size, BPB):
            bp = self.cache.bread(self.dev, bblock(b, self.sb))
            for bi in range(min(BPB, size - b)):
                m = 1 << (bi % 8)
                if not bp.data[bi // 8] & m:
                    bp.data[bi // 8] |= m
                    self.log.log_write(bp)
                    self.cache.brelse(bp)
                    self._bzero(b + bi)
                    return b + bi
            self.cache.brelse(bp)
        raise Panic("balloc: out of blocks")

    def _bfree(self, b: int) -> None:
        bp = self.cache.bread(self.dev, bblock(b, self.sb))
        bi = b % BPB
        m = 1 << (bi % 8)
        if not bp.data[bi // 8] & m:
            self.cache.brelse(bp)
            raise Panic("freeing free block")
        bp.data[bi // 8] &= ~m & 0xFF
        self.log.log_write(bp)
        self.cache.brelse(bp)

    # Inodes.

    @staticmethod
    def _slot(inum: int) -> slice:
        start = (inum % IPB) * DInode.SIZE
        return slice(start, start + DInode.SIZE)

    def _iget(self, dev: int, inum: int) -> Inode:
        with self._cond:
            empty = None
            for ip in self._icache:
                if ip.ref > 0 and ip.dev == dev and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise Panic("iget: no inodes")
            empty.dev = dev
            empty.inum = inum
            empty.ref = 1
            empty.busy = False
            empty.valid = False
            return empty

    def ialloc(self, type: int) -> Inode:
        """Allocate a fresh on-disk inode of the given type."""
        for inum in range(1, self.sb.ninodes):
            bp = self.cache.bread(self.dev, iblock(inum, self.sb))
            slot = self._slot(inum)
            if DInode.unpack(bytes(bp.data[slot])).type == InodeType.FREE:
                bp.data[slot] = DInode(type=int(type)).pack()
                self.log.log_write(bp)
                self.cache.brelse(bp)
                return self._iget(self.dev, inum)
            self.cache.brelse(bp)
        raise Panic("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy a modified in-memory inode to disk."""
        bp = self.cache.bread(ip.dev, iblock(ip.inum, self.sb))
        bp.data[self._slot(ip.inum)] = DInode(
            ip.type, ip.major, ip.minor, ip.nlink, ip.size, list(ip.addrs)
        ).pack()
        self.log.log_write(bp)
        self.cache.brelse(bp)

    def idup(self, ip: Inode) -> Inode:
        """Take another reference to ip."""
        with self._cond:
            ip.ref += 1
        return ip

    def ilock(self, ip: Inode | None) -> None:
        """Lock ip, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise Panic("ilock")
        with self._cond:
            while ip.busy:
                self._cond.wait()
            ip.busy = True
        if not ip.valid:
            bp = self.cache.bread(ip.dev, iblock(ip.inum, self.sb))
            din = DInode.unpack(bytes(bp.data[self._slot(ip.inum)]))
            self.cache.brelse(bp)
            ip.type = din.type
            ip.major = din.major
            ip.minor = din.minor
            ip.nlink = din.nlink
            ip.size = din.size
            ip.addrs = list(din.addrs)
            ip.valid = True
            if ip.type == InodeType.FREE:
                raise Panic("ilock: no type")

    def iunlock(self, ip: Inode | None) -> None:
        """Unlock ip."""
        if ip is None or not ip.busy or ip.ref < 1:
            raise Panic("iunlock")
        with self._cond:
            ip.busy = False
            self._cond.notify_all()

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode if it was the last and has no links."""
        with self._cond:
            free = ip.ref == 1 and ip.valid and ip.nlink == 0
            if free:
                if ip.busy:
                    raise Panic("iput busy")
                ip.busy = True
        if free:
            self._itrunc(ip)
            ip.type = InodeType.FREE
            self.iupdate(ip)
            with self._cond:
                ip.busy = False
                ip.valid = False
                self._cond.notify_all()
        with self._cond:
            ip.ref -= 1

    def iunlockput(self, ip: Inode) -> None:
        self.iunlock(ip)
        self.iput(ip)

    # Inode content.

    def _bmap(self, ip: Inode, bn: int) -> int:
        if bn < NDIRECT:
            addr = ip.addrs[bn]
            if addr == 0:
                addr = ip.addrs[bn] = self._balloc()
            return addr
        bn -= NDIRECT
        if bn < NINDIRECT:
            addr = ip.addrs[NDIRECT]
            if addr == 0:
                addr = ip.addrs[NDIRECT] = self._balloc()
            bp = self.cache.bread(ip.dev, addr)
            (addr,) = _ADDR.unpack_from(bp.data, bn * 4)
            if addr == 0:
                addr = self._balloc()
                _ADDR.pack_into(bp.data, bn * 4, addr)
                self.log.log_write(bp)
            self.cache.brelse(bp)
            return addr
        raise Panic("bmap: out of range")

    def _itrunc(self, ip: Inode) -> None:
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self._bfree(ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            bp = self.cache.bread(ip.dev, ip.addrs[NDIRECT])
            entries = [a for (a,) in _ADDR.iter_unpack(bytes(bp.data))]
            self.cache.brelse(bp)
            for a in entries:
                if a:
                    self._bfree(a)
            self._bfree(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        return Stat(type=ip.type, dev=ip.dev, ino=ip.inum, nlink=ip.nlink, size=ip.size)

    def _device(self, ip: Inode) -> Device:
        dev = self.devices.get(ip.major)
        if dev is None:
            raise OSError(errno.ENXIO, f"no device with major number {ip.major}")
        return dev

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to n bytes at offset off from a locked inode."""
        if ip.type == InodeType.DEV:
            dev = self._device(ip)
            if dev.read is None:
                raise OSError(errno.ENXIO, f"device {ip.major} cannot be read")
            return dev.read(ip, n)
        if off < 0 or n < 0 or off > ip.size:
            raise ValueError(f"read at {off} of {n} bytes outside file of size {ip.size}")
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            bp = self.cache.bread(ip.dev, self._bmap(ip, off // BSIZE))
            start = off % BSIZE
            m = min(n - len(out), BSIZE - start)
            out += bp.data[start:start + m]
            self.cache.brelse(bp)
            off += m
        return bytes(out)

    def writei(self, ip: Inode, data: bytes, off: int) -> int:
        """Write data at offset off into a locked inode; returns bytes written."""
        if ip.type == InodeType.DEV:
            dev = self._device(ip)
            if dev.write is None:
                raise OSError(errno.ENXIO, f"device {ip.major} cannot be written")
            return dev.write(ip, bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise ValueError(f"write at {off} beyond end of file of size {ip.size}")
        if off + n > MAXFILE * BSIZE:
            raise ValueError("write would exceed the maximum file size")
        tot = 0
        while tot < n:
            bp = self.cache.bread(ip.dev, self._bmap(ip, off // BSIZE))
            start = off % BSIZE
            m = min(n - tot, BSIZE - start)
            bp.data[start:start + m] = data[tot:tot + m]
            self.log.log_write(bp)
            self.cache.brelse(bp)
            tot += m
            off += m
        if n > 0 and off > ip.size:
            ip.size = off
            self.iupdate(ip)
        return n

    # Directories.

    def dirlookup(self, dp: Inode, name: str | bytes) -> tuple[Inode, int] | None:
        """Find name in directory dp; returns the inode and the entry's offset."""
        if dp.type != InodeType.DIR:
            raise Panic("dirlookup not DIR")
        for off in range(0, dp.size, Dirent.SIZE):
            raw = self.readi(dp, off, Dirent.SIZE)
            if len(raw) != Dirent.SIZE:
                raise Panic("dirlink read")
            de = Dirent.unpack(raw)
            if de.inum == 0:
                continue
            if namecmp(name, de.name) == 0:
                return self._iget(dp.dev, de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str | bytes, inum: int) -> None:
        """Add the entry (name, inum) to directory dp."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FileExistsError(errno.EEXIST, "name already in directory", _as_bytes(name))
        off = 0
        while off < dp.size:
            raw = self.readi(dp, off, Dirent.SIZE)
            if len(raw) != Dirent.SIZE:
                raise Panic("dirlink read")
            if Dirent.unpack(raw).inum == 0:
                break
            off += Dirent.SIZE
        entry = Dirent(inum, _as_bytes(name)[:DIRSIZ]).pack()
        if self.writei(dp, entry, off) != Dirent.SIZE:
            raise Panic("dirlink")

    # Paths.

    def _namex(
        self, path: str | bytes, parent: bool, cwd: Inode | None
    ) -> tuple[Inode, bytes] | None:
        p = _as_bytes(path)
        if p.startswith(b"/") or cwd is None:
            ip = self._iget(self.dev, ROOTINO)
        else:
            ip = self.idup(cwd)
        name = b""
        while (elem := skipelem(p)) is not None:
            name, p = elem
            self.ilock(ip)
            if ip.type != InodeType.DIR:
                self.iunlockput(ip)
                return None
            if parent and not p:
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            if found is None:
                self.iunlockput(ip)
                return None
            self.iunlockput(ip)
            ip = found[0]
        if parent:
            self.iput(ip)
            return None
        return ip, name

    def namei(self, path: str | bytes, cwd: Inode | None = None) -> Inode | None:
        """Look up a path; relative paths start at cwd, or at the root if none."""
        found = self._namex(path, False, cwd)
        return None if found is None else found[0]

    def nameiparent(
        self, path: str | bytes, cwd: Inode | None = None
    ) -> tuple[Inode, bytes] | None:
        """Look up the parent directory of a path and return it with the last element."""
        return self._namex(path, True, cwd)