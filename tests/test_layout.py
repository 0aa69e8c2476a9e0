import pytest

from xv6fs.layout import (
    BPB,
    BSIZE,
    DIRSIZ,
    IPB,
    NDIRECT,
    DInode,
    Dirent,
    InodeType,
    Superblock,
    bblock,
    iblock,
)


def _sb():
    return Superblock(
        size=1000, nblocks=941, ninodes=200, nlog=30,
        logstart=2, inodestart=32, bmapstart=58,
    )


def test_superblock_round_trip():
    sb = _sb()
    packed = sb.pack()
    assert len(packed) == Superblock.SIZE
    assert Superblock.unpack(packed + b"\0" * 100) == sb


def test_superblock_is_little_endian():
    packed = Superblock(size=1000).pack()
    assert packed[:4] == (1000).to_bytes(4, "little")


def test_superblock_short_data_rejected():
    with pytest.raises(ValueError):
        Superblock.unpack(b"\0" * 10)


def test_dinode_round_trip_and_fits_block():
    addrs = list(range(1, NDIRECT + 2))
    ino = DInode(type=InodeType.FILE, major=0, minor=0, nlink=1, size=777, addrs=addrs)
    packed = ino.pack()
    assert len(packed) * IPB == BSIZE
    back = DInode.unpack(packed)
    assert back == ino
    assert back.type == InodeType.FILE


def test_dinode_wrong_addr_count():
    with pytest.raises(ValueError):
        DInode(addrs=[0, 1]).pack()


def test_dirent_wire_bytes():
    assert Dirent(inum=1, name=b".").pack() == b"\x01\x00." + b"\0" * (DIRSIZ - 1)


def test_dirent_name_truncated_like_strncpy():
    packed = Dirent(inum=7, name=b"a" * 20).pack()
    assert len(packed) == Dirent.SIZE
    back = Dirent.unpack(packed)
    assert back.name == b"a" * DIRSIZ
    assert back.inum == 7


def test_dirent_round_trip():
    d = Dirent(inum=42, name=b"README")
    assert Dirent.unpack(d.pack()) == d


def test_block_helpers():
    sb = _sb()
    assert iblock(0, sb) == sb.inodestart
    assert iblock(IPB, sb) == sb.inodestart + 1
    assert iblock(IPB - 1, sb) == sb.inodestart
    assert bblock(BPB - 1, sb) == sb.bmapstart
    assert bblock(BPB, sb) == sb.bmapstart + 1