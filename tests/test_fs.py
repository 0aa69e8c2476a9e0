import pytest

from xv6fs.bufcache import BufferCache
from xv6fs.disk import MemoryDisk
from xv6fs.fs import Device, FileSystem, namecmp, readsb, skipelem
from xv6fs.layout import (
    BPB,
    BSIZE,
    DIRSIZ,
    IPB,
    LOGSIZE,
    MAXFILE,
    NDIRECT,
    ROOTDEV,
    ROOTINO,
    DInode,
    Dirent,
    InodeType,
    Panic,
    Superblock,
    iblock,
)

NINODES = 32
SIZE = 200


def make_disk():
    ninodeblocks = NINODES // IPB + 1
    nbitmap = SIZE // BPB + 1
    nmeta = 2 + LOGSIZE + ninodeblocks + nbitmap
    sb = Superblock(
        size=SIZE,
        nblocks=SIZE - nmeta,
        ninodes=NINODES,
        nlog=LOGSIZE,
        logstart=2,
        inodestart=2 + LOGSIZE,
        bmapstart=2 + LOGSIZE + ninodeblocks,
    )
    disk = MemoryDisk(nblocks=SIZE)
    disk.write_block(1, sb.pack().ljust(BSIZE, b"\0"))

    root_block = nmeta
    entries = Dirent(ROOTINO, b".").pack() + Dirent(ROOTINO, b"..").pack()
    disk.write_block(root_block, entries.ljust(BSIZE, b"\0"))

    addrs = [0] * (NDIRECT + 1)
    addrs[0] = root_block
    din = DInode(InodeType.DIR, 0, 0, 1, len(entries), addrs)
    blk = bytearray(disk.read_block(iblock(ROOTINO, sb)))
    start = (ROOTINO % IPB) * DInode.SIZE
    blk[start:start + DInode.SIZE] = din.pack()
    disk.write_block(iblock(ROOTINO, sb), bytes(blk))

    bitmap = bytearray(BSIZE)
    for b in range(nmeta + 1):
        bitmap[b // 8] |= 1 << (b % 8)
    disk.write_block(sb.bmapstart, bytes(bitmap))
    return disk, sb


@pytest.fixture
def disk_and_sb():
    return make_disk()


@pytest.fixture
def fs(disk_and_sb):
    disk, _ = disk_and_sb
    return FileSystem(BufferCache(disk))


def create(fs, name, type_=InodeType.FILE):
    with fs.log.transaction():
        ip = fs.ialloc(type_)
        fs.ilock(ip)
        ip.nlink = 1
        fs.iupdate(ip)
        root = fs.namei("/")
        fs.ilock(root)
        fs.dirlink(root, name, ip.inum)
        fs.iunlockput(root)
        fs.iunlock(ip)
    return ip


def test_skipelem_examples():
    assert skipelem("a/bb/c") == (b"a", b"bb/c")
    assert skipelem("///a//bb") == (b"a", b"bb")
    assert skipelem("a") == (b"a", b"")
    assert skipelem("") is None
    assert skipelem("////") is None


def test_skipelem_truncates_long_names():
    long = "x" * (DIRSIZ + 5)
    name, rest = skipelem(long + "/y")
    assert name == b"x" * DIRSIZ
    assert rest == b"y"


def test_namecmp():
    assert namecmp("abc", b"abc") == 0
    assert namecmp("abc", "abd") < 0
    assert namecmp("abd", "abc") > 0
    assert namecmp("a" * DIRSIZ + "z", "a" * DIRSIZ + "q") == 0


def test_readsb(disk_and_sb):
    disk, sb = disk_and_sb
    assert readsb(BufferCache(disk), ROOTDEV) == sb


def test_root_lookup(fs):
    root = fs.namei("/")
    fs.ilock(root)
    st = fs.stati(root)
    fs.iunlock(root)
    assert st.ino == ROOTINO
    assert st.type == InodeType.DIR
    assert st.size == 2 * Dirent.SIZE


def test_dirlookup_dot_entries(fs):
    root = fs.namei("/")
    fs.ilock(root)
    dot, off = fs.dirlookup(root, ".")
    dotdot, off2 = fs.dirlookup(root, "..")
    missing = fs.dirlookup(root, "nothing")
    fs.iunlock(root)
    assert dot is root and off == 0
    assert dotdot is root and off2 == Dirent.SIZE
    assert missing is None


def test_create_write_and_read(fs):
    ip = create(fs, "hello")
    found = fs.namei("/hello")
    assert found is ip
    with fs.log.transaction():
        fs.ilock(ip)
        assert fs.writei(ip, b"hello world", 0) == len(b"hello world")
        fs.iunlock(ip)
    fs.ilock(ip)
    assert fs.readi(ip, 0, 100) == b"hello world"
    assert fs.readi(ip, 6, 3) == b"wor"
    assert ip.size == len(b"hello world")
    fs.iunlock(ip)


def test_large_file_through_indirect_block(fs):
    ip = create(fs, "big")
    data = bytes(i % 251 for i in range((NDIRECT + 3) * BSIZE))
    chunk = 3 * BSIZE
    fs.ilock(ip)
    for off in range(0, len(data), chunk):
        with fs.log.transaction():
            fs.writei(ip, data[off:off + chunk], off)
    assert ip.addrs[NDIRECT] != 0
    assert fs.readi(ip, 0, len(data)) == data
    fs.iunlock(ip)


def test_changes_persist_after_commit(disk_and_sb):
    disk, _ = disk_and_sb
    fs = FileSystem(BufferCache(disk))
    ip = create(fs, "keep")
    with fs.log.transaction():
        fs.ilock(ip)
        fs.writei(ip, b"persistent", 0)
        fs.iunlock(ip)

    fresh = FileSystem(BufferCache(disk))
    again = fresh.namei("/keep")
    assert again.inum == ip.inum
    fresh.ilock(again)
    assert fresh.readi(again, 0, 64) == b"persistent"
    fresh.iunlock(again)


def test_read_and_write_range_errors(fs):
    ip = create(fs, "f")
    fs.ilock(ip)
    with fs.log.transaction():
        fs.writei(ip, b"abc", 0)
    with pytest.raises(ValueError):
        fs.readi(ip, 4, 1)
    assert fs.readi(ip, 3, 10) == b""
    with fs.log.transaction():
        with pytest.raises(ValueError):
            fs.writei(ip, b"x", 5)
        with pytest.raises(ValueError):
            fs.writei(ip, b"x" * (MAXFILE * BSIZE + 1), 0)
    assert ip.size == 3
    fs.iunlock(ip)


def test_dirlink_duplicate(fs):
    ip = create(fs, "dup")
    root = fs.namei("/")
    with fs.log.transaction():
        fs.ilock(root)
        with pytest.raises(FileExistsError):
            fs.dirlink(root, "dup", ip.inum)
        size = root.size
        fs.iunlockput(root)
    assert size == 3 * Dirent.SIZE


def test_namei_through_file_and_missing(fs):
    create(fs, "plain")
    assert fs.namei("/plain/x") is None
    assert fs.namei("/absent") is None


def test_relative_lookup_from_cwd(fs):
    root = fs.namei("/")
    sub = create(fs, "sub", InodeType.DIR)
    with fs.log.transaction():
        fs.ilock(sub)
        fs.dirlink(sub, ".", sub.inum)
        fs.dirlink(sub, "..", ROOTINO)
        fs.iunlock(sub)
    inner = create(fs, "inner")
    assert fs.namei("sub/..", root).inum == ROOTINO
    assert fs.namei("../inner", sub) is inner


def test_iput_frees_unlinked_inode_and_blocks(fs):
    ip = create(fs, "gone")
    with fs.log.transaction():
        fs.ilock(ip)
        fs.writei(ip, b"data", 0)
        freed_block = ip.addrs[0]
        freed_inum = ip.inum
        ip.nlink = 0
        fs.iupdate(ip)
        fs.iunlockput(ip)
    assert ip.ref == 0
    assert all(a == 0 for a in ip.addrs)

    with fs.log.transaction():
        again = fs.ialloc(InodeType.FILE)
        fs.ilock(again)
        again.nlink = 1
        fs.writei(again, b"new", 0)
        fs.iunlock(again)
    assert again.inum == freed_inum
    assert again.addrs[0] == freed_block


def test_idup_increments_reference(fs):
    root = fs.namei("/")
    before = root.ref
    assert fs.idup(root) is root
    assert root.ref == before + 1


def test_lock_errors(fs):
    root = fs.namei("/")
    with pytest.raises(Panic):
        fs.iunlock(root)
    with pytest.raises(Panic):
        fs.ilock(None)
    fs.iput(root)
    with pytest.raises(Panic):
        fs.ilock(root)


def test_dirlookup_on_file_panics(fs):
    ip = create(fs, "notdir")
    fs.ilock(ip)
    with pytest.raises(Panic):
        fs.dirlookup(ip, "x")
    fs.iunlock(ip)


def test_device_inode_uses_device_functions(disk_and_sb):
    disk, _ = disk_and_sb
    written = []
    console = Device(
        read=lambda ip, n: b"typed"[:n],
        write=lambda ip, data: written.append(data) or len(data),
    )
    fs = FileSystem(BufferCache(disk), devices={1: console})
    ip = create(fs, "console", InodeType.DEV)
    with fs.log.transaction():
        fs.ilock(ip)
        ip.major = 1
        fs.iupdate(ip)
        fs.iunlock(ip)
    fs.ilock(ip)
    assert fs.readi(ip, 0, 3) == b"typ"
    assert fs.writei(ip, b"out", 0) == 3
    ip.major = 2
    with pytest.raises(OSError):
        fs.readi(ip, 0, 1)
    fs.iunlock(ip)
    assert written == [b"out"]