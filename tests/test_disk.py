import pytest

from xv6fs.disk import DiskError, FileDisk, MemoryDisk
from xv6fs.layout import BSIZE, FSSIZE, Panic


def test_memory_disk_defaults_to_zeroed_fs_size():
    disk = MemoryDisk()
    assert disk.nblocks == FSSIZE
    assert disk.read_block(FSSIZE - 1) == b"\0" * BSIZE


def test_memory_disk_round_trip():
    disk = MemoryDisk(nblocks=4)
    payload = bytes(range(256)) * 2
    disk.write_block(2, payload)
    assert disk.read_block(2) == payload
    assert disk.read_block(1) == b"\0" * BSIZE
    image = disk.to_bytes()
    assert len(image) == 4 * BSIZE
    assert image[2 * BSIZE:3 * BSIZE] == payload


def test_memory_disk_from_image():
    image = b"a" * BSIZE + b"b" * BSIZE
    disk = MemoryDisk(image)
    assert disk.nblocks == 2
    assert disk.read_block(1) == b"b" * BSIZE


def test_memory_disk_out_of_range():
    disk = MemoryDisk(nblocks=2)
    with pytest.raises(DiskError):
        disk.read_block(2)
    with pytest.raises(DiskError):
        disk.write_block(-1, b"\0" * BSIZE)


def test_memory_disk_wrong_size_write():
    disk = MemoryDisk(nblocks=2)
    with pytest.raises(DiskError):
        disk.write_block(0, b"short")


def test_disk_error_is_panic():
    with pytest.raises(Panic):
        MemoryDisk(nblocks=1).read_block(5)


def test_file_disk_round_trip(tmp_path):
    path = tmp_path / "fs.img"
    path.write_bytes(b"\0" * (3 * BSIZE))
    with FileDisk(path) as disk:
        assert disk.nblocks == 3
        disk.write_block(1, b"z" * BSIZE)
        assert disk.read_block(1) == b"z" * BSIZE
        with pytest.raises(DiskError):
            disk.read_block(3)
    assert path.read_bytes()[BSIZE:2 * BSIZE] == b"z" * BSIZE