# xv6fs

A self-contained Python model of a small Unix-style teaching file system. It
builds, reads and writes its disk images (512-byte blocks, little-endian
structures) and provides each layer of the file system as a separate module:

- `xv6fs.layout` – on-disk structures and limits: `Superblock`, `DInode`,
  `Dirent`, `Stat`, `InodeType`, the `iblock` / `bblock` helpers, and the
  `Panic` exception raised on unrecoverable inconsistencies.
- `xv6fs.disk` – block devices: `MemoryDisk` (blocks held in memory, with
  `to_bytes()`) and `FileDisk` (an existing image file, usable as a context
  manager). Out-of-range blocks or wrongly sized data raise `DiskError`.
- `xv6fs.bufcache` – `BufferCache`, a fixed pool of `Buf`s kept in
  most-recently-used order, with `bread`, `bwrite` and `brelse`.
- `xv6fs.log` – `Log`, the write-ahead redo log. Group writes with
  `begin_op()` / `end_op()` or the `transaction()` context manager; the last
  operation to finish commits. Any committed transaction left on disk is
  installed when the log is opened.
- `xv6fs.fs` – `FileSystem`: block and inode allocation, inode locking and
  reference counting (`ialloc`, `ilock`, `iunlock`, `iput`, ...), `readi` /
  `writei`, directories (`dirlookup`, `dirlink`) and path lookup (`namei`,
  `nameiparent`). Device inodes are served by `Device` entries keyed by major
  number. `skipelem`, `namecmp` and `readsb` are available as functions.
- `xv6fs.file` – `FileTable` of open `File`s (`alloc`, `dup`, `close`,
  `stat`, `read`, `write`) and in-memory `Pipe`s created with `pipealloc`.
- `xv6fs.printf` – `sprintf` / `printf` understanding only `%d`, `%x`, `%p`,
  `%s`, `%c` and `%%`.
- `xv6fs.console` – `cformat` (the console's formatter), an 80x25
  `CgaScreen`, a line-editing `Console` (backspace, Control-U, Control-D as end
  of input) and a `Keyboard` that turns PC scan codes into characters.
- `xv6fs.tools` – `cat`, `echo`, `fmtname` and `ls` working on a
  `FileSystem`.
- `xv6fs.grep` – a tiny pattern matcher (`match`) and line filter (`grep`).
- `xv6fs.mptable` – finding and parsing multiprocessor configuration tables
  in a memory dump: `checksum`, `find_mp`, `parse_config`, `MpInfo`.

## Installing

```
pip install .
```

## Building an image

```
xv6-mkfs fs.img README _cat _echo _ls
```

The image gets a root directory holding `.`, `..` and each named file; a
leading `_` is dropped from a file's name, and names may not contain `/`.
The same is available from Python; `build_image` takes a mapping or a list of
`(name, data)` pairs and returns the image bytes:

```python
from xv6fs.mkfs import build_image

image = build_image([("README", b"hello\n")])
```

## Reading an image

```python
import io

from xv6fs.bufcache import BufferCache
from xv6fs.disk import MemoryDisk
from xv6fs.fs import FileSystem
from xv6fs.tools import cat, ls

fs = FileSystem(BufferCache(MemoryDisk(image)))
print("\n".join(ls(fs, "/")))

out = io.BytesIO()
cat(fs, ["README"], out)
print(out.getvalue())
```

To work on an image file in place, use `FileDisk`:

```python
from xv6fs.disk import FileDisk

with FileDisk("fs.img") as disk:
    fs = FileSystem(BufferCache(disk))
```

## Searching text

```
xv6-grep '^ab*c$' notes.txt
```

The pattern language understands only `^`, `.`, `*` and `$`. With no file
arguments standard input is read; matching lines are written to standard
output.

```python
from xv6fs.grep import match

match("^a.c$", "abc")   # True
```

## What this package does not do

There is no running kernel: no processes, scheduler, system calls or user
shell. The file system offers the inode-level operations listed above but no
ready-made `open`, `mkdir`, `link` or `unlink`; directories and links are
made with `ialloc`, `dirlink` and `iupdate` inside a log transaction. `cat`,
`echo` and `ls` are library functions, not commands; the only commands are
`xv6-mkfs` and `xv6-grep`. The console and keyboard classes model input and
output in memory and do not drive a real terminal.

## Running the tests

```
pip install .[test]
pytest
```