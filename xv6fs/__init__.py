"""Model of a small Unix-style file system: disk images, buffer cache, log, inodes, files and tools."""

__version__ = "0.1.0"