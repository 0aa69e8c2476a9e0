"""Multiprocessor configuration tables: finding and parsing them in memory."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from .layout import NCPU

_MP = struct.Struct("<4sIBBBBB3x")              # floating pointer
_CONF = struct.Struct("<4sHBB20sIHHIHBB")       # configuration table header
_PROC = struct.Struct("<BBBB4sI8x")             # processor entry
_IOAPIC = struct.Struct("<BBBBI")               # I/O APIC entry

MPPROC = 0x00
MPBUS = 0x01
MPIOAPIC = 0x02
MPIOINTR = 0x03
MPLINTR = 0x04
MPBOOT = 0x02

_SHORT_ENTRY = 8


@dataclass
class MpInfo:
    """What the configuration table says about the machine."""

    ismp: bool
    ncpu: int
    bcpu: int
    lapic: int
    ioapicid: int
    imcrp: bool
    messages: list[str] = field(default_factory=list)


def checksum(data: bytes) -> int:
    """Sum of the bytes modulo 256; valid structures sum to zero."""
    return sum(data) & 0xFF


def find_mp(memory: bytes, start: int, length: int) -> int | None:
    """Offset of an MP floating pointer in memory[start:start+length], or None."""
    if start < 0 or length < 0:
        raise ValueError("search range must not be negative")
    end = min(start + length, len(memory))
    for p in range(start, end - _MP.size + 1, _MP.size):
        if memory[p:p + 4] == b"_MP_" and checksum(memory[p:p + _MP.size]) == 0:
            return p
    return None


def _search(memory: bytes) -> int | None:
    """Look in the EBDA, the last KB of base memory, then the BIOS ROM."""
    if len(memory) > 0x414:
        seg = (memory[0x40F] << 8) | memory[0x40E]
        if seg:
            found = find_mp(memory, seg << 4, 1024)
        else:
            kb = ((memory[0x414] << 8) | memory[0x413]) * 1024
            found = find_mp(memory, kb - 1024, 1024) if kb >= 1024 else None
        if found is not None:
            return found
    return find_mp(memory, 0xF0000, 0x10000)


def parse_config(memory: bytes, offset: int | None = None) -> MpInfo | None:
    """Parse the configuration table reached from the floating pointer at offset.

    With no offset the floating pointer is searched for. Returns None when
    there is no usable table.
    """
    mem = bytes(memory)
    if offset is None:
        offset = _search(mem)
        if offset is None:
            return None
    if offset < 0 or offset + _MP.size > len(mem):
        return None
    if mem[offset:offset + 4] != b"_MP_" or checksum(mem[offset:offset + _MP.size]) != 0:
        return None
    _, physaddr, _, _, _, _, imcrp = _MP.unpack_from(mem, offset)
    if physaddr == 0 or physaddr + _CONF.size > len(mem):
        return None
    sig, length, version, *_rest = _CONF.unpack_from(mem, physaddr)
    lapicaddr = _rest[5]
    if sig != b"PCMP":
        return None
    if version not in (1, 4):
        return None
    if physaddr + length > len(mem) or checksum(mem[physaddr:physaddr + length]) != 0:
        return None

    ismp = True
    ncpu = 0
    bcpu = 0
    ioapicid = 0
    messages: list[str] = []
    p = physaddr + _CONF.size
    end = physaddr + length
    while p < end:
        kind = mem[p]
        if kind == MPPROC:
            if p + _PROC.size > end:
                raise ValueError("truncated processor entry")
            _, apicid, _, flags, _, _ = _PROC.unpack_from(mem, p)
            if ncpu >= NCPU:
                raise ValueError(f"more than {NCPU} processors")
            if ncpu != apicid:
                messages.append(f"mpinit: ncpu={ncpu} apicid={apicid}")
                ismp = False
            if flags & MPBOOT:
                bcpu = ncpu
            ncpu += 1
            p += _PROC.size
        elif kind == MPIOAPIC:
            if p + _IOAPIC.size > end:
                raise ValueError("truncated I/O APIC entry")
            _, apicno, _, _, _ = _IOAPIC.unpack_from(mem, p)
            ioapicid = apicno
            p += _IOAPIC.size
        elif kind in (MPBUS, MPIOINTR, MPLINTR):
            p += _SHORT_ENTRY
        else:
            messages.append(f"mpinit: unknown config type {kind:x}")
            ismp = False
            break

    if not ismp:
        return MpInfo(False, 1, bcpu, 0, 0, bool(imcrp), messages)
    return MpInfo(True, ncpu, bcpu, lapicaddr, ioapicid, bool(imcrp), messages)