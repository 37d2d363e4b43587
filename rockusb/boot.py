"""Parsers for Rockchip boot files (the ``BOOT``/``LDR `` loader containers)."""

from __future__ import annotations

import binascii
import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterator

RK_TIME_SIZE = 7
BOOT_HEADER_ENTRY_SIZE = 6
BOOT_ENTRY_SIZE = 57
BOOT_HEADER_SIZE = 102
BOOT_TAGS = (b"BOOT", b"LDR ")

_TIME = struct.Struct("<H5B")
_HEADER_ENTRY = struct.Struct("<BIB")
_ENTRY = struct.Struct("<BI20HIII")
_HEADER = struct.Struct("<4sHII7s4s6s6s6sBB")


class BootFileError(ValueError):
    """Raised when a boot file or one of its records cannot be parsed."""


def _check_length(data: bytes, expected: int, what: str) -> None:
    if len(data) != expected:
        raise BootFileError(f"{what} needs {expected} bytes, got {len(data)}")


def crc16(data: bytes) -> int:
    """CRC-16/IBM-3740 (CCITT-FALSE) checksum as used by Rockchip tools."""
    return binascii.crc_hqx(bytes(data), 0xFFFF)


@dataclass(frozen=True)
class RkTime:
    """Release timestamp stored in a boot header."""

    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int

    @classmethod
    def from_bytes(cls, data: bytes) -> RkTime:
        _check_length(data, RK_TIME_SIZE, "RkTime")
        return cls(*_TIME.unpack(bytes(data)))


@dataclass(frozen=True)
class RkBootHeaderEntry:
    """Describes ``count`` consecutive boot entries of ``size`` bytes at ``offset``."""

    count: int
    offset: int
    size: int

    @classmethod
    def from_bytes(cls, data: bytes) -> RkBootHeaderEntry:
        _check_length(data, BOOT_HEADER_ENTRY_SIZE, "boot header entry")
        count, offset, size = _HEADER_ENTRY.unpack(bytes(data))
        return cls(count=count, offset=offset, size=size)


@dataclass(frozen=True)
class RkBootEntry:
    """A data blob in the boot file; wait ``data_delay`` ms after uploading it."""

    size: int
    type_: int
    name: tuple[int, ...]
    data_offset: int
    data_size: int
    data_delay: int

    @classmethod
    def from_bytes(cls, data: bytes) -> RkBootEntry:
        _check_length(data, BOOT_ENTRY_SIZE, "boot entry")
        size, type_, *rest = _ENTRY.unpack(bytes(data))
        name = tuple(rest[:20])
        data_offset, data_size, data_delay = rest[20:]
        return cls(
            size=size,
            type_=type_,
            name=name,
            data_offset=data_offset,
            data_size=data_size,
            data_delay=data_delay,
        )

    def name_str(self) -> str:
        """The UTF-16 name with trailing NUL padding removed."""
        raw = struct.pack("<20H", *self.name)
        try:
            text = raw.decode("utf-16-le")
        except UnicodeDecodeError as exc:
            raise BootFileError(f"invalid UTF-16 entry name: {exc}") from exc
        return text.rstrip("\x00")


@dataclass(frozen=True)
class RkBootHeader:
    """Header found at the start of a boot file."""

    tag: bytes
    size: int
    version: int
    merge_version: int
    release: RkTime
    supported_chip: bytes
    entry_471: RkBootHeaderEntry
    entry_472: RkBootHeaderEntry
    entry_loader: RkBootHeaderEntry
    sign_flag: int
    rc4_flag: int

    @classmethod
    def from_bytes(cls, data: bytes) -> RkBootHeader:
        _check_length(data, BOOT_HEADER_SIZE, "boot header")
        (
            tag,
            size,
            version,
            merge_version,
            release,
            chip,
            e471,
            e472,
            eloader,
            sign_flag,
            rc4_flag,
        ) = _HEADER.unpack_from(bytes(data))
        if tag not in BOOT_TAGS:
            raise BootFileError(f"unknown boot file tag {tag!r}")
        return cls(
            tag=tag,
            size=size,
            version=version,
            merge_version=merge_version,
            release=RkTime.from_bytes(release),
            # Stored as a big-endian word whose little-endian bytes are kept.
            supported_chip=chip[::-1],
            entry_471=RkBootHeaderEntry.from_bytes(e471),
            entry_472=RkBootHeaderEntry.from_bytes(e472),
            entry_loader=RkBootHeaderEntry.from_bytes(eloader),
            sign_flag=sign_flag,
            rc4_flag=rc4_flag,
        )


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise BootFileError(f"unexpected end of file reading {what}")
    return data


def read_boot_header(stream: BinaryIO) -> RkBootHeader:
    """Read and parse the boot header at the current position of ``stream``."""
    return RkBootHeader.from_bytes(_read_exact(stream, BOOT_HEADER_SIZE, "boot header"))


def read_entries(stream: BinaryIO, header_entry: RkBootHeaderEntry) -> Iterator[RkBootEntry]:
    """Yield the boot entries described by ``header_entry``."""
    for index in range(header_entry.count):
        stream.seek(header_entry.offset + header_entry.size * index)
        yield RkBootEntry.from_bytes(_read_exact(stream, BOOT_ENTRY_SIZE, "boot entry"))


def read_entry_data(stream: BinaryIO, entry: RkBootEntry) -> bytes:
    """Read the data blob belonging to ``entry``."""
    stream.seek(entry.data_offset)
    return _read_exact(stream, entry.data_size, "entry data")