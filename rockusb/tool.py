"""Helpers behind the rockusb command line: argument parsing and device tasks."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable

from rockusb.boot import (
    RkBootHeaderEntry,
    read_boot_header,
    read_entries,
    read_entry_data,
)
from rockusb.device import Device
from rockusb.protocol import SECTOR_SIZE, Capability, ResetOpcode

MAX_DIRECT_ERASE = 1024
MAX_LBA_ERASE = 32 * 1024
EMMC_FLASH_ID = "EMMC "
SRAM_AREA = 0x471
DDR_AREA = 0x472

_COPY_CHUNK = 1024 * 1024
_DECIMAL = re.compile(r"\+?[0-9]+")

_RESET_OPCODES = {
    "reset": ResetOpcode.RESET,
    "msc": ResetOpcode.MSC,
    "power-off": ResetOpcode.POWER_OFF,
    "maskrom": ResetOpcode.MASKROM,
    "disconnect": ResetOpcode.DISCONNECT,
}

_CAPABILITIES = (
    ("Direct LBA", Capability.direct_lba),
    ("Vendor storage", Capability.vendor_storage),
    ("First 4M Access", Capability.first_4m_access),
    ("Read LBA", Capability.read_lba),
    ("Read COM log", Capability.read_com_log),
    ("Read IDB config", Capability.read_idb_config),
    ("Read secure mode", Capability.read_secure_mode),
    ("New IDB", Capability.new_idb),
)


@dataclass(frozen=True)
class DeviceArg:
    """A USB device selected as ``<bus>:<address>``."""

    bus_number: int
    address: int


def _parse_u8(text: str, message: str) -> int:
    if not _DECIMAL.fullmatch(text):
        raise ValueError(message)
    value = int(text)
    if value > 0xFF:
        raise ValueError(message)
    return value


def parse_device(text: str) -> DeviceArg:
    """Parse a ``<bus>:<address>`` device selector."""
    parts = text.split(":")
    bus_number = _parse_u8(parts[0], "Bus should be a number")
    if len(parts) < 2:
        raise ValueError("No address: use <bus>:<address>")
    address = _parse_u8(parts[1], "Address should be a number")
    if len(parts) > 2:
        raise ValueError("Too many parts")
    return DeviceArg(bus_number=bus_number, address=address)


def parse_number(text: str) -> int:
    """Parse a non-negative number, hexadecimal when prefixed with ``0x``."""
    if text[:2] in ("0x", "0X"):
        digits = text[2:]
        if not re.fullmatch(r"[0-9a-fA-F]+", digits):
            raise ValueError(f"invalid hexadecimal number: {text!r}")
        return int(digits, 16)
    if not _DECIMAL.fullmatch(text):
        raise ValueError(f"invalid number: {text!r}")
    return int(text)


def find_bmap(image: str | Path) -> Path | None:
    """Find the bmap file for ``image``, dropping extensions one at a time."""
    candidate = Path(image)
    while True:
        bmap = candidate.with_name(candidate.name + ".bmap")
        if bmap.exists():
            return bmap
        if not candidate.suffix:
            return None
        candidate = candidate.with_suffix("")


def reset_opcode_from_name(name: str) -> ResetOpcode:
    """Map a command line reset name (e.g. ``power-off``) to a :class:`ResetOpcode`."""
    try:
        return _RESET_OPCODES[name.lower()]
    except KeyError:
        choices = ", ".join(_RESET_OPCODES)
        raise ValueError(f"unknown reset opcode {name!r} (choose from {choices})") from None


def capability_names(capability: Capability) -> list[str]:
    """Human readable names of the capabilities the device reports."""
    return [name for name, check in _CAPABILITIES if check(capability)]


def erase_flash(device: Device) -> None:
    """Erase the whole flash in chunks small enough to avoid USB timeouts."""
    flash_info = device.flash_info()
    if flash_info.sectors() <= 0:
        raise ValueError("Invalid flash chip")
    is_emmc = device.flash_id().to_str() == EMMC_FLASH_ID
    is_lba = device.capability().direct_lba()
    use_lba = is_emmc or is_lba
    max_blocks = MAX_LBA_ERASE if use_lba else MAX_DIRECT_ERASE

    first = 0
    blocks_left = flash_info.sectors()
    while blocks_left > 0:
        count = min(blocks_left, max_blocks)
        if use_lba:
            device.erase_lba(first, count)
        else:
            device.erase_force(first, count)
        blocks_left -= count
        first += count


def download_entry(
    device: Device,
    header_entry: RkBootHeaderEntry,
    area: int,
    stream: BinaryIO,
    sleep: Callable[[float], None] = time.sleep,
) -> list[str]:
    """Upload every blob described by ``header_entry`` to ``area``; return their names."""
    names = []
    for index, entry in enumerate(read_entries(stream, header_entry)):
        name = entry.name_str()
        print(f"{index} Name: {name}")
        data = read_entry_data(stream, entry)
        device.write_maskrom_area(area, data)
        print(f"Done!... waiting {entry.data_delay}ms")
        if entry.data_delay > 0:
            sleep(entry.data_delay / 1000)
        names.append(name)
    return names


def download_boot(
    device: Device,
    path: str | Path,
    sleep: Callable[[float], None] = time.sleep,
) -> list[str]:
    """Upload the SRAM and DDR blobs of a boot file; return the names uploaded."""
    with open(path, "rb") as stream:
        header = read_boot_header(stream)
        names = download_entry(device, header.entry_471, SRAM_AREA, stream, sleep)
        names += download_entry(device, header.entry_472, DDR_AREA, stream, sleep)
    return names


def download_maskrom_area(device: Device, area: int, path: str | Path) -> None:
    """Upload the whole file at ``path`` to a maskrom area."""
    device.write_maskrom_area(area, Path(path).read_bytes())


def read_lba_to_file(device: Device, offset: int, length: int, path: str | Path) -> None:
    """Read ``length`` sectors from ``offset`` and store them in ``path``."""
    data = bytearray(length * SECTOR_SIZE)
    device.read_lba(offset, data)
    Path(path).write_bytes(data)


def write_lba_from_file(device: Device, offset: int, length: int, path: str | Path) -> None:
    """Write the first ``length`` sectors of ``path`` to the flash at ``offset``."""
    size = length * SECTOR_SIZE
    with open(path, "rb") as stream:
        data = stream.read(size)
    if len(data) != size:
        raise EOFError(f"{path} holds {len(data)} bytes, {size} needed")
    device.write_lba(offset, data)


def write_file(device: Device, offset: int, path: str | Path) -> int:
    """Copy the file at ``path`` to the flash starting at sector ``offset``."""
    total = 0
    with open(path, "rb") as source, device.io() as target:
        target.seek(offset * SECTOR_SIZE)
        while chunk := source.read(_COPY_CHUNK):
            view = memoryview(chunk)
            while view:
                written = target.write(view)
                view = view[written:]
                total += written
    return total