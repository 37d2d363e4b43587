import io
import struct

import pytest

from rockusb.boot import (
    BOOT_ENTRY_SIZE,
    BOOT_HEADER_SIZE,
    BootFileError,
    RkBootEntry,
    RkBootHeader,
    RkBootHeaderEntry,
    RkTime,
    crc16,
    read_boot_header,
    read_entries,
    read_entry_data,
)


def _entry_bytes(name, offset, size, delay, type_=1):
    units = list(struct.unpack(f"<{len(name)}H", name.encode("utf-16-le")))
    units += [0] * (20 - len(units))
    return struct.pack("<BI20HIII", BOOT_ENTRY_SIZE, type_, *units, offset, size, delay)


def _header_bytes(tag=b"BOOT", e471=(0, 0, 0), e472=(0, 0, 0), eloader=(0, 0, 0)):
    body = tag
    body += struct.pack("<HII", BOOT_HEADER_SIZE, 0x102, 0x0)
    body += struct.pack("<H5B", 2023, 4, 5, 6, 7, 8)
    body += b"ABCD"
    for count, offset, size in (e471, e472, eloader):
        body += struct.pack("<BIB", count, offset, size)
    body += bytes([1, 0])
    return body + bytes(BOOT_HEADER_SIZE - len(body))


def _boot_file(blobs):
    entries_offset = BOOT_HEADER_SIZE
    data_offset = entries_offset + BOOT_ENTRY_SIZE * len(blobs)
    entries = b""
    data = b""
    for name, blob, delay in blobs:
        entries += _entry_bytes(name, data_offset + len(data), len(blob), delay)
        data += blob
    header = _header_bytes(e471=(len(blobs), entries_offset, BOOT_ENTRY_SIZE))
    return header + entries + data


def test_time_parse():
    t = RkTime.from_bytes(struct.pack("<H5B", 2021, 12, 31, 23, 59, 58))
    assert t == RkTime(2021, 12, 31, 23, 59, 58)


def test_time_wrong_length():
    with pytest.raises(BootFileError):
        RkTime.from_bytes(b"\x00" * 6)


def test_header_entry_parse():
    e = RkBootHeaderEntry.from_bytes(struct.pack("<BIB", 3, 0x1234, 57))
    assert e == RkBootHeaderEntry(count=3, offset=0x1234, size=57)


def test_boot_entry_parse_and_name():
    e = RkBootEntry.from_bytes(_entry_bytes("usbplug", 500, 42, 10, type_=2))
    assert e.size == BOOT_ENTRY_SIZE
    assert e.type_ == 2
    assert e.data_offset == 500
    assert e.data_size == 42
    assert e.data_delay == 10
    assert len(e.name) == 20
    assert e.name_str() == "usbplug"


def test_boot_entry_invalid_name():
    units = [0xD800] + [0] * 19
    raw = struct.pack("<BI20HIII", 57, 0, *units, 0, 0, 0)
    with pytest.raises(BootFileError):
        RkBootEntry.from_bytes(raw).name_str()


def test_header_parse():
    h = RkBootHeader.from_bytes(_header_bytes(e471=(1, 102, 57), eloader=(2, 300, 57)))
    assert h.tag == b"BOOT"
    assert h.size == BOOT_HEADER_SIZE
    assert h.version == 0x102
    assert h.release == RkTime(2023, 4, 5, 6, 7, 8)
    assert h.supported_chip == b"DCBA"
    assert h.entry_471 == RkBootHeaderEntry(1, 102, 57)
    assert h.entry_472 == RkBootHeaderEntry(0, 0, 0)
    assert h.entry_loader == RkBootHeaderEntry(2, 300, 57)
    assert h.sign_flag == 1
    assert h.rc4_flag == 0


def test_header_ldr_tag_accepted():
    assert RkBootHeader.from_bytes(_header_bytes(tag=b"LDR ")).tag == b"LDR "


def test_header_bad_tag():
    with pytest.raises(BootFileError):
        RkBootHeader.from_bytes(_header_bytes(tag=b"NOPE"))


def test_read_truncated_header():
    with pytest.raises(BootFileError):
        read_boot_header(io.BytesIO(b"BOOT" + bytes(10)))


def test_read_entries_and_data():
    blobs = [("ddr", b"\x01\x02\x03", 1), ("usbplug", b"hello world", 0)]
    stream = io.BytesIO(_boot_file(blobs))
    header = read_boot_header(stream)
    result = []
    for entry in read_entries(stream, header.entry_471):
        result.append((entry.name_str(), read_entry_data(stream, entry), entry.data_delay))
    assert result == blobs
    assert list(read_entries(stream, header.entry_loader)) == []


def test_read_entry_data_truncated():
    entry = RkBootEntry.from_bytes(_entry_bytes("x", 0, 100, 0))
    with pytest.raises(BootFileError):
        read_entry_data(io.BytesIO(b"short"), entry)


def test_crc16_check_value():
    assert crc16(b"123456789") == 0x29B1
    assert crc16(b"") == 0xFFFF