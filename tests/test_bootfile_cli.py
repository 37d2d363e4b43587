import struct

import pytest

from rockusb.boot import BOOT_ENTRY_SIZE, BOOT_HEADER_SIZE, crc16
from rockusb.bootfile_cli import describe_boot_file, main


def _write_boot_file(path, blob):
    name_units = list(struct.unpack("<3H", "ddr".encode("utf-16-le"))) + [0] * 17
    data_offset = BOOT_HEADER_SIZE + BOOT_ENTRY_SIZE
    entry = struct.pack("<BI20HIII", BOOT_ENTRY_SIZE, 1, *name_units, data_offset, len(blob), 0)
    header = b"LDR " + struct.pack("<HII", BOOT_HEADER_SIZE, 1, 0)
    header += struct.pack("<H5B", 2020, 1, 2, 3, 4, 5) + b"8853"
    header += struct.pack("<BIB", 0, 0, 0)
    header += struct.pack("<BIB", 0, 0, 0)
    header += struct.pack("<BIB", 1, BOOT_HEADER_SIZE, BOOT_ENTRY_SIZE)
    header += bytes([0, 0])
    header += bytes(BOOT_HEADER_SIZE - len(header))
    path.write_bytes(header + entry + blob)


def test_describe_boot_file(tmp_path):
    path = tmp_path / "loader.bin"
    blob = b"some loader data"
    _write_boot_file(path, blob)
    text = describe_boot_file(path)
    lines = text.splitlines()
    assert lines[0].startswith("Raw Header: ")
    assert lines[1].endswith(" - 3588")
    assert "== loader Entry  0 ==" in lines
    assert "Name: ddr" in lines
    assert f"Data CRC: {crc16(blob):x}" in lines
    assert not any(line.startswith("== 0x471") for line in lines)


def test_main_prints_description(tmp_path, capsys):
    path = tmp_path / "loader.bin"
    _write_boot_file(path, b"abc")
    assert main(["boot-file", str(path)]) == 0
    out = capsys.readouterr().out
    assert "Name: ddr" in out


def test_main_missing_file(tmp_path, capsys):
    assert main(["boot-file", str(tmp_path / "missing.bin")]) == 1
    assert "Error" in capsys.readouterr().err


def test_main_bad_file(tmp_path):
    path = tmp_path / "bad.bin"
    path.write_bytes(b"XXXX" + bytes(200))
    assert main(["boot-file", str(path)]) == 1


def test_main_requires_command():
    with pytest.raises(SystemExit):
        main([])