"""Command line inspector for Rockchip boot files."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from rockusb.boot import BootFileError, crc16, read_boot_header, read_entries, read_entry_data


def describe_boot_file(path: str | Path) -> str:
    """Return a human readable description of the boot file at ``path``."""
    lines = []
    with open(path, "rb") as stream:
        header = read_boot_header(stream)
        lines.append(f"Raw Header: {header!r}")
        chip = header.supported_chip
        lines.append(f"chip: {list(chip)} - {chip.decode('utf-8', errors='replace')}")
        sections = (
            ("0x471", header.entry_471),
            ("0x472", header.entry_472),
            ("loader", header.entry_loader),
        )
        for label, header_entry in sections:
            for index, entry in enumerate(read_entries(stream, header_entry)):
                lines.append(f"== {label} Entry  {index} ==")
                lines.append(f"Name: {entry.name_str()}")
                lines.append(f"Raw: {entry!r}")
                data = read_entry_data(stream, entry)
                lines.append(f"Data CRC: {crc16(data):x}")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="rockfile", description="Inspect Rockchip files")
    commands = parser.add_subparsers(dest="command", required=True)
    boot = commands.add_parser("boot-file", help="Describe a boot file")
    boot.add_argument("path", type=Path)
    args = parser.parse_args(argv)

    try:
        print(describe_boot_file(args.path))
    except (OSError, BootFileError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())