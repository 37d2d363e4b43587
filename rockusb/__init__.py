"""Rockchip USB protocol host implementation, boot file parser and flashing helpers."""

__version__ = "0.3.0"

__all__ = ["boot", "bootfile_cli", "device", "operation", "protocol", "tool", "utils"]