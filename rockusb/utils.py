"""Small shared helpers."""

from __future__ import annotations

ROCKCHIP_VENDOR_ID = 0x2207


def default_vid(vendor_id: int | None) -> int:
    """Return ``vendor_id``, falling back to Rockchip's when it is None or 0."""
    if not vendor_id:
        return ROCKCHIP_VENDOR_ID
    return vendor_id