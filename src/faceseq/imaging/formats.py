"""Key-based image format classification."""

from __future__ import annotations

from enum import StrEnum


class FormatTag(StrEnum):
    STANDARD_RASTER = "standard_raster"
    PPM_RASTER = "ppm_raster"
    UNSUPPORTED = "unsupported"


# Checked in order; a key matching both groups is a standard raster.
_STANDARD_MARKERS = ("png", "jpg", "jpeg", "gif")
_PPM_MARKERS = ("ppm",)


def classify(key: str) -> FormatTag:
    """Classify a record key by case-insensitive substring match on known extensions."""
    lowered = key.lower()
    if any(marker in lowered for marker in _STANDARD_MARKERS):
        return FormatTag.STANDARD_RASTER
    if any(marker in lowered for marker in _PPM_MARKERS):
        return FormatTag.PPM_RASTER
    return FormatTag.UNSUPPORTED
