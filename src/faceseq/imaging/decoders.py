"""Raster decoders and format-based decoder selection."""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image

from faceseq.errors import DecodeError, UnsupportedFormat
from faceseq.imaging.formats import FormatTag
from faceseq.imaging.ppm import PpmDecoder
from faceseq.imaging.raster import Raster

if TYPE_CHECKING:
    from faceseq.config import Settings

logger = logging.getLogger(__name__)

STANDARD_FORMATS: tuple[str, ...] = ("PNG", "JPEG", "GIF")


class RasterDecoder(Protocol):
    """Protocol for payload-to-raster decoders."""

    def decode(self, payload: bytes) -> Raster:
        """Decode raw record bytes into an RGB raster.

        Raises:
            DecodeError: If the payload is not valid for this decoder's format.
        """
        ...


class StandardDecoder:
    """Decodes PNG, JPEG and GIF payloads with Pillow."""

    def __init__(self, max_image_pixels: int | None = None) -> None:
        self._max_image_pixels = max_image_pixels

    def decode(self, payload: bytes) -> Raster:
        try:
            with Image.open(io.BytesIO(payload), formats=STANDARD_FORMATS) as image:
                width, height = image.size
                if self._max_image_pixels is not None and width * height > self._max_image_pixels:
                    raise DecodeError(f"Image {width}x{height} exceeds {self._max_image_pixels} pixels")
                # Animated GIFs decode their first frame.
                rgb = image.convert("RGB")
                logger.debug("Decoded %s image %dx%d (mode=%s)", image.format, width, height, image.mode)
        except DecodeError:
            raise
        except (OSError, SyntaxError, ValueError, EOFError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Cannot read bytes into image: {exc}") from exc
        return Raster(pixels=np.array(rgb, dtype=np.uint8))


def decoder_for(tag: FormatTag, settings: Settings) -> RasterDecoder:
    """Return the decoder matching ``tag``.

    Raises:
        UnsupportedFormat: If ``tag`` is ``FormatTag.UNSUPPORTED``.
    """
    if tag is FormatTag.STANDARD_RASTER:
        return StandardDecoder(settings.max_image_pixels)
    if tag is FormatTag.PPM_RASTER:
        return PpmDecoder(settings.max_image_pixels)
    raise UnsupportedFormat(f"No decoder for format {tag}")
