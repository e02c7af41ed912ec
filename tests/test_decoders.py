"""Tests for the Pillow-backed decoder and decoder selection."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from faceseq.config import Settings
from faceseq.errors import DecodeError, UnsupportedFormat
from faceseq.imaging.decoders import StandardDecoder, decoder_for
from faceseq.imaging.formats import FormatTag
from faceseq.imaging.ppm import PpmDecoder


def _encode(image: Image.Image, fmt: str) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


class TestStandardDecoder:
    def test_png_rgb(self) -> None:
        payload = _encode(Image.new("RGB", (4, 3), (10, 20, 30)), "PNG")

        raster = StandardDecoder().decode(payload)

        assert (raster.width, raster.height, raster.channels) == (4, 3, 3)
        assert raster.pixels.dtype == np.uint8
        assert raster.pixels[2, 3].tolist() == [10, 20, 30]

    def test_grayscale_png_expanded_to_rgb(self) -> None:
        payload = _encode(Image.new("L", (2, 2), 77), "PNG")
        raster = StandardDecoder().decode(payload)
        assert raster.pixels.shape == (2, 2, 3)
        assert raster.pixels[0, 0].tolist() == [77, 77, 77]

    def test_rgba_png_drops_alpha(self) -> None:
        payload = _encode(Image.new("RGBA", (2, 1), (1, 2, 3, 4)), "PNG")
        raster = StandardDecoder().decode(payload)
        assert raster.pixels[0, 0].tolist() == [1, 2, 3]

    def test_jpeg(self) -> None:
        payload = _encode(Image.new("RGB", (16, 8), (200, 100, 50)), "JPEG")
        raster = StandardDecoder().decode(payload)
        assert (raster.width, raster.height) == (16, 8)

    def test_gif(self) -> None:
        payload = _encode(Image.new("RGB", (5, 5), (255, 0, 0)), "GIF")
        raster = StandardDecoder().decode(payload)
        assert raster.pixels.shape == (5, 5, 3)

    def test_corrupted_bytes(self) -> None:
        with pytest.raises(DecodeError, match="Cannot read bytes into image"):
            StandardDecoder().decode(b"\xff\xd8\xff\xe0 this is not really a jpeg")

    def test_truncated_png(self) -> None:
        payload = _encode(Image.new("RGB", (64, 64), (1, 2, 3)), "PNG")
        with pytest.raises(DecodeError):
            StandardDecoder().decode(payload[: len(payload) // 2])

    def test_other_formats_rejected(self) -> None:
        payload = _encode(Image.new("RGB", (2, 2)), "BMP")
        with pytest.raises(DecodeError):
            StandardDecoder().decode(payload)

    def test_pixel_limit(self) -> None:
        payload = _encode(Image.new("RGB", (10, 10)), "PNG")
        with pytest.raises(DecodeError, match="exceeds"):
            StandardDecoder(max_image_pixels=99).decode(payload)


class TestDecoderFor:
    def test_standard(self) -> None:
        assert isinstance(decoder_for(FormatTag.STANDARD_RASTER, Settings()), StandardDecoder)

    def test_ppm(self) -> None:
        assert isinstance(decoder_for(FormatTag.PPM_RASTER, Settings()), PpmDecoder)

    def test_unsupported_raises(self) -> None:
        with pytest.raises(UnsupportedFormat):
            decoder_for(FormatTag.UNSUPPORTED, Settings())
