"""Raw Portable Pixmap (P6) and Graymap (P5) decoding.

Header grammar::

    magic   "P6" (RGB) | "P5" (grayscale)
    width   ASCII decimal
    height  ASCII decimal
    maxval  ASCII decimal, 1..65535
    <one whitespace byte> <raster>

Tokens are separated by whitespace; ``#`` starts a comment that runs to the
end of the line and may appear anywhere between tokens. Samples are one
byte when maxval < 256, otherwise two bytes big-endian. Only the raw
variants are accepted; P1-P4 are rejected as unrecognized.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from faceseq.errors import DecodeError
from faceseq.imaging.raster import Raster

_WHITESPACE = frozenset(b" \t\n\r\v\f")
_DIGITS = frozenset(b"0123456789")
_NEWLINES = frozenset(b"\n\r")
_MAX_TOKEN_DIGITS = 10
_CHANNELS = {b"P6": 3, b"P5": 1}
MAX_MAXVAL = 65535


@dataclass(frozen=True)
class PpmHeader:
    magic: bytes
    width: int
    height: int
    maxval: int
    offset: int

    @property
    def channels(self) -> int:
        return _CHANNELS[self.magic]

    @property
    def sample_bytes(self) -> int:
        return 1 if self.maxval < 256 else 2

    @property
    def data_length(self) -> int:
        return self.width * self.height * self.channels * self.sample_bytes


def _skip_separators(payload: bytes, pos: int) -> int:
    start = pos
    while pos < len(payload):
        byte = payload[pos]
        if byte in _WHITESPACE:
            pos += 1
        elif byte == ord("#"):
            while pos < len(payload) and payload[pos] not in _NEWLINES:
                pos += 1
        else:
            break
    if pos == start:
        raise DecodeError(f"Expected whitespace in PPM header at offset {pos}")
    return pos


def _read_number(payload: bytes, pos: int, name: str) -> tuple[int, int]:
    start = pos
    while pos < len(payload) and payload[pos] in _DIGITS:
        pos += 1
    if pos == start:
        raise DecodeError(f"Missing or invalid {name} in PPM header")
    if pos - start > _MAX_TOKEN_DIGITS:
        raise DecodeError(f"PPM {name} has too many digits")
    return int(payload[start:pos]), pos


def parse_header(payload: bytes) -> PpmHeader:
    """Parse and validate a raw PPM/PGM header.

    Raises:
        DecodeError: If the magic is unrecognized or a header field is missing or out of range.
    """
    magic = bytes(payload[:2])
    if magic not in _CHANNELS:
        raise DecodeError(f"Unrecognized PPM magic {magic!r}")

    pos = 2
    values: list[int] = []
    for name in ("width", "height", "maxval"):
        pos = _skip_separators(payload, pos)
        value, pos = _read_number(payload, pos, name)
        values.append(value)
    width, height, maxval = values

    if pos >= len(payload) or payload[pos] not in _WHITESPACE:
        raise DecodeError("PPM header must end with a single whitespace byte")
    pos += 1

    if width <= 0 or height <= 0:
        raise DecodeError(f"Invalid PPM dimensions {width}x{height}")
    if maxval <= 0 or maxval > MAX_MAXVAL:
        raise DecodeError(f"Invalid PPM maxval {maxval}")
    return PpmHeader(magic=magic, width=width, height=height, maxval=maxval, offset=pos)


def decode_ppm(payload: bytes, max_image_pixels: int | None = None) -> Raster:
    """Decode a raw P6 or P5 payload into an 8-bit RGB raster.

    Grayscale samples are replicated across three channels. When maxval is
    not 255, samples are rescaled by ``255 / maxval`` rounded half up.
    """
    header = parse_header(payload)
    if max_image_pixels is not None and header.width * header.height > max_image_pixels:
        raise DecodeError(f"PPM image {header.width}x{header.height} exceeds {max_image_pixels} pixels")

    available = len(payload) - header.offset
    if available < header.data_length:
        raise DecodeError(f"Truncated PPM payload: need {header.data_length} raster bytes, have {available}")

    count = header.width * header.height * header.channels
    dtype = np.dtype(np.uint8) if header.sample_bytes == 1 else np.dtype(">u2")
    samples = np.frombuffer(payload, dtype=dtype, count=count, offset=header.offset)

    if int(samples.max()) > header.maxval:
        raise DecodeError(f"PPM sample exceeds maxval {header.maxval}")

    if header.maxval == 255:
        normalized = samples.astype(np.uint8, copy=True)
    else:
        wide = samples.astype(np.uint32)
        normalized = ((wide * 510 + header.maxval) // (2 * header.maxval)).astype(np.uint8)

    pixels = normalized.reshape(header.height, header.width, header.channels)
    if header.channels == 1:
        pixels = np.repeat(pixels, 3, axis=2)
    return Raster(pixels=pixels)


def encode_ppm(raster: Raster) -> bytes:
    """Encode a raster as a raw P6 payload with maxval 255."""
    header = f"P6\n{raster.width} {raster.height}\n255\n".encode("ascii")
    return header + raster.pixels.tobytes()


class PpmDecoder:
    """Raster decoder for raw PPM/PGM payloads."""

    def __init__(self, max_image_pixels: int | None = None) -> None:
        self._max_image_pixels = max_image_pixels

    def decode(self, payload: bytes) -> Raster:
        return decode_ppm(payload, self._max_image_pixels)
