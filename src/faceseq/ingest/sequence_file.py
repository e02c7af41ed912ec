"""Hadoop SequenceFile reader and writer.

Handles the container layout written by ``SequenceFile.Writer`` (format
version 6) with ``Text`` keys and ``BytesWritable`` (or ``Text``) values,
either uncompressed or compressed with ``DefaultCodec`` (zlib) or
``GzipCodec`` at record or block granularity.

Layout::

    header   SEQ <version> <key class> <value class> <compressed> <block>
             [<codec class>] <metadata> <16-byte sync>
    record   <int32 record length> <int32 key length> <key> <value>
    block    <vint count> <key lengths> <keys> <value lengths> <values>

A record length of -1 escapes a sync marker. Integers are big-endian; vints
use Hadoop's ``WritableUtils`` zero-compressed encoding.
"""

from __future__ import annotations

import io
import logging
import os
import struct
import zlib
from collections import deque
from enum import StrEnum
from typing import TYPE_CHECKING

from faceseq.errors import ContainerFormatError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from types import TracebackType
    from typing import BinaryIO

logger = logging.getLogger(__name__)

MAGIC = b"SEQ"
VERSION = 6
SYNC_SIZE = 16
SYNC_ESCAPE = -1
SYNC_INTERVAL = 100 * SYNC_SIZE

TEXT_CLASS = "org.apache.hadoop.io.Text"
BYTES_CLASS = "org.apache.hadoop.io.BytesWritable"
DEFAULT_CODEC_CLASS = "org.apache.hadoop.io.compress.DefaultCodec"
GZIP_CODEC_CLASS = "org.apache.hadoop.io.compress.GzipCodec"

_INT = struct.Struct(">i")


class Codec(StrEnum):
    NONE = "none"
    DEFLATE = "deflate"
    GZIP = "gzip"


_CODEC_BY_CLASS: dict[str, Codec] = {
    DEFAULT_CODEC_CLASS: Codec.DEFLATE,
    GZIP_CODEC_CLASS: Codec.GZIP,
}
_CLASS_BY_CODEC: dict[Codec, str] = {codec: name for name, codec in _CODEC_BY_CLASS.items()}
_ZLIB_WBITS: dict[Codec, int] = {Codec.DEFLATE: zlib.MAX_WBITS, Codec.GZIP: 16 + zlib.MAX_WBITS}


# ---------------------------------------------------------------------------
# Primitive encodings
# ---------------------------------------------------------------------------


def encode_vlong(value: int) -> bytes:
    """Encode an integer with Hadoop's ``WritableUtils.writeVLong`` scheme."""
    if -112 <= value <= 127:
        return struct.pack(">b", value)

    marker = -112
    if value < 0:
        value = ~value
        marker = -120

    tmp = value
    while tmp != 0:
        tmp >>= 8
        marker -= 1

    size = -(marker + 120) if marker < -120 else -(marker + 112)
    out = bytearray(struct.pack(">b", marker))
    for idx in range(size, 0, -1):
        out.append((value >> ((idx - 1) * 8)) & 0xFF)
    return bytes(out)


def read_vlong(stream: BinaryIO) -> int:
    """Decode one ``WritableUtils`` vlong from ``stream``."""
    first = _read_exact(stream, 1)[0]
    if first > 127:
        first -= 256
    if first >= -112:
        return first

    negative = first < -120
    size = (-119 - first) if negative else (-111 - first)
    value = 0
    for byte in _read_exact(stream, size - 1):
        value = (value << 8) | byte
    return ~value if negative else value


def encode_text(value: str | bytes) -> bytes:
    """Serialize a ``Text`` writable: vint length followed by UTF-8 bytes."""
    data = value.encode("utf-8") if isinstance(value, str) else value
    return encode_vlong(len(data)) + data


def _read_upto(stream: BinaryIO, size: int) -> bytes:
    # Network streams may return short reads before EOF.
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = _read_upto(stream, size)
    if len(data) != size:
        raise ContainerFormatError(f"Unexpected end of container: wanted {size} bytes, got {len(data)}")
    return data


def _read_int(stream: BinaryIO) -> int:
    value: int = _INT.unpack(_read_exact(stream, 4))[0]
    return value


def _read_int_or_eof(stream: BinaryIO) -> int | None:
    data = _read_upto(stream, 4)
    if not data:
        return None
    if len(data) != 4:
        raise ContainerFormatError("Unexpected end of container inside a record length")
    value: int = _INT.unpack(data)[0]
    return value


def _read_text(stream: BinaryIO, limit: int) -> bytes:
    length = read_vlong(stream)
    if length < 0 or length > limit:
        raise ContainerFormatError(f"Invalid Text length {length}")
    return _read_exact(stream, length)


def _decompress(codec: Codec, data: bytes, limit: int) -> bytes:
    inflater = zlib.decompressobj(_ZLIB_WBITS[codec])
    try:
        out = inflater.decompress(data, limit + 1)
    except zlib.error as exc:
        raise ContainerFormatError(f"Corrupt {codec} data: {exc}") from exc
    if len(out) > limit or inflater.unconsumed_tail:
        raise ContainerFormatError(f"Decompressed data exceeds {limit} bytes")
    if not inflater.eof:
        raise ContainerFormatError(f"Truncated {codec} data")
    return out


def _compress(codec: Codec, data: bytes) -> bytes:
    deflater = zlib.compressobj(wbits=_ZLIB_WBITS[codec])
    return deflater.compress(data) + deflater.flush()


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------


class SequenceFileReader:
    """Forward-only iterator of ``(key, value)`` byte pairs from a SequenceFile stream.

    The header is parsed on construction, so a stream that is not a readable
    container fails immediately with ``ContainerFormatError``. Iteration is
    single-pass; the reader never seeks and does not close ``stream``.
    """

    def __init__(self, stream: BinaryIO, max_record_size: int = 268_435_456) -> None:
        self._stream = stream
        self._limit = max_record_size
        self._pending: deque[tuple[bytes, bytes]] = deque()
        self._exhausted = False

        magic = _read_exact(stream, 3)
        if magic != MAGIC:
            raise ContainerFormatError(f"Not a SequenceFile: bad magic {magic!r}")
        self.version = _read_exact(stream, 1)[0]
        if self.version != VERSION:
            raise ContainerFormatError(f"Unsupported SequenceFile version {self.version}")

        self.key_class = _read_text(stream, 4096).decode("utf-8", errors="replace")
        self.value_class = _read_text(stream, 4096).decode("utf-8", errors="replace")
        if self.key_class != TEXT_CLASS:
            raise ContainerFormatError(f"Unsupported key class {self.key_class}")
        if self.value_class not in (BYTES_CLASS, TEXT_CLASS):
            raise ContainerFormatError(f"Unsupported value class {self.value_class}")

        compressed = _read_exact(stream, 1)[0] != 0
        self.block_compressed = _read_exact(stream, 1)[0] != 0
        self.codec = Codec.NONE
        if compressed:
            codec_class = _read_text(stream, 4096).decode("utf-8", errors="replace")
            if codec_class not in _CODEC_BY_CLASS:
                raise ContainerFormatError(f"Unsupported compression codec {codec_class}")
            self.codec = _CODEC_BY_CLASS[codec_class]

        count = _read_int(stream)
        if count < 0:
            raise ContainerFormatError(f"Invalid metadata count {count}")
        self.metadata: dict[str, str] = {}
        for _ in range(count):
            name = _read_text(stream, self._limit).decode("utf-8", errors="replace")
            self.metadata[name] = _read_text(stream, self._limit).decode("utf-8", errors="replace")

        self._sync = _read_exact(stream, SYNC_SIZE)
        logger.debug(
            "Opened SequenceFile (key=%s, value=%s, codec=%s, block=%s)",
            self.key_class,
            self.value_class,
            self.codec,
            self.block_compressed,
        )

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        return self

    def __next__(self) -> tuple[bytes, bytes]:
        if self.block_compressed:
            while not self._pending:
                if self._exhausted or not self._read_block():
                    self._exhausted = True
                    raise StopIteration
            return self._pending.popleft()

        if self._exhausted:
            raise StopIteration
        record = self._read_record()
        if record is None:
            self._exhausted = True
            raise StopIteration
        return record

    # -- Internal -----------------------------------------------------------

    def _check_sync(self) -> None:
        marker = _read_exact(self._stream, SYNC_SIZE)
        if marker != self._sync:
            raise ContainerFormatError("Sync marker mismatch")

    def _read_record(self) -> tuple[bytes, bytes] | None:
        length = _read_int_or_eof(self._stream)
        if length == SYNC_ESCAPE:
            self._check_sync()
            length = _read_int_or_eof(self._stream)
        if length is None:
            return None

        key_length = _read_int(self._stream)
        if length < 0 or length > self._limit or key_length < 0 or key_length > length:
            raise ContainerFormatError(f"Invalid record lengths (record={length}, key={key_length})")

        key = self._parse_key(_read_exact(self._stream, key_length))
        value = _read_exact(self._stream, length - key_length)
        if self.codec is not Codec.NONE:
            value = _decompress(self.codec, value, self._limit)
        return key, self._parse_value(value)

    def _read_block(self) -> bool:
        marker = _read_int_or_eof(self._stream)
        if marker is None:
            return False
        if marker != SYNC_ESCAPE:
            raise ContainerFormatError("Missing sync marker before compressed block")
        self._check_sync()

        count = read_vlong(self._stream)
        if count < 0:
            raise ContainerFormatError(f"Invalid block record count {count}")
        key_lengths = io.BytesIO(self._read_block_buffer())
        keys = io.BytesIO(self._read_block_buffer())
        value_lengths = io.BytesIO(self._read_block_buffer())
        values = io.BytesIO(self._read_block_buffer())

        for _ in range(count):
            key_data = _read_exact(keys, self._checked_length(read_vlong(key_lengths)))
            value_data = _read_exact(values, self._checked_length(read_vlong(value_lengths)))
            self._pending.append((self._parse_key(key_data), self._parse_value(value_data)))
        return True

    def _read_block_buffer(self) -> bytes:
        size = self._checked_length(read_vlong(self._stream))
        return _decompress(self.codec, _read_exact(self._stream, size), self._limit)

    def _checked_length(self, length: int) -> int:
        if length < 0 or length > self._limit:
            raise ContainerFormatError(f"Invalid length {length}")
        return length

    def _parse_key(self, data: bytes) -> bytes:
        buffer = io.BytesIO(data)
        key = _read_text(buffer, len(data))
        if buffer.tell() != len(data):
            raise ContainerFormatError("Trailing bytes after record key")
        return key

    def _parse_value(self, data: bytes) -> bytes:
        buffer = io.BytesIO(data)
        if self.value_class == TEXT_CLASS:
            value = _read_text(buffer, len(data))
        else:
            size = _read_int(buffer)
            if size < 0 or size > len(data) - 4:
                raise ContainerFormatError(f"Invalid BytesWritable size {size}")
            value = _read_exact(buffer, size)
        if buffer.tell() != len(data):
            raise ContainerFormatError("Trailing bytes after record value")
        return value


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


class SequenceFileWriter:
    """Writes ``Text``/``BytesWritable`` records into a SequenceFile stream."""

    def __init__(
        self,
        stream: BinaryIO,
        codec: Codec = Codec.NONE,
        *,
        block: bool = False,
        metadata: Mapping[str, str] | None = None,
        block_size: int = 1_000_000,
    ) -> None:
        if block and codec is Codec.NONE:
            raise ValueError("Block compression requires a codec")
        self._stream = stream
        self._codec = codec
        self._block = block
        self._block_size = block_size
        self._sync = os.urandom(SYNC_SIZE)
        self._position = 0
        self._last_sync = 0
        self._buffered: list[tuple[bytes, bytes]] = []
        self._buffered_bytes = 0
        self._closed = False
        self._write_header(metadata or {})

    def __enter__(self) -> SequenceFileWriter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def append(self, key: str | bytes, value: bytes) -> None:
        """Append one record; ``value`` is wrapped as a ``BytesWritable``."""
        if self._closed:
            raise ValueError("Writer is closed")
        key_data = encode_text(key)
        value_data = _INT.pack(len(value)) + value

        if self._block:
            self._buffered.append((key_data, value_data))
            self._buffered_bytes += len(key_data) + len(value_data)
            if self._buffered_bytes >= self._block_size:
                self._flush_block()
            return

        if self._position - self._last_sync >= SYNC_INTERVAL:
            self._write_sync()
        if self._codec is not Codec.NONE:
            value_data = _compress(self._codec, value_data)
        self._write(_INT.pack(len(key_data) + len(value_data)))
        self._write(_INT.pack(len(key_data)))
        self._write(key_data)
        self._write(value_data)

    def close(self) -> None:
        """Flush any buffered block. Does not close the underlying stream."""
        if self._closed:
            return
        if self._block:
            self._flush_block()
        self._stream.flush()
        self._closed = True

    # -- Internal -----------------------------------------------------------

    def _write(self, data: bytes) -> None:
        self._stream.write(data)
        self._position += len(data)

    def _write_sync(self) -> None:
        self._write(_INT.pack(SYNC_ESCAPE))
        self._write(self._sync)
        self._last_sync = self._position

    def _write_header(self, metadata: Mapping[str, str]) -> None:
        self._write(MAGIC + bytes([VERSION]))
        self._write(encode_text(TEXT_CLASS))
        self._write(encode_text(BYTES_CLASS))
        self._write(bytes([self._codec is not Codec.NONE, self._block]))
        if self._codec is not Codec.NONE:
            self._write(encode_text(_CLASS_BY_CODEC[self._codec]))
        self._write(_INT.pack(len(metadata)))
        for name, value in metadata.items():
            self._write(encode_text(name))
            self._write(encode_text(value))
        self._write(self._sync)
        self._last_sync = self._position

    def _flush_block(self) -> None:
        if not self._buffered:
            return
        self._write_sync()
        self._write(encode_vlong(len(self._buffered)))
        key_lengths = b"".join(encode_vlong(len(key)) for key, _ in self._buffered)
        keys = b"".join(key for key, _ in self._buffered)
        value_lengths = b"".join(encode_vlong(len(value)) for _, value in self._buffered)
        values = b"".join(value for _, value in self._buffered)
        for buffer in (key_lengths, keys, value_lengths, values):
            compressed = _compress(self._codec, buffer)
            self._write(encode_vlong(len(compressed)))
            self._write(compressed)
        self._buffered.clear()
        self._buffered_bytes = 0
