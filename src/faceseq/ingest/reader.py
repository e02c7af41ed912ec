"""Container record reader: turns a container URI into a lazy stream of records."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from faceseq.batch.results import SkipReason
from faceseq.errors import ContainerFormatError, StorageUnavailable
from faceseq.ingest.sequence_file import SequenceFileReader
from faceseq.ingest.storage import StorageResolver

if TYPE_CHECKING:
    from collections.abc import Iterator

    from faceseq.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContainerRecord:
    """One (key, payload) pair read from a container."""

    key: str
    payload: bytes


@dataclass(frozen=True)
class MalformedRecord:
    """A record that cannot be processed but does not end the container."""

    key: str
    reason: SkipReason
    detail: str


RecordItem = ContainerRecord | MalformedRecord


class ContainerReader:
    """Opens SequenceFile containers from any supported store."""

    def __init__(self, settings: Settings, resolver: StorageResolver | None = None) -> None:
        self._settings = settings
        self.resolver = resolver or StorageResolver(settings)

    @contextmanager
    def open(self, uri: str) -> Iterator[Iterator[RecordItem]]:
        """Open ``uri`` and yield a forward-only iterator over its records.

        The underlying stream is closed when the block exits, including when
        the block raises.

        Raises:
            StorageUnavailable: If the container cannot be opened.
            ContainerFormatError: If the container header is unreadable.
        """
        backend = self.resolver.resolve(uri)
        stream = backend.open(uri)
        try:
            try:
                reader = SequenceFileReader(stream, max_record_size=self._settings.max_record_size)
            except OSError as exc:
                raise StorageUnavailable(f"Cannot read container header from {uri}: {exc}") from exc
            logger.debug("Opened container %s", uri)
            yield _iter_records(reader, uri)
        finally:
            stream.close()


def _iter_records(reader: SequenceFileReader, uri: str) -> Iterator[RecordItem]:
    try:
        for key_bytes, payload in reader:
            try:
                key = key_bytes.decode("utf-8")
            except UnicodeDecodeError as exc:
                yield MalformedRecord(
                    key=key_bytes.decode("utf-8", errors="replace"),
                    reason=SkipReason.INVALID_KEY,
                    detail=f"key is not valid UTF-8: {exc}",
                )
                continue
            if not key:
                yield MalformedRecord(key=key, reason=SkipReason.INVALID_KEY, detail="empty key")
                continue
            if not payload:
                yield MalformedRecord(key=key, reason=SkipReason.EMPTY_PAYLOAD, detail="zero-length payload")
                continue
            yield ContainerRecord(key=key, payload=payload)
    except OSError as exc:
        raise ContainerFormatError(f"I/O error while reading {uri}: {exc}") from exc
