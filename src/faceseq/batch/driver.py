"""Batch driver: containers in, one outcome per record out.

Flow per record:
    reader (pull) -> classify(key) -> decoder.decode(payload) -> detector.detect(raster)

Per-record failures become ``SkippedRecord`` entries and never stop the
batch. A container that cannot be opened is recorded as a
``LocationFailure`` and the run continues with the remaining containers.
"""

from __future__ import annotations

import logging
import operator
import socket
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from faceseq.batch.results import (
    BatchResult,
    DetectionOutcome,
    LocationFailure,
    SkippedRecord,
    SkipReason,
)
from faceseq.errors import (
    ContainerFormatError,
    DecodeError,
    DetectionFailure,
    StorageUnavailable,
    UnsupportedFormat,
)
from faceseq.imaging.decoders import decoder_for
from faceseq.imaging.formats import FormatTag, classify
from faceseq.ingest.reader import ContainerReader, MalformedRecord

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterable

    from faceseq.config import Settings
    from faceseq.imaging.decoders import RasterDecoder
    from faceseq.imaging.raster import Raster
    from faceseq.ingest.reader import ContainerRecord
    from faceseq.ml.detector import ObjectDetector

logger = logging.getLogger(__name__)


class BatchDriver:
    """Runs classification, decoding and detection over container records."""

    def __init__(
        self,
        settings: Settings,
        detector: ObjectDetector,
        reader: ContainerReader | None = None,
    ) -> None:
        self._settings = settings
        self._detector = detector
        self._reader = reader or ContainerReader(settings)
        self._decoders: dict[FormatTag, RasterDecoder] = {
            tag: decoder_for(tag, settings) for tag in (FormatTag.STANDARD_RASTER, FormatTag.PPM_RASTER)
        }
        self._hostname = socket.gethostname()

    # -- Public API ---------------------------------------------------------

    def process(
        self,
        locations: Iterable[str],
        extension_filter: str,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        """Process every container found at ``locations``.

        A location naming a directory is expanded to the non-empty files in
        it whose names end with ``extension_filter``. Results are merged in
        location order, then container discovery order.
        """
        result = BatchResult()
        for location in locations:
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            try:
                containers = self.discover(location, extension_filter)
            except StorageUnavailable as exc:
                logger.error("Cannot read location %s: %s", location, exc)
                result.failures.append(LocationFailure(location=location, detail=str(exc)))
                continue
            logger.info("Found %d container(s) at %s", len(containers), location)
            result.merge(self._process_containers(containers, cancel))

        logger.info(
            "Batch finished: outcomes=%d skipped=%d failures=%d faces=%d cancelled=%s",
            len(result.outcomes),
            result.skip_count,
            len(result.failures),
            result.total_faces,
            result.cancelled,
        )
        return result

    def discover(self, location: str, extension_filter: str) -> list[str]:
        """Return container URIs at ``location``: itself, or matching files if it is a directory."""
        backend = self._reader.resolver.resolve(location)
        if backend.is_dir(location):
            return backend.list_files(location, extension_filter)
        return [location]

    def process_container(self, uri: str, cancel: threading.Event | None = None) -> BatchResult:
        """Process every record of one container, in order.

        Raises:
            StorageUnavailable: If the container cannot be opened.
        """
        result = BatchResult(containers=[uri])
        with self._reader.open(uri) as records:
            position = 0
            try:
                while True:
                    if cancel is not None and cancel.is_set():
                        logger.warning("Cancelled while reading %s after %d record(s)", uri, position)
                        result.cancelled = True
                        break
                    item = next(records, None)
                    if item is None:
                        break
                    self._handle(item, uri, position, result)
                    position += 1
            except ContainerFormatError as exc:
                logger.error("Container %s is corrupt after %d record(s): %s", uri, position, exc)
                result.failures.append(LocationFailure(location=uri, detail=str(exc)))
        return result

    # -- Internal -----------------------------------------------------------

    def _process_containers(self, containers: list[str], cancel: threading.Event | None) -> BatchResult:
        merged = BatchResult()
        workers = min(self._settings.max_concurrent, len(containers))
        if workers <= 1:
            for uri in containers:
                merged.merge(self._process_one(uri, cancel))
            return merged

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="faceseq-container") as executor:
            futures = [executor.submit(self._process_one, uri, cancel) for uri in containers]
            for future in futures:
                merged.merge(future.result())
        return merged

    def _process_one(self, uri: str, cancel: threading.Event | None) -> BatchResult:
        if cancel is not None and cancel.is_set():
            return BatchResult(cancelled=True)
        try:
            return self.process_container(uri, cancel)
        except StorageUnavailable as exc:
            logger.error("Cannot open container %s: %s", uri, exc)
            return BatchResult(failures=[LocationFailure(location=uri, detail=str(exc))])

    def _handle(
        self,
        item: ContainerRecord | MalformedRecord,
        uri: str,
        position: int,
        result: BatchResult,
    ) -> None:
        if isinstance(item, MalformedRecord):
            self._skip(result, uri, position, item.key, item.reason, item.detail)
            return

        tag = classify(item.key)
        try:
            decoder = self._decoders.get(tag)
            if decoder is None:
                raise UnsupportedFormat(f"unsupported image format: {item.key}")
            raster = decoder.decode(item.payload)
            faces = self._detect(raster)
        except UnsupportedFormat as exc:
            self._skip(result, uri, position, item.key, SkipReason.UNSUPPORTED_FORMAT, str(exc))
        except DecodeError as exc:
            self._skip(result, uri, position, item.key, SkipReason.DECODE_ERROR, str(exc))
        except DetectionFailure as exc:
            self._skip(result, uri, position, item.key, SkipReason.DETECTION_FAILURE, str(exc))
        else:
            logger.info("hostname=%s filename=%s faces=%d", self._hostname, item.key, faces)
            result.add_outcome(
                DetectionOutcome(source_key=item.key, face_count=faces, container=uri, position=position)
            )

    def _detect(self, raster: Raster) -> int:
        try:
            count = self._detector.detect(raster)
        except Exception as exc:
            raise DetectionFailure(f"detector raised {type(exc).__name__}: {exc}") from exc
        try:
            faces = operator.index(count)
        except TypeError:
            raise DetectionFailure(f"detector returned a non-integer count {count!r}") from None
        if faces < 0:
            raise DetectionFailure(f"detector returned a negative count {faces}")
        return faces

    @staticmethod
    def _skip(
        result: BatchResult,
        uri: str,
        position: int,
        key: str,
        reason: SkipReason,
        detail: str,
    ) -> None:
        logger.warning("Skipping %s in %s (%s): %s", key, uri, reason, detail)
        result.add_skip(
            SkippedRecord(source_key=key, reason=reason, detail=detail, container=uri, position=position)
        )
