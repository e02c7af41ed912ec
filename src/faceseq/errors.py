"""Exception hierarchy shared by the ingestion pipeline."""

from __future__ import annotations


class FaceSeqError(Exception):
    """Base class for all FaceSeq errors."""


class StorageUnavailable(FaceSeqError):
    """A container could not be opened: unknown scheme, unreachable store, or missing file."""


class ContainerFormatError(StorageUnavailable):
    """Container bytes are not a readable SequenceFile, or its record stream broke mid-way."""


class DecodeError(FaceSeqError):
    """A record payload is not valid for its declared or inferred image format."""


class UnsupportedFormat(FaceSeqError):
    """A record key matches no known image format."""


class DetectionFailure(FaceSeqError):
    """The detection collaborator raised or returned an invalid count."""
