"""Per-record outcomes and the aggregated batch result."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class SkipReason(StrEnum):
    EMPTY_PAYLOAD = "empty_payload"
    INVALID_KEY = "invalid_key"
    UNSUPPORTED_FORMAT = "unsupported_format"
    DECODE_ERROR = "decode_error"
    DETECTION_FAILURE = "detection_failure"


@dataclass(frozen=True)
class DetectionOutcome:
    """A successfully processed record.

    ``position`` is the zero-based index of the record within its container.
    """

    source_key: str
    face_count: int
    container: str
    position: int


@dataclass(frozen=True)
class SkippedRecord:
    """A record that produced no outcome, with the reason it was skipped."""

    source_key: str
    reason: SkipReason
    detail: str
    container: str
    position: int


@dataclass(frozen=True)
class LocationFailure:
    """A location or container that could not be read."""

    location: str
    detail: str


@dataclass
class BatchResult:
    """Ordered outcomes, skips and fatal location failures of one batch run.

    Records added through :meth:`add_outcome` and :meth:`add_skip` keep the
    order they were read in, so a container listed twice yields its entries
    twice rather than interleaved.
    """

    containers: list[str] = field(default_factory=list)
    outcomes: list[DetectionOutcome] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)
    failures: list[LocationFailure] = field(default_factory=list)
    cancelled: bool = False
    _read_order: list[DetectionOutcome | SkippedRecord] = field(
        default_factory=list, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        rank: dict[str, int] = {}
        for index, container in enumerate(self.containers):
            rank.setdefault(container, index)
        self._read_order = sorted(
            [*self.outcomes, *self.skipped],
            key=lambda entry: (rank.get(entry.container, len(rank)), entry.position),
        )

    @property
    def skip_count(self) -> int:
        return len(self.skipped)

    @property
    def record_count(self) -> int:
        """Number of records seen: outcomes plus skips."""
        return len(self.outcomes) + len(self.skipped)

    @property
    def total_faces(self) -> int:
        return sum(outcome.face_count for outcome in self.outcomes)

    def add_outcome(self, outcome: DetectionOutcome) -> None:
        self.outcomes.append(outcome)
        self._read_order.append(outcome)

    def add_skip(self, skip: SkippedRecord) -> None:
        self.skipped.append(skip)
        self._read_order.append(skip)

    def entries(self) -> Iterator[DetectionOutcome | SkippedRecord]:
        """Yield outcomes and skips interleaved in the order their records were read."""
        yield from self._read_order

    def merge(self, other: BatchResult) -> None:
        """Append ``other`` after the entries already held."""
        self.containers.extend(other.containers)
        self.outcomes.extend(other.outcomes)
        self.skipped.extend(other.skipped)
        self._read_order.extend(other._read_order)
        self.failures.extend(other.failures)
        self.cancelled = self.cancelled or other.cancelled

    def exit_status(self) -> int:
        """Total objects detected, or -1 when locations failed and nothing was processed."""
        if self.failures and self.record_count == 0:
            return -1
        return self.total_faces

