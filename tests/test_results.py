"""Tests for batch result aggregation."""

from __future__ import annotations

from faceseq.batch.results import (
    BatchResult,
    DetectionOutcome,
    LocationFailure,
    SkippedRecord,
    SkipReason,
)


def _outcome(key: str, faces: int, container: str, position: int) -> DetectionOutcome:
    return DetectionOutcome(source_key=key, face_count=faces, container=container, position=position)


def _skip(key: str, container: str, position: int) -> SkippedRecord:
    return SkippedRecord(
        source_key=key,
        reason=SkipReason.DECODE_ERROR,
        detail="bad bytes",
        container=container,
        position=position,
    )


class TestBatchResult:
    def test_empty(self) -> None:
        result = BatchResult()
        assert result.record_count == 0
        assert result.total_faces == 0
        assert list(result.entries()) == []
        assert result.exit_status() == 0

    def test_counts(self) -> None:
        result = BatchResult(
            containers=["a"],
            outcomes=[_outcome("x", 2, "a", 0), _outcome("z", 3, "a", 2)],
            skipped=[_skip("y", "a", 1)],
        )
        assert result.skip_count == 1
        assert result.record_count == 3
        assert result.total_faces == 5

    def test_entries_interleave_by_read_order(self) -> None:
        first = _outcome("x", 1, "a", 0)
        second = _skip("y", "a", 1)
        third = _outcome("z", 0, "b", 0)
        result = BatchResult(containers=["a", "b"], outcomes=[first, third], skipped=[second])

        assert list(result.entries()) == [first, second, third]

    def test_merge_appends_in_order(self) -> None:
        left = BatchResult(containers=["b"], outcomes=[_outcome("b0", 1, "b", 0)])
        right = BatchResult(
            containers=["a"],
            outcomes=[_outcome("a0", 1, "a", 0)],
            failures=[LocationFailure(location="c", detail="gone")],
            cancelled=True,
        )

        left.merge(right)

        assert left.containers == ["b", "a"]
        assert [entry.source_key for entry in left.entries()] == ["b0", "a0"]
        assert left.failures == [LocationFailure(location="c", detail="gone")]
        assert left.cancelled is True

    def test_merge_same_container_twice_keeps_groups(self) -> None:
        merged = BatchResult()
        for _ in range(2):
            run = BatchResult(containers=["a"])
            run.add_outcome(_outcome("x", 1, "a", 0))
            run.add_skip(_skip("y", "a", 1))
            merged.merge(run)

        assert merged.containers == ["a", "a"]
        assert [entry.source_key for entry in merged.entries()] == ["x", "y", "x", "y"]
        assert merged.record_count == 4

    def test_exit_status_is_total_faces(self) -> None:
        result = BatchResult(containers=["a"], outcomes=[_outcome("x", 4, "a", 0)])
        assert result.exit_status() == 4

    def test_exit_status_failure_without_records(self) -> None:
        result = BatchResult(failures=[LocationFailure(location="hdfs://nn/x.seq", detail="unreachable")])
        assert result.exit_status() == -1

    def test_exit_status_failure_with_records(self) -> None:
        result = BatchResult(
            containers=["a"],
            skipped=[_skip("y", "a", 0)],
            failures=[LocationFailure(location="b", detail="unreachable")],
        )
        assert result.exit_status() == 0
