"""Tests for the Haar cascade detector."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest
from PIL import Image

from faceseq.batch.driver import BatchDriver
from faceseq.config import Settings
from faceseq.imaging.raster import Raster
from faceseq.ingest.sequence_file import SequenceFileWriter
from faceseq.ml.cascade_manager import CascadeManager, DetectionTarget
from faceseq.ml.detector import HaarCascadeDetector

if TYPE_CHECKING:
    from pathlib import Path


def _provider_with_boxes(boxes: np.ndarray | tuple[()]) -> MagicMock:
    classifier = MagicMock()
    classifier.detectMultiScale.return_value = boxes
    provider = MagicMock()
    provider.get_classifier.return_value = classifier
    return provider


def _blank(width: int = 64, height: int = 48) -> Raster:
    return Raster(pixels=np.full((height, width, 3), 200, dtype=np.uint8))


class TestHaarCascadeDetector:
    def test_blank_image_has_no_faces(self) -> None:
        settings = Settings()
        detector = HaarCascadeDetector(settings, CascadeManager(settings))
        assert detector.detect(_blank()) == 0

    def test_blank_image_has_no_eyes(self) -> None:
        settings = Settings()
        detector = HaarCascadeDetector(settings, CascadeManager(settings), target=DetectionTarget.EYE)
        assert detector.detect(_blank()) == 0

    def test_counts_boxes(self) -> None:
        boxes = np.array([[1, 2, 10, 10], [20, 4, 12, 12]], dtype=np.int32)
        provider = _provider_with_boxes(boxes)
        detector = HaarCascadeDetector(Settings(), provider)

        assert detector.detect(_blank()) == 2

    def test_no_detections_returns_zero(self) -> None:
        detector = HaarCascadeDetector(Settings(), _provider_with_boxes(()))
        assert detector.detect(_blank()) == 0

    def test_face_target_uses_face_cascade(self) -> None:
        provider = _provider_with_boxes(())
        detector = HaarCascadeDetector(Settings(face_cascade="haarcascade_frontalface_alt2"), provider)

        detector.detect(_blank())

        assert detector.target is DetectionTarget.FACE
        provider.get_classifier.assert_called_with("haarcascade_frontalface_alt2")

    def test_eye_target_from_settings(self) -> None:
        provider = _provider_with_boxes(())
        detector = HaarCascadeDetector(Settings(detector_target="eye"), provider)

        detector.detect(_blank())

        assert detector.target is DetectionTarget.EYE
        assert detector.cascade_name == "haarcascade_eye"
        provider.get_classifier.assert_called_with("haarcascade_eye")

    def test_explicit_target_overrides_settings(self) -> None:
        detector = HaarCascadeDetector(Settings(detector_target="eye"), _provider_with_boxes(()), DetectionTarget.FACE)
        assert detector.cascade_name == "haarcascade_frontalface_alt"

    def test_detect_multiscale_arguments(self) -> None:
        provider = _provider_with_boxes(())
        detector = HaarCascadeDetector(Settings(scale_factor=1.2, min_neighbors=5), provider)

        detector.detect(_blank(width=30, height=20))

        classifier = provider.get_classifier.return_value
        (gray,), kwargs = classifier.detectMultiScale.call_args
        assert gray.shape == (20, 30)
        assert gray.dtype == np.uint8
        assert kwargs == {
            "scaleFactor": 1.2,
            "minNeighbors": 5,
            "flags": cv2.CASCADE_DO_CANNY_PRUNING,
        }

    def test_cascade_loaded_on_construction(self) -> None:
        provider = _provider_with_boxes(())

        HaarCascadeDetector(Settings(), provider)

        provider.get_classifier.assert_called_once_with("haarcascade_frontalface_alt")

    def test_unknown_cascade_fails_on_construction(self) -> None:
        settings = Settings(face_cascade="haarcascade_bogus")
        with pytest.raises(KeyError, match="Unknown cascade"):
            HaarCascadeDetector(settings, CascadeManager(settings))

    def test_missing_cascade_file_fails_on_construction(self, tmp_path: Path) -> None:
        settings = Settings(detector_target="eye")
        with pytest.raises(RuntimeError, match="Failed to load cascade"):
            HaarCascadeDetector(settings, CascadeManager(settings, cascade_dir=tmp_path))

    def test_blank_png_record_counts_zero_end_to_end(self, tmp_path: Path) -> None:
        buffer = io.BytesIO()
        Image.new("RGB", (32, 32), (255, 255, 255)).save(buffer, format="PNG")
        container = tmp_path / "blank.seq"
        with container.open("wb") as stream, SequenceFileWriter(stream) as writer:
            writer.append("blank.png", buffer.getvalue())
        settings = Settings(max_concurrent=1)
        detector = HaarCascadeDetector(settings, CascadeManager(settings))

        result = BatchDriver(settings, detector).process_container(str(container))

        assert result.skipped == []
        assert [(outcome.source_key, outcome.face_count) for outcome in result.outcomes] == [("blank.png", 0)]
