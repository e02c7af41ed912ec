"""Object detection collaborators.

Implementations: OpenCV Haar cascades for frontal faces and eyes.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol

import cv2

from faceseq.ml.cascade_manager import DetectionTarget

if TYPE_CHECKING:
    from faceseq.config import Settings
    from faceseq.imaging.raster import Raster
    from faceseq.ml.cascade_manager import CascadeProvider

logger = logging.getLogger(__name__)


class ObjectDetector(Protocol):
    """Protocol for detectors that count objects in a raster."""

    def detect(self, raster: Raster) -> int:
        """Count objects of interest in ``raster``.

        Args:
            raster: Decoded RGB image.

        Returns:
            Non-negative number of detected objects.
        """
        ...


class HaarCascadeDetector:
    """Counts faces or eyes with an OpenCV Haar cascade.

    The cascade is loaded on construction, so an unknown cascade name or an
    unreadable cascade file fails at startup rather than on every record.

    Raises:
        KeyError: If the configured cascade name is not registered.
        RuntimeError: If the cascade file cannot be loaded.
    """

    def __init__(
        self,
        settings: Settings,
        cascades: CascadeProvider,
        target: DetectionTarget | None = None,
    ) -> None:
        self._settings = settings
        self._cascades = cascades
        self.target = DetectionTarget(target or settings.detector_target)
        self.cascade_name = settings.eye_cascade if self.target is DetectionTarget.EYE else settings.face_cascade
        cascades.get_classifier(self.cascade_name)
        # CascadeClassifier.detectMultiScale is not safe to share across threads.
        self._lock = threading.Lock()

    def detect(self, raster: Raster) -> int:
        gray = cv2.cvtColor(raster.pixels, cv2.COLOR_RGB2GRAY)
        classifier = self._cascades.get_classifier(self.cascade_name)
        with self._lock:
            boxes = classifier.detectMultiScale(
                gray,
                scaleFactor=self._settings.scale_factor,
                minNeighbors=self._settings.min_neighbors,
                flags=cv2.CASCADE_DO_CANNY_PRUNING,
            )

        if logger.isEnabledFor(logging.DEBUG):
            for x, y, w, h in boxes:
                logger.debug("x=%s y=%s x+w=%s y+h=%s", x, y, x + w, y + h)
            logger.debug(
                "image width=%s height=%s num of identified %s=%s",
                raster.width,
                raster.height,
                self.target,
                len(boxes),
            )
        return len(boxes)
