"""Cascade manager: resolve, load, cache, and evict OpenCV Haar cascades.

Handles locating the cascade XML files shipped with OpenCV, creating and
caching ``cv2.CascadeClassifier`` instances, and TTL-based eviction.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import cv2

if TYPE_CHECKING:
    from faceseq.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class CascadeProvider(Protocol):
    """Protocol for cascade lifecycle management."""

    def get_classifier(self, name: str) -> cv2.CascadeClassifier:
        """Return a cached or newly loaded classifier."""
        ...

    def get_loaded(self) -> list[str]:
        """Return names of currently loaded cascades."""
        ...

    def unload_idle(self) -> None:
        """Unload cascades that have exceeded their TTL."""
        ...

    def shutdown(self) -> None:
        """Clear all cached classifiers."""
        ...


# ---------------------------------------------------------------------------
# Cascade registry
# ---------------------------------------------------------------------------


class DetectionTarget(StrEnum):
    FACE = "face"
    EYE = "eye"


@dataclass(frozen=True)
class CascadeSpec:
    """Static metadata for a single Haar cascade."""

    name: str
    filename: str
    target: DetectionTarget


CASCADE_REGISTRY: dict[str, CascadeSpec] = {
    "haarcascade_frontalface_alt": CascadeSpec(
        name="haarcascade_frontalface_alt",
        filename="haarcascade_frontalface_alt.xml",
        target=DetectionTarget.FACE,
    ),
    "haarcascade_frontalface_alt2": CascadeSpec(
        name="haarcascade_frontalface_alt2",
        filename="haarcascade_frontalface_alt2.xml",
        target=DetectionTarget.FACE,
    ),
    "haarcascade_frontalface_default": CascadeSpec(
        name="haarcascade_frontalface_default",
        filename="haarcascade_frontalface_default.xml",
        target=DetectionTarget.FACE,
    ),
    "haarcascade_eye": CascadeSpec(
        name="haarcascade_eye",
        filename="haarcascade_eye.xml",
        target=DetectionTarget.EYE,
    ),
}


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass
class _CachedCascade:
    classifier: cv2.CascadeClassifier
    last_used: float


class CascadeManager:
    """Loads, caches, and evicts OpenCV cascade classifiers."""

    def __init__(self, settings: Settings, cascade_dir: Path | None = None) -> None:
        if not hasattr(cv2, "CascadeClassifier"):
            raise RuntimeError(f"OpenCV {cv2.__version__} does not provide Haar cascades; install opencv<5")
        self._settings = settings
        self._cascade_dir = cascade_dir or Path(cv2.data.haarcascades)
        self._lock = threading.Lock()
        self._cascades: dict[str, _CachedCascade] = {}

    # -- Public API ---------------------------------------------------------

    def cascade_path(self, name: str) -> Path:
        """Return the XML file backing cascade ``name``."""
        spec = self._get_spec(name)
        return self._cascade_dir / spec.filename

    def get_classifier(self, name: str) -> cv2.CascadeClassifier:
        """Return a cached classifier, loading it if needed."""
        with self._lock:
            cached = self._cascades.get(name)
            if cached is not None:
                cached.last_used = time.monotonic()
                return cached.classifier

        path = self.cascade_path(name)
        try:
            classifier = cv2.CascadeClassifier(str(path))
        except cv2.error as exc:
            raise RuntimeError(f"Failed to load cascade '{name}' from {path}: {exc}") from exc
        if classifier.empty():
            raise RuntimeError(f"Failed to load cascade '{name}' from {path}")

        with self._lock:
            # Double-check: another thread may have loaded it meanwhile.
            existing = self._cascades.get(name)
            if existing is not None:
                existing.last_used = time.monotonic()
                return existing.classifier
            self._cascades[name] = _CachedCascade(
                classifier=classifier,
                last_used=time.monotonic(),
            )
            logger.info("Loaded cascade %s", name)
            return classifier

    def get_loaded(self) -> list[str]:
        """Return names of loaded cascades."""
        with self._lock:
            return list(self._cascades.keys())

    def unload_idle(self) -> None:
        """Remove classifiers that have exceeded the configured TTL."""
        ttl = self._settings.cascade_ttl
        if ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [name for name, cached in self._cascades.items() if (now - cached.last_used) > ttl]
            for name in expired:
                del self._cascades[name]
                logger.info("Evicted idle cascade %s", name)

    def shutdown(self) -> None:
        """Clear all cached classifiers."""
        with self._lock:
            self._cascades.clear()
            logger.info("All cascades cleared")

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _get_spec(name: str) -> CascadeSpec:
        try:
            return CASCADE_REGISTRY[name]
        except KeyError:
            raise KeyError(f"Unknown cascade: {name}") from None
