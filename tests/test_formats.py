"""Tests for key-based format classification."""

from __future__ import annotations

import pytest

from faceseq.imaging.formats import FormatTag, classify


class TestClassify:
    @pytest.mark.parametrize(
        "key",
        ["a.png", "a.PNG", "photo.jpg", "photo.JPEG", "anim.gif", "IMG_0001.JpG", "frames/png/0001"],
    )
    def test_standard_raster(self, key: str) -> None:
        assert classify(key) is FormatTag.STANDARD_RASTER

    @pytest.mark.parametrize("key", ["img1.ppm", "FRAME.PPM", "dump_ppm_0007"])
    def test_ppm_raster(self, key: str) -> None:
        assert classify(key) is FormatTag.PPM_RASTER

    @pytest.mark.parametrize("key", ["img3.bmp", "scan.tiff", "README", "", "image.pgm"])
    def test_unsupported(self, key: str) -> None:
        assert classify(key) is FormatTag.UNSUPPORTED

    def test_standard_wins_over_ppm(self) -> None:
        assert classify("frame.ppm.png") is FormatTag.STANDARD_RASTER
        assert classify("ppm_export.jpg") is FormatTag.STANDARD_RASTER

    def test_case_invariant(self) -> None:
        assert classify("a.PNG") == classify("a.png")
        assert classify("B.Ppm") == classify("b.ppm")

    def test_deterministic(self) -> None:
        assert {classify("x.gif") for _ in range(10)} == {FormatTag.STANDARD_RASTER}
