"""
Tests for the image metadata probe and descriptor builders
"""
import asyncio

import numpy as np
import pytest

import probe
from detection import (
    AudioDescriptor,
    DecodeFailure,
    ImageDescriptor,
    InvalidInputError,
    ProbeUnavailable,
    UnexpectedFailure,
    VideoDescriptor,
)
from probe import describe, image_descriptor, probe_image


class TestProbeImage:
    def test_jpeg_dimensions_and_no_alpha(self, jpeg_bytes, write_file):
        path = write_file("photo.jpg", jpeg_bytes)
        meta = probe_image(path, len(jpeg_bytes))

        assert meta.error is None
        assert (meta.width, meta.height) == (640, 480)
        assert meta.aspect_ratio == pytest.approx(640 / 480)
        assert meta.file_size_mb == pytest.approx(len(jpeg_bytes) / 1048576)
        assert meta.has_transparency is False

    def test_translucent_png(self, translucent_png_bytes, write_file):
        path = write_file("logo.png", translucent_png_bytes)
        meta = probe_image(path, len(translucent_png_bytes))

        assert meta.error is None
        assert meta.has_transparency is True

    def test_opaque_png_with_alpha_plane(self, opaque_png_bytes, write_file):
        path = write_file("flat.png", opaque_png_bytes)
        meta = probe_image(path, len(opaque_png_bytes))

        assert (meta.width, meta.height) == (300, 400)
        assert meta.has_transparency is False

    def test_sixteen_bit_alpha_uses_dtype_max(self, opaque_png16_bytes, write_file):
        path = write_file("deep.png", opaque_png16_bytes)
        meta = probe_image(path, len(opaque_png16_bytes))

        assert meta.error is None
        assert meta.has_transparency is False

    def test_garbage_is_a_decode_failure(self, write_file):
        path = write_file("photo.jpg", b"definitely not an image")
        meta = probe_image(path, 23)

        assert isinstance(meta.error, DecodeFailure)
        assert str(meta.error) == "Failed to load image"
        with pytest.raises(DecodeFailure):
            image_descriptor(meta, "photo.jpg")

    def test_empty_file_is_a_decode_failure(self, write_file):
        path = write_file("empty.png", b"")
        assert isinstance(probe_image(path, 0).error, DecodeFailure)

    def test_missing_file_is_a_decode_failure(self, tmp_path):
        meta = probe_image(str(tmp_path / "gone.png"), 10)
        assert isinstance(meta.error, DecodeFailure)

    def test_uninspectable_buffer_keeps_dimensions(self, jpeg_bytes, write_file, monkeypatch):
        monkeypatch.setattr(probe.cv2, "imdecode", lambda buf, flags: np.zeros((2, 3, 4, 1), np.uint8))
        path = write_file("photo.jpg", jpeg_bytes)
        meta = probe_image(path, len(jpeg_bytes))

        assert isinstance(meta.error, ProbeUnavailable)
        assert (meta.width, meta.height) == (3, 2)
        with pytest.raises(ProbeUnavailable):
            asyncio.run(describe("image", path, "photo.jpg", "image/jpeg", len(jpeg_bytes)))

    def test_malformed_buffer_is_an_unexpected_failure(self, jpeg_bytes, write_file, monkeypatch):
        monkeypatch.setattr(probe.cv2, "imdecode", lambda buf, flags: np.zeros((5,), np.uint8))
        path = write_file("photo.jpg", jpeg_bytes)
        meta = probe_image(path, len(jpeg_bytes))

        assert isinstance(meta.error, UnexpectedFailure)
        assert str(meta.error) == "Error analyzing image"
        assert (meta.width, meta.height) == (0, 5)
        assert meta.file_size_mb == pytest.approx(len(jpeg_bytes) / 1048576)

    def test_transparency_scan_failure_falls_back_to_opaque(self, translucent_png_bytes, write_file, monkeypatch):
        def broken_scan(img):
            raise ValueError("cannot read alpha")

        monkeypatch.setattr(probe, "_has_transparency", broken_scan)
        path = write_file("logo.png", translucent_png_bytes)
        meta = probe_image(path, len(translucent_png_bytes))

        assert meta.error is None
        assert meta.has_transparency is False
        assert meta.width > 0


class TestDescribe:
    def test_image(self, jpeg_bytes, write_file):
        path = write_file("photo.jpg", jpeg_bytes)
        d = asyncio.run(describe("image", path, "photo.jpg", "image/jpeg", len(jpeg_bytes)))

        assert isinstance(d, ImageDescriptor)
        assert d.filename == "photo.jpg"
        assert d.width == 640

    def test_video_uses_reported_properties_only(self, tmp_path):
        # no file on disk: video is never decoded
        d = asyncio.run(describe("video", str(tmp_path / "x"), "clip.mov", "video/quicktime", 3 * 1048576))

        assert d == VideoDescriptor(file_size_mb=3.0, filename="clip.mov", mime_type="video/quicktime")

    def test_audio_missing_mime(self, tmp_path):
        d = asyncio.run(describe("audio", str(tmp_path / "x"), "a.ogg", None, 1048576))

        assert isinstance(d, AudioDescriptor)
        assert d.mime_type == ""

    def test_unknown_media_type(self, tmp_path):
        with pytest.raises(InvalidInputError):
            asyncio.run(describe("text", str(tmp_path / "x"), "a.txt", "text/plain", 10))

    def test_image_decode_failure_raises(self, write_file):
        path = write_file("bad.png", b"\x89PNG broken")
        with pytest.raises(DecodeFailure):
            asyncio.run(describe("image", path, "bad.png", "image/png", 11))
