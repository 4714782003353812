"""
Pytest configuration and fixtures
"""
import os
import tempfile

import cv2
import numpy as np
import pytest

# Set DATA_ROOT BEFORE importing config so preview files land in a temp dir.
os.environ.setdefault("DATA_ROOT", tempfile.mkdtemp(prefix="authentiscan-test-"))


def _encode(ext: str, img: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(ext, img)
    assert ok, f"could not encode test image as {ext}"
    return buf.tobytes()


@pytest.fixture
def jpeg_bytes():
    """640x480 JPEG with a gradient so it compresses like a photo"""
    ramp = np.tile(np.arange(640, dtype=np.uint8)[None, :], (480, 1))
    img = np.dstack([ramp, ramp[::-1], np.full_like(ramp, 90)])
    return _encode(".jpg", img)


@pytest.fixture
def translucent_png_bytes():
    img = np.full((500, 500, 4), 255, dtype=np.uint8)
    img[10, 10, 3] = 128
    return _encode(".png", img)


@pytest.fixture
def opaque_png_bytes():
    img = np.full((400, 300, 4), 255, dtype=np.uint8)
    return _encode(".png", img)


@pytest.fixture
def opaque_png16_bytes():
    img = np.full((64, 64, 4), 65535, dtype=np.uint16)
    return _encode(".png", img)


@pytest.fixture
def write_file(tmp_path):
    """Write bytes to tmp_path/name and return the path as a string"""
    def _write(name: str, data: bytes) -> str:
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)
    return _write
