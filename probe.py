# ============================================================
#  AuthentiScan — probe.py
#
#  Metadata probe for the selected file.
#
#    image  → decode with OpenCV, read native dimensions and
#             scan the alpha channel for transparency
#    video  → no decode; reported size, filename, MIME only
#    audio  → no decode; reported size, filename, MIME only
#
#  The image probe never raises for a bad file: it records the
#  failure on the returned metadata and describe() raises it.
# ============================================================

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from detection import (
    BYTES_PER_MB,
    AnalysisError,
    AudioDescriptor,
    DecodeFailure,
    ImageDescriptor,
    InvalidInputError,
    MediaDescriptor,
    ProbeUnavailable,
    UnexpectedFailure,
    VideoDescriptor,
)

log = logging.getLogger("authentiscan.probe")


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    aspect_ratio: float
    file_size_mb: float
    has_transparency: bool
    error: Optional[AnalysisError] = None


def _failed(error: AnalysisError) -> ImageMetadata:
    return ImageMetadata(
        width=0, height=0, aspect_ratio=0.0, file_size_mb=0.0,
        has_transparency=False, error=error,
    )


def _alpha_max(dtype: np.dtype) -> float:
    if np.issubdtype(dtype, np.integer):
        return float(np.iinfo(dtype).max)
    return 1.0


def _has_transparency(img: np.ndarray) -> bool:
    """
    True when the image carries an alpha channel and any pixel is
    less than fully opaque. Grey, BGR and palette-less JPEGs have no
    alpha plane and are opaque by definition.
    """
    if img.ndim != 3 or img.shape[2] != 4:
        return False
    alpha = img[:, :, 3]
    return bool((alpha < _alpha_max(img.dtype)).any())


def probe_image(path: str, size_bytes: int) -> ImageMetadata:
    """
    Decode the image at path and derive width, height, aspect ratio and
    a best-effort transparency flag.
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        log.error("probe: cannot read %s: %s", path, e)
        return _failed(DecodeFailure("Failed to load image"))

    buf = np.frombuffer(raw, dtype=np.uint8)
    try:
        img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED) if buf.size else None
    except cv2.error as e:
        log.warning("probe: decoder rejected %s: %s", path, e)
        img = None
    if img is None:
        log.warning("probe: could not decode %s", path)
        return _failed(DecodeFailure("Failed to load image"))

    size_mb = size_bytes / BYTES_PER_MB

    try:
        height, width = int(img.shape[0]), int(img.shape[1])
        ratio = width / height if height else 0.0

        if img.ndim not in (2, 3):
            return ImageMetadata(
                width=width, height=height, aspect_ratio=ratio,
                file_size_mb=size_mb, has_transparency=False,
                error=ProbeUnavailable("Pixel buffer not available"),
            )

        try:
            transparent = _has_transparency(img)
        except (cv2.error, ValueError, TypeError) as e:
            log.warning("Transparency check failed for %s: %s", path, e)
            transparent = False

    except (IndexError, ValueError, TypeError):
        log.exception("probe: error analyzing %s", path)
        shape = getattr(img, "shape", ())
        width  = int(shape[1]) if len(shape) > 1 else 0
        height = int(shape[0]) if len(shape) > 0 else 0
        return ImageMetadata(
            width=width, height=height,
            aspect_ratio=width / height if height else 0.0,
            file_size_mb=size_mb, has_transparency=False,
            error=UnexpectedFailure("Error analyzing image"),
        )

    log.info(
        "probe: %s → %dx%d ratio=%.3f size=%.2fMB alpha=%s",
        path, width, height, ratio, size_mb, transparent,
    )
    return ImageMetadata(
        width=width,
        height=height,
        aspect_ratio=ratio,
        file_size_mb=size_mb,
        has_transparency=transparent,
    )


async def probe_image_async(path: str, size_bytes: int) -> ImageMetadata:
    """Run the decode probe off the event loop."""
    return await asyncio.to_thread(probe_image, path, size_bytes)


def image_descriptor(meta: ImageMetadata, filename: str) -> ImageDescriptor:
    if meta.error is not None:
        raise meta.error
    return ImageDescriptor(
        width=meta.width,
        height=meta.height,
        file_size_mb=meta.file_size_mb,
        aspect_ratio=meta.aspect_ratio,
        has_transparency=meta.has_transparency,
        filename=filename,
    )


async def describe(
    media_type: str,
    path: str,
    filename: str,
    mime_type: str,
    size_bytes: int,
) -> MediaDescriptor:
    """Build the descriptor the scorer consumes for one selected file."""
    if media_type == "image":
        meta = await probe_image_async(path, size_bytes)
        return image_descriptor(meta, filename)

    size_mb = size_bytes / BYTES_PER_MB
    if media_type == "video":
        return VideoDescriptor(file_size_mb=size_mb, filename=filename, mime_type=mime_type or "")
    if media_type == "audio":
        return AudioDescriptor(file_size_mb=size_mb, filename=filename, mime_type=mime_type or "")

    raise InvalidInputError(f"Unsupported media type: {media_type}")
