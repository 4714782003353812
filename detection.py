# ============================================================
#  AuthentiScan — detection.py  (weighted heuristic scorer)
#
#  Turns a media descriptor into a list of weighted pass/fail
#  checks, then into a percentage and a binary verdict.
#
#  The check names are the labels the tool has always shown.
#  None of them inspects the media itself: every check reads
#  size, dimensions, filename or the declared MIME type only.
# ============================================================

import logging
import math
import re
from dataclasses import dataclass
from typing import List, Tuple, Union

log = logging.getLogger("authentiscan.detection")

MEDIA_TYPES = ("image", "video", "audio")

BYTES_PER_MB = 1024 * 1024

# Verdict threshold: below this confidence the file is flagged.
DEEPFAKE_THRESHOLD = 70

VERDICT_DEEPFAKE  = "Potential Deepfake Detected"
VERDICT_AUTHENTIC = "Content Appears Authentic"


# ─────────────────────────────────────────────
#  Errors
# ─────────────────────────────────────────────

class AnalysisError(Exception):
    """Base for every failure surfaced to the user as a single message."""


class DecodeFailure(AnalysisError):
    """The image bytes could not be decoded."""


class InvalidInputError(AnalysisError, ValueError):
    """Zero size, zero dimensions, or a descriptor of the wrong kind."""


class ProbeUnavailable(AnalysisError):
    """The decoded pixel buffer could not be inspected."""


class UnexpectedFailure(AnalysisError):
    """Catch-all recorded by the metadata probe."""


# ─────────────────────────────────────────────
#  Descriptors
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class ImageDescriptor:
    width: int
    height: int
    file_size_mb: float
    aspect_ratio: float
    has_transparency: bool
    filename: str

    media_type = "image"


@dataclass(frozen=True)
class VideoDescriptor:
    file_size_mb: float
    filename: str
    mime_type: str

    media_type = "video"


@dataclass(frozen=True)
class AudioDescriptor:
    file_size_mb: float
    filename: str
    mime_type: str

    media_type = "audio"


MediaDescriptor = Union[ImageDescriptor, VideoDescriptor, AudioDescriptor]


@dataclass(frozen=True)
class Check:
    name: str
    passed: bool
    weight: int

    def to_dict(self) -> dict:
        return {"name": self.name, "passed": self.passed, "weight": self.weight}


@dataclass(frozen=True)
class AnalysisResult:
    confidence: int
    is_deepfake: bool
    details: Tuple[str, ...]
    score: float
    checks: Tuple[Check, ...] = ()

    @property
    def verdict(self) -> str:
        return VERDICT_DEEPFAKE if self.is_deepfake else VERDICT_AUTHENTIC

    def to_dict(self) -> dict:
        """JSON shape the page and API clients consume."""
        return {
            "confidence":  self.confidence,
            "isDeepfake":  self.is_deepfake,
            "verdict":     self.verdict,
            "details":     list(self.details),
            "technicalDetails": {
                "score":  self.score,
                "checks": [c.to_dict() for c in self.checks],
            },
        }


# ─────────────────────────────────────────────
#  Check tables
#  (name, weight) per media type, in display order.
#  Each table sums to 100.
# ─────────────────────────────────────────────

IMAGE_CHECKS = (
    ("Aspect Ratio Analysis",     15),
    ("File Size Verification",    20),
    ("Image Dimensions Check",    15),
    ("Compression Analysis",      25),
    ("Transparency Check",        10),
    ("Filename Pattern Analysis", 15),
)

VIDEO_CHECKS = (
    ("Video File Size Analysis",  20),
    ("Video Format Verification", 15),
    ("Bitrate Analysis",          25),
    ("Temporal Coherence",        20),
    ("Audio Stream Presence",     20),
)

AUDIO_CHECKS = (
    ("Audio File Size",    25),
    ("Audio Format",       25),
    ("Bitrate Check",      25),
    ("Format Consistency", 25),
)

_TABLES = {
    "image": IMAGE_CHECKS,
    "video": VIDEO_CHECKS,
    "audio": AUDIO_CHECKS,
}

# 1:1, 4:3, 3:2, 16:9
COMMON_RATIOS = (1, 1.33, 1.5, 1.78)
RATIO_TOLERANCE = 0.05

MIN_DIMENSION = 400
MAX_DIMENSION = 8000

_IMAGE_NAME = re.compile(r"[A-Za-z0-9_-]+\.(jpg|jpeg|png|webp)", re.IGNORECASE)
_VIDEO_EXT  = re.compile(r"\.(mp4|webm|mov)\Z", re.IGNORECASE)
_AUDIO_EXT  = re.compile(r"\.(mp3|wav|ogg)\Z", re.IGNORECASE)

# Bitrate heuristic assumes a one-minute clip.
_ASSUMED_SECONDS = 60


def check_table(media_type: str) -> Tuple[Tuple[str, int], ...]:
    """Static (name, weight) pairs for a media type."""
    try:
        return _TABLES[media_type]
    except KeyError:
        raise InvalidInputError(f"Unsupported media type: {media_type}") from None


def _build(table, outcomes) -> List[Check]:
    return [Check(name=name, passed=bool(ok), weight=weight)
            for (name, weight), ok in zip(table, outcomes)]


# ─────────────────────────────────────────────
#  Per-type rules
# ─────────────────────────────────────────────

def _image_checks(d: ImageDescriptor) -> List[Check]:
    pixels = d.width * d.height

    expected_min_mb = pixels / BYTES_PER_MB
    bytes_per_pixel = d.file_size_mb * BYTES_PER_MB / pixels

    outcomes = (
        any(abs(d.aspect_ratio - r) < RATIO_TOLERANCE for r in COMMON_RATIOS),
        d.file_size_mb >= expected_min_mb * 0.1,
        (MIN_DIMENSION <= d.width <= MAX_DIMENSION
         and MIN_DIMENSION <= d.height <= MAX_DIMENSION),
        0.1 < bytes_per_pixel < 2,
        not d.has_transparency,
        _IMAGE_NAME.fullmatch(d.filename or "") is not None,
    )
    return _build(IMAGE_CHECKS, outcomes)


def _video_checks(d: VideoDescriptor) -> List[Check]:
    size = d.file_size_mb
    outcomes = (
        size >= 1,
        _VIDEO_EXT.search(d.filename or "") is not None,
        (size * 8) / _ASSUMED_SECONDS > 0.5,
        size > 2,
        "video" in (d.mime_type or ""),
    )
    return _build(VIDEO_CHECKS, outcomes)


def _audio_checks(d: AudioDescriptor) -> List[Check]:
    size = d.file_size_mb
    outcomes = (
        size >= 0.5,
        _AUDIO_EXT.search(d.filename or "") is not None,
        size > 1,
        "audio" in (d.mime_type or ""),
    )
    return _build(AUDIO_CHECKS, outcomes)


_RULES = {
    "image": (ImageDescriptor, _image_checks),
    "video": (VideoDescriptor, _video_checks),
    "audio": (AudioDescriptor, _audio_checks),
}


def _validate(media_type: str, descriptor) -> None:
    if media_type not in _RULES:
        raise InvalidInputError(f"Unsupported media type: {media_type}")

    expected, _ = _RULES[media_type]
    if not isinstance(descriptor, expected):
        raise InvalidInputError(
            f"Descriptor {type(descriptor).__name__} does not describe {media_type}"
        )

    if descriptor.file_size_mb <= 0:
        raise InvalidInputError(f"Invalid {media_type} file")

    if media_type == "image" and (descriptor.width <= 0 or descriptor.height <= 0):
        raise InvalidInputError("Invalid image file")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ─────────────────────────────────────────────
#  Main scoring function
# ─────────────────────────────────────────────

def score(media_type: str, descriptor: MediaDescriptor) -> AnalysisResult:
    """
    Score a descriptor against the check table for its media type.

    Raises InvalidInputError for zero size, zero image dimensions or a
    descriptor that does not match media_type. No checks are built in
    that case.
    """
    _validate(media_type, descriptor)

    _, rules = _RULES[media_type]
    checks = rules(descriptor)

    total_weight  = sum(c.weight for c in checks)
    passed_weight = sum(c.weight for c in checks if c.passed)

    if total_weight == 0:
        raise AnalysisError("Analysis failed: No valid checks performed")

    final_score = passed_weight / total_weight * 100
    confidence  = round_half_up(final_score)
    is_deepfake = confidence < DEEPFAKE_THRESHOLD

    passed_count = sum(1 for c in checks if c.passed)
    details = [
        f"Overall authenticity score: {final_score:.1f}%",
        f"{passed_count} out of {len(checks)} security checks passed",
    ]
    for c in checks:
        mark = "✓ Passed" if c.passed else "✗ Failed"
        details.append(f"{c.name}: {mark} (Weight: {c.weight}%)")

    log.info(
        "Scored %s %s: %d/%d checks, confidence=%d deepfake=%s",
        media_type, descriptor.filename, passed_count, len(checks),
        confidence, is_deepfake,
    )

    return AnalysisResult(
        confidence=confidence,
        is_deepfake=is_deepfake,
        details=tuple(details),
        score=final_score,
        checks=tuple(checks),
    )
