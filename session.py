# ============================================================
#  AuthentiScan — session.py
#
#  Per-visitor analysis state.
#
#    idle → file_selected → analyzing → resulted | errored
#                 ↑                                   │
#                 └──────── new selection ────────────┘
#
#  Each selection owns one preview handle (a temp copy of the
#  upload) that is released exactly once: when superseded, on
#  reset, or at shutdown. Each selection also gets a token; an
#  analysis whose token was cancelled while the image probe was
#  running is discarded instead of landing in the session.
# ============================================================

import logging
import os
import time
import uuid
from typing import Optional

from config import TMP_DIR
from detection import AnalysisError, AnalysisResult, InvalidInputError, score
from probe import describe

log = logging.getLogger("authentiscan.session")

IDLE          = "idle"
FILE_SELECTED = "file_selected"
ANALYZING     = "analyzing"
RESULTED      = "resulted"
ERRORED       = "errored"

# media type → (file picker filter, supported formats hint)
ACCEPT = {
    "image": ("image/*", "PNG, JPG, WEBP"),
    "video": ("video/*", "MP4, WEBM, MOV"),
    "audio": ("audio/*", "MP3, WAV, OGG"),
}


def accept_for(media_type: str) -> tuple:
    """Return (accept filter, formats hint) for the upload form."""
    if media_type not in ACCEPT:
        raise InvalidInputError(f"Unsupported media type: {media_type}")
    return ACCEPT[media_type]


class AnalysisBlocked(RuntimeError):
    """Analysis requested with no file, while busy, or with an error pending."""


class PreviewHandle:
    """Temporary on-disk copy of the selected file."""

    def __init__(self, path: str, filename: str, mime_type: str, size_bytes: int):
        self.path       = path
        self.filename   = filename
        self.mime_type  = mime_type or ""
        self.size_bytes = size_bytes
        self.released   = False

    @classmethod
    def allocate(cls, filename: str, mime_type: str) -> "PreviewHandle":
        """Reserve a fresh path under TMP_DIR; the caller writes the bytes."""
        path = os.path.join(TMP_DIR, f"{uuid.uuid4().hex}_{os.path.basename(filename)}")
        return cls(path, filename, mime_type, 0)

    def release(self) -> bool:
        """Remove the temp file. Returns False if already released."""
        if self.released:
            return False
        self.released = True
        if os.path.exists(self.path):
            os.remove(self.path)
        log.info("Released preview %s", self.path)
        return True

    def to_dict(self) -> dict:
        return {
            "filename":   self.filename,
            "mime_type":  self.mime_type,
            "size_bytes": self.size_bytes,
        }


class SelectionToken:
    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class AnalysisSession:
    def __init__(self, media_type: str = "image"):
        accept_for(media_type)
        self.media_type = media_type
        self.handle: Optional[PreviewHandle] = None
        self.result: Optional[AnalysisResult] = None
        self.error: Optional[str] = None
        self.notice: Optional[str] = None
        self.state = IDLE
        self.token = SelectionToken()
        self.last_seen = time.time()

    # ── transitions ──────────────────────────────────────────

    def _supersede(self) -> None:
        self.token.cancel()
        self.token = SelectionToken()
        self.result = None
        self.error = None
        self.notice = None

    def select_file(self, handle: PreviewHandle) -> None:
        if self.handle is not None and self.handle is not handle:
            self.handle.release()
        self._supersede()
        self.handle = handle
        self.state = FILE_SELECTED
        self.touch()
        log.info("Selected %s (%s, %d bytes)", handle.filename, handle.mime_type, handle.size_bytes)

    def set_media_type(self, media_type: str) -> None:
        accept_for(media_type)
        self.media_type = media_type
        self._supersede()
        self.state = FILE_SELECTED if self.handle is not None else IDLE
        self.touch()

    def reject(self, message: str) -> None:
        """Record why the last action was refused; the next accepted action clears it."""
        self.notice = message
        self.touch()
        log.info("Rejected action: %s", message)

    @property
    def can_analyze(self) -> bool:
        return (
            self.handle is not None
            and self.state != ANALYZING
            and self.error is None
        )

    async def analyze(self) -> Optional[AnalysisResult]:
        """
        Run one analysis of the current selection.

        Ends in RESULTED or ERRORED. Returns None (and leaves the session
        alone) when the selection changed while the probe was running.
        """
        if not self.can_analyze:
            raise AnalysisBlocked(self._blocked_reason())

        token, handle, media_type = self.token, self.handle, self.media_type
        self.state = ANALYZING
        self.error = None
        self.notice = None
        self.touch()

        result, error = None, None
        try:
            descriptor = await describe(
                media_type, handle.path, handle.filename,
                handle.mime_type, handle.size_bytes,
            )
            if not token.cancelled:
                result = score(media_type, descriptor)
        except AnalysisError as e:
            error = str(e)
        except Exception as e:
            log.exception("Analysis failed for %s", handle.filename)
            error = str(e) or "An unexpected error occurred"

        if token.cancelled:
            log.warning("Discarding stale analysis of %s", handle.filename)
            return None

        if error is not None:
            self.result = None
            self.error = error
            self.state = ERRORED
            log.info("Analysis of %s errored: %s", handle.filename, error)
            return None

        self.result = result
        self.state = RESULTED
        return result

    def reset(self) -> None:
        if self.handle is not None:
            self.handle.release()
            self.handle = None
        self._supersede()
        self.state = IDLE
        self.touch()

    close = reset

    # ── views ────────────────────────────────────────────────

    def _blocked_reason(self) -> str:
        if self.handle is None:
            return "No file selected"
        if self.state == ANALYZING:
            return "Analysis already in progress"
        return "Select a new file or media type to clear the error"

    def touch(self) -> None:
        self.last_seen = time.time()

    def snapshot(self) -> dict:
        accept, formats = accept_for(self.media_type)
        return {
            "state":       self.state,
            "media_type":  self.media_type,
            "accept":      accept,
            "formats":     formats,
            "file":        self.handle.to_dict() if self.handle else None,
            "result":      self.result.to_dict() if self.result else None,
            "error":       self.error,
            "notice":      self.notice,
            "can_analyze": self.can_analyze,
        }
