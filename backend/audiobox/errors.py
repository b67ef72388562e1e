"""Domain exception hierarchy.

Every error carries an HTTP ``status_code`` and a user-facing ``detail`` so the
exception handlers in :mod:`audiobox.main` can map them to JSON responses
without knowing about individual operations.
"""

from __future__ import annotations

from typing import Optional


class AudioboxError(Exception):
    """Domain-level base exception so we can map to JSON responses easily."""

    status_code: int = 500

    def __init__(self, detail: str, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AudioboxError):
    """Rejected input (file type, file size, rename target, volume...).

    Raised before any side effect is attempted.
    """

    status_code = 400


class AuthenticationError(AudioboxError):
    status_code = 401


class RecordNotFoundError(AudioboxError):
    status_code = 404


class TransientBackendError(AudioboxError):
    """Storage, data-store or network failure; surfaced as-is, never retried."""

    status_code = 502


class BlobExistsError(TransientBackendError):
    """A non-overwriting put hit an existing path."""

    status_code = 409

    def __init__(self, path: str) -> None:
        super().__init__(f"The resource already exists: {path}")
        self.path = path


class PartialWriteError(TransientBackendError):
    """The blob was written but its metadata record could not be inserted.

    ``orphaned_path`` is set when the compensating delete failed as well, so
    callers can surface the storage inconsistency without losing the original
    insert error (available as ``__cause__``).
    """

    def __init__(self, detail: str, path: str, orphaned_path: Optional[str] = None) -> None:
        super().__init__(detail)
        self.path = path
        self.orphaned_path = orphaned_path


class PlaybackError(AudioboxError):
    status_code = 502


class StaleSessionError(PlaybackError):
    """A resolved playback URL outlived its validity window."""

    status_code = 410
