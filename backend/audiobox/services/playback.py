"""Playback transport: a small state machine mirrored from a media element.

The element is the source of truth for position and duration; the transport
subscribes to its events and maps each one to a state transition.  Each
``load`` bumps a generation counter so a signed URL that arrives after the
session it was requested for has been torn down is dropped.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Protocol

from audiobox.config import settings
from audiobox.errors import PlaybackError, StaleSessionError, ValidationError
from audiobox.models.audio import AudioFileRecord
from audiobox.stores.base import BlobStore

logger = logging.getLogger(__name__)

EventHandler = Callable[[], None]


class PlaybackState(str, Enum):
    IDLE = "IDLE"
    RESOLVING = "RESOLVING"
    READY = "READY"
    PAUSED = "PAUSED"
    PLAYING = "PLAYING"
    ENDED = "ENDED"


SEEKABLE = (PlaybackState.PAUSED, PlaybackState.PLAYING, PlaybackState.ENDED)


class MediaElement(Protocol):
    """The subset of an HTML audio element the transport drives."""

    src: Optional[str]
    duration: float
    current_time: float
    volume: float

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def add_event_listener(self, event: str, handler: EventHandler) -> None: ...

    def remove_event_listener(self, event: str, handler: EventHandler) -> None: ...


@dataclass
class PlaybackSession:
    record: AudioFileRecord
    resolved_url: Optional[str] = None
    resolved_at: Optional[float] = None
    is_playing: bool = False
    position_seconds: float = 0.0
    duration_seconds: float = 0.0
    volume: float = 1.0


def format_time(seconds: Optional[float]) -> str:
    """``m:ss`` for the transport read-out; ``0:00`` when unknown."""
    if seconds is None or math.isnan(seconds) or seconds < 0:
        return "0:00"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


def _finite(value: float) -> float:
    return value if value is not None and math.isfinite(value) and value > 0 else 0.0


class _Binding:
    """Event subscriptions for one loaded record; detaching removes them all."""

    def __init__(self, element: MediaElement, handlers: Dict[str, EventHandler]) -> None:
        self.element = element
        self.handlers = handlers
        for event, handler in handlers.items():
            element.add_event_listener(event, handler)

    def detach(self) -> None:
        for event, handler in self.handlers.items():
            self.element.remove_event_listener(event, handler)
        self.handlers = {}


class PlaybackTransport:
    def __init__(
        self,
        blob_store: BlobStore,
        element: MediaElement,
        url_ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.blob_store = blob_store
        self.element = element
        self.url_ttl_seconds = settings.SIGNED_URL_TTL_SECONDS if url_ttl_seconds is None else url_ttl_seconds
        self._clock = clock
        self.state = PlaybackState.IDLE
        self.session: Optional[PlaybackSession] = None
        self.last_error: Optional[str] = None
        self._generation = 0
        self._binding: Optional[_Binding] = None
        self._volume = 1.0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def record(self) -> Optional[AudioFileRecord]:
        return self.session.record if self.session else None

    @property
    def is_playing(self) -> bool:
        return bool(self.session and self.session.is_playing)

    @property
    def position_seconds(self) -> float:
        return self.session.position_seconds if self.session else 0.0

    @property
    def duration_seconds(self) -> float:
        return self.session.duration_seconds if self.session else 0.0

    @property
    def volume(self) -> float:
        return self._volume

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "record_id": self.record.id if self.record else None,
            "is_playing": self.is_playing,
            "position_seconds": self.position_seconds,
            "duration_seconds": self.duration_seconds,
            "volume": self._volume,
            "position_label": format_time(self.position_seconds),
            "duration_label": format_time(self.duration_seconds),
            "error": self.last_error,
        }

    # ------------------------------------------------------------------
    # Loading / teardown
    # ------------------------------------------------------------------

    def _teardown(self) -> None:
        self._generation += 1
        if self._binding is not None:
            self._binding.detach()
            self._binding = None
            self.element.pause()
            self.element.src = None
        self.session = None
        self.state = PlaybackState.IDLE

    def close(self) -> None:
        """Drop the current record (if any) and return to ``IDLE``."""
        if self.session is not None:
            logger.info("Closing playback of %s", self.session.record.id)
        self._teardown()

    async def load(self, record: Optional[AudioFileRecord]) -> Optional[PlaybackSession]:
        """Resolve a signed URL for ``record`` and bind it to the element.

        Returns ``None`` when ``record`` is ``None`` or when a newer ``load`` or
        ``close`` superseded this one while the URL was being resolved.
        """
        self._teardown()
        self.last_error = None
        if record is None:
            return None

        generation = self._generation
        session = PlaybackSession(record=record, volume=self._volume)
        self.session = session
        self.state = PlaybackState.RESOLVING
        logger.info("Resolving playback URL for %s", record.id)

        try:
            url = await self.blob_store.issue_signed_url(record.file_path, self.url_ttl_seconds)
        except Exception as exc:
            if generation != self._generation:
                logger.debug("Ignoring failed resolution of superseded record %s", record.id)
                return None
            self._teardown()
            self.last_error = f"Could not load audio: {getattr(exc, 'detail', exc)}"
            logger.error("Failed to resolve playback URL for %s: %s", record.id, exc)
            raise PlaybackError(self.last_error) from exc

        if generation != self._generation:
            logger.debug("Discarding superseded playback URL for %s", record.id)
            return None

        session.resolved_url = url
        session.resolved_at = self._clock()
        self._bind(session, generation)
        return session

    def _bind(self, session: PlaybackSession, generation: int) -> None:
        def guarded(handler: Callable[[PlaybackSession], None]) -> EventHandler:
            def _run() -> None:
                # Late events from an earlier binding must not touch this session.
                if generation == self._generation and self.session is session:
                    handler(session)
            return _run

        self._binding = _Binding(self.element, {
            "loadedmetadata": guarded(self._on_metadata),
            "loadeddata": guarded(self._on_metadata),
            "play": guarded(self._on_play),
            "playing": guarded(self._on_play),
            "pause": guarded(self._on_pause),
            "timeupdate": guarded(self._on_time_update),
            "ended": guarded(self._on_ended),
        })
        self.element.volume = self._volume
        self.element.src = session.resolved_url
        self.state = PlaybackState.READY

    # ------------------------------------------------------------------
    # Element events
    # ------------------------------------------------------------------

    def _on_metadata(self, session: PlaybackSession) -> None:
        session.duration_seconds = _finite(self.element.duration)
        session.position_seconds = _finite(self.element.current_time)
        if self.state == PlaybackState.READY:
            self.state = PlaybackState.PAUSED

    def _on_play(self, session: PlaybackSession) -> None:
        if self.state in (PlaybackState.PAUSED, PlaybackState.ENDED, PlaybackState.PLAYING):
            session.is_playing = True
            self.state = PlaybackState.PLAYING

    def _on_pause(self, session: PlaybackSession) -> None:
        if self.state == PlaybackState.PLAYING:
            session.is_playing = False
            self.state = PlaybackState.PAUSED

    def _on_time_update(self, session: PlaybackSession) -> None:
        session.position_seconds = _finite(self.element.current_time)

    def _on_ended(self, session: PlaybackSession) -> None:
        session.is_playing = False
        session.position_seconds = _finite(self.element.current_time) or session.duration_seconds
        self.state = PlaybackState.ENDED

    # ------------------------------------------------------------------
    # User controls
    # ------------------------------------------------------------------

    def _require_session(self) -> PlaybackSession:
        if self.session is None or self._binding is None:
            raise PlaybackError("No audio file is loaded", status_code=409)
        return self.session

    def _check_fresh(self, session: PlaybackSession) -> None:
        if session.resolved_at is None:
            return
        if self._clock() - session.resolved_at >= self.url_ttl_seconds:
            record_id = session.record.id
            self._teardown()
            self.last_error = "Playback link expired, please select the file again"
            logger.warning("Signed URL for %s expired", record_id)
            raise StaleSessionError(self.last_error)

    def play(self) -> None:
        session = self._require_session()
        if self.state == PlaybackState.PLAYING:
            return
        if self.state not in (PlaybackState.PAUSED, PlaybackState.ENDED):
            raise PlaybackError(f"Cannot play while {self.state.value.lower()}", status_code=409)
        self._check_fresh(session)
        if self.state == PlaybackState.ENDED:
            self.element.current_time = 0.0
            session.position_seconds = 0.0
        self.element.play()
        session.is_playing = True
        self.state = PlaybackState.PLAYING

    def pause(self) -> None:
        session = self._require_session()
        if self.state != PlaybackState.PLAYING:
            return
        self.element.pause()
        session.is_playing = False
        self.state = PlaybackState.PAUSED

    def toggle(self) -> None:
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def seek(self, seconds: float) -> float:
        """Move to ``seconds`` clamped into ``[0, duration]``; play state is kept."""
        session = self._require_session()
        if self.state not in SEEKABLE:
            raise PlaybackError("Cannot seek before the duration is known", status_code=409)
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or math.isnan(seconds):
            raise ValidationError("Seek position must be a number")
        target = min(max(float(seconds), 0.0), session.duration_seconds)
        self.element.current_time = target
        session.position_seconds = target
        if self.state == PlaybackState.ENDED and target < session.duration_seconds:
            self.state = PlaybackState.PAUSED
        return target

    def set_volume(self, volume: float) -> None:
        session = self._require_session()
        if isinstance(volume, bool) or not isinstance(volume, (int, float)):
            raise ValidationError(f"Volume must be a number, got {volume!r}")
        if math.isnan(volume) or not 0.0 <= volume <= 1.0:
            raise ValidationError(f"Volume must be between 0.0 and 1.0, got {volume}")
        self.element.volume = float(volume)
        self._volume = float(volume)
        session.volume = self._volume
