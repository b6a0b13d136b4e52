"""
Render Pipeline Data Model

Immutable request types, derived timeline types and the rendered artifact
handed from the render executor to the storage transport.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Orientation(str, Enum):
    """Output frame orientation."""

    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"

    @classmethod
    def from_value(cls, value: Any) -> "Orientation":
        """Accept enum members, names and the app's video_type values."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        aliases = {"short": cls.PORTRAIT, "long": cls.LANDSCAPE}
        if text in aliases:
            return aliases[text]
        return cls(text)


class ZoomDirection(str, Enum):
    IN = "in"
    OUT = "out"


@dataclass(frozen=True)
class SlideAsset:
    """Reference to one rendered slide image."""

    location_ref: str
    slide_index: int


@dataclass(frozen=True)
class AudioAsset:
    """Narration clip for one slide."""

    location_ref: str
    slide_index: int
    duration_ms: Any


@dataclass(frozen=True)
class RenderRequest:
    """
    Immutable input to one render.

    duration_ms is kept as supplied so the validator can report malformed
    values instead of failing during parsing.
    """

    slides: Tuple[SlideAsset, ...]
    audio: Tuple[AudioAsset, ...]
    orientation: Orientation
    overlay_date: date
    request_id: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RenderRequest":
        """
        Build a request from a JSON-style dict.

        Accepts camelCase (locationRef, slideIndex, durationMs, overlayDate)
        or snake_case keys; "url" is accepted for locationRef.
        """

        def pick(entry: Dict[str, Any], *keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in entry:
                    return entry[key]
            return default

        slides = tuple(
            SlideAsset(
                location_ref=pick(s, "locationRef", "location_ref", "url", default=""),
                slide_index=pick(s, "slideIndex", "slide_index"),
            )
            for s in data.get("slides", [])
        )
        audio = tuple(
            AudioAsset(
                location_ref=pick(a, "locationRef", "location_ref", "url", default=""),
                slide_index=pick(a, "slideIndex", "slide_index"),
                duration_ms=pick(a, "durationMs", "duration_ms"),
            )
            for a in data.get("audio", [])
        )
        return cls(
            slides=slides,
            audio=audio,
            orientation=Orientation.from_value(data.get("orientation", "landscape")),
            overlay_date=parse_overlay_date(pick(data, "overlayDate", "overlay_date")),
            request_id=str(pick(data, "requestId", "request_id", default="") or ""),
        )

    def slide_for(self, slide_index: int) -> SlideAsset:
        for slide in self.slides:
            if slide.slide_index == slide_index:
                return slide
        raise KeyError(slide_index)

    def ordered_audio(self) -> List[AudioAsset]:
        return sorted(self.audio, key=lambda a: a.slide_index)


def parse_overlay_date(value: Any) -> date:
    """
    Parse the overlay date from a date, datetime or ISO string.

    Falls back to today when the value is missing or unparseable, matching
    how the date badge has always behaved for articles without a date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip().replace("Z", "+00:00")
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            try:
                return date.fromisoformat(text[:10])
            except ValueError:
                logger.warning(f"Unparseable overlay date {value!r}, using today")
    return date.today()


@dataclass(frozen=True)
class TimelineSlot:
    """Timing of one slide within the composed video."""

    slide_index: int
    position: int
    on_screen_duration_sec: float
    cumulative_start_sec: float
    crossfade_offset_sec: Optional[float]
    zoom_direction: ZoomDirection
    frame_count: int
    zoom_step: float


@dataclass(frozen=True)
class Timeline:
    """Ordered slots plus the parameters they were computed with."""

    slots: Tuple[TimelineSlot, ...]
    transition_duration_sec: float
    fps: int
    max_zoom: float

    @property
    def total_duration_sec(self) -> float:
        """Displayed runtime: crossfades overlap adjacent slides."""
        if not self.slots:
            return 0.0
        naive = sum(slot.on_screen_duration_sec for slot in self.slots)
        return round(naive - (len(self.slots) - 1) * self.transition_duration_sec, 6)

    @property
    def total_duration_ms(self) -> int:
        return int(round(self.total_duration_sec * 1000))

    @property
    def crossfade_offsets(self) -> List[float]:
        return [s.crossfade_offset_sec for s in self.slots if s.crossfade_offset_sec is not None]

    def composed_start_sec(self, slot: TimelineSlot) -> float:
        """
        Where a slide begins in the composed stream.

        Each earlier cross-fade overlaps one transition, so this is the sum
        of the earlier narration durations and lines up with the
        concatenated audio track.
        """
        return round(slot.cumulative_start_sec - slot.position * self.transition_duration_sec, 6)


@dataclass
class RenderArtifact:
    """
    Output of a successful render.

    path points at the sandbox file until extraction, then at the local
    spool file. Whoever holds the artifact owns that file.
    """

    path: str
    width: int
    height: int
    duration_ms: int
    fps: float
    video_codec: str
    audio_codec: str
    container_format: str
    mime_type: str
    size_bytes: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_metadata(self) -> Dict[str, Any]:
        """Metadata record persisted alongside the stored artifact."""
        return {
            "width": self.width,
            "height": self.height,
            "durationMs": self.duration_ms,
            "fps": self.fps,
            "videoCodec": self.video_codec,
            "audioCodec": self.audio_codec,
            "format": self.container_format,
        }

    def discard(self) -> None:
        """Remove the local spool file, if any."""
        try:
            Path(self.path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove artifact spool {self.path}: {e}")


# ============================================================================
# Transport Sessions
# ============================================================================


class MultipartState(str, Enum):
    INITIATED = "initiated"
    PART_UPLOADING = "part_uploading"
    COMPLETED = "completed"
    ABORTED = "aborted"


class UploadState(str, Enum):
    SESSION_CREATED = "session_created"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadedPart:
    """One acknowledged part of a multipart upload."""

    part_number: int
    checksum: str
    size: int


@dataclass
class MultipartSession:
    """
    Object-store multipart session for one key.

    Parts are appended in strictly increasing part_number order; complete()
    needs the gapless list starting at 1.
    """

    key: str
    upload_id: str
    parts: List[UploadedPart] = field(default_factory=list)
    state: MultipartState = MultipartState.INITIATED
    current_part: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.state in (MultipartState.INITIATED, MultipartState.PART_UPLOADING)

    def record_part(self, part: UploadedPart) -> None:
        expected = len(self.parts) + 1
        if part.part_number != expected:
            raise ValueError(
                f"Part {part.part_number} out of order for {self.key}; expected {expected}"
            )
        self.parts.append(part)


@dataclass
class UploadSession:
    """
    Resumable platform upload session.

    bytes_acknowledged only moves forward. degraded_acks counts chunks whose
    receipt was assumed because the server sent no Range header.
    """

    upload_url: str
    total_bytes: int
    bytes_acknowledged: int = 0
    video_id: Optional[str] = None
    degraded_acks: int = 0
    state: UploadState = UploadState.SESSION_CREATED
    response: Dict[str, Any] = field(default_factory=dict)

    @property
    def remaining_bytes(self) -> int:
        return self.total_bytes - self.bytes_acknowledged

    @property
    def is_complete(self) -> bool:
        return self.state == UploadState.UPLOADED
