"""
Composition Planning

Converts a validated RenderRequest and its Timeline into a render-engine
agnostic CompositionPlan:
- one motion (pan/zoom) instruction per slide, bounded by its frame count
- a linear chain of cross-fades between consecutive slides
- one audio track: narration clips concatenated in slideIndex order
- one date badge text overlay on the final composed frame

The plan is plain data. Backends (filter graph or declarative scene) read it
and apply their own text escaping and expression syntax.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from ..config import RESOLUTIONS, EncodingProfile, PipelineSettings
from ..models import RenderRequest, Timeline, ZoomDirection
from .timeline import build_timeline, zoom_bounds

logger = logging.getLogger(__name__)

MONTH_ABBREVIATIONS = [
    "JAN", "FEB", "MAR", "APR", "MAY", "JUN",
    "JUL", "AUG", "SEP", "OCT", "NOV", "DEC",
]


@dataclass(frozen=True)
class MotionInstruction:
    """Pan/zoom animation of one slide image."""

    position: int
    slide_index: int
    image_ref: str
    start_sec: float
    duration_sec: float
    frame_count: int
    zoom_direction: ZoomDirection
    start_zoom: float
    end_zoom: float
    zoom_step: float


@dataclass(frozen=True)
class CrossfadeInstruction:
    """
    Fade from the composed stream so far into slide to_position.

    offset_sec is measured on the padded per-slide timeline; chain_offset_sec
    is where the fade begins in the composed stream, which is shorter by one
    transition for every earlier fade.
    """

    from_position: int
    to_position: int
    offset_sec: float
    chain_offset_sec: float
    duration_sec: float


@dataclass(frozen=True)
class AudioConcatInstruction:
    """Narration clips in playback order, concatenated without re-timing."""

    slide_indices: Tuple[int, ...]
    audio_refs: Tuple[str, ...]


@dataclass(frozen=True)
class TextOverlayInstruction:
    """Unescaped overlay text; each backend escapes for its own syntax."""

    text: str
    locale: str
    font_file: str
    font_size: int


@dataclass(frozen=True)
class OutputSpec:
    width: int
    height: int
    fps: int
    profile: EncodingProfile


@dataclass(frozen=True)
class CompositionPlan:
    """Fully computed description of one render."""

    request_id: str
    output: OutputSpec
    motions: Tuple[MotionInstruction, ...]
    crossfades: Tuple[CrossfadeInstruction, ...]
    audio: AudioConcatInstruction
    overlay: TextOverlayInstruction
    transition_duration_sec: float
    nominal_duration_sec: float

    @property
    def nominal_duration_ms(self) -> int:
        return int(round(self.nominal_duration_sec * 1000))

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (enums as values)."""
        data = asdict(self)
        for motion in data["motions"]:
            motion["zoom_direction"] = motion["zoom_direction"].value
        return data


def format_overlay_date(value: date, locale: str = "ja") -> str:
    """
    Localized date badge text.

    ja: 2025年12月29日
    en: 29 DEC 2025
    """
    if locale == "en":
        return f"{value.day} {MONTH_ABBREVIATIONS[value.month - 1]} {value.year}"
    return f"{value.year}年{value.month}月{value.day}日"


def plan_composition(
    request: RenderRequest,
    settings: PipelineSettings,
    timeline: Optional[Timeline] = None,
) -> CompositionPlan:
    """
    Build the composition plan for a validated request.

    Pure function of the request and settings; the timeline is computed
    here unless the caller already has one.

    Args:
        request: Validated render request
        settings: Pipeline settings (transition, fps, zoom, profile, overlay)
        timeline: Optional precomputed timeline for this request

    Returns:
        CompositionPlan
    """
    if timeline is None:
        timeline = build_timeline(
            request.audio,
            transition_duration_sec=settings.transition_duration_sec,
            fps=settings.fps,
            max_zoom=settings.max_zoom,
        )

    width, height = RESOLUTIONS[request.orientation.value]
    audio_by_index = {clip.slide_index: clip for clip in request.audio}

    motions: List[MotionInstruction] = []
    for slot in timeline.slots:
        start_zoom, end_zoom = zoom_bounds(slot.zoom_direction, timeline.max_zoom)
        motions.append(
            MotionInstruction(
                position=slot.position,
                slide_index=slot.slide_index,
                image_ref=request.slide_for(slot.slide_index).location_ref,
                start_sec=timeline.composed_start_sec(slot),
                duration_sec=slot.on_screen_duration_sec,
                frame_count=slot.frame_count,
                zoom_direction=slot.zoom_direction,
                start_zoom=start_zoom,
                end_zoom=end_zoom,
                zoom_step=slot.zoom_step,
            )
        )

    crossfades = tuple(
        CrossfadeInstruction(
            from_position=slot.position - 1,
            to_position=slot.position,
            offset_sec=slot.crossfade_offset_sec,
            chain_offset_sec=timeline.composed_start_sec(slot),
            duration_sec=timeline.transition_duration_sec,
        )
        for slot in timeline.slots
        if slot.crossfade_offset_sec is not None
    )

    # Same order as the video slots; any drift here compounds across slides
    ordered_indices = tuple(slot.slide_index for slot in timeline.slots)
    audio = AudioConcatInstruction(
        slide_indices=ordered_indices,
        audio_refs=tuple(audio_by_index[i].location_ref for i in ordered_indices),
    )

    overlay = TextOverlayInstruction(
        text=format_overlay_date(request.overlay_date, settings.overlay_locale),
        locale=settings.overlay_locale,
        font_file=settings.overlay_font_file,
        font_size=settings.overlay_font_size,
    )

    plan = CompositionPlan(
        request_id=request.request_id,
        output=OutputSpec(width=width, height=height, fps=timeline.fps, profile=settings.profile),
        motions=tuple(motions),
        crossfades=crossfades,
        audio=audio,
        overlay=overlay,
        transition_duration_sec=timeline.transition_duration_sec,
        nominal_duration_sec=timeline.total_duration_sec,
    )
    logger.info(
        f"Composition planned: {len(motions)} motions, {len(crossfades)} crossfades, "
        f"{width}x{height}@{timeline.fps}, overlay={overlay.text!r}"
    )
    return plan
