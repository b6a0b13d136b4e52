"""
Timeline Calculation

Turns per-slide narration length into the on-screen timeline:

    on_screen[i]       = duration_ms[i] / 1000 + transition
    frame_count[i]     = ceil(on_screen[i] * fps)
    cumulative_start[i] = sum(on_screen[0..i-1])
    crossfade_offset[i] = cumulative_start[i] - transition      (i >= 1)
    zoom[i]            = in if i is even else out

Every slide is padded by one transition so the cross-fade into the next
slide never covers narration. The displayed runtime is
sum(on_screen) - (n - 1) * transition because adjacent fades overlap.
"""

import logging
import math
from typing import Iterable, List

from ..config import setting_default
from ..models import AudioAsset, Timeline, TimelineSlot, ZoomDirection

logger = logging.getLogger(__name__)

# Seconds are rounded to microseconds to keep float noise out of offsets
_PRECISION = 6


def build_timeline(
    audio: Iterable[AudioAsset],
    transition_duration_sec: float = setting_default("transition_duration_sec"),
    fps: int = setting_default("fps"),
    max_zoom: float = setting_default("max_zoom"),
) -> Timeline:
    """
    Compute the timeline for a validated set of audio clips.

    Args:
        audio: Narration clips; ordered here by slide_index
        transition_duration_sec: Cross-fade length in seconds
        fps: Output frame rate
        max_zoom: Zoom magnitude reached at the end of a slide

    Returns:
        Timeline with one slot per clip

    Raises:
        ValueError: If the timing parameters are out of range
    """
    if transition_duration_sec <= 0:
        raise ValueError("transition_duration_sec must be positive")
    if fps <= 0:
        raise ValueError("fps must be positive")
    if max_zoom < 1.0:
        raise ValueError("max_zoom must be >= 1.0")

    ordered = sorted(audio, key=lambda clip: clip.slide_index)
    slots: List[TimelineSlot] = []
    cumulative = 0.0

    for position, clip in enumerate(ordered):
        on_screen = round(clip.duration_ms / 1000 + transition_duration_sec, _PRECISION)
        frame_count = math.ceil(round(on_screen * fps, _PRECISION))
        offset = None
        if position > 0:
            offset = round(cumulative - transition_duration_sec, _PRECISION)

        slots.append(
            TimelineSlot(
                slide_index=clip.slide_index,
                position=position,
                on_screen_duration_sec=on_screen,
                cumulative_start_sec=round(cumulative, _PRECISION),
                crossfade_offset_sec=offset,
                zoom_direction=ZoomDirection.IN if position % 2 == 0 else ZoomDirection.OUT,
                frame_count=frame_count,
                zoom_step=zoom_step(max_zoom, frame_count),
            )
        )
        cumulative += on_screen

    timeline = Timeline(
        slots=tuple(slots),
        transition_duration_sec=transition_duration_sec,
        fps=fps,
        max_zoom=max_zoom,
    )
    logger.info(
        f"Timeline built: {len(slots)} slides, nominal {timeline.total_duration_sec:.2f}s, "
        f"offsets={timeline.crossfade_offsets}"
    )
    return timeline


def zoom_step(max_zoom: float, frame_count: int) -> float:
    """Per-frame zoom increment that moves linearly between 1.0 and max_zoom."""
    if frame_count <= 0:
        return 0.0
    return (max_zoom - 1.0) / frame_count


def zoom_bounds(direction: ZoomDirection, max_zoom: float) -> tuple:
    """Return (start_zoom, end_zoom) for a zoom direction."""
    if direction == ZoomDirection.IN:
        return 1.0, max_zoom
    return max_zoom, 1.0
