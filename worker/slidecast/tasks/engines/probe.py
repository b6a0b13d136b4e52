"""
FFprobe inspection of rendered output.

Runs ffprobe inside the sandbox, parses its JSON and checks the result
against the composition plan:
- container present and readable
- one video and one audio stream
- expected frame size
- container, video stream and audio stream durations each within
  tolerance of the nominal duration
- non-empty file
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Optional

from ...errors import RenderEngineError
from ...sandbox import Sandbox

logger = logging.getLogger(__name__)


@dataclass
class ProbeInfo:
    """Container for video file metadata extracted via ffprobe."""

    duration_sec: float
    width: int
    height: int
    fps: float
    has_video: bool
    has_audio: bool
    video_codec: Optional[str]
    audio_codec: Optional[str]
    format_name: str
    file_size: int
    video_duration_sec: Optional[float] = None
    audio_duration_sec: Optional[float] = None

    @property
    def duration_ms(self) -> int:
        """Duration in milliseconds."""
        return int(round(self.duration_sec * 1000))


def stream_duration(stream: Optional[dict], fps: float = 0.0) -> Optional[float]:
    """
    Duration of one stream in seconds.

    Uses the stream's duration field, falling back to nb_frames / fps.
    None when ffprobe reports neither.
    """
    if not stream:
        return None
    try:
        duration = float(stream.get("duration") or 0)
    except ValueError:
        duration = 0.0
    if duration > 0:
        return duration
    try:
        frames = int(stream.get("nb_frames") or 0)
    except ValueError:
        frames = 0
    if frames > 0 and fps > 0:
        return frames / fps
    return None


def probe_command(path: str) -> List[str]:
    return [
        "ffprobe",
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        path,
    ]


def parse_probe_output(stdout: str) -> ProbeInfo:
    """
    Parse ffprobe JSON output.

    Raises:
        ValueError: If the output cannot be parsed
    """
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse ffprobe output: {e}")

    format_info = data.get("format") or {}
    if not format_info:
        raise ValueError("ffprobe reported no container format")
    streams = data.get("streams", [])

    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)

    duration_sec = float(format_info.get("duration") or 0)
    if not duration_sec and video_stream:
        duration_sec = float(video_stream.get("duration") or 0)

    width = height = 0
    fps = 0.0
    if video_stream:
        width = int(video_stream.get("width", 0))
        height = int(video_stream.get("height", 0))
        # r_frame_rate is "num/den"
        try:
            num, den = map(int, video_stream.get("r_frame_rate", "0/1").split("/"))
            fps = num / den if den > 0 else 0.0
        except (ValueError, ZeroDivisionError):
            fps = 0.0

    return ProbeInfo(
        duration_sec=duration_sec,
        width=width,
        height=height,
        fps=fps,
        has_video=video_stream is not None,
        has_audio=audio_stream is not None,
        video_codec=video_stream.get("codec_name") if video_stream else None,
        audio_codec=audio_stream.get("codec_name") if audio_stream else None,
        format_name=str(format_info.get("format_name", "")),
        file_size=int(format_info.get("size") or 0),
        video_duration_sec=stream_duration(video_stream, fps),
        audio_duration_sec=stream_duration(audio_stream),
    )


def probe(sandbox: Sandbox, path: str, timeout: float = 60) -> ProbeInfo:
    """
    Probe a file inside the sandbox.

    Raises:
        RenderEngineError: If ffprobe fails or its output is unreadable
    """
    result = sandbox.run(probe_command(path), timeout=timeout)
    if not result.ok:
        raise RenderEngineError(
            f"ffprobe failed for {path}", diagnostics=result.stderr, exit_code=result.exit_code
        )
    try:
        return parse_probe_output(result.stdout)
    except ValueError as e:
        raise RenderEngineError(f"Output video verification failed: {e}", diagnostics=result.stderr)


def verification_problems(
    info: ProbeInfo,
    width: int,
    height: int,
    nominal_duration_sec: float,
    tolerance_sec: float,
) -> List[str]:
    """Return every way the probed output differs from what was planned."""
    problems = []
    if info.file_size <= 0:
        problems.append("output file is empty")
    if not info.has_video:
        problems.append("no video stream")
    if not info.has_audio:
        problems.append("no audio stream")
    if info.has_video and (info.width, info.height) != (width, height):
        problems.append(f"frame size {info.width}x{info.height}, expected {width}x{height}")
    deviation = abs(info.duration_sec - nominal_duration_sec)
    if deviation > tolerance_sec:
        problems.append(
            f"duration {info.duration_sec:.2f}s deviates from nominal "
            f"{nominal_duration_sec:.2f}s by {deviation:.2f}s"
        )
    # A truncated stream hides behind a container duration set by the longer one
    for kind, duration in (("video", info.video_duration_sec), ("audio", info.audio_duration_sec)):
        if duration is None:
            continue
        deviation = abs(duration - nominal_duration_sec)
        if deviation > tolerance_sec:
            problems.append(
                f"{kind} stream duration {duration:.2f}s deviates from nominal "
                f"{nominal_duration_sec:.2f}s by {deviation:.2f}s"
            )
    return problems
