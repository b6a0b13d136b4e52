"""
Filter Graph Backend (ffmpeg)

Builds a single ffmpeg invocation from a CompositionPlan:
- one input per slide image and per narration clip
- zoompan per slide for the alternating zoom in/out motion
- xfade chain at each slide's start in the composed stream
- concat of the narration clips in slide order
- drawtext date badge over the final composed frame

Progress is read from -progress pipe:1 (out_time_us preferred).
"""

import logging
import re
from typing import List, Optional

from ...errors import RenderEngineError, RenderTimeout
from ...models import RenderArtifact, ZoomDirection
from ...sandbox import CommandTimeout
from ..composition import CompositionPlan, MotionInstruction
from .base import ProgressCallback, RenderBackend, StagedAssets

logger = logging.getLogger(__name__)

# Patterns for parsing -progress output
TIME_US_PATTERN = re.compile(r"out_time_us=(\d+)")
TIME_MS_PATTERN = re.compile(r"out_time_ms=(\d+)")
TIME_STR_PATTERN = re.compile(r"out_time=(\d+):(\d+):(\d+)\.(\d+)")
PROGRESS_PATTERN = re.compile(r"progress=(\w+)")


def escape_drawtext(text: str) -> str:
    """
    Escape text for a single-quoted drawtext value inside -filter_complex.

    Backslashes, colons and percent signs are escaped for the drawtext
    option parser; a single quote closes the quoted span, emits an escaped
    quote and reopens it.
    """
    escaped = text.replace("\\", "\\\\")
    escaped = escaped.replace(":", "\\:").replace("%", "\\%")
    return escaped.replace("'", "'\\''")


def format_number(value: float) -> str:
    """Compact decimal for filter expressions (no exponent, no trailing zeros)."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text or "0"


def parse_progress_time(line: str) -> Optional[int]:
    """
    Parse current output time from an ffmpeg progress line.

    Tries out_time_us, then out_time_ms, then the HH:MM:SS.micro string.

    Returns:
        Current time in milliseconds, or None if the line carries no time
    """
    match = TIME_US_PATTERN.search(line)
    if match:
        return int(match.group(1)) // 1000

    # Despite the name, out_time_ms is in microseconds in current ffmpeg builds
    match = TIME_MS_PATTERN.search(line)
    if match:
        return int(match.group(1)) // 1000

    match = TIME_STR_PATTERN.search(line)
    if match:
        hours, minutes, seconds = (int(match.group(i)) for i in (1, 2, 3))
        micro = int(match.group(4).ljust(6, "0")[:6])
        return hours * 3600000 + minutes * 60000 + seconds * 1000 + micro // 1000

    return None


class FFmpegCommandBuilder:
    """
    Builds an ffmpeg command from a CompositionPlan.

    Key design:
    - Image inputs come first (input i is slide position i)
    - Audio inputs follow in the same order
    - Offsets come from the plan; nothing is re-derived here
    """

    def __init__(self, plan: CompositionPlan, assets: StagedAssets, output_path: str):
        self.plan = plan
        self.assets = assets
        self.output_path = output_path

    def build(self) -> List[str]:
        """
        Build complete ffmpeg command.

        Returns:
            List of command arguments
        """
        cmd = ["ffmpeg", "-y", "-hide_banner"]
        cmd.extend(self._build_inputs())
        cmd.extend(["-filter_complex", self.build_filter_complex()])
        cmd.extend(self._build_output_options())
        cmd.append(self.output_path)
        return cmd

    def _build_inputs(self) -> List[str]:
        inputs = []
        for motion in self.plan.motions:
            inputs.extend(["-i", self.assets.image_for(motion.slide_index)])
        for slide_index in self.plan.audio.slide_indices:
            inputs.extend(["-i", self.assets.audio_for(slide_index)])
        return inputs

    def build_filter_complex(self) -> str:
        """Build the filter_complex string."""
        filters = []
        labels = []
        for motion in self.plan.motions:
            label = f"[v{motion.position}]"
            filters.append(self._build_motion_filter(motion, label))
            labels.append(label)

        filters.extend(self._build_xfade_chain(labels))
        filters.append(self._build_audio_filter())
        filters.append(f"[vmix]{self._build_overlay_filter()},format=yuv420p[vout]")
        return ";".join(filters)

    def _build_motion_filter(self, motion: MotionInstruction, out_label: str) -> str:
        """
        Zoompan filter for one slide.

        The slide is letterboxed to the output size first, then zoomed
        linearly from start_zoom to end_zoom over frame_count frames,
        centered.
        """
        w = self.plan.output.width
        h = self.plan.output.height
        fps = self.plan.output.fps
        frames = motion.frame_count
        step = format_number(motion.zoom_step)

        if motion.zoom_direction == ZoomDirection.IN:
            zoom_expr = f"min({format_number(motion.start_zoom)}+{step}*on,{format_number(motion.end_zoom)})"
        else:
            zoom_expr = f"max({format_number(motion.start_zoom)}-{step}*on,{format_number(motion.end_zoom)})"

        return (
            f"[{motion.position}:v]"
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:black,"
            f"setsar=1,"
            f"zoompan=z='{zoom_expr}':"
            f"x='iw/2-(iw/zoom/2)':"
            f"y='ih/2-(ih/zoom/2)':"
            f"d={frames}:s={w}x{h}:fps={fps}"
            f"{out_label}"
        )

    def _build_xfade_chain(self, labels: List[str]) -> List[str]:
        """
        Chain slides with xfade at their composed-stream offsets.

        Each xfade offset is relative to the composite built so far, which
        is already one transition shorter per earlier fade.

        A single slide is relabelled with a null filter.
        """
        if len(labels) == 1:
            return [f"{labels[0]}null[vmix]"]

        filters = []
        current_label = labels[0]
        last = len(self.plan.crossfades)
        for n, fade in enumerate(self.plan.crossfades, start=1):
            out_label = "[vmix]" if n == last else f"[xf{fade.to_position}]"
            filters.append(
                f"{current_label}{labels[fade.to_position]}"
                f"xfade=transition=fade:"
                f"duration={format_number(fade.duration_sec)}:"
                f"offset={fade.chain_offset_sec:.3f}"
                f"{out_label}"
            )
            current_label = out_label
        return filters

    def _build_audio_filter(self) -> str:
        """Concatenate narration clips in slide order."""
        first_audio_input = len(self.plan.motions)
        count = len(self.plan.audio.slide_indices)
        audio_inputs = "".join(f"[{first_audio_input + i}:a]" for i in range(count))
        return f"{audio_inputs}concat=n={count}:v=0:a=1[aout]"

    def _build_overlay_filter(self) -> str:
        overlay = self.plan.overlay
        return (
            f"drawtext=text='{escape_drawtext(overlay.text)}':"
            f"fontfile={overlay.font_file}:"
            f"fontsize={overlay.font_size}:"
            f"fontcolor=white:borderw=3:bordercolor=black:"
            f"x=(w-text_w)/2:y=80"
        )

    def _build_output_options(self) -> List[str]:
        profile = self.plan.output.profile
        options = [
            "-map", "[vout]",
            "-map", "[aout]",
            "-r", str(self.plan.output.fps),
            "-c:v", profile.video_encoder,
            "-crf", str(profile.crf),
            "-b:v", profile.video_bitrate,
        ]
        if profile.video_encoder == "libvpx-vp9":
            options.extend(["-deadline", profile.preset, "-row-mt", "1"])
        else:
            options.extend(["-preset", profile.preset, "-pix_fmt", "yuv420p"])
        options.extend([
            "-c:a", profile.audio_encoder,
            "-b:a", profile.audio_bitrate,
        ])
        if profile.container == "mp4":
            options.extend(["-movflags", "+faststart"])
        options.extend(["-f", profile.container])
        return options


class FilterGraphBackend(RenderBackend):
    """Renders with one ffmpeg filter graph inside the sandbox."""

    name = "ffmpeg"

    def build_command(self, plan: CompositionPlan, assets: StagedAssets) -> List[str]:
        return FFmpegCommandBuilder(plan, assets, self.output_path(plan)).build()

    def render(
        self,
        plan: CompositionPlan,
        assets: StagedAssets,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RenderArtifact:
        output_path = self.output_path(plan)
        cmd = self.build_command(plan, assets)
        cmd[-1:-1] = ["-progress", "pipe:1", "-nostats"]
        total_ms = plan.nominal_duration_ms
        last_percent = 0

        def on_stdout(line: str) -> None:
            nonlocal last_percent
            progress = PROGRESS_PATTERN.search(line)
            if progress and progress.group(1) == "end":
                if progress_callback:
                    progress_callback(100, "Render complete")
                return
            current_ms = parse_progress_time(line)
            if current_ms is None or total_ms <= 0:
                return
            percent = min(99, int(current_ms / total_ms * 100))
            if percent > last_percent:
                last_percent = percent
                if progress_callback:
                    progress_callback(percent, f"Rendering: {percent}%")

        logger.info(
            f"Starting ffmpeg in {self.sandbox.sandbox_id}: {len(plan.motions)} slides, "
            f"nominal {plan.nominal_duration_sec:.2f}s, timeout={self.settings.render_timeout_sec}s"
        )
        logger.debug(f"ffmpeg command: {' '.join(cmd)}")

        try:
            result = self.sandbox.run(
                cmd, timeout=self.settings.render_timeout_sec, on_stdout=on_stdout
            )
        except CommandTimeout as e:
            raise RenderTimeout(
                f"ffmpeg exceeded timeout of {self.settings.render_timeout_sec} seconds",
                diagnostics=e.stderr,
            )

        if not result.ok:
            logger.error(f"ffmpeg failed with code {result.exit_code}")
            raise RenderEngineError(
                f"ffmpeg failed with code {result.exit_code}",
                diagnostics=result.stderr,
                exit_code=result.exit_code,
            )

        logger.info(f"ffmpeg completed in {result.duration_sec:.1f}s")
        return self.planned_artifact(plan, output_path)
