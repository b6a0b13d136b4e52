"""
Declarative Scene Backend

Renders through a pre-built scene project in the sandbox image. The plan is
written out as a props JSON file describing each slide sequence:
- startFrame: where the sequence begins (overlaps the previous slide by
  the transition)
- durationInFrames: the slide's frame_count
- zoomDirection, fadeIn, fadeOut
- local image/audio paths and the date badge text
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from ...errors import RenderEngineError, RenderTimeout
from ...models import RenderArtifact
from ...sandbox import CommandTimeout
from ..composition import CompositionPlan
from .base import ProgressCallback, RenderBackend, StagedAssets

logger = logging.getLogger(__name__)

# "Rendered 120/900" style progress lines
FRAME_PROGRESS_PATTERN = re.compile(r"(\d+)\s*/\s*(\d+)")


def build_scene_props(plan: CompositionPlan, assets: StagedAssets) -> Dict[str, Any]:
    """
    Props consumed by the scene composition.

    Start frames are the composed-stream starts, the same instants the
    xfade chain uses, so every slide lines up with its narration.
    """
    fps = plan.output.fps
    last_position = len(plan.motions) - 1

    slides: List[Dict[str, Any]] = []
    for motion in plan.motions:
        slides.append(
            {
                "slideIndex": motion.slide_index,
                "imagePath": assets.image_for(motion.slide_index),
                "audioPath": assets.audio_for(motion.slide_index),
                "startFrame": int(round(motion.start_sec * fps)),
                "durationInFrames": motion.frame_count,
                "zoomDirection": motion.zoom_direction.value,
                "startZoom": motion.start_zoom,
                "endZoom": motion.end_zoom,
                "fadeIn": motion.position > 0,
                "fadeOut": motion.position < last_position,
            }
        )

    return {
        "width": plan.output.width,
        "height": plan.output.height,
        "fps": fps,
        "transitionFrames": int(round(plan.transition_duration_sec * fps)),
        "durationInFrames": int(round(plan.nominal_duration_sec * fps)),
        "dateText": plan.overlay.text,
        "locale": plan.overlay.locale,
        "slides": slides,
    }


class DeclarativeSceneBackend(RenderBackend):
    """Renders with the scene renderer CLI inside the sandbox."""

    name = "scene"

    def props_path(self) -> str:
        return f"{self.workspace}/props.json"

    def build_command(self, plan: CompositionPlan) -> List[str]:
        return [
            "npx", "remotion", "render",
            self.settings.scene_entry_point,
            self.settings.scene_composition_id,
            self.output_path(plan),
            f"--props={self.props_path()}",
            f"--codec={plan.output.profile.name}",
            f"--crf={plan.output.profile.crf}",
            f"--width={plan.output.width}",
            f"--height={plan.output.height}",
        ]

    def render(
        self,
        plan: CompositionPlan,
        assets: StagedAssets,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RenderArtifact:
        props = build_scene_props(plan, assets)
        self.sandbox.write_file(self.props_path(), json.dumps(props, ensure_ascii=False, indent=2))
        cmd = self.build_command(plan)
        last_percent = 0

        def on_stdout(line: str) -> None:
            nonlocal last_percent
            match = FRAME_PROGRESS_PATTERN.search(line)
            if not match or not progress_callback:
                return
            done, total = int(match.group(1)), int(match.group(2))
            if total <= 0:
                return
            percent = min(99, int(done / total * 100))
            if percent > last_percent:
                last_percent = percent
                progress_callback(percent, f"Rendering: {percent}%")

        logger.info(
            f"Starting scene render in {self.sandbox.sandbox_id}: "
            f"{len(props['slides'])} slides, {props['durationInFrames']} frames"
        )
        logger.debug(f"Scene command: {' '.join(cmd)}")

        try:
            result = self.sandbox.run(
                cmd, timeout=self.settings.render_timeout_sec, on_stdout=on_stdout
            )
        except CommandTimeout as e:
            raise RenderTimeout(
                f"Scene render exceeded timeout of {self.settings.render_timeout_sec} seconds",
                diagnostics=e.stderr,
            )

        if not result.ok:
            raise RenderEngineError(
                f"Scene render failed with code {result.exit_code}",
                diagnostics=result.stderr or result.stdout,
                exit_code=result.exit_code,
            )

        if progress_callback:
            progress_callback(100, "Render complete")
        logger.info(f"Scene render completed in {result.duration_sec:.1f}s")
        return self.planned_artifact(plan, self.output_path(plan))
