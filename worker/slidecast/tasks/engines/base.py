"""
Render backend interface.

A backend turns a CompositionPlan plus locally staged assets into one
encoded file inside the sandbox. Backends never fetch assets themselves;
the executor stages them first.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from ...config import PipelineSettings
from ...models import RenderArtifact
from ...sandbox import Sandbox
from ..composition import CompositionPlan

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


@dataclass
class StagedAssets:
    """Sandbox-local paths of prefetched inputs, keyed by slide_index."""

    images: Dict[int, str] = field(default_factory=dict)
    audio: Dict[int, str] = field(default_factory=dict)

    def image_for(self, slide_index: int) -> str:
        return self.images[slide_index]

    def audio_for(self, slide_index: int) -> str:
        return self.audio[slide_index]


class RenderBackend(ABC):
    """Executes a composition plan inside a sandbox."""

    name = "base"

    def __init__(self, sandbox: Sandbox, workspace: str, settings: PipelineSettings):
        self.sandbox = sandbox
        self.workspace = workspace.rstrip("/") or "."
        self.settings = settings

    def output_path(self, plan: CompositionPlan) -> str:
        return f"{self.workspace}/output.{plan.output.profile.extension}"

    @abstractmethod
    def render(
        self,
        plan: CompositionPlan,
        assets: StagedAssets,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RenderArtifact:
        """
        Render the plan.

        Returns:
            RenderArtifact pointing at the sandbox output file, carrying
            the planned metadata (the executor replaces it with probed values)

        Raises:
            RenderTimeout: If the engine exceeds render_timeout_sec
            RenderEngineError: If the engine exits non-zero
        """

    def planned_artifact(self, plan: CompositionPlan, path: str) -> RenderArtifact:
        profile = plan.output.profile
        return RenderArtifact(
            path=path,
            width=plan.output.width,
            height=plan.output.height,
            duration_ms=plan.nominal_duration_ms,
            fps=plan.output.fps,
            video_codec=profile.video_codec_label,
            audio_codec=profile.audio_codec_label,
            container_format=profile.container,
            mime_type=profile.mime_type,
        )
