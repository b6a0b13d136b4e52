"""
Render backends.

create_backend picks the backend named by PipelineSettings.render_backend:
- ffmpeg: FilterGraphBackend
- scene: DeclarativeSceneBackend
"""

from typing import Dict, Optional, Type

from ...config import PipelineSettings
from ...sandbox import Sandbox
from .base import ProgressCallback, RenderBackend, StagedAssets
from .ffmpeg import FFmpegCommandBuilder, FilterGraphBackend, escape_drawtext, parse_progress_time
from .probe import ProbeInfo, parse_probe_output, probe, verification_problems
from .scene import DeclarativeSceneBackend, build_scene_props

BACKENDS: Dict[str, Type[RenderBackend]] = {
    FilterGraphBackend.name: FilterGraphBackend,
    DeclarativeSceneBackend.name: DeclarativeSceneBackend,
}


def create_backend(
    name: str,
    sandbox: Sandbox,
    workspace: str,
    settings: Optional[PipelineSettings] = None,
) -> RenderBackend:
    """
    Instantiate a render backend by name.

    Raises:
        ValueError: If the name is unknown
    """
    if name not in BACKENDS:
        raise ValueError(f"Unknown render backend: {name!r} (expected one of {sorted(BACKENDS)})")
    if settings is None:
        from ...config import get_settings

        settings = get_settings()
    return BACKENDS[name](sandbox, workspace, settings)


__all__ = [
    "BACKENDS",
    "create_backend",
    "ProgressCallback",
    "RenderBackend",
    "StagedAssets",
    "FFmpegCommandBuilder",
    "FilterGraphBackend",
    "escape_drawtext",
    "parse_progress_time",
    "DeclarativeSceneBackend",
    "build_scene_props",
    "ProbeInfo",
    "parse_probe_output",
    "probe",
    "verification_problems",
]
