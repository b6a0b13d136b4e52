"""
Slidecast Worker Tasks

Tasks:
- render_video: Compose, encode and store a video from its slide assets
- publish_video: Upload a rendered video to the platform

Enqueue helpers (use these for proper timeout handling):
- enqueue_render
- enqueue_publish
"""

from .composition import CompositionPlan, plan_composition
from .render import RenderPipeline, RenderResult, enqueue_render, render_video
from .publish import enqueue_publish, publish_video
from .timeline import build_timeline
from .validation import collect_request_errors, validate_render_request

__all__ = [
    # Task functions
    "render_video",
    "publish_video",
    # Enqueue helpers
    "enqueue_render",
    "enqueue_publish",
    # Pipeline
    "RenderPipeline",
    "RenderResult",
    "CompositionPlan",
    "plan_composition",
    "build_timeline",
    "collect_request_errors",
    "validate_render_request",
]
