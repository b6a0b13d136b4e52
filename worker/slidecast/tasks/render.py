"""
Render Task for the Slidecast Worker

Turns a video's slide images and narration clips into one stored video:

    validate -> timeline -> plan -> execute (sandbox) -> extract -> store

Stages run strictly in order for one request; retries stay inside the
stage that owns them. The local spool file is removed after the storage
hand-off whether or not it succeeded.

Job timeout: 60 minutes (render_job_timeout_sec).
"""

import logging
import tempfile
import uuid
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from rq import get_current_job

from ..cancellation import CancelToken
from ..config import PipelineSettings, get_settings
from ..db import get_db_session
from ..errors import PipelineError
from ..models import AudioAsset, Orientation, RenderArtifact, RenderRequest, SlideAsset
from ..publishing import resolve_upload_privacy
from ..records import (
    ASSET_SLIDE_AUDIO,
    ASSET_SLIDE_IMAGE,
    PUBLISH_BLOCKED,
    PUBLISH_PENDING,
    RENDER_ERROR,
    RENDER_RENDERED,
    RENDER_RENDERING,
    Video,
    VideoAsset,
    assets_of_type,
    replace_rendered_asset,
    set_publish_status,
    set_render_status,
)
from ..sandbox import LocalSandboxFactory, SandboxFactory
from ..storage import MultipartUploader, ObjectStore, create_object_store, generate_storage_key
from .composition import plan_composition
from .executor import RenderExecutor
from .timeline import build_timeline
from .validation import validate_render_request

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


# ============================================================================
# Pipeline
# ============================================================================


@dataclass
class RenderResult:
    """What a successful render leaves behind."""

    storage_key: str
    artifact_metadata: Dict[str, Any]
    size_bytes: int
    mime_type: str
    public_url: Optional[str] = None
    part_count: int = 0


class RenderPipeline:
    """Runs every render stage for one request."""

    def __init__(
        self,
        settings: PipelineSettings,
        store: ObjectStore,
        sandbox_factory: SandboxFactory,
        executor: Optional[RenderExecutor] = None,
        uploader: Optional[MultipartUploader] = None,
        spool_dir: Optional[str] = None,
    ):
        self.settings = settings
        self.store = store
        self.executor = executor or RenderExecutor(settings, sandbox_factory)
        self.uploader = uploader or MultipartUploader.from_settings(store, settings)
        self.spool_dir = spool_dir

    def run(
        self,
        request: RenderRequest,
        cancel: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RenderResult:
        """
        Render, verify and store one video.

        Raises:
            ValidationError: Malformed request (nothing external was touched)
            TransientInfrastructureError: Retries exhausted in a stage
            RenderEngineError: Engine failure or failed verification
            ProtocolError: Storage rejected the upload (session aborted)
            PipelineCancelled: Cancellation requested
        """
        cancel = cancel or CancelToken()
        report = progress_callback or (lambda percent, message: None)
        rid = request.request_id or "-"

        validate_render_request(request)
        logger.info(f"[{rid}] Render request valid: {len(request.slides)} slides")

        timeline = build_timeline(
            request.audio,
            transition_duration_sec=self.settings.transition_duration_sec,
            fps=self.settings.fps,
            max_zoom=self.settings.max_zoom,
        )
        plan = plan_composition(request, self.settings, timeline=timeline)
        report(5, "Composition planned")

        spool_dir = Path(self.spool_dir or tempfile.gettempdir())
        spool_dir.mkdir(parents=True, exist_ok=True)
        spool = spool_dir / f"slidecast-{uuid.uuid4().hex}.{plan.output.profile.extension}"

        artifact: Optional[RenderArtifact] = None
        try:
            artifact = self.executor.execute(
                request,
                plan,
                str(spool),
                cancel=cancel,
                progress_callback=lambda p, m: report(5 + int(p * 0.75), m),
            )

            cancel.raise_if_cancelled("storage upload")
            report(80, "Uploading to storage")
            key = generate_storage_key(plan.output.profile.extension)
            session = self.uploader.upload_file(
                artifact.path,
                key,
                content_type=artifact.mime_type,
                cancel=cancel,
                progress_callback=lambda sent, total: report(80 + int(sent / max(total, 1) * 18), "Uploading to storage"),
            )
        finally:
            if artifact is not None:
                artifact.discard()
            else:
                spool.unlink(missing_ok=True)

        result = RenderResult(
            storage_key=key,
            artifact_metadata=artifact.to_metadata(),
            size_bytes=artifact.size_bytes,
            mime_type=artifact.mime_type,
            public_url=self.store.public_url(key),
            part_count=len(session.parts),
        )
        report(100, "Render complete")
        logger.info(f"[{rid}] Render stored at {key}: {result.size_bytes} bytes, {len(session.parts)} part(s)")
        return result


# ============================================================================
# Helper Functions
# ============================================================================


def update_job_progress(percent: int, message: str) -> None:
    """
    Update RQ job progress metadata.

    Args:
        percent: Progress percentage (0-100)
        message: Progress message
    """
    job = get_current_job()
    if job:
        job.meta["progress_percent"] = percent
        job.meta["progress_message"] = message
        job.save_meta()


def discard_stored_render(store: ObjectStore, key: str) -> None:
    """Delete a stored render that never made it into the database."""
    try:
        store.delete_object(key)
        logger.info(f"Discarded unrecorded render {key}")
    except Exception as e:
        logger.warning(f"Could not discard unrecorded render {key}: {e}")


def asset_location(asset: VideoAsset, store: ObjectStore) -> str:
    return asset.public_url or store.location_ref(asset.r2_key)


def build_request_from_records(db, video: Video, store: ObjectStore) -> RenderRequest:
    """
    Assemble a RenderRequest from a video's stored slide and audio assets.

    Audio durations come from each asset's metadata (durationMs).
    """
    slides = tuple(
        SlideAsset(location_ref=asset_location(asset, store), slide_index=asset.asset_index)
        for asset in assets_of_type(db, video.id, ASSET_SLIDE_IMAGE)
    )
    audio = tuple(
        AudioAsset(
            location_ref=asset_location(asset, store),
            slide_index=asset.asset_index,
            duration_ms=asset.meta.get("durationMs"),
        )
        for asset in assets_of_type(db, video.id, ASSET_SLIDE_AUDIO)
    )
    return RenderRequest(
        slides=slides,
        audio=audio,
        orientation=Orientation.from_value(video.video_type or "long"),
        overlay_date=video.article_date or date.today(),
        request_id=f"video-{video.id}",
    )


def enqueue_render(video_id: int):
    """
    Enqueue a render job with the configured timeout.

    Args:
        video_id: ID of the video to render

    Returns:
        RQ Job instance
    """
    from ..queues import render_queue

    return render_queue.enqueue(
        render_video,
        video_id,
        job_timeout=get_settings().render_job_timeout_sec,
    )


# ============================================================================
# Main Task Function
# ============================================================================


def render_video(
    video_id: int,
    settings: Optional[PipelineSettings] = None,
    store: Optional[ObjectStore] = None,
    sandbox_factory: Optional[SandboxFactory] = None,
    enqueue_publish_job: Optional[Callable[[int, str], Any]] = None,
) -> dict:
    """
    RQ task to render a video from its slide and audio assets.

    This task:
    1. Loads the video and its assets from the database
    2. Marks render_status = rendering
    3. Runs the render pipeline
    4. Records the rendered_video asset and marks rendered
    5. Resolves upload privacy from the policy status and either marks
       the upload blocked or enqueues the publish job

    Args:
        video_id: ID of the video

    Returns:
        dict with storage_key, size_bytes, metadata and privacy

    Raises:
        ValueError: If the video does not exist
        PipelineError: If any stage fails (render_status = error)
    """
    settings = settings or get_settings()
    store = store or create_object_store(settings)
    sandbox_factory = sandbox_factory or LocalSandboxFactory(settings)
    if enqueue_publish_job is None:
        from .publish import enqueue_publish

        enqueue_publish_job = enqueue_publish

    logger.info(f"Starting render for video={video_id}")
    update_job_progress(0, "Starting render")

    with get_db_session() as db:
        video = db.get(Video, video_id)
        if not video:
            raise ValueError(f"Video not found: {video_id}")

        result: Optional[RenderResult] = None
        try:
            set_render_status(video, RENDER_RENDERING)
            db.commit()

            request = build_request_from_records(db, video, store)
            pipeline = RenderPipeline(settings, store, sandbox_factory)
            result = pipeline.run(
                request,
                cancel=CancelToken.for_current_job(),
                progress_callback=update_job_progress,
            )

            replace_rendered_asset(
                db,
                video.id,
                storage_key=result.storage_key,
                mime_type=result.mime_type,
                size_bytes=result.size_bytes,
                metadata=result.artifact_metadata,
                public_url=result.public_url,
            )
            set_render_status(video, RENDER_RENDERED)

            privacy = resolve_upload_privacy(video.policy_overall_status)
            if video.youtube_upload_status != PUBLISH_PENDING:
                set_publish_status(video, PUBLISH_PENDING)
            if privacy is None:
                set_publish_status(
                    video,
                    PUBLISH_BLOCKED,
                    video.policy_block_reasons or "Blocked by content policy",
                )
            db.commit()
        except Exception as e:
            logger.error(f"Render failed for video={video_id}: {e}", exc_info=not isinstance(e, PipelineError))
            db.rollback()
            if result is not None:
                discard_stored_render(store, result.storage_key)
            set_render_status(video, RENDER_ERROR, str(e))
            db.commit()
            raise

    if privacy is not None:
        enqueue_publish_job(video_id, privacy)
        logger.info(f"Publish enqueued for video={video_id} with privacy={privacy}")
    else:
        logger.warning(f"Publish blocked for video={video_id} by content policy")

    return {
        "storage_key": result.storage_key,
        "size_bytes": result.size_bytes,
        "metadata": result.artifact_metadata,
        "privacy": privacy,
    }
