"""
Publish Task for the Slidecast Worker

Uploads a rendered video to the platform:
1. uploading: resumable upload streamed from object storage
2. record youtube_info
3. processing: poll the platform until processing is terminal
4. optional custom thumbnail
5. uploaded

Any failure ends in publish status error with the failure message.

Job timeout: 60 minutes (publish_job_timeout_sec).
"""

import json
import logging
from typing import Callable, Optional

from ..cancellation import CancelToken
from ..config import PipelineSettings, get_settings
from ..db import get_db_session
from ..errors import PipelineError
from ..publishing import YouTubeClient, watch_url
from ..records import (
    ASSET_RENDERED_VIDEO,
    ASSET_THUMBNAIL,
    PUBLISH_ERROR,
    PUBLISH_PROCESSING,
    PUBLISH_UPLOADED,
    PUBLISH_UPLOADING,
    Video,
    YouTubeInfo,
    assets_of_type,
    set_publish_status,
    utcnow,
)
from ..storage import ObjectStore, create_object_store
from .render import update_job_progress

logger = logging.getLogger(__name__)


def enqueue_publish(video_id: int, privacy: str):
    """
    Enqueue a publish job with the configured timeout.

    Args:
        video_id: ID of the rendered video
        privacy: public | private | unlisted

    Returns:
        RQ Job instance
    """
    from ..queues import publish_queue

    return publish_queue.enqueue(
        publish_video,
        video_id,
        privacy,
        job_timeout=get_settings().publish_job_timeout_sec,
    )


def publish_video(
    video_id: int,
    privacy: str,
    settings: Optional[PipelineSettings] = None,
    store: Optional[ObjectStore] = None,
    client_factory: Optional[Callable[[PipelineSettings], YouTubeClient]] = None,
) -> dict:
    """
    RQ task to upload a rendered video to the platform.

    Args:
        video_id: ID of the video
        privacy: Privacy status requested for the upload

    Returns:
        dict with youtube_video_id, url, upload_status, processing_status

    Raises:
        ValueError: If the video or its rendered asset does not exist
        PipelineError: If the upload or processing fails (status = error)
    """
    settings = settings or get_settings()
    store = store or create_object_store(settings)
    if client_factory is None:
        client_factory = _default_client

    logger.info(f"Starting publish for video={video_id} privacy={privacy}")
    update_job_progress(0, "Starting upload")
    cancel = CancelToken.for_current_job()

    with get_db_session() as db:
        video = db.get(Video, video_id)
        if not video:
            raise ValueError(f"Video not found: {video_id}")
        rendered = assets_of_type(db, video_id, ASSET_RENDERED_VIDEO)
        if not rendered:
            raise ValueError(f"Video {video_id} has no rendered asset")
        asset = rendered[0]

        set_publish_status(video, PUBLISH_UPLOADING)
        db.commit()

        try:
            with client_factory(settings) as client:
                options = client.default_options(
                    title=video.title or video.short_title or f"Video {video_id}",
                    description=video.description or "",
                    privacy=privacy,
                )
                started_at = utcnow()
                total = store.object_size(asset.r2_key)
                with store.open_object(asset.r2_key) as stream:
                    session = client.upload_video(
                        stream,
                        total,
                        options,
                        content_type=asset.mime_type,
                        cancel=cancel,
                        progress_callback=lambda sent, size: update_job_progress(
                            int(sent / size * 80), f"Uploading: {sent * 100 // size}%"
                        ),
                    )

                info = _record_youtube_info(db, video, session.video_id, options, started_at)
                set_publish_status(video, PUBLISH_PROCESSING)
                db.commit()

                update_job_progress(85, "Waiting for platform processing")
                status = client.poll_processing_status(session.video_id, cancel=cancel)
                if not status.succeeded:
                    raise PipelineError(
                        f"Platform processing {status.upload_status}/{status.processing_status}"
                        + (f": {status.reason}" if status.reason else "")
                    )

                _upload_thumbnail(client, store, db, video_id, session.video_id)
                info.upload_completed_at = utcnow()
                info.updated_at = info.upload_completed_at
        except Exception as e:
            logger.error(f"Publish failed for video={video_id}: {e}", exc_info=not isinstance(e, PipelineError))
            set_publish_status(video, PUBLISH_ERROR, str(e))
            db.commit()
            raise

        set_publish_status(video, PUBLISH_UPLOADED)
        db.commit()

    update_job_progress(100, "Upload complete")
    logger.info(f"Publish complete for video={video_id}: {watch_url(session.video_id)}")
    return {
        "youtube_video_id": session.video_id,
        "url": watch_url(session.video_id),
        "upload_status": status.upload_status,
        "processing_status": status.processing_status,
        "degraded_acks": session.degraded_acks,
    }


def _default_client(settings: PipelineSettings) -> YouTubeClient:
    if not settings.platform_access_token:
        raise PipelineError("No platform access token configured")
    return YouTubeClient(settings.platform_access_token, settings)


def _record_youtube_info(db, video: Video, youtube_video_id: str, options, started_at) -> YouTubeInfo:
    info = db.query(YouTubeInfo).filter_by(video_id=video.id).first()
    if info is None:
        info = YouTubeInfo(video_id=video.id, created_at=started_at)
        db.add(info)
    info.youtube_video_id = youtube_video_id
    info.youtube_video_url = watch_url(youtube_video_id)
    info.title = options.title
    info.description = options.description
    info.privacy_status = options.privacy
    info.tags = json.dumps(options.tags, ensure_ascii=False)
    info.category_id = options.category_id
    info.made_for_kids = options.made_for_kids
    info.contains_synthetic_media = options.contains_synthetic_media
    info.not_paid_content = options.not_paid_content
    info.upload_started_at = started_at
    info.upload_completed_at = None
    info.updated_at = utcnow()
    return info


def _upload_thumbnail(client: YouTubeClient, store: ObjectStore, db, video_id: int, youtube_video_id: str) -> None:
    """Set the custom thumbnail when one exists; failures only warn."""
    thumbnails = assets_of_type(db, video_id, ASSET_THUMBNAIL)
    if not thumbnails:
        return
    thumbnail = thumbnails[0]
    try:
        with store.open_object(thumbnail.r2_key) as stream:
            data = stream.read()
        client.upload_thumbnail(youtube_video_id, data, content_type=thumbnail.mime_type)
    except (PipelineError, OSError) as e:
        logger.warning(f"Thumbnail upload failed for video={video_id}: {e}")
