"""
Video Records

Local model definitions for the tables the worker reads and updates, plus
the render and publish status machines:

    render:  pending -> rendering -> rendered | error
    publish: pending -> uploading -> processing -> uploaded | error
             pending -> blocked

error is reachable from every non-terminal state; a re-trigger moves a
finished video back to pending/rendering.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

from .errors import PipelineError

logger = logging.getLogger(__name__)

# ============================================================================
# Status Machines
# ============================================================================

RENDER_PENDING = "pending"
RENDER_RENDERING = "rendering"
RENDER_RENDERED = "rendered"
RENDER_ERROR = "error"

RENDER_TRANSITIONS = {
    RENDER_PENDING: {RENDER_RENDERING, RENDER_ERROR},
    # rendering -> rendering: a job re-delivered after a worker died mid-render
    RENDER_RENDERING: {RENDER_RENDERING, RENDER_RENDERED, RENDER_ERROR},
    RENDER_RENDERED: {RENDER_PENDING, RENDER_RENDERING},
    RENDER_ERROR: {RENDER_PENDING, RENDER_RENDERING},
}

PUBLISH_PENDING = "pending"
PUBLISH_UPLOADING = "uploading"
PUBLISH_PROCESSING = "processing"
PUBLISH_UPLOADED = "uploaded"
PUBLISH_ERROR = "error"
PUBLISH_BLOCKED = "blocked"

PUBLISH_TRANSITIONS = {
    PUBLISH_PENDING: {PUBLISH_UPLOADING, PUBLISH_BLOCKED, PUBLISH_ERROR},
    # uploading/processing -> pending: a re-render supersedes the upload in flight
    PUBLISH_UPLOADING: {PUBLISH_PROCESSING, PUBLISH_ERROR, PUBLISH_PENDING},
    PUBLISH_PROCESSING: {PUBLISH_UPLOADED, PUBLISH_ERROR, PUBLISH_PENDING},
    PUBLISH_UPLOADED: {PUBLISH_PENDING},
    PUBLISH_ERROR: {PUBLISH_PENDING, PUBLISH_UPLOADING},
    PUBLISH_BLOCKED: {PUBLISH_PENDING},
}

ASSET_SLIDE_IMAGE = "slide_image"
ASSET_SLIDE_AUDIO = "slide_audio"
ASSET_RENDERED_VIDEO = "rendered_video"
ASSET_THUMBNAIL = "thumbnail_image"

# Status messages are stored in full but kept to a sane size
MAX_ERROR_CHARS = 2000


class InvalidTransition(PipelineError):
    """Raised when a status change is not allowed by the status machine."""


# ============================================================================
# Local Model Definitions
# ============================================================================

Base = declarative_base()


class Video(Base):
    """Local model definition for Video."""

    __tablename__ = "videos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_type = Column(String(10), nullable=False, default="long")
    short_title = Column(String(200), nullable=True)
    title = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    article_date = Column(Date, nullable=True)
    render_status = Column(String(20), nullable=False, default=RENDER_PENDING)
    render_error = Column(Text, nullable=True)
    render_started_at = Column(DateTime, nullable=True)
    render_completed_at = Column(DateTime, nullable=True)
    youtube_upload_status = Column(String(20), nullable=False, default=PUBLISH_PENDING)
    youtube_upload_error = Column(Text, nullable=True)
    policy_overall_status = Column(String(20), nullable=False, default="PENDING")
    policy_block_reasons = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)


class VideoAsset(Base):
    """Local model definition for VideoAsset."""

    __tablename__ = "video_assets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False)
    asset_type = Column(String(30), nullable=False)
    asset_index = Column(Integer, nullable=False, default=0)
    r2_key = Column(String(500), nullable=False)
    mime_type = Column(String(50), nullable=False)
    file_size = Column(BigInteger, nullable=True)
    asset_metadata = Column("metadata", JSON, nullable=True)
    public_url = Column(String(1000), nullable=True)
    created_at = Column(DateTime, nullable=True)

    @property
    def meta(self) -> Dict[str, Any]:
        """Metadata as a dict whether stored as JSON or legacy text."""
        value = self.asset_metadata
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return {}
        return value if isinstance(value, dict) else {}


class YouTubeInfo(Base):
    """Local model definition for YouTubeInfo."""

    __tablename__ = "youtube_info"

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, unique=True)
    youtube_video_id = Column(String(50), nullable=False)
    youtube_video_url = Column(String(200), nullable=False)
    title = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    privacy_status = Column(String(20), nullable=False, default="private")
    tags = Column(Text, nullable=True)
    category_id = Column(String(10), nullable=False, default="25")
    made_for_kids = Column(Boolean, nullable=False, default=False)
    contains_synthetic_media = Column(Boolean, nullable=False, default=True)
    not_paid_content = Column(Boolean, nullable=False, default=True)
    upload_started_at = Column(DateTime, nullable=True)
    upload_completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)


# ============================================================================
# Transitions
# ============================================================================


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _check(machine: Dict[str, set], label: str, current: Optional[str], target: str) -> None:
    current = current or "pending"
    if target not in machine.get(current, set()):
        raise InvalidTransition(f"{label} status cannot move from {current!r} to {target!r}")


def set_render_status(video: Video, status: str, error: Optional[str] = None) -> None:
    """
    Move a video's render status, enforcing the render status machine.

    Raises:
        InvalidTransition: If the move is not allowed
    """
    _check(RENDER_TRANSITIONS, "Render", video.render_status, status)
    now = utcnow()
    video.render_status = status
    if status == RENDER_RENDERING:
        video.render_started_at = now
        video.render_completed_at = None
        video.render_error = None
    elif status == RENDER_RENDERED:
        video.render_completed_at = now
        video.render_error = None
    elif status == RENDER_ERROR:
        video.render_completed_at = now
        video.render_error = (error or "Unknown render error")[:MAX_ERROR_CHARS]
    elif status == RENDER_PENDING:
        video.render_error = None
    video.updated_at = now
    logger.info(f"Video {video.id} render status -> {status}")


def set_publish_status(video: Video, status: str, error: Optional[str] = None) -> None:
    """
    Move a video's publish status, enforcing the publish status machine.

    Raises:
        InvalidTransition: If the move is not allowed
    """
    _check(PUBLISH_TRANSITIONS, "Publish", video.youtube_upload_status, status)
    video.youtube_upload_status = status
    if status in (PUBLISH_ERROR, PUBLISH_BLOCKED):
        video.youtube_upload_error = (error or status)[:MAX_ERROR_CHARS]
    else:
        video.youtube_upload_error = None
    video.updated_at = utcnow()
    logger.info(f"Video {video.id} publish status -> {status}")


def assets_of_type(db, video_id: int, asset_type: str) -> List[VideoAsset]:
    return (
        db.query(VideoAsset)
        .filter_by(video_id=video_id, asset_type=asset_type)
        .order_by(VideoAsset.asset_index)
        .all()
    )


def replace_rendered_asset(
    db,
    video_id: int,
    storage_key: str,
    mime_type: str,
    size_bytes: int,
    metadata: Dict[str, Any],
    public_url: Optional[str],
) -> VideoAsset:
    """Record the rendered video, replacing any previous render."""
    for previous in assets_of_type(db, video_id, ASSET_RENDERED_VIDEO):
        db.delete(previous)
    asset = VideoAsset(
        video_id=video_id,
        asset_type=ASSET_RENDERED_VIDEO,
        asset_index=0,
        r2_key=storage_key,
        mime_type=mime_type,
        file_size=size_bytes,
        asset_metadata=metadata,
        public_url=public_url,
        created_at=utcnow(),
    )
    db.add(asset)
    return asset
