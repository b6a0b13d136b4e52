"""
YouTube Data API client.

Wraps the resumable upload with the video metadata, plus the calls made
after upload:
- processing status lookup and polling
- custom thumbnail upload
"""

import logging
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Dict, List, Optional

import httpx

from ..cancellation import CancelToken
from ..config import PipelineSettings
from ..errors import ProtocolError, TransientInfrastructureError
from ..models import UploadSession
from .resumable import ProgressCallback, ResumableUploader

logger = logging.getLogger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

TERMINAL_UPLOAD_STATUSES = {"processed", "rejected", "failed"}
TERMINAL_PROCESSING_STATUSES = {"succeeded", "failed"}


@dataclass
class PublishOptions:
    """Snippet/status fields sent when the upload session is created."""

    title: str
    description: str = ""
    privacy: str = "private"
    tags: List[str] = field(default_factory=list)
    category_id: str = "25"
    default_language: str = "ja"
    made_for_kids: bool = False
    contains_synthetic_media: bool = True
    not_paid_content: bool = True

    def to_metadata(self) -> Dict:
        return {
            "snippet": {
                "title": self.title[:100],
                "description": self.description[:5000],
                "tags": self.tags,
                "categoryId": self.category_id,
                "defaultLanguage": self.default_language,
                "defaultAudioLanguage": self.default_language,
            },
            "status": {
                "privacyStatus": self.privacy,
                "selfDeclaredMadeForKids": self.made_for_kids,
                "madeForKids": self.made_for_kids,
                "containsSyntheticMedia": self.contains_synthetic_media,
                "notPaidContent": self.not_paid_content,
            },
        }


@dataclass
class VideoStatus:
    upload_status: Optional[str]
    processing_status: Optional[str]
    privacy_status: Optional[str]
    failure_reason: Optional[str] = None
    rejection_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return (
            self.upload_status in TERMINAL_UPLOAD_STATUSES
            or self.processing_status in TERMINAL_PROCESSING_STATUSES
        )

    @property
    def succeeded(self) -> bool:
        return self.upload_status == "processed" or self.processing_status == "succeeded"

    @property
    def reason(self) -> Optional[str]:
        return self.failure_reason or self.rejection_reason


def watch_url(video_id: str) -> str:
    return WATCH_URL.format(video_id=video_id)


class YouTubeClient:
    """Authenticated client for one publish job."""

    def __init__(
        self,
        access_token: str,
        settings: PipelineSettings,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.client = client or httpx.Client()
        self.client.headers["Authorization"] = f"Bearer {access_token}"
        self.sleep = sleep
        self.clock = clock
        self.uploader = ResumableUploader(
            self.client,
            chunk_size=settings.platform_chunk_size,
            chunk_timeout_sec=settings.platform_chunk_timeout_sec,
            chunk_attempts=settings.platform_chunk_attempts,
            retry_base_delay_sec=settings.platform_chunk_retry_base_delay_sec,
            sleep=sleep,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "YouTubeClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def default_options(self, title: str, description: str, privacy: str) -> PublishOptions:
        return PublishOptions(
            title=title,
            description=description,
            privacy=privacy,
            tags=self.settings.tags_list,
            category_id=self.settings.platform_category_id,
            default_language=self.settings.platform_language,
        )

    def create_upload_session(
        self, options: PublishOptions, total_bytes: int, content_type: str
    ) -> UploadSession:
        logger.info(
            f"Creating upload session: title={options.title!r}, privacy={options.privacy}, "
            f"tags={len(options.tags)}"
        )
        return self.uploader.create_session(
            self.settings.platform_upload_url,
            options.to_metadata(),
            total_bytes,
            content_type=content_type,
            params={"uploadType": "resumable", "part": "snippet,status,contentDetails"},
        )

    def upload_video(
        self,
        stream: BinaryIO,
        total_bytes: int,
        options: PublishOptions,
        content_type: str = "video/*",
        cancel: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UploadSession:
        """Create a session and stream the whole file through it."""
        session = self.create_upload_session(options, total_bytes, content_type)
        return self.uploader.upload(session, stream, cancel=cancel, progress_callback=progress_callback)

    def get_video_status(self, video_id: str) -> VideoStatus:
        """
        Fetch upload/processing status of a video.

        Raises:
            ProtocolError: Non-2xx status or video not found
        """
        try:
            response = self.client.get(
                f"{self.settings.platform_api_url}/videos",
                params={"part": "status,contentDetails", "id": video_id},
                timeout=self.settings.platform_chunk_timeout_sec,
            )
        except httpx.TransportError as e:
            raise TransientInfrastructureError(f"Status lookup failed: {e}") from e
        if not response.is_success:
            raise ProtocolError(
                "Failed to fetch video status", status_code=response.status_code, body=response.text
            )
        items = response.json().get("items") or []
        if not items:
            raise ProtocolError(f"Video not found: {video_id}", status_code=response.status_code)
        status = items[0].get("status", {})
        return VideoStatus(
            upload_status=status.get("uploadStatus"),
            processing_status=status.get("processingStatus"),
            privacy_status=status.get("privacyStatus"),
            failure_reason=status.get("failureReason"),
            rejection_reason=status.get("rejectionReason"),
        )

    def poll_processing_status(
        self,
        video_id: str,
        on_update: Optional[Callable[[VideoStatus], None]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> VideoStatus:
        """
        Poll at a fixed interval until the status is terminal.

        Transient lookup failures are logged and polled through.

        Raises:
            TransientInfrastructureError: Processing did not finish within the ceiling
        """
        interval = self.settings.processing_poll_interval_sec
        deadline = self.clock() + self.settings.processing_max_wait_sec
        logger.info(f"Polling processing status of {video_id} every {interval}s")

        while self.clock() < deadline:
            if cancel is not None:
                cancel.raise_if_cancelled("processing poll")
            try:
                status = self.get_video_status(video_id)
            except TransientInfrastructureError as e:
                logger.warning(f"Status lookup for {video_id} failed, retrying: {e}")
            else:
                if on_update:
                    on_update(status)
                logger.debug(
                    f"Processing status {video_id}: upload={status.upload_status}, "
                    f"processing={status.processing_status}"
                )
                if status.is_terminal:
                    logger.info(
                        f"Video processing finished: {video_id} upload={status.upload_status} "
                        f"processing={status.processing_status}"
                    )
                    return status
            self.sleep(interval)

        logger.warning(f"Video processing timeout for {video_id}")
        raise TransientInfrastructureError(f"Video processing timeout for {video_id}")

    def upload_thumbnail(self, video_id: str, data: bytes, content_type: str = "image/png") -> None:
        """
        Set a custom thumbnail.

        Raises:
            ProtocolError: Non-2xx status
        """
        url = self.settings.platform_upload_url.replace("/videos", "/thumbnails/set")
        try:
            response = self.client.post(
                url,
                params={"videoId": video_id},
                content=data,
                headers={"Content-Type": content_type},
                timeout=self.settings.platform_chunk_timeout_sec,
            )
        except httpx.TransportError as e:
            raise TransientInfrastructureError(f"Thumbnail upload failed: {e}") from e
        if not response.is_success:
            raise ProtocolError(
                "Thumbnail upload failed", status_code=response.status_code, body=response.text
            )
        logger.info(f"Thumbnail set for {video_id} ({len(data)} bytes)")
