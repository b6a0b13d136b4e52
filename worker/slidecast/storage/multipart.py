"""
Multipart Storage Transport

Uploads a local file as a sequence of fixed-size parts:

    Initiated -> PartUploading(n) -> Completed | Aborted

- at most one part is held in memory
- part numbers start at 1 and increase by one
- each part is retried on transient failures
- any part that still fails, or a cancellation, aborts the whole session;
  a gap in part numbers would invalidate the object
"""

import logging
import math
import os
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..cancellation import CancelToken
from ..config import PipelineSettings, setting_default
from ..errors import TransientInfrastructureError
from ..models import MultipartSession, MultipartState, UploadedPart
from ..retry import retry_with_backoff
from .base import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_PART_SIZE = setting_default("storage_part_size")


@dataclass(frozen=True)
class PartSpec:
    part_number: int
    offset: int
    size: int


def plan_parts(total_bytes: int, part_size: int = DEFAULT_PART_SIZE) -> List[PartSpec]:
    """
    Split total_bytes into ceil(total/part_size) contiguous parts.

    An empty file still gets one (empty) part so the session can complete.
    """
    if part_size <= 0:
        raise ValueError("part_size must be positive")
    if total_bytes < 0:
        raise ValueError("total_bytes must not be negative")
    if total_bytes == 0:
        return [PartSpec(part_number=1, offset=0, size=0)]
    count = math.ceil(total_bytes / part_size)
    return [
        PartSpec(
            part_number=n + 1,
            offset=n * part_size,
            size=min(part_size, total_bytes - n * part_size),
        )
        for n in range(count)
    ]


class MultipartUploader:
    """Drives one multipart session per uploaded file."""

    def __init__(
        self,
        store: ObjectStore,
        part_size: int = DEFAULT_PART_SIZE,
        part_attempts: int = setting_default("storage_part_attempts"),
        retry_base_delay_sec: float = setting_default("storage_part_retry_base_delay_sec"),
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.store = store
        self.part_size = part_size
        self.part_attempts = part_attempts
        self.retry_base_delay_sec = retry_base_delay_sec
        self.sleep = sleep

    @classmethod
    def from_settings(cls, store: ObjectStore, settings: PipelineSettings) -> "MultipartUploader":
        return cls(
            store,
            part_size=settings.storage_part_size,
            part_attempts=settings.storage_part_attempts,
            retry_base_delay_sec=settings.storage_part_retry_base_delay_sec,
        )

    def upload_file(
        self,
        path: str,
        key: str,
        content_type: str = "application/octet-stream",
        cancel: Optional[CancelToken] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> MultipartSession:
        """
        Upload a local file under key.

        Args:
            path: Local file to upload
            key: Destination object key
            content_type: MIME type stored with the object
            cancel: Checked before every part
            progress_callback: Called with (bytes_sent, total_bytes) after each part

        Returns:
            The completed MultipartSession

        Raises:
            TransientInfrastructureError: A part kept failing (session aborted)
            ProtocolError: The store rejected a call (session aborted)
            PipelineCancelled: Cancellation requested (session aborted)
        """
        total = os.path.getsize(path)
        parts = plan_parts(total, self.part_size)
        upload_id = self.store.create_multipart_upload(key, content_type)
        session = MultipartSession(key=key, upload_id=upload_id)
        logger.info(
            f"Multipart upload {upload_id} started for {key}: {total} bytes in {len(parts)} part(s)"
        )

        try:
            sent = 0
            with open(path, "rb") as source:
                for part in parts:
                    if cancel is not None:
                        cancel.raise_if_cancelled(f"upload of part {part.part_number}")
                    session.state = MultipartState.PART_UPLOADING
                    session.current_part = part.part_number
                    source.seek(part.offset)
                    data = source.read(part.size)
                    if len(data) != part.size:
                        raise TransientInfrastructureError(
                            f"Short read of part {part.part_number}: {len(data)} of {part.size} bytes"
                        )
                    checksum = self._upload_part(session, part.part_number, data)
                    session.record_part(UploadedPart(part.part_number, checksum, part.size))
                    sent += part.size
                    del data
                    logger.debug(f"Part {part.part_number}/{len(parts)} of {key} uploaded")
                    if progress_callback:
                        progress_callback(sent, total)

            self.store.complete_multipart_upload(key, upload_id, list(session.parts))
        except BaseException as e:
            self._abort(session, e)
            raise

        session.state = MultipartState.COMPLETED
        session.current_part = None
        logger.info(f"Multipart upload {upload_id} completed: {key}")
        return session

    def _upload_part(self, session: MultipartSession, part_number: int, data: bytes) -> str:
        kwargs = {"sleep": self.sleep} if self.sleep is not None else {}
        return retry_with_backoff(
            lambda: self.store.upload_part(session.key, session.upload_id, part_number, data),
            attempts=self.part_attempts,
            base_delay=self.retry_base_delay_sec,
            description=f"Upload of part {part_number} of {session.key}",
            **kwargs,
        )

    def _abort(self, session: MultipartSession, cause: BaseException) -> None:
        logger.warning(f"Aborting multipart upload {session.upload_id} for {session.key}: {cause}")
        try:
            self.store.abort_multipart_upload(session.key, session.upload_id)
        except Exception as e:
            logger.warning(f"Abort of multipart upload {session.upload_id} failed: {e}")
        session.state = MultipartState.ABORTED
