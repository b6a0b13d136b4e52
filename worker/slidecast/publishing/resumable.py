"""
Resumable Upload Protocol

Sends a large file to a resumable upload session in sequential chunks:

    SessionCreated -> Uploading(bytes_acknowledged) -> Uploaded | Failed

Per chunk:
- non-final chunks are a multiple of 256 KiB
- Content-Range: bytes {first}-{last}/{total}
- 308 with Range: bytes=0-N means the server holds N+1 bytes; the next
  chunk starts there, never at "what we sent"
- 308 without Range is the degraded path: the whole chunk is assumed
  received, logged and counted on the session
- 200/201 carries the durable video id and ends the session
- any other status fails the session

Transport errors (timeouts, resets) are retried a bounded number of times;
before resending, the session is queried with Content-Range: bytes */total
so the resend starts at the server's offset.
"""

import logging
import re
import time
from typing import BinaryIO, Callable, Dict, Optional

import httpx

from ..cancellation import CancelToken
from ..config import PLATFORM_CHUNK_GRANULARITY, setting_default
from ..errors import ProtocolError, TransientInfrastructureError
from ..models import UploadSession, UploadState
from ..retry import backoff_delays

logger = logging.getLogger(__name__)

RANGE_PATTERN = re.compile(r"bytes=0-(\d+)")
RESUME_INCOMPLETE = 308

ProgressCallback = Callable[[int, int], None]


def parse_range_header(value: Optional[str]) -> Optional[int]:
    """
    Next offset from a Range acknowledgement header.

    "bytes=0-1048575" -> 1048576. Returns None when the header is absent or
    malformed.
    """
    if not value:
        return None
    match = RANGE_PATTERN.search(value)
    if not match:
        return None
    return int(match.group(1)) + 1


def content_range(first: int, last: int, total: int) -> str:
    return f"bytes {first}-{last}/{total}"


class ResumableUploader:
    """Chunked resumable upload over an httpx client."""

    def __init__(
        self,
        client: httpx.Client,
        chunk_size: int = setting_default("platform_chunk_size"),
        chunk_timeout_sec: float = setting_default("platform_chunk_timeout_sec"),
        chunk_attempts: int = setting_default("platform_chunk_attempts"),
        retry_base_delay_sec: float = setting_default("platform_chunk_retry_base_delay_sec"),
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if chunk_size <= 0 or chunk_size % PLATFORM_CHUNK_GRANULARITY != 0:
            raise ValueError(
                f"chunk_size must be a positive multiple of {PLATFORM_CHUNK_GRANULARITY} bytes"
            )
        self.client = client
        self.chunk_size = chunk_size
        self.chunk_timeout_sec = chunk_timeout_sec
        self.chunk_attempts = chunk_attempts
        self.retry_base_delay_sec = retry_base_delay_sec
        self.sleep = sleep or time.sleep

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def create_session(
        self,
        url: str,
        metadata: Dict,
        total_bytes: int,
        content_type: str = "video/*",
        params: Optional[Dict[str, str]] = None,
    ) -> UploadSession:
        """
        Open a resumable session.

        Raises:
            ProtocolError: Non-2xx status or no Location header
            TransientInfrastructureError: Transport failure
        """
        if total_bytes <= 0:
            raise ValueError("total_bytes must be positive")
        try:
            response = self.client.post(
                url,
                params=params,
                json=metadata,
                headers={
                    "X-Upload-Content-Length": str(total_bytes),
                    "X-Upload-Content-Type": content_type,
                },
                timeout=self.chunk_timeout_sec,
            )
        except httpx.TransportError as e:
            raise TransientInfrastructureError(f"Upload session creation failed: {e}") from e

        if not response.is_success:
            raise ProtocolError(
                "Failed to create upload session", status_code=response.status_code, body=response.text
            )
        upload_url = response.headers.get("Location")
        if not upload_url:
            raise ProtocolError("No upload URL in response", status_code=response.status_code)

        logger.info(f"Upload session created for {total_bytes} bytes")
        return UploadSession(upload_url=upload_url, total_bytes=total_bytes)

    def abort(self, session: UploadSession) -> None:
        """Best-effort cancel of a session on the server."""
        session.state = UploadState.FAILED
        try:
            self.client.delete(session.upload_url, timeout=self.chunk_timeout_sec)
        except httpx.HTTPError as e:
            logger.warning(f"Could not cancel upload session: {e}")

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(
        self,
        session: UploadSession,
        stream: BinaryIO,
        cancel: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UploadSession:
        """
        Send the stream from session.bytes_acknowledged to the end.

        The stream must be seekable; it is positioned at the acknowledged
        offset before every chunk.

        Returns:
            The session, state UPLOADED with video_id set

        Raises:
            ProtocolError: Unexpected status, regressing acknowledgement or missing id
            TransientInfrastructureError: Chunk retries exhausted
            PipelineCancelled: Cancellation requested
        """
        session.state = UploadState.UPLOADING
        delays = backoff_delays(self.chunk_attempts, self.retry_base_delay_sec)
        failures = 0

        try:
            while session.state == UploadState.UPLOADING:
                if cancel is not None:
                    cancel.raise_if_cancelled("platform upload")

                offset = session.bytes_acknowledged
                if offset >= session.total_bytes:
                    self._handle_status_query(session, self.query_status(session))
                    if session.state == UploadState.UPLOADING:
                        raise ProtocolError("Server holds every byte but did not finish the upload")
                    break

                end = min(offset + self.chunk_size, session.total_bytes)
                stream.seek(offset)
                data = stream.read(end - offset)
                if len(data) != end - offset:
                    raise ProtocolError(
                        f"Source ended early at offset {offset}: read {len(data)} of {end - offset} bytes"
                    )

                try:
                    response = self._put(
                        session.upload_url,
                        data,
                        {"Content-Range": content_range(offset, end - 1, session.total_bytes)},
                    )
                except TransientInfrastructureError as e:
                    failures += 1
                    if failures >= self.chunk_attempts:
                        raise
                    delay = delays[failures - 1]
                    logger.warning(
                        f"Chunk at offset {offset} failed ({failures}/{self.chunk_attempts}): {e}; "
                        f"querying session in {delay:.1f}s"
                    )
                    self.sleep(delay)
                    self._handle_status_query(session, self.query_status(session))
                    continue

                failures = 0
                self._handle_chunk_response(session, response, sent_end=end)
                logger.debug(
                    f"Upload progress {session.bytes_acknowledged}/{session.total_bytes} "
                    f"({session.bytes_acknowledged * 100 // session.total_bytes}%)"
                )
                if progress_callback:
                    progress_callback(session.bytes_acknowledged, session.total_bytes)
        except BaseException as e:
            logger.error(f"Upload failed at {session.bytes_acknowledged}/{session.total_bytes}: {e}")
            self.abort(session)
            raise

        logger.info(
            f"Upload complete: {session.total_bytes} bytes, video id {session.video_id}, "
            f"degraded acks {session.degraded_acks}"
        )
        return session

    def query_status(self, session: UploadSession) -> httpx.Response:
        """Ask the server how many bytes of the session it holds."""
        return self._put(
            session.upload_url, b"", {"Content-Range": f"bytes */{session.total_bytes}"}
        )

    def _put(self, url: str, data: bytes, headers: Dict[str, str]) -> httpx.Response:
        try:
            return self.client.put(
                url,
                content=data,
                headers={"Content-Length": str(len(data)), **headers},
                timeout=self.chunk_timeout_sec,
            )
        except httpx.TransportError as e:
            raise TransientInfrastructureError(f"Chunk transfer failed: {e}") from e

    def _handle_chunk_response(self, session: UploadSession, response: httpx.Response, sent_end: int) -> None:
        if response.status_code in (200, 201):
            self._complete(session, response)
            return
        if response.status_code != RESUME_INCOMPLETE:
            raise ProtocolError("Upload failed", status_code=response.status_code, body=response.text)

        acknowledged = parse_range_header(response.headers.get("Range"))
        if acknowledged is None:
            acknowledged = sent_end
            session.degraded_acks += 1
            logger.warning(
                f"Upload continue response without Range header; degraded ack assumes "
                f"{sent_end}/{session.total_bytes} bytes received"
            )
        self._advance(session, acknowledged)

    def _handle_status_query(self, session: UploadSession, response: httpx.Response) -> None:
        if response.status_code in (200, 201):
            self._complete(session, response)
            return
        if response.status_code != RESUME_INCOMPLETE:
            raise ProtocolError(
                "Upload status query failed", status_code=response.status_code, body=response.text
            )
        acknowledged = parse_range_header(response.headers.get("Range"))
        if acknowledged is not None:
            self._advance(session, acknowledged)

    def _advance(self, session: UploadSession, acknowledged: int) -> None:
        if acknowledged < session.bytes_acknowledged:
            raise ProtocolError(
                f"Server acknowledgement regressed from {session.bytes_acknowledged} to {acknowledged}"
            )
        if acknowledged > session.total_bytes:
            raise ProtocolError(
                f"Server acknowledged {acknowledged} bytes of {session.total_bytes}"
            )
        session.bytes_acknowledged = acknowledged
        if acknowledged == session.total_bytes:
            logger.debug("All bytes acknowledged; awaiting completion response")

    def _complete(self, session: UploadSession, response: httpx.Response) -> None:
        try:
            body = response.json()
        except ValueError:
            raise ProtocolError("Completion response is not JSON", status_code=response.status_code, body=response.text)
        video_id = body.get("id") if isinstance(body, dict) else None
        if not video_id:
            raise ProtocolError("Completion response has no id", status_code=response.status_code, body=response.text)
        session.video_id = video_id
        session.bytes_acknowledged = session.total_bytes
        session.response = body
        session.state = UploadState.UPLOADED
