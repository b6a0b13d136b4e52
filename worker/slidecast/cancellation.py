"""
Cooperative cancellation.

A CancelToken is checked at stage boundaries and between chunks. It trips
when cancel() is called locally or when its checker reports a request.

Requests for RQ jobs live in their own Redis key (slidecast:cancel:<job_id>)
rather than in job meta: the running job rewrites its meta on every progress
update and would overwrite a flag set from outside.
"""

import logging
import threading
import time
from typing import Callable, Optional

from rq import get_current_job

from .errors import PipelineCancelled

logger = logging.getLogger(__name__)

CANCEL_KEY_PREFIX = "slidecast:cancel:"

# Requests outlive any job timeout, then expire on their own
CANCEL_KEY_TTL_SEC = 24 * 60 * 60


def cancel_key(job_id: str) -> str:
    return f"{CANCEL_KEY_PREFIX}{job_id}"


def is_cancel_requested(job_id: str, connection) -> bool:
    """Whether a cancel request is pending for an RQ job."""
    return bool(connection.exists(cancel_key(job_id)))


class CancelToken:
    """Cancellation flag for one render or publish invocation."""

    def __init__(
        self,
        checker: Optional[Callable[[], bool]] = None,
        check_interval_sec: float = 2.0,
    ):
        self._event = threading.Event()
        self._checker = checker
        self._check_interval_sec = check_interval_sec
        self._last_check = 0.0

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._checker is None:
            return False
        now = time.monotonic()
        if now - self._last_check < self._check_interval_sec:
            return False
        self._last_check = now
        try:
            if self._checker():
                self._event.set()
        except Exception as e:
            logger.warning(f"Cancellation check failed: {e}")
        return self._event.is_set()

    def raise_if_cancelled(self, where: str = "") -> None:
        """Raise PipelineCancelled if cancellation was requested."""
        if self.cancelled:
            suffix = f" during {where}" if where else ""
            raise PipelineCancelled(f"Cancelled{suffix}")

    @classmethod
    def for_current_job(cls) -> "CancelToken":
        """Token that polls Redis for a cancel request against the running RQ job."""
        job = get_current_job()
        if job is None:
            return cls()

        def checker() -> bool:
            return is_cancel_requested(job.id, job.connection)

        return cls(checker=checker)


def request_cancel(job_id: str, connection=None) -> None:
    """
    Ask a running render/publish job to stop at its next checkpoint.

    Args:
        job_id: RQ job id
        connection: Redis connection (defaults to the worker connection)
    """
    if connection is None:
        from .queues import get_redis_connection

        connection = get_redis_connection()
    connection.set(cancel_key(job_id), 1, ex=CANCEL_KEY_TTL_SEC)
    logger.info(f"Cancellation requested for job {job_id}")
