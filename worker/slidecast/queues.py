"""
Slidecast Queue Definitions

Two queues in priority order:
- slidecast:render (high) - Compose, encode and store videos; CPU bound
- slidecast:publish (low) - Upload stored videos to the platform; I/O bound

Workers may listen on both or be split per queue (see slidecast.main).
"""

import os
from typing import Any, Dict, Iterable, List, Optional

from redis import Redis
from rq import Queue
from rq.job import Job

from .cancellation import is_cancel_requested

RENDER_QUEUE = "slidecast:render"
PUBLISH_QUEUE = "slidecast:publish"

# Short names accepted on the command line
QUEUE_NAMES = {
    "render": RENDER_QUEUE,
    "publish": PUBLISH_QUEUE,
}

# All queues in priority order for worker initialization
ALL_QUEUES = [RENDER_QUEUE, PUBLISH_QUEUE]

_redis_connection: Optional[Redis] = None


def get_redis_connection() -> Redis:
    """
    Get or create the Redis connection named by REDIS_URL.

    Returns:
        Redis: A Redis connection instance
    """
    global _redis_connection

    if _redis_connection is None:
        redis_url = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
        _redis_connection = Redis.from_url(redis_url, decode_responses=False)

    return _redis_connection


def resolve_queue_names(selected: Optional[Iterable[str]] = None) -> List[str]:
    """
    Full queue names for short or full names, in priority order.

    None or an empty selection means every queue.

    Raises:
        ValueError: On an unknown queue name
    """
    if not selected:
        return list(ALL_QUEUES)
    wanted = set()
    for name in selected:
        full = QUEUE_NAMES.get(name, name)
        if full not in ALL_QUEUES:
            raise ValueError(f"Unknown queue: {name}")
        wanted.add(full)
    return [name for name in ALL_QUEUES if name in wanted]


class _LazyQueue:
    """Queue that connects to Redis on first use."""

    def __init__(self, name: str):
        self._name = name
        self._queue: Optional[Queue] = None

    @property
    def name(self) -> str:
        return self._name

    def _get_queue(self) -> Queue:
        if self._queue is None:
            self._queue = Queue(self._name, connection=get_redis_connection())
        return self._queue

    def __getattr__(self, name):
        return getattr(self._get_queue(), name)

    def enqueue(self, *args, **kwargs):
        return self._get_queue().enqueue(*args, **kwargs)


render_queue = _LazyQueue(RENDER_QUEUE)
publish_queue = _LazyQueue(PUBLISH_QUEUE)


def get_job_progress(job_id: str, connection: Optional[Redis] = None) -> Dict[str, Any]:
    """
    Status and progress meta of a render or publish job.

    Returns:
        dict with job_id, status, progress_percent, progress_message,
        cancel_requested and error (the failure text of a failed job)
    """
    connection = connection or get_redis_connection()
    job = Job.fetch(job_id, connection=connection)
    status = job.get_status()
    return {
        "job_id": job.id,
        "status": getattr(status, "value", status),
        "progress_percent": job.meta.get("progress_percent", 0),
        "progress_message": job.meta.get("progress_message", ""),
        "cancel_requested": is_cancel_requested(job.id, connection),
        "error": job.exc_info if job.is_failed else None,
    }
