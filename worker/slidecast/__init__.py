"""
Slidecast Worker Package

RQ-based worker that turns narrated slide decks into published videos:
- Video rendering (validate, plan, render in a sandbox, store)
- Video publishing (resumable platform upload, processing poll)
"""

from .queues import (
    get_redis_connection,
    render_queue,
    publish_queue,
    ALL_QUEUES,
)

# Import tasks for convenient access
from .tasks import (
    render_video,
    publish_video,
    enqueue_render,
    enqueue_publish,
)

__all__ = [
    # Queues
    "get_redis_connection",
    "render_queue",
    "publish_queue",
    "ALL_QUEUES",
    # Tasks
    "render_video",
    "publish_video",
    # Enqueue helpers
    "enqueue_render",
    "enqueue_publish",
]
