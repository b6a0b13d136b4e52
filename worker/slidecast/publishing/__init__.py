"""
Slidecast publishing: resumable platform uploads.
"""

from .privacy import resolve_upload_privacy
from .resumable import ResumableUploader, content_range, parse_range_header
from .youtube import PublishOptions, VideoStatus, YouTubeClient, watch_url

__all__ = [
    "resolve_upload_privacy",
    "ResumableUploader",
    "content_range",
    "parse_range_header",
    "PublishOptions",
    "VideoStatus",
    "YouTubeClient",
    "watch_url",
]
