"""
Unit tests for the YouTube Data API client.
"""

import io
import json

import httpx
import pytest

from slidecast.errors import ProtocolError, TransientInfrastructureError
from slidecast.publishing import PublishOptions, VideoStatus, YouTubeClient, watch_url

SESSION_URL = "https://www.googleapis.com/upload/youtube/v3/videos?upload_id=xyz"


class FakePlatform:
    """Upload, videos.list and thumbnails.set endpoints."""

    def __init__(self, statuses=None):
        self.statuses = list(statuses or [])
        self.requests = []
        self.received = bytearray()
        self.thumbnail_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path.endswith("/thumbnails/set"):
            return httpx.Response(self.thumbnail_status, json={"items": []})
        if request.method == "POST":
            return httpx.Response(200, headers={"Location": SESSION_URL})
        if request.method == "PUT":
            header = request.headers["Content-Range"]
            first_last, total = header[len("bytes "):].split("/")
            last = int(first_last.split("-")[1])
            self.received.extend(request.content)
            if last + 1 == int(total):
                return httpx.Response(200, json={"id": "yt-42"})
            return httpx.Response(308, headers={"Range": f"bytes=0-{last}"})
        if request.method == "GET":
            status = self.statuses.pop(0)
            if isinstance(status, Exception):
                raise status
            items = [] if status is None else [{"id": "yt-42", "status": status}]
            return httpx.Response(200, json={"items": items})
        return httpx.Response(405)


class FakeClock:
    """Monotonic clock advanced by sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_client(settings, platform, clock):
    def _create(custom_settings=None):
        return YouTubeClient(
            "token-abc",
            custom_settings or settings,
            client=httpx.Client(transport=httpx.MockTransport(platform.handler)),
            sleep=clock.sleep,
            clock=clock,
        )

    return _create


class TestPublishOptions:
    """Tests for PublishOptions."""

    def test_metadata_shape(self):
        options = PublishOptions(title="t" * 150, description="d", privacy="unlisted", tags=["a", "b"])
        metadata = options.to_metadata()

        assert len(metadata["snippet"]["title"]) == 100
        assert metadata["snippet"]["tags"] == ["a", "b"]
        assert metadata["snippet"]["categoryId"] == "25"
        assert metadata["status"]["privacyStatus"] == "unlisted"
        assert metadata["status"]["containsSyntheticMedia"] is True
        assert metadata["status"]["selfDeclaredMadeForKids"] is False

    def test_default_options_use_settings(self, make_client):
        options = make_client().default_options("Title", "Body", "public")
        assert options.tags == ["日本", "ニュース", "Japan", "News"]
        assert options.default_language == "ja"
        assert options.privacy == "public"

    def test_watch_url(self):
        assert watch_url("abc") == "https://www.youtube.com/watch?v=abc"


class TestVideoStatus:
    """Tests for VideoStatus terminal/success rules."""

    def test_processed_is_terminal_success(self):
        status = VideoStatus("processed", "succeeded", "public")
        assert status.is_terminal and status.succeeded

    def test_uploaded_is_not_terminal(self):
        assert not VideoStatus("uploaded", "processing", "private").is_terminal

    def test_rejected_reports_reason(self):
        status = VideoStatus("rejected", None, "private", rejection_reason="duplicate")
        assert status.is_terminal
        assert not status.succeeded
        assert status.reason == "duplicate"


class TestUploadVideo:
    """Tests for YouTubeClient.upload_video."""

    def test_upload_sends_metadata_and_bytes(self, make_client, platform):
        payload = b"v" * (300 * 1024)
        client = make_client()
        options = client.default_options("News of the day", "Summary", "private")

        session = client.upload_video(io.BytesIO(payload), len(payload), options, content_type="video/mp4")

        assert session.video_id == "yt-42"
        assert bytes(platform.received) == payload
        create = platform.requests[0]
        assert create.headers["Authorization"] == "Bearer token-abc"
        assert create.url.params["uploadType"] == "resumable"
        assert json.loads(create.content)["snippet"]["title"] == "News of the day"
        assert len([r for r in platform.requests if r.method == "PUT"]) == 2


class TestProcessingStatus:
    """Tests for status lookup and polling."""

    def test_poll_until_processed(self, make_client, platform, clock):
        platform.statuses = [
            {"uploadStatus": "uploaded", "privacyStatus": "private"},
            {"uploadStatus": "processed", "privacyStatus": "private"},
        ]
        updates = []

        status = make_client().poll_processing_status("yt-42", on_update=updates.append)

        assert status.succeeded
        assert len(updates) == 2
        assert clock.sleeps == [0.01]
        lookup = platform.requests[0]
        assert lookup.url.path == "/youtube/v3/videos"
        assert lookup.url.params["id"] == "yt-42"

    def test_poll_returns_failure(self, make_client, platform):
        platform.statuses = [{"uploadStatus": "failed", "failureReason": "codec"}]

        status = make_client().poll_processing_status("yt-42")

        assert status.is_terminal
        assert not status.succeeded
        assert status.reason == "codec"

    def test_poll_through_transient_lookup_failure(self, make_client, platform):
        request = httpx.Request("GET", "https://www.googleapis.com/youtube/v3/videos")
        platform.statuses = [
            httpx.ConnectError("reset", request=request),
            {"uploadStatus": "processed"},
        ]
        assert make_client().poll_processing_status("yt-42").succeeded

    def test_poll_times_out(self, settings, make_client, platform, clock):
        short = settings.model_copy(update={"processing_poll_interval_sec": 1.0, "processing_max_wait_sec": 3.0})
        platform.statuses = [{"uploadStatus": "uploaded"}] * 10

        with pytest.raises(TransientInfrastructureError):
            make_client(short).poll_processing_status("yt-42")
        assert clock.sleeps == [1.0, 1.0, 1.0]

    def test_unknown_video(self, make_client, platform):
        platform.statuses = [None]
        with pytest.raises(ProtocolError):
            make_client().get_video_status("missing")


class TestThumbnail:
    """Tests for YouTubeClient.upload_thumbnail."""

    def test_thumbnail_posted(self, make_client, platform):
        make_client().upload_thumbnail("yt-42", b"\x89PNG", content_type="image/png")

        request = platform.requests[0]
        assert request.url.path == "/upload/youtube/v3/thumbnails/set"
        assert request.url.params["videoId"] == "yt-42"
        assert request.content == b"\x89PNG"

    def test_thumbnail_rejected(self, make_client, platform):
        platform.thumbnail_status = 403
        with pytest.raises(ProtocolError):
            make_client().upload_thumbnail("yt-42", b"\x89PNG")
