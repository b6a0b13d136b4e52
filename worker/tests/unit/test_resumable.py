"""
Unit tests for the resumable upload protocol.

A FakeUploadServer behind httpx.MockTransport plays the platform side:
it keeps the bytes it has received and acknowledges them with a Range
header, unless a scripted override answers a request instead.
"""

import io
import logging
import os

import httpx
import pytest

from slidecast.cancellation import CancelToken
from slidecast.errors import PipelineCancelled, ProtocolError, TransientInfrastructureError
from slidecast.models import UploadState
from slidecast.publishing import ResumableUploader, content_range, parse_range_header

CHUNK = 256 * 1024
TOTAL = 614400  # two full chunks and a 90112 byte tail
SESSION_URL = "https://upload.test/session/abc"
CREATE_URL = "https://upload.test/upload/videos"


class FakeUploadServer:
    """In-memory resumable upload endpoint."""

    def __init__(self, ack_range=True, video_id="vid-123"):
        self.ack_range = ack_range
        self.video_id = video_id
        self.received = bytearray()
        self.requests = []
        self.overrides = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            return httpx.Response(200, headers={"Location": SESSION_URL})
        if request.method == "DELETE":
            return httpx.Response(204)
        if self.overrides:
            override = self.overrides.pop(0)
            response = override(self, request)
            if response is not None:
                return response

        header = request.headers["Content-Range"]
        if header.startswith("bytes */"):
            return self.progress()
        first_last, total = header[len("bytes "):].split("/")
        first, last = (int(v) for v in first_last.split("-"))
        del self.received[first:]
        self.received.extend(request.content)
        if last + 1 == int(total):
            return httpx.Response(201, json={"id": self.video_id, "kind": "youtube#video"})
        return self.progress()

    def progress(self) -> httpx.Response:
        headers = {}
        if self.ack_range and self.received:
            headers["Range"] = f"bytes=0-{len(self.received) - 1}"
        return httpx.Response(308, headers=headers)

    def chunk_ranges(self):
        return [
            r.headers["Content-Range"]
            for r in self.requests
            if r.method == "PUT" and not r.headers["Content-Range"].startswith("bytes */")
        ]

    def methods(self):
        return [r.method for r in self.requests]


@pytest.fixture
def server():
    return FakeUploadServer()


@pytest.fixture
def payload():
    return os.urandom(TOTAL)


def make_uploader(server, sleeps=None, attempts=3):
    client = httpx.Client(transport=httpx.MockTransport(server.handler))
    return ResumableUploader(
        client,
        chunk_size=CHUNK,
        chunk_timeout_sec=5,
        chunk_attempts=attempts,
        sleep=(sleeps.append if sleeps is not None else lambda d: None),
    )


def start(uploader, total=TOTAL):
    return uploader.create_session(CREATE_URL, {"snippet": {"title": "t"}}, total, content_type="video/mp4")


class TestHeaders:
    """Tests for header helpers."""

    def test_parse_range_header(self):
        assert parse_range_header("bytes=0-1048575") == 1048576
        assert parse_range_header("bytes=0-0") == 1
        assert parse_range_header(None) is None
        assert parse_range_header("garbage") is None

    def test_content_range(self):
        assert content_range(0, 262143, TOTAL) == "bytes 0-262143/614400"


class TestSessionCreation:
    """Tests for ResumableUploader.create_session."""

    def test_chunk_size_must_be_256k_multiple(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(ValueError):
            ResumableUploader(client, chunk_size=CHUNK + 1)
        with pytest.raises(ValueError):
            ResumableUploader(client, chunk_size=0)

    def test_session_url_from_location(self, server):
        session = start(make_uploader(server))

        assert session.upload_url == SESSION_URL
        assert session.total_bytes == TOTAL
        assert session.state == UploadState.SESSION_CREATED
        post = server.requests[0]
        assert post.headers["X-Upload-Content-Length"] == str(TOTAL)
        assert post.headers["X-Upload-Content-Type"] == "video/mp4"

    def test_missing_location_is_protocol_error(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(ProtocolError):
            start(ResumableUploader(client, chunk_size=CHUNK))

    def test_rejected_session(self):
        client = httpx.Client(
            transport=httpx.MockTransport(lambda r: httpx.Response(403, text="quotaExceeded"))
        )
        with pytest.raises(ProtocolError) as exc_info:
            start(ResumableUploader(client, chunk_size=CHUNK))
        assert exc_info.value.status_code == 403


class TestUpload:
    """Tests for ResumableUploader.upload."""

    def test_chunks_follow_range_acks(self, server, payload):
        uploader = make_uploader(server)
        progress = []

        session = uploader.upload(
            start(uploader), io.BytesIO(payload), progress_callback=lambda sent, total: progress.append(sent)
        )

        assert session.state == UploadState.UPLOADED
        assert session.video_id == "vid-123"
        assert session.degraded_acks == 0
        assert server.chunk_ranges() == [
            "bytes 0-262143/614400",
            "bytes 262144-524287/614400",
            "bytes 524288-614399/614400",
        ]
        assert bytes(server.received) == payload
        assert progress == [262144, 524288, 614400]

    def test_partial_ack_resends_from_server_offset(self, server, payload):
        """The next chunk starts where the server says, not where the client stopped."""

        def keep_half(srv, request):
            srv.received.extend(request.content[: CHUNK // 2])
            return httpx.Response(308, headers={"Range": f"bytes=0-{CHUNK // 2 - 1}"})

        server.overrides.append(keep_half)
        uploader = make_uploader(server)

        uploader.upload(start(uploader), io.BytesIO(payload))

        assert server.chunk_ranges() == [
            "bytes 0-262143/614400",
            "bytes 131072-393215/614400",
            "bytes 393216-614399/614400",
        ]
        assert bytes(server.received) == payload

    def test_missing_range_is_degraded_ack(self, payload, caplog):
        server = FakeUploadServer(ack_range=False)
        uploader = make_uploader(server)

        with caplog.at_level(logging.WARNING):
            session = uploader.upload(start(uploader), io.BytesIO(payload))

        assert session.state == UploadState.UPLOADED
        assert session.degraded_acks == 2
        assert len(server.chunk_ranges()) == 3
        assert "degraded" in caplog.text

    def test_regressing_ack_fails_session(self, server, payload):
        def regress(srv, request):
            return httpx.Response(308, headers={"Range": "bytes=0-1023"})

        server.overrides = [lambda srv, r: None, regress]
        uploader = make_uploader(server)
        session = start(uploader)

        with pytest.raises(ProtocolError):
            uploader.upload(session, io.BytesIO(payload))

        assert session.state == UploadState.FAILED
        assert server.methods()[-1] == "DELETE"

    def test_unexpected_status_is_not_retried(self, server, payload):
        server.overrides.append(lambda srv, r: httpx.Response(500, text="backendError"))
        uploader = make_uploader(server)

        with pytest.raises(ProtocolError) as exc_info:
            uploader.upload(start(uploader), io.BytesIO(payload))

        assert exc_info.value.status_code == 500
        assert len(server.chunk_ranges()) == 1
        assert server.methods()[-1] == "DELETE"

    def test_completion_without_id(self, server):
        small = b"x" * 1000
        server.overrides.append(lambda srv, r: httpx.Response(200, json={"kind": "youtube#video"}))
        uploader = make_uploader(server)

        with pytest.raises(ProtocolError):
            uploader.upload(start(uploader, total=len(small)), io.BytesIO(small))

    def test_transport_error_queries_then_resumes(self, server, payload):
        """After a timeout the session is queried and the resend starts at its offset."""

        def timeout_after_half(srv, request):
            srv.received.extend(request.content[: CHUNK // 2])
            raise httpx.ReadTimeout("timed out", request=request)

        server.overrides.append(timeout_after_half)
        sleeps = []
        uploader = make_uploader(server, sleeps=sleeps)

        session = uploader.upload(start(uploader), io.BytesIO(payload))

        assert session.state == UploadState.UPLOADED
        assert sleeps == [1.0]
        queries = [r for r in server.requests if r.headers.get("Content-Range") == f"bytes */{TOTAL}"]
        assert len(queries) == 1
        assert server.chunk_ranges()[1] == "bytes 131072-393215/614400"
        assert bytes(server.received) == payload

    def test_transport_errors_exhaust_attempts(self, server, payload):
        def reset(srv, request):
            if request.content:
                raise httpx.ConnectError("connection reset", request=request)
            return None

        server.overrides = [reset] * 10
        sleeps = []
        uploader = make_uploader(server, sleeps=sleeps, attempts=3)

        with pytest.raises(TransientInfrastructureError):
            uploader.upload(start(uploader), io.BytesIO(payload))

        assert sleeps == [1.0, 2.0]
        assert server.methods()[-1] == "DELETE"

    def test_cancel_before_first_chunk(self, server, payload):
        cancel = CancelToken()
        cancel.cancel()
        uploader = make_uploader(server)

        with pytest.raises(PipelineCancelled):
            uploader.upload(start(uploader), io.BytesIO(payload), cancel=cancel)

        assert server.chunk_ranges() == []
        assert server.methods() == ["POST", "DELETE"]

    def test_source_read_error_aborts_session(self, server, payload):
        """A failing source stream still cancels the session on the server."""

        class FailingStream(io.BytesIO):
            def read(self, size=-1):
                if self.tell() >= CHUNK:
                    raise OSError("disk read failed")
                return super().read(size)

        uploader = make_uploader(server)
        session = start(uploader)

        with pytest.raises(OSError):
            uploader.upload(session, FailingStream(payload))

        assert session.state == UploadState.FAILED
        assert server.chunk_ranges() == [content_range(0, CHUNK - 1, TOTAL)]
        assert server.methods()[-1] == "DELETE"
