"""
Root conftest for worker tests.

Provides:
- settings: PipelineSettings isolated from the environment, no backoff sleeps
- make_request: RenderRequest factory (optionally backed by real files)
- ScriptedSandbox: LocalSandbox that answers ffmpeg/ffprobe/npx itself and
  runs every other command (mkdir, cp, dd, base64) for real
- db_session: in-memory SQLite wired into slidecast.db
"""

import json
import threading
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import slidecast.db
from slidecast.config import MIB, PipelineSettings
from slidecast.models import AudioAsset, Orientation, RenderRequest, SlideAsset
from slidecast.records import Base
from slidecast.sandbox import CommandResult, LocalSandbox
from slidecast.storage import LocalObjectStore

# Minimal bytes that are recognisable as PNG / WAV in logs and fixtures
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
WAV_BYTES = b"RIFF\x24\x00\x00\x00WAVEfmt " + b"\x00" * 64


# ============================================================================
# Settings
# ============================================================================


@pytest.fixture
def settings(tmp_path: Path) -> PipelineSettings:
    """Settings for tests: local sandbox/storage under tmp_path, no waits."""
    return PipelineSettings(
        _env_file=None,
        sandbox_root=str(tmp_path / "sandboxes"),
        sandbox_retry_base_delay_sec=0,
        storage_backend="local",
        storage_local_root=str(tmp_path / "objects"),
        storage_part_size=5 * MIB,
        extract_read_size=64 * 1024,
        processing_poll_interval_sec=0.01,
        platform_chunk_size=256 * 1024,
    )


# ============================================================================
# Requests
# ============================================================================


@pytest.fixture
def make_request(tmp_path: Path) -> Callable[..., RenderRequest]:
    """
    Factory for render requests.

    Usage:
        request = make_request([12000, 15000, 9000])
        request = make_request([5000, 5000], materialize=True)

    With materialize=True every slide and clip is a real file under
    tmp_path/assets so a sandbox can copy it.
    """

    def _create(
        durations_ms: Sequence = (12000, 15000, 9000),
        orientation: Orientation = Orientation.LANDSCAPE,
        overlay_date: date = date(2025, 12, 29),
        materialize: bool = False,
        request_id: str = "req-test",
    ) -> RenderRequest:
        assets_dir = tmp_path / "assets"
        slides: List[SlideAsset] = []
        audio: List[AudioAsset] = []
        for index, duration in enumerate(durations_ms):
            image_ref = f"https://assets.test/slides/{index}.png"
            audio_ref = f"https://assets.test/audio/{index}.wav"
            if materialize:
                assets_dir.mkdir(exist_ok=True)
                image_path = assets_dir / f"slide-{index}.png"
                audio_path = assets_dir / f"narration-{index}.wav"
                image_path.write_bytes(PNG_BYTES)
                audio_path.write_bytes(WAV_BYTES)
                image_ref = str(image_path)
                audio_ref = str(audio_path)
            slides.append(SlideAsset(location_ref=image_ref, slide_index=index))
            audio.append(AudioAsset(location_ref=audio_ref, slide_index=index, duration_ms=duration))
        return RenderRequest(
            slides=tuple(slides),
            audio=tuple(audio),
            orientation=orientation,
            overlay_date=overlay_date,
            request_id=request_id,
        )

    return _create


# ============================================================================
# Sandboxes
# ============================================================================


def probe_payload(
    duration_sec: float,
    width: int = 1920,
    height: int = 1080,
    size: int = 4096,
    video_codec: str = "h264",
    audio_codec: str = "aac",
    with_audio: bool = True,
    video_duration_sec: Optional[float] = None,
    audio_duration_sec: Optional[float] = None,
) -> Dict:
    """ffprobe -show_format -show_streams JSON for a rendered file."""
    video_duration = duration_sec if video_duration_sec is None else video_duration_sec
    audio_duration = duration_sec if audio_duration_sec is None else audio_duration_sec
    streams = [
        {
            "codec_type": "video",
            "codec_name": video_codec,
            "width": width,
            "height": height,
            "r_frame_rate": "25/1",
            "duration": f"{video_duration:.6f}",
        }
    ]
    if with_audio:
        streams.append(
            {"codec_type": "audio", "codec_name": audio_codec, "duration": f"{audio_duration:.6f}"}
        )
    return {
        "format": {
            "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
            "duration": f"{duration_sec:.6f}",
            "size": str(size),
        },
        "streams": streams,
    }


class ScriptedSandbox(LocalSandbox):
    """
    Local sandbox with a scripted render engine.

    ffmpeg and npx write output_bytes to the output path and report
    progress; ffprobe answers with probe; anything else runs for real.
    With engine_blocks the engine reports progress, then hangs until the
    sandbox is killed.
    """

    def __init__(
        self,
        root: str,
        probe: Optional[Dict] = None,
        output_bytes: bytes = b"\x00\x00\x00\x18ftypmp42" + b"\x01" * 4000,
        engine_exit_code: int = 0,
        binary_reads: bool = True,
        engine_blocks: bool = False,
    ):
        super().__init__(root=root, binary_reads=binary_reads)
        self.probe = probe
        self.output_bytes = output_bytes
        self.engine_exit_code = engine_exit_code
        self.commands: List = []
        self.kill_calls = 0
        self.engine_blocks = engine_blocks
        self.killed = threading.Event()

    def run(self, cmd, timeout, on_stdout=None) -> CommandResult:
        self.commands.append(cmd)
        program = cmd[0] if isinstance(cmd, list) else cmd.split()[0]
        if program in ("ffmpeg", "npx"):
            return self._render(cmd, on_stdout)
        if program == "ffprobe":
            return CommandResult(0, json.dumps(self.probe or {}), "", 0.01)
        return super().run(cmd, timeout, on_stdout=on_stdout)

    def _render(self, cmd: List[str], on_stdout) -> CommandResult:
        if self.engine_exit_code != 0:
            return CommandResult(self.engine_exit_code, "", "Error opening input files", 0.1)
        if self.engine_blocks:
            if on_stdout is not None:
                on_stdout("out_time_us=1000000")
            self.killed.wait(timeout=10)
            return CommandResult(-9, "", "Killed", 1.0)
        output = cmd[-1] if cmd[0] == "ffmpeg" else cmd[5]
        self.write_file(output, self.output_bytes)
        if on_stdout is not None:
            for line in ("out_time_us=1000000", "out_time_us=20000000", "progress=end"):
                on_stdout(line)
        return CommandResult(0, "", "", 0.1)

    def kill(self) -> None:
        self.kill_calls += 1
        self.killed.set()
        super().kill()


@pytest.fixture
def sandbox_factory(tmp_path: Path):
    """
    Factory of ScriptedSandbox instances; created sandboxes are recorded
    on factory.created.
    """

    class Factory:
        def __init__(self):
            self.created: List[ScriptedSandbox] = []
            self.kwargs: Dict = {}

        def __call__(self) -> ScriptedSandbox:
            sandbox = ScriptedSandbox(root=str(tmp_path / "sandboxes"), **self.kwargs)
            self.created.append(sandbox)
            return sandbox

    return Factory()


# ============================================================================
# Storage
# ============================================================================


@pytest.fixture
def object_store(settings: PipelineSettings) -> LocalObjectStore:
    return LocalObjectStore(settings.storage_local_root)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Session on the test engine; slidecast.db.get_db_session uses the same engine."""
    slidecast.db.configure_engine(db_engine)
    session = sessionmaker(bind=db_engine)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        slidecast.db._engine = None
        slidecast.db._SessionLocal = None


@pytest.fixture
def make_probe() -> Callable[..., Dict]:
    """The probe_payload helper as a fixture."""
    return probe_payload


@pytest.fixture
def scripted_sandbox(tmp_path: Path):
    """One ScriptedSandbox, killed at teardown."""
    sandbox = ScriptedSandbox(root=str(tmp_path / "sandboxes"))
    yield sandbox
    sandbox.kill()


class InMemoryRedis:
    """The handful of Redis key commands the cancellation flag uses."""

    def __init__(self):
        self.data: Dict[str, bytes] = {}
        self.ttl: Dict[str, int] = {}

    def set(self, key, value, ex=None):
        self.data[key] = str(value).encode()
        if ex is not None:
            self.ttl[key] = ex
        return True

    def get(self, key):
        return self.data.get(key)

    def exists(self, *keys):
        return sum(1 for key in keys if key in self.data)


@pytest.fixture
def redis_conn() -> InMemoryRedis:
    return InMemoryRedis()
