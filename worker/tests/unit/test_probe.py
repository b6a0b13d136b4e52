"""
Unit tests for ffprobe parsing and output verification.
"""

import json

import pytest

from slidecast.errors import RenderEngineError
from slidecast.sandbox import CommandResult
from slidecast.tasks.engines import parse_probe_output, probe, verification_problems


class TestParseProbeOutput:
    """Tests for parse_probe_output."""

    def test_full_output(self, make_probe):
        """Format and stream fields are extracted."""
        info = parse_probe_output(json.dumps(make_probe(37.0)))

        assert info.duration_sec == 37.0
        assert info.duration_ms == 37000
        assert (info.width, info.height) == (1920, 1080)
        assert info.fps == 25.0
        assert info.has_video and info.has_audio
        assert (info.video_codec, info.audio_codec) == ("h264", "aac")
        assert info.file_size == 4096
        assert (info.video_duration_sec, info.audio_duration_sec) == (37.0, 37.0)

    def test_video_duration_from_frame_count(self, make_probe):
        """Without a stream duration, nb_frames / fps is used."""
        payload = make_probe(12.0)
        del payload["streams"][0]["duration"]
        payload["streams"][0]["nb_frames"] = "300"
        assert parse_probe_output(json.dumps(payload)).video_duration_sec == 12.0

    def test_missing_audio_stream(self, make_probe):
        info = parse_probe_output(json.dumps(make_probe(10.0, with_audio=False)))
        assert info.has_audio is False
        assert info.audio_codec is None

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            parse_probe_output("not json")

    def test_no_container(self):
        """Output without a format section means there is no readable container."""
        with pytest.raises(ValueError):
            parse_probe_output(json.dumps({"streams": []}))


class TestVerificationProblems:
    """Tests for verification_problems."""

    def check(self, make_probe, **overrides):
        info = parse_probe_output(json.dumps(make_probe(**overrides)))
        return verification_problems(info, 1920, 1080, nominal_duration_sec=37.0, tolerance_sec=1.5)

    def test_matching_output(self, make_probe):
        assert self.check(make_probe, duration_sec=37.4) == []

    def test_duration_outside_tolerance(self, make_probe):
        problems = self.check(make_probe, duration_sec=30.0)
        assert problems[0].startswith("duration 30.00s deviates from nominal")
        assert len(problems) == 3

    def test_truncated_video_stream(self, make_probe):
        """Container length set by the audio does not hide a video stream that stops early."""
        problems = self.check(make_probe, duration_sec=36.01, video_duration_sec=28.0)
        assert problems == ["video stream duration 28.00s deviates from nominal 37.00s by 9.00s"]

    def test_truncated_audio_stream(self, make_probe):
        problems = self.check(make_probe, duration_sec=37.0, audio_duration_sec=31.0)
        assert len(problems) == 1
        assert problems[0].startswith("audio stream duration 31.00s")

    def test_wrong_frame_size(self, make_probe):
        problems = self.check(make_probe, duration_sec=37.0, width=1080, height=1920)
        assert problems == ["frame size 1080x1920, expected 1920x1080"]

    def test_empty_file_and_missing_audio(self, make_probe):
        problems = self.check(make_probe, duration_sec=37.0, size=0, with_audio=False)
        assert "output file is empty" in problems
        assert "no audio stream" in problems


class TestProbe:
    """Tests for probe() inside a sandbox."""

    def test_probe_reads_sandbox_output(self, scripted_sandbox, make_probe):
        scripted_sandbox.probe = make_probe(12.5)
        info = probe(scripted_sandbox, "output.mp4")
        assert info.duration_sec == 12.5
        assert scripted_sandbox.commands[-1][0] == "ffprobe"

    def test_probe_failure(self, scripted_sandbox, monkeypatch):
        """A failing ffprobe is a RenderEngineError with its stderr."""
        monkeypatch.setattr(
            scripted_sandbox,
            "run",
            lambda cmd, timeout, on_stdout=None: CommandResult(1, "", "moov atom not found", 0.1),
        )
        with pytest.raises(RenderEngineError) as exc_info:
            probe(scripted_sandbox, "output.mp4")
        assert "moov atom not found" in str(exc_info.value)

    def test_probe_unparseable(self, scripted_sandbox, monkeypatch):
        monkeypatch.setattr(
            scripted_sandbox,
            "run",
            lambda cmd, timeout, on_stdout=None: CommandResult(0, "garbage", "", 0.1),
        )
        with pytest.raises(RenderEngineError):
            probe(scripted_sandbox, "output.mp4")
