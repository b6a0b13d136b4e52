"""
Unit tests for the slidecast CLI.
"""

import json
import sys

import pytest

from slidecast import cli


def write_request(tmp_path, audio):
    path = tmp_path / "request.json"
    path.write_text(
        json.dumps(
            {
                "orientation": "landscape",
                "overlayDate": "2025-12-29",
                "slides": [{"locationRef": f"/assets/{a['slideIndex']}.png", "slideIndex": a["slideIndex"]} for a in audio],
                "audio": audio,
            }
        ),
        encoding="utf-8",
    )
    return path


class TestPlanCommand:
    """Tests for `slidecast plan`."""

    def test_prints_timeline_and_command(self, tmp_path, capsys):
        path = write_request(
            tmp_path,
            [
                {"locationRef": "/assets/0.wav", "slideIndex": 0, "durationMs": 12000},
                {"locationRef": "/assets/1.wav", "slideIndex": 1, "durationMs": 15000},
                {"locationRef": "/assets/2.wav", "slideIndex": 2, "durationMs": 9000},
            ],
        )

        assert cli.cmd_plan(path) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["timeline"]["totalDurationSec"] == 37.0
        assert output["timeline"]["crossfadeOffsets"] == [12.0, 28.0]
        assert output["command"][0] == "ffmpeg"
        assert "/assets/0.png" in output["command"]

    def test_invalid_request_exits_nonzero(self, tmp_path, monkeypatch, capsys):
        path = write_request(tmp_path, [{"locationRef": "/assets/0.wav", "slideIndex": 0, "durationMs": -5}])
        monkeypatch.setattr(sys, "argv", ["slidecast", "plan", str(path)])

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == 1
        assert "ERROR" in capsys.readouterr().err
