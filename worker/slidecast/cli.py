"""
slidecast: render pipeline CLI.

Usage:
    slidecast plan request.json
    slidecast render request.json --output out.mp4
    slidecast cancel <job-id>
    slidecast status <job-id>
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .cancellation import request_cancel
from .config import get_settings
from .errors import PipelineError
from .models import RenderRequest
from .queues import get_job_progress
from .sandbox import LocalSandboxFactory
from .tasks.composition import plan_composition
from .tasks.engines import FFmpegCommandBuilder, StagedAssets
from .tasks.executor import RenderExecutor
from .tasks.timeline import build_timeline
from .tasks.validation import validate_render_request

logger = logging.getLogger("slidecast.cli")


def _load_request(path: Path) -> RenderRequest:
    return RenderRequest.from_dict(json.loads(path.read_text(encoding="utf-8")))


def cmd_plan(request_path: Path) -> int:
    """Validate a request and print its timeline, plan and ffmpeg command."""
    settings = get_settings()
    request = _load_request(request_path)
    validate_render_request(request)

    timeline = build_timeline(
        request.audio,
        transition_duration_sec=settings.transition_duration_sec,
        fps=settings.fps,
        max_zoom=settings.max_zoom,
    )
    plan = plan_composition(request, settings, timeline=timeline)
    assets = StagedAssets(
        images={s.slide_index: s.location_ref for s in request.slides},
        audio={a.slide_index: a.location_ref for a in request.audio},
    )
    command = FFmpegCommandBuilder(plan, assets, f"output.{plan.output.profile.extension}").build()

    print(
        json.dumps(
            {
                "timeline": {
                    "totalDurationSec": timeline.total_duration_sec,
                    "crossfadeOffsets": timeline.crossfade_offsets,
                },
                "plan": plan.to_dict(),
                "command": command,
            },
            indent=2,
            ensure_ascii=False,
        )
    )
    return 0


def cmd_render(request_path: Path, output: Path) -> int:
    """Render a request in a local sandbox and write the video to output."""
    settings = get_settings()
    request = _load_request(request_path)
    validate_render_request(request)

    timeline = build_timeline(
        request.audio,
        transition_duration_sec=settings.transition_duration_sec,
        fps=settings.fps,
        max_zoom=settings.max_zoom,
    )
    plan = plan_composition(request, settings, timeline=timeline)
    executor = RenderExecutor(settings, LocalSandboxFactory(settings))
    artifact = executor.execute(
        request,
        plan,
        str(output),
        progress_callback=lambda percent, message: logger.info(f"{percent}% {message}"),
    )
    print(json.dumps(artifact.to_metadata(), indent=2))
    return 0


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    parser = argparse.ArgumentParser(description="slidecast: render pipeline CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    plan_parser = sub.add_parser("plan", help="Print timeline, composition plan and ffmpeg command")
    plan_parser.add_argument("request", type=Path, metavar="PATH", help="Render request JSON")

    render_parser = sub.add_parser("render", help="Render a request with a local sandbox")
    render_parser.add_argument("request", type=Path, metavar="PATH", help="Render request JSON")
    render_parser.add_argument("--output", type=Path, required=True, metavar="PATH", help="Output video file")

    cancel_parser = sub.add_parser("cancel", help="Request cancellation of a queued or running job")
    cancel_parser.add_argument("job_id", help="RQ job id")

    status_parser = sub.add_parser("status", help="Print the status and progress of a job")
    status_parser.add_argument("job_id", help="RQ job id")

    args = parser.parse_args()
    try:
        if args.command == "plan":
            sys.exit(cmd_plan(args.request))
        elif args.command == "render":
            sys.exit(cmd_render(args.request, args.output))
        elif args.command == "cancel":
            request_cancel(args.job_id)
            sys.exit(0)
        elif args.command == "status":
            print(json.dumps(get_job_progress(args.job_id), indent=2, default=str))
            sys.exit(0)
    except PipelineError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
