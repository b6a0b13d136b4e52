"""
Render Executor

Runs a composition plan in an isolated sandbox:
1. Acquire a sandbox (retried with exponential backoff)
2. Prefetch every slide image and narration clip into the sandbox
3. Run the render backend with the render timeout
4. Verify the output with ffprobe
5. Extract the file to a local spool

The sandbox is always killed on the way out: success, failure or
cancellation. A kill failure is logged and never replaces the original
error.
"""

import logging
import posixpath
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

from ..cancellation import CancelToken
from ..config import PipelineSettings
from ..errors import PipelineCancelled, RenderEngineError, TransientInfrastructureError
from ..models import RenderArtifact, RenderRequest
from ..retry import retry_with_backoff
from ..sandbox import Sandbox, SandboxFactory
from .composition import CompositionPlan
from .engines import StagedAssets, create_backend, probe, verification_problems
from .extract import ArtifactExtractor

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_EXTENSION = ".png"
DEFAULT_AUDIO_EXTENSION = ".wav"

ProgressCallback = Callable[[int, str], None]


# ============================================================================
# Sandbox Lifecycle
# ============================================================================


def acquire_sandbox(
    factory: SandboxFactory,
    settings: PipelineSettings,
    cancel: Optional[CancelToken] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Sandbox:
    """
    Create a sandbox, retrying creation failures with exponential backoff.

    Raises:
        TransientInfrastructureError: After the last failed attempt
    """

    def create() -> Sandbox:
        try:
            return factory()
        except TransientInfrastructureError:
            raise
        except Exception as e:
            raise TransientInfrastructureError(f"Sandbox creation failed: {e}") from e

    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return retry_with_backoff(
        create,
        attempts=settings.sandbox_create_attempts,
        base_delay=settings.sandbox_retry_base_delay_sec,
        factor=settings.sandbox_retry_backoff_factor,
        description="Sandbox creation",
        cancel=cancel,
        **kwargs,
    )


@contextmanager
def sandbox_session(
    factory: SandboxFactory,
    settings: PipelineSettings,
    cancel: Optional[CancelToken] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Iterator[Sandbox]:
    """
    Context manager that acquires a sandbox and always kills it.

    Usage:
        with sandbox_session(factory, settings) as sandbox:
            sandbox.run(["ffmpeg", "-version"], timeout=10)
    """
    sandbox = acquire_sandbox(factory, settings, cancel=cancel, sleep=sleep)
    logger.info(f"Sandbox {sandbox.sandbox_id} acquired")
    try:
        yield sandbox
    finally:
        try:
            sandbox.kill()
        except Exception as e:
            logger.warning(f"Failed to kill sandbox {sandbox.sandbox_id}: {e}")


@contextmanager
def cancel_watch(sandbox: Sandbox, cancel: Optional[CancelToken], interval_sec: float = 1.0):
    """
    Kill the sandbox if cancellation is requested while a long command runs.

    Yields a threading.Event that is set when the watcher fired.
    """
    fired = threading.Event()
    if cancel is None:
        yield fired
        return

    stop = threading.Event()

    def watch() -> None:
        while not stop.wait(interval_sec):
            if cancel.cancelled:
                logger.warning(f"Cancellation requested, killing sandbox {sandbox.sandbox_id}")
                fired.set()
                try:
                    sandbox.kill()
                except Exception as e:
                    logger.warning(f"Failed to kill sandbox {sandbox.sandbox_id}: {e}")
                return

    watcher = threading.Thread(target=watch, daemon=True)
    watcher.start()
    try:
        yield fired
    finally:
        stop.set()
        watcher.join(timeout=interval_sec * 2)


# ============================================================================
# Asset Prefetch
# ============================================================================


def staged_filename(kind: str, slide_index: int, location_ref: str) -> str:
    """
    Deterministic sandbox filename for an asset.

    slides/slide_03.png, audio/audio_03.wav; the extension follows the
    source location when it has one.
    """
    default = DEFAULT_IMAGE_EXTENSION if kind == "slide" else DEFAULT_AUDIO_EXTENSION
    ext = posixpath.splitext(urlparse(location_ref).path)[1].lower() or default
    folder = "slides" if kind == "slide" else "audio"
    return f"{folder}/{kind}_{slide_index:02d}{ext}"


def fetch_command(location_ref: str, destination: str, timeout: float) -> List[str]:
    """curl for http(s) locations, cp for local paths and file:// URLs."""
    parsed = urlparse(location_ref)
    if parsed.scheme in ("http", "https"):
        return [
            "curl", "-fsSL",
            "--max-time", str(int(timeout)),
            "-o", destination,
            location_ref,
        ]
    source = parsed.path if parsed.scheme == "file" else location_ref
    return ["cp", source, destination]


class AssetPrefetcher:
    """Downloads request assets into the sandbox before rendering."""

    def __init__(self, sandbox: Sandbox, settings: PipelineSettings, sleep: Optional[Callable] = None):
        self.sandbox = sandbox
        self.settings = settings
        self.sleep = sleep

    def fetch_one(self, location_ref: str, destination: str) -> str:
        timeout = self.settings.asset_fetch_timeout_sec

        def attempt() -> str:
            try:
                result = self.sandbox.run(
                    fetch_command(location_ref, destination, timeout), timeout=timeout + 5
                )
            except Exception as e:
                raise TransientInfrastructureError(f"Fetch of {location_ref} failed: {e}") from e
            if not result.ok:
                raise TransientInfrastructureError(
                    f"Fetch of {location_ref} exited {result.exit_code}: {result.stderr.strip()[-300:]}"
                )
            if self.sandbox.file_size(destination) <= 0:
                raise TransientInfrastructureError(f"Fetch of {location_ref} produced an empty file")
            return destination

        kwargs = {"sleep": self.sleep} if self.sleep is not None else {}
        return retry_with_backoff(
            attempt,
            attempts=self.settings.asset_fetch_attempts,
            base_delay=self.settings.asset_fetch_retry_base_delay_sec,
            description=f"Asset fetch {location_ref}",
            **kwargs,
        )

    def prefetch(self, request: RenderRequest, workspace: str) -> StagedAssets:
        """
        Fetch every slide and audio clip concurrently.

        Each fetch writes to a distinct path, so completion order does not
        matter.
        """
        jobs: List[Tuple[str, int, str, str]] = []
        for slide in request.slides:
            path = f"{workspace}/{staged_filename('slide', slide.slide_index, slide.location_ref)}"
            jobs.append(("slide", slide.slide_index, slide.location_ref, path))
        for clip in request.audio:
            path = f"{workspace}/{staged_filename('audio', clip.slide_index, clip.location_ref)}"
            jobs.append(("audio", clip.slide_index, clip.location_ref, path))

        mkdir = self.sandbox.run(["mkdir", "-p", f"{workspace}/slides", f"{workspace}/audio"], timeout=30)
        if not mkdir.ok:
            raise TransientInfrastructureError(f"Could not prepare sandbox workspace: {mkdir.stderr}")

        logger.info(f"Prefetching {len(jobs)} assets into {self.sandbox.sandbox_id}")
        staged = StagedAssets()
        workers = min(self.settings.asset_fetch_concurrency, len(jobs)) or 1
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                (kind, slide_index, pool.submit(self.fetch_one, ref, path))
                for kind, slide_index, ref, path in jobs
            ]
            for kind, slide_index, future in futures:
                path = future.result()
                target = staged.images if kind == "slide" else staged.audio
                target[slide_index] = path
        return staged


# ============================================================================
# Executor
# ============================================================================


class RenderExecutor:
    """Executes one composition plan end to end inside a fresh sandbox."""

    def __init__(
        self,
        settings: PipelineSettings,
        sandbox_factory: SandboxFactory,
        extractor: Optional[ArtifactExtractor] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.settings = settings
        self.sandbox_factory = sandbox_factory
        self.extractor = extractor or ArtifactExtractor(
            read_size=settings.extract_read_size,
            encoding=settings.extract_encoding,
            command_timeout=settings.probe_timeout_sec,
        )
        self.sleep = sleep

    def execute(
        self,
        request: RenderRequest,
        plan: CompositionPlan,
        destination: str,
        cancel: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RenderArtifact:
        """
        Render the plan and return the artifact extracted to destination.

        Raises:
            TransientInfrastructureError: Sandbox creation or asset fetch exhausted
            RenderEngineError: Engine failure, timeout or failed verification
            PipelineCancelled: Cancellation requested
        """
        cancel = cancel or CancelToken()
        report = progress_callback or (lambda percent, message: None)

        with sandbox_session(self.sandbox_factory, self.settings, cancel=cancel, sleep=self.sleep) as sandbox:
            workspace = sandbox.workdir
            cancel.raise_if_cancelled("asset prefetch")
            report(5, "Fetching assets")
            assets = AssetPrefetcher(sandbox, self.settings, sleep=self.sleep).prefetch(request, workspace)

            cancel.raise_if_cancelled("render")
            report(15, "Rendering")
            backend = create_backend(self.settings.render_backend, sandbox, workspace, self.settings)

            def engine_progress(percent: int, message: str) -> None:
                report(15 + int(percent * 0.7), message)

            with cancel_watch(sandbox, cancel) as fired:
                try:
                    artifact = backend.render(plan, assets, progress_callback=engine_progress)
                except RenderEngineError:
                    if fired.is_set():
                        raise PipelineCancelled("Cancelled during render")
                    raise
            if fired.is_set():
                raise PipelineCancelled("Cancelled during render")

            report(85, "Verifying output")
            artifact = self.verify(sandbox, artifact, plan)

            cancel.raise_if_cancelled("artifact extraction")
            report(90, "Extracting output")
            Path(destination).parent.mkdir(parents=True, exist_ok=True)
            artifact = self.extractor.extract_artifact(sandbox, artifact, destination, cancel=cancel)

        logger.info(
            f"Render executed: {artifact.size_bytes} bytes, {artifact.duration_ms}ms, "
            f"{artifact.width}x{artifact.height} {artifact.video_codec}/{artifact.audio_codec}"
        )
        return artifact

    def verify(self, sandbox: Sandbox, artifact: RenderArtifact, plan: CompositionPlan) -> RenderArtifact:
        """
        Probe the output and check it against the plan.

        Returns:
            The artifact with probed metadata

        Raises:
            RenderEngineError: If verification fails
        """
        info = probe(sandbox, artifact.path, timeout=self.settings.probe_timeout_sec)
        problems = verification_problems(
            info,
            width=plan.output.width,
            height=plan.output.height,
            nominal_duration_sec=plan.nominal_duration_sec,
            tolerance_sec=self.settings.duration_tolerance_sec,
        )
        if problems:
            logger.error(f"Output verification failed: {'; '.join(problems)}")
            raise RenderEngineError(f"Output video verification failed: {'; '.join(problems)}")

        return replace(
            artifact,
            width=info.width,
            height=info.height,
            duration_ms=info.duration_ms,
            fps=round(info.fps, 3) if info.fps else artifact.fps,
            video_codec=info.video_codec or artifact.video_codec,
            audio_codec=info.audio_codec or artifact.audio_codec,
            size_bytes=info.file_size,
            extra={"formatName": info.format_name},
        )
