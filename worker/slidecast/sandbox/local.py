"""
Local Process Sandbox

Runs commands on the worker host inside a private temporary directory:
- each command gets its own process group (os.setsid) so a timeout kills
  ffmpeg and any children together
- optional CPU/address-space ceilings via resource.setrlimit
- a wall-clock lifetime bounds every command run in the sandbox
"""

import logging
import os
import resource
import shutil
import signal
import subprocess
import tempfile
import threading
import time
import uuid
from pathlib import Path
from typing import List, Optional, Set, Union

from ..config import MIB, PipelineSettings
from .base import Command, CommandResult, CommandTimeout, Sandbox, StdoutCallback

logger = logging.getLogger(__name__)


class LocalSandbox(Sandbox):
    """Sandbox backed by a temporary directory and host subprocesses."""

    def __init__(
        self,
        root: Optional[str] = None,
        lifetime_sec: float = 600,
        memory_limit_mb: Optional[int] = None,
        cpu_limit_sec: Optional[int] = None,
        binary_reads: bool = True,
    ):
        self.sandbox_id = f"local-{uuid.uuid4().hex[:12]}"
        if root:
            Path(root).mkdir(parents=True, exist_ok=True)
        self.workdir = tempfile.mkdtemp(prefix=f"{self.sandbox_id}-", dir=root)
        self.lifetime_sec = lifetime_sec
        self.memory_limit_mb = memory_limit_mb
        self.cpu_limit_sec = cpu_limit_sec
        self._binary_reads = binary_reads
        self._deadline = time.monotonic() + lifetime_sec
        self._processes: Set[subprocess.Popen] = set()
        self._lock = threading.Lock()
        self._killed = False
        logger.info(f"Sandbox {self.sandbox_id} created at {self.workdir}")

    @property
    def supports_binary_reads(self) -> bool:
        return self._binary_reads

    def _path(self, path: str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return Path(self.workdir) / candidate

    def _preexec(self) -> None:
        os.setsid()
        if self.memory_limit_mb:
            limit = self.memory_limit_mb * MIB
            resource.setrlimit(resource.RLIMIT_AS, (limit, limit))
        if self.cpu_limit_sec:
            resource.setrlimit(resource.RLIMIT_CPU, (self.cpu_limit_sec, self.cpu_limit_sec))

    def run(
        self,
        cmd: Command,
        timeout: float,
        on_stdout: Optional[StdoutCallback] = None,
    ) -> CommandResult:
        if self._killed:
            raise RuntimeError(f"Sandbox {self.sandbox_id} has been killed")

        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise CommandTimeout(f"Sandbox {self.sandbox_id} lifetime of {self.lifetime_sec}s exceeded")
        effective_timeout = min(timeout, remaining)

        argv = ["/bin/sh", "-c", cmd] if isinstance(cmd, str) else list(cmd)
        logger.debug(f"[{self.sandbox_id}] run (timeout={effective_timeout:.0f}s): {' '.join(argv)[:500]}")

        start = time.monotonic()
        process = subprocess.Popen(
            argv,
            cwd=self.workdir,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            universal_newlines=True,
            errors="replace",
            preexec_fn=self._preexec,
        )
        with self._lock:
            self._processes.add(process)

        stdout_lines: List[str] = []
        stderr_lines: List[str] = []

        def pump_stdout() -> None:
            for line in process.stdout:
                stdout_lines.append(line)
                if on_stdout is not None:
                    try:
                        on_stdout(line.rstrip("\n"))
                    except Exception as e:
                        logger.warning(f"[{self.sandbox_id}] stdout callback failed: {e}")

        def pump_stderr() -> None:
            for line in process.stderr:
                stderr_lines.append(line)

        readers = [
            threading.Thread(target=pump_stdout, daemon=True),
            threading.Thread(target=pump_stderr, daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            exit_code = process.wait(timeout=effective_timeout)
        except subprocess.TimeoutExpired:
            _kill_process_group(process)
            process.wait()
            for reader in readers:
                reader.join(timeout=5)
            logger.warning(f"[{self.sandbox_id}] command timed out after {effective_timeout:.0f}s")
            raise CommandTimeout(
                f"Command exceeded timeout of {effective_timeout:.0f} seconds",
                stdout="".join(stdout_lines),
                stderr="".join(stderr_lines),
            )
        finally:
            with self._lock:
                self._processes.discard(process)

        for reader in readers:
            reader.join()

        return CommandResult(
            exit_code=exit_code,
            stdout="".join(stdout_lines),
            stderr="".join(stderr_lines),
            duration_sec=time.monotonic() - start,
        )

    def write_file(self, path: str, data: Union[bytes, str]) -> None:
        target = self._path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, str):
            target.write_text(data, encoding="utf-8")
        else:
            target.write_bytes(data)

    def file_size(self, path: str) -> int:
        return self._path(path).stat().st_size

    def read_bytes(self, path: str, offset: int, length: int) -> bytes:
        with open(self._path(path), "rb") as f:
            f.seek(offset)
            return f.read(length)

    def kill(self) -> None:
        if self._killed:
            return
        self._killed = True
        with self._lock:
            running = list(self._processes)
        for process in running:
            _kill_process_group(process)
        shutil.rmtree(self.workdir, ignore_errors=True)
        logger.info(f"Sandbox {self.sandbox_id} killed")


class LocalSandboxFactory:
    """Creates LocalSandbox instances from pipeline settings."""

    def __init__(self, settings: PipelineSettings):
        self.settings = settings

    def __call__(self) -> LocalSandbox:
        return LocalSandbox(
            root=self.settings.sandbox_root,
            lifetime_sec=self.settings.sandbox_lifetime_sec,
            memory_limit_mb=self.settings.sandbox_memory_limit_mb,
            cpu_limit_sec=self.settings.sandbox_cpu_limit_sec,
            binary_reads=self.settings.extract_encoding == "binary",
        )


def _kill_process_group(process: subprocess.Popen) -> None:
    """
    Kill a process and its entire process group with SIGKILL.

    Args:
        process: The subprocess.Popen instance to kill
    """
    try:
        pgid = os.getpgid(process.pid)
        logger.info(f"Killing process group {pgid}")
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug("Process already terminated")
    except OSError as e:
        logger.warning(f"Error killing process group: {e}")
        try:
            process.kill()
        except OSError:
            pass
