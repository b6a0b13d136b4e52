"""
Sandbox Contract

A sandbox is an isolated execution environment the render engine runs in.
The pipeline only needs four capabilities from it:
- run a command with a timeout, streaming stdout lines
- write input files
- stat and read output files (binary, or via the command channel)
- be torn down
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

Command = Union[str, List[str]]
StdoutCallback = Callable[[str], None]


@dataclass
class CommandResult:
    """Outcome of one sandbox command."""

    exit_code: int
    stdout: str
    stderr: str
    duration_sec: float

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandTimeout(Exception):
    """Raised when a sandbox command exceeds its timeout or the sandbox lifetime."""

    def __init__(self, message: str, stdout: str = "", stderr: str = ""):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class Sandbox(ABC):
    """Isolated working environment for a single render."""

    sandbox_id: str
    workdir: str

    @property
    def supports_binary_reads(self) -> bool:
        """Whether read_bytes can return raw bytes without a text channel."""
        return True

    @abstractmethod
    def run(
        self,
        cmd: Command,
        timeout: float,
        on_stdout: Optional[StdoutCallback] = None,
    ) -> CommandResult:
        """
        Run a command inside the sandbox.

        Args:
            cmd: Shell string or argv list
            timeout: Seconds before the command is killed
            on_stdout: Called with each stdout line as it arrives

        Returns:
            CommandResult, also for non-zero exits

        Raises:
            CommandTimeout: If the command exceeds timeout
        """

    @abstractmethod
    def write_file(self, path: str, data: Union[bytes, str]) -> None:
        """Write a file, creating parent directories."""

    @abstractmethod
    def file_size(self, path: str) -> int:
        """Size of a file in bytes. Raises FileNotFoundError if missing."""

    @abstractmethod
    def read_bytes(self, path: str, offset: int, length: int) -> bytes:
        """Read at most length bytes starting at offset."""

    @abstractmethod
    def kill(self) -> None:
        """Tear the sandbox down. Safe to call more than once."""


SandboxFactory = Callable[[], Sandbox]
