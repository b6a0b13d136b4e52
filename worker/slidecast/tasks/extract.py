"""
Artifact Extraction

Moves the rendered file from the sandbox to a local spool file in bounded
reads. When the sandbox cannot return raw bytes, each read goes through the
command channel as base64 text; the read size is then rounded down to a
multiple of 3 so every chunk decodes on its own.

Base64 inflates the transfer by 4/3. transfer_size() reports the real byte
budget so it can be logged next to the file size.
"""

import base64
import binascii
import logging
import math
import shlex
from dataclasses import replace
from pathlib import Path
from typing import Optional

from ..cancellation import CancelToken
from ..errors import RenderEngineError
from ..models import RenderArtifact
from ..sandbox import Sandbox

logger = logging.getLogger(__name__)


def transfer_size(size: int, encoding: str) -> int:
    """Bytes that cross the sandbox boundary for a file of size bytes."""
    if encoding == "base64":
        return 4 * math.ceil(size / 3)
    return size


def base64_read_size(read_size: int) -> int:
    """Largest multiple of 3 not above read_size (at least 3)."""
    return max(3, read_size - read_size % 3)


class ArtifactExtractor:
    """Copies a sandbox file to local disk one bounded chunk at a time."""

    def __init__(self, read_size: int, encoding: str = "binary", command_timeout: float = 60):
        if read_size <= 0:
            raise ValueError("read_size must be positive")
        self.read_size = read_size
        self.encoding = encoding
        self.command_timeout = command_timeout

    def effective_encoding(self, sandbox: Sandbox) -> str:
        if self.encoding == "binary" and sandbox.supports_binary_reads:
            return "binary"
        return "base64"

    def extract(
        self,
        sandbox: Sandbox,
        remote_path: str,
        destination: str,
        cancel: Optional[CancelToken] = None,
    ) -> int:
        """
        Copy remote_path out of the sandbox into destination.

        Args:
            sandbox: Sandbox holding the file
            remote_path: Path of the file inside the sandbox
            destination: Local spool path (parents are created)
            cancel: Checked between chunks

        Returns:
            Number of bytes written

        Raises:
            RenderEngineError: If the file is missing or the copy is incomplete
        """
        try:
            size = sandbox.file_size(remote_path)
        except FileNotFoundError:
            raise RenderEngineError(f"Rendered file not found in sandbox: {remote_path}")
        if size <= 0:
            raise RenderEngineError(f"Rendered file is empty: {remote_path}")

        encoding = self.effective_encoding(sandbox)
        chunk_size = self.read_size if encoding == "binary" else base64_read_size(self.read_size)
        logger.info(
            f"Extracting {remote_path} from {sandbox.sandbox_id}: {size} bytes, "
            f"encoding={encoding}, transfer={transfer_size(size, encoding)} bytes, "
            f"chunk={chunk_size}"
        )

        target = Path(destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        try:
            with open(target, "wb") as out:
                for index in range(math.ceil(size / chunk_size)):
                    if cancel is not None:
                        cancel.raise_if_cancelled("artifact extraction")
                    offset = index * chunk_size
                    length = min(chunk_size, size - offset)
                    if encoding == "binary":
                        data = sandbox.read_bytes(remote_path, offset, length)
                    else:
                        data = self._read_base64(sandbox, remote_path, index, chunk_size)
                    if len(data) != length:
                        raise RenderEngineError(
                            f"Short read at offset {offset}: got {len(data)} of {length} bytes"
                        )
                    out.write(data)
                    written += len(data)
        except Exception:
            target.unlink(missing_ok=True)
            raise

        if written != size:
            target.unlink(missing_ok=True)
            raise RenderEngineError(f"Extracted {written} bytes, expected {size}")

        logger.info(f"Extracted {written} bytes to {target}")
        return written

    def extract_artifact(
        self,
        sandbox: Sandbox,
        artifact: RenderArtifact,
        destination: str,
        cancel: Optional[CancelToken] = None,
    ) -> RenderArtifact:
        """Extract and return the artifact re-pointed at the local spool file."""
        size = self.extract(sandbox, artifact.path, destination, cancel=cancel)
        return replace(artifact, path=str(destination), size_bytes=size)

    def _read_base64(self, sandbox: Sandbox, remote_path: str, index: int, chunk_size: int) -> bytes:
        cmd = (
            f"dd if={shlex.quote(remote_path)} bs={chunk_size} skip={index} count=1 "
            f"2>/dev/null | base64 -w 0"
        )
        result = sandbox.run(cmd, timeout=self.command_timeout)
        if not result.ok:
            raise RenderEngineError(
                f"Chunk {index} read failed", diagnostics=result.stderr, exit_code=result.exit_code
            )
        try:
            return base64.b64decode(result.stdout.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise RenderEngineError(f"Chunk {index} is not valid base64: {e}")
