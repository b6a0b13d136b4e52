"""
Pipeline Error Taxonomy

Every failure surfaced by the render/publish pipeline derives from
PipelineError so the RQ tasks can record a terminal status plus a
human-readable message.
"""

from dataclasses import dataclass
from typing import List, Optional

# Keep diagnostic excerpts to a reasonable length in status messages
DIAGNOSTIC_TAIL_CHARS = 2000


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    retryable = False


@dataclass(frozen=True)
class ValidationIssue:
    """One structural problem found in a render request."""

    code: str
    message: str
    slide_index: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(PipelineError):
    """Raised when a render request violates a structural invariant."""

    def __init__(self, issues: List[ValidationIssue]):
        self.issues = list(issues)
        summary = "; ".join(str(issue) for issue in self.issues) or "invalid request"
        super().__init__(f"Render request validation failed: {summary}")


class TransientInfrastructureError(PipelineError):
    """Raised for failures worth retrying: sandbox creation, fetches, chunk sends."""

    retryable = True


class RenderEngineError(PipelineError):
    """Raised when the render engine fails or its output fails verification."""

    def __init__(self, message: str, diagnostics: str = "", exit_code: Optional[int] = None):
        self.diagnostics = diagnostics[-DIAGNOSTIC_TAIL_CHARS:] if diagnostics else ""
        self.exit_code = exit_code
        if self.diagnostics:
            message = f"{message}: {self.diagnostics}"
        super().__init__(message)


class RenderTimeout(RenderEngineError):
    """Raised when the render engine exceeds its timeout."""


class ProtocolError(PipelineError):
    """Raised on an unexpected response from a storage or platform transport."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        self.status_code = status_code
        self.body = body[:500] if body else ""
        detail = message
        if status_code is not None:
            detail = f"{detail} (status {status_code})"
        if self.body:
            detail = f"{detail}: {self.body}"
        super().__init__(detail)


class PipelineCancelled(PipelineError):
    """Raised at a cancellation checkpoint after cancellation was requested."""
