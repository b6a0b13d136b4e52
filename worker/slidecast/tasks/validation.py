"""
Render Request Validation

Checks the structural invariants of a RenderRequest before any sandbox,
network or storage call is made:
- one audio clip per slide (counts match, indices pair up 1:1)
- no duplicate slideIndex in either array
- every durationMs present, numeric, finite and positive

A malformed timeline is otherwise only visible as a truncated or
desynchronized video at the very end of the pipeline.
"""

import logging
import math
from collections import Counter
from numbers import Real
from typing import List

from ..errors import ValidationError, ValidationIssue
from ..models import RenderRequest

logger = logging.getLogger(__name__)


def collect_request_errors(request: RenderRequest) -> List[ValidationIssue]:
    """
    Collect every structural problem in a render request.

    Pure and idempotent: the request is not modified and repeated calls
    return equal results.

    Args:
        request: The render request to check

    Returns:
        List of ValidationIssue (empty if valid)
    """
    issues: List[ValidationIssue] = []

    if not request.slides:
        issues.append(ValidationIssue("empty_request", "request has no slides"))

    if len(request.slides) != len(request.audio):
        issues.append(
            ValidationIssue(
                "count_mismatch",
                f"{len(request.slides)} slides but {len(request.audio)} audio clips; "
                f"expected a 1:1 mapping",
            )
        )

    for label, items in (("slides", request.slides), ("audio", request.audio)):
        bad_index = [item for item in items if not _is_int(item.slide_index)]
        for item in bad_index:
            issues.append(
                ValidationIssue(
                    "invalid_slide_index",
                    f"{label} entry has non-integer slideIndex {item.slide_index!r}",
                )
            )
        counts = Counter(item.slide_index for item in items if _is_int(item.slide_index))
        for slide_index, count in sorted(counts.items()):
            if count > 1:
                issues.append(
                    ValidationIssue(
                        "duplicate_slide_index",
                        f"slideIndex {slide_index} appears {count} times in {label}",
                        slide_index,
                    )
                )
        for item in items:
            if not isinstance(item.location_ref, str) or not item.location_ref.strip():
                issues.append(
                    ValidationIssue(
                        "missing_location",
                        f"{label} entry for slideIndex {item.slide_index} has no location",
                        item.slide_index if _is_int(item.slide_index) else None,
                    )
                )

    slide_indices = {s.slide_index for s in request.slides if _is_int(s.slide_index)}
    audio_indices = {a.slide_index for a in request.audio if _is_int(a.slide_index)}
    for slide_index in sorted(slide_indices - audio_indices):
        issues.append(
            ValidationIssue("missing_audio", f"slide {slide_index} has no audio clip", slide_index)
        )
    for slide_index in sorted(audio_indices - slide_indices):
        issues.append(
            ValidationIssue("orphan_audio", f"audio clip {slide_index} has no slide", slide_index)
        )

    for clip in request.audio:
        problem = _duration_problem(clip.duration_ms)
        if problem:
            issues.append(
                ValidationIssue(
                    "invalid_duration",
                    f"audio for slideIndex {clip.slide_index}: durationMs {problem}",
                    clip.slide_index if _is_int(clip.slide_index) else None,
                )
            )

    return issues


def validate_render_request(request: RenderRequest) -> None:
    """
    Fail fast on a malformed render request.

    Raises:
        ValidationError: With every issue found
    """
    issues = collect_request_errors(request)
    if issues:
        logger.warning(
            f"Render request {request.request_id or '-'} rejected with {len(issues)} issue(s)"
        )
        raise ValidationError(issues)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _duration_problem(value) -> str:
    if value is None:
        return "is missing"
    if isinstance(value, bool) or not isinstance(value, Real):
        return f"is not a number ({value!r})"
    if not math.isfinite(value):
        return f"is not finite ({value})"
    if value <= 0:
        return f"must be positive (got {value})"
    return ""
