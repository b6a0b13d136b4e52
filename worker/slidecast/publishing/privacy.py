"""Upload privacy derived from the content policy check."""

from typing import Optional

POLICY_CLEAN = "CLEAN"
POLICY_BLOCK = "BLOCK"


def resolve_upload_privacy(policy_status: Optional[str]) -> Optional[str]:
    """
    Map a policy overall status onto a privacy status.

    CLEAN -> "public", BLOCK -> None (do not upload), anything else
    (review, unknown, not yet checked) -> "private".
    """
    status = (policy_status or "").strip().upper()
    if status == POLICY_CLEAN:
        return "public"
    if status == POLICY_BLOCK:
        return None
    return "private"
