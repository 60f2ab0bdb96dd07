"""Deterministic fallback proposals.

Used when the model produced no usable action within the turn and retry
allowance. The escalation order is:

1. a comment inserted at the top of the active script,
2. a rename of the first selected instance,
3. an asset search seeded by the user's message.
"""

from typing import Tuple

from ..diff.range_edits import apply_range_edits, sha1_hex, unified_diff
from ..schemas.domain import (
    AssetProposal,
    AssetSearchRequest,
    EditDiff,
    EditFileChange,
    EditPreview,
    EditProposal,
    ObjectOperation,
    ObjectProposal,
    Position,
    ProposalMeta,
    RangeEdit,
    WorkspaceContext,
)

COMMENT_MAX_CHARS = 160


def sanitize_comment(message: str) -> str:
    return " ".join(message.split())[:COMMENT_MAX_CHARS]


def build_fallback(message: str, context: WorkspaceContext, *, reason: str) -> Tuple[object, str]:
    """Return ``(proposal, progress_label)`` for the first applicable fallback."""
    meta = ProposalMeta(tool="fallback", fallback=True, fallback_reason=reason)

    if context.active_script is not None:
        path = context.active_script.path
        old = context.active_script.text
        origin = Position(line=0, character=0)
        edits = [RangeEdit(start=origin, end=origin, text=f"-- Copilot: {sanitize_comment(message)}\n")]
        new = apply_range_edits(old, edits)
        change = EditFileChange(
            path=path,
            diff=EditDiff(edits=edits),
            before_hash=sha1_hex(old),
            base_text=old,
            preview=EditPreview(unified=unified_diff(old, new, path)),
        )
        proposal = EditProposal(
            files=[change], meta=meta, notes="Insert a comment at the top as a placeholder for an edit."
        )
        return proposal, "fallback.edit commentTop"

    if context.selection:
        first = context.selection[0].path
        leaf = first.split(".")[-1] or "Instance"
        proposal = ObjectProposal(
            ops=[ObjectOperation(op="rename_instance", path=first, new_name=f"{leaf}_Copilot")],
            meta=meta,
            notes="Rename selected instance by appending _Copilot",
        )
        return proposal, f"fallback.object rename {first}"

    proposal = AssetProposal(
        search=AssetSearchRequest(query=message.strip() or "button", limit=6),
        meta=meta,
    )
    return proposal, "fallback.asset search"
