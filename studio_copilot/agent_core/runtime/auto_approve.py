"""Auto-approval annotation.

When a request enables auto-approval, proposals whose every target lives
under a safe container are tagged ``meta.auto_approved`` so the editor may
apply them without asking. Completion proposals are never auto-approved.
"""

from typing import List, Optional

from ..schemas.domain import AssetProposal, CompletionProposal, EditProposal, ObjectProposal

SAFE_PREFIXES = (
    "game.Workspace",
    "game.ReplicatedStorage",
    "game.ServerStorage",
    "game.StarterGui",
    "game.StarterPack",
    "game.StarterPlayer",
    "game.ServerScriptService",
    "game.SoundService",
    "game.TextService",
    "game.CollectionService",
)


def is_safe_path(path: Optional[str]) -> bool:
    return bool(path) and any(path.startswith(prefix) for prefix in SAFE_PREFIXES)


def can_auto_approve(proposal, *, auto_enabled: bool) -> bool:
    if isinstance(proposal, EditProposal):
        return bool(proposal.files) and all(is_safe_path(f.path) for f in proposal.files)
    if isinstance(proposal, ObjectProposal):
        return bool(proposal.ops) and all(
            is_safe_path(op.parent_path if op.op == "create_instance" else op.path) for op in proposal.ops
        )
    if isinstance(proposal, AssetProposal):
        if proposal.insert is not None:
            return is_safe_path(proposal.insert.parent_path or "game.Workspace")
        return proposal.search is not None and auto_enabled
    if isinstance(proposal, CompletionProposal):
        return False
    return False


def annotate_auto_approval(proposals: List, *, auto_enabled: bool) -> List:
    """Set ``meta.auto_approved`` on each proposal in place and return the list."""
    for proposal in proposals:
        proposal.meta.auto_approved = auto_enabled and can_auto_approve(proposal, auto_enabled=auto_enabled)
    return proposals
