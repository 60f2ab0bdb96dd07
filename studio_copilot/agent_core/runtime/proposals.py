"""Mapping of validated actions to proposals.

Two concerns live here:

- ``selection_defaults`` builds the hook the protocol applies to normalized
  arguments before validation, filling paths the model left out from the
  editor snapshot (active script, single selection, container parent).
- ``map_action`` turns a validated edit/object/asset/completion action into
  proposals, computing edit previews against the base text. An action that
  cannot be mapped reports ``missing_context`` (the loop asks the model to
  fetch it) or ``rejected`` (the loop re-prompts with the reason).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..diff.range_edits import apply_range_edits, sha1_hex, unified_diff
from ..schemas.domain import (
    AssetGenerateRequest,
    AssetInsertRequest,
    AssetProposal,
    AssetSearchRequest,
    CompletionProposal,
    EditDiff,
    EditFileChange,
    EditPreview,
    EditProposal,
    ObjectOperation,
    ObjectProposal,
    ProposalMeta,
    WorkspaceContext,
)
from ..tools.protocol import ArgsDefaults, ParsedAction, edits_of
from ..tools.schemas import EditArgs, ToolCategory

logger = logging.getLogger(__name__)

DEFAULT_PARENT = "game.Workspace"
DEFAULT_ASSET_LIMIT = 6

CONTAINER_PATH = re.compile(
    r"^(?:game\.(?:Workspace|ReplicatedStorage|ServerStorage|StarterGui|StarterPack|StarterPlayer"
    r"|Lighting|Teams|SoundService|TextService|CollectionService)|game\.[A-Za-z]+\.[\s\S]+)"
)
PROTECTED_PATH = re.compile(r"^game(\.[A-Za-z]+Service|\.DataModel)?$")

TextReader = Callable[[str], Awaitable[Optional[str]]]


@dataclass
class MappingResult:
    proposals: List[Any] = field(default_factory=list)
    missing_context: Optional[str] = None
    rejected: Optional[str] = None
    progress_message: Optional[str] = None


def selection_defaults(context: WorkspaceContext) -> ArgsDefaults:
    selected = context.single_selection_path
    container = selected if selected and CONTAINER_PATH.match(selected) else None

    def apply(name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(args)
        if name in ("show_diff", "apply_edit"):
            if not out.get("files") and not out.get("path") and context.active_script is not None:
                out["path"] = context.active_script.path
        elif name in ("rename_instance", "set_properties", "delete_instance"):
            if not out.get("path") and selected:
                out["path"] = selected
        elif name in ("create_instance", "insert_asset"):
            if not out.get("parent_path"):
                out["parent_path"] = container or DEFAULT_PARENT
        return out

    return apply


async def _base_text(
    path: str, explicit: Optional[str], context: WorkspaceContext, read_text: Optional[TextReader]
) -> Optional[str]:
    if explicit is not None:
        return explicit
    if context.active_script is not None and context.active_script.path == path:
        return context.active_script.text
    if read_text is not None:
        return await read_text(path)
    return None


async def _map_edit(
    action: ParsedAction, context: WorkspaceContext, read_text: Optional[TextReader]
) -> MappingResult:
    args: EditArgs = action.args  # type: ignore[assignment]
    targets: List[Tuple[str, Optional[str]]]
    if args.files:
        targets = [(f.path, f.base_text) for f in args.files]
    else:
        targets = [(args.path or "", None)]

    files: List[EditFileChange] = []
    for (path, explicit), edits in zip(targets, edits_of(args)):
        old = await _base_text(path, explicit, context, read_text)
        if old is None:
            return MappingResult(missing_context=f"Need the current text of {path}")
        new = apply_range_edits(old, edits)
        files.append(
            EditFileChange(
                path=path,
                diff=EditDiff(edits=edits),
                before_hash=sha1_hex(old),
                base_text=old,
                preview=EditPreview(unified=unified_diff(old, new, path)),
            )
        )
    return MappingResult(proposals=[EditProposal(files=files, notes=f"Parsed from {action.name}")])


def _map_object(action: ParsedAction) -> MappingResult:
    args = action.args
    name = action.name
    if name == "create_instance":
        op = ObjectOperation(op=name, class_name=args.class_name, parent_path=args.parent_path, props=args.props)
    elif name == "set_properties":
        op = ObjectOperation(op=name, path=args.path, props=args.props)
    elif name == "rename_instance":
        op = ObjectOperation(op=name, path=args.path, new_name=args.new_name)
    else:
        if PROTECTED_PATH.match(args.path):
            return MappingResult(rejected=f"Refusing to delete {args.path}: the DataModel and services cannot be deleted")
        op = ObjectOperation(op=name, path=args.path)
    return MappingResult(proposals=[ObjectProposal(ops=[op], notes=f"Parsed from {name}")])


def _map_asset(action: ParsedAction) -> MappingResult:
    args = action.args
    if action.name == "search_assets":
        proposal = AssetProposal(
            search=AssetSearchRequest(query=args.query, tags=args.tags, limit=args.limit or DEFAULT_ASSET_LIMIT)
        )
    elif action.name == "insert_asset":
        proposal = AssetProposal(insert=AssetInsertRequest(asset_id=args.asset_id, parent_path=args.parent_path))
    else:
        proposal = AssetProposal(
            generate3d=AssetGenerateRequest(prompt=args.prompt, tags=args.tags, style=args.style, budget=args.budget)
        )
    return MappingResult(proposals=[proposal])


def _map_completion(action: ParsedAction) -> MappingResult:
    args = action.args
    if action.name == "complete":
        summary, confidence = args.summary, args.confidence
    elif action.name == "attempt_completion":
        summary, confidence = args.result, args.confidence
    elif action.name == "final_message":
        summary, confidence = args.text, args.confidence
    else:
        if args.phase != "final":
            return MappingResult(progress_message=args.text)
        summary, confidence = args.text, None
    return MappingResult(proposals=[CompletionProposal(summary=summary, confidence=confidence)])


async def map_action(
    action: ParsedAction,
    context: WorkspaceContext,
    *,
    read_text: Optional[TextReader] = None,
) -> MappingResult:
    """Map a validated non-context, non-planning action to proposals.

    Every produced proposal carries ``meta.tool`` with the action name.
    """
    if action.category == ToolCategory.edit:
        result = await _map_edit(action, context, read_text)
    elif action.category == ToolCategory.object:
        result = _map_object(action)
    elif action.category == ToolCategory.asset:
        result = _map_asset(action)
    elif action.category == ToolCategory.completion:
        result = _map_completion(action)
    else:
        raise ValueError(f"Action {action.name} of category {action.category.value} does not map to proposals")

    for proposal in result.proposals:
        proposal.meta = ProposalMeta(tool=action.name)
    if result.proposals:
        logger.debug("Mapped %s to %d proposal(s)", action.name, len(result.proposals))
    return result
