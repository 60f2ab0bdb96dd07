"""Tool-call protocol: raw model text -> exactly one validated action.

``extract_action`` is the single entry point. It never raises for malformed
model output; instead it returns a ``ProtocolFailure`` value the
orchestration loop can react to (corrective re-prompt or fallback):

- ``no_action``: the text holds no envelope at all,
- ``unknown_tool``: an envelope names an action outside the catalogue,
- ``validation``: the arguments fail the action's schema or edit limits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from ..diff.range_edits import MAX_EDITS, MAX_INSERTED_CHARS, validate_edits
from ..schemas.base import LenientSchema
from ..schemas.domain import RangeEdit
from .normalize import normalize_args
from .parser import parse_envelope
from .schemas import TOOLS, EditArgs, ToolCategory, is_known_tool

logger = logging.getLogger(__name__)

ArgsDefaults = Callable[[str, Dict[str, Any]], Dict[str, Any]]


class FailureKind(str, Enum):
    no_action = "no_action"
    unknown_tool = "unknown_tool"
    validation = "validation"


@dataclass(frozen=True)
class ParsedAction:
    name: str
    category: ToolCategory
    args: LenientSchema
    raw: str

    @property
    def is_context(self) -> bool:
        return self.category == ToolCategory.context


@dataclass(frozen=True)
class ProtocolFailure:
    kind: FailureKind
    message: str
    tool_name: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    raw: Optional[str] = None

    def to_reason(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "tool": self.tool_name, "errors": list(self.errors)}


ProtocolResult = Union[ParsedAction, ProtocolFailure]


def _format_errors(exc: ValidationError) -> List[str]:
    out: List[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return out


def edits_of(args: EditArgs) -> List[List[RangeEdit]]:
    """Range edits of every file addressed by an edit action, in file order."""
    if args.files:
        return [[RangeEdit.model_validate(e.model_dump()) for e in f.edits] for f in args.files]
    return [[RangeEdit.model_validate(e.model_dump()) for e in args.edits or []]]


def validate_action(
    name: str,
    args: Dict[str, Any],
    *,
    raw: str = "",
    defaults: Optional[ArgsDefaults] = None,
) -> ProtocolResult:
    """Normalize and validate ``args`` for action ``name``."""
    spec = TOOLS.get(name)
    if spec is None:
        return ProtocolFailure(
            kind=FailureKind.unknown_tool,
            message=f"Unknown tool: {name}",
            tool_name=name,
            raw=raw,
        )

    normalized = normalize_args(name, args)
    if defaults is not None:
        normalized = defaults(name, normalized)

    try:
        model = spec.args_model.model_validate(normalized)
    except ValidationError as e:
        errors = _format_errors(e)
        return ProtocolFailure(
            kind=FailureKind.validation,
            message="; ".join(errors) or "invalid arguments",
            tool_name=name,
            errors=errors,
            raw=raw,
        )

    if isinstance(model, EditArgs):
        try:
            for file_edits in edits_of(model):
                validate_edits(file_edits, max_edits=MAX_EDITS, max_inserted_chars=MAX_INSERTED_CHARS)
        except ValueError as e:
            return ProtocolFailure(
                kind=FailureKind.validation,
                message=f"edits: {e}",
                tool_name=name,
                errors=[f"edits: {e}"],
                raw=raw,
            )

    return ParsedAction(name=name, category=spec.category, args=model, raw=raw)


def extract_action(text: str, *, defaults: Optional[ArgsDefaults] = None) -> ProtocolResult:
    """Extract the first action envelope from ``text`` and validate it.

    Args:
        text: Raw model output.
        defaults: Optional hook filling context-derived defaults (e.g. the
            active script path) into normalized arguments before validation.
    """
    envelope = parse_envelope(text, is_known_tool)
    if envelope is None:
        return ProtocolFailure(kind=FailureKind.no_action, message="No tool call found in model output")
    logger.debug("Parsed envelope name=%s args=%s", envelope.name, sorted(envelope.args))
    return validate_action(envelope.name, envelope.args, raw=envelope.raw, defaults=defaults)
