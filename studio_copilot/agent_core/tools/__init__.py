"""Action catalogue and the tool-call protocol that extracts one action per model turn."""

from .normalize import normalize_args
from .parser import coerce_primitive, parse_envelope
from .protocol import (
    FailureKind,
    ParsedAction,
    ProtocolFailure,
    ProtocolResult,
    extract_action,
    validate_action,
)
from .schemas import TOOLS, ToolCategory, ToolSpec, is_known_tool

__all__ = [
    "FailureKind",
    "ParsedAction",
    "ProtocolFailure",
    "ProtocolResult",
    "TOOLS",
    "ToolCategory",
    "ToolSpec",
    "coerce_primitive",
    "extract_action",
    "is_known_tool",
    "normalize_args",
    "parse_envelope",
    "validate_action",
]
