"""Positional text edits.

Edits address the *original* text with ``(line, character)`` pairs, both
zero-based. ``apply_range_edits`` resolves every position against the original
text, sorts edits by descending start offset and splices right-to-left so that
earlier offsets stay valid. Overlap validation is done upstream by
``validate_edits`` when a proposal is built.
"""

from __future__ import annotations

import difflib
import hashlib
from typing import Any, Iterable, List, Mapping, Sequence, Union

from ..errors import StaleContentError
from ..schemas.domain import Position, RangeEdit

EditLike = Union[RangeEdit, Mapping[str, Any]]

MAX_EDITS = 20
MAX_INSERTED_CHARS = 2000


def _as_edit(edit: EditLike) -> RangeEdit:
    if isinstance(edit, RangeEdit):
        return edit
    return RangeEdit.model_validate(edit)


def position_to_index(text: str, pos: Position) -> int:
    """Convert a ``(line, character)`` position into a character offset.

    Lines past the end resolve to ``len(text)``; characters past the end of a
    line resolve to the end of that line.
    """
    lines = text.split("\n")
    if pos.line >= len(lines):
        return len(text)
    offset = sum(len(line) + 1 for line in lines[: pos.line])
    return offset + min(pos.character, len(lines[pos.line]))


def apply_range_edits(text: str, edits: Iterable[EditLike]) -> str:
    resolved = []
    for raw in edits:
        edit = _as_edit(raw)
        start = position_to_index(text, edit.start)
        end = position_to_index(text, edit.end)
        resolved.append((start, max(start, end), edit.text))
    if not resolved:
        return text
    resolved.sort(key=lambda item: item[0], reverse=True)
    out = text
    for start, end, replacement in resolved:
        out = out[:start] + replacement + out[end:]
    return out


def _position_key(pos: Position) -> tuple[int, int]:
    return pos.line, pos.character


def validate_edits(
    edits: Sequence[EditLike],
    *,
    max_edits: int = MAX_EDITS,
    max_inserted_chars: int = MAX_INSERTED_CHARS,
) -> List[RangeEdit]:
    """Sort edits by start position and enforce the proposal safety limits.

    Raises:
        ValueError: If there are no edits, too many edits, too much inserted
            text, an inverted range, or two edits overlap.
    """
    normalized = sorted((_as_edit(e) for e in edits), key=lambda e: _position_key(e.start))
    if not normalized:
        raise ValueError("at least one edit is required")
    if len(normalized) > max_edits:
        raise ValueError(f"too many edits ({len(normalized)} > {max_edits})")
    inserted = sum(len(e.text) for e in normalized)
    if inserted > max_inserted_chars:
        raise ValueError(f"edit text too large ({inserted} > {max_inserted_chars} chars)")
    for edit in normalized:
        if _position_key(edit.end) < _position_key(edit.start):
            raise ValueError(f"edit end precedes start at line {edit.start.line}")
    for prev, nxt in zip(normalized, normalized[1:]):
        if _position_key(nxt.start) < _position_key(prev.end):
            raise ValueError(f"overlapping edits at line {nxt.start.line}")
    return normalized


def unified_diff(old_text: str, new_text: str, path: str = "file") -> str:
    lines = difflib.unified_diff(
        old_text.split("\n"),
        new_text.split("\n"),
        fromfile=f"a/{path}",
        tofile=f"b/{path}",
        lineterm="",
    )
    return "\n".join(lines)


def sha1_hex(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def check_stale(path: str, live_text: str, before_hash: str | None) -> None:
    """Raise ``StaleContentError`` when ``live_text`` no longer hashes to ``before_hash``.

    A proposal without a recorded hash cannot be checked and is accepted.
    """
    if not before_hash:
        return
    actual = sha1_hex(live_text)
    if actual != before_hash:
        raise StaleContentError(path, expected=before_hash, actual=actual)
