"""Action envelope parser.

Two envelope forms are recognised in raw model text:

- XML-ish tags: ``<tool_name><param>value</param>...</tool_name>``. Each
  parameter body is coerced by ``coerce_primitive``. A tool tag without any
  child tags may carry a JSON object as its whole body.
- A JSON object ``{"name": ..., "arguments": {...}}`` (``tool`` / ``args``
  are accepted as aliases).

Only the first envelope in the text is returned; trailing text and later
envelopes are ignored. Parsing never raises for malformed text.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

_FENCE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?|```")
_OPEN_TAG = re.compile(r"<([A-Za-z_][\w]*)\s*>")
_CHILD_TAG = re.compile(r"<([A-Za-z_][\w]*)\s*>([\s\S]*?)</\1\s*>")
_INTEGER = re.compile(r"^-?\d+$")
_NUMBER = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")

_SINGLE_QUOTED = re.compile(r"'([^'\\]*(?:\\.[^'\\]*)*)'")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][\w]*)\s*:")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


@dataclass(frozen=True)
class RawEnvelope:
    """An envelope as found in the text, before normalization and validation."""

    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    raw: str = ""
    start: int = 0


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text)


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def repair_json(text: str) -> Any:
    """Parse JSON written loosely by a model (single quotes, bare keys, trailing commas).

    Returns ``None`` when the text cannot be repaired.
    """
    candidate = strip_code_fences(text).strip()
    if not (
        (candidate.startswith("{") and candidate.endswith("}"))
        or (candidate.startswith("[") and candidate.endswith("]"))
    ):
        return None
    strict = _loads(candidate)
    if strict is not None:
        return strict
    candidate = _SINGLE_QUOTED.sub(r'"\1"', candidate)
    candidate = _BARE_KEY.sub(r'\1"\2":', candidate)
    candidate = _TRAILING_COMMA.sub(r"\1", candidate)
    return _loads(candidate)


def coerce_primitive(value: str) -> Any:
    """Coerce a parameter body into a Python value.

    Order: ``true``/``false``/``null``, numbers, strict JSON, lenient JSON
    repair, otherwise the trimmed string.
    """
    text = value.strip()
    if text == "true":
        return True
    if text == "false":
        return False
    if text == "null":
        return None
    if _INTEGER.match(text):
        return int(text)
    if _NUMBER.match(text):
        return float(text)
    if text[:1] in "{[\"":
        strict = _loads(text)
        if strict is not None:
            return strict
    repaired = repair_json(text)
    if repaired is not None:
        return repaired
    return text


def _parse_tag_envelope(text: str, is_known: Callable[[str], bool]) -> Optional[RawEnvelope]:
    first_unknown: Optional[RawEnvelope] = None
    for match in _OPEN_TAG.finditer(text):
        name = match.group(1)
        close = re.search(rf"</{re.escape(name)}\s*>", text[match.end() :])
        if close is None:
            continue
        inner = text[match.end() : match.end() + close.start()]
        raw = text[match.start() : match.end() + close.end()]
        if not is_known(name):
            if first_unknown is None and _CHILD_TAG.search(inner):
                first_unknown = RawEnvelope(name=name, raw=raw, start=match.start())
            continue

        args: Dict[str, Any] = {}
        for child in _CHILD_TAG.finditer(inner):
            args[child.group(1)] = coerce_primitive(child.group(2))
        if not args and inner.strip():
            whole = coerce_primitive(inner)
            if isinstance(whole, dict):
                args = whole
        return RawEnvelope(name=name, args=args, raw=raw, start=match.start())
    return first_unknown


def _parse_json_envelope(text: str) -> Optional[RawEnvelope]:
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            obj, end = decoder.raw_decode(text, idx)
        except ValueError:
            idx = text.find("{", idx + 1)
            continue
        if isinstance(obj, dict):
            name = obj.get("name", obj.get("tool"))
            if isinstance(name, str) and name.strip():
                args = obj.get("arguments", obj.get("args", {}))
                if isinstance(args, str):
                    args = repair_json(args) or _loads(args) or {}
                if not isinstance(args, dict):
                    args = {}
                return RawEnvelope(name=name.strip(), args=args, raw=text[idx:end], start=idx)
        idx = text.find("{", end)
    return None


def parse_envelope(text: str, is_known: Callable[[str], bool]) -> Optional[RawEnvelope]:
    """Return the first action envelope in ``text``, or ``None`` when there is none.

    Tag envelopes naming a known action take precedence over unknown tags; a
    tag envelope with child parameters but an unknown name is still returned
    (so the caller can report the unknown tool) when no known one exists.
    """
    if not text or not text.strip():
        return None
    cleaned = strip_code_fences(text)
    candidates = [
        env
        for env in (_parse_tag_envelope(cleaned, is_known), _parse_json_envelope(cleaned))
        if env is not None
    ]
    if not candidates:
        return None
    known = [env for env in candidates if is_known(env.name)]
    pool = known or candidates
    return min(pool, key=lambda env: env.start)
