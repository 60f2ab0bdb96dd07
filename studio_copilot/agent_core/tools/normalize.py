"""Pure argument normalization applied before schema validation.

Models emit the same logical argument in several shapes: camelCase keys,
JSON objects encoded as strings, plan steps as ``<li>`` markup or bullet
text. ``normalize_args`` folds those into one canonical form so the schemas
in ``schemas.py`` only have to describe the canonical shape.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Mapping

from .parser import repair_json

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")
_LIST_ITEM = re.compile(r"<(li|item|bullet)[^>]*>([\s\S]*?)</\1>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_BULLET = re.compile(r"^\s*(?:[•*\-]|\d+[.)])\s+")

_JSON_FIELDS = ("props", "edits", "files", "tags", "exts", "keys", "class_whitelist")
_INT_FIELDS = ("asset_id", "limit", "max_count", "depth", "max_nodes", "max_bytes")
_FLOAT_FIELDS = ("confidence", "budget")


def to_snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(lambda m: "_" + m.group(1).lower(), key)


def _decode_json_string(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    text = value.strip()
    try:
        return json.loads(text)
    except ValueError:
        repaired = repair_json(text)
        return value if repaired is None else repaired


def parse_steps(raw: Any) -> List[str]:
    """Turn a JSON array, ``<li>``/``<item>`` markup or bullet text into step strings."""
    if isinstance(raw, list):
        return [str(s).strip() for s in raw if str(s).strip()]
    text = str(raw or "").strip()
    if not text:
        return []
    decoded = _decode_json_string(text)
    if isinstance(decoded, list):
        return [str(s).strip() for s in decoded if str(s).strip()]
    items = [_ANY_TAG.sub("", m.group(2)).strip() for m in _LIST_ITEM.finditer(text)]
    items = [i for i in items if i]
    if items:
        return items
    cleaned = _ANY_TAG.sub("\n", text)
    lines = (_BULLET.sub("", line).strip() for line in cleaned.splitlines())
    return [line for line in lines if line]


def _as_number(value: Any, cast: type) -> Any:
    if isinstance(value, str):
        try:
            return cast(value.strip())
        except ValueError:
            return value
    return value


def _normalize_edit_list(edits: Any) -> Any:
    if not isinstance(edits, list):
        return edits
    return [_decode_json_string(e) for e in edits]


def normalize_args(name: str, args: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a canonical copy of ``args`` for action ``name``; the input is not mutated."""
    out: Dict[str, Any] = {}
    for key, value in args.items():
        out[to_snake_case(str(key))] = value

    if "parent" in out:
        parent = out.pop("parent")
        out.setdefault("parent_path", parent)
    if name == "list_children" and "parent_path" not in out and "path" in out:
        out["parent_path"] = out.pop("path")

    for key in _JSON_FIELDS:
        if key in out:
            out[key] = _decode_json_string(out[key])
    if "edits" in out:
        out["edits"] = _normalize_edit_list(out["edits"])
    if isinstance(out.get("files"), list):
        files = []
        for entry in out["files"]:
            entry = _decode_json_string(entry)
            if isinstance(entry, dict):
                entry = {to_snake_case(str(k)): v for k, v in entry.items()}
                if "edits" in entry:
                    entry["edits"] = _normalize_edit_list(_decode_json_string(entry["edits"]))
            files.append(entry)
        out["files"] = files
    if isinstance(out.get("tags"), str):
        out["tags"] = [t.strip() for t in out["tags"].split(",") if t.strip()]
    if isinstance(out.get("exts"), str):
        out["exts"] = [e.strip() for e in out["exts"].split(",") if e.strip()]

    if "steps" in out:
        out["steps"] = parse_steps(out["steps"])

    for key in _INT_FIELDS:
        if key in out:
            out[key] = _as_number(out[key], int)
    for key in _FLOAT_FIELDS:
        if key in out:
            out[key] = _as_number(out[key], float)

    if name == "message" and isinstance(out.get("phase"), str):
        out["phase"] = out["phase"].strip().lower()
    return out
