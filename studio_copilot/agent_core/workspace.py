"""Workspace accessor collaborator.

The managed workspace is a directory tree of scripts and data files that
mirrors the running application. The orchestration core reads it (for context
actions and checkpoints) and the checkpoint manager writes it back on restore.

``LocalWorkspace`` confines every path to its root: a relative path that
escapes the root (``../``, absolute paths) raises ``ValueError``.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Iterator, List, Optional, Protocol, Sequence

from pydantic import Field

from .schemas.base import BaseSchema

logger = logging.getLogger(__name__)

IGNORE_SEGMENTS = frozenset(
    {"node_modules", ".git", ".next", "logs", "data", "dist", "build", ".vscode", ".idea"}
)
DEFAULT_CODE_EXTS = (".lua", ".luau", ".ts", ".tsx", ".js", ".jsx", ".json", ".py")

_DEFINITION = re.compile(r"(?:local\s+)?function\s+([A-Za-z0-9_.:]+)|^\s*(?:async\s+)?def\s+([A-Za-z0-9_]+)")


class DefinitionInfo(BaseSchema):
    file: str
    line: int
    name: str


class SearchHit(BaseSchema):
    file: str
    line: int
    snippet: str = Field(max_length=260)


class WorkspaceAccessor(Protocol):
    root: Path

    def resolve(self, relative: str) -> Path: ...

    def read_text(self, relative: str) -> Optional[str]: ...

    def read_bytes(self, relative: str) -> bytes: ...

    def write_bytes(self, relative: str, data: bytes) -> None: ...

    def iter_files(self, *, exclude: Sequence[str] = ...) -> Iterator[str]: ...


class LocalWorkspace:
    """Filesystem-backed workspace rooted at ``root``."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root).resolve()

    def resolve(self, relative: str) -> Path:
        candidate = (self.root / relative).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValueError(f"Path escapes workspace root: {relative}")
        return candidate

    def read_text(self, relative: str) -> Optional[str]:
        try:
            return self.resolve(relative).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def read_bytes(self, relative: str) -> bytes:
        return self.resolve(relative).read_bytes()

    def write_bytes(self, relative: str, data: bytes) -> None:
        target = self.resolve(relative)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def iter_files(self, *, exclude: Sequence[str] = tuple(IGNORE_SEGMENTS)) -> Iterator[str]:
        """Yield workspace-relative POSIX paths of regular files, skipping excluded directories."""
        skip = set(exclude)
        if not self.root.exists():
            return
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in skip)
            for filename in sorted(filenames):
                full = Path(dirpath) / filename
                if full.is_file():
                    yield full.relative_to(self.root).as_posix()

    # ------------------------------------------------------------------
    # Code intelligence helpers used by context actions
    # ------------------------------------------------------------------

    def _code_files(self, root: Optional[str], exts: Optional[Sequence[str]], limit: int) -> List[str]:
        wanted = tuple(e if e.startswith(".") else f".{e}" for e in (exts or DEFAULT_CODE_EXTS))
        prefix = (root or "").strip("/")
        out: List[str] = []
        for rel in self.iter_files():
            if prefix and not rel.startswith(f"{prefix}/"):
                continue
            if rel.endswith(wanted):
                out.append(rel)
                if len(out) >= limit:
                    break
        return out

    def list_code_definition_names(
        self, *, root: Optional[str] = None, limit: int = 200, exts: Optional[Sequence[str]] = None
    ) -> List[DefinitionInfo]:
        limit = max(1, min(limit, 1000))
        found: List[DefinitionInfo] = []
        for rel in self._code_files(root, exts, limit):
            text = self.read_text(rel) or ""
            for idx, line in enumerate(text.splitlines(), start=1):
                match = _DEFINITION.search(line)
                if match:
                    found.append(DefinitionInfo(file=rel, line=idx, name=match.group(1) or match.group(2)))
                    if len(found) >= limit:
                        return found
        return found

    def search_files(
        self,
        query: str,
        *,
        root: Optional[str] = None,
        limit: int = 20,
        exts: Optional[Sequence[str]] = None,
        case_sensitive: bool = False,
    ) -> List[SearchHit]:
        if not query:
            return []
        limit = max(1, min(limit, 100))
        pattern = re.compile(re.escape(query), 0 if case_sensitive else re.IGNORECASE)
        hits: List[SearchHit] = []
        for rel in self._code_files(root, exts, 600):
            try:
                text = self.read_text(rel) or ""
            except (OSError, UnicodeDecodeError):
                logger.debug("search_files: unreadable %s", rel)
                continue
            for idx, line in enumerate(text.splitlines(), start=1):
                if pattern.search(line):
                    snippet = line.strip()
                    if len(snippet) > 240:
                        snippet = snippet[:240] + "..."
                    hits.append(SearchHit(file=rel, line=idx, snippet=snippet))
                    if len(hits) >= limit:
                        return hits
        return hits
