"""Execution of read-only context actions.

Context actions (``get_active_script``, ``search_files``, ...) never produce
proposals. Their results are fed back to the model as a ``TOOL_RESULT``
message so it can continue with an informed action.

``WorkspaceContextExecutor`` answers from the request's editor snapshot and,
when configured, the managed workspace on disk. Scene-graph reads
(``list_children`` / ``get_properties``) are answered from the scene graph the
task state accumulated from applied object operations.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from ..schemas.domain import SceneGraph, TaskState, WorkspaceContext
from ..tools.protocol import ParsedAction
from ..workspace import LocalWorkspace
from . import scene as scene_graph

logger = logging.getLogger(__name__)

ACTIVE_SCRIPT_MAX_CHARS = 40_000


class ContextExecutor(Protocol):
    async def execute(
        self, action: ParsedAction, context: WorkspaceContext, state: Optional[TaskState] = None
    ) -> Any: ...


class WorkspaceContextExecutor:
    def __init__(self, workspace: Optional[LocalWorkspace] = None) -> None:
        self._workspace = workspace

    async def execute(
        self, action: ParsedAction, context: WorkspaceContext, state: Optional[TaskState] = None
    ) -> Any:
        args = action.args
        name = action.name

        if name == "get_active_script":
            if context.active_script is None:
                return None
            return {
                "path": context.active_script.path,
                "text": context.active_script.text[:ACTIVE_SCRIPT_MAX_CHARS],
            }
        if name == "list_selection":
            return [s.model_dump(by_alias=True) for s in context.selection]
        if name == "list_open_documents":
            docs = context.open_documents
            if args.max_count:
                docs = docs[: args.max_count]
            return [d.model_dump() for d in docs]
        if name == "list_code_definition_names":
            if self._workspace is None:
                return list(context.code_definitions or [])
            defs = await asyncio.to_thread(
                self._workspace.list_code_definition_names,
                root=args.root,
                limit=args.limit or 200,
                exts=args.exts,
            )
            return [d.model_dump() for d in defs]
        if name == "search_files":
            if self._workspace is None:
                return []
            hits = await asyncio.to_thread(
                self._workspace.search_files,
                args.query,
                root=args.root,
                limit=args.limit or 20,
                exts=args.exts,
                case_sensitive=args.case_sensitive,
            )
            return [h.model_dump() for h in hits]
        if name == "list_children":
            scene = state.scene if state is not None else SceneGraph()
            return scene_graph.list_children(
                scene,
                args.parent_path,
                depth=args.depth,
                max_nodes=args.max_nodes,
                class_whitelist=args.class_whitelist,
            )
        if name == "get_properties":
            scene = state.scene if state is not None else SceneGraph()
            return scene_graph.get_properties(
                scene, args.path, args.keys, include_attributes=bool(args.include_all_attributes)
            )
        if name == "open_or_create_script":
            return await self._open_or_create(args.path or f"{args.parent_path}.{args.name}", context)

        logger.warning("No context handler for action %s", name)
        return None

    async def _open_or_create(self, path: str, context: WorkspaceContext) -> Dict[str, Any]:
        active = context.active_script
        if active is not None and active.path == path:
            return {"path": path, "exists": True, "text": active.text[:ACTIVE_SCRIPT_MAX_CHARS]}
        text: Optional[str] = None
        if self._workspace is not None:
            try:
                text = await asyncio.to_thread(self._workspace.read_text, path)
            except ValueError:
                logger.warning("open_or_create_script rejected path outside workspace: %s", path)
        if text is None:
            return {"path": path, "exists": False, "text": ""}
        return {"path": path, "exists": True, "text": text[:ACTIVE_SCRIPT_MAX_CHARS]}
