from __future__ import annotations

from pathlib import Path

import pytest

from studio_copilot.agent_core.runtime import WorkspaceContextExecutor
from studio_copilot.agent_core.runtime.context import ACTIVE_SCRIPT_MAX_CHARS
from studio_copilot.agent_core.runtime.scene import apply_operations
from studio_copilot.agent_core.schemas.domain import ObjectOperation, TaskState, WorkspaceContext
from studio_copilot.agent_core.tools import ParsedAction, validate_action
from studio_copilot.agent_core.workspace import LocalWorkspace

pytestmark = pytest.mark.asyncio

CONTEXT = WorkspaceContext.model_validate(
    {
        "activeScript": {"path": "src/main.lua", "text": "x" * (ACTIVE_SCRIPT_MAX_CHARS + 10)},
        "selection": [{"className": "Part", "path": "game.Workspace.Part"}],
        "openDocuments": [{"path": "a.lua"}, {"path": "b.lua"}],
        "codeDefinitions": [{"name": "fromEditor"}],
    }
)


def _action(name: str, args: dict) -> ParsedAction:
    result = validate_action(name, args)
    assert isinstance(result, ParsedAction)
    return result


@pytest.fixture
def workspace(tmp_path: Path) -> LocalWorkspace:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "spawn.lua").write_text("local function spawn()\nend\n", "utf-8")
    return LocalWorkspace(tmp_path)


async def test_active_script_is_truncated():
    result = await WorkspaceContextExecutor().execute(_action("get_active_script", {}), CONTEXT)
    assert result["path"] == "src/main.lua"
    assert len(result["text"]) == ACTIVE_SCRIPT_MAX_CHARS


async def test_active_script_missing_is_none():
    assert await WorkspaceContextExecutor().execute(_action("get_active_script", {}), WorkspaceContext()) is None


async def test_selection_and_open_documents():
    executor = WorkspaceContextExecutor()
    assert await executor.execute(_action("list_selection", {}), CONTEXT) == [
        {"className": "Part", "path": "game.Workspace.Part"}
    ]
    docs = await executor.execute(_action("list_open_documents", {"maxCount": 1}), CONTEXT)
    assert docs == [{"path": "a.lua"}]


async def test_definitions_and_search_use_workspace(workspace: LocalWorkspace):
    executor = WorkspaceContextExecutor(workspace)
    defs = await executor.execute(_action("list_code_definition_names", {}), CONTEXT)
    assert defs == [{"file": "src/spawn.lua", "line": 1, "name": "spawn"}]
    hits = await executor.execute(_action("search_files", {"query": "SPAWN"}), CONTEXT)
    assert hits[0]["file"] == "src/spawn.lua"


async def test_without_workspace_definitions_come_from_editor():
    executor = WorkspaceContextExecutor()
    assert await executor.execute(_action("list_code_definition_names", {}), CONTEXT) == [{"name": "fromEditor"}]
    assert await executor.execute(_action("search_files", {"query": "x"}), CONTEXT) == []


def _scene_state() -> TaskState:
    state = TaskState(workflow_id="wf")
    apply_operations(
        state.scene,
        [
            ObjectOperation(op="create_instance", class_name="Model", parent_path="game.Workspace", props={"Name": "Tower"}),
            ObjectOperation(
                op="create_instance",
                class_name="Part",
                parent_path="game.Workspace.Tower",
                props={"Name": "Base", "Anchored": True, "@Team": "red"},
            ),
        ],
    )
    return state


async def test_list_children_reads_the_task_state_scene():
    executor = WorkspaceContextExecutor()
    result = await executor.execute(
        _action("list_children", {"parentPath": "Workspace", "depth": 2}), CONTEXT, _scene_state()
    )
    assert result == [
        {"className": "Model", "name": "Tower", "path": "game.Workspace.Tower"},
        {"className": "Part", "name": "Base", "path": "game.Workspace.Tower.Base"},
    ]


async def test_get_properties_reads_the_task_state_scene():
    executor = WorkspaceContextExecutor()
    state = _scene_state()
    props = await executor.execute(
        _action("get_properties", {"path": "game.Workspace.Tower.Base", "keys": ["Anchored", "Missing"]}),
        CONTEXT,
        state,
    )
    assert props == {"Anchored": True}
    with_attrs = await executor.execute(
        _action(
            "get_properties",
            {"path": "game.Workspace.Tower.Base", "keys": ["@attributes"], "includeAllAttributes": True},
        ),
        CONTEXT,
        state,
    )
    assert with_attrs == {"@attributes": {"Team": "red"}}


async def test_scene_reads_without_task_state_are_empty():
    executor = WorkspaceContextExecutor()
    assert await executor.execute(_action("list_children", {"parentPath": "game.Workspace"}), CONTEXT) == []
    assert await executor.execute(_action("get_properties", {"path": "game.Workspace.Part"}), CONTEXT) == {}


async def test_open_or_create_script(workspace: LocalWorkspace):
    executor = WorkspaceContextExecutor(workspace)
    existing = await executor.execute(_action("open_or_create_script", {"path": "src/spawn.lua"}), CONTEXT)
    assert existing["exists"] is True
    assert existing["text"].startswith("local function spawn")
    missing = await executor.execute(
        _action("open_or_create_script", {"parentPath": "game.ServerScriptService", "name": "Main"}), CONTEXT
    )
    assert missing == {"path": "game.ServerScriptService.Main", "exists": False, "text": ""}
    outside = await executor.execute(_action("open_or_create_script", {"path": "../etc/passwd"}), CONTEXT)
    assert outside["exists"] is False
