"""Argument schemas for the action catalogue.

Each action the model may emit has a pydantic model describing its
parameters. Models derive from ``LenientSchema`` so unknown keys produced by
the model are dropped instead of failing validation, while required fields,
enumerations, numeric ranges and list caps are still enforced.

``TOOLS`` maps an action name to its ``ToolSpec`` (category + argument model).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import Field, model_validator

from ..schemas.base import LenientSchema


class ToolCategory(str, Enum):
    context = "context"
    planning = "planning"
    edit = "edit"
    object = "object"
    asset = "asset"
    completion = "completion"


# ---------------------------------------------------------------------------
# Context (read-only) actions
# ---------------------------------------------------------------------------


class GetActiveScriptArgs(LenientSchema):
    pass


class ListSelectionArgs(LenientSchema):
    pass


class ListOpenDocumentsArgs(LenientSchema):
    max_count: Optional[int] = Field(default=None, ge=1, le=100)


class ListCodeDefinitionNamesArgs(LenientSchema):
    root: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    exts: Optional[List[str]] = None


class SearchFilesArgs(LenientSchema):
    query: str = Field(min_length=1)
    root: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=100)
    exts: Optional[List[str]] = None
    case_sensitive: bool = False


class ListChildrenArgs(LenientSchema):
    parent_path: str = Field(min_length=1)
    depth: Optional[int] = Field(default=None, ge=0, le=10)
    max_nodes: Optional[int] = Field(default=None, ge=1, le=2000)
    class_whitelist: Optional[Dict[str, bool]] = None


class GetPropertiesArgs(LenientSchema):
    path: str = Field(min_length=1)
    keys: Optional[List[str]] = None
    include_all_attributes: Optional[bool] = None
    max_bytes: Optional[int] = Field(default=None, ge=1, le=1_000_000)


class OpenOrCreateScriptArgs(LenientSchema):
    path: Optional[str] = None
    parent_path: Optional[str] = None
    name: Optional[str] = None

    @model_validator(mode="after")
    def _path_or_parent_and_name(self) -> "OpenOrCreateScriptArgs":
        if not self.path and not (self.parent_path and self.name):
            raise ValueError("Provide path or (parent_path + name)")
        return self


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class StartPlanArgs(LenientSchema):
    steps: List[str] = Field(min_length=1, max_length=50)


class UpdatePlanArgs(LenientSchema):
    completed_step: Optional[str] = None
    next_step: Optional[str] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------


class PositionArg(LenientSchema):
    line: int = Field(ge=0)
    character: int = Field(ge=0)


class EditArg(LenientSchema):
    start: PositionArg
    end: PositionArg
    text: str


class EditFileArg(LenientSchema):
    path: str = Field(min_length=1)
    edits: List[EditArg] = Field(min_length=1, max_length=20)
    base_text: Optional[str] = None


class EditArgs(LenientSchema):
    """Arguments of ``show_diff`` / ``apply_edit``.

    Either a single ``path`` + ``edits`` pair or a multi-file ``files`` list.
    """

    path: Optional[str] = None
    edits: Optional[List[EditArg]] = Field(default=None, max_length=20)
    files: Optional[List[EditFileArg]] = None

    @model_validator(mode="after")
    def _single_or_multi(self) -> "EditArgs":
        if self.files:
            return self
        if not self.path:
            raise ValueError("path is required")
        if not self.edits:
            raise ValueError("edits must contain at least one edit")
        return self


# ---------------------------------------------------------------------------
# Object operations
# ---------------------------------------------------------------------------


class CreateInstanceArgs(LenientSchema):
    class_name: str = Field(min_length=1)
    parent_path: str = Field(min_length=1)
    props: Optional[Dict[str, Any]] = None


class SetPropertiesArgs(LenientSchema):
    path: str = Field(min_length=1)
    props: Dict[str, Any]


class RenameInstanceArgs(LenientSchema):
    path: str = Field(min_length=1)
    new_name: str = Field(min_length=1)


class DeleteInstanceArgs(LenientSchema):
    path: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class SearchAssetsArgs(LenientSchema):
    query: str = Field(min_length=1)
    tags: Optional[List[str]] = None
    limit: Optional[int] = Field(default=None, ge=1, le=50)


class InsertAssetArgs(LenientSchema):
    asset_id: int
    parent_path: Optional[str] = None


class GenerateAsset3dArgs(LenientSchema):
    prompt: str = Field(min_length=1)
    tags: Optional[List[str]] = None
    style: Optional[str] = None
    budget: Optional[float] = None


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


class CompleteArgs(LenientSchema):
    summary: str = Field(min_length=1)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class FinalMessageArgs(LenientSchema):
    text: str = Field(min_length=1)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class MessageArgs(LenientSchema):
    text: str = Field(min_length=1)
    phase: Optional[Literal["start", "update", "final"]] = None


class AttemptCompletionArgs(LenientSchema):
    result: str = Field(min_length=1)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolSpec:
    name: str
    category: ToolCategory
    args_model: Type[LenientSchema]


def _spec(name: str, category: ToolCategory, args_model: Type[LenientSchema]) -> tuple[str, ToolSpec]:
    return name, ToolSpec(name=name, category=category, args_model=args_model)


TOOLS: Dict[str, ToolSpec] = dict(
    [
        _spec("get_active_script", ToolCategory.context, GetActiveScriptArgs),
        _spec("list_selection", ToolCategory.context, ListSelectionArgs),
        _spec("list_open_documents", ToolCategory.context, ListOpenDocumentsArgs),
        _spec("list_code_definition_names", ToolCategory.context, ListCodeDefinitionNamesArgs),
        _spec("search_files", ToolCategory.context, SearchFilesArgs),
        _spec("list_children", ToolCategory.context, ListChildrenArgs),
        _spec("get_properties", ToolCategory.context, GetPropertiesArgs),
        _spec("open_or_create_script", ToolCategory.context, OpenOrCreateScriptArgs),
        _spec("start_plan", ToolCategory.planning, StartPlanArgs),
        _spec("update_plan", ToolCategory.planning, UpdatePlanArgs),
        _spec("show_diff", ToolCategory.edit, EditArgs),
        _spec("apply_edit", ToolCategory.edit, EditArgs),
        _spec("create_instance", ToolCategory.object, CreateInstanceArgs),
        _spec("set_properties", ToolCategory.object, SetPropertiesArgs),
        _spec("rename_instance", ToolCategory.object, RenameInstanceArgs),
        _spec("delete_instance", ToolCategory.object, DeleteInstanceArgs),
        _spec("search_assets", ToolCategory.asset, SearchAssetsArgs),
        _spec("insert_asset", ToolCategory.asset, InsertAssetArgs),
        _spec("generate_asset_3d", ToolCategory.asset, GenerateAsset3dArgs),
        _spec("complete", ToolCategory.completion, CompleteArgs),
        _spec("final_message", ToolCategory.completion, FinalMessageArgs),
        _spec("message", ToolCategory.completion, MessageArgs),
        _spec("attempt_completion", ToolCategory.completion, AttemptCompletionArgs),
    ]
)


def is_known_tool(name: str) -> bool:
    return name in TOOLS


def tool_names(category: Optional[ToolCategory] = None) -> List[str]:
    return [name for name, spec in TOOLS.items() if category is None or spec.category == category]
