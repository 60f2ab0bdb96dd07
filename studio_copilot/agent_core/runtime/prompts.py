"""Prompt text and protocol messages exchanged with the model."""

import json
from typing import Any, List, Optional

from ..schemas.domain import WorkspaceContext

SYSTEM_PROMPT = """You are Studio Copilot, an assistant embedded in a game editor.

Core rules
- One tool per turn: emit EXACTLY ONE tool tag and nothing else. Wait for the tool result before the next step.
- Proposal-first: never change code or instances directly; propose a small, safe step the editor can preview and apply.
- No prose, no markdown, no code fences, no extra tags.

Tool call format
<tool_name>
  <param1>...</param1>
  <param2>...</param2>
</tool_name>

Parameter encoding
- Strings and numbers: write the literal value.
- Objects and arrays: the inner text MUST be strict JSON (double quotes, no trailing commas, no code fences).
- Omit optional parameters you do not know; never write "null" or "undefined".

Available tools
- Context (read-only): get_active_script(), list_selection(), list_open_documents(maxCount?),
  list_code_definition_names(root?,limit?,exts?), search_files(query,root?,limit?,exts?,caseSensitive?),
  list_children(parentPath,depth?,maxNodes?), get_properties(path,keys?), open_or_create_script(path | parentPath+name).
- Planning: start_plan(steps[]), update_plan(completedStep?,nextStep?,notes?).
- Actions: show_diff(path,edits[]), apply_edit(path,edits[]), create_instance(className,parentPath,props?),
  set_properties(path,props), rename_instance(path,newName), delete_instance(path),
  search_assets(query,tags?,limit?), insert_asset(assetId,parentPath?), generate_asset_3d(prompt,tags?,style?,budget?).
- Completion: complete(summary,confidence?) or attempt_completion(result,confidence?) when the task is finished.

Paths
- Use canonical full paths such as game.Workspace.Model.Part.
- Never delete the DataModel or a service.

Editing rules
- 0-based coordinates; end is exclusive. Prefer the smallest edit set; avoid whole-file rewrites.
- Edits must be sorted by start position and non-overlapping.
- At most 20 edits and 2000 inserted characters per proposal.

Defaults
- A missing edit path means the active script.
- A missing path for rename_instance/set_properties/delete_instance means the single selected instance.
- A missing parentPath for create_instance/insert_asset means the selected container, else game.Workspace.

Recovery
- On VALIDATION_ERROR, resubmit the SAME tool once with corrected arguments.
- If you answer without a tool call you MUST either choose exactly one tool or call complete(summary).
"""

NO_TOOL_USED = "NO_TOOL_USED Please emit exactly one tool or call <complete><summary>...</summary></complete> to finish."


def validation_error(tool_name: Optional[str], errors: List[str]) -> str:
    return f"VALIDATION_ERROR {tool_name or 'unknown'}\n" + "\n".join(errors)


def tool_result(tool_name: str, result: Any) -> str:
    return f"TOOL_RESULT {tool_name}\n{json.dumps(result, default=str)}"


def context_request(reason: str) -> str:
    return (
        f"CONTEXT_REQUEST {reason}. Please fetch the relevant context "
        "(e.g., run get_active_script or list_selection) before continuing."
    )


def context_budget_spent(tool_name: str) -> str:
    return (
        f"CONTEXT_BUDGET_EXHAUSTED {tool_name}. Use the context you already have "
        "and propose exactly one action, or call complete(summary)."
    )


def user_message(message: str, context: WorkspaceContext) -> str:
    """User turn text: the request followed by a short editor-state summary."""
    lines = [message.strip(), "", "[context]"]
    if context.active_script is not None:
        line_count = context.active_script.text.count("\n") + 1 if context.active_script.text else 0
        lines.append(f"active_script: {context.active_script.path} ({line_count} lines)")
    else:
        lines.append("active_script: none")
    if context.selection:
        lines.append("selection: " + ", ".join(f"{s.path} ({s.class_name})" for s in context.selection[:10]))
    else:
        lines.append("selection: none")
    if context.open_documents:
        lines.append("open_documents: " + ", ".join(d.path for d in context.open_documents[:10]))
    return "\n".join(lines)
