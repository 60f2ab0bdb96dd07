"""LangGraph turn engine.

``TurnEngine`` runs one turn-sequence: from a user message to the proposals
the editor should preview.

Execution model
---------------

- The engine runs a LangGraph state machine over a mutable ``_GraphState``.
- Each ``call_model`` visit costs one turn of the ``max_turns`` budget.
- The model must answer with exactly one tool envelope per turn; the
  tool-call protocol turns it into a ``ParsedAction`` or a
  ``ProtocolFailure`` value.

Routing
-------

- Context actions are executed locally and their result is fed back as a
  ``TOOL_RESULT`` message (auto-chaining), within the context budget.
- Planning actions update the task plan and re-query the model.
- Edit, object, asset and completion actions are mapped to proposals, which
  ends the sequence.
- Protocol failures get a corrective re-prompt while the retry allowance and
  turn budget last. After that one deterministic fallback proposal is
  produced. A second consecutive fallback raises ``ProtocolError``.

State changes are made on a working copy and committed when the sequence
ends. When it raises, only the failed tool runs are recorded; history,
counters and plan keep their previous values.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph

from ..abstraction import ChatProviderBase, ProviderCredentials
from ..errors import CopilotError, ProtocolError, ProviderError
from ..schemas.domain import (
    ChatMessage,
    ChatMode,
    CompletionProposal,
    StreamingState,
    TaskState,
    ToolRun,
    ToolRunStatus,
    utc_now,
)
from ..tools.protocol import FailureKind, ParsedAction, ProtocolFailure, extract_action
from ..tools.schemas import StartPlanArgs, ToolCategory
from ..workflows.task_state import append_history
from . import prompts
from .auto_approve import annotate_auto_approval
from .fallback import build_fallback
from .models import (
    CONTEXT_BUDGET,
    CONTEXT_REQUEST_LIMIT,
    MAX_TURNS_CEILING,
    NO_ACTION_RETRY_LIMIT,
    UNKNOWN_TOOL_RETRY_LIMIT,
    VALIDATION_RETRY_LIMIT,
    EngineDeps,
    TurnRequest,
    TurnResult,
    _GraphState,
)
from .proposals import map_action, selection_defaults

logger = logging.getLogger(__name__)


class TurnEngine:
    """Drive the model through one turn-sequence and return proposals.

    The engine keeps no per-request state on the instance; one engine serves
    every workflow. Callers serialize turns of the same workflow.
    """

    def __init__(self, *, deps: EngineDeps) -> None:
        self._deps = deps
        self._graph = self._build_graph()

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("call_model", self._node_call_model)
        g.add_node("parse", self._node_parse)
        g.add_node("run_context", self._node_run_context)
        g.add_node("update_plan", self._node_update_plan)
        g.add_node("map_proposals", self._node_map_proposals)
        g.add_node("fallback", self._node_fallback)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("call_model")
        g.add_conditional_edges(
            "call_model",
            self._route,
            {"parse": "parse", "fallback": "fallback"},
        )
        g.add_conditional_edges(
            "parse",
            self._route,
            {
                "context": "run_context",
                "plan": "update_plan",
                "propose": "map_proposals",
                "retry": "call_model",
                "fallback": "fallback",
            },
        )
        g.add_edge("run_context", "call_model")
        g.add_edge("update_plan", "call_model")
        g.add_conditional_edges(
            "map_proposals",
            self._route,
            {"finish": "finish", "retry": "call_model", "fallback": "fallback"},
        )
        g.add_edge("fallback", "finish")
        g.add_edge("finish", END)
        return g.compile()

    def resolve_max_turns(self, request: TurnRequest) -> int:
        if request.mode == ChatMode.ask:
            return 1
        turns = request.max_turns or self._deps.default_max_turns
        return max(1, min(turns, MAX_TURNS_CEILING))

    async def run(self, request: TurnRequest) -> TurnResult:
        """Execute one turn-sequence for ``request``.

        Raises:
            ProviderError: The model provider failed (after its own retries).
            ProtocolError: No usable action and no fallback left.
        """
        deps = self._deps
        key = request.workflow_id
        max_turns = self.resolve_max_turns(request)

        live = await deps.task_states.get(key)
        working = live.model_copy(deep=True)
        prior = list(working.history)
        append_history(working, "user", request.message)
        working.streaming = StreamingState(is_streaming=True, last_event_at=utc_now())
        working.auto_approval.enabled = request.auto_approval

        deps.stream.push(
            key,
            f"orchestrator.start provider={request.provider.name} mode={request.mode.value} "
            f"model={request.provider.model or 'default'} max_turns={max_turns}",
        )
        logger.info("Turn start workflow=%s provider=%s maxTurns=%d", key, request.provider.name, max_turns)

        state: _GraphState = {
            "request": request,
            "working": working,
            "prior": prior,
            "messages": [ChatMessage(role="user", content=prompts.user_message(request.message, request.context))],
            "turn": 0,
            "max_turns": max_turns,
            "context_used": 0,
            "context_requests": 0,
            "validation_errors": 0,
            "unknown_tool_retries": 0,
            "no_action_retries": 0,
            "proposals": [],
        }
        known_runs = {run.id for run in working.runs}
        try:
            try:
                final = await self._graph.ainvoke(state, config={"recursion_limit": max_turns * 4 + 8})
            except GraphRecursionError as e:
                raise ProtocolError(
                    "Turn loop exceeded its step budget", details={"max_turns": max_turns}
                ) from e
        except CopilotError:
            failed = [r for r in working.runs if r.id not in known_runs and r.status == ToolRunStatus.failed]
            await self._commit_failure(key, failed)
            raise

        working.streaming = StreamingState(is_streaming=False, last_event_at=utc_now())
        committed = await self._commit(key, working)

        proposals = list(final.get("proposals") or [])
        return TurnResult(
            proposals=proposals,
            task_state=committed,
            is_complete=any(isinstance(p, CompletionProposal) for p in proposals),
            turns=int(final.get("turn") or 0),
            fallback=any(p.meta.fallback for p in proposals),
        )

    async def _commit(self, workflow_id: str, working: TaskState) -> TaskState:
        """Persist the working state, keeping checkpoint metadata and the scene written concurrently."""

        def merge(live: TaskState) -> TaskState:
            return working.model_copy(
                deep=True,
                update={
                    "checkpoints": live.checkpoints,
                    "last_checkpoint_id": live.last_checkpoint_id,
                    "scene": live.scene,
                },
            )

        return await self._deps.task_states.update(workflow_id, merge)

    async def _commit_failure(self, workflow_id: str, failed_runs: List[ToolRun]) -> TaskState:
        """Record only the failed runs of an aborted turn-sequence.

        History, counters and plan stay as they were before the sequence, so a
        retried message is not sent to the model twice.
        """

        def record(live: TaskState) -> None:
            live.runs.extend(run.model_copy(deep=True) for run in failed_runs)
            live.streaming = StreamingState(is_streaming=False, last_event_at=utc_now())

        return await self._deps.task_states.update(workflow_id, record)

    @staticmethod
    def _route(state: _GraphState) -> str:
        return str(state.get("route") or "fallback")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _provider(self, request: TurnRequest) -> ChatProviderBase:
        kwargs: Dict[str, Any] = dict(self._deps.provider_kwargs or {})
        if self._deps.retry is not None:
            kwargs["retry"] = self._deps.retry
        try:
            return self._deps.providers.create(request.provider.name, **kwargs)
        except ValueError as e:
            raise ProviderError(str(e), provider=request.provider.name, status_code=400) from e

    def _credentials(self, request: TurnRequest) -> ProviderCredentials:
        selection = request.provider
        if selection.api_key:
            return ProviderCredentials(api_key=selection.api_key, base_url=selection.base_url, region=selection.region)
        if self._deps.resolve_credentials is not None:
            return self._deps.resolve_credentials(selection)
        return ProviderCredentials(base_url=selection.base_url, region=selection.region)

    async def _read_workspace_text(self, path: str) -> Optional[str]:
        workspace = self._deps.workspace
        if workspace is None:
            return None
        try:
            return await asyncio.to_thread(workspace.read_text, path)
        except ValueError:
            logger.warning("Edit path outside workspace: %s", path)
            return None

    def _push(self, state: _GraphState, text: str) -> None:
        self._deps.stream.push(state["request"].workflow_id, text)
        state["working"].streaming.last_event_at = utc_now()

    @staticmethod
    def _reprompt(state: _GraphState, raw: Optional[str], content: str) -> None:
        if raw:
            state["messages"].append(ChatMessage(role="assistant", content=raw))
        state["messages"].append(ChatMessage(role="user", content=content))
        append_history(state["working"], "system", content)

    @staticmethod
    def _finish_run(run: ToolRun, status: ToolRunStatus, error: Optional[str] = None) -> None:
        run.status = status
        run.ended_at = utc_now()
        run.error = error

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def _node_call_model(self, state: _GraphState) -> _GraphState:
        """Call the provider once, or route to fallback when the turn budget is spent."""
        request = state["request"]
        working = state["working"]
        turn = int(state["turn"])
        if turn >= int(state["max_turns"]):
            state["fallback_reason"] = state.get("fallback_reason") or "turn budget exhausted"
            state["route"] = "fallback"
            return state

        provider = self._provider(request)
        run = ToolRun(
            tool=f"provider.{request.provider.name}",
            input={"turn": turn + 1, "model": request.provider.model},
            status=ToolRunStatus.running,
        )
        working.runs.append(run)
        try:
            reply = await provider.complete(
                prompts.SYSTEM_PROMPT,
                [*state["prior"], *state["messages"]],
                model=request.provider.model,
                credentials=self._credentials(request),
                timeout=self._deps.provider_timeout,
            )
        except ProviderError as e:
            self._finish_run(run, ToolRunStatus.failed, e.message)
            self._push(state, f"error.provider {e.error_code}: {e.message}")
            logger.error("Provider call failed workflow=%s turn=%d: %s", request.workflow_id, turn + 1, e)
            raise
        self._finish_run(run, ToolRunStatus.succeeded)

        state["turn"] = turn + 1
        state["content"] = reply.content
        if reply.usage is not None:
            working.counters.tokens_in += reply.usage.input_tokens or 0
            working.counters.tokens_out += reply.usage.output_tokens or 0
            logger.debug("Provider usage in=%s out=%s", reply.usage.input_tokens, reply.usage.output_tokens)
        self._push(
            state,
            f"provider.response turn={turn + 1} chars={len(reply.content)} attempts={reply.attempts}",
        )
        state["route"] = "parse"
        return state

    async def _node_parse(self, state: _GraphState) -> _GraphState:
        """Run the tool-call protocol on the last reply and choose the next node."""
        request = state["request"]
        working = state["working"]
        content = state.get("content") or ""
        result = extract_action(content, defaults=selection_defaults(request.context))
        state["result"] = result

        if isinstance(result, ProtocolFailure):
            working.counters.mistakes += 1
            state["route"] = self._handle_failure(state, result, content)
            return state

        self._push(state, f"tool.parsed {result.name}")
        self._push(state, f"tool.valid {result.name}")
        append_history(working, "assistant", result.raw)

        if result.is_context:
            if request.auto_context and int(state.get("context_used") or 0) < CONTEXT_BUDGET:
                state["route"] = "context"
            else:
                self._reprompt(state, result.raw, prompts.context_budget_spent(result.name))
                state["fallback_reason"] = "context budget spent"
                state["route"] = "retry"
            return state
        if result.category == ToolCategory.planning:
            state["route"] = "plan"
            return state
        state["route"] = "propose"
        return state

    def _handle_failure(self, state: _GraphState, failure: ProtocolFailure, content: str) -> str:
        if failure.kind == FailureKind.no_action:
            counter, limit = "no_action_retries", NO_ACTION_RETRY_LIMIT
            self._push(state, "error.validation no tool call parsed")
            self._reprompt(state, content, prompts.NO_TOOL_USED)
        elif failure.kind == FailureKind.unknown_tool:
            counter, limit = "unknown_tool_retries", UNKNOWN_TOOL_RETRY_LIMIT
            self._push(state, f"error.validation unknown tool {failure.tool_name}")
            self._reprompt(state, failure.raw, prompts.validation_error(failure.tool_name, [failure.message]))
        else:
            counter, limit = "validation_errors", VALIDATION_RETRY_LIMIT
            self._push(state, f"error.validation {failure.tool_name} {failure.message}")
            self._reprompt(state, failure.raw, prompts.validation_error(failure.tool_name, failure.errors))

        used = int(state.get(counter) or 0) + 1
        state[counter] = used  # type: ignore[literal-required]
        state["fallback_reason"] = f"{failure.kind.value}: {failure.message}"
        logger.info("Protocol failure kind=%s tool=%s retry=%d/%d", failure.kind.value, failure.tool_name, used, limit)
        return "retry" if used <= limit else "fallback"

    async def _node_run_context(self, state: _GraphState) -> _GraphState:
        """Execute a context action and feed its result back to the model."""
        request = state["request"]
        working = state["working"]
        action: ParsedAction = state["result"]
        run = ToolRun(tool=action.name, input=action.args.model_dump(exclude_none=True), status=ToolRunStatus.running)
        working.runs.append(run)

        result = await self._deps.context_executor.execute(action, request.context, working)
        self._finish_run(run, ToolRunStatus.succeeded)
        state["context_used"] = int(state.get("context_used") or 0) + 1

        text = prompts.tool_result(action.name, result)
        state["messages"].append(ChatMessage(role="assistant", content=action.raw))
        state["messages"].append(ChatMessage(role="user", content=text))
        append_history(working, "system", text)
        self._push(state, f"context.result {action.name}")
        return state

    async def _node_update_plan(self, state: _GraphState) -> _GraphState:
        """Apply ``start_plan`` / ``update_plan`` to the task plan."""
        working = state["working"]
        action: ParsedAction = state["result"]
        args = action.args
        if isinstance(args, StartPlanArgs):
            working.plan = list(args.steps)
            working.completed_plan_steps = []
        else:
            if args.completed_step and args.completed_step not in working.completed_plan_steps:
                working.completed_plan_steps.append(args.completed_step)
            if args.next_step and args.next_step not in working.plan:
                working.plan.append(args.next_step)

        payload = {"plan": working.plan, "completed": working.completed_plan_steps}
        text = prompts.tool_result(action.name, payload)
        state["messages"].append(ChatMessage(role="assistant", content=action.raw))
        state["messages"].append(ChatMessage(role="user", content=text))
        append_history(working, "system", text)
        self._push(state, f"plan.updated steps={len(working.plan)} completed={len(working.completed_plan_steps)}")
        return state

    async def _node_map_proposals(self, state: _GraphState) -> _GraphState:
        """Map the validated action to proposals, or ask for what is missing."""
        request = state["request"]
        action: ParsedAction = state["result"]
        mapped = await map_action(action, request.context, read_text=self._read_workspace_text)

        if mapped.proposals:
            state["proposals"] = mapped.proposals
            self._push(state, f"proposals.mapped {action.name} count={len(mapped.proposals)}")
            state["route"] = "finish"
            return state

        if mapped.progress_message is not None:
            self._push(state, f"message {mapped.progress_message}")
            self._reprompt(state, action.raw, prompts.tool_result(action.name, {"ok": True}))
            state["route"] = "retry"
            return state

        if mapped.rejected is not None:
            self._push(state, f"error.validation {action.name} {mapped.rejected}")
            self._reprompt(state, action.raw, prompts.validation_error(action.name, [mapped.rejected]))
            used = int(state.get("validation_errors") or 0) + 1
            state["validation_errors"] = used
            state["fallback_reason"] = f"rejected: {mapped.rejected}"
            state["route"] = "retry" if used <= VALIDATION_RETRY_LIMIT else "fallback"
            return state

        reason = mapped.missing_context or "Missing context"
        used = int(state.get("context_requests") or 0)
        state["fallback_reason"] = f"missing context: {reason}"
        if used < CONTEXT_REQUEST_LIMIT:
            state["context_requests"] = used + 1
            state["working"].counters.context_requests += 1
            self._push(state, f"context.request {reason}")
            self._reprompt(state, action.raw, prompts.context_request(reason))
            state["route"] = "retry"
        else:
            state["route"] = "fallback"
        return state

    async def _node_fallback(self, state: _GraphState) -> _GraphState:
        """Synthesize the single fallback proposal allowed per turn-sequence."""
        request = state["request"]
        working = state["working"]
        reason = state.get("fallback_reason") or "no actionable tool"
        if not request.enable_fallbacks:
            raise ProtocolError("No actionable tool produced within turn limit", details={"reason": reason})
        if working.counters.consecutive_fallbacks >= 1:
            raise ProtocolError(
                "Repeated fallback: the previous turn-sequence also ended without an actionable tool",
                details={"reason": reason, "consecutive_fallbacks": working.counters.consecutive_fallbacks},
            )

        proposal, label = build_fallback(request.message, request.context, reason=reason)
        working.counters.consecutive_fallbacks += 1
        append_history(working, "assistant", label.replace(".", ": ", 1))
        self._push(state, label)
        logger.warning("Fallback workflow=%s label=%s reason=%s", request.workflow_id, label, reason)
        state["proposals"] = [proposal]
        return state

    async def _node_finish(self, state: _GraphState) -> _GraphState:
        """Stamp proposals with request metadata and emit completion chunks."""
        request = state["request"]
        working = state["working"]
        proposals: List[Any] = list(state.get("proposals") or [])
        for proposal in proposals:
            proposal.workflow_id = request.workflow_id
            proposal.message_id = request.message_id
            proposal.message_created_at = request.message_created_at
        annotate_auto_approval(proposals, auto_enabled=request.auto_approval)

        if not any(p.meta.fallback for p in proposals):
            working.counters.consecutive_fallbacks = 0
        if any(isinstance(p, CompletionProposal) for p in proposals):
            self._push(state, "completed: model_complete")
        self._push(state, f"telemetry.tokens in={working.counters.tokens_in} out={working.counters.tokens_out}")
        state["proposals"] = proposals
        state["route"] = "end"
        return state
