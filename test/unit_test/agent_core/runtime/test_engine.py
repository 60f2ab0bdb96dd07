from __future__ import annotations

import json
from typing import Any, List, Optional, Sequence

import pytest

from studio_copilot.agent_core.abstraction import (
    ChatProviderBase,
    ProviderCredentials,
    ProviderFactory,
    ProviderReply,
    TokenUsage,
)
from studio_copilot.agent_core.diff import sha1_hex
from studio_copilot.agent_core.errors import ProtocolError, ProviderError, ProviderHttpError
from studio_copilot.agent_core.runtime import (
    EngineDeps,
    ProviderSelection,
    TurnEngine,
    TurnRequest,
    WorkspaceContextExecutor,
)
from studio_copilot.agent_core.schemas.domain import (
    AssetProposal,
    ChatMessage,
    ChatMode,
    CompletionProposal,
    EditProposal,
    ObjectProposal,
    ToolRunStatus,
    WorkspaceContext,
)
from studio_copilot.agent_core.streaming import StreamBus
from studio_copilot.agent_core.workflows import TaskStateStore
from studio_copilot.core.persistence import InMemoryKeyValueStore

pytestmark = pytest.mark.asyncio

WF = "wf_test"
EDIT_JSON = json.dumps([{"start": {"line": 0, "character": 0}, "end": {"line": 0, "character": 0}, "text": "-- hi\n"}])


class _ScriptedProvider(ChatProviderBase):
    """Returns canned replies in order and records what it was sent."""

    name = "fake"
    default_model = "fake-model"

    def __init__(self, replies: Sequence[Any]) -> None:
        super().__init__()
        self.replies = list(replies)
        self.calls: List[List[ChatMessage]] = []
        self.credentials: List[Optional[ProviderCredentials]] = []

    def build_request(self, system_prompt, messages, model, credentials):
        raise NotImplementedError

    def parse_response(self, data):
        raise NotImplementedError

    async def complete(self, system_prompt, messages, *, model=None, credentials=None, timeout=60.0) -> ProviderReply:
        self.calls.append(list(messages))
        self.credentials.append(credentials)
        item = self.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, ProviderReply):
            return item
        return ProviderReply(content=item, model=self.resolve_model(model), provider=self.name)


class _Harness:
    def __init__(self, replies: Sequence[Any], **deps_kwargs: Any) -> None:
        self.provider = _ScriptedProvider(replies)
        factory = ProviderFactory()
        factory.register("fake", lambda **_: self.provider)
        self.task_states = TaskStateStore(InMemoryKeyValueStore())
        self.stream = StreamBus()
        self.engine = TurnEngine(
            deps=EngineDeps(
                providers=factory,
                task_states=self.task_states,
                stream=self.stream,
                context_executor=WorkspaceContextExecutor(),
                **deps_kwargs,
            )
        )

    def script(self, *replies: Any) -> None:
        self.provider.replies.extend(replies)

    def chunks(self) -> List[str]:
        return [c.text for c in self.stream.get_since(WF, 0).chunks]


def _request(message: str = "Make it better", context: Optional[dict] = None, **kwargs: Any) -> TurnRequest:
    return TurnRequest(
        workflow_id=WF,
        project_id="place-1",
        message=message,
        context=WorkspaceContext.model_validate(context or {}),
        provider=ProviderSelection(name="fake", api_key="k"),
        **kwargs,
    )


ACTIVE = {"activeScript": {"path": "src/main.lua", "text": "print(1)"}}
SELECTED = {"selection": [{"className": "Part", "path": "game.Workspace.Part"}]}


async def test_completion_ends_sequence():
    h = _Harness(["<complete><summary>Nothing to do</summary><confidence>0.9</confidence></complete>"])
    result = await h.engine.run(_request(message_id="m1"))

    assert result.is_complete is True
    assert result.turns == 1
    assert result.fallback is False
    [proposal] = result.proposals
    assert isinstance(proposal, CompletionProposal)
    assert (proposal.workflow_id, proposal.message_id, proposal.meta.tool) == (WF, "m1", "complete")
    assert "completed: model_complete" in h.chunks()
    assert h.chunks()[0].startswith("orchestrator.start provider=fake mode=agent")

    stored = await h.task_states.get(WF)
    assert [m.role for m in stored.history] == ["user", "assistant"]
    assert stored.streaming.is_streaming is False
    assert stored.runs[0].status == ToolRunStatus.succeeded


async def test_context_action_is_auto_chained():
    h = _Harness(
        [
            "<get_active_script></get_active_script>",
            f"<apply_edit><edits>{EDIT_JSON}</edits></apply_edit>",
        ]
    )
    result = await h.engine.run(_request(context=ACTIVE))

    assert result.turns == 2
    [proposal] = result.proposals
    assert isinstance(proposal, EditProposal)
    change = proposal.files[0]
    assert change.path == "src/main.lua"
    assert change.before_hash == sha1_hex("print(1)")
    assert "+-- hi" in change.preview.unified
    second_call = h.provider.calls[1]
    assert second_call[-1].content.startswith("TOOL_RESULT get_active_script")
    assert "context.result get_active_script" in h.chunks()


async def test_context_budget_is_one_per_sequence():
    h = _Harness(
        [
            "<list_selection></list_selection>",
            "<get_active_script></get_active_script>",
            "<complete><summary>ok</summary></complete>",
        ]
    )
    result = await h.engine.run(_request(context=ACTIVE))
    assert result.turns == 3
    assert h.provider.calls[2][-1].content.startswith("CONTEXT_BUDGET_EXHAUSTED get_active_script")


async def test_auto_context_disabled_reprompts():
    h = _Harness(["<list_selection></list_selection>", "<complete><summary>ok</summary></complete>"])
    result = await h.engine.run(_request(auto_context=False))
    assert result.is_complete
    assert not any(c.startswith("context.result") for c in h.chunks())


async def test_planning_updates_task_state():
    h = _Harness(
        [
            '<start_plan><steps>["Create part", "Color part"]</steps></start_plan>',
            "<update_plan><completedStep>Create part</completedStep></update_plan>",
            "<complete><summary>planned</summary></complete>",
        ]
    )
    result = await h.engine.run(_request())
    assert result.task_state.plan == ["Create part", "Color part"]
    assert result.task_state.completed_plan_steps == ["Create part"]
    assert any(c.startswith("plan.updated steps=2") for c in h.chunks())


async def test_validation_error_is_reprompted_then_accepted():
    h = _Harness(
        [
            "<rename_instance><newName>Door</newName></rename_instance>",
            "<rename_instance><path>game.Workspace.Part</path><newName>Door</newName></rename_instance>",
        ]
    )
    result = await h.engine.run(_request())
    [proposal] = result.proposals
    assert isinstance(proposal, ObjectProposal)
    assert proposal.ops[0].new_name == "Door"
    assert h.provider.calls[1][-1].content.startswith("VALIDATION_ERROR rename_instance")
    assert result.task_state.counters.mistakes == 1


async def test_selection_fills_missing_path():
    h = _Harness(["<rename_instance><newName>Door</newName></rename_instance>"])
    result = await h.engine.run(_request(context=SELECTED))
    assert result.proposals[0].ops[0].path == "game.Workspace.Part"


async def test_no_action_falls_back_once_and_tags_proposal():
    h = _Harness(["I am not sure what to do.", "Still thinking..."])
    result = await h.engine.run(_request(context=SELECTED))

    assert result.fallback is True
    [proposal] = result.proposals
    assert isinstance(proposal, ObjectProposal)
    assert proposal.meta.fallback is True
    assert proposal.meta.fallback_reason.startswith("no_action")
    assert proposal.ops[0].new_name == "Part_Copilot"
    assert "fallback.object rename game.Workspace.Part" in h.chunks()
    assert result.task_state.counters.consecutive_fallbacks == 1
    assert h.provider.calls[1][-1].content.startswith("NO_TOOL_USED")


async def test_repeated_fallback_escalates_until_a_real_proposal():
    h = _Harness(["?", "?"])
    await h.engine.run(_request())

    h.script("?", "?")
    with pytest.raises(ProtocolError) as exc_info:
        await h.engine.run(_request())
    assert exc_info.value.status_code == 422

    h.script("<complete><summary>done</summary></complete>")
    result = await h.engine.run(_request())
    assert result.is_complete
    assert result.task_state.counters.consecutive_fallbacks == 0


async def test_fallbacks_disabled_raise_protocol_error():
    h = _Harness(["?", "?"])
    with pytest.raises(ProtocolError):
        await h.engine.run(_request(enable_fallbacks=False))


async def test_ask_mode_allows_a_single_call():
    h = _Harness(["<list_selection></list_selection>"])
    result = await h.engine.run(_request(message="wooden crate", mode=ChatMode.ask))

    assert result.turns == 1
    assert len(h.provider.calls) == 1
    [proposal] = result.proposals
    assert isinstance(proposal, AssetProposal)
    assert proposal.search.query == "wooden crate"
    assert proposal.meta.fallback_reason == "turn budget exhausted"


async def test_missing_base_text_requests_context_then_falls_back():
    edit = f"<apply_edit><path>src/other.lua</path><edits>{EDIT_JSON}</edits></apply_edit>"
    h = _Harness([edit, edit])
    result = await h.engine.run(_request(context=ACTIVE))

    assert any(c.startswith("context.request Need the current text of src/other.lua") for c in h.chunks())
    assert h.provider.calls[1][-1].content.startswith("CONTEXT_REQUEST")
    [proposal] = result.proposals
    assert isinstance(proposal, EditProposal)
    assert proposal.meta.fallback is True
    assert proposal.files[0].diff.edits[0].text == "-- Copilot: Make it better\n"
    assert result.task_state.counters.context_requests == 1


async def test_progress_message_continues_the_loop():
    h = _Harness(
        [
            "<message><text>Looking around</text><phase>update</phase></message>",
            "<message><text>All set</text><phase>final</phase></message>",
        ]
    )
    result = await h.engine.run(_request())
    assert "message Looking around" in h.chunks()
    assert isinstance(result.proposals[0], CompletionProposal)
    assert result.proposals[0].summary == "All set"


async def test_protected_delete_is_rejected():
    h = _Harness(
        [
            "<delete_instance><path>game</path></delete_instance>",
            "<delete_instance><path>game.Workspace.Old</path></delete_instance>",
        ]
    )
    result = await h.engine.run(_request())
    assert result.proposals[0].ops[0].path == "game.Workspace.Old"
    assert h.provider.calls[1][-1].content.startswith("VALIDATION_ERROR delete_instance")


async def test_auto_approval_tags_safe_proposals():
    h = _Harness(["<create_instance><className>Part</className><parentPath>game.Workspace</parentPath></create_instance>"])
    result = await h.engine.run(_request(auto_approval=True))
    assert result.proposals[0].meta.auto_approved is True
    assert result.task_state.auto_approval.enabled is True


async def test_provider_error_propagates_without_proposals():
    h = _Harness([ProviderHttpError("upstream", status=503, provider="fake")])
    with pytest.raises(ProviderError):
        await h.engine.run(_request())
    assert any(c.startswith("error.provider provider_http_error") for c in h.chunks())
    stored = await h.task_states.get(WF)
    assert [(r.tool, r.status) for r in stored.runs] == [("provider.fake", ToolRunStatus.failed)]
    assert stored.history == []
    assert stored.streaming.is_streaming is False


async def test_failed_sequence_leaves_history_for_a_clean_retry():
    h = _Harness(
        [
            "<complete><summary>first done</summary></complete>",
            "<get_active_script></get_active_script>",
            ProviderHttpError("upstream", status=503, provider="fake"),
            "<complete><summary>second done</summary></complete>",
        ]
    )
    await h.engine.run(_request(message="first"))
    before = await h.task_states.get(WF)

    with pytest.raises(ProviderError):
        await h.engine.run(_request(message="second", context=ACTIVE))
    after_failure = await h.task_states.get(WF)
    assert after_failure.history == before.history
    assert after_failure.counters == before.counters
    assert after_failure.runs[-1].status == ToolRunStatus.failed

    await h.engine.run(_request(message="second"))
    sent = [m.content for m in h.provider.calls[-1]]
    assert sum(1 for content in sent if content.startswith("second")) == 1


async def test_protocol_error_records_nothing_but_failed_runs():
    h = _Harness(["?", "?"])
    with pytest.raises(ProtocolError):
        await h.engine.run(_request(enable_fallbacks=False))
    stored = await h.task_states.get(WF)
    assert stored.history == []
    assert stored.runs == []


async def test_provider_usage_feeds_token_counters():
    h = _Harness([])
    h.script(
        ProviderReply(
            content="<complete><summary>ok</summary></complete>",
            model="fake-model",
            provider="fake",
            usage=TokenUsage(input_tokens=12, output_tokens=3),
        )
    )
    result = await h.engine.run(_request())
    assert (result.task_state.counters.tokens_in, result.task_state.counters.tokens_out) == (12, 3)
    assert "telemetry.tokens in=12 out=3" in h.chunks()


async def test_unknown_provider_is_a_client_error():
    h = _Harness([])
    request = _request()
    request.provider = ProviderSelection(name="nope")
    with pytest.raises(ProviderError) as exc_info:
        await h.engine.run(request)
    assert exc_info.value.status_code == 400


async def test_credentials_resolver_used_without_api_key():
    resolved = ProviderCredentials(api_key="from-settings")
    h = _Harness(["<complete><summary>ok</summary></complete>"], resolve_credentials=lambda selection: resolved)
    request = _request()
    request.provider = ProviderSelection(name="fake")
    await h.engine.run(request)
    assert h.provider.credentials[0] == resolved


async def test_prior_history_is_sent_to_the_model():
    h = _Harness(["<complete><summary>one</summary></complete>", "<complete><summary>two</summary></complete>"])
    await h.engine.run(_request(message="first"))
    await h.engine.run(_request(message="second"))
    sent = h.provider.calls[1]
    assert sent[0].content == "first"
    assert sent[-1].content.startswith("second")


def test_resolve_max_turns():
    h = _Harness([], default_max_turns=3)
    assert h.engine.resolve_max_turns(_request()) == 3
    assert h.engine.resolve_max_turns(_request(max_turns=100)) == 16
    assert h.engine.resolve_max_turns(_request(max_turns=5, mode=ChatMode.ask)) == 1
