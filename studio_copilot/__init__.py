"""Studio Copilot.

This package contains the orchestration core that sits between a chat-driven
AI agent and a live, mutable workspace (scripts and an object tree of a
running application). Every change the agent wants to make is proposed, shown
to a human, and only then applied.

High-level architecture
-----------------------

- **Turns**: a user message is sent to an LLM provider. The reply must contain
  exactly one tool call. Read-only tool calls (e.g. "show me the active
  script") are executed locally and the model is asked again; every other tool
  call becomes a *proposal*.
- **Proposals**: durable, approvable units of change (text edits, object
  operations, asset operations, completion summaries). They are tracked as
  steps of a *workflow*.
- **Merging**: text edits are applied through a range-edit engine and a
  three-way merge so that concurrent edits in the workspace are never
  silently overwritten.
- **Checkpoints**: orchestration state and workspace files can be
  snapshotted and restored.

Core subpackages
----------------

- ``studio_copilot.agent_core``: providers, tool protocol, runtime loop,
  workflows, diff/merge, streaming and checkpoints.
- ``studio_copilot.core``: logging and key-value persistence.
- ``studio_copilot.server``: the FastAPI application exposing the core.
"""
