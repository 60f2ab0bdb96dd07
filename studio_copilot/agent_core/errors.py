"""Error taxonomy for the orchestration core.

Purpose:
- Give every failure mode a typed exception so callers can decide whether to
  retry, re-approve or abandon without parsing message strings.
- Carry HTTP-oriented context (``status_code``) and a structured ``details``
  payload that the server turns into a JSON reason.

Usage:
- Catch ``ProviderError`` around model calls and inspect ``retryable``.
- ``ProtocolError`` is raised only when the fallback budget is exhausted; the
  tool-call protocol itself reports malformed model output as a value.
- ``StaleContentError`` and ``MergeConflictError`` are raised by the merge
  path and must never be auto-resolved.
- ``WorkflowNotFoundError`` is soft: stores return ``None`` instead of raising
  it and only the HTTP layer uses it when a caller asked for a specific record.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class CopilotError(Exception):
    """Base error for the orchestration core.

    Args:
        message: Human-readable error description.
        status_code: Optional HTTP status code the server should answer with.
        details: Optional structured payload describing the failure.
    """

    error_code: str = "copilot_error"

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details

    def add_details(self, **fields: Any) -> None:
        """Merge ``fields`` into ``details``; non-dict details are kept under ``detail``."""
        if self.details is None:
            self.details = dict(fields)
        elif isinstance(self.details, dict):
            self.details = {**self.details, **fields}
        else:
            self.details = {"detail": self.details, **fields}

    def to_reason(self) -> Dict[str, Any]:
        """Structured reason suitable for an API response body."""
        reason: Dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details is not None:
            reason["details"] = self.details
        return reason


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ProviderError(CopilotError):
    """A model provider call failed."""

    error_code = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = 502,
        details: Optional[Any] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message, status_code=status_code, details=details)
        self.provider = provider
        self.retryable = retryable


class EmptyResponseError(ProviderError):
    """The provider answered successfully but with no usable text."""

    error_code = "empty_response"


class ProviderHttpError(ProviderError):
    """The provider answered with a non-2xx HTTP status.

    Args:
        status: Upstream HTTP status code.
    """

    error_code = "provider_http_error"

    def __init__(self, message: str, *, status: int, provider: Optional[str] = None, details: Optional[Any] = None) -> None:
        super().__init__(
            message,
            provider=provider,
            status_code=502,
            details={"status": status, "body": details},
            retryable=status >= 500,
        )
        self.status = status


class ProviderTimeoutError(ProviderError):
    """The provider did not answer within the caller-supplied timeout."""

    error_code = "provider_timeout"

    def __init__(self, message: str, *, provider: Optional[str] = None, details: Optional[Any] = None) -> None:
        super().__init__(message, provider=provider, status_code=504, details=details, retryable=True)


# ---------------------------------------------------------------------------
# Protocol / workflow errors
# ---------------------------------------------------------------------------


class ProtocolError(CopilotError):
    """Model output could not be turned into a valid action and no fallback is left."""

    error_code = "protocol_error"

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message, status_code=422, details=details)


class WorkflowNotFoundError(CopilotError):
    """A workflow (or one of its steps) does not exist."""

    error_code = "workflow_not_found"

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}", status_code=404)
        self.workflow_id = workflow_id


class ProposalNotFoundError(CopilotError):
    """The requested proposal does not exist."""

    error_code = "proposal_not_found"

    def __init__(self, proposal_id: str) -> None:
        super().__init__(f"Proposal not found: {proposal_id}", status_code=404)
        self.proposal_id = proposal_id


class IllegalTransitionError(CopilotError):
    """A status change would move a workflow or step backwards."""

    error_code = "illegal_transition"

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(f"Illegal {entity} transition: {current} -> {target}", status_code=409)
        self.current = current
        self.target = target


# ---------------------------------------------------------------------------
# Merge errors
# ---------------------------------------------------------------------------


class StaleContentError(CopilotError):
    """Live content no longer matches the hash recorded when the edit was proposed."""

    error_code = "stale"

    def __init__(self, path: str, *, expected: str, actual: str) -> None:
        super().__init__(
            f"Content of {path} changed since the edit was proposed",
            status_code=409,
            details={"path": path, "expected_hash": expected, "actual_hash": actual},
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class MergeConflictError(CopilotError):
    """A three-way merge produced conflicts that need human re-approval."""

    error_code = "conflict"

    def __init__(self, files: List[Dict[str, Any]]) -> None:
        paths = [f.get("path") for f in files if f.get("conflicts")]
        super().__init__(
            f"Merge conflicts in {', '.join(str(p) for p in paths)}",
            status_code=409,
            details={"files": files},
        )
        self.files = files


# ---------------------------------------------------------------------------
# Checkpoint errors
# ---------------------------------------------------------------------------


class CheckpointError(CopilotError):
    """Creating or restoring a checkpoint failed."""

    error_code = "checkpoint_error"

    def __init__(self, message: str, *, details: Optional[Any] = None, status_code: int = 500) -> None:
        super().__init__(message, status_code=status_code, details=details)


class CheckpointNotFoundError(CheckpointError):
    """No checkpoint exists with the given id."""

    error_code = "checkpoint_not_found"

    def __init__(self, checkpoint_id: str) -> None:
        super().__init__(f"Checkpoint not found: {checkpoint_id}", status_code=404)
        self.checkpoint_id = checkpoint_id
