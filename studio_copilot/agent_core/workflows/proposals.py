from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ...core.persistence import KeyValueStore
from ..schemas.domain import Proposal, ProposalAdapter, ProposalEvent, ProposalStatus
from .locks import KeyedLocks

logger = logging.getLogger(__name__)

PROPOSAL_PREFIX = "proposal:"


class ProposalStore:
    """Durable record of proposals and their event log.

    A proposal is immutable once applied except for appended events, and
    ``mark_applied`` is idempotent: a second acknowledgement leaves the record
    as it was.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv
        self._locks = KeyedLocks()

    @staticmethod
    def _key(proposal_id: str) -> str:
        return f"{PROPOSAL_PREFIX}{proposal_id}"

    async def _save(self, proposal: Proposal) -> None:
        await self._kv.write(self._key(proposal.id), ProposalAdapter.dump_python(proposal, mode="json"))

    async def save_many(self, proposals: Sequence[Proposal]) -> List[Proposal]:
        stored: List[Proposal] = []
        for proposal in proposals:
            record = proposal.model_copy(deep=True)
            if not any(e.type == "created" for e in record.events):
                record.events.append(ProposalEvent(type="created", at=record.created_at))
            await self._save(record)
            stored.append(record)
        logger.debug("Saved %d proposals", len(stored))
        return stored

    async def get(self, proposal_id: str) -> Optional[Proposal]:
        raw = await self._kv.read(self._key(proposal_id))
        if raw is None:
            return None
        return ProposalAdapter.validate_python(raw)

    async def list(self, workflow_id: Optional[str] = None) -> List[Proposal]:
        """Proposals, newest first, optionally restricted to one workflow."""
        out: List[Proposal] = []
        for key in await self._kv.keys(PROPOSAL_PREFIX):
            proposal = await self.get(key[len(PROPOSAL_PREFIX) :])
            if proposal is None:
                continue
            if workflow_id is None or proposal.workflow_id == workflow_id:
                out.append(proposal)
        out.sort(key=lambda p: p.created_at, reverse=True)
        return out

    async def mark_applied(
        self, proposal_id: str, payload: Optional[Dict[str, Any]] = None
    ) -> Optional[Tuple[Proposal, Proposal]]:
        """Mark a proposal applied and return ``(before, after)``; ``None`` when it does not exist."""
        async with self._locks.for_key(proposal_id):
            before = await self.get(proposal_id)
            if before is None:
                return None
            if before.status == ProposalStatus.applied:
                return before, before
            after = before.model_copy(deep=True)
            after.status = ProposalStatus.applied
            after.events.append(ProposalEvent(type="applied", payload=dict(payload or {})))
            await self._save(after)
            return before, after

    async def append_event(self, proposal_id: str, event: ProposalEvent) -> Optional[Proposal]:
        async with self._locks.for_key(proposal_id):
            proposal = await self.get(proposal_id)
            if proposal is None:
                return None
            proposal.events.append(event)
            await self._save(proposal)
            return proposal
