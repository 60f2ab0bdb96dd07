"""Checkpoint manager.

A checkpoint is an immutable snapshot of a workflow's ``TaskState`` plus,
optionally, an archive of the managed workspace:

    <root>/<workflow_id>/<checkpoint_id>/manifest.json
    <root>/<workflow_id>/<checkpoint_id>/workspace.zip

Create
------

- The task state is deep-cloned; the snapshot never aliases live state.
- The workspace walk skips operational directories (``IGNORE_SEGMENTS``) and
  the checkpoint root itself. A file that cannot be read is logged and
  skipped; the manifest records ``path``, ``size`` and ``sha1`` of every file
  that made it into the archive.
- The manifest is written atomically, then checkpoints beyond ``max_keep``
  for that workflow are evicted oldest first.
- Creates for one workflow are serialized; different workflows proceed
  concurrently. Blocking file work runs in ``asyncio.to_thread``.

Restore
-------

``conversation`` replaces the live task state with the snapshot,
``workspace`` extracts the archive over the workspace root, ``both`` does
both. Without an archive the workspace half is a no-op. Extraction problems
raise ``CheckpointError`` listing what was already written.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import re
import shutil
import time
import uuid
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..errors import CheckpointError, CheckpointNotFoundError
from ..schemas.domain import (
    CheckpointFileEntry,
    CheckpointManifest,
    CheckpointSummary,
    RestoreMode,
    TaskState,
)
from ..workflows.locks import KeyedLocks
from ..workflows.task_state import TaskStateStore
from ..workspace import IGNORE_SEGMENTS, WorkspaceAccessor

logger = logging.getLogger(__name__)

MAX_KEEP = 10
MANIFEST_NAME = "manifest.json"
ARCHIVE_NAME = "workspace.zip"

_SAFE_WORKFLOW_ID = re.compile(r"^[A-Za-z0-9_.:-]+$")


class CheckpointManager:
    """Create, list and restore checkpoints.

    Args:
        root: Directory holding checkpoint folders.
        task_states: Live task state store, replaced on ``conversation`` restores.
        workspace: Managed workspace accessor; without one, checkpoints never
            carry an archive.
        max_keep: Retention cap per workflow.
        clock: Wall clock in epoch seconds, injectable for tests.
    """

    def __init__(
        self,
        root: str | os.PathLike[str],
        *,
        task_states: TaskStateStore,
        workspace: Optional[WorkspaceAccessor] = None,
        max_keep: int = MAX_KEEP,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_keep < 1:
            raise ValueError("max_keep must be >= 1")
        self._root = Path(root).resolve()
        self._task_states = task_states
        self._workspace = workspace
        self._max_keep = max_keep
        self._clock = clock
        self._locks = KeyedLocks()
        self._last_ms = 0

    @property
    def max_keep(self) -> int:
        return self._max_keep

    # ------------------------------------------------------------------
    # Paths and ids
    # ------------------------------------------------------------------

    def _workflow_dir(self, workflow_id: str) -> Path:
        return self._root / workflow_id

    def _checkpoint_dir(self, workflow_id: str, checkpoint_id: str) -> Path:
        return self._workflow_dir(workflow_id) / checkpoint_id

    def _next_id(self) -> Tuple[str, int]:
        now_ms = max(int(self._clock() * 1000), self._last_ms + 1)
        self._last_ms = now_ms
        return f"ckpt_{now_ms}", now_ms

    def _excluded_prefix(self) -> Optional[str]:
        if self._workspace is None:
            return None
        try:
            return self._root.relative_to(self._workspace.root).as_posix()
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        workflow_id: str,
        state: TaskState,
        *,
        note: Optional[str] = None,
        proposal_id: Optional[str] = None,
        message_created_at: Optional[datetime] = None,
        include_workspace: bool = True,
    ) -> CheckpointSummary:
        if not _SAFE_WORKFLOW_ID.match(workflow_id) or workflow_id in (".", ".."):
            raise CheckpointError(f"Invalid workflow id: {workflow_id!r}", status_code=400)
        snapshot = state.model_copy(deep=True)
        async with self._locks.for_key(workflow_id):
            checkpoint_id, created_ms = self._next_id()
            created_at = datetime.fromtimestamp(created_ms / 1000, tz=timezone.utc)

            snapshot.last_checkpoint_id = checkpoint_id
            snapshot.checkpoints.last_id = checkpoint_id
            snapshot.checkpoints.last_note = note
            snapshot.checkpoints.last_created_at = created_at
            if message_created_at is not None:
                snapshot.checkpoints.last_message_created_at = message_created_at

            archive = include_workspace and self._workspace is not None
            manifest = CheckpointManifest(
                id=checkpoint_id,
                workflow_id=workflow_id,
                note=note,
                created_at=created_at,
                message_created_at=message_created_at,
                proposal_id=proposal_id,
                include_workspace=archive,
                state=snapshot,
            )
            directory = self._checkpoint_dir(workflow_id, checkpoint_id)
            await asyncio.to_thread(self._write_checkpoint, directory, manifest, archive)
            evicted = await asyncio.to_thread(self._enforce_retention, workflow_id)
            count = len(await self.list(workflow_id))

        await self._task_states.update(
            workflow_id, lambda live: self._record_meta(live, manifest.summary(), count)
        )
        logger.info(
            "Created checkpoint id=%s workflow=%s files=%d bytes=%d evicted=%d",
            checkpoint_id,
            workflow_id,
            manifest.file_count,
            manifest.total_bytes,
            len(evicted),
        )
        return manifest.summary()

    def _write_checkpoint(self, directory: Path, manifest: CheckpointManifest, archive: bool) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        if archive:
            entries, zip_size = self._archive_workspace(directory / ARCHIVE_NAME)
            manifest.files = entries
            manifest.file_count = len(entries)
            manifest.total_bytes = sum(e.size for e in entries)
            manifest.zip_size = zip_size
            manifest.archive_name = ARCHIVE_NAME
        payload = json.dumps(manifest.model_dump(mode="json"), ensure_ascii=False, indent=2)
        target = directory / MANIFEST_NAME
        tmp = directory / f".{MANIFEST_NAME}.{uuid.uuid4().hex}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)

    def _archive_workspace(self, archive_path: Path) -> Tuple[List[CheckpointFileEntry], int]:
        assert self._workspace is not None
        excluded = self._excluded_prefix()
        entries: List[CheckpointFileEntry] = []
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for rel in self._workspace.iter_files(exclude=tuple(IGNORE_SEGMENTS)):
                if excluded and (rel == excluded or rel.startswith(f"{excluded}/")):
                    continue
                try:
                    data = self._workspace.read_bytes(rel)
                except (OSError, ValueError) as e:
                    logger.warning("Skipping unreadable workspace file %s: %s", rel, e)
                    continue
                zf.writestr(rel, data)
                entries.append(CheckpointFileEntry(path=rel, size=len(data), sha1=hashlib.sha1(data).hexdigest()))
        return entries, archive_path.stat().st_size

    def _enforce_retention(self, workflow_id: str) -> List[str]:
        manifests = self._read_workflow_manifests(workflow_id)
        if len(manifests) <= self._max_keep:
            return []
        manifests.sort(key=lambda m: (m.created_at, m.id))
        evicted: List[str] = []
        for manifest in manifests[: len(manifests) - self._max_keep]:
            try:
                shutil.rmtree(self._checkpoint_dir(workflow_id, manifest.id))
            except OSError:
                logger.warning("Failed to remove old checkpoint %s", manifest.id, exc_info=True)
                continue
            evicted.append(manifest.id)
        return evicted

    @staticmethod
    def _record_meta(live: TaskState, summary: CheckpointSummary, count: int) -> None:
        live.last_checkpoint_id = summary.id
        live.checkpoints.last_id = summary.id
        live.checkpoints.last_note = summary.note
        live.checkpoints.last_created_at = summary.created_at
        if summary.message_created_at is not None:
            live.checkpoints.last_message_created_at = summary.message_created_at
        live.checkpoints.count = count

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _read_manifest(self, directory: Path) -> Optional[CheckpointManifest]:
        path = directory / MANIFEST_NAME
        try:
            return CheckpointManifest.model_validate_json(path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            logger.warning("Failed to read checkpoint manifest %s", path, exc_info=True)
            return None

    def _read_workflow_manifests(self, workflow_id: str) -> List[CheckpointManifest]:
        directory = self._workflow_dir(workflow_id)
        if not directory.is_dir():
            return []
        out: List[CheckpointManifest] = []
        for child in directory.iterdir():
            if child.is_dir():
                manifest = self._read_manifest(child)
                if manifest is not None:
                    out.append(manifest)
        return out

    def _scan(self, workflow_id: Optional[str]) -> List[CheckpointManifest]:
        if workflow_id is not None:
            return self._read_workflow_manifests(workflow_id)
        if not self._root.is_dir():
            return []
        out: List[CheckpointManifest] = []
        for child in self._root.iterdir():
            if child.is_dir():
                out.extend(self._read_workflow_manifests(child.name))
        return out

    async def list(self, workflow_id: Optional[str] = None) -> List[CheckpointSummary]:
        """Checkpoint summaries, newest first."""
        manifests = await asyncio.to_thread(self._scan, workflow_id)
        manifests.sort(key=lambda m: (m.created_at, m.id), reverse=True)
        return [m.summary() for m in manifests]

    async def get(self, checkpoint_id: str) -> Optional[CheckpointManifest]:
        manifests = await asyncio.to_thread(self._scan, None)
        return next((m for m in manifests if m.id == checkpoint_id), None)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(self, checkpoint_id: str, mode: RestoreMode) -> CheckpointManifest:
        """Restore a checkpoint.

        Raises:
            CheckpointNotFoundError: Unknown ``checkpoint_id``.
            CheckpointError: The archive could not be extracted.
        """
        manifest = await self.get(checkpoint_id)
        if manifest is None:
            raise CheckpointNotFoundError(checkpoint_id)
        mode = RestoreMode(mode)
        workflow_id = manifest.workflow_id

        if mode in (RestoreMode.workspace, RestoreMode.both):
            await self._restore_workspace(manifest)

        if mode in (RestoreMode.conversation, RestoreMode.both):
            await self._task_states.replace(workflow_id, manifest.state)

        count = len(await self.list(workflow_id))
        await self._task_states.update(workflow_id, lambda live: self._record_meta(live, manifest.summary(), count))
        logger.info("Restored checkpoint id=%s workflow=%s mode=%s", checkpoint_id, workflow_id, mode.value)
        return manifest

    async def _restore_workspace(self, manifest: CheckpointManifest) -> None:
        if not manifest.include_workspace or not manifest.archive_name or self._workspace is None:
            logger.info("Checkpoint %s has no workspace archive; skipping workspace restore", manifest.id)
            return
        archive_path = self._checkpoint_dir(manifest.workflow_id, manifest.id) / manifest.archive_name
        if not archive_path.is_file():
            logger.warning("Archive missing for checkpoint %s; skipping workspace restore", manifest.id)
            return
        await asyncio.to_thread(self._extract, manifest, archive_path)

    def _extract(self, manifest: CheckpointManifest, archive_path: Path) -> None:
        """Verify every archived file against the manifest, then write them all."""
        assert self._workspace is not None
        checkpoint_id = manifest.id
        expected = {entry.path: entry for entry in manifest.files}
        written: List[str] = []
        try:
            with zipfile.ZipFile(archive_path) as zf:
                members = [info for info in zf.infolist() if not info.is_dir()]
                contents: List[Tuple[str, bytes]] = []
                for info in members:
                    self._workspace.resolve(info.filename)
                    data = zf.read(info)
                    entry = expected.get(info.filename)
                    if entry is not None and (
                        len(data) != entry.size or hashlib.sha1(data).hexdigest() != entry.sha1
                    ):
                        raise ValueError(f"archived file {info.filename} does not match the manifest")
                    contents.append((info.filename, data))
                for name, data in contents:
                    self._workspace.write_bytes(name, data)
                    written.append(name)
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            logger.error("Workspace restore failed for checkpoint %s after %d files: %s", checkpoint_id, len(written), e)
            raise CheckpointError(
                f"Failed to restore workspace from checkpoint {checkpoint_id}: {e}",
                details={"checkpoint_id": checkpoint_id, "restored_files": written},
            ) from e
