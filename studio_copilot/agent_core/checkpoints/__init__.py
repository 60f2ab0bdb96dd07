"""Checkpoint snapshots of task state and the managed workspace."""

from .manager import ARCHIVE_NAME, MANIFEST_NAME, CheckpointManager

__all__ = ["ARCHIVE_NAME", "CheckpointManager", "MANIFEST_NAME"]
