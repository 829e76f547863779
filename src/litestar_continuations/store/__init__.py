"""Checkpoint stores for workflow manifests."""

from __future__ import annotations

from litestar_continuations.store.base import CheckpointStore, ManifestFilter
from litestar_continuations.store.file import FileCheckpointStore

__all__ = [
    "CheckpointStore",
    "FileCheckpointStore",
    "ManifestFilter",
]
