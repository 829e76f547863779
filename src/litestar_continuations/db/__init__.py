"""Database persistence layer for litestar-continuations.

This module provides the SQLAlchemy model, repository and checkpoint store
for persisting workflow manifests in a database.
"""

from __future__ import annotations

from litestar_continuations.db.models import WorkflowManifestModel
from litestar_continuations.db.repositories import WorkflowManifestRepository
from litestar_continuations.db.store import DatabaseCheckpointStore

__all__ = [
    "DatabaseCheckpointStore",
    "WorkflowManifestModel",
    "WorkflowManifestRepository",
]
