"""SQLAlchemy models for manifest persistence.

This module defines the database model for persisting workflow manifests:
- WorkflowManifestModel: One row per workflow instance holding the whole manifest
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from advanced_alchemy.base import UUIDAuditBase
from sqlalchemy import JSON, DateTime, Enum, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from litestar_continuations.core.types import WorkflowStatus

__all__ = ["WorkflowManifestModel"]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class WorkflowManifestModel(UUIDAuditBase):
    """Persisted workflow manifest.

    The manifest itself is stored whole in ``manifest_json``; the other
    columns are denormalized copies used for filtering, expiry sweeps and the
    revision check.

    Attributes:
        workflow_id: The manifest's workflow id.
        workflow_name: Denormalized workflow name for quick queries.
        status: Denormalized workflow status.
        revision: Revision of the stored manifest.
        expires_at: When the manifest stops being loadable.
        manifest_json: The serialized ``WorkflowManifest``.
    """

    __tablename__ = "workflow_manifests"
    __table_args__ = (
        Index("ix_workflow_manifests_status", "status"),
        Index("ix_workflow_manifests_workflow_name", "workflow_name"),
        Index("ix_workflow_manifests_expires_at", "expires_at"),
    )

    workflow_id: Mapped[str] = mapped_column(String(128), unique=True)
    workflow_name: Mapped[str] = mapped_column(String(255))
    status: Mapped[WorkflowStatus] = mapped_column(
        Enum(WorkflowStatus, native_enum=False, length=50),
        default=WorkflowStatus.PENDING,
    )
    revision: Mapped[int] = mapped_column(Integer, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    manifest_json: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
