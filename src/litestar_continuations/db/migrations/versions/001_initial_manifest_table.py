"""Initial workflow manifest table.

Revision ID: 001_initial
Revises:
Create Date: 2026-01-15
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the workflow manifest table."""
    op.create_table(
        "workflow_manifests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workflow_id", sa.String(length=128), nullable=False),
        sa.Column("workflow_name", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("manifest_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workflow_id", name="uq_workflow_manifests_workflow_id"),
    )
    op.create_index(
        "ix_workflow_manifests_status",
        "workflow_manifests",
        ["status"],
    )
    op.create_index(
        "ix_workflow_manifests_workflow_name",
        "workflow_manifests",
        ["workflow_name"],
    )
    op.create_index(
        "ix_workflow_manifests_expires_at",
        "workflow_manifests",
        ["expires_at"],
    )


def downgrade() -> None:
    """Drop the workflow manifest table."""
    op.drop_table("workflow_manifests")
