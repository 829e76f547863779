"""Repository implementation for manifest persistence.

This module provides an async repository for manifest rows using
advanced-alchemy's repository pattern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, delete, select, update

from litestar_continuations.db.models import WorkflowManifestModel

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from litestar_continuations.core.types import WorkflowStatus

__all__ = ["WorkflowManifestRepository"]


class WorkflowManifestRepository(SQLAlchemyAsyncRepository[WorkflowManifestModel]):
    """Repository for workflow manifest rows.

    Provides lookups by workflow id, filtered listings and a conditional
    update that only replaces a row with a newer revision.
    """

    model_type = WorkflowManifestModel

    async def get_by_workflow_id(self, workflow_id: str) -> WorkflowManifestModel | None:
        """Get a manifest row by workflow id.

        Args:
            workflow_id: The workflow id.

        Returns:
            The row or None if not found.
        """
        stmt = (
            select(WorkflowManifestModel)
            .where(WorkflowManifestModel.workflow_id == workflow_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find(
        self,
        statuses: Iterable[WorkflowStatus] = (),
        workflow_name: str | None = None,
    ) -> Sequence[WorkflowManifestModel]:
        """Find manifest rows by status and workflow name.

        Args:
            statuses: Optional status filter; all statuses when empty.
            workflow_name: Optional workflow name filter.

        Returns:
            Matching rows, oldest first.
        """
        conditions = []
        statuses = list(statuses)
        if statuses:
            conditions.append(WorkflowManifestModel.status.in_(statuses))
        if workflow_name is not None:
            conditions.append(WorkflowManifestModel.workflow_name == workflow_name)

        stmt = select(WorkflowManifestModel).order_by(WorkflowManifestModel.created_at)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def replace_if_newer(self, workflow_id: str, revision: int, values: dict[str, Any]) -> bool:
        """Replace a row only if the stored revision is older.

        Args:
            workflow_id: The workflow id.
            revision: Revision of the incoming manifest.
            values: Column values to write.

        Returns:
            True if the row was replaced.
        """
        stmt = (
            update(WorkflowManifestModel)
            .where(
                and_(
                    WorkflowManifestModel.workflow_id == workflow_id,
                    WorkflowManifestModel.revision < revision,
                )
            )
            .values(revision=revision, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def delete_by_workflow_id(self, workflow_id: str) -> bool:
        """Delete a manifest row.

        Returns:
            True if a row was deleted.
        """
        stmt = delete(WorkflowManifestModel).where(WorkflowManifestModel.workflow_id == workflow_id)
        result = await self.session.execute(stmt)
        return bool(result.rowcount)
