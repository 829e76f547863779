"""Database-backed checkpoint store.

This module stores one row per workflow manifest through SQLAlchemy,
enabling durable, queryable workflow state shared by several processes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from advanced_alchemy.exceptions import IntegrityError

from litestar_continuations.core.manifest import WorkflowManifest
from litestar_continuations.db.models import WorkflowManifestModel
from litestar_continuations.db.repositories import WorkflowManifestRepository
from litestar_continuations.exceptions import (
    ManifestCorruptError,
    ManifestExpiredError,
    ManifestNotFoundError,
    StaleManifestError,
)
from litestar_continuations.store.base import ManifestFilter

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["DatabaseCheckpointStore"]

logger = logging.getLogger(__name__)


def _decode(row: WorkflowManifestModel) -> WorkflowManifest:
    try:
        return WorkflowManifest.from_dict(row.manifest_json)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ManifestCorruptError(row.workflow_id, str(e)) from e


class DatabaseCheckpointStore:
    """Checkpoint store keeping one database row per manifest.

    Bound to a single ``session``, the store suits one task at a time (the
    command line, a worker, a request-scoped engine). Built with a
    ``session_maker`` it opens a fresh session per operation and can be
    shared by concurrent requests.

    Attributes:
        session: SQLAlchemy async session, when bound to one.
        session_maker: Session factory, when sessions are opened per operation.
        auto_commit: Commit after every write.

    Example:
        >>> store = DatabaseCheckpointStore(session_maker=async_sessionmaker(engine, expire_on_commit=False))
        >>> engine = WorkflowEngine(resolver, store)
    """

    def __init__(
        self,
        session: AsyncSession | None = None,
        *,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        auto_commit: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            session: SQLAlchemy async session shared by every operation.
            session_maker: Factory opening one session per operation; exclusive with ``session``.
            auto_commit: Commit after every write; disable to manage transactions yourself.
                Always on with ``session_maker``.
            clock: Returns the current time; injectable for tests.

        Raises:
            ValueError: Unless exactly one of ``session`` and ``session_maker`` is given.
        """
        if (session is None) == (session_maker is None):
            msg = "Provide exactly one of 'session' or 'session_maker'"
            raise ValueError(msg)
        self.session = session
        self.session_maker = session_maker
        self.auto_commit = auto_commit or session_maker is not None
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @asynccontextmanager
    async def _repository(self) -> AsyncIterator[WorkflowManifestRepository]:
        if self.session is not None:
            yield WorkflowManifestRepository(session=self.session)
            return
        async with self.session_maker() as session:  # type: ignore[misc]
            yield WorkflowManifestRepository(session=session)

    async def _commit(self, repo: WorkflowManifestRepository) -> None:
        if self.auto_commit:
            await repo.session.commit()

    def _columns(self, manifest: WorkflowManifest) -> dict[str, Any]:
        # JSON columns reject non-JSON payload values; render them as text
        document = json.loads(json.dumps(manifest.to_dict(), default=str))
        return {
            "workflow_name": manifest.name,
            "status": manifest.status,
            "expires_at": manifest.expires_at,
            "manifest_json": document,
        }

    async def save(self, manifest: WorkflowManifest) -> None:
        columns = self._columns(manifest)
        async with self._repository() as repo:
            existing = await repo.get_by_workflow_id(manifest.workflow_id)
            if existing is None:
                try:
                    await repo.add(
                        WorkflowManifestModel(workflow_id=manifest.workflow_id, revision=manifest.revision, **columns),
                        auto_commit=self.auto_commit,
                    )
                except IntegrityError as e:
                    await repo.session.rollback()
                    raise StaleManifestError(manifest.workflow_id, manifest.revision, manifest.revision) from e
                return

            if manifest.revision <= existing.revision:
                raise StaleManifestError(manifest.workflow_id, existing.revision, manifest.revision)
            if not await repo.replace_if_newer(manifest.workflow_id, manifest.revision, columns):
                await repo.session.rollback()
                current = await repo.get_by_workflow_id(manifest.workflow_id)
                stored = current.revision if current is not None else existing.revision
                raise StaleManifestError(manifest.workflow_id, stored, manifest.revision)
            await self._commit(repo)
        logger.debug("Saved manifest %s (revision %d)", manifest.workflow_id, manifest.revision)

    async def load(self, workflow_id: str) -> WorkflowManifest:
        async with self._repository() as repo:
            row = await repo.get_by_workflow_id(workflow_id)
            if row is None:
                raise ManifestNotFoundError(workflow_id)
            manifest = _decode(row)
        if manifest.is_expired(self._clock()):
            raise ManifestExpiredError(workflow_id)
        return manifest

    async def list(self, filter: ManifestFilter | None = None) -> list[WorkflowManifest]:
        filter = filter or ManifestFilter()
        now = self._clock()
        manifests = []
        async with self._repository() as repo:
            rows = await repo.find(filter.statuses, filter.name)
            for row in rows:
                try:
                    manifest = _decode(row)
                except ManifestCorruptError as e:
                    logger.warning("Skipping unreadable manifest row: %s", e)
                    continue
                if filter.matches(manifest, now):
                    manifests.append(manifest)
        return sorted(manifests, key=lambda manifest: manifest.created_at)

    async def delete(self, workflow_id: str) -> bool:
        async with self._repository() as repo:
            deleted = await repo.delete_by_workflow_id(workflow_id)
            await self._commit(repo)
        return deleted

    async def sweep_expired(self) -> list[str]:
        now = self._clock()
        swept = []
        async with self._repository() as repo:
            for row in await repo.find():
                try:
                    expired = _decode(row).is_expired(now)
                except ManifestCorruptError as e:
                    logger.warning("Skipping unreadable manifest row: %s", e)
                    continue
                workflow_id = row.workflow_id
                if expired and await repo.delete_by_workflow_id(workflow_id):
                    swept.append(workflow_id)
            await self._commit(repo)
        if swept:
            logger.info("Swept %d expired manifest(s)", len(swept))
        return swept
