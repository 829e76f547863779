"""Checkpoint store protocol.

Stores are keyed blob stores for ``WorkflowManifest`` records. They never
interpret manifest contents beyond the few fields needed for filtering,
expiry and the revision check that rejects stale writes.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from litestar_continuations.core.types import WorkflowStatus

if TYPE_CHECKING:
    from datetime import datetime

    from litestar_continuations.core.manifest import WorkflowManifest

__all__ = ["CheckpointStore", "ManifestFilter"]


@dataclass(frozen=True)
class ManifestFilter:
    """Selection criteria for listing manifests.

    Attributes:
        statuses: Only manifests in one of these statuses; all statuses when empty.
        name: Only manifests of workflows with this name.
        include_expired: Also return manifests past their ``expires_at``.
    """

    statuses: frozenset[WorkflowStatus] = field(default_factory=frozenset)
    name: str | None = None
    include_expired: bool = False

    @classmethod
    def create(
        cls,
        statuses: Iterable[WorkflowStatus | str] = (),
        name: str | None = None,
        include_expired: bool = False,
    ) -> ManifestFilter:
        """Build a filter from raw status strings (as received from a CLI or query string)."""
        return cls(
            statuses=frozenset(WorkflowStatus(status) for status in statuses),
            name=name,
            include_expired=include_expired,
        )

    def matches(self, manifest: WorkflowManifest, now: datetime) -> bool:
        if self.statuses and manifest.status not in self.statuses:
            return False
        if self.name is not None and manifest.name != self.name:
            return False
        return self.include_expired or not manifest.is_expired(now)


@runtime_checkable
class CheckpointStore(Protocol):
    """Protocol for durable manifest persistence.

    Writes are whole-manifest replacements. A save whose ``revision`` is not
    greater than the stored one is rejected with ``StaleManifestError``.
    """

    async def save(self, manifest: WorkflowManifest) -> None:
        """Persist a manifest, replacing any stored version.

        Args:
            manifest: The manifest to store.

        Raises:
            StaleManifestError: If the stored manifest has the same or a newer revision.
        """
        ...

    async def load(self, workflow_id: str) -> WorkflowManifest:
        """Load a manifest.

        Args:
            workflow_id: The workflow id.

        Returns:
            The stored manifest.

        Raises:
            ManifestNotFoundError: If nothing is stored for the id.
            ManifestExpiredError: If the stored manifest is past its ``expires_at``.
            ManifestCorruptError: If the stored record cannot be decoded.
        """
        ...

    async def list(self, filter: ManifestFilter | None = None) -> list[WorkflowManifest]:
        """List stored manifests, oldest first.

        Args:
            filter: Optional selection criteria. Expired manifests are excluded by default.

        Returns:
            Matching manifests.
        """
        ...

    async def delete(self, workflow_id: str) -> bool:
        """Delete a manifest.

        Returns:
            True if a manifest was deleted.
        """
        ...

    async def sweep_expired(self) -> list[str]:
        """Delete every manifest past its ``expires_at``.

        Returns:
            Ids of the deleted manifests.
        """
        ...
