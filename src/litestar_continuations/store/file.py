"""Filesystem checkpoint store.

One ``<workflow_id>.json`` document per workflow, so corruption of one
record never affects another. Writes go to a temporary file in the same
directory and are moved into place with ``os.replace``. Disk access runs in a
worker thread.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from anyio import to_thread

from litestar_continuations.core.manifest import WorkflowManifest
from litestar_continuations.exceptions import (
    ManifestCorruptError,
    ManifestExpiredError,
    ManifestNotFoundError,
    StaleManifestError,
)
from litestar_continuations.store.base import ManifestFilter

__all__ = ["FileCheckpointStore"]

logger = logging.getLogger(__name__)

_WORKFLOW_ID = re.compile(r"[A-Za-z0-9_.-]+")


class FileCheckpointStore:
    """Checkpoint store writing one JSON file per manifest.

    Attributes:
        directory: Directory holding the manifest files.

    Example:
        >>> store = FileCheckpointStore(".continuations/workflows")
        >>> await store.save(manifest)
        >>> restored = await store.load(manifest.workflow_id)
    """

    def __init__(self, directory: str | Path, *, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize the store.

        Args:
            directory: Directory for manifest files; created on first save.
            clock: Returns the current time; injectable for tests.
        """
        self.directory = Path(directory)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # revision check and replace happen under one lock per store
        self._write_lock = threading.Lock()

    def _path(self, workflow_id: str) -> Path:
        if not _WORKFLOW_ID.fullmatch(workflow_id) or workflow_id in (".", ".."):
            msg = f"Invalid workflow id '{workflow_id}'"
            raise ValueError(msg)
        return self.directory / f"{workflow_id}.json"

    def _read(self, path: Path, workflow_id: str) -> WorkflowManifest:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return WorkflowManifest.from_dict(data)
        except FileNotFoundError:
            raise ManifestNotFoundError(workflow_id) from None
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise ManifestCorruptError(workflow_id, str(e)) from e

    def _scan(self) -> list[WorkflowManifest]:
        if not self.directory.is_dir():
            return []
        manifests = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                manifests.append(self._read(path, path.stem))
            except ManifestCorruptError as e:
                logger.warning("Skipping unreadable manifest %s: %s", path, e)
            except ManifestNotFoundError:
                continue
        return manifests

    def _write(self, manifest: WorkflowManifest) -> None:
        path = self._path(manifest.workflow_id)
        with self._write_lock:
            self._check_revision(path, manifest)
            self._replace(path, manifest)
        logger.debug("Saved manifest %s (revision %d)", manifest.workflow_id, manifest.revision)

    def _check_revision(self, path: Path, manifest: WorkflowManifest) -> None:
        if path.exists():
            try:
                stored = self._read(path, manifest.workflow_id)
            except ManifestCorruptError:
                logger.warning("Overwriting unreadable manifest %s", path)
            else:
                if manifest.revision <= stored.revision:
                    raise StaleManifestError(manifest.workflow_id, stored.revision, manifest.revision)

    def _replace(self, path: Path, manifest: WorkflowManifest) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{manifest.workflow_id}.", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(manifest.to_dict(), handle, indent=2, sort_keys=True, default=str)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    async def save(self, manifest: WorkflowManifest) -> None:
        await to_thread.run_sync(self._write, manifest)

    async def load(self, workflow_id: str) -> WorkflowManifest:
        if not _WORKFLOW_ID.fullmatch(workflow_id) or workflow_id in (".", ".."):
            raise ManifestNotFoundError(workflow_id)
        manifest = await to_thread.run_sync(self._read, self._path(workflow_id), workflow_id)
        if manifest.is_expired(self._clock()):
            raise ManifestExpiredError(workflow_id)
        return manifest

    async def list(self, filter: ManifestFilter | None = None) -> list[WorkflowManifest]:
        filter = filter or ManifestFilter()
        now = self._clock()
        manifests = [manifest for manifest in await to_thread.run_sync(self._scan) if filter.matches(manifest, now)]
        return sorted(manifests, key=lambda manifest: manifest.created_at)

    async def delete(self, workflow_id: str) -> bool:
        return await to_thread.run_sync(self._unlink, self._path(workflow_id))

    async def sweep_expired(self) -> list[str]:
        now = self._clock()
        swept = []
        for manifest in await to_thread.run_sync(self._scan):
            if manifest.is_expired(now) and await self.delete(manifest.workflow_id):
                swept.append(manifest.workflow_id)
        if swept:
            logger.info("Swept %d expired manifest(s)", len(swept))
        return swept
