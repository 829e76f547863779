"""Core domain module for litestar-continuations.

This module exports the shared enumerations and the durable workflow
manifest records. Token and envelope models live in
``litestar_continuations.core.models``; workflow definitions in
``litestar_continuations.core.definition``.
"""

from __future__ import annotations

from litestar_continuations.core.manifest import (
    CheckpointDecision,
    CompletedStep,
    Cursor,
    PendingCheckpoint,
    WorkflowManifest,
)
from litestar_continuations.core.types import (
    Bindings,
    ErrorPolicy,
    FailureCode,
    Parameters,
    ResultStatus,
    StepKind,
    StepStatus,
    WorkflowStatus,
)

__all__ = [
    "Bindings",
    "CheckpointDecision",
    "CompletedStep",
    "Cursor",
    "ErrorPolicy",
    "FailureCode",
    "Parameters",
    "PendingCheckpoint",
    "ResultStatus",
    "StepKind",
    "StepStatus",
    "WorkflowManifest",
    "WorkflowStatus",
]
