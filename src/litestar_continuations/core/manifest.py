"""Durable workflow state.

A ``WorkflowManifest`` is everything needed to resume a workflow in a later,
unrelated process: the definition being executed, the cursor, the record of
completed steps, the bindings captured so far and, while paused, the
checkpoint awaiting a decision.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from litestar_continuations.core.types import Bindings, StepStatus, WorkflowStatus

__all__ = [
    "CheckpointDecision",
    "CompletedStep",
    "Cursor",
    "PendingCheckpoint",
    "WorkflowManifest",
]


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Cursor:
    """Position of a workflow.

    Attributes:
        index: Index of the next step to run (``len(steps)`` once past the end).
        step_id: Id of that step, ``None`` past the end.
        status: Overall workflow status.
    """

    index: int = 0
    step_id: str | None = None
    status: WorkflowStatus = WorkflowStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "step_id": self.step_id, "status": str(self.status)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Cursor:
        return cls(index=int(data["index"]), step_id=data.get("step_id"), status=WorkflowStatus(data["status"]))


@dataclass
class CompletedStep:
    """Record of one executed (or decided) step.

    Attributes:
        step_id: The step that ran.
        status: Outcome of the step.
        duration_ms: Wall-clock duration.
        error: Failure message when the step failed.
        decision: Chosen option id for checkpoints.
        decided_at: Timestamp of the decision for checkpoints.
        auto: True when a checkpoint option was auto-approved.
        branch: Step a conditional jumped to.
        attempts: Number of attempts an operation needed.
    """

    step_id: str
    status: StepStatus
    duration_ms: float = 0.0
    error: str | None = None
    decision: str | None = None
    decided_at: datetime | None = None
    auto: bool = False
    branch: str | None = None
    attempts: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "step_id": self.step_id,
            "status": str(self.status),
            "duration_ms": round(self.duration_ms, 3),
        }
        if self.error is not None:
            data["error"] = self.error
        if self.decision is not None:
            data["decision"] = self.decision
            data["decided_at"] = _timestamp(self.decided_at)
            data["auto"] = self.auto
        if self.branch is not None:
            data["branch"] = self.branch
        if self.attempts is not None:
            data["attempts"] = self.attempts
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CompletedStep:
        return cls(
            step_id=data["step_id"],
            status=StepStatus(data["status"]),
            duration_ms=float(data.get("duration_ms", 0.0)),
            error=data.get("error"),
            decision=data.get("decision"),
            decided_at=_parse_timestamp(data.get("decided_at")),
            auto=bool(data.get("auto", False)),
            branch=data.get("branch"),
            attempts=data.get("attempts"),
        )


@dataclass
class PendingCheckpoint:
    """The checkpoint a paused workflow is waiting on.

    Attributes:
        step_id: Checkpoint step id (or the failed operation under the ``checkpoint`` policy).
        prompt: Text for whoever decides.
        options: Offered options as ``{id, label}`` mappings.
        entered_at: When the workflow paused.
    """

    step_id: str
    prompt: str
    options: list[dict[str, Any]]
    entered_at: datetime

    @property
    def option_ids(self) -> list[str]:
        return [option["id"] for option in self.options]

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "prompt": self.prompt,
            "options": self.options,
            "entered_at": self.entered_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PendingCheckpoint:
        return cls(
            step_id=data["step_id"],
            prompt=data.get("prompt", ""),
            options=[dict(option) for option in data["options"]],
            entered_at=datetime.fromisoformat(data["entered_at"]),
        )


@dataclass(frozen=True)
class CheckpointDecision:
    """An answer to a paused checkpoint.

    Attributes:
        workflow_id: Workflow being resumed.
        checkpoint_step_id: The checkpoint the decision answers.
        chosen_option_id: One of the options offered at that checkpoint.
        timestamp: When the decision was made.
    """

    workflow_id: str
    checkpoint_step_id: str
    chosen_option_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class WorkflowManifest:
    """The durable, resumable state of one workflow instance.

    Attributes:
        workflow_id: Unique identifier.
        name: Workflow name, copied from the definition for filtering.
        definition: The definition document being executed.
        cursor: Current position and status.
        created_at: Creation timestamp.
        expires_at: After this the manifest is unloadable and may be swept.
        completed_steps: Ordered execution record.
        variable_bindings: Step id to captured result, plus ``params``.
        superseded_bindings: Earlier values of steps re-executed after a checkpoint routed back.
        continuations: Step id to the tokens its resolution minted.
        pending_checkpoint: The checkpoint awaiting a decision, if paused.
        revision: Incremented on every save; guards against stale writes.
        error: Why the workflow failed or was aborted.
        diagnostics: Structural validation problems or failure details.
    """

    workflow_id: str
    name: str
    definition: dict[str, Any]
    cursor: Cursor
    created_at: datetime
    expires_at: datetime
    completed_steps: list[CompletedStep] = field(default_factory=list)
    variable_bindings: Bindings = field(default_factory=dict)
    superseded_bindings: dict[str, list[Any]] = field(default_factory=dict)
    continuations: dict[str, dict[str, str]] = field(default_factory=dict)
    pending_checkpoint: PendingCheckpoint | None = None
    revision: int = 0
    error: str | None = None
    diagnostics: list[str] = field(default_factory=list)

    @property
    def status(self) -> WorkflowStatus:
        return self.cursor.status

    @property
    def is_terminal(self) -> bool:
        return self.cursor.status.is_terminal

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def latest_decision(self, step_id: str) -> CompletedStep | None:
        """Return the most recent decision recorded for a checkpoint step."""
        for record in reversed(self.completed_steps):
            if record.step_id == step_id and record.decision is not None:
                return record
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "name": self.name,
            "definition": self.definition,
            "cursor": self.cursor.to_dict(),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "completed_steps": [record.to_dict() for record in self.completed_steps],
            "variable_bindings": self.variable_bindings,
            "superseded_bindings": self.superseded_bindings,
            "continuations": self.continuations,
            "pending_checkpoint": self.pending_checkpoint.to_dict() if self.pending_checkpoint else None,
            "revision": self.revision,
            "error": self.error,
            "diagnostics": self.diagnostics,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowManifest:
        pending = data.get("pending_checkpoint")
        return cls(
            workflow_id=data["workflow_id"],
            name=data["name"],
            definition=dict(data["definition"]),
            cursor=Cursor.from_dict(data["cursor"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            completed_steps=[CompletedStep.from_dict(record) for record in data.get("completed_steps", [])],
            variable_bindings=dict(data.get("variable_bindings", {})),
            superseded_bindings={key: list(value) for key, value in data.get("superseded_bindings", {}).items()},
            continuations={key: dict(value) for key, value in data.get("continuations", {}).items()},
            pending_checkpoint=PendingCheckpoint.from_dict(pending) if pending else None,
            revision=int(data.get("revision", 0)),
            error=data.get("error"),
            diagnostics=list(data.get("diagnostics", [])),
        )

    def summary(self) -> dict[str, Any]:
        """Compact view used by listings."""
        return {
            "workflow_id": self.workflow_id,
            "name": self.name,
            "status": str(self.status),
            "step_id": self.cursor.step_id,
            "awaiting": self.pending_checkpoint.to_dict() if self.pending_checkpoint else None,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "revision": self.revision,
        }
