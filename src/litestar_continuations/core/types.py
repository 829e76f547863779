"""Core type definitions for litestar-continuations.

This module defines the enumerations and type aliases shared by the token
protocol, the resolver and the workflow engine.
"""

from __future__ import annotations

import sys
from enum import Enum, auto
from typing import Any, TypeAlias

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        @staticmethod
        def _generate_next_value_(name: str, start: int, count: int, last_values: list[Any]) -> str:
            return name.lower()

        def __str__(self) -> str:
            return str(self.value)


__all__ = [
    "Bindings",
    "ErrorPolicy",
    "FailureCode",
    "Parameters",
    "ResultStatus",
    "StepKind",
    "StepStatus",
    "WorkflowStatus",
]


class ResultStatus(StrEnum):
    """Outcome of resolving one action.

    Attributes:
        SUCCESS: The handler ran and produced a result.
        WARNING: The call needs attention (e.g. stale results) but nothing failed hard.
        ERROR: The call was rejected or the handler failed.
    """

    SUCCESS = auto()
    WARNING = auto()
    ERROR = auto()


class FailureCode(StrEnum):
    """Machine-readable failure categories surfaced to callers.

    Attributes:
        MALFORMED: The token could not be decoded.
        SIGNATURE_INVALID: The token signature does not match its content.
        EXPIRED: The token is past its ``expires_at``.
        ACTION_NOT_PERMITTED: The chosen action is not offered by the token or unknown to the registry.
        CONFIRMATION_REQUIRED: A guarded action was called without confirmation.
        RESULTS_STALE: The resource behind the token changed since it was minted.
        INVALID_PARAMETERS: Parameters do not satisfy the action's schema.
        HANDLER_ERROR: The operation handler itself failed.
    """

    MALFORMED = auto()
    SIGNATURE_INVALID = auto()
    EXPIRED = auto()
    ACTION_NOT_PERMITTED = auto()
    CONFIRMATION_REQUIRED = auto()
    RESULTS_STALE = auto()
    INVALID_PARAMETERS = auto()
    HANDLER_ERROR = auto()


class WorkflowStatus(StrEnum):
    """Overall status of a workflow instance.

    Attributes:
        PENDING: Manifest created but no step has run.
        RUNNING: Steps are being executed.
        AWAITING_CHECKPOINT: Paused at a checkpoint until a decision arrives.
        COMPLETED: The cursor moved past the final step without error.
        ABORTED: Stopped by a checkpoint option, an explicit abort or a structural problem.
        FAILED: Stopped by a step error under the ``abort`` policy.
    """

    PENDING = "pending"
    RUNNING = "running"
    AWAITING_CHECKPOINT = "awaiting-checkpoint"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.ABORTED, WorkflowStatus.FAILED)


class StepKind(StrEnum):
    """Kinds of workflow steps.

    Attributes:
        OPERATION: Invokes an action through the resolver.
        CHECKPOINT: Pauses for an external decision.
        CONDITIONAL: Jumps to a branch based on a boolean expression.
        LOOP: Runs nested operation steps once per item of a collection.
    """

    OPERATION = auto()
    CHECKPOINT = auto()
    CONDITIONAL = auto()
    LOOP = auto()


class StepStatus(StrEnum):
    """Status recorded for an executed step.

    Attributes:
        SUCCEEDED: The step ran and its result was bound.
        FAILED: The step failed; the error policy decided what happened next.
        SKIPPED: The step was passed over by a checkpoint ``skip`` option.
        DECIDED: A checkpoint received a decision (manual or auto-approved).
    """

    SUCCEEDED = auto()
    FAILED = auto()
    SKIPPED = auto()
    DECIDED = auto()


class ErrorPolicy(StrEnum):
    """What an operation step does when its action fails."""

    ABORT = auto()
    CONTINUE = auto()
    RETRY = auto()
    CHECKPOINT = auto()


Parameters: TypeAlias = dict[str, Any]
"""Type alias for action parameters."""

Bindings: TypeAlias = dict[str, Any]
"""Type alias for workflow variable bindings keyed by step id."""
