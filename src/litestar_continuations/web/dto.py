"""Data Transfer Objects for the continuations web API.

This module defines DTOs for deserializing request bodies of the
continuation and workflow endpoints. Responses are the envelopes' and
manifests' own dict renderings.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

__all__ = [
    "AbortWorkflowDTO",
    "CheckpointDecisionDTO",
    "InvokeActionDTO",
    "ReissueTokenDTO",
    "ResolveTokenDTO",
    "StartWorkflowDTO",
    "ValidateWorkflowDTO",
]


@dataclass
class InvokeActionDTO:
    """DTO for a plain action invocation.

    Attributes:
        parameters: Handler parameters.
        confirm: Confirmation for guarded actions.
    """

    parameters: dict[str, Any] | None = None
    confirm: bool = False


@dataclass
class ResolveTokenDTO:
    """DTO for continuing from a token.

    Attributes:
        token: Token taken from a previous envelope's continuations.
        action: The chosen next-action id.
        parameters: Extra parameters merged over the recorded ones.
        confirm: Confirmation for guarded actions.
    """

    token: str
    action: str
    parameters: dict[str, Any] | None = None
    confirm: bool = False


@dataclass
class ReissueTokenDTO:
    """DTO for re-issuing an expired or stale token.

    Attributes:
        token: The token to re-issue.
        parameters: Extra parameters merged over the recorded ones.
        confirm: Confirmation for guarded producing actions.
    """

    token: str
    parameters: dict[str, Any] | None = None
    confirm: bool = False


@dataclass
class StartWorkflowDTO:
    """DTO for starting a workflow.

    Attributes:
        definition: The workflow definition document.
        parameters: Overrides for the definition's named parameters.
        workflow_id: Optional explicit workflow id.
    """

    definition: dict[str, Any]
    parameters: dict[str, Any] | None = None
    workflow_id: str | None = None


@dataclass
class ValidateWorkflowDTO:
    """DTO for checking a workflow definition without running it.

    Attributes:
        definition: The workflow definition document.
    """

    definition: dict[str, Any]


@dataclass
class CheckpointDecisionDTO:
    """DTO for answering a paused checkpoint.

    Attributes:
        checkpoint_step_id: The checkpoint the decision answers.
        option_id: The chosen option.
        timestamp: When the decision was made; resending the same timestamp is a no-op.
    """

    checkpoint_step_id: str
    option_id: str
    timestamp: datetime | None = None


@dataclass
class AbortWorkflowDTO:
    """DTO for aborting a workflow.

    Attributes:
        reason: Why the workflow is aborted.
    """

    reason: str = "Aborted by request"
