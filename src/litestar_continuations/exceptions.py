"""Exception hierarchy for litestar-continuations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from litestar_continuations.core.types import FailureCode

if TYPE_CHECKING:
    from litestar_continuations.core.models import Failure, TokenClaims

__all__ = (
    "ActionNotFoundError",
    "CheckpointMismatchError",
    "ContinuationsError",
    "ExpressionError",
    "InsecureKeyError",
    "InterpolationError",
    "ManifestCorruptError",
    "ManifestExpiredError",
    "ManifestNotFoundError",
    "MalformedTokenError",
    "RegistryFrozenError",
    "ResolutionError",
    "SignatureInvalidError",
    "StaleManifestError",
    "TokenError",
    "TokenExpiredError",
    "WorkflowAlreadyCompletedError",
    "WorkflowDefinitionError",
    "WorkflowValidationError",
    "WorkflowsError",
)


class ContinuationsError(Exception):
    """Base exception for all litestar-continuations errors.

    All exceptions raised by litestar-continuations inherit from this class so
    callers can catch every library error with a single except clause.
    """


class TokenError(ContinuationsError):
    """Base exception for continuation token validation failures.

    Attributes:
        code: The failure code the resolver reports for this error.
    """

    code: FailureCode = FailureCode.MALFORMED


class MalformedTokenError(TokenError):
    """Raised when a token cannot be decoded (truncated or invalid structure)."""

    code = FailureCode.MALFORMED


class SignatureInvalidError(TokenError):
    """Raised when a token's signature does not match its content.

    No retry with the same token can succeed; the token may have been tampered with.
    """

    code = FailureCode.SIGNATURE_INVALID


class TokenExpiredError(TokenError):
    """Raised when a correctly signed token is past its expiry.

    Attributes:
        claims: The verified claims of the expired token, usable for re-issue.
    """

    code = FailureCode.EXPIRED

    def __init__(self, claims: TokenClaims) -> None:
        """Initialize the exception with the expired claims.

        Args:
            claims: Verified claims of the expired token.
        """
        self.claims = claims
        super().__init__(f"Token for '{claims.command}:{claims.action}' expired at {claims.expires_at.isoformat()}")


class InsecureKeyError(ContinuationsError):
    """Raised when a signing secret is required but only the fallback key is available."""


class ActionNotFoundError(ContinuationsError):
    """Raised when an action is not present in the registry.

    Attributes:
        command: The command that was looked up.
        action: The action that was looked up.
    """

    def __init__(self, command: str, action: str) -> None:
        """Initialize the exception with the missing action.

        Args:
            command: The command that was looked up.
            action: The action that was looked up.
        """
        self.command = command
        self.action = action
        super().__init__(f"Action '{command}:{action}' is not registered")


class RegistryFrozenError(ContinuationsError):
    """Raised when registering an action after the registry was frozen."""


class ResolutionError(ContinuationsError):
    """Raised by ``ResultEnvelope.raise_for_status`` for error envelopes.

    Attributes:
        failure: The structured failure carried by the envelope.
    """

    def __init__(self, failure: Failure) -> None:
        """Initialize the exception from a failure.

        Args:
            failure: The structured failure carried by the envelope.
        """
        self.failure = failure
        super().__init__(f"{failure.code}: {failure.message}")


class InterpolationError(ContinuationsError):
    """Raised when a ``${...}`` reference cannot be resolved against the bindings."""


class ExpressionError(ContinuationsError):
    """Raised when a condition expression is invalid or cannot be evaluated."""


class WorkflowsError(ContinuationsError):
    """Base exception for workflow definition and execution errors."""


class WorkflowDefinitionError(WorkflowsError):
    """Raised when a workflow definition document cannot be parsed."""


class WorkflowValidationError(WorkflowsError):
    """Raised when workflow definition validation fails.

    This occurs when the definition doesn't meet structural constraints
    (cycles, unknown step references, unknown actions).

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: List of validation error messages.
        """
        self.errors = errors
        super().__init__(f"Workflow validation failed: {'; '.join(errors)}")


class ManifestNotFoundError(WorkflowsError):
    """Raised when no manifest is stored for a workflow id.

    Attributes:
        workflow_id: The id that was looked up.
    """

    def __init__(self, workflow_id: str, message: str | None = None) -> None:
        """Initialize the exception with the workflow id.

        Args:
            workflow_id: The id that was looked up.
            message: Optional custom message.
        """
        self.workflow_id = workflow_id
        super().__init__(message or f"Workflow '{workflow_id}' not found")


class ManifestExpiredError(ManifestNotFoundError):
    """Raised when a stored manifest is past its ``expires_at`` and no longer loadable."""

    def __init__(self, workflow_id: str) -> None:
        """Initialize the exception with the workflow id.

        Args:
            workflow_id: The id of the expired workflow.
        """
        super().__init__(workflow_id, f"Workflow '{workflow_id}' has expired")


class ManifestCorruptError(WorkflowsError):
    """Raised when a stored manifest cannot be decoded.

    Attributes:
        workflow_id: The id of the unreadable manifest.
    """

    def __init__(self, workflow_id: str, reason: str) -> None:
        """Initialize the exception.

        Args:
            workflow_id: The id of the unreadable manifest.
            reason: What went wrong while decoding.
        """
        self.workflow_id = workflow_id
        super().__init__(f"Workflow '{workflow_id}' manifest is unreadable: {reason}")


class StaleManifestError(WorkflowsError):
    """Raised when saving a manifest older than the stored one.

    Attributes:
        workflow_id: The workflow whose save was rejected.
        stored_revision: Revision currently persisted.
        attempted_revision: Revision of the rejected write.
    """

    def __init__(self, workflow_id: str, stored_revision: int, attempted_revision: int) -> None:
        """Initialize the exception with revision details.

        Args:
            workflow_id: The workflow whose save was rejected.
            stored_revision: Revision currently persisted.
            attempted_revision: Revision of the rejected write.
        """
        self.workflow_id = workflow_id
        self.stored_revision = stored_revision
        self.attempted_revision = attempted_revision
        super().__init__(
            f"Workflow '{workflow_id}' was modified concurrently "
            f"(stored revision {stored_revision}, attempted {attempted_revision})"
        )


class CheckpointMismatchError(WorkflowsError):
    """Raised when a checkpoint decision does not match the pending checkpoint.

    Attributes:
        workflow_id: The workflow the decision targeted.
        step_id: The checkpoint step named by the decision.
        option_id: The option named by the decision.
    """

    def __init__(self, workflow_id: str, step_id: str, option_id: str, reason: str) -> None:
        """Initialize the exception with decision details.

        Args:
            workflow_id: The workflow the decision targeted.
            step_id: The checkpoint step named by the decision.
            option_id: The option named by the decision.
            reason: Why the decision was rejected.
        """
        self.workflow_id = workflow_id
        self.step_id = step_id
        self.option_id = option_id
        super().__init__(f"Decision '{option_id}' for checkpoint '{step_id}' rejected: {reason}")


class WorkflowAlreadyCompletedError(WorkflowsError):
    """Raised when trying to modify a workflow in a terminal state.

    Attributes:
        workflow_id: The id of the workflow.
        status: The current terminal status of the workflow.
    """

    def __init__(self, workflow_id: str, status: str) -> None:
        """Initialize the exception with workflow state details.

        Args:
            workflow_id: The id of the workflow.
            status: The current terminal status of the workflow.
        """
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(f"Workflow '{workflow_id}' is already {status}")
