"""Exception handling for continuation web endpoints.

This module maps result envelopes and library exceptions onto HTTP
responses. Envelopes are always returned in full; only the status code
reflects the failure category.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from litestar import Response
from litestar.status_codes import (
    HTTP_200_OK,
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_410_GONE,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_428_PRECONDITION_REQUIRED,
    HTTP_502_BAD_GATEWAY,
)

from litestar_continuations.core.types import FailureCode, ResultStatus
from litestar_continuations.exceptions import (
    CheckpointMismatchError,
    ManifestNotFoundError,
    StaleManifestError,
    WorkflowAlreadyCompletedError,
    WorkflowDefinitionError,
    WorkflowsError,
    WorkflowValidationError,
)

if TYPE_CHECKING:  # pragma: no cover
    from litestar import Request

    from litestar_continuations.core.models import ResultEnvelope

__all__ = [
    "FAILURE_STATUS_CODES",
    "envelope_response",
    "envelope_status_code",
    "workflow_error_handler",
    "workflow_exception_handlers",
]

FAILURE_STATUS_CODES: dict[FailureCode, int] = {
    FailureCode.MALFORMED: HTTP_400_BAD_REQUEST,
    FailureCode.INVALID_PARAMETERS: HTTP_400_BAD_REQUEST,
    FailureCode.SIGNATURE_INVALID: HTTP_401_UNAUTHORIZED,
    FailureCode.ACTION_NOT_PERMITTED: HTTP_403_FORBIDDEN,
    FailureCode.EXPIRED: HTTP_410_GONE,
    FailureCode.CONFIRMATION_REQUIRED: HTTP_428_PRECONDITION_REQUIRED,
    FailureCode.HANDLER_ERROR: HTTP_502_BAD_GATEWAY,
}

_WORKFLOW_STATUS_CODES: tuple[tuple[type[WorkflowsError], int], ...] = (
    (ManifestNotFoundError, HTTP_404_NOT_FOUND),
    (StaleManifestError, HTTP_409_CONFLICT),
    (WorkflowAlreadyCompletedError, HTTP_409_CONFLICT),
    (CheckpointMismatchError, HTTP_409_CONFLICT),
    (WorkflowDefinitionError, HTTP_422_UNPROCESSABLE_ENTITY),
    (WorkflowValidationError, HTTP_422_UNPROCESSABLE_ENTITY),
)


def envelope_status_code(envelope: ResultEnvelope) -> int:
    """Pick the HTTP status code for an envelope.

    Success and warning envelopes (including a stale-results warning carrying
    a fresh token) are 200; error envelopes use their first failure's code.
    """
    if envelope.status != ResultStatus.ERROR:
        return HTTP_200_OK
    failure = envelope.failure
    if failure is None:  # pragma: no cover
        return HTTP_400_BAD_REQUEST
    return FAILURE_STATUS_CODES.get(failure.code, HTTP_400_BAD_REQUEST)


def envelope_response(envelope: ResultEnvelope) -> Response[dict[str, Any]]:
    return Response(content=envelope.to_dict(), status_code=envelope_status_code(envelope))


def workflow_error_handler(
    _request: Request,
    exc: WorkflowsError,
) -> Response[dict[str, Any]]:
    """Exception handler for workflow errors.

    Args:
        request: The Litestar request object.
        exc: The raised workflow error.

    Returns:
        JSON response with the error name and message.
    """
    status_code = next(
        (code for error_type, code in _WORKFLOW_STATUS_CODES if isinstance(exc, error_type)),
        HTTP_400_BAD_REQUEST,
    )
    content: dict[str, Any] = {
        "error": type(exc).__name__,
        "detail": str(exc),
        "status_code": status_code,
    }
    workflow_id = getattr(exc, "workflow_id", None)
    if workflow_id is not None:
        content["workflow_id"] = workflow_id
    if isinstance(exc, WorkflowValidationError):
        content["errors"] = exc.errors
    return Response(content=content, status_code=status_code)


def workflow_exception_handlers() -> dict[type[Exception], Any]:
    """Exception handlers to register on the application."""
    return {WorkflowsError: workflow_error_handler}
