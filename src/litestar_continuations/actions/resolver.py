"""Continuation resolver.

This module turns a token plus a chosen next-action id into a handler call
and a fresh set of tokens. Every protocol failure is returned as a structured
``Failure`` inside an error envelope rather than raised, so a long-running
caller can decide per call how to react.
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any

from litestar_continuations.actions.registry import validate_parameters
from litestar_continuations.core.models import Failure, HandlerResult, ResultEnvelope
from litestar_continuations.core.types import FailureCode, Parameters, ResultStatus
from litestar_continuations.exceptions import TokenError, TokenExpiredError
from litestar_continuations.tokens.codec import compute_digest, generate_request_id

if TYPE_CHECKING:
    from litestar_continuations.actions.registry import ActionRegistry
    from litestar_continuations.core.models import ActionDescriptor, TokenClaims
    from litestar_continuations.tokens.codec import TokenCodec

__all__ = ["CONFIRM_PARAMETER", "ContinuationResolver"]

logger = logging.getLogger(__name__)

CONFIRM_PARAMETER = "confirm"


def _error(
    command: str,
    action: str,
    code: FailureCode,
    message: str,
    *,
    recovery: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> ResultEnvelope:
    return ResultEnvelope(
        status=ResultStatus.ERROR,
        command=command,
        action=action,
        diagnostics=[
            Failure(code=code, message=message, retryable=code == FailureCode.HANDLER_ERROR, recovery=recovery)
        ],
        request_id=request_id,
    )


def _pop_confirmation(parameters: Parameters) -> bool:
    return parameters.pop(CONFIRM_PARAMETER, False) is True


class ContinuationResolver:
    """Resolves actions and continuation tokens into result envelopes.

    The resolver is stateless: everything it needs to continue is carried by
    the token, so any number of callers may resolve tokens in parallel.

    Attributes:
        codec: Mints and validates tokens.
        registry: Authoritative catalog of actions and handlers.

    Example:
        >>> resolver = ContinuationResolver(codec, registry)
        >>> envelope = await resolver.invoke("search", "find", {"term": "foo"})
        >>> follow_up = await resolver.resolve(envelope.continuations["analyze:0"], "analyze:0")
    """

    def __init__(self, codec: TokenCodec, registry: ActionRegistry) -> None:
        """Initialize the resolver.

        Args:
            codec: Token codec used for minting and validation.
            registry: Action registry used for lookups and handler dispatch.
        """
        self.codec = codec
        self.registry = registry

    async def invoke(self, command: str, action: str, parameters: Parameters | None = None) -> ResultEnvelope:
        """Run an action directly (plain mode) and mint its first tokens.

        Args:
            command: Command name.
            action: Action name.
            parameters: Handler parameters; ``confirm: True`` satisfies a guard.

        Returns:
            The result envelope.
        """
        return await self._invoke(command, action, dict(parameters or {}))

    async def resolve(
        self,
        token: str,
        action_id: str,
        extra_parameters: Parameters | None = None,
    ) -> ResultEnvelope:
        """Continue from a token with one of the actions it permits.

        Args:
            token: A token taken from a previous envelope's ``continuations``.
            action_id: The chosen next-action id.
            extra_parameters: Parameters merged over the recorded ones; ``confirm: True`` satisfies a guard.

        Returns:
            The result envelope. Protocol failures come back as error envelopes;
            a stale context comes back as a warning carrying a fresh token.
        """
        extra = dict(extra_parameters or {})
        confirmed = _pop_confirmation(extra)
        action_name = action_id.split(":", 1)[0]

        try:
            claims = self.codec.validate(token)
        except TokenExpiredError as e:
            expired = e.claims
            logger.info(
                "Token for '%s:%s' expired; offering re-issue",
                expired.command,
                expired.action,
                extra={"request_id": expired.request_id},
            )
            return _error(
                expired.command,
                action_name,
                FailureCode.EXPIRED,
                f"{e}. Re-issue the token to obtain a fresh one.",
                recovery={
                    "reissue": {
                        "command": expired.command,
                        "action": expired.action,
                        "parameters": expired.parameters,
                    }
                },
                request_id=expired.request_id,
            )
        except TokenError as e:
            return _error("", action_name, e.code, str(e))

        next_action = claims.permits(action_id)
        if next_action is None or not self.registry.has(claims.command, action_id):
            allowed = [item.id for item in claims.next_actions if self.registry.has(claims.command, item.id)]
            reason = "is not offered by this token" if next_action is None else "is no longer registered"
            return _error(
                claims.command,
                action_name,
                FailureCode.ACTION_NOT_PERMITTED,
                f"Action '{action_id}' {reason}",
                recovery={"allowed_actions": allowed},
                request_id=claims.request_id,
            )

        descriptor = self.registry.describe(claims.command, action_id)
        if descriptor.guarded and not confirmed:
            return self._confirmation_required(descriptor, claims.request_id)

        parent = self.codec.digest(token)
        stale = await self._check_freshness(claims, action_id, parent)
        if stale is not None:
            return stale

        parameters = {**claims.parameters, **next_action.parameters, **extra}
        return await self._execute(descriptor, parameters, parent=parent)

    async def reissue(self, token: str, extra_parameters: Parameters | None = None) -> ResultEnvelope:
        """Re-run the operation that produced a (possibly expired) token.

        The new tokens get a fresh, full-length expiry window.

        Args:
            token: A correctly signed token; expiry is ignored.
            extra_parameters: Parameters merged over the recorded ones; guarded producers need ``confirm``.

        Returns:
            A brand-new envelope for the producing operation.
        """
        try:
            claims = self.codec.validate(token, allow_expired=True)
        except TokenError as e:
            return _error("", "", e.code, str(e))

        logger.info(
            "Re-issuing tokens for '%s:%s'", claims.command, claims.action, extra={"request_id": claims.request_id}
        )
        parameters = {**claims.parameters, **(extra_parameters or {})}
        return await self._invoke(claims.command, claims.action, parameters, parent=self.codec.digest(token))

    async def _invoke(
        self,
        command: str,
        action: str,
        parameters: Parameters,
        *,
        parent: str | None = None,
    ) -> ResultEnvelope:
        confirmed = _pop_confirmation(parameters)
        if not self.registry.has(command, action):
            allowed = [descriptor.action for descriptor in self.registry.list_actions(command)]
            return _error(
                command,
                action,
                FailureCode.ACTION_NOT_PERMITTED,
                f"Action '{command}:{action}' is not registered",
                recovery={"allowed_actions": allowed},
            )
        descriptor = self.registry.describe(command, action)
        if descriptor.guarded and not confirmed:
            return self._confirmation_required(descriptor)
        return await self._execute(descriptor, parameters, parent=parent)

    def _confirmation_required(self, descriptor: ActionDescriptor, request_id: str | None = None) -> ResultEnvelope:
        return _error(
            descriptor.command,
            descriptor.action,
            FailureCode.CONFIRMATION_REQUIRED,
            f"Action '{descriptor.command}:{descriptor.action}' mutates state; resubmit with {CONFIRM_PARAMETER}=true",
            recovery={"parameter": CONFIRM_PARAMETER},
            request_id=request_id,
        )

    async def _check_freshness(self, claims: TokenClaims, action_id: str, parent: str) -> ResultEnvelope | None:
        if claims.context_digest is None or not self.registry.has(claims.command, claims.action):
            return None
        producer = self.registry.describe(claims.command, claims.action)
        if producer.probe is None:
            return None

        try:
            live = producer.probe(claims.parameters)
            if inspect.isawaitable(live):
                live = await live
        except Exception as e:
            logger.exception("Context probe for '%s:%s' failed", claims.command, claims.action)
            return _error(
                claims.command,
                action_id.split(":", 1)[0],
                FailureCode.HANDLER_ERROR,
                f"Cannot check freshness: {type(e).__name__}: {e}",
                request_id=claims.request_id,
            )
        if live is None or live == claims.context_digest:
            return None

        logger.info("Results of '%s:%s' are stale; minting a refreshed token", claims.command, claims.action)
        fresh = self.codec.mint(
            self.codec.claims(
                claims.command,
                claims.action,
                claims.parameters,
                claims.next_actions,
                context_digest=live,
                request_id=claims.request_id,
                parent=parent,
            )
        )
        return ResultEnvelope(
            status=ResultStatus.WARNING,
            command=claims.command,
            action=action_id.split(":", 1)[0],
            continuations={action_id: fresh},
            diagnostics=[
                Failure(
                    code=FailureCode.RESULTS_STALE,
                    message=(
                        f"The resource behind '{claims.command}:{claims.action}' changed since the token was minted; "
                        "retry with the refreshed token"
                    ),
                    recovery={"token": fresh},
                )
            ],
            request_id=claims.request_id,
        )

    async def _execute(
        self,
        descriptor: ActionDescriptor,
        parameters: Parameters,
        *,
        parent: str | None = None,
    ) -> ResultEnvelope:
        command, action = descriptor.command, descriptor.action
        problems = validate_parameters(descriptor.parameter_schema, parameters)
        if problems:
            return _error(
                command,
                action,
                FailureCode.INVALID_PARAMETERS,
                f"Invalid parameters for '{command}:{action}': {'; '.join(problems)}",
            )

        assert descriptor.handler is not None
        try:
            result = descriptor.handler(dict(parameters))
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.exception(
                "Handler for '%s:%s' failed", command, action, extra={"command": command, "action": action}
            )
            return _error(command, action, FailureCode.HANDLER_ERROR, f"{type(e).__name__}: {e}")

        if not isinstance(result, HandlerResult):
            result = HandlerResult(payload=result)
        if result.status == ResultStatus.ERROR:
            reason = result.diagnostics[0].message if result.diagnostics else "handler reported an error"
            return _error(command, action, FailureCode.HANDLER_ERROR, reason)

        request_id = generate_request_id(command)
        context_digest = result.context_digest or compute_digest(result.payload)
        continuations: dict[str, str] = {}
        for next_action in result.next_actions:
            claims = self.codec.claims(
                command,
                action,
                parameters,
                [next_action],
                context_digest=context_digest,
                request_id=request_id,
                parent=parent,
            )
            continuations[next_action.id] = self.codec.mint(claims)

        logger.debug(
            "Resolved '%s:%s' with %d continuation(s)",
            command,
            action,
            len(continuations),
            extra={"request_id": request_id, "command": command, "action": action},
        )
        return ResultEnvelope(
            status=result.status,
            command=command,
            action=action,
            payload=result.payload,
            continuations=continuations,
            diagnostics=list(result.diagnostics),
            request_id=request_id,
        )
