"""Concrete data models for the continuation protocol.

This module provides the dataclasses that flow between the token codec, the
action registry, the resolver and operation handlers.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeAlias

from litestar_continuations.core.types import FailureCode, Parameters, ResultStatus
from litestar_continuations.exceptions import ResolutionError

__all__ = [
    "ActionDescriptor",
    "ContextProbe",
    "Failure",
    "Handler",
    "HandlerResult",
    "NextAction",
    "ResultEnvelope",
    "TokenClaims",
]


Handler: TypeAlias = Callable[[Parameters], "Awaitable[Any] | Any"]
"""Operation handler: receives validated parameters, returns a ``HandlerResult`` or a bare payload."""

ContextProbe: TypeAlias = Callable[[Parameters], "Awaitable[str | None] | str | None"]
"""Re-derives the live context digest for the parameters a token was minted with."""


@dataclass(frozen=True)
class NextAction:
    """One permissible follow-up offered by a result.

    Attributes:
        id: Action id, optionally qualified after a colon (``analyze:0``).
        label: Human-readable label.
        guarded: Whether the action mutates state and needs confirmation.
        parameters: Parameters bound to this particular follow-up.
    """

    id: str
    label: str = ""
    guarded: bool = False
    parameters: Parameters = field(default_factory=dict)

    @property
    def action(self) -> str:
        """The registry action name, i.e. the id without its qualifier."""
        return self.id.split(":", 1)[0]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "label": self.label, "guarded": self.guarded}
        if self.parameters:
            data["parameters"] = dict(self.parameters)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NextAction:
        return cls(
            id=data["id"],
            label=data.get("label", ""),
            guarded=bool(data.get("guarded", False)),
            parameters=dict(data.get("parameters") or {}),
        )


@dataclass(frozen=True)
class ActionDescriptor:
    """Static metadata describing one registered operation.

    Attributes:
        command: Command the action belongs to (``search``, ``edit`` ...).
        action: Action name within the command.
        guarded: True when the action mutates external state.
        label: Human-readable label.
        parameter_schema: JSON-schema subset the parameters must satisfy.
        handler: The operation handler invoked by the resolver.
        probe: Optional callable re-deriving the live context digest.
    """

    command: str
    action: str
    guarded: bool = False
    label: str = ""
    parameter_schema: dict[str, Any] = field(default_factory=dict)
    handler: Handler | None = field(default=None, compare=False, repr=False)
    probe: ContextProbe | None = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.command, self.action)

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "action": self.action,
            "guarded": self.guarded,
            "label": self.label,
            "parameter_schema": self.parameter_schema,
        }


@dataclass(frozen=True)
class TokenClaims:
    """The signed content of a continuation token.

    Attributes:
        version: Protocol revision the token was minted under.
        issued_at: When the token was minted.
        expires_at: When the token stops being accepted.
        command: Command of the operation that produced the token.
        action: Action of the operation that produced the token.
        context_digest: Digest of the result that produced the token.
        parameters: Normalized parameters of the producing request.
        next_actions: What the token permits next.
        request_id: Correlates all tokens minted by one resolution.
        parent: Digest of the token consumed to produce this one.
        insecure: True when signed with the non-production fallback key.
    """

    version: int
    issued_at: datetime
    expires_at: datetime
    command: str
    action: str
    context_digest: str | None
    parameters: Parameters
    next_actions: tuple[NextAction, ...]
    request_id: str
    parent: str | None = None
    insecure: bool = False

    def permits(self, action_id: str) -> NextAction | None:
        """Return the offered next action with the given id, if any."""
        for next_action in self.next_actions:
            if next_action.id == action_id:
                return next_action
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "command": self.command,
            "action": self.action,
            "context_digest": self.context_digest,
            "parameters": self.parameters,
            "next_actions": [next_action.to_dict() for next_action in self.next_actions],
            "request_id": self.request_id,
            "parent": self.parent,
            "insecure": self.insecure,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TokenClaims:
        return cls(
            version=int(data["version"]),
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            command=data["command"],
            action=data["action"],
            context_digest=data.get("context_digest"),
            parameters=dict(data["parameters"]),
            next_actions=tuple(NextAction.from_dict(item) for item in data["next_actions"]),
            request_id=data["request_id"],
            parent=data.get("parent"),
            insecure=bool(data.get("insecure", False)),
        )


@dataclass(frozen=True)
class Failure:
    """A structured, human- and machine-readable failure or warning.

    Attributes:
        code: Failure category.
        message: Human-readable explanation.
        retryable: Whether re-invoking the same action with identical parameters may succeed.
        recovery: Machine-actionable hint (re-issue pointer, fresh token, missing parameter).
    """

    code: FailureCode
    message: str
    retryable: bool = False
    recovery: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": str(self.code), "message": self.message, "retryable": self.retryable}
        if self.recovery is not None:
            data["recovery"] = self.recovery
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Failure:
        return cls(
            code=FailureCode(data["code"]),
            message=data["message"],
            retryable=bool(data.get("retryable", False)),
            recovery=data.get("recovery"),
        )


@dataclass
class HandlerResult:
    """What an operation handler returns.

    Attributes:
        payload: Handler-specific result data.
        next_actions: Follow-ups the handler permits.
        status: ``success`` or ``warning``; handlers signal failure by raising.
        context_digest: Digest of the underlying resource; defaults to the payload digest.
        diagnostics: Optional handler warnings.
    """

    payload: Any = None
    next_actions: list[NextAction] = field(default_factory=list)
    status: ResultStatus = ResultStatus.SUCCESS
    context_digest: str | None = None
    diagnostics: list[Failure] = field(default_factory=list)


@dataclass
class ResultEnvelope:
    """The output of resolving one action.

    Attributes:
        status: ``success``, ``warning`` or ``error``.
        command: Command that was resolved.
        action: Action that was resolved.
        payload: Handler-specific result data.
        continuations: Next-action id to freshly minted token.
        diagnostics: Failures and warnings.
        request_id: Correlation id shared by all minted tokens.
    """

    status: ResultStatus
    command: str
    action: str
    payload: Any = None
    continuations: dict[str, str] = field(default_factory=dict)
    diagnostics: list[Failure] = field(default_factory=list)
    request_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != ResultStatus.ERROR

    @property
    def failure(self) -> Failure | None:
        """The first diagnostic of an error or warning envelope."""
        if self.status == ResultStatus.SUCCESS or not self.diagnostics:
            return None
        return self.diagnostics[0]

    def has_code(self, code: FailureCode) -> bool:
        return any(diagnostic.code == code for diagnostic in self.diagnostics)

    def raise_for_status(self) -> ResultEnvelope:
        """Raise ``ResolutionError`` if this is an error envelope.

        Returns:
            The envelope itself, for chaining.

        Raises:
            ResolutionError: If the envelope status is ``error``.
        """
        if self.status == ResultStatus.ERROR:
            raise ResolutionError(self.diagnostics[0])
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": str(self.status),
            "command": self.command,
            "action": self.action,
            "payload": self.payload,
            "continuations": dict(self.continuations),
            "available_actions": list(self.continuations),
            "diagnostics": [diagnostic.to_dict() for diagnostic in self.diagnostics],
            "request_id": self.request_id,
        }
