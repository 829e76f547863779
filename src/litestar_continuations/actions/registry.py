"""Action registry for operation handlers.

This module provides the static catalog of ``(command, action)`` pairs the
resolver is allowed to invoke. The registry is authoritative: a token's
next-action menu is only advisory and is always intersected with it.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from litestar_continuations.core.models import ActionDescriptor, ContextProbe, Handler
from litestar_continuations.exceptions import ActionNotFoundError, RegistryFrozenError

__all__ = ["ActionRegistry", "validate_parameters"]

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (Mapping,),
}


def validate_parameters(schema: Mapping[str, Any], parameters: Mapping[str, Any]) -> list[str]:
    """Check parameters against a JSON-schema subset.

    Supports ``required`` and ``properties.<name>.type``; ``type`` may also be
    a list of accepted types.

    Args:
        schema: The action's parameter schema.
        parameters: The parameters to check.

    Returns:
        List of problems. Empty list if the parameters are valid.
    """
    errors = [f"missing required parameter '{name}'" for name in schema.get("required", []) if name not in parameters]
    for name, rule in schema.get("properties", {}).items():
        if name not in parameters or "type" not in rule:
            continue
        value = parameters[name]
        expected = rule["type"] if isinstance(rule["type"], list) else [rule["type"]]
        if value is None and "null" in expected:
            continue
        accepted = tuple(kind for type_name in expected for kind in _JSON_TYPES.get(type_name, ()))
        # bool is an int subclass but never a valid integer/number
        if isinstance(value, bool) and "boolean" not in expected:
            accepted = ()
        if not isinstance(value, accepted):
            errors.append(f"parameter '{name}' must be of type {' or '.join(expected)}, got {type(value).__name__}")
    return errors


class ActionRegistry:
    """Catalog mapping ``(command, action)`` to descriptors and handlers.

    Populated at startup, then optionally frozen.

    Example:
        >>> registry = ActionRegistry()
        >>> @registry.action("search", "find", label="Find symbol")
        ... def find(params):
        ...     return {"matches": []}
        >>> registry.describe("search", "find").label
        'Find symbol'
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._actions: dict[tuple[str, str], ActionDescriptor] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Seal the catalog; later registrations raise ``RegistryFrozenError``."""
        self._frozen = True

    def register(
        self,
        command: str,
        action: str,
        handler: Handler,
        *,
        guarded: bool = False,
        label: str = "",
        parameter_schema: dict[str, Any] | None = None,
        probe: ContextProbe | None = None,
    ) -> ActionDescriptor:
        """Register an operation handler.

        Args:
            command: Command name.
            action: Action name. Must not contain ``:``, which separates qualifiers in next-action ids.
            handler: Sync or async callable receiving the merged parameters.
            guarded: Whether the action mutates external state.
            label: Human-readable label.
            parameter_schema: JSON-schema subset for the parameters.
            probe: Callable re-deriving the live context digest for a token minted by this action.

        Returns:
            The stored descriptor.

        Raises:
            RegistryFrozenError: If the registry was frozen.
            ValueError: If the action name is invalid or already registered.
        """
        if self._frozen:
            msg = f"Cannot register '{command}:{action}': the action registry is frozen"
            raise RegistryFrozenError(msg)
        if ":" in action or ":" in command:
            msg = f"Command and action names must not contain ':' (got '{command}', '{action}')"
            raise ValueError(msg)
        if (command, action) in self._actions:
            msg = f"Action '{command}:{action}' is already registered"
            raise ValueError(msg)

        descriptor = ActionDescriptor(
            command=command,
            action=action,
            guarded=guarded,
            label=label or f"{command} {action}",
            parameter_schema=dict(parameter_schema or {}),
            handler=handler,
            probe=probe,
        )
        self._actions[descriptor.key] = descriptor
        return descriptor

    def action(
        self,
        command: str,
        action: str,
        *,
        guarded: bool = False,
        label: str = "",
        parameter_schema: dict[str, Any] | None = None,
        probe: ContextProbe | None = None,
    ) -> Callable[[Handler], Handler]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: Handler) -> Handler:
            self.register(
                command,
                action,
                handler,
                guarded=guarded,
                label=label,
                parameter_schema=parameter_schema,
                probe=probe,
            )
            return handler

        return decorator

    def describe(self, command: str, action: str) -> ActionDescriptor:
        """Look up an action.

        Args:
            command: Command name.
            action: Action name or qualified next-action id (``analyze:0``).

        Returns:
            The action's descriptor.

        Raises:
            ActionNotFoundError: If the action is not registered.
        """
        action = action.split(":", 1)[0]
        try:
            return self._actions[(command, action)]
        except KeyError:
            raise ActionNotFoundError(command, action) from None

    def has(self, command: str, action: str) -> bool:
        return (command, action.split(":", 1)[0]) in self._actions

    def has_command(self, command: str) -> bool:
        return any(key[0] == command for key in self._actions)

    def list_actions(self, command: str | None = None) -> list[ActionDescriptor]:
        """List registered actions, optionally for one command, sorted by key."""
        return [
            descriptor
            for key, descriptor in sorted(self._actions.items())
            if command is None or key[0] == command
        ]

    def __len__(self) -> int:
        return len(self._actions)

    def __contains__(self, key: object) -> bool:
        return key in self._actions
