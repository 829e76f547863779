"""Workflow definition structures.

This module provides the data structures for declarative workflow documents:
an ordered list of operation, checkpoint, conditional and loop steps plus
optional named parameters for templated instantiation.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from litestar_continuations.core.types import ErrorPolicy, StepKind
from litestar_continuations.exceptions import WorkflowDefinitionError

if TYPE_CHECKING:
    from litestar_continuations.actions.registry import ActionRegistry

__all__ = ["CheckpointOption", "StepDefinition", "WorkflowDefinition"]

DEFAULT_RETRIES = 2


def _require(data: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in data or data[key] in (None, ""):
        msg = f"{where}: missing required field '{key}'"
        raise WorkflowDefinitionError(msg)
    return data[key]


def _expect(value: Any, kind: type | tuple[type, ...], where: str) -> Any:
    if not isinstance(value, kind):
        msg = f"{where}: expected {getattr(kind, '__name__', kind)}, got {type(value).__name__}"
        raise WorkflowDefinitionError(msg)
    return value


@dataclass(frozen=True)
class CheckpointOption:
    """One labelled choice offered at a checkpoint.

    Attributes:
        id: Option identifier the decision must name.
        label: Human-readable label.
        goto: Step to resume from; earlier steps are allowed (deliberate loop).
        abort: Whether choosing this option aborts the workflow.
        auto_approve: Condition that, when true, selects this option without pausing.
    """

    id: str
    label: str = ""
    goto: str | None = None
    abort: bool = False
    auto_approve: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], where: str) -> CheckpointOption:
        _expect(data, Mapping, where)
        option = cls(
            id=str(_require(data, "id", where)),
            label=str(data.get("label", "")),
            goto=data.get("goto"),
            abort=bool(data.get("abort", False)),
            auto_approve=data.get("autoApprove"),
        )
        if option.abort and option.goto:
            msg = f"{where}: option '{option.id}' cannot both abort and goto"
            raise WorkflowDefinitionError(msg)
        return option

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "label": self.label}
        if self.goto is not None:
            data["goto"] = self.goto
        if self.abort:
            data["abort"] = True
        if self.auto_approve is not None:
            data["autoApprove"] = self.auto_approve
        return data


@dataclass(frozen=True)
class StepDefinition:
    """One step of a workflow.

    Only the fields relevant to the step's ``kind`` are populated.

    Attributes:
        id: Unique step identifier, also the binding name of its result.
        kind: Operation, checkpoint, conditional or loop.
        description: Free text.
        command: Operation command for direct invocations.
        action: Operation action (or next-action id when continuing ``source``).
        source: Earlier step whose continuation token this operation consumes.
        parameters: Parameter templates, interpolated at dispatch time.
        confirm: Satisfies the guard of a guarded action.
        on_error: Error policy of an operation.
        retries: Bounded retry count for the ``retry`` policy.
        options: Checkpoint options (also used by the ``checkpoint`` error policy).
        prompt: Text shown to whoever decides a checkpoint.
        condition: Boolean expression of a conditional.
        then: Step a conditional jumps to when its condition holds.
        otherwise: Step a conditional jumps to otherwise; falls through when unset.
        over: Reference to the collection a loop iterates.
        alias: Name under which each loop item is exposed.
        concurrency: Maximum concurrently running loop iterations.
        steps: Nested operation steps of a loop.
    """

    id: str
    kind: StepKind
    description: str = ""
    command: str | None = None
    action: str | None = None
    source: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    confirm: bool = False
    on_error: ErrorPolicy = ErrorPolicy.ABORT
    retries: int = DEFAULT_RETRIES
    options: tuple[CheckpointOption, ...] = ()
    prompt: str = ""
    condition: str | None = None
    then: str | None = None
    otherwise: str | None = None
    over: str | None = None
    alias: str = "item"
    concurrency: int = 1
    steps: tuple[StepDefinition, ...] = ()

    def error_options(self) -> tuple[CheckpointOption, ...]:
        """Options offered when an operation pauses under the ``checkpoint`` policy."""
        if self.options:
            return self.options
        return (
            CheckpointOption(id="retry", label=f"Retry '{self.id}'", goto=self.id),
            CheckpointOption(id="skip", label=f"Skip '{self.id}' and continue"),
            CheckpointOption(id="abort", label="Abort the workflow", abort=True),
        )

    @classmethod
    def from_dict(cls, data: Any, where: str = "step") -> StepDefinition:
        """Parse a step mapping.

        Args:
            data: The step mapping.
            where: Location prefix used in error messages.

        Returns:
            The parsed step.

        Raises:
            WorkflowDefinitionError: If required fields are missing or malformed.
        """
        _expect(data, Mapping, where)
        step_id = str(_require(data, "id", where))
        where = f"step '{step_id}'"
        try:
            kind = StepKind(_require(data, "type", where))
        except ValueError as e:
            kinds = ", ".join(str(kind) for kind in StepKind)
            msg = f"{where}: unknown type '{data['type']}' (expected one of {kinds})"
            raise WorkflowDefinitionError(msg) from e

        fields: dict[str, Any] = {"id": step_id, "kind": kind, "description": str(data.get("description", ""))}

        if kind == StepKind.OPERATION:
            fields["action"] = str(_require(data, "action", where))
            fields["source"] = data.get("from")
            fields["command"] = data.get("command")
            if not fields["source"] and not fields["command"]:
                msg = f"{where}: an operation needs either 'command' or 'from'"
                raise WorkflowDefinitionError(msg)
            fields["parameters"] = dict(_expect(data.get("parameters", {}), Mapping, where))
            fields["confirm"] = bool(data.get("confirm", False))
            try:
                fields["on_error"] = ErrorPolicy(data.get("onError", ErrorPolicy.ABORT))
            except ValueError as e:
                msg = f"{where}: unknown onError policy '{data['onError']}'"
                raise WorkflowDefinitionError(msg) from e
            fields["retries"] = int(data.get("retries", DEFAULT_RETRIES))
            if fields["retries"] < 0:
                msg = f"{where}: retries must not be negative"
                raise WorkflowDefinitionError(msg)
            fields["options"] = tuple(
                CheckpointOption.from_dict(option, where) for option in _expect(data.get("options", []), list, where)
            )
        elif kind == StepKind.CHECKPOINT:
            options = _expect(_require(data, "options", where), list, where)
            fields["options"] = tuple(CheckpointOption.from_dict(option, where) for option in options)
            fields["prompt"] = str(data.get("prompt", ""))
        elif kind == StepKind.CONDITIONAL:
            fields["condition"] = str(_require(data, "condition", where))
            fields["then"] = str(_require(data, "then", where))
            fields["otherwise"] = data.get("else")
        else:
            fields["over"] = str(_require(data, "over", where))
            fields["alias"] = str(data.get("as", "item"))
            fields["concurrency"] = int(data.get("concurrency", 1))
            if fields["concurrency"] < 1:
                msg = f"{where}: concurrency must be at least 1"
                raise WorkflowDefinitionError(msg)
            nested = _expect(_require(data, "steps", where), list, where)
            fields["steps"] = tuple(cls.from_dict(item, f"{where} nested step") for item in nested)

        return cls(**fields)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "type": str(self.kind)}
        if self.description:
            data["description"] = self.description
        if self.kind == StepKind.OPERATION:
            if self.command is not None:
                data["command"] = self.command
            if self.source is not None:
                data["from"] = self.source
            data["action"] = self.action
            data["parameters"] = self.parameters
            data["confirm"] = self.confirm
            data["onError"] = str(self.on_error)
            data["retries"] = self.retries
            if self.options:
                data["options"] = [option.to_dict() for option in self.options]
        elif self.kind == StepKind.CHECKPOINT:
            data["prompt"] = self.prompt
            data["options"] = [option.to_dict() for option in self.options]
        elif self.kind == StepKind.CONDITIONAL:
            data["condition"] = self.condition
            data["then"] = self.then
            if self.otherwise is not None:
                data["else"] = self.otherwise
        else:
            data["over"] = self.over
            data["as"] = self.alias
            data["concurrency"] = self.concurrency
            data["steps"] = [step.to_dict() for step in self.steps]
        return data


@dataclass(frozen=True)
class WorkflowDefinition:
    """Declarative workflow structure.

    Attributes:
        name: Workflow name.
        steps: Ordered steps; execution follows this order unless a conditional
            or checkpoint option jumps elsewhere.
        version: Version string of the document.
        description: Human-readable description.
        parameters: Named parameters with their defaults, exposed as ``${params.<name>}``.

    Example:
        >>> definition = WorkflowDefinition.from_dict(
        ...     {
        ...         "name": "rename",
        ...         "steps": [
        ...             {"id": "search", "type": "operation", "command": "search", "action": "find"},
        ...             {
        ...                 "id": "review",
        ...                 "type": "checkpoint",
        ...                 "options": [{"id": "yes", "goto": "apply"}, {"id": "no", "abort": True}],
        ...             },
        ...             {"id": "apply", "type": "operation", "command": "edit", "action": "apply", "confirm": True},
        ...         ],
        ...     }
        ... )
        >>> definition.index_of("review")
        1
    """

    name: str
    steps: tuple[StepDefinition, ...]
    version: str = "1"
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> WorkflowDefinition:
        """Parse a workflow document.

        Args:
            data: The decoded document.

        Returns:
            The parsed definition.

        Raises:
            WorkflowDefinitionError: If the document is not a valid workflow.
        """
        _expect(data, Mapping, "workflow")
        name = str(_require(data, "name", "workflow"))
        steps = _expect(_require(data, "steps", f"workflow '{name}'"), list, f"workflow '{name}'")
        try:
            return cls(
                name=name,
                steps=tuple(
                    StepDefinition.from_dict(step, f"workflow '{name}' step {i}") for i, step in enumerate(steps)
                ),
                version=str(data.get("version", "1")),
                description=str(data.get("description", "")),
                parameters=dict(_expect(data.get("parameters", {}), Mapping, f"workflow '{name}' parameters")),
            )
        except (TypeError, ValueError) as e:
            msg = f"workflow '{name}': {e}"
            raise WorkflowDefinitionError(msg) from e

    @classmethod
    def from_json(cls, text: str) -> WorkflowDefinition:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            msg = f"Workflow document is not valid JSON: {e}"
            raise WorkflowDefinitionError(msg) from e
        return cls.from_dict(data)

    @classmethod
    def load(cls, path: str | Path) -> WorkflowDefinition:
        """Read a workflow document from a JSON file."""
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            msg = f"Cannot read workflow document '{path}': {e}"
            raise WorkflowDefinitionError(msg) from e
        return cls.from_json(text)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "parameters": self.parameters,
            "steps": [step.to_dict() for step in self.steps],
        }

    @property
    def step_ids(self) -> list[str]:
        return [step.id for step in self.steps]

    def index_of(self, step_id: str) -> int:
        """Return the position of a top-level step.

        Raises:
            KeyError: If no top-level step has that id.
        """
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        msg = f"Step '{step_id}' not found in workflow '{self.name}'"
        raise KeyError(msg)

    def get_step(self, step_id: str) -> StepDefinition:
        return self.steps[self.index_of(step_id)]

    def validate(self, registry: ActionRegistry | None = None) -> list[str]:
        """Validate the workflow structure.

        Args:
            registry: When given, operation actions are checked against it.

        Returns:
            List of validation error messages. Empty list if valid.
        """
        from litestar_continuations.engine.graph import WorkflowGraph

        return WorkflowGraph.from_definition(self).validate(registry)
