"""Workflow graph construction and structural validation.

This module builds the directed graph of automatic transitions between
top-level steps (sequential flow and conditional branches) and validates a
definition before any of its steps run.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from litestar_continuations.core.interpolation import compile_condition, reference_roots
from litestar_continuations.core.types import ErrorPolicy, StepKind
from litestar_continuations.exceptions import ExpressionError

if TYPE_CHECKING:
    from litestar_continuations.actions.registry import ActionRegistry
    from litestar_continuations.core.definition import StepDefinition, WorkflowDefinition

__all__ = ["RESERVED_NAMES", "WorkflowGraph"]

RESERVED_NAMES = frozenset({"params", "item", "index"})

_STEP_ID = re.compile(r"[A-Za-z_][\w-]*")


class WorkflowGraph:
    """Graph representation of a workflow for validation.

    Nodes are top-level step ids. Edges are the transitions the engine takes
    on its own: from each step to the next one in order, and from a
    conditional to its ``then``/``else`` targets. Checkpoint routes are
    explicit decisions and are not edges, so routing back through a
    checkpoint is a deliberate loop rather than a cycle.

    Attributes:
        definition: The workflow definition this graph represents.
        _adjacency: Adjacency list mapping step ids to successor step ids.
    """

    def __init__(self, definition: WorkflowDefinition) -> None:
        """Initialize a workflow graph from a definition.

        Args:
            definition: The workflow definition to represent as a graph.
        """
        self.definition = definition
        self._adjacency: dict[str, list[str]] = {}
        self._build_adjacency()

    def _build_adjacency(self) -> None:
        """Build adjacency lists from step order and conditional branches."""
        steps = self.definition.steps
        ids = {step.id for step in steps}
        for index, step in enumerate(steps):
            following = steps[index + 1].id if index + 1 < len(steps) else None
            targets: list[str | None]
            if step.kind == StepKind.CONDITIONAL:
                targets = [step.then, step.otherwise if step.otherwise is not None else following]
            else:
                targets = [following]
            edges = self._adjacency.setdefault(step.id, [])
            edges.extend(target for target in targets if target is not None and target in ids)

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> WorkflowGraph:
        """Create a workflow graph from a definition.

        Args:
            definition: The workflow definition.

        Returns:
            A WorkflowGraph instance.
        """
        return cls(definition)

    def get_next_steps(self, step_id: str) -> list[str]:
        """Get the steps reachable from a step without a decision."""
        return list(self._adjacency.get(step_id, []))

    def find_cycle(self) -> list[str] | None:
        """Find a cycle among automatic transitions.

        Returns:
            The step ids forming the first cycle found (first id repeated at the end), or None.
        """
        visiting: list[str] = []
        done: set[str] = set()

        def visit(step_id: str) -> list[str] | None:
            if step_id in visiting:
                return [*visiting[visiting.index(step_id) :], step_id]
            if step_id in done:
                return None
            visiting.append(step_id)
            for target in self._adjacency.get(step_id, []):
                cycle = visit(target)
                if cycle is not None:
                    return cycle
            visiting.pop()
            done.add(step_id)
            return None

        for step in self.definition.steps:
            cycle = visit(step.id)
            if cycle is not None:
                return cycle
        return None

    def validate(self, registry: ActionRegistry | None = None) -> list[str]:
        """Validate the workflow structure.

        Checks:
        - Duplicate, reserved or malformed step ids
        - References to unknown steps (``from``, ``then``, ``else``, ``goto``, ``${...}``)
        - Unknown actions and guarded actions without ``confirm`` (when a registry is given)
        - Loop bodies made of anything but operations, or using the ``checkpoint`` policy
        - Invalid condition expressions
        - Cycles among automatic transitions

        Args:
            registry: When given, operation actions are checked against it.

        Returns:
            List of validation error messages. Empty list if valid.
        """
        errors: list[str] = []
        steps = self.definition.steps
        if not steps:
            return ["Workflow has no steps"]

        all_ids: list[str] = []
        for step in steps:
            all_ids.append(step.id)
            all_ids.extend(nested.id for nested in step.steps)
        seen: set[str] = set()
        for step_id in all_ids:
            if step_id in seen:
                errors.append(f"Duplicate step id '{step_id}'")
            seen.add(step_id)
            if step_id in RESERVED_NAMES:
                errors.append(f"Step id '{step_id}' is reserved")
            elif not _STEP_ID.fullmatch(step_id):
                errors.append(f"Step id '{step_id}' must start with a letter or underscore and contain no dots")

        top_level = {step.id: index for index, step in enumerate(steps)}
        known_roots = set(all_ids) | {"params"}

        for index, step in enumerate(steps):
            if step.kind == StepKind.OPERATION:
                errors.extend(self._check_operation(step, index, top_level, known_roots, registry))
            elif step.kind == StepKind.CONDITIONAL:
                for label, target in (("then", step.then), ("else", step.otherwise)):
                    if target is not None and target not in top_level:
                        errors.append(f"Step '{step.id}': {label} target '{target}' does not exist")
                errors.extend(self._check_expression(step.id, "condition", step.condition, known_roots))
            elif step.kind == StepKind.CHECKPOINT:
                errors.extend(self._check_options(step, top_level, known_roots))
            else:
                errors.extend(self._check_loop(step, top_level, known_roots, registry))

        cycle = self.find_cycle()
        if cycle is not None:
            errors.append(f"Cycle among automatic transitions: {' -> '.join(cycle)}")

        return errors

    def _command_of(self, step: StepDefinition, siblings: dict[str, StepDefinition]) -> str | None:
        visited = {step.id}
        while step.command is None and step.source is not None and step.source in siblings:
            step = siblings[step.source]
            if step.id in visited:
                return None
            visited.add(step.id)
        return step.command

    def _check_operation(
        self,
        step: StepDefinition,
        index: int,
        earlier: dict[str, int],
        known_roots: set[str],
        registry: ActionRegistry | None,
        siblings: dict[str, StepDefinition] | None = None,
    ) -> list[str]:
        errors: list[str] = []
        if siblings is None:
            siblings = {candidate.id: candidate for candidate in self.definition.steps}
        if step.source is not None:
            source_index = earlier.get(step.source)
            if source_index is None or source_index >= index:
                errors.append(f"Step '{step.id}': 'from' must name an earlier operation step, got '{step.source}'")
            elif siblings[step.source].kind != StepKind.OPERATION:
                errors.append(f"Step '{step.id}': 'from' step '{step.source}' is not an operation")

        errors.extend(
            f"Step '{step.id}': unknown reference '${{{root}}}'"
            for root in sorted(reference_roots(step.parameters) - known_roots)
        )
        errors.extend(self._check_options(step, self._top_level(), known_roots))

        command = self._command_of(step, siblings)
        if registry is not None and command is not None and step.action is not None:
            if registry.has(command, step.action):
                if registry.describe(command, step.action).guarded and not step.confirm:
                    errors.append(
                        f"Step '{step.id}': action '{command}:{step.action}' is guarded and needs 'confirm': true"
                    )
            elif registry.has_command(command):
                errors.append(f"Step '{step.id}': unknown action '{command}:{step.action}'")
            else:
                errors.append(f"Step '{step.id}': unknown command '{command}'")
        return errors

    def _top_level(self) -> dict[str, int]:
        return {step.id: index for index, step in enumerate(self.definition.steps)}

    def _check_options(self, step: StepDefinition, top_level: dict[str, int], known_roots: set[str]) -> list[str]:
        errors: list[str] = []
        option_ids = [option.id for option in step.options]
        if step.kind == StepKind.CHECKPOINT and not option_ids:
            errors.append(f"Step '{step.id}': a checkpoint needs at least one option")
        for option_id in {option_id for option_id in option_ids if option_ids.count(option_id) > 1}:
            errors.append(f"Step '{step.id}': duplicate option id '{option_id}'")
        for option in step.options:
            if option.goto is not None and option.goto not in top_level:
                errors.append(f"Step '{step.id}': option '{option.id}' routes to unknown step '{option.goto}'")
            errors.extend(
                self._check_expression(step.id, f"option '{option.id}' autoApprove", option.auto_approve, known_roots)
            )
        return errors

    def _check_expression(self, step_id: str, label: str, expression: str | None, known_roots: set[str]) -> list[str]:
        if expression is None:
            return []
        try:
            compile_condition(expression)
        except ExpressionError as e:
            return [f"Step '{step_id}': {label}: {e}"]
        return [
            f"Step '{step_id}': {label} has unknown reference '${{{root}}}'"
            for root in sorted(reference_roots(expression) - known_roots)
        ]

    def _check_loop(
        self,
        step: StepDefinition,
        top_level: dict[str, int],
        known_roots: set[str],
        registry: ActionRegistry | None,
    ) -> list[str]:
        errors: list[str] = []
        over_roots = reference_roots(step.over)
        if not over_roots:
            errors.append(f"Step '{step.id}': 'over' must reference a collection, e.g. '${{search.matches}}'")
        errors.extend(
            f"Step '{step.id}': unknown reference '${{{root}}}'" for root in sorted(over_roots - known_roots)
        )
        if step.alias in RESERVED_NAMES - {"item"} or step.alias in top_level:
            errors.append(f"Step '{step.id}': loop variable '{step.alias}' shadows a reserved name or step id")
        if not step.steps:
            errors.append(f"Step '{step.id}': a loop needs at least one nested step")

        nested_index = {nested.id: position for position, nested in enumerate(step.steps)}
        nested_by_id = {nested.id: nested for nested in step.steps}
        siblings = {**{candidate.id: candidate for candidate in self.definition.steps}, **nested_by_id}
        scope_roots = known_roots | {step.alias, "item", "index"}
        for position, nested in enumerate(step.steps):
            if nested.kind != StepKind.OPERATION:
                errors.append(f"Step '{nested.id}': loop bodies may only contain operations, got {nested.kind}")
                continue
            if nested.on_error == ErrorPolicy.CHECKPOINT:
                errors.append(f"Step '{nested.id}': the checkpoint error policy is not allowed inside a loop")
            if nested.options:
                errors.append(f"Step '{nested.id}': options are not allowed inside a loop")
            earlier = dict(nested_index)
            if nested.source is not None and top_level.get(nested.source, len(top_level)) < top_level[step.id]:
                # outer steps before the loop always ran first
                earlier[nested.source] = -1
            errors.extend(self._check_operation(nested, position, earlier, scope_roots, registry, siblings))
        return errors
