"""Checkpointed workflow execution engine.

This module interprets declarative workflow definitions against the
continuation resolver. Execution is synchronous within one call: the engine
runs steps until the workflow completes, fails, aborts or reaches a checkpoint
that needs a decision, persisting the manifest after every step. A paused
workflow is resumed later, possibly by another process, from its manifest.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from litestar_continuations.actions.resolver import CONFIRM_PARAMETER
from litestar_continuations.core.definition import CheckpointOption, StepDefinition, WorkflowDefinition
from litestar_continuations.core.interpolation import evaluate_condition, interpolate
from litestar_continuations.core.manifest import CompletedStep, Cursor, PendingCheckpoint, WorkflowManifest
from litestar_continuations.core.models import Failure, ResultEnvelope
from litestar_continuations.core.types import (
    ErrorPolicy,
    FailureCode,
    ResultStatus,
    StepKind,
    StepStatus,
    WorkflowStatus,
)
from litestar_continuations.exceptions import (
    CheckpointMismatchError,
    ExpressionError,
    InterpolationError,
    WorkflowAlreadyCompletedError,
    WorkflowValidationError,
)

if TYPE_CHECKING:
    from litestar_continuations.actions.resolver import ContinuationResolver
    from litestar_continuations.core.manifest import CheckpointDecision
    from litestar_continuations.store.base import CheckpointStore, ManifestFilter

__all__ = ["DEFAULT_MANIFEST_TTL", "DEFAULT_RETENTION", "WorkflowEngine"]

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_TTL = timedelta(days=7)
DEFAULT_RETENTION = timedelta(days=1)
DEFAULT_MAX_TRANSITIONS = 1000


class _StepFailed(Exception):
    """Raised inside a loop iteration when a nested step fails under the abort policy."""

    def __init__(self, step_id: str, message: str) -> None:
        self.step_id = step_id
        super().__init__(message)


def _local_failure(
    step: StepDefinition,
    code: FailureCode,
    message: str,
    recovery: dict[str, Any] | None = None,
) -> ResultEnvelope:
    return ResultEnvelope(
        status=ResultStatus.ERROR,
        command=step.command or "",
        action=step.action or "",
        diagnostics=[Failure(code=code, message=message, recovery=recovery)],
    )


def _succeeded(envelope: ResultEnvelope) -> bool:
    if envelope.status == ResultStatus.SUCCESS:
        return True
    return envelope.status == ResultStatus.WARNING and not envelope.has_code(FailureCode.RESULTS_STALE)


def _describe_failure(envelope: ResultEnvelope) -> str:
    failure = envelope.failure
    if failure is None:
        return f"{envelope.command}:{envelope.action} returned {envelope.status}"
    return f"{failure.code}: {failure.message}"


class WorkflowEngine:
    """Runs workflow definitions step by step with durable checkpoints.

    Attributes:
        resolver: Resolver used to run operation steps.
        store: Durable manifest storage.
        event_bus: Optional event bus implementing an async ``emit`` method.
        manifest_ttl: Lifetime of a non-terminal manifest.
        retention: How long terminal manifests are kept.

    Example:
        >>> engine = WorkflowEngine(resolver, FileCheckpointStore(".continuations/workflows"))
        >>> manifest = await engine.start(definition, {"term": "foo"})
        >>> if manifest.status == WorkflowStatus.AWAITING_CHECKPOINT:
        ...     manifest = await engine.resume(
        ...         CheckpointDecision(manifest.workflow_id, manifest.pending_checkpoint.step_id, "yes")
        ...     )
    """

    def __init__(
        self,
        resolver: ContinuationResolver,
        store: CheckpointStore,
        *,
        event_bus: Any | None = None,
        manifest_ttl: timedelta = DEFAULT_MANIFEST_TTL,
        retention: timedelta = DEFAULT_RETENTION,
        max_transitions: int = DEFAULT_MAX_TRANSITIONS,
        clock: Any | None = None,
    ) -> None:
        """Initialize the workflow engine.

        Args:
            resolver: The continuation resolver.
            store: The checkpoint store.
            event_bus: Optional event bus implementing emit method.
            manifest_ttl: Lifetime of running and paused manifests.
            retention: How long terminal manifests stay loadable.
            max_transitions: Upper bound on steps executed by one start/resume call.
            clock: Returns the current time; injectable for tests.
        """
        self.resolver = resolver
        self.store = store
        self.event_bus = event_bus
        self.manifest_ttl = manifest_ttl
        self.retention = retention
        self.max_transitions = max_transitions
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(
        self,
        definition: WorkflowDefinition | Mapping[str, Any] | str,
        *,
        strict: bool = False,
    ) -> list[str]:
        """Validate a definition against the engine's action registry.

        Args:
            definition: A definition, a decoded document or JSON text.
            strict: Raise instead of returning problems.

        Returns:
            List of validation error messages. Empty list if valid.

        Raises:
            WorkflowDefinitionError: If the document cannot be parsed at all.
            WorkflowValidationError: If ``strict`` is set and the definition has problems.
        """
        errors = self._coerce(definition).validate(self.resolver.registry)
        if errors and strict:
            raise WorkflowValidationError(errors)
        return errors

    async def start(
        self,
        definition: WorkflowDefinition | Mapping[str, Any] | str,
        parameters: Mapping[str, Any] | None = None,
        *,
        workflow_id: str | None = None,
    ) -> WorkflowManifest:
        """Start a workflow and run it until it finishes or pauses.

        A structurally invalid definition produces an ``aborted`` manifest
        carrying every problem found; no step runs.

        Args:
            definition: A definition, a decoded document or JSON text.
            parameters: Overrides for the definition's named parameters.
            workflow_id: Explicit id; a random one is generated otherwise.

        Returns:
            The manifest after the run.

        Raises:
            WorkflowDefinitionError: If the document cannot be parsed.
            StaleManifestError: If a manifest with the same id already exists.
        """
        definition = self._coerce(definition)
        now = self._clock()
        manifest = WorkflowManifest(
            workflow_id=workflow_id or uuid4().hex,
            name=definition.name,
            definition=definition.to_dict(),
            cursor=Cursor(index=0, step_id=definition.steps[0].id if definition.steps else None),
            created_at=now,
            expires_at=now + self.manifest_ttl,
            variable_bindings={"params": {**definition.parameters, **(parameters or {})}},
        )

        errors = definition.validate(self.resolver.registry)
        if errors:
            logger.warning("Workflow '%s' is structurally invalid: %s", definition.name, "; ".join(errors))
            manifest.diagnostics = errors
            self._terminate(manifest, WorkflowStatus.ABORTED, "Workflow definition is structurally invalid")
            await self._save(manifest)
            await self._emit_terminal(manifest)
            return manifest

        manifest.cursor.status = WorkflowStatus.RUNNING
        await self._save(manifest)
        logger.info(
            "Started workflow '%s' (%s)",
            manifest.name,
            manifest.workflow_id,
            extra={"workflow_id": manifest.workflow_id},
        )
        await self._emit("workflow.started", workflow_id=manifest.workflow_id, name=manifest.name)
        return await self._run(manifest, definition)

    async def resume(self, decision: CheckpointDecision) -> WorkflowManifest:
        """Apply a checkpoint decision and continue the workflow.

        Resuming twice with the same decision returns the manifest unchanged
        the second time; no step runs twice.

        Args:
            decision: The decision for the pending checkpoint.

        Returns:
            The manifest after the run.

        Raises:
            ManifestNotFoundError: If the workflow does not exist or has expired.
            WorkflowAlreadyCompletedError: If the workflow is terminal and the decision is new.
            CheckpointMismatchError: If the decision names another step or an option not offered.
            StaleManifestError: If a concurrent resume saved first.
        """
        manifest = await self.store.load(decision.workflow_id)
        if self._already_applied(manifest, decision):
            logger.info(
                "Decision '%s' for '%s' already applied to workflow %s",
                decision.chosen_option_id,
                decision.checkpoint_step_id,
                manifest.workflow_id,
            )
            return manifest
        if manifest.is_terminal:
            raise WorkflowAlreadyCompletedError(manifest.workflow_id, str(manifest.status))

        pending = manifest.pending_checkpoint
        if manifest.status != WorkflowStatus.AWAITING_CHECKPOINT or pending is None:
            raise CheckpointMismatchError(
                manifest.workflow_id,
                decision.checkpoint_step_id,
                decision.chosen_option_id,
                "the workflow is not awaiting a decision",
            )
        if pending.step_id != decision.checkpoint_step_id:
            raise CheckpointMismatchError(
                manifest.workflow_id,
                decision.checkpoint_step_id,
                decision.chosen_option_id,
                f"the workflow is waiting at '{pending.step_id}'",
            )
        if decision.chosen_option_id not in pending.option_ids:
            raise CheckpointMismatchError(
                manifest.workflow_id,
                decision.checkpoint_step_id,
                decision.chosen_option_id,
                f"expected one of {', '.join(pending.option_ids)}",
            )

        definition = WorkflowDefinition.from_dict(manifest.definition)
        index = definition.index_of(pending.step_id)
        step = definition.steps[index]
        options = step.options if step.kind == StepKind.CHECKPOINT else step.error_options()
        option = next(option for option in options if option.id == decision.chosen_option_id)

        manifest.completed_steps.append(
            CompletedStep(
                step_id=step.id,
                status=StepStatus.DECIDED,
                decision=option.id,
                decided_at=decision.timestamp,
            )
        )
        manifest.pending_checkpoint = None
        manifest.cursor.status = WorkflowStatus.RUNNING
        self._route(manifest, definition, index, step, option)

        # Persist the decision before anything else runs
        await self._save(manifest)
        logger.info(
            "Workflow %s resumed at '%s' with '%s'",
            manifest.workflow_id,
            step.id,
            option.id,
            extra={"workflow_id": manifest.workflow_id, "step_id": step.id},
        )
        await self._emit("workflow.resumed", workflow_id=manifest.workflow_id, step_id=step.id, option_id=option.id)

        if manifest.is_terminal:
            await self._emit_terminal(manifest)
            return manifest
        return await self._run(manifest, definition)

    async def abort(self, workflow_id: str, reason: str = "Aborted by request") -> WorkflowManifest:
        """Abort a running or paused workflow.

        Raises:
            ManifestNotFoundError: If the workflow does not exist or has expired.
            WorkflowAlreadyCompletedError: If the workflow is already terminal.
        """
        manifest = await self.store.load(workflow_id)
        if manifest.is_terminal:
            raise WorkflowAlreadyCompletedError(workflow_id, str(manifest.status))
        self._terminate(manifest, WorkflowStatus.ABORTED, reason)
        await self._save(manifest)
        await self._emit_terminal(manifest)
        return manifest

    async def get(self, workflow_id: str) -> WorkflowManifest:
        return await self.store.load(workflow_id)

    async def list_workflows(self, filter: ManifestFilter | None = None) -> list[WorkflowManifest]:
        return await self.store.list(filter)

    async def sweep_expired(self) -> list[str]:
        return await self.store.sweep_expired()

    def _coerce(self, definition: WorkflowDefinition | Mapping[str, Any] | str) -> WorkflowDefinition:
        if isinstance(definition, WorkflowDefinition):
            return definition
        if isinstance(definition, str):
            return WorkflowDefinition.from_json(definition)
        return WorkflowDefinition.from_dict(definition)

    def _already_applied(self, manifest: WorkflowManifest, decision: CheckpointDecision) -> bool:
        for record in manifest.completed_steps:
            if (
                record.step_id == decision.checkpoint_step_id
                and record.decision == decision.chosen_option_id
                and record.decided_at == decision.timestamp
            ):
                return True
        pending = manifest.pending_checkpoint
        if pending is not None and pending.step_id == decision.checkpoint_step_id:
            return False
        latest = manifest.latest_decision(decision.checkpoint_step_id)
        return latest is not None and latest.decision == decision.chosen_option_id

    async def _run(self, manifest: WorkflowManifest, definition: WorkflowDefinition) -> WorkflowManifest:
        """Main execution loop; returns once the workflow pauses or terminates."""
        transitions = 0
        while manifest.status == WorkflowStatus.RUNNING:
            index = manifest.cursor.index
            if index >= len(definition.steps):
                self._terminate(manifest, WorkflowStatus.COMPLETED)
                await self._save(manifest)
                break

            transitions += 1
            if transitions > self.max_transitions:
                self._terminate(
                    manifest,
                    WorkflowStatus.FAILED,
                    f"Exceeded {self.max_transitions} step transitions without pausing",
                )
                await self._save(manifest)
                break

            step = definition.steps[index]
            logger.debug("Workflow %s running step '%s' (%s)", manifest.workflow_id, step.id, step.kind)
            if step.kind == StepKind.OPERATION:
                await self._run_operation(manifest, definition, index, step)
            elif step.kind == StepKind.CONDITIONAL:
                await self._run_conditional(manifest, definition, index, step)
            elif step.kind == StepKind.LOOP:
                await self._run_loop(manifest, definition, index, step)
            else:
                await self._enter_checkpoint(manifest, definition, index, step, step.options, step.prompt)

        if manifest.is_terminal:
            await self._emit_terminal(manifest)
        return manifest

    async def _run_operation(
        self,
        manifest: WorkflowManifest,
        definition: WorkflowDefinition,
        index: int,
        step: StepDefinition,
    ) -> None:
        started = time.perf_counter()
        siblings = {candidate.id: candidate for candidate in definition.steps}
        envelope, attempts = await self._execute_operation(
            step,
            manifest.variable_bindings,
            manifest.continuations,
            siblings,
        )
        duration_ms = (time.perf_counter() - started) * 1000

        if _succeeded(envelope):
            self._bind(manifest, step.id, envelope.payload)
            manifest.continuations[step.id] = dict(envelope.continuations)
            manifest.completed_steps.append(
                CompletedStep(step_id=step.id, status=StepStatus.SUCCEEDED, duration_ms=duration_ms, attempts=attempts)
            )
            self._move(manifest, definition, index + 1)
            await self._save(manifest)
            await self._emit("step.completed", workflow_id=manifest.workflow_id, step_id=step.id)
            return

        message = _describe_failure(envelope)
        manifest.completed_steps.append(
            CompletedStep(
                step_id=step.id,
                status=StepStatus.FAILED,
                duration_ms=duration_ms,
                error=message,
                attempts=attempts,
            )
        )
        await self._emit("step.failed", workflow_id=manifest.workflow_id, step_id=step.id, error=message)

        if step.on_error == ErrorPolicy.CONTINUE:
            logger.warning("Step '%s' of workflow %s failed, continuing: %s", step.id, manifest.workflow_id, message)
            self._move(manifest, definition, index + 1)
            await self._save(manifest)
        elif step.on_error == ErrorPolicy.CHECKPOINT:
            prompt = f"Step '{step.id}' failed ({message}). Choose how to continue."
            await self._enter_checkpoint(manifest, definition, index, step, step.error_options(), prompt)
        else:
            logger.warning(
                "Step '%s' of workflow %s failed: %s",
                step.id,
                manifest.workflow_id,
                message,
                extra={"workflow_id": manifest.workflow_id, "step_id": step.id},
            )
            manifest.diagnostics.append(message)
            self._terminate(manifest, WorkflowStatus.FAILED, f"Step '{step.id}' failed: {message}")
            await self._save(manifest)

    async def _execute_operation(
        self,
        step: StepDefinition,
        scope: Mapping[str, Any],
        continuations: dict[str, dict[str, str]],
        siblings: Mapping[str, StepDefinition],
    ) -> tuple[ResultEnvelope, int]:
        """Run an operation step, retrying handler errors under the ``retry`` policy."""
        allowed = 1 + step.retries if step.on_error == ErrorPolicy.RETRY else 1
        attempt = 0
        while True:
            attempt += 1
            envelope = await self._call(step, scope, continuations, siblings)
            failure = envelope.failure
            if _succeeded(envelope) or attempt >= allowed or failure is None or not failure.retryable:
                return envelope, attempt
            logger.info("Retrying step '%s' (attempt %d of %d): %s", step.id, attempt + 1, allowed, failure.message)

    async def _call(
        self,
        step: StepDefinition,
        scope: Mapping[str, Any],
        continuations: dict[str, dict[str, str]],
        siblings: Mapping[str, StepDefinition],
    ) -> ResultEnvelope:
        try:
            parameters = interpolate(step.parameters, scope)
        except InterpolationError as e:
            return _local_failure(step, FailureCode.INVALID_PARAMETERS, str(e))
        if step.confirm:
            parameters[CONFIRM_PARAMETER] = True

        if step.source is None:
            assert step.command is not None
            return await self.resolver.invoke(step.command, step.action or "", parameters)

        action_id = step.action or ""
        offered = continuations.get(step.source, {})
        token = offered.get(action_id)
        if token is None:
            return _local_failure(
                step,
                FailureCode.ACTION_NOT_PERMITTED,
                f"Step '{step.source}' offered no '{action_id}' continuation",
                recovery={"allowed_actions": list(offered)},
            )

        envelope = await self.resolver.resolve(token, action_id, parameters)
        if envelope.has_code(FailureCode.RESULTS_STALE) and action_id in envelope.continuations:
            logger.info("Continuation for step '%s' was stale; retrying with the refreshed token", step.id)
            fresh = envelope.continuations[action_id]
            continuations[step.source] = {**offered, action_id: fresh}
            envelope = await self.resolver.resolve(fresh, action_id, parameters)
        elif envelope.has_code(FailureCode.EXPIRED):
            logger.info("Continuation for step '%s' expired; re-issuing from '%s'", step.id, step.source)
            source = siblings.get(step.source)
            extra = {CONFIRM_PARAMETER: True} if source is not None and source.confirm else None
            reissued = await self.resolver.reissue(token, extra)
            if not reissued.ok:
                return reissued
            continuations[step.source] = dict(reissued.continuations)
            fresh = reissued.continuations.get(action_id)
            if fresh is None:
                return _local_failure(
                    step,
                    FailureCode.ACTION_NOT_PERMITTED,
                    f"Re-issued result of '{step.source}' no longer offers '{action_id}'",
                    recovery={"allowed_actions": list(reissued.continuations)},
                )
            envelope = await self.resolver.resolve(fresh, action_id, parameters)
        return envelope

    async def _run_conditional(
        self,
        manifest: WorkflowManifest,
        definition: WorkflowDefinition,
        index: int,
        step: StepDefinition,
    ) -> None:
        started = time.perf_counter()
        try:
            outcome = evaluate_condition(step.condition or "", manifest.variable_bindings)
        except (ExpressionError, InterpolationError) as e:
            message = str(e)
            manifest.completed_steps.append(CompletedStep(step_id=step.id, status=StepStatus.FAILED, error=message))
            self._terminate(manifest, WorkflowStatus.FAILED, f"Step '{step.id}' failed: {message}")
            await self._save(manifest)
            await self._emit("step.failed", workflow_id=manifest.workflow_id, step_id=step.id, error=message)
            return

        target = step.then if outcome else step.otherwise
        target_index = definition.index_of(target) if target is not None else index + 1
        manifest.completed_steps.append(
            CompletedStep(
                step_id=step.id,
                status=StepStatus.SUCCEEDED,
                duration_ms=(time.perf_counter() - started) * 1000,
                branch=target or (definition.steps[index + 1].id if index + 1 < len(definition.steps) else None),
            )
        )
        self._move(manifest, definition, target_index)
        await self._save(manifest)
        await self._emit("step.completed", workflow_id=manifest.workflow_id, step_id=step.id)

    async def _run_loop(
        self,
        manifest: WorkflowManifest,
        definition: WorkflowDefinition,
        index: int,
        step: StepDefinition,
    ) -> None:
        started = time.perf_counter()
        try:
            items = interpolate(step.over, manifest.variable_bindings)
        except InterpolationError as e:
            items, error = None, str(e)
        else:
            error = None if isinstance(items, (list, tuple)) else f"'{step.over}' is not a list"

        results: list[Any] = []
        problems: list[str] = []
        if error is None:
            semaphore = asyncio.Semaphore(step.concurrency)
            guarded_lock = asyncio.Lock()
            siblings = {candidate.id: candidate for candidate in (*definition.steps, *step.steps)}

            async def run_item(position: int, item: Any) -> dict[str, Any]:
                async with semaphore:
                    return await self._run_iteration(manifest, step, position, item, guarded_lock, siblings, problems)

            outcomes = await asyncio.gather(
                *(run_item(position, item) for position, item in enumerate(items)),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, _StepFailed):
                        raise outcome
                    error = error or f"Nested step '{outcome.step_id}' failed: {outcome}"
                else:
                    results.append(outcome)

        duration_ms = (time.perf_counter() - started) * 1000
        if error is not None:
            manifest.completed_steps.append(
                CompletedStep(step_id=step.id, status=StepStatus.FAILED, duration_ms=duration_ms, error=error)
            )
            manifest.diagnostics.extend(problems)
            self._terminate(manifest, WorkflowStatus.FAILED, f"Step '{step.id}' failed: {error}")
            await self._save(manifest)
            await self._emit("step.failed", workflow_id=manifest.workflow_id, step_id=step.id, error=error)
            return

        self._bind(manifest, step.id, results)
        manifest.completed_steps.append(
            CompletedStep(
                step_id=step.id,
                status=StepStatus.SUCCEEDED,
                duration_ms=duration_ms,
                error="; ".join(problems) or None,
                attempts=len(results),
            )
        )
        self._move(manifest, definition, index + 1)
        await self._save(manifest)
        await self._emit("step.completed", workflow_id=manifest.workflow_id, step_id=step.id)

    async def _run_iteration(
        self,
        manifest: WorkflowManifest,
        loop: StepDefinition,
        position: int,
        item: Any,
        guarded_lock: asyncio.Lock,
        siblings: Mapping[str, StepDefinition],
        problems: list[str],
    ) -> dict[str, Any]:
        scope: dict[str, Any] = {**manifest.variable_bindings, "item": item, loop.alias: item, "index": position}
        continuations = {key: dict(value) for key, value in manifest.continuations.items()}
        results: dict[str, Any] = {}

        for nested in loop.steps:
            if nested.confirm:
                async with guarded_lock:
                    envelope, _ = await self._execute_operation(nested, scope, continuations, siblings)
            else:
                envelope, _ = await self._execute_operation(nested, scope, continuations, siblings)

            if _succeeded(envelope):
                results[nested.id] = envelope.payload
                scope[nested.id] = envelope.payload
                continuations[nested.id] = dict(envelope.continuations)
                continue

            message = _describe_failure(envelope)
            if nested.on_error != ErrorPolicy.CONTINUE:
                raise _StepFailed(nested.id, f"item {position}: {message}")
            logger.warning("Nested step '%s' failed for item %d, continuing: %s", nested.id, position, message)
            problems.append(f"{nested.id}[{position}]: {message}")
            results[nested.id] = None
            scope[nested.id] = None
        return results

    async def _enter_checkpoint(
        self,
        manifest: WorkflowManifest,
        definition: WorkflowDefinition,
        index: int,
        step: StepDefinition,
        options: tuple[CheckpointOption, ...],
        prompt: str,
    ) -> None:
        for option in options:
            if option.auto_approve is None:
                continue
            try:
                approved = evaluate_condition(option.auto_approve, manifest.variable_bindings)
            except (ExpressionError, InterpolationError) as e:
                logger.warning("autoApprove of option '%s' at '%s' not evaluated: %s", option.id, step.id, e)
                continue
            if approved:
                logger.info("Checkpoint '%s' auto-approved with '%s'", step.id, option.id)
                manifest.completed_steps.append(
                    CompletedStep(
                        step_id=step.id,
                        status=StepStatus.DECIDED,
                        decision=option.id,
                        decided_at=self._clock(),
                        auto=True,
                    )
                )
                self._route(manifest, definition, index, step, option)
                await self._save(manifest)
                return

        manifest.pending_checkpoint = PendingCheckpoint(
            step_id=step.id,
            prompt=prompt,
            options=[{"id": option.id, "label": option.label or option.id} for option in options],
            entered_at=self._clock(),
        )
        manifest.cursor.status = WorkflowStatus.AWAITING_CHECKPOINT
        manifest.cursor.step_id = step.id
        await self._save(manifest)
        logger.info(
            "Workflow %s awaiting a decision at '%s'",
            manifest.workflow_id,
            step.id,
            extra={"workflow_id": manifest.workflow_id, "step_id": step.id},
        )
        await self._emit(
            "workflow.awaiting",
            workflow_id=manifest.workflow_id,
            step_id=step.id,
            options=manifest.pending_checkpoint.option_ids,
        )

    def _route(
        self,
        manifest: WorkflowManifest,
        definition: WorkflowDefinition,
        index: int,
        step: StepDefinition,
        option: CheckpointOption,
    ) -> None:
        if option.abort:
            self._terminate(manifest, WorkflowStatus.ABORTED, f"Aborted at '{step.id}' with option '{option.id}'")
        elif option.goto is not None:
            self._move(manifest, definition, definition.index_of(option.goto))
        else:
            self._move(manifest, definition, index + 1)

    def _bind(self, manifest: WorkflowManifest, step_id: str, value: Any) -> None:
        if step_id in manifest.variable_bindings:
            manifest.superseded_bindings.setdefault(step_id, []).append(manifest.variable_bindings[step_id])
        manifest.variable_bindings[step_id] = value

    def _move(self, manifest: WorkflowManifest, definition: WorkflowDefinition, index: int) -> None:
        manifest.cursor.index = index
        manifest.cursor.step_id = definition.steps[index].id if index < len(definition.steps) else None

    def _terminate(self, manifest: WorkflowManifest, status: WorkflowStatus, error: str | None = None) -> None:
        manifest.cursor.status = status
        manifest.pending_checkpoint = None
        manifest.error = error
        manifest.expires_at = self._clock() + self.retention
        logger.info(
            "Workflow %s %s%s",
            manifest.workflow_id,
            status,
            f": {error}" if error else "",
            extra={"workflow_id": manifest.workflow_id},
        )

    async def _save(self, manifest: WorkflowManifest) -> None:
        manifest.revision += 1
        await self.store.save(manifest)

    async def _emit(self, event_type: str, **kwargs: Any) -> None:
        if self.event_bus:
            await self.event_bus.emit(event_type, **kwargs)

    async def _emit_terminal(self, manifest: WorkflowManifest) -> None:
        await self._emit(
            f"workflow.{manifest.status}",
            workflow_id=manifest.workflow_id,
            status=manifest.status,
            error=manifest.error,
        )
