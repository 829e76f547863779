"""REST API controllers for continuations and workflows.

This module provides three controller classes:
- ActionController: List registered actions and invoke them directly
- ContinuationController: Resolve and re-issue continuation tokens
- WorkflowController: Start, inspect, resume and abort checkpointed workflows
"""

from __future__ import annotations

from typing import Any, ClassVar

from litestar import Controller, Response, get, post
from litestar.exceptions import ValidationException
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK

from litestar_continuations.actions.registry import ActionRegistry  # noqa: TC001 - needed for DI
from litestar_continuations.actions.resolver import (  # noqa: TC001 - needed for DI
    CONFIRM_PARAMETER,
    ContinuationResolver,
)
from litestar_continuations.core.definition import WorkflowDefinition
from litestar_continuations.core.manifest import CheckpointDecision
from litestar_continuations.engine.workflow import WorkflowEngine  # noqa: TC001 - needed for DI
from litestar_continuations.store.base import ManifestFilter
from litestar_continuations.web.dto import (
    AbortWorkflowDTO,
    CheckpointDecisionDTO,
    InvokeActionDTO,
    ReissueTokenDTO,
    ResolveTokenDTO,
    StartWorkflowDTO,
    ValidateWorkflowDTO,
)
from litestar_continuations.web.exceptions import envelope_response

__all__ = [
    "ActionController",
    "ContinuationController",
    "WorkflowController",
]


def _with_confirmation(parameters: dict[str, Any] | None, confirm: bool) -> dict[str, Any]:
    merged = dict(parameters or {})
    if confirm:
        merged[CONFIRM_PARAMETER] = True
    return merged


class ActionController(Controller):
    """API controller for registered actions.

    Tags: Actions
    """

    path = "/actions"
    tags: ClassVar[list[str]] = ["Actions"]

    @get("/")
    async def list_actions(
        self,
        action_registry: ActionRegistry,
        command: str | None = Parameter(
            default=None,
            description="Only list actions of this command",
        ),
    ) -> list[dict[str, Any]]:
        """List registered actions with their parameter schemas.

        Args:
            action_registry: Injected action registry.
            command: Optional command filter.

        Returns:
            Action descriptors, sorted by command and action.
        """
        return [descriptor.to_dict() for descriptor in action_registry.list_actions(command)]

    @post("/{command:str}/{action:str}")
    async def invoke_action(
        self,
        command: str,
        action: str,
        data: InvokeActionDTO,
        continuation_resolver: ContinuationResolver,
    ) -> Response[dict[str, Any]]:
        """Invoke an action directly and receive its first continuation tokens.

        Args:
            command: Command name.
            action: Action name.
            data: Parameters and confirmation.
            continuation_resolver: Injected resolver.

        Returns:
            The result envelope; the status code reflects its failure category.
        """
        envelope = await continuation_resolver.invoke(
            command,
            action,
            _with_confirmation(data.parameters, data.confirm),
        )
        return envelope_response(envelope)


class ContinuationController(Controller):
    """API controller for continuation tokens.

    Tags: Continuations
    """

    path = "/"
    tags: ClassVar[list[str]] = ["Continuations"]

    @post("/resolve")
    async def resolve_token(
        self,
        data: ResolveTokenDTO,
        continuation_resolver: ContinuationResolver,
    ) -> Response[dict[str, Any]]:
        """Continue from a token with one of the actions it permits.

        Args:
            data: Token, chosen action and extra parameters.
            continuation_resolver: Injected resolver.

        Returns:
            The result envelope; a stale context returns 200 with a fresh token.
        """
        envelope = await continuation_resolver.resolve(
            data.token,
            data.action,
            _with_confirmation(data.parameters, data.confirm),
        )
        return envelope_response(envelope)

    @post("/reissue")
    async def reissue_token(
        self,
        data: ReissueTokenDTO,
        continuation_resolver: ContinuationResolver,
    ) -> Response[dict[str, Any]]:
        """Re-run the producing action of an expired or stale token.

        Args:
            data: The token and extra parameters.
            continuation_resolver: Injected resolver.

        Returns:
            The result envelope with freshly minted tokens.
        """
        envelope = await continuation_resolver.reissue(
            data.token,
            _with_confirmation(data.parameters, data.confirm),
        )
        return envelope_response(envelope)


class WorkflowController(Controller):
    """API controller for checkpointed workflows.

    Tags: Workflows
    """

    path = "/workflows"
    tags: ClassVar[list[str]] = ["Workflows"]

    @post("/")
    async def start_workflow(
        self,
        data: StartWorkflowDTO,
        workflow_engine: WorkflowEngine,
    ) -> dict[str, Any]:
        """Start a workflow and run it until it finishes or pauses.

        Args:
            data: Definition, parameter overrides and optional id.
            workflow_engine: Injected workflow engine.

        Returns:
            The manifest after the run. A structurally invalid definition is
            returned as an aborted manifest with diagnostics.
        """
        manifest = await workflow_engine.start(
            data.definition,
            data.parameters,
            workflow_id=data.workflow_id,
        )
        return manifest.to_dict()

    @post("/validate", status_code=HTTP_200_OK)
    async def validate_workflow(
        self,
        data: ValidateWorkflowDTO,
        workflow_engine: WorkflowEngine,
    ) -> dict[str, Any]:
        """Check a definition against the registered actions without running it.

        Args:
            data: The definition document.
            workflow_engine: Injected workflow engine.

        Returns:
            The definition name and its step ids.

        Raises:
            WorkflowDefinitionError: If the document cannot be parsed (422).
            WorkflowValidationError: If the definition has structural problems (422).
        """
        definition = WorkflowDefinition.from_dict(data.definition)
        workflow_engine.validate(definition, strict=True)
        return {"name": definition.name, "valid": True, "steps": definition.step_ids}

    @get("/")
    async def list_workflows(
        self,
        workflow_engine: WorkflowEngine,
        status: list[str] | None = Parameter(
            default=None,
            description="Filter by workflow status (repeatable)",
        ),
        name: str | None = Parameter(
            default=None,
            description="Filter by workflow name",
        ),
    ) -> list[dict[str, Any]]:
        """List workflows that have not expired.

        Args:
            workflow_engine: Injected workflow engine.
            status: Optional status filter.
            name: Optional workflow name filter.

        Returns:
            Manifest summaries, oldest first.

        Raises:
            ValidationException: If a status filter value is unknown.
        """
        try:
            manifest_filter = ManifestFilter.create(status or (), name=name)
        except ValueError as e:
            raise ValidationException(detail=str(e)) from e
        return [manifest.summary() for manifest in await workflow_engine.list_workflows(manifest_filter)]

    @get("/{workflow_id:str}")
    async def get_workflow(
        self,
        workflow_id: str,
        workflow_engine: WorkflowEngine,
    ) -> dict[str, Any]:
        """Get the full manifest of a workflow.

        Args:
            workflow_id: The workflow id.
            workflow_engine: Injected workflow engine.

        Returns:
            The manifest.
        """
        manifest = await workflow_engine.get(workflow_id)
        return manifest.to_dict()

    @post("/{workflow_id:str}/decisions", status_code=HTTP_200_OK)
    async def decide(
        self,
        workflow_id: str,
        data: CheckpointDecisionDTO,
        workflow_engine: WorkflowEngine,
    ) -> dict[str, Any]:
        """Answer the pending checkpoint and continue the workflow.

        Args:
            workflow_id: The workflow id.
            data: The checkpoint step and chosen option.
            workflow_engine: Injected workflow engine.

        Returns:
            The manifest after the run.
        """
        decision = (
            CheckpointDecision(workflow_id, data.checkpoint_step_id, data.option_id, data.timestamp)
            if data.timestamp is not None
            else CheckpointDecision(workflow_id, data.checkpoint_step_id, data.option_id)
        )
        manifest = await workflow_engine.resume(decision)
        return manifest.to_dict()

    @post("/{workflow_id:str}/abort", status_code=HTTP_200_OK)
    async def abort_workflow(
        self,
        workflow_id: str,
        data: AbortWorkflowDTO,
        workflow_engine: WorkflowEngine,
    ) -> dict[str, Any]:
        """Abort a running or paused workflow.

        Args:
            workflow_id: The workflow id.
            data: The abort reason.
            workflow_engine: Injected workflow engine.

        Returns:
            The aborted manifest.
        """
        manifest = await workflow_engine.abort(workflow_id, data.reason)
        return manifest.to_dict()
