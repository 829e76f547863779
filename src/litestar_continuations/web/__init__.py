"""Web API for litestar-continuations.

The REST API is registered automatically when using ContinuationsPlugin with
``enable_api=True`` (the default).

Example:
    Mount the API under a custom prefix with a guard::

        from litestar import Litestar
        from litestar_continuations import ContinuationsPlugin, ContinuationsPluginConfig

        config = ContinuationsPluginConfig(
            registry=registry,
            api_path_prefix="/api/v1/continuations",
            api_guards=[require_auth_guard],
        )

        app = Litestar(plugins=[ContinuationsPlugin(config=config)])
"""

from __future__ import annotations

from litestar_continuations.web.controllers import (
    ActionController,
    ContinuationController,
    WorkflowController,
)
from litestar_continuations.web.dto import (
    AbortWorkflowDTO,
    CheckpointDecisionDTO,
    InvokeActionDTO,
    ReissueTokenDTO,
    ResolveTokenDTO,
    StartWorkflowDTO,
)
from litestar_continuations.web.exceptions import (
    envelope_response,
    envelope_status_code,
    workflow_error_handler,
)

__all__ = [
    "AbortWorkflowDTO",
    "ActionController",
    "CheckpointDecisionDTO",
    "ContinuationController",
    "InvokeActionDTO",
    "ReissueTokenDTO",
    "ResolveTokenDTO",
    "StartWorkflowDTO",
    "WorkflowController",
    "envelope_response",
    "envelope_status_code",
    "workflow_error_handler",
]
