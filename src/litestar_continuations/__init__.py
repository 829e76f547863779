"""Litestar Continuations - signed continuation tokens and checkpointed workflows.

This package lets an operation hand back, with its result, signed tokens for
the follow-up operations it permits, and runs declarative multi-step
workflows that pause at human checkpoints and resume later from a durable
manifest.

Key Features:
    - Tamper-evident, expiring continuation tokens (HMAC-SHA256)
    - A whitelist of operations with guards for mutating actions
    - Freshness checks that turn stale results into fresh tokens
    - Declarative workflows with conditionals, loops and checkpoints
    - File and database checkpoint stores
    - A Litestar plugin and a command line

Example:
    >>> from litestar_continuations import ActionRegistry, ContinuationResolver, TokenCodec
    >>>
    >>> registry = ActionRegistry()
    >>>
    >>> @registry.action("search", "find")
    ... def find(params):
    ...     return {"matches": ["a.py"]}
    >>>
    >>> resolver = ContinuationResolver(TokenCodec("secret"), registry)
    >>> envelope = await resolver.invoke("search", "find", {"term": "foo"})
"""

from __future__ import annotations

from litestar_continuations.__metadata__ import __project__, __version__
from litestar_continuations.actions import ActionRegistry, ContinuationResolver
from litestar_continuations.config import ContinuationSettings, configure_logging
from litestar_continuations.core.definition import CheckpointOption, StepDefinition, WorkflowDefinition
from litestar_continuations.core.manifest import CheckpointDecision, WorkflowManifest
from litestar_continuations.core.models import (
    ActionDescriptor,
    Failure,
    HandlerResult,
    NextAction,
    ResultEnvelope,
    TokenClaims,
)
from litestar_continuations.core.types import FailureCode, ResultStatus, WorkflowStatus
from litestar_continuations.engine import WorkflowEngine, WorkflowGraph
from litestar_continuations.exceptions import (
    ActionNotFoundError,
    CheckpointMismatchError,
    ContinuationsError,
    InsecureKeyError,
    MalformedTokenError,
    ManifestCorruptError,
    ManifestExpiredError,
    ManifestNotFoundError,
    RegistryFrozenError,
    ResolutionError,
    SignatureInvalidError,
    StaleManifestError,
    TokenError,
    TokenExpiredError,
    WorkflowAlreadyCompletedError,
    WorkflowDefinitionError,
    WorkflowsError,
    WorkflowValidationError,
)
from litestar_continuations.plugin import ContinuationsPlugin, ContinuationsPluginConfig
from litestar_continuations.store import CheckpointStore, FileCheckpointStore, ManifestFilter
from litestar_continuations.tokens import TokenCodec

__all__ = (
    "ActionDescriptor",
    "ActionNotFoundError",
    "ActionRegistry",
    "CheckpointDecision",
    "CheckpointMismatchError",
    "CheckpointOption",
    "CheckpointStore",
    "ContinuationResolver",
    "ContinuationSettings",
    "ContinuationsError",
    "ContinuationsPlugin",
    "ContinuationsPluginConfig",
    "Failure",
    "FailureCode",
    "FileCheckpointStore",
    "HandlerResult",
    "InsecureKeyError",
    "MalformedTokenError",
    "ManifestCorruptError",
    "ManifestExpiredError",
    "ManifestFilter",
    "ManifestNotFoundError",
    "NextAction",
    "RegistryFrozenError",
    "ResolutionError",
    "ResultEnvelope",
    "ResultStatus",
    "SignatureInvalidError",
    "StaleManifestError",
    "StepDefinition",
    "TokenClaims",
    "TokenCodec",
    "TokenError",
    "TokenExpiredError",
    "WorkflowAlreadyCompletedError",
    "WorkflowDefinition",
    "WorkflowDefinitionError",
    "WorkflowEngine",
    "WorkflowGraph",
    "WorkflowManifest",
    "WorkflowStatus",
    "WorkflowValidationError",
    "WorkflowsError",
    "__project__",
    "__version__",
    "configure_logging",
)
