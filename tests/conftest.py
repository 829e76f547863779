"""Shared test fixtures for litestar-continuations test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import pytest

from litestar_continuations.actions.registry import ActionRegistry
from litestar_continuations.actions.resolver import ContinuationResolver
from litestar_continuations.core.manifest import Cursor, WorkflowManifest
from litestar_continuations.core.models import HandlerResult, NextAction
from litestar_continuations.core.types import WorkflowStatus
from litestar_continuations.engine.workflow import WorkflowEngine
from litestar_continuations.store.file import FileCheckpointStore
from litestar_continuations.tokens.codec import TokenCodec, compute_digest

if TYPE_CHECKING:
    from pathlib import Path

TEST_SECRET = "test-secret-do-not-use"


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class Workspace:
    """In-memory file tree the sample handlers search and edit."""

    def __init__(self) -> None:
        self.files: dict[str, str] = {
            "src/app.py": "from util import foo\n\nprint(foo())\n",
            "src/util.py": "def foo():\n    return 42\n",
            "README.md": "A tiny project.\n",
        }
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def matches(self, term: str) -> list[str]:
        return sorted(path for path, text in self.files.items() if term in text)

    def digest(self, term: str) -> str:
        return compute_digest({path: self.files[path] for path in self.matches(term)})


def build_sample_registry(workspace: Workspace) -> ActionRegistry:
    """Register the sample ``search`` and ``edit`` commands against a workspace."""
    registry = ActionRegistry()

    @registry.action(
        "search",
        "find",
        label="Find a term",
        parameter_schema={"required": ["term"], "properties": {"term": {"type": "string"}}},
        probe=lambda parameters: workspace.digest(parameters["term"]),
    )
    def find(parameters: dict[str, Any]) -> HandlerResult:
        workspace.calls.append(("find", parameters))
        term = parameters["term"]
        matches = workspace.matches(term)
        next_actions = [
            NextAction(id=f"analyze:{index}", label=f"Analyze {path}", parameters={"file": path})
            for index, path in enumerate(matches)
        ]
        next_actions.append(NextAction(id="replace", label="Replace everywhere", guarded=True))
        return HandlerResult(
            payload={"term": term, "matches": matches, "count": len(matches)},
            next_actions=next_actions,
            context_digest=workspace.digest(term),
        )

    @registry.action("search", "analyze", parameter_schema={"required": ["file"]})
    async def analyze(parameters: dict[str, Any]) -> dict[str, Any]:
        workspace.calls.append(("analyze", parameters))
        text = workspace.files[parameters["file"]]
        hits = [number for number, line in enumerate(text.splitlines(), 1) if parameters["term"] in line]
        return {"file": parameters["file"], "lines": hits}

    @registry.action(
        "search",
        "replace",
        guarded=True,
        parameter_schema={"required": ["replacement"], "properties": {"replacement": {"type": "string"}}},
    )
    def replace(parameters: dict[str, Any]) -> dict[str, Any]:
        workspace.calls.append(("replace", parameters))
        changed = workspace.matches(parameters["term"])
        for path in changed:
            workspace.files[path] = workspace.files[path].replace(parameters["term"], parameters["replacement"])
        return {"changed": changed}

    @registry.action("search", "fail")
    def fail(parameters: dict[str, Any]) -> None:
        workspace.calls.append(("fail", parameters))
        msg = "disk on fire"
        raise RuntimeError(msg)

    @registry.action(
        "edit",
        "apply",
        guarded=True,
        parameter_schema={"required": ["file", "text"], "properties": {"text": {"type": "string"}}},
    )
    def apply(parameters: dict[str, Any]) -> dict[str, Any]:
        workspace.calls.append(("apply", parameters))
        workspace.files[parameters["file"]] = parameters["text"]
        return {"file": parameters["file"], "written": len(parameters["text"])}

    return registry


def sample_registry() -> ActionRegistry:
    """Zero-argument factory used by the command line tests."""
    return build_sample_registry(Workspace())


def make_manifest(
    clock: FrozenClock,
    workflow_id: str = "wf-1",
    *,
    name: str = "search_and_apply",
    status: WorkflowStatus = WorkflowStatus.RUNNING,
    bindings: dict[str, Any] | None = None,
    ttl: timedelta = timedelta(days=7),
    revision: int = 1,
) -> WorkflowManifest:
    """Build a bare manifest stamped with the test clock."""
    now = clock()
    return WorkflowManifest(
        workflow_id=workflow_id,
        name=name,
        definition={"name": name, "steps": []},
        cursor=Cursor(index=1, step_id="review", status=status),
        created_at=now,
        expires_at=now + ttl,
        variable_bindings=bindings if bindings is not None else {"params": {"term": "foo"}},
        revision=revision,
    )


class MockEventBus:
    """Mock event bus for testing."""

    def __init__(self) -> None:
        """Initialize mock event bus."""
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, event_type: str, **kwargs: Any) -> None:
        """Emit an event."""
        self.events.append((event_type, kwargs))

    @property
    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]


@pytest.fixture
def clock() -> FrozenClock:
    """A frozen clock shared by the codec, the store and the engine."""
    return FrozenClock()


@pytest.fixture
def codec(clock: FrozenClock) -> TokenCodec:
    """Token codec signing with a fixed test secret."""
    return TokenCodec(TEST_SECRET, clock=clock)


@pytest.fixture
def workspace() -> Workspace:
    """In-memory file tree for the sample handlers."""
    return Workspace()


@pytest.fixture
def registry(workspace: Workspace) -> ActionRegistry:
    """Registry with the sample search/edit handlers."""
    return build_sample_registry(workspace)


@pytest.fixture
def resolver(codec: TokenCodec, registry: ActionRegistry) -> ContinuationResolver:
    """Resolver over the sample registry."""
    return ContinuationResolver(codec, registry)


@pytest.fixture
def store(tmp_path: Path, clock: FrozenClock) -> FileCheckpointStore:
    """File checkpoint store under a temporary directory."""
    return FileCheckpointStore(tmp_path / "workflows", clock=clock)


@pytest.fixture
def event_bus() -> MockEventBus:
    """Create mock event bus."""
    return MockEventBus()


@pytest.fixture
def engine(
    resolver: ContinuationResolver,
    store: FileCheckpointStore,
    event_bus: MockEventBus,
    clock: FrozenClock,
) -> WorkflowEngine:
    """Workflow engine over the sample resolver and the file store."""
    return WorkflowEngine(resolver, store, event_bus=event_bus, clock=clock)


@pytest.fixture
def search_and_apply() -> dict[str, Any]:
    """A definition that searches, analyzes, asks for approval and applies an edit."""
    return {
        "name": "search_and_apply",
        "parameters": {"term": "foo", "file": "src/util.py"},
        "steps": [
            {"id": "search", "type": "operation", "command": "search", "action": "find",
             "parameters": {"term": "${params.term}"}},
            {"id": "analyze", "type": "operation", "from": "search", "action": "analyze:0",
             "parameters": {"term": "${params.term}"}},
            {"id": "review", "type": "checkpoint", "prompt": "Apply the edit?",
             "options": [{"id": "yes", "label": "Apply"}, {"id": "no", "label": "Stop", "abort": True}]},
            {"id": "apply", "type": "operation", "command": "edit", "action": "apply", "confirm": True,
             "parameters": {"file": "${params.file}", "text": "def bar():\n    return 42\n"}},
        ],
    }  # fmt: skip


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
