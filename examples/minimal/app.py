"""Minimal example of litestar-continuations integration.

This example registers a tiny ``search``/``edit`` action catalog over a
directory of text files and mounts the continuation API on a Litestar app.
Clients call ``search:find``, receive signed tokens for the follow-ups, and
spend them on ``/continuations/resolve``. Checkpointed workflows (see
``examples/workflows/search_and_replace.json``) run through
``/continuations/workflows``.

Run with:
    cd examples/minimal
    CONTINUATIONS_SECRET=change-me litestar run

The same catalog drives the command line:
    litestar-continuations --actions examples.minimal.app:default_registry run search find -p term=foo
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from litestar import Litestar, get

from litestar_continuations import (
    ActionRegistry,
    ContinuationSettings,
    ContinuationsPlugin,
    ContinuationsPluginConfig,
    HandlerResult,
    NextAction,
)
from litestar_continuations.tokens.codec import compute_digest

# =============================================================================
# Action Catalog
# =============================================================================


def _text_files(root: Path) -> dict[str, str]:
    files: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if not path.is_file() or any(part.startswith(".") for part in relative.parts):
            continue
        try:
            files[relative.as_posix()] = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
    return files


def build_registry(root: Path) -> ActionRegistry:
    """Register the example actions against a directory.

    Args:
        root: Directory whose text files are searched and edited. Hidden
            files and directories are ignored.

    Returns:
        The populated registry.
    """
    registry = ActionRegistry()

    def matching(term: str) -> dict[str, str]:
        return {name: text for name, text in _text_files(root).items() if term in text}

    def probe(parameters: dict[str, Any]) -> str:
        return compute_digest(matching(parameters["term"]))

    @registry.action(
        "search",
        "find",
        label="Find files containing a term",
        parameter_schema={"required": ["term"], "properties": {"term": {"type": "string"}}},
        probe=probe,
    )
    def find(parameters: dict[str, Any]) -> HandlerResult:
        term = parameters["term"]
        files = matching(term)
        next_actions = [
            NextAction(id=f"analyze:{index}", label=f"Show matching lines in {name}", parameters={"file": name})
            for index, name in enumerate(files)
        ]
        if files:
            next_actions.append(NextAction(id="replace", label=f"Replace '{term}' everywhere", guarded=True))
        return HandlerResult(
            payload={"term": term, "matches": list(files), "count": len(files)},
            next_actions=next_actions,
            context_digest=compute_digest(files),
        )

    @registry.action(
        "search",
        "analyze",
        label="Show matching lines",
        parameter_schema={"required": ["term", "file"]},
    )
    def analyze(parameters: dict[str, Any]) -> dict[str, Any]:
        text = (root / parameters["file"]).read_text(encoding="utf-8")
        lines = [
            {"line": number, "text": line}
            for number, line in enumerate(text.splitlines(), 1)
            if parameters["term"] in line
        ]
        return {"file": parameters["file"], "lines": lines}

    @registry.action(
        "search",
        "replace",
        guarded=True,
        label="Replace a term in every matching file",
        parameter_schema={
            "required": ["term", "replacement"],
            "properties": {"replacement": {"type": "string"}},
        },
    )
    def replace(parameters: dict[str, Any]) -> dict[str, Any]:
        changed = []
        for name, text in matching(parameters["term"]).items():
            (root / name).write_text(text.replace(parameters["term"], parameters["replacement"]), encoding="utf-8")
            changed.append(name)
        return {"changed": changed}

    @registry.action(
        "edit",
        "apply",
        guarded=True,
        label="Overwrite a file",
        parameter_schema={"required": ["file", "text"], "properties": {"text": {"type": "string"}}},
    )
    def apply(parameters: dict[str, Any]) -> dict[str, Any]:
        (root / parameters["file"]).write_text(parameters["text"], encoding="utf-8")
        return {"file": parameters["file"], "written": len(parameters["text"])}

    return registry


def default_registry() -> ActionRegistry:
    """Catalog over the current working directory, for the command line."""
    return build_registry(Path.cwd())


# =============================================================================
# Application
# =============================================================================


@get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


def create_app(root: Path | None = None, settings: ContinuationSettings | None = None) -> Litestar:
    """Create the example application.

    Args:
        root: Directory the actions work on. Defaults to the working directory.
        settings: Settings; read from ``CONTINUATIONS_*`` variables when omitted.
    """
    plugin = ContinuationsPlugin(
        config=ContinuationsPluginConfig(
            registry=build_registry(root or Path.cwd()),
            settings=settings or ContinuationSettings(),
        )
    )
    return Litestar(route_handlers=[health_check], plugins=[plugin])


app = create_app()
