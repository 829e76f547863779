"""Tests for the command line entry point."""

from __future__ import annotations

import io
import json
import logging
from typing import TYPE_CHECKING, Any

import pytest

from litestar_continuations.cli import (
    EXIT_AWAITING,
    EXIT_CONFIRMATION,
    EXIT_FAILURE,
    EXIT_OK,
    EXIT_VALIDATION,
    load_registry,
    main,
)
from litestar_continuations.core.types import FailureCode, ResultStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path


ACTIONS = "tests.conftest:sample_registry"


@pytest.fixture(autouse=True)
def cli_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Sign with a fixed secret and restore root logging after each run."""
    monkeypatch.setenv("CONTINUATIONS_SECRET", "cli-secret")
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def cli(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> Callable[..., tuple[int, Any]]:
    """Run the command line and decode its JSON output."""

    def run(*argv: str) -> tuple[int, Any]:
        code = main(["--actions", ACTIONS, "--state-dir", str(tmp_path), *argv])
        out = capsys.readouterr().out
        return code, json.loads(out) if out.strip() else None

    return run


@pytest.fixture
def workflow_file(tmp_path: Path, search_and_apply: dict[str, Any]) -> Path:
    """The sample workflow written to disk."""
    path = tmp_path / "search_and_apply.json"
    path.write_text(json.dumps(search_and_apply), encoding="utf-8")
    return path


@pytest.mark.unit
class TestActionCommands:
    """Tests for run, continue and reissue."""

    def test_run(self, cli) -> None:
        """A plain call prints the envelope."""
        code, envelope = cli("run", "search", "find", "-p", "term=foo")

        assert code == EXIT_OK
        assert envelope["status"] == ResultStatus.SUCCESS
        assert envelope["payload"]["matches"] == ["src/app.py", "src/util.py"]
        assert envelope["available_actions"] == ["analyze:0", "analyze:1", "replace"]

    def test_continue(self, cli) -> None:
        """A token printed by one invocation is accepted by the next."""
        _, envelope = cli("run", "search", "find", "-p", "term=foo")

        code, follow_up = cli("continue", envelope["continuations"]["analyze:1"], "analyze:1")

        assert code == EXIT_OK
        assert follow_up["payload"] == {"file": "src/util.py", "lines": [1]}

    def test_continue_from_stdin(self, cli, monkeypatch: pytest.MonkeyPatch) -> None:
        """A token of '-' is read from standard input."""
        _, envelope = cli("run", "search", "find", "-p", "term=foo")
        monkeypatch.setattr("sys.stdin", io.StringIO(envelope["continuations"]["analyze:0"] + "\n"))

        code, follow_up = cli("continue", "-", "analyze:0")

        assert code == EXIT_OK
        assert follow_up["payload"]["file"] == "src/app.py"

    def test_confirmation_required(self, cli) -> None:
        """Guarded actions exit with 3 until confirmed."""
        code, envelope = cli("run", "edit", "apply", "-p", "file=README.md", "-p", "text=new")

        assert code == EXIT_CONFIRMATION
        assert envelope["diagnostics"][0]["code"] == FailureCode.CONFIRMATION_REQUIRED

        code, envelope = cli("run", "edit", "apply", "-p", "file=README.md", "-p", "text=new", "--confirm")

        assert code == EXIT_OK
        assert envelope["payload"] == {"file": "README.md", "written": 3}

    @pytest.mark.parametrize(
        ("argv", "failure_code"),
        [
            (("run", "search", "find", "-p", "term=3"), FailureCode.INVALID_PARAMETERS),
            (("run", "search", "teleport"), FailureCode.ACTION_NOT_PERMITTED),
            (("continue", "not-a-token", "analyze:0"), FailureCode.MALFORMED),
        ],
    )
    def test_validation_errors(self, cli, argv: tuple[str, ...], failure_code: FailureCode) -> None:
        """Bad input exits with 2."""
        code, envelope = cli(*argv)

        assert code == EXIT_VALIDATION
        assert envelope["diagnostics"][0]["code"] == failure_code

    def test_handler_error(self, cli) -> None:
        """Handler failures exit with 1."""
        code, envelope = cli("run", "search", "fail")

        assert code == EXIT_FAILURE
        assert envelope["diagnostics"][0]["code"] == FailureCode.HANDLER_ERROR

    def test_reissue(self, cli) -> None:
        """Re-issuing a token re-runs its producing action."""
        _, envelope = cli("run", "search", "find", "-p", "term=foo")

        code, reissued = cli("reissue", envelope["continuations"]["replace"])

        assert code == EXIT_OK
        assert reissued["action"] == "find"
        assert reissued["payload"] == envelope["payload"]

    def test_parameter_without_equals(self, cli) -> None:
        """Parameters must be key=value pairs."""
        with pytest.raises(SystemExit) as exc_info:
            cli("run", "search", "find", "-p", "term")

        assert exc_info.value.code == 2


@pytest.mark.unit
class TestWorkflowCommands:
    """Tests for the workflow subcommands."""

    def test_run_resume_show(self, cli, workflow_file: Path) -> None:
        """A workflow pauses in one invocation and completes in another."""
        code, manifest = cli("workflow", "run", str(workflow_file), "--id", "wf-cli")

        assert code == EXIT_AWAITING
        assert manifest["cursor"]["status"] == "awaiting-checkpoint"
        assert manifest["pending_checkpoint"]["step_id"] == "review"

        code, manifest = cli("workflow", "resume", "wf-cli", "review", "yes")

        assert code == EXIT_OK
        assert manifest["cursor"]["status"] == "completed"

        code, shown = cli("workflow", "show", "wf-cli")
        assert code == EXIT_OK
        assert shown["revision"] == manifest["revision"]

    def test_parameter_overrides(self, cli, workflow_file: Path) -> None:
        """-p values override the definition's parameters."""
        code, manifest = cli("workflow", "run", str(workflow_file), "-p", "term=print")

        assert code == EXIT_AWAITING
        assert manifest["variable_bindings"]["search"]["matches"] == ["src/app.py"]

    def test_declined_checkpoint(self, cli, workflow_file: Path) -> None:
        """Aborting at a checkpoint exits with 1."""
        cli("workflow", "run", str(workflow_file), "--id", "wf-cli")

        code, manifest = cli("workflow", "resume", "wf-cli", "review", "no")

        assert code == EXIT_FAILURE
        assert manifest["cursor"]["status"] == "aborted"

    def test_mismatched_decision(self, cli, workflow_file: Path) -> None:
        """Options that are not offered exit with 2."""
        cli("workflow", "run", str(workflow_file), "--id", "wf-cli")

        code, output = cli("workflow", "resume", "wf-cli", "review", "maybe")

        assert code == EXIT_VALIDATION
        assert output["error"] == "CheckpointMismatchError"

    def test_invalid_definition(self, cli, tmp_path: Path) -> None:
        """Structurally invalid definitions are aborted and exit with 2."""
        path = tmp_path / "broken.json"
        path.write_text(json.dumps({"name": "broken", "steps": []}), encoding="utf-8")

        code, manifest = cli("workflow", "run", str(path))

        assert code == EXIT_VALIDATION
        assert manifest["diagnostics"] == ["Workflow has no steps"]

    def test_unparseable_definition(self, cli, tmp_path: Path) -> None:
        """Documents that are not JSON exit with 2."""
        path = tmp_path / "broken.json"
        path.write_text("{", encoding="utf-8")

        code, output = cli("workflow", "run", str(path))

        assert code == EXIT_VALIDATION
        assert output["error"] == "WorkflowDefinitionError"

    def test_validate(self, cli, workflow_file: Path, search_and_apply: dict[str, Any]) -> None:
        """Definitions can be checked without running them."""
        code, output = cli("workflow", "validate", str(workflow_file))

        assert code == EXIT_OK
        assert output["valid"] is True

        search_and_apply["steps"][1]["from"] = "review"
        workflow_file.write_text(json.dumps(search_and_apply), encoding="utf-8")

        code, output = cli("workflow", "validate", str(workflow_file))

        assert code == EXIT_VALIDATION
        assert output["error"] == "WorkflowValidationError"
        assert output["errors"]

    def test_abort_list_and_sweep(self, cli, workflow_file: Path) -> None:
        """Workflows can be aborted, listed by status and swept."""
        cli("workflow", "run", str(workflow_file), "--id", "first")
        cli("workflow", "run", str(workflow_file), "--id", "second")

        code, manifest = cli("workflow", "abort", "first", "--reason", "not needed")
        assert code == EXIT_OK
        assert manifest["error"] == "not needed"

        _, summaries = cli("workflow", "list")
        assert sorted(summary["workflow_id"] for summary in summaries) == ["first", "second"]

        _, paused = cli("workflow", "list", "--status", "awaiting-checkpoint")
        assert [summary["workflow_id"] for summary in paused] == ["second"]

        code, swept = cli("workflow", "sweep")
        assert code == EXIT_OK
        assert swept == {"swept": []}

    def test_unknown_workflow(self, cli) -> None:
        """Unknown ids exit with 1."""
        code, output = cli("workflow", "show", "missing")

        assert code == EXIT_FAILURE
        assert output["error"] == "ManifestNotFoundError"


@pytest.mark.unit
class TestConfiguration:
    """Tests for settings and catalog loading on the command line."""

    def test_invalid_settings(self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
        """Invalid environment settings exit with 2 before anything runs."""
        monkeypatch.setenv("CONTINUATIONS_TOKEN_TTL", "0")

        code = main(["run", "search", "find"])

        assert code == EXIT_VALIDATION
        assert "Configuration error" in capsys.readouterr().err

    def test_actions_from_environment(
        self,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """The catalog can be named by CONTINUATIONS_ACTIONS."""
        monkeypatch.setenv("CONTINUATIONS_ACTIONS", ACTIONS)

        code = main(["run", "search", "find", "-p", "term=util"])

        assert code == EXIT_OK
        assert json.loads(capsys.readouterr().out)["payload"]["matches"] == ["src/app.py"]

    def test_load_registry(self) -> None:
        """Registries and factories are accepted; anything else is rejected."""
        assert len(load_registry(ACTIONS)) == 5
        assert len(load_registry(None)) == 0

        with pytest.raises(TypeError, match="does not provide an ActionRegistry"):
            load_registry("tests.conftest:TEST_SECRET")

    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        """--version prints the package version."""
        with pytest.raises(SystemExit):
            main(["--version"])

        assert capsys.readouterr().out.startswith("litestar-continuations ")
