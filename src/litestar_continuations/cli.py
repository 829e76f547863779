"""Command line for resolving continuation tokens and driving workflows.

Results are printed as JSON on stdout; logs go to stderr. Exit codes:
0 success, 1 failure, 2 validation error, 3 confirmation required,
4 workflow awaiting a checkpoint decision.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from litestar.utils.module_loader import import_string
from pydantic import ValidationError

from litestar_continuations.__metadata__ import __version__
from litestar_continuations.actions.registry import ActionRegistry
from litestar_continuations.actions.resolver import CONFIRM_PARAMETER, ContinuationResolver
from litestar_continuations.config import ContinuationSettings, configure_logging
from litestar_continuations.core.manifest import CheckpointDecision
from litestar_continuations.core.types import FailureCode, ResultStatus, WorkflowStatus
from litestar_continuations.engine.workflow import WorkflowEngine
from litestar_continuations.exceptions import (
    CheckpointMismatchError,
    ContinuationsError,
    WorkflowDefinitionError,
    WorkflowValidationError,
)
from litestar_continuations.store.base import ManifestFilter
from litestar_continuations.store.file import FileCheckpointStore

__all__ = ["build_parser", "main"]

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_VALIDATION = 2
EXIT_CONFIRMATION = 3
EXIT_AWAITING = 4

_VALIDATION_CODES = {
    FailureCode.MALFORMED,
    FailureCode.SIGNATURE_INVALID,
    FailureCode.ACTION_NOT_PERMITTED,
    FailureCode.INVALID_PARAMETERS,
}


def _parameter(value: str) -> tuple[str, Any]:
    key, sep, raw = value.partition("=")
    if not sep or not key:
        msg = f"expected key=value, got '{value}'"
        raise argparse.ArgumentTypeError(msg)
    try:
        return key, json.loads(raw)
    except ValueError:
        return key, raw


def _parameters(args: argparse.Namespace) -> dict[str, Any]:
    parameters = dict(args.param or [])
    if getattr(args, "confirm", False):
        parameters[CONFIRM_PARAMETER] = True
    return parameters


def _read_token(value: str) -> str:
    if value == "-":
        return sys.stdin.read().strip()
    return value.strip()


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _add_param_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-p",
        "--param",
        action="append",
        type=_parameter,
        metavar="KEY=VALUE",
        help="Parameter; the value is parsed as JSON when possible (repeatable)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="litestar-continuations",
        description="Resolve continuation tokens and run checkpointed workflows",
    )
    parser.add_argument("--version", action="version", version=f"litestar-continuations {__version__}")
    parser.add_argument(
        "--actions",
        default=None,
        help="Import path ('module:attribute') of an ActionRegistry or a factory returning one",
    )
    parser.add_argument("--state-dir", type=Path, default=None, help="Directory for workflow state")
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    parser.add_argument("--log-json", action="store_true", default=None, help="Emit JSON log records")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Invoke an action directly")
    run.add_argument("target_command", metavar="COMMAND", help="Command name")
    run.add_argument("action", help="Action name")
    _add_param_option(run)
    run.add_argument("--confirm", action="store_true", help="Confirm a guarded action")

    cont = subparsers.add_parser("continue", help="Continue from a token")
    cont.add_argument("token", help="Token, or '-' to read it from stdin")
    cont.add_argument("action_id", help="Next-action id offered by the token")
    _add_param_option(cont)
    cont.add_argument("--confirm", action="store_true", help="Confirm a guarded action")

    reissue = subparsers.add_parser("reissue", help="Re-run the action that produced a token")
    reissue.add_argument("token", help="Token, or '-' to read it from stdin")
    reissue.add_argument("--confirm", action="store_true", help="Confirm a guarded producing action")

    workflow = subparsers.add_parser("workflow", help="Run and manage workflows")
    workflow_commands = workflow.add_subparsers(dest="workflow_command", required=True)

    workflow_run = workflow_commands.add_parser("run", help="Start a workflow from a definition file")
    workflow_run.add_argument("file", type=Path, help="Workflow definition (JSON)")
    _add_param_option(workflow_run)
    workflow_run.add_argument("--id", dest="workflow_id", default=None, help="Explicit workflow id")

    workflow_validate = workflow_commands.add_parser("validate", help="Check a definition file without running it")
    workflow_validate.add_argument("file", type=Path, help="Workflow definition (JSON)")

    workflow_resume = workflow_commands.add_parser("resume", help="Answer a pending checkpoint")
    workflow_resume.add_argument("workflow_id")
    workflow_resume.add_argument("step_id")
    workflow_resume.add_argument("option_id")

    workflow_abort = workflow_commands.add_parser("abort", help="Abort a workflow")
    workflow_abort.add_argument("workflow_id")
    workflow_abort.add_argument("--reason", default="Aborted from the command line")

    workflow_show = workflow_commands.add_parser("show", help="Print a workflow manifest")
    workflow_show.add_argument("workflow_id")

    workflow_list = workflow_commands.add_parser("list", help="List workflows")
    workflow_list.add_argument(
        "--status",
        action="append",
        choices=[str(status) for status in WorkflowStatus],
        help="Only list workflows in this status (repeatable)",
    )

    workflow_commands.add_parser("sweep", help="Delete expired workflow manifests")

    return parser


def load_registry(path: str | None) -> ActionRegistry:
    """Load the action catalog from an import path.

    Args:
        path: ``module:attribute`` naming an ``ActionRegistry`` or a zero-argument
            factory returning one. ``None`` yields an empty registry.

    Raises:
        TypeError: If the target is neither a registry nor a factory returning one.
    """
    if not path:
        return ActionRegistry()
    target = import_string(path.replace(":", "."))
    registry = target if isinstance(target, ActionRegistry) else target() if callable(target) else None
    if not isinstance(registry, ActionRegistry):
        msg = f"'{path}' does not provide an ActionRegistry"
        raise TypeError(msg)
    return registry


def _envelope_exit_code(envelope_status: ResultStatus, code: FailureCode | None) -> int:
    if envelope_status != ResultStatus.ERROR:
        return EXIT_OK
    if code == FailureCode.CONFIRMATION_REQUIRED:
        return EXIT_CONFIRMATION
    if code in _VALIDATION_CODES:
        return EXIT_VALIDATION
    return EXIT_FAILURE


def _workflow_exit_code(status: WorkflowStatus, diagnostics: list[str]) -> int:
    if status == WorkflowStatus.COMPLETED:
        return EXIT_OK
    if status == WorkflowStatus.AWAITING_CHECKPOINT:
        return EXIT_AWAITING
    if status == WorkflowStatus.ABORTED and diagnostics:
        return EXIT_VALIDATION
    return EXIT_FAILURE


async def _dispatch(args: argparse.Namespace, settings: ContinuationSettings) -> int:
    registry = load_registry(args.actions or settings.actions)
    registry.freeze()
    resolver = ContinuationResolver(settings.build_codec(), registry)

    if args.command in ("run", "continue", "reissue"):
        if args.command == "run":
            envelope = await resolver.invoke(args.target_command, args.action, _parameters(args))
        elif args.command == "continue":
            envelope = await resolver.resolve(_read_token(args.token), args.action_id, _parameters(args))
        else:
            extra = {CONFIRM_PARAMETER: True} if args.confirm else None
            envelope = await resolver.reissue(_read_token(args.token), extra)
        _emit(envelope.to_dict())
        failure = envelope.failure
        return _envelope_exit_code(envelope.status, failure.code if failure else None)

    engine = WorkflowEngine(
        resolver,
        FileCheckpointStore(settings.workflow_dir),
        manifest_ttl=settings.manifest_ttl_delta,
        retention=settings.retention_delta,
    )
    command = args.workflow_command

    if command == "run":
        manifest = await engine.start(
            args.file.read_text(encoding="utf-8"),
            dict(args.param or []),
            workflow_id=args.workflow_id,
        )
    elif command == "validate":
        engine.validate(args.file.read_text(encoding="utf-8"), strict=True)
        _emit({"file": str(args.file), "valid": True})
        return EXIT_OK
    elif command == "resume":
        manifest = await engine.resume(CheckpointDecision(args.workflow_id, args.step_id, args.option_id))
    elif command == "abort":
        manifest = await engine.abort(args.workflow_id, args.reason)
    elif command == "show":
        manifest = await engine.get(args.workflow_id)
        _emit(manifest.to_dict())
        return EXIT_OK
    elif command == "list":
        manifests = await engine.list_workflows(ManifestFilter.create(args.status or ()))
        _emit([manifest.summary() for manifest in manifests])
        return EXIT_OK
    else:
        _emit({"swept": await engine.sweep_expired()})
        return EXIT_OK

    _emit(manifest.to_dict())
    if command == "abort":
        return EXIT_OK
    return _workflow_exit_code(manifest.status, manifest.diagnostics)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides: dict[str, Any] = {
        "state_dir": args.state_dir,
        "log_level": args.log_level,
        "log_json": args.log_json,
    }
    try:
        settings = ContinuationSettings(**{key: value for key, value in overrides.items() if value is not None})
    except ValidationError as e:
        # Logging isn't configured yet
        print("Configuration error:", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_VALIDATION

    configure_logging(settings.log_level, settings.log_json)

    try:
        return asyncio.run(_dispatch(args, settings))
    except WorkflowValidationError as e:
        logger.warning("%s", e)
        _emit({"error": type(e).__name__, "detail": str(e), "errors": e.errors})
        return EXIT_VALIDATION
    except (WorkflowDefinitionError, CheckpointMismatchError) as e:
        logger.warning("%s", e)
        _emit({"error": type(e).__name__, "detail": str(e)})
        return EXIT_VALIDATION
    except (ContinuationsError, OSError) as e:
        logger.error("%s", e)
        _emit({"error": type(e).__name__, "detail": str(e)})
        return EXIT_FAILURE
    except Exception:
        logger.exception("Command failed")
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
