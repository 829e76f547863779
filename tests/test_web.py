"""Tests for the continuations REST API.

This module exercises the HTTP surface registered by the plugin:
- Action controller endpoints (list, invoke)
- Continuation controller endpoints (resolve, reissue)
- Workflow controller endpoints (start, validate, list, get, decide, abort)
- Mapping of envelope failures and workflow errors onto status codes
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest
from litestar import Litestar
from litestar.status_codes import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_410_GONE,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_428_PRECONDITION_REQUIRED,
    HTTP_502_BAD_GATEWAY,
)
from litestar.testing import AsyncTestClient

from litestar_continuations import ContinuationsPlugin, ContinuationsPluginConfig
from litestar_continuations.core.models import Failure, ResultEnvelope
from litestar_continuations.core.types import FailureCode, ResultStatus
from litestar_continuations.tokens.codec import DEFAULT_TTL
from litestar_continuations.web.exceptions import envelope_status_code

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from litestar_continuations.actions.resolver import ContinuationResolver
    from litestar_continuations.engine.workflow import WorkflowEngine
    from tests.conftest import FrozenClock, Workspace


PREFIX = "/continuations"


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def app(resolver: ContinuationResolver, engine: WorkflowEngine) -> Litestar:
    """Litestar app with the plugin wired to the test resolver and engine."""
    return Litestar(
        plugins=[ContinuationsPlugin(config=ContinuationsPluginConfig(resolver=resolver, engine=engine))],
        debug=True,
    )


@pytest.fixture
async def client(app: Litestar) -> AsyncIterator[AsyncTestClient]:
    """Async test client for the app."""
    async with AsyncTestClient(app=app) as test_client:
        yield test_client


async def _find(client: AsyncTestClient, term: str = "foo") -> dict[str, Any]:
    response = await client.post(f"{PREFIX}/actions/search/find", json={"parameters": {"term": term}})
    assert response.status_code == HTTP_200_OK
    return response.json()


def _failure(body: dict[str, Any]) -> dict[str, Any]:
    return body["diagnostics"][0]


# =============================================================================
# Action Controller Tests
# =============================================================================


@pytest.mark.unit
class TestActionController:
    """Tests for the action endpoints."""

    async def test_list_actions(self, client: AsyncTestClient) -> None:
        """Registered actions are listed with their schemas."""
        response = await client.get(f"{PREFIX}/actions")

        assert response.status_code == HTTP_200_OK
        names = [(item["command"], item["action"]) for item in response.json()]
        assert ("search", "find") in names
        assert ("edit", "apply") in names

    async def test_list_actions_by_command(self, client: AsyncTestClient) -> None:
        """The command filter narrows the listing."""
        response = await client.get(f"{PREFIX}/actions", params={"command": "edit"})

        assert response.status_code == HTTP_200_OK
        [descriptor] = response.json()
        assert descriptor["action"] == "apply"
        assert descriptor["guarded"] is True
        assert descriptor["parameter_schema"]["required"] == ["file", "text"]

    async def test_invoke_action(self, client: AsyncTestClient) -> None:
        """A plain call returns the payload and one token per next action."""
        body = await _find(client)

        assert body["status"] == ResultStatus.SUCCESS
        assert body["payload"]["matches"] == ["src/app.py", "src/util.py"]
        assert body["available_actions"] == ["analyze:0", "analyze:1", "replace"]
        assert set(body["continuations"]) == set(body["available_actions"])

    async def test_invalid_parameters(self, client: AsyncTestClient) -> None:
        """Schema violations are rejected with 400 and the full envelope."""
        response = await client.post(f"{PREFIX}/actions/search/find", json={"parameters": {"term": 3}})

        assert response.status_code == HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["status"] == ResultStatus.ERROR
        assert _failure(body)["code"] == FailureCode.INVALID_PARAMETERS

    async def test_unknown_action(self, client: AsyncTestClient) -> None:
        """Unknown actions are not permitted."""
        response = await client.post(f"{PREFIX}/actions/search/teleport", json={})

        assert response.status_code == HTTP_403_FORBIDDEN
        assert "find" in _failure(response.json())["recovery"]["allowed_actions"]

    async def test_guarded_action_needs_confirmation(self, client: AsyncTestClient, workspace: Workspace) -> None:
        """Guarded actions answer 428 until confirmed."""
        payload = {"parameters": {"file": "README.md", "text": "new"}}

        refused = await client.post(f"{PREFIX}/actions/edit/apply", json=payload)
        assert refused.status_code == HTTP_428_PRECONDITION_REQUIRED
        assert _failure(refused.json())["recovery"] == {"parameter": "confirm"}
        assert workspace.files["README.md"] == "A tiny project.\n"

        accepted = await client.post(f"{PREFIX}/actions/edit/apply", json={**payload, "confirm": True})
        assert accepted.status_code == HTTP_200_OK
        assert workspace.files["README.md"] == "new"

    async def test_handler_error(self, client: AsyncTestClient) -> None:
        """Handler failures map to 502 and are retryable."""
        response = await client.post(f"{PREFIX}/actions/search/fail", json={})

        assert response.status_code == HTTP_502_BAD_GATEWAY
        failure = _failure(response.json())
        assert failure["code"] == FailureCode.HANDLER_ERROR
        assert failure["retryable"] is True


# =============================================================================
# Continuation Controller Tests
# =============================================================================


@pytest.mark.unit
class TestContinuationController:
    """Tests for resolving and re-issuing tokens."""

    async def test_resolve(self, client: AsyncTestClient) -> None:
        """A token continues into the action it offers."""
        tokens = (await _find(client))["continuations"]

        response = await client.post(f"{PREFIX}/resolve", json={"token": tokens["analyze:1"], "action": "analyze:1"})

        assert response.status_code == HTTP_200_OK
        assert response.json()["payload"] == {"file": "src/util.py", "lines": [1]}

    async def test_malformed_token(self, client: AsyncTestClient) -> None:
        """Undecodable tokens are a bad request."""
        response = await client.post(f"{PREFIX}/resolve", json={"token": "garbage", "action": "analyze:0"})

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert _failure(response.json())["code"] == FailureCode.MALFORMED

    async def test_tampered_token(self, client: AsyncTestClient) -> None:
        """Modified tokens are unauthorized."""
        token = (await _find(client))["continuations"]["analyze:0"]
        tampered = token[:12] + ("A" if token[12] != "A" else "B") + token[13:]

        response = await client.post(f"{PREFIX}/resolve", json={"token": tampered, "action": "analyze:0"})

        assert response.status_code == HTTP_401_UNAUTHORIZED
        assert _failure(response.json())["code"] == FailureCode.SIGNATURE_INVALID

    async def test_action_not_offered(self, client: AsyncTestClient) -> None:
        """Spending a token on another action is forbidden."""
        token = (await _find(client))["continuations"]["analyze:0"]

        response = await client.post(f"{PREFIX}/resolve", json={"token": token, "action": "replace", "confirm": True})

        assert response.status_code == HTTP_403_FORBIDDEN
        assert _failure(response.json())["recovery"] == {"allowed_actions": ["analyze:0"]}

    async def test_guarded_continuation(self, client: AsyncTestClient, workspace: Workspace) -> None:
        """Guarded continuations need confirmation."""
        token = (await _find(client))["continuations"]["replace"]
        body = {"token": token, "action": "replace", "parameters": {"replacement": "bar"}}

        refused = await client.post(f"{PREFIX}/resolve", json=body)
        assert refused.status_code == HTTP_428_PRECONDITION_REQUIRED

        accepted = await client.post(f"{PREFIX}/resolve", json={**body, "confirm": True})
        assert accepted.status_code == HTTP_200_OK
        assert accepted.json()["payload"] == {"changed": ["src/app.py", "src/util.py"]}
        assert "bar" in workspace.files["src/util.py"]

    async def test_stale_token_is_a_warning(self, client: AsyncTestClient, workspace: Workspace) -> None:
        """A changed resource yields 200 with a warning and a refreshed token."""
        token = (await _find(client))["continuations"]["analyze:1"]
        workspace.files["src/util.py"] = "def foo():\n    return 43\n"

        response = await client.post(f"{PREFIX}/resolve", json={"token": token, "action": "analyze:1"})

        assert response.status_code == HTTP_200_OK
        body = response.json()
        assert body["status"] == ResultStatus.WARNING
        assert _failure(body)["code"] == FailureCode.RESULTS_STALE
        assert _failure(body)["recovery"] == {"token": body["continuations"]["analyze:1"]}

    async def test_expired_token_and_reissue(self, client: AsyncTestClient, clock: FrozenClock) -> None:
        """Expired tokens answer 410; re-issuing mints a working replacement."""
        token = (await _find(client))["continuations"]["analyze:0"]
        clock.advance(DEFAULT_TTL + 1)

        expired = await client.post(f"{PREFIX}/resolve", json={"token": token, "action": "analyze:0"})
        assert expired.status_code == HTTP_410_GONE
        assert _failure(expired.json())["recovery"]["reissue"]["parameters"] == {"term": "foo"}

        reissued = await client.post(f"{PREFIX}/reissue", json={"token": token})
        assert reissued.status_code == HTTP_200_OK
        fresh = reissued.json()["continuations"]["analyze:0"]

        response = await client.post(f"{PREFIX}/resolve", json={"token": fresh, "action": "analyze:0"})
        assert response.status_code == HTTP_200_OK
        assert response.json()["payload"]["file"] == "src/app.py"


# =============================================================================
# Workflow Controller Tests
# =============================================================================


@pytest.mark.unit
class TestWorkflowController:
    """Tests for the workflow endpoints."""

    async def test_start_pause_and_decide(self, client: AsyncTestClient, search_and_apply: dict[str, Any]) -> None:
        """A workflow pauses at its checkpoint and completes after a decision."""
        started = await client.post(f"{PREFIX}/workflows", json={"definition": search_and_apply})

        assert started.status_code == HTTP_201_CREATED
        manifest = started.json()
        assert manifest["cursor"]["status"] == "awaiting-checkpoint"
        assert manifest["pending_checkpoint"]["step_id"] == "review"
        workflow_id = manifest["workflow_id"]

        decided = await client.post(
            f"{PREFIX}/workflows/{workflow_id}/decisions",
            json={"checkpoint_step_id": "review", "option_id": "yes"},
        )
        assert decided.status_code == HTTP_200_OK
        assert decided.json()["cursor"]["status"] == "completed"

        replayed = await client.post(
            f"{PREFIX}/workflows/{workflow_id}/decisions",
            json={"checkpoint_step_id": "review", "option_id": "yes"},
        )
        assert replayed.status_code == HTTP_200_OK
        assert replayed.json()["revision"] == decided.json()["revision"]

    async def test_start_with_parameters_and_id(
        self,
        client: AsyncTestClient,
        search_and_apply: dict[str, Any],
    ) -> None:
        """Parameter overrides and explicit ids are honored."""
        response = await client.post(
            f"{PREFIX}/workflows",
            json={"definition": search_and_apply, "parameters": {"term": "print"}, "workflow_id": "wf-http"},
        )

        manifest = response.json()
        assert manifest["workflow_id"] == "wf-http"
        assert manifest["variable_bindings"]["params"]["term"] == "print"
        assert manifest["variable_bindings"]["search"]["matches"] == ["src/app.py"]

        fetched = await client.get(f"{PREFIX}/workflows/wf-http")
        assert fetched.status_code == HTTP_200_OK
        assert fetched.json()["workflow_id"] == "wf-http"

    async def test_invalid_definition_is_aborted(self, client: AsyncTestClient) -> None:
        """A structurally invalid definition comes back aborted with its diagnosis."""
        step = {"id": "x", "type": "operation", "command": "search", "action": "nope"}
        definition = {"name": "broken", "steps": [step]}

        response = await client.post(f"{PREFIX}/workflows", json={"definition": definition})

        assert response.status_code == HTTP_201_CREATED
        manifest = response.json()
        assert manifest["cursor"]["status"] == "aborted"
        assert manifest["diagnostics"] == ["Step 'x': unknown action 'search:nope'"]

    async def test_undecodable_definition(self, client: AsyncTestClient) -> None:
        """Documents that cannot be parsed are unprocessable."""
        response = await client.post(f"{PREFIX}/workflows", json={"definition": {"steps": []}})

        assert response.status_code == HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["error"] == "WorkflowDefinitionError"

    async def test_validate(self, client: AsyncTestClient, search_and_apply: dict[str, Any]) -> None:
        """Definitions can be checked without running them."""
        valid = await client.post(f"{PREFIX}/workflows/validate", json={"definition": search_and_apply})

        assert valid.status_code == HTTP_200_OK
        assert valid.json() == {
            "name": "search_and_apply",
            "valid": True,
            "steps": ["search", "analyze", "review", "apply"],
        }

        search_and_apply["steps"][3]["confirm"] = False
        invalid = await client.post(f"{PREFIX}/workflows/validate", json={"definition": search_and_apply})

        assert invalid.status_code == HTTP_422_UNPROCESSABLE_ENTITY
        body = invalid.json()
        assert body["error"] == "WorkflowValidationError"
        assert body["errors"] == ["Step 'apply': action 'edit:apply' is guarded and needs 'confirm': true"]

    async def test_list_workflows(self, client: AsyncTestClient, search_and_apply: dict[str, Any]) -> None:
        """Listings can be filtered by status."""
        await client.post(f"{PREFIX}/workflows", json={"definition": search_and_apply, "workflow_id": "paused"})
        broken = {"name": "broken", "steps": []}
        await client.post(f"{PREFIX}/workflows", json={"definition": broken, "workflow_id": "dead"})

        everything = await client.get(f"{PREFIX}/workflows")
        assert sorted(item["workflow_id"] for item in everything.json()) == ["dead", "paused"]

        paused = await client.get(f"{PREFIX}/workflows", params={"status": "awaiting-checkpoint"})
        [summary] = paused.json()
        assert summary["workflow_id"] == "paused"
        assert summary["awaiting"]["step_id"] == "review"

    async def test_concurrent_requests(self, client: AsyncTestClient, search_and_apply: dict[str, Any]) -> None:
        """Workflows started and decided concurrently are all persisted."""
        ids = [f"wf-{index}" for index in range(5)]

        started = await asyncio.gather(
            *(
                client.post(f"{PREFIX}/workflows", json={"definition": search_and_apply, "workflow_id": workflow_id})
                for workflow_id in ids
            )
        )
        assert [response.status_code for response in started] == [HTTP_201_CREATED] * len(ids)

        decided = await asyncio.gather(
            *(
                client.post(
                    f"{PREFIX}/workflows/{workflow_id}/decisions",
                    json={"checkpoint_step_id": "review", "option_id": "no"},
                )
                for workflow_id in ids
            ),
            client.get(f"{PREFIX}/workflows"),
        )
        assert [response.json()["cursor"]["status"] for response in decided[:-1]] == ["aborted"] * len(ids)

        listed = await client.get(f"{PREFIX}/workflows", params={"status": "aborted"})
        assert sorted(item["workflow_id"] for item in listed.json()) == ids

    async def test_list_with_unknown_status(self, client: AsyncTestClient) -> None:
        """Unknown status filters are a bad request."""
        response = await client.get(f"{PREFIX}/workflows", params={"status": "sleeping"})

        assert response.status_code == HTTP_400_BAD_REQUEST

    async def test_unknown_workflow(self, client: AsyncTestClient) -> None:
        """Unknown ids answer 404 with the id."""
        response = await client.get(f"{PREFIX}/workflows/missing")

        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json() == {
            "error": "ManifestNotFoundError",
            "detail": "Workflow 'missing' not found",
            "status_code": HTTP_404_NOT_FOUND,
            "workflow_id": "missing",
        }

    async def test_mismatched_decision(self, client: AsyncTestClient, search_and_apply: dict[str, Any]) -> None:
        """Decisions naming an option that is not offered conflict."""
        await client.post(f"{PREFIX}/workflows", json={"definition": search_and_apply, "workflow_id": "wf"})

        response = await client.post(
            f"{PREFIX}/workflows/wf/decisions",
            json={"checkpoint_step_id": "review", "option_id": "maybe"},
        )

        assert response.status_code == HTTP_409_CONFLICT
        assert response.json()["error"] == "CheckpointMismatchError"

    async def test_abort(self, client: AsyncTestClient, search_and_apply: dict[str, Any]) -> None:
        """Paused workflows can be aborted once."""
        await client.post(f"{PREFIX}/workflows", json={"definition": search_and_apply, "workflow_id": "wf"})

        aborted = await client.post(f"{PREFIX}/workflows/wf/abort", json={"reason": "changed my mind"})
        assert aborted.status_code == HTTP_200_OK
        assert aborted.json()["cursor"]["status"] == "aborted"
        assert aborted.json()["error"] == "changed my mind"

        again = await client.post(f"{PREFIX}/workflows/wf/abort", json={})
        assert again.status_code == HTTP_409_CONFLICT
        assert again.json()["error"] == "WorkflowAlreadyCompletedError"


# =============================================================================
# Status Mapping Tests
# =============================================================================


@pytest.mark.unit
class TestEnvelopeStatusCode:
    """Tests for envelope_status_code."""

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            (FailureCode.MALFORMED, HTTP_400_BAD_REQUEST),
            (FailureCode.INVALID_PARAMETERS, HTTP_400_BAD_REQUEST),
            (FailureCode.SIGNATURE_INVALID, HTTP_401_UNAUTHORIZED),
            (FailureCode.ACTION_NOT_PERMITTED, HTTP_403_FORBIDDEN),
            (FailureCode.EXPIRED, HTTP_410_GONE),
            (FailureCode.CONFIRMATION_REQUIRED, HTTP_428_PRECONDITION_REQUIRED),
            (FailureCode.HANDLER_ERROR, HTTP_502_BAD_GATEWAY),
        ],
    )
    def test_error_codes(self, code: FailureCode, expected: int) -> None:
        """Each failure category has its own status code."""
        envelope = ResultEnvelope(
            status=ResultStatus.ERROR,
            command="search",
            action="find",
            diagnostics=[Failure(code=code, message="x")],
        )

        assert envelope_status_code(envelope) == expected

    def test_warning_is_ok(self) -> None:
        """Warnings are successful responses."""
        envelope = ResultEnvelope(
            status=ResultStatus.WARNING,
            command="search",
            action="analyze",
            diagnostics=[Failure(code=FailureCode.RESULTS_STALE, message="changed")],
        )

        assert envelope_status_code(envelope) == HTTP_200_OK
