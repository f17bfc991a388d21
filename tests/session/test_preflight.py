import json

import httpx
import pytest

from e2e_harness.exceptions import HostUnreachable
from e2e_harness.health import ReachabilityGate
from e2e_harness.session.lifecycle import (
    PreflightReport,
    SessionOutcome,
    SessionState,
    run_preflight,
)
from e2e_harness.types import Role


class RecordingManager:
    """Stands in for SessionLifecycleManager; records calls"""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    async def ensure_session(self, role, app_url, environment):
        self.calls.append((role, app_url, environment))
        outcome = SessionOutcome(role=role, environment=environment)
        if role in self.failing:
            outcome.move(SessionState.FAILED)
            outcome.message = "login failed"
        else:
            outcome.move(SessionState.READY)
            outcome.method = "cached"
        return outcome


def _gate(status_code, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(str(request.url))
        return httpx.Response(status_code)

    return ReachabilityGate(timeout=1.0, transport=httpx.MockTransport(handler))


def _write_environment(context, name="local", web="http://web.test"):
    env_dir = context.environments_dir
    env_dir.mkdir(parents=True, exist_ok=True)
    (env_dir / f"{name}.json").write_text(
        json.dumps(
            {
                "name": name,
                "baseUrls": {"web": web, "api": "http://api.test"},
                "auth0": {"domain": "tenant.auth0.com", "clientId": "abc"},
                "timeouts": {"api": 30000},
            }
        )
    )


@pytest.mark.anyio
async def test_gate_failure_aborts_before_session_work(context):
    manager = RecordingManager()

    with pytest.raises(HostUnreachable) as exc_info:
        await run_preflight(context, manager=manager, gate=_gate(500))

    assert exc_info.value.cause == "server_error"
    assert manager.calls == []


@pytest.mark.anyio
async def test_gate_failure_never_touches_the_store(context, tmp_path):
    from e2e_harness.session.lifecycle import SessionLifecycleManager

    loads = []

    class Store:
        auth_dir = tmp_path

        def load(self, role, environment):
            loads.append(role)

    manager = SessionLifecycleManager(store=Store(), validator=None, resolver=None, identity=None)

    with pytest.raises(HostUnreachable):
        await run_preflight(context, manager=manager, gate=_gate(503))

    assert loads == []


@pytest.mark.anyio
async def test_auth_required_response_passes_gate(context):
    manager = RecordingManager()
    seen = []

    report = await run_preflight(context, manager=manager, gate=_gate(401, seen))

    assert seen == ["http://localhost:3000"]
    assert [c[0] for c in manager.calls] == [Role.ADMIN, Role.USER]
    assert report.all_ready


@pytest.mark.anyio
async def test_one_role_failure_does_not_abort_others(context):
    manager = RecordingManager(failing={Role.ADMIN})

    report = await run_preflight(context, manager=manager, gate=_gate(200))

    assert [o.role for o in report.outcomes] == [Role.ADMIN, Role.USER]
    assert not report.all_ready
    assert report.any_ready
    assert report.failed_roles == [Role.ADMIN]
    assert report.outcome_for(Role.USER).ready


@pytest.mark.anyio
async def test_base_url_comes_from_environment_file(context):
    _write_environment(context, web="http://web.test/")
    manager = RecordingManager()
    seen = []

    report = await run_preflight(context, roles=[Role.USER], manager=manager, gate=_gate(302, seen))

    assert report.app_url == "http://web.test"
    assert seen == ["http://web.test"]
    assert manager.calls == [(Role.USER, "http://web.test", "local")]


@pytest.mark.anyio
async def test_base_url_override_wins(context):
    from dataclasses import replace

    _write_environment(context)
    context = replace(context, base_url_override="http://override.test")
    manager = RecordingManager()

    report = await run_preflight(context, roles=[Role.USER], manager=manager, gate=_gate(200))

    assert report.app_url == "http://override.test"


def test_empty_report_is_not_ready():
    report = PreflightReport(environment="local", app_url="http://x")
    assert not report.all_ready
    assert not report.any_ready
