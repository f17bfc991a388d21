"""
pytest plugin

Enable with ``-p e2e_harness.pytest_plugin`` (the ``run`` command does this).

Provides:
- Saved-session fixtures (``run_context``, ``session_store``, ``storage_state_for``)
- ``oauth_client`` for API tests that need bearer tokens
- The ``e2e_role`` marker
- Result recording into the JSONL log
"""

import getpass
import logging
import os
from pathlib import Path
from typing import Callable, Optional

import pytest

from e2e_harness.config import RunContext, load_run_context
from e2e_harness.discovery import PILLARS
from e2e_harness.exceptions import EnvironmentNotFound
from e2e_harness.oauth import OAuthTokenClient
from e2e_harness.results import ResultWriter
from e2e_harness.session.store import SessionStore
from e2e_harness.types import Role, TestResult

logger = logging.getLogger(__name__)

# =============================================================================
# Options
# =============================================================================


def pytest_addoption(parser):
    group = parser.getgroup("e2e-harness")
    group.addoption(
        "--e2e-results-dir",
        default=None,
        help="Directory for the JSONL result log (default: <root>/results or E2E_RESULTS_DIR)",
    )
    group.addoption(
        "--e2e-pillar",
        default=None,
        choices=PILLARS,
        help="Pillar recorded with each result (default: detected from the test path)",
    )
    group.addoption(
        "--e2e-no-record",
        action="store_true",
        default=False,
        help="Do not write results to the JSONL log",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "e2e_role(role): role whose saved session the test uses")
    if config.getoption("--e2e-no-record"):
        return

    context = load_run_context(Path(str(config.rootpath)))
    results_dir = config.getoption("--e2e-results-dir")
    writer = ResultWriter(results_dir or context.result_dir)
    config.pluginmanager.register(
        ResultRecorder(writer, context.environment, config.getoption("--e2e-pillar")),
        "e2e-harness-recorder",
    )


# =============================================================================
# Result Recording
# =============================================================================


def detect_pillar(path: str) -> Optional[str]:
    parts = Path(path).parts
    for pillar in PILLARS:
        if pillar in parts:
            return pillar
    return None


def _current_user() -> str:
    try:
        return os.getenv("USER") or getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class ResultRecorder:
    """Collects the phases of each test and appends one TestResult per test"""

    def __init__(self, writer: ResultWriter, environment: str, pillar: Optional[str] = None):
        self.writer = writer
        self.environment = environment
        self.pillar = pillar
        self.user = _current_user()
        self._pending: dict[str, dict] = {}

    def pytest_runtest_logreport(self, report):
        entry = self._pending.setdefault(
            report.nodeid, {"status": "passed", "duration": 0.0, "error": None}
        )
        entry["duration"] += report.duration

        if report.failed:
            entry["status"] = "failed"
            lines = str(report.longrepr).strip().splitlines()
            entry["error"] = entry["error"] or (lines[-1] if lines else "failed")
        elif report.skipped and entry["status"] != "failed":
            entry["status"] = "skipped"

        if report.when == "teardown":
            self._record(report.nodeid, report.location[0], self._pending.pop(report.nodeid))

    def _record(self, nodeid: str, path: str, entry: dict) -> None:
        pillar = self.pillar or detect_pillar(path)
        if pillar is None:
            return

        result = TestResult(
            pillar=pillar,
            environment=self.environment,
            test=nodeid,
            status=entry["status"],
            duration=round(entry["duration"] * 1000, 3),
            user=self.user,
            error=entry["error"],
        )
        try:
            self.writer.write_result(result)
        except OSError as e:
            logger.warning(f"Failed to record result for {nodeid}: {e}")


# =============================================================================
# Session Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def run_context(pytestconfig) -> RunContext:
    """Run context built from the environment and the project's .env"""
    return load_run_context(Path(str(pytestconfig.rootpath)))


@pytest.fixture(scope="session")
def session_store(run_context) -> SessionStore:
    return SessionStore(run_context.session_dir)


@pytest.fixture
def storage_state_for(run_context, session_store) -> Callable[[Role], Path]:
    """
    Path of the saved session for a role, for browser contexts.

    Fails the test visibly when no session is saved; run
    ``e2e-harness preflight`` first.
    """

    def _storage_state(role: Role = Role.USER) -> Path:
        role = Role(role)
        path = session_store.path_for(role, run_context.environment)
        if session_store.load(role, run_context.environment) is None:
            pytest.fail(
                f"No usable {role.value} session for '{run_context.environment}' at {path}. "
                f"Run 'e2e-harness auth-setup --role {role.value}' or 'e2e-harness preflight'.",
                pytrace=False,
            )
        return path

    return _storage_state


@pytest.fixture
def role_storage_state(request, storage_state_for) -> Path:
    """Saved session for the role named by the test's ``e2e_role`` marker (default: user)"""
    marker = request.node.get_closest_marker("e2e_role")
    role = marker.args[0] if marker and marker.args else Role.USER
    return storage_state_for(role)


@pytest.fixture(scope="session")
def oauth_client(run_context) -> OAuthTokenClient:
    """Token client for the environment's identity provider, for API tests"""
    try:
        return OAuthTokenClient.for_context(run_context)
    except EnvironmentNotFound as e:
        pytest.skip(f"OAuth client unavailable: {e}")
