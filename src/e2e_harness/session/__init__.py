"""
Session persistence, validation and lifecycle
"""

from e2e_harness.session.lifecycle import (
    PreflightReport,
    SessionLifecycleManager,
    SessionOutcome,
    SessionState,
    run_preflight,
)
from e2e_harness.session.store import SessionFileStatus, SessionStore
from e2e_harness.session.validator import SessionValidator

__all__ = [
    "PreflightReport",
    "SessionFileStatus",
    "SessionLifecycleManager",
    "SessionOutcome",
    "SessionState",
    "SessionStore",
    "SessionValidator",
    "run_preflight",
]
