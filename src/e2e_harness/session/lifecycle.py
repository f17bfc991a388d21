"""
Session Lifecycle Orchestrator

Decides, per (role, environment), whether a saved session can be reused or
a fresh one must be obtained, and in which order the login strategies are
tried. Expected failures come back as a FAILED outcome, never as exceptions.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from e2e_harness.browser import BrowserDriver
from e2e_harness.config import (
    AuthSettings,
    EnvironmentSelector,
    RunContext,
    load_auth_settings,
    resolve_base_url,
)
from e2e_harness.credentials import CredentialResolver, missing_credentials_hint
from e2e_harness.exceptions import AuthenticationError, InteractiveLoginTimeout
from e2e_harness.health import ReachabilityGate
from e2e_harness.identity import IdentityProviderClient
from e2e_harness.session.store import SessionStore
from e2e_harness.session.validator import SessionValidator
from e2e_harness.types import Role, SessionArtifact

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    CHECKING = "checking"
    VALID = "valid"
    EXPIRED = "expired"
    REFRESHING_HEADLESS = "refreshing_headless"
    REFRESHING_INTERACTIVE = "refreshing_interactive"
    READY = "ready"
    FAILED = "failed"


@dataclass
class SessionOutcome:
    """Terminal result of ensure_session for one role"""

    role: Role
    environment: str
    state: SessionState = SessionState.CHECKING
    method: Optional[str] = None
    message: str = ""
    hint: Optional[str] = None
    path: Optional[Path] = None
    transitions: list[SessionState] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.state is SessionState.READY

    def move(self, state: SessionState) -> None:
        self.state = state
        self.transitions.append(state)


@dataclass
class PreflightReport:
    """Per-role outcomes of a pre-flight run"""

    environment: str
    app_url: str
    outcomes: list[SessionOutcome] = field(default_factory=list)

    @property
    def all_ready(self) -> bool:
        return bool(self.outcomes) and all(o.ready for o in self.outcomes)

    @property
    def any_ready(self) -> bool:
        return any(o.ready for o in self.outcomes)

    @property
    def failed_roles(self) -> list[Role]:
        return [o.role for o in self.outcomes if not o.ready]

    def outcome_for(self, role: Role) -> Optional[SessionOutcome]:
        for outcome in self.outcomes:
            if outcome.role == role:
                return outcome
        return None


class SessionLifecycleManager:
    """
    Ensures a usable session exists for a role before tests run.

    Order of strategies: reuse a valid saved session, headless login with
    resolved credentials, interactive login (only outside automated
    contexts). Each strategy is attempted at most once per call.
    """

    def __init__(
        self,
        store: SessionStore,
        validator: SessionValidator,
        resolver: CredentialResolver,
        identity: IdentityProviderClient,
        automated: bool = False,
    ) -> None:
        """
        Initialize the manager.

        Args:
            store: Saved session persistence
            validator: Checks saved sessions against the app
            resolver: Ordered credential sources
            identity: Headless/interactive login client
            automated: True when no human can respond (CI)
        """
        self.store = store
        self.validator = validator
        self.resolver = resolver
        self.identity = identity
        self.automated = automated
        self._locks: dict[tuple[Role, str], asyncio.Lock] = {}

    @classmethod
    def from_context(
        cls,
        context: RunContext,
        driver: BrowserDriver,
        settings: Optional[AuthSettings] = None,
    ) -> "SessionLifecycleManager":
        settings = settings or load_auth_settings(context)
        return cls(
            store=SessionStore(context.session_dir),
            validator=SessionValidator(driver, settings),
            resolver=CredentialResolver.default(context.credential_dir),
            identity=IdentityProviderClient(driver, settings, automated=context.automated),
            automated=context.automated,
        )

    def _lock_for(self, role: Role, environment: str) -> asyncio.Lock:
        key = (role, environment)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def ensure_session(self, role: Role, app_url: str, environment: str) -> SessionOutcome:
        """
        Make sure a valid session is saved for (role, environment).

        Concurrent calls for the same key run one after another; the later
        call normally finds the session saved by the earlier one.

        Args:
            role: Role to authenticate
            app_url: Application base URL
            environment: Environment name

        Returns:
            SessionOutcome in state READY or FAILED
        """
        role = Role(role)
        async with self._lock_for(role, environment):
            return await self._ensure(role, app_url, environment)

    async def _ensure(self, role: Role, app_url: str, environment: str) -> SessionOutcome:
        outcome = SessionOutcome(role=role, environment=environment)
        outcome.move(SessionState.CHECKING)
        logger.info(f"Checking {role.value} session for {environment}")

        artifact = self.store.load(role, environment)
        if artifact is None:
            logger.info(f"No saved {role.value} session for {environment}")
            outcome.move(SessionState.NO_SESSION)
        else:
            verdict = await self.validator.check(artifact, app_url)
            if verdict.valid:
                outcome.move(SessionState.VALID)
                outcome.move(SessionState.READY)
                outcome.method = "cached"
                outcome.message = f"{role.label} session is valid ({verdict.reason})"
                outcome.path = self.store.path_for(role, environment)
                logger.info(f"{role.value} session is valid: {verdict.reason}")
                return outcome
            logger.info(f"{role.value} session expired: {verdict.reason}")
            outcome.move(SessionState.EXPIRED)

        credentials = await self.resolver.resolve(role, environment)
        if credentials is not None:
            outcome.move(SessionState.REFRESHING_HEADLESS)
            try:
                artifact = await self.identity.login_headless(role, app_url, credentials)
            except AuthenticationError as e:
                if self.automated:
                    return self._fail(
                        outcome,
                        f"Headless login failed for {role.value}: {e}",
                        f"Interactive login is not available in CI. Check {role.email_var} "
                        f"and {role.password_var} for environment '{environment}'.",
                    )
                logger.warning(f"Headless login failed for {role.value}: {e}; falling back to interactive login")
            else:
                return self._persist(outcome, artifact, "headless")
        elif self.automated:
            return self._fail(
                outcome,
                f"No valid {role.value} session and no credentials available in CI",
                missing_credentials_hint(role, environment),
            )

        outcome.move(SessionState.REFRESHING_INTERACTIVE)
        try:
            artifact = await self.identity.login_interactive(role, app_url)
        except InteractiveLoginTimeout as e:
            return self._fail(
                outcome,
                str(e),
                f"Run 'e2e-harness auth-setup --role {role.value}' and complete the login. "
                f"{missing_credentials_hint(role, environment)}",
            )
        except AuthenticationError as e:
            return self._fail(outcome, f"Interactive login failed for {role.value}: {e}", e.detail)

        return self._persist(outcome, artifact, "interactive")

    def _persist(self, outcome: SessionOutcome, artifact: SessionArtifact, method: str) -> SessionOutcome:
        try:
            outcome.path = self.store.save(outcome.role, outcome.environment, artifact)
        except OSError as e:
            return self._fail(
                outcome,
                f"Logged in as {outcome.role.value} but the session could not be saved: {e}",
                f"Check that {self.store.auth_dir} is writable.",
            )
        outcome.move(SessionState.READY)
        outcome.method = method
        outcome.message = f"{outcome.role.label} authenticated via {method} login"
        return outcome

    @staticmethod
    def _fail(outcome: SessionOutcome, message: str, hint: Optional[str]) -> SessionOutcome:
        outcome.move(SessionState.FAILED)
        outcome.message = message
        outcome.hint = hint
        logger.error(message)
        if hint:
            logger.error(f"  {hint}")
        return outcome


async def run_preflight(
    context: RunContext,
    roles: Iterable[Role] = (Role.ADMIN, Role.USER),
    driver: Optional[BrowserDriver] = None,
    manager: Optional[SessionLifecycleManager] = None,
    gate: Optional[ReachabilityGate] = None,
    selector: Optional[EnvironmentSelector] = None,
) -> PreflightReport:
    """
    Reachability gate once, then ensure a session for each role.

    Args:
        context: Run context
        roles: Roles to prepare, in order
        driver: Browser driver (required unless manager is given)
        manager: Pre-built lifecycle manager
        gate: Pre-built reachability gate
        selector: Environment selector

    Returns:
        PreflightReport

    Raises:
        HostUnreachable: If the application does not answer; no session work is done
    """
    selector = selector or EnvironmentSelector(context.environments_dir)
    app_url = resolve_base_url(context, selector)
    settings = load_auth_settings(context, selector)

    logger.info("=" * 60)
    logger.info(f"E2E pre-flight: {context.environment} ({app_url})")
    logger.info("=" * 60)

    gate = gate or ReachabilityGate(timeout=settings.reachability_timeout)
    await gate.require(app_url)

    if manager is None:
        if driver is None:
            raise ValueError("run_preflight needs a driver or a manager")
        manager = SessionLifecycleManager.from_context(context, driver, settings)

    report = PreflightReport(environment=context.environment, app_url=app_url)
    for role in roles:
        report.outcomes.append(await manager.ensure_session(role, app_url, context.environment))

    for outcome in report.outcomes:
        status = "ready" if outcome.ready else "FAILED"
        logger.info(f"  {outcome.role.value}: {status} ({outcome.method or outcome.message})")
    if not report.any_ready:
        logger.error("No role has a usable session; tests requiring authentication will fail")
    elif not report.all_ready:
        logger.warning(f"Some roles are not authenticated: {', '.join(r.value for r in report.failed_roles)}")
    return report
