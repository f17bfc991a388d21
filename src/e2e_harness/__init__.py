"""
e2e-harness - session lifecycle and orchestration for browser e2e suites

Keeps a valid authenticated browser session per role and environment so
tests can start already signed in.
"""

__version__ = "0.1.0"

from e2e_harness.config import (
    AuthSettings,
    EnvironmentSelector,
    RunContext,
    load_run_context,
    resolve_base_url,
)
from e2e_harness.credentials import (
    CredentialManager,
    CredentialResolver,
    CredentialSource,
    EnvVarCredentialSource,
    FileCredentialSource,
)
from e2e_harness.exceptions import (
    AuthenticationError,
    BrowserError,
    BrowserTimeout,
    ConfigurationError,
    CredentialsUnavailable,
    EnvironmentNotFound,
    HarnessError,
    HostUnreachable,
    InteractiveLoginTimeout,
    InteractiveLoginUnavailable,
    NavigationError,
    SessionCorrupt,
    TokenDecodeError,
    TokenRequestError,
)
from e2e_harness.health import ReachabilityGate, ReachabilityResult
from e2e_harness.identity import IdentityProviderClient
from e2e_harness.oauth import OAuthTokenClient, TokenSet
from e2e_harness.reporting import SlackConfig, SlackReporter
from e2e_harness.session import (
    PreflightReport,
    SessionLifecycleManager,
    SessionOutcome,
    SessionState,
    SessionStore,
    SessionValidator,
    run_preflight,
)
from e2e_harness.types import (
    CredentialPair,
    EnvironmentConfig,
    Role,
    SessionArtifact,
    SessionVerdict,
    TestResult,
)

__all__ = [
    "__version__",
    # Types
    "Role",
    "SessionArtifact",
    "SessionVerdict",
    "CredentialPair",
    "EnvironmentConfig",
    "TestResult",
    # Exceptions
    "HarnessError",
    "HostUnreachable",
    "CredentialsUnavailable",
    "AuthenticationError",
    "InteractiveLoginTimeout",
    "InteractiveLoginUnavailable",
    "SessionCorrupt",
    "ConfigurationError",
    "EnvironmentNotFound",
    "BrowserError",
    "BrowserTimeout",
    "NavigationError",
    "TokenDecodeError",
    "TokenRequestError",
    # Configuration
    "AuthSettings",
    "EnvironmentSelector",
    "RunContext",
    "load_run_context",
    "resolve_base_url",
    # Credentials
    "CredentialManager",
    "CredentialResolver",
    "CredentialSource",
    "EnvVarCredentialSource",
    "FileCredentialSource",
    # Session
    "SessionStore",
    "SessionValidator",
    "SessionLifecycleManager",
    "SessionOutcome",
    "SessionState",
    "PreflightReport",
    "run_preflight",
    # Identity / reachability
    "IdentityProviderClient",
    "ReachabilityGate",
    "ReachabilityResult",
    # Tokens / reporting
    "OAuthTokenClient",
    "TokenSet",
    "SlackConfig",
    "SlackReporter",
]
