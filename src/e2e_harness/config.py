"""
Environment and run configuration

Loads named environment files (``config/environments/<name>.json``) and
builds the per-invocation run context from environment variables and
``.env`` files.
"""

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import ValidationError

from e2e_harness.exceptions import ConfigurationError, EnvironmentNotFound
from e2e_harness.types import EnvironmentConfig

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = "local"
DEFAULT_BASE_URL = "http://localhost:3000"
PREFERRED_ENVIRONMENTS = ["local", "dev", "sandbox", "staging"]

ENVIRONMENT_VAR = "E2E_ENVIRONMENT"
BASE_URL_VAR = "E2E_BASE_URL"
AUTOMATED_VAR = "CI"

_FALSE_VALUES = {"", "0", "false", "no", "off"}


class EnvironmentSelector:
    """Loads, validates and caches environment configurations"""

    def __init__(self, config_dir: Path | str = Path("config") / "environments"):
        self.config_dir = Path(config_dir).resolve()
        self._cache: dict[str, EnvironmentConfig] = {}

    def load_environment(self, name: str) -> EnvironmentConfig:
        """
        Load environment configuration.

        Args:
            name: Environment name (e.g. "local", "staging")

        Returns:
            Validated, immutable EnvironmentConfig

        Raises:
            EnvironmentNotFound: If the file does not exist
            ConfigurationError: If the file is malformed or misnamed
        """
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        config_path = self.config_dir / f"{name}.json"
        if not config_path.exists():
            raise EnvironmentNotFound(name, str(config_path), self.available_environments())

        try:
            raw = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load environment config for '{name}': {e}") from e

        config = self._validate(raw, name)
        self._cache[name] = config
        logger.debug(f"Loaded environment '{name}' from {config_path}")
        return config

    def _validate(self, raw: object, name: str) -> EnvironmentConfig:
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Invalid config for {name}: expected a JSON object")
        if not raw.get("name"):
            raise ConfigurationError(f'Invalid config for {name}: missing "name" field')
        if raw["name"] != name:
            raise ConfigurationError(
                f'Invalid config for {name}: "name" field is "{raw["name"]}" but should be "{name}"'
            )

        base_urls = raw.get("baseUrls")
        if not isinstance(base_urls, dict):
            raise ConfigurationError(f'Invalid config for {name}: missing "baseUrls" field')
        if not base_urls.get("web") or not base_urls.get("api"):
            raise ConfigurationError(
                f'Invalid config for {name}: "baseUrls" must contain "web" and "api"'
            )

        auth0 = raw.get("auth0")
        if not isinstance(auth0, dict) or not auth0.get("domain") or not auth0.get("clientId"):
            raise ConfigurationError(f'Invalid config for {name}: missing or incomplete "auth0" field')

        timeouts = raw.get("timeouts")
        if not isinstance(timeouts, dict) or not isinstance(timeouts.get("api"), (int, float)):
            raise ConfigurationError(f'Invalid config for {name}: missing or invalid "timeouts" field')

        try:
            return EnvironmentConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid config for {name}: {e}") from e

    def available_environments(self) -> list[str]:
        """Environment files present in the config directory, in preferred order"""
        if not self.config_dir.is_dir():
            return list(PREFERRED_ENVIRONMENTS)

        found = [p.stem for p in self.config_dir.glob("*.json")]
        ordered = [e for e in PREFERRED_ENVIRONMENTS if e in found]
        ordered.extend(sorted(e for e in found if e not in PREFERRED_ENVIRONMENTS))
        return ordered

    def environment_exists(self, name: str) -> bool:
        return (self.config_dir / f"{name}.json").exists()

    def clear_cache(self) -> None:
        self._cache.clear()


@dataclass(frozen=True)
class RunContext:
    """Per-invocation settings threaded through the session machinery"""

    environment: str = DEFAULT_ENVIRONMENT
    automated: bool = False
    base_url_override: Optional[str] = None
    project_root: Path = field(default_factory=Path.cwd)
    auth_dir: Optional[Path] = None
    credentials_dir: Optional[Path] = None
    config_dir: Optional[Path] = None
    results_dir: Optional[Path] = None
    log_level: str = "INFO"
    token_precheck: bool = False

    @property
    def session_dir(self) -> Path:
        return self.auth_dir or self.project_root / ".auth"

    @property
    def credential_dir(self) -> Path:
        return self.credentials_dir or self.project_root / "credentials"

    @property
    def environments_dir(self) -> Path:
        return self.config_dir or self.project_root / "config" / "environments"

    @property
    def result_dir(self) -> Path:
        return self.results_dir or self.project_root / "results"

    def with_environment(self, environment: str) -> "RunContext":
        return replace(self, environment=environment)


def is_truthy(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() not in _FALSE_VALUES


def _optional_path(value: Optional[str]) -> Optional[Path]:
    return Path(value).expanduser() if value else None


def load_run_context(
    project_root: Optional[Path] = None,
    env_paths: Optional[list[Path]] = None,
    environment: Optional[str] = None,
) -> RunContext:
    """
    Build the run context from environment variables.

    Args:
        project_root: Root for relative state directories (default: cwd)
        env_paths: .env files to load (in order); real env vars win
        environment: Explicit environment name overriding E2E_ENVIRONMENT

    Returns:
        RunContext
    """
    root = (project_root or Path.cwd()).resolve()
    if env_paths is None:
        env_paths = [root / ".env"]

    for path in env_paths:
        if path.exists():
            load_dotenv(path, override=False)

    return RunContext(
        environment=environment or os.getenv(ENVIRONMENT_VAR) or DEFAULT_ENVIRONMENT,
        automated=is_truthy(os.getenv(AUTOMATED_VAR)),
        base_url_override=os.getenv(BASE_URL_VAR) or None,
        project_root=root,
        auth_dir=_optional_path(os.getenv("E2E_AUTH_DIR")),
        credentials_dir=_optional_path(os.getenv("E2E_CREDENTIALS_DIR")),
        config_dir=_optional_path(os.getenv("E2E_CONFIG_DIR")),
        results_dir=_optional_path(os.getenv("E2E_RESULTS_DIR")),
        log_level=os.getenv("E2E_LOG_LEVEL", "INFO"),
        token_precheck=is_truthy(os.getenv("E2E_TOKEN_PRECHECK")),
    )


def resolve_base_url(context: RunContext, selector: Optional[EnvironmentSelector] = None) -> str:
    """E2E_BASE_URL override, then the environment's web URL, then localhost"""
    if context.base_url_override:
        return context.base_url_override.rstrip("/")

    selector = selector or EnvironmentSelector(context.environments_dir)
    try:
        return selector.load_environment(context.environment).base_urls.web.rstrip("/")
    except EnvironmentNotFound:
        logger.warning(
            f"No configuration for environment '{context.environment}', using {DEFAULT_BASE_URL}"
        )
        return DEFAULT_BASE_URL


@dataclass(frozen=True)
class AuthSettings:
    """Routes, identity-provider domain and bounded waits (seconds)"""

    protected_path: str = "/chats"
    authenticated_markers: tuple[str, ...] = ("/chats", "/chat", "/beta")
    login_markers: tuple[str, ...] = ("/login", "/signin", "/authorize")
    idp_domain: str = "auth0.com"

    navigation_timeout: float = 30.0
    idp_redirect_timeout: float = 15.0
    field_timeout: float = 10.0
    post_login_timeout: float = 30.0
    interactive_timeout: float = 600.0
    validator_timeout: float = 8.0
    validator_settle: float = 1.5
    reachability_timeout: float = 5.0

    # Skip the browser check when every token in the artifact has expired
    token_precheck: bool = False

    @classmethod
    def for_environment(cls, config: EnvironmentConfig, **overrides) -> "AuthSettings":
        settings = cls(
            idp_domain=config.auth0.domain,
            navigation_timeout=config.timeouts.page_load / 1000,
        )
        return replace(settings, **overrides) if overrides else settings

    def is_idp_url(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return False
        domains = {self.idp_domain.lower(), "auth0.com"}
        return any(host == d or host.endswith("." + d) for d in domains)

    def is_authenticated_url(self, url: str) -> bool:
        if self.is_idp_url(url):
            return False
        path = urlparse(url).path
        return any(path.startswith(m) for m in self.authenticated_markers)

    def is_login_url(self, url: str) -> bool:
        if self.is_idp_url(url):
            return True
        path = urlparse(url).path
        return any(path.startswith(m) for m in self.login_markers)


def load_auth_settings(context: RunContext, selector: Optional[EnvironmentSelector] = None) -> AuthSettings:
    """AuthSettings for the context's environment, defaults when it has no config file"""
    selector = selector or EnvironmentSelector(context.environments_dir)
    try:
        settings = AuthSettings.for_environment(selector.load_environment(context.environment))
    except EnvironmentNotFound:
        settings = AuthSettings()
    return replace(settings, token_precheck=True) if context.token_precheck else settings
