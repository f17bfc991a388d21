import json

import pytest

from e2e_harness.config import (
    DEFAULT_BASE_URL,
    AuthSettings,
    EnvironmentSelector,
    RunContext,
    is_truthy,
    load_auth_settings,
    load_run_context,
    resolve_base_url,
)
from e2e_harness.exceptions import ConfigurationError, EnvironmentNotFound


def _config(name="dev", **overrides):
    config = {
        "name": name,
        "baseUrls": {"web": "https://dev.example.com", "api": "https://api.dev.example.com"},
        "auth0": {"domain": "dev-tenant.us.auth0.com", "clientId": "client-123"},
        "timeouts": {"api": 30000, "pageLoad": 45000},
    }
    config.update(overrides)
    return config


@pytest.fixture
def env_dir(tmp_path):
    d = tmp_path / "config" / "environments"
    d.mkdir(parents=True)
    return d


def _write(env_dir, filename, config):
    (env_dir / f"{filename}.json").write_text(json.dumps(config))


# =============================================================================
# EnvironmentSelector
# =============================================================================


def test_load_environment(env_dir):
    _write(env_dir, "dev", _config())
    selector = EnvironmentSelector(env_dir)

    config = selector.load_environment("dev")

    assert config.base_urls.web == "https://dev.example.com"
    assert config.auth0.client_id == "client-123"
    assert config.timeouts.page_load == 45000
    assert selector.load_environment("dev") is config


def test_environment_config_is_immutable(env_dir):
    _write(env_dir, "dev", _config())
    config = EnvironmentSelector(env_dir).load_environment("dev")

    with pytest.raises(Exception):
        config.name = "prod"


def test_missing_environment_lists_available(env_dir):
    _write(env_dir, "staging", _config("staging"))
    _write(env_dir, "local", _config("local"))

    with pytest.raises(EnvironmentNotFound) as exc_info:
        EnvironmentSelector(env_dir).load_environment("prod")

    assert exc_info.value.available == ["local", "staging"]
    assert "prod.json" in str(exc_info.value)


def test_name_mismatch_is_rejected(env_dir):
    _write(env_dir, "dev", _config("staging"))

    with pytest.raises(ConfigurationError, match='should be "dev"'):
        EnvironmentSelector(env_dir).load_environment("dev")


@pytest.mark.parametrize(
    "overrides",
    [
        {"baseUrls": {"web": "https://dev.example.com"}},
        {"auth0": {"domain": "dev.auth0.com"}},
        {"timeouts": {"api": "slow"}},
        {"name": ""},
    ],
)
def test_incomplete_config_is_rejected(env_dir, overrides):
    _write(env_dir, "dev", _config(**overrides))

    with pytest.raises(ConfigurationError):
        EnvironmentSelector(env_dir).load_environment("dev")


def test_invalid_json(env_dir):
    (env_dir / "dev.json").write_text("{")

    with pytest.raises(ConfigurationError):
        EnvironmentSelector(env_dir).load_environment("dev")


def test_available_environments_order(env_dir):
    for name in ("zeta", "staging", "local", "alpha"):
        _write(env_dir, name, _config(name))

    selector = EnvironmentSelector(env_dir)
    assert selector.available_environments() == ["local", "staging", "alpha", "zeta"]
    assert selector.environment_exists("alpha")
    assert not selector.environment_exists("prod")


# =============================================================================
# RunContext
# =============================================================================


@pytest.mark.parametrize(
    "value, expected",
    [(None, False), ("", False), ("0", False), ("false", False), ("No", False), ("1", True), ("true", True)],
)
def test_is_truthy(value, expected):
    assert is_truthy(value) is expected


def test_load_run_context_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("E2E_ENVIRONMENT", "staging")
    monkeypatch.setenv("CI", "true")
    monkeypatch.setenv("E2E_BASE_URL", "http://override.test")
    monkeypatch.setenv("E2E_AUTH_DIR", str(tmp_path / "sessions"))
    monkeypatch.delenv("E2E_LOG_LEVEL", raising=False)

    context = load_run_context(tmp_path)

    assert context.environment == "staging"
    assert context.automated is True
    assert context.base_url_override == "http://override.test"
    assert context.session_dir == tmp_path / "sessions"
    assert context.credential_dir == tmp_path / "credentials"
    assert context.log_level == "INFO"


def test_load_run_context_reads_dotenv_without_overriding(tmp_path, monkeypatch):
    monkeypatch.delenv("CI", raising=False)
    monkeypatch.setenv("E2E_ENVIRONMENT", "dev")
    (tmp_path / ".env").write_text("E2E_ENVIRONMENT=staging\nCI=1\n")

    context = load_run_context(tmp_path)

    assert context.environment == "dev"
    assert context.automated is True


def test_explicit_environment_wins(tmp_path, monkeypatch):
    monkeypatch.setenv("E2E_ENVIRONMENT", "dev")
    assert load_run_context(tmp_path, env_paths=[], environment="local").environment == "local"


def test_resolve_base_url(tmp_path, env_dir):
    _write(env_dir, "dev", _config())
    context = RunContext(environment="dev", project_root=tmp_path)

    assert resolve_base_url(context) == "https://dev.example.com"
    assert resolve_base_url(RunContext(environment="nope", project_root=tmp_path)) == DEFAULT_BASE_URL
    override = RunContext(environment="dev", project_root=tmp_path, base_url_override="http://x.test/")
    assert resolve_base_url(override) == "http://x.test"


# =============================================================================
# AuthSettings
# =============================================================================


def test_auth_settings_from_environment(tmp_path, env_dir):
    _write(env_dir, "dev", _config())
    settings = load_auth_settings(RunContext(environment="dev", project_root=tmp_path))

    assert settings.idp_domain == "dev-tenant.us.auth0.com"
    assert settings.navigation_timeout == 45
    assert load_auth_settings(RunContext(environment="nope", project_root=tmp_path)) == AuthSettings()


def test_token_precheck_flag_reaches_auth_settings(tmp_path, env_dir, monkeypatch):
    _write(env_dir, "dev", _config())
    monkeypatch.setenv("E2E_TOKEN_PRECHECK", "1")

    context = load_run_context(tmp_path, env_paths=[], environment="dev")

    assert context.token_precheck is True
    assert load_auth_settings(context).token_precheck is True
    assert load_auth_settings(RunContext(environment="dev", project_root=tmp_path)).token_precheck is False


def test_url_classification():
    s = AuthSettings(idp_domain="login.example.com")

    assert s.is_idp_url("https://login.example.com/authorize?x=1")
    assert s.is_idp_url("https://tenant.eu.auth0.com/u/login")
    assert not s.is_idp_url("https://app.example.com/chats")
    assert not s.is_idp_url("https://evil-auth0.com.example.net/")

    assert s.is_authenticated_url("https://app.example.com/chats/42")
    assert not s.is_authenticated_url("https://app.example.com/")
    assert not s.is_authenticated_url("https://login.example.com/chats")

    assert s.is_login_url("https://app.example.com/login")
    assert s.is_login_url("https://login.example.com/u/login")
    assert not s.is_login_url("https://app.example.com/chats")
