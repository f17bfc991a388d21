import json
import logging
import os
import stat

import pytest

from e2e_harness.credentials import (
    CredentialManager,
    CredentialResolver,
    EnvVarCredentialSource,
    FileCredentialSource,
    missing_credentials_hint,
)
from e2e_harness.exceptions import CredentialsUnavailable
from e2e_harness.types import AccountCredentials, CredentialPair, Role

REGULAR = AccountCredentials(username="user@example.com", password="user-pass")
ELEVATED = AccountCredentials(username="admin@example.com", password="admin-pass")


@pytest.fixture
def manager(tmp_path):
    return CredentialManager(tmp_path / "credentials")


# =============================================================================
# CredentialManager
# =============================================================================


def test_save_and_load(manager):
    path = manager.save("dev", REGULAR, ELEVATED)

    assert path.name == "dev.json"
    assert manager.load("dev") == REGULAR
    assert manager.load("dev", elevated=True) == ELEVATED

    data = json.loads(path.read_text())
    assert set(data) == {"regular", "elevated", "lastUpdated"}


def test_file_is_owner_only(manager):
    path = manager.save("dev", REGULAR)

    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert stat.S_IMODE(os.stat(path.parent).st_mode) == 0o700


def test_missing_file_names_setup_command(manager):
    with pytest.raises(CredentialsUnavailable) as exc_info:
        manager.load("staging")
    assert "credentials setup --env staging" in str(exc_info.value)


def test_missing_elevated_entry(manager):
    manager.save("dev", REGULAR)

    with pytest.raises(CredentialsUnavailable):
        manager.load("dev", elevated=True)
    assert manager.has_credentials("dev")
    assert not manager.has_elevated_credentials("dev")


def test_malformed_file(manager):
    manager.credentials_dir.mkdir(parents=True)
    manager.path_for("dev").write_text("{}")

    with pytest.raises(CredentialsUnavailable):
        manager.load("dev")


def test_loose_permissions_warn(manager, caplog):
    path = manager.save("dev", REGULAR)
    os.chmod(path, 0o644)

    with caplog.at_level(logging.WARNING):
        manager.load("dev")
    assert "chmod 600" in caplog.text


def test_clear(manager):
    manager.save("dev", REGULAR)
    assert manager.clear("dev")
    assert not manager.has_credentials("dev")
    assert not manager.clear("dev")


@pytest.mark.parametrize(
    "password, masked",
    [("password", "p******d"), ("abc", "a*c"), ("ab", "***"), ("", "***")],
)
def test_mask_password(password, masked):
    assert CredentialManager.mask_password(password) == masked


def test_credential_pair_never_shows_password():
    pair = CredentialPair(username="u@example.com", password="hunter22", source="env")
    assert "hunter22" not in repr(pair)
    assert "hunter22" not in str(pair)
    assert pair.masked() == "u@example.com / h******2"


# =============================================================================
# Sources and Resolver
# =============================================================================


@pytest.mark.anyio
async def test_env_source_reads_role_variables():
    environ = {"E2E_ADMIN_EMAIL": "a@example.com", "E2E_ADMIN_PASSWORD": "pw"}
    source = EnvVarCredentialSource(environ)

    pair = await source.lookup(Role.ADMIN, "local")
    assert pair.username == "a@example.com"
    assert pair.source == "env"
    assert await source.lookup(Role.USER, "local") is None


@pytest.mark.anyio
async def test_env_source_requires_both_variables():
    source = EnvVarCredentialSource({"E2E_USER_EMAIL": "u@example.com"})
    assert await source.lookup(Role.USER, "local") is None


@pytest.mark.anyio
async def test_file_source_uses_elevated_entry_for_admin(manager):
    manager.save("local", REGULAR, ELEVATED)
    source = FileCredentialSource(manager)

    assert (await source.lookup(Role.ADMIN, "local")).username == "admin@example.com"
    assert (await source.lookup(Role.USER, "local")).username == "user@example.com"
    assert await source.lookup(Role.USER, "dev") is None


@pytest.mark.anyio
async def test_env_variables_take_priority_over_file(manager):
    manager.save("local", REGULAR, ELEVATED)
    environ = {"E2E_USER_EMAIL": "env@example.com", "E2E_USER_PASSWORD": "env-pass"}
    resolver = CredentialResolver.default(manager.credentials_dir, environ)

    pair = await resolver.resolve(Role.USER, "local")
    assert pair.username == "env@example.com"

    pair = await resolver.resolve(Role.ADMIN, "local")
    assert pair.username == "admin@example.com"
    assert pair.source == "file"


@pytest.mark.anyio
async def test_resolver_returns_none_when_nothing_found(tmp_path):
    resolver = CredentialResolver.default(tmp_path / "none", environ={})
    assert await resolver.resolve(Role.USER, "local") is None


class _Broken:
    name = "broken"

    async def lookup(self, role, environment):
        raise RuntimeError("vault offline")


class _Fixed:
    name = "fixed"

    async def lookup(self, role, environment):
        return CredentialPair(username="v@example.com", password="pw", source=self.name)


@pytest.mark.anyio
async def test_register_appends_and_failing_source_is_skipped():
    resolver = CredentialResolver()
    result = resolver.register(_Broken()).register(_Fixed())

    assert result is resolver
    assert [s.name for s in resolver.sources] == ["broken", "fixed"]
    pair = await resolver.resolve(Role.USER, "local")
    assert pair.source == "fixed"


def test_missing_credentials_hint():
    hint = missing_credentials_hint(Role.USER, "staging")
    assert "E2E_USER_EMAIL" in hint
    assert "E2E_USER_PASSWORD" in hint
    assert "credentials setup --env staging" in hint
