import json
import os
import threading

import pytest

from e2e_harness.exceptions import SessionCorrupt
from e2e_harness.session.store import SessionStore
from e2e_harness.types import Role, SessionArtifact


def test_path_layout(tmp_path):
    store = SessionStore(tmp_path / ".auth")
    assert store.path_for(Role.ADMIN, "staging") == tmp_path / ".auth" / "admin-staging.json"
    assert store.path_for("user", "local").name == "user-local.json"


def test_load_missing_returns_none(tmp_path):
    store = SessionStore(tmp_path)
    assert store.load(Role.USER, "local") is None
    assert not store.exists(Role.USER, "local")


def test_save_then_load(tmp_path, artifact):
    store = SessionStore(tmp_path / "nested" / ".auth")
    path = store.save(Role.ADMIN, "local", artifact)

    assert path.exists()
    loaded = store.load(Role.ADMIN, "local")
    assert loaded == artifact

    # Written with browser field names
    data = json.loads(path.read_text())
    assert data["cookies"][0]["httpOnly"] is True
    assert "localStorage" in data["origins"][0]


def test_roles_do_not_share_artifacts(tmp_path, artifact):
    store = SessionStore(tmp_path)
    store.save(Role.ADMIN, "local", artifact)

    assert store.load(Role.USER, "local") is None
    assert store.load(Role.ADMIN, "dev") is None


def test_save_overwrites_previous(tmp_path, artifact):
    store = SessionStore(tmp_path)
    store.save(Role.USER, "local", artifact)
    store.save(Role.USER, "local", SessionArtifact())

    assert store.load(Role.USER, "local") == SessionArtifact()
    leftovers = [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "",
        json.dumps({"cookies": []}),
        json.dumps({"cookies": [{"name": "a"}], "origins": []}),
        json.dumps([1, 2, 3]),
    ],
)
def test_corrupt_artifact_is_treated_as_absent(tmp_path, content):
    store = SessionStore(tmp_path)
    store.path_for(Role.USER, "local").write_text(content)

    assert store.load(Role.USER, "local") is None
    with pytest.raises(SessionCorrupt):
        store.read(Role.USER, "local")


def test_concurrent_readers_never_see_partial_artifact(tmp_path, artifact):
    store = SessionStore(tmp_path)
    store.save(Role.USER, "local", artifact)
    big = SessionArtifact.model_validate(
        {
            "cookies": [c.model_dump(by_alias=True) for c in artifact.cookies] * 200,
            "origins": [],
        }
    )
    seen = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            seen.append(store.read(Role.USER, "local"))

    t = threading.Thread(target=reader)
    t.start()
    try:
        for _ in range(20):
            store.save(Role.USER, "local", big)
            store.save(Role.USER, "local", artifact)
    finally:
        stop.set()
        t.join()

    assert seen
    assert all(a in (artifact, big) for a in seen)


def test_clear_by_role_and_environment(tmp_path, artifact):
    store = SessionStore(tmp_path)
    for role in Role:
        for env in ("local", "staging"):
            store.save(role, env, artifact)

    removed = store.clear([Role.USER], "local")
    assert [p.name for p in removed] == ["user-local.json"]

    removed = store.clear(environment="staging")
    assert sorted(p.name for p in removed) == ["admin-staging.json", "user-staging.json"]

    assert store.exists(Role.ADMIN, "local")
    assert store.clear(environment="nowhere") == []


def test_clear_missing_directory(tmp_path):
    assert SessionStore(tmp_path / "absent").clear() == []


def test_status(tmp_path, make_artifact):
    store = SessionStore(tmp_path)
    assert store.status(Role.ADMIN, "local").exists is False

    store.save(Role.ADMIN, "local", make_artifact(expires=1))
    status = store.status(Role.ADMIN, "local")
    assert status.exists and not status.corrupt
    assert status.cookie_count == 1
    assert status.expired
    assert status.updated_at is not None

    store.path_for(Role.USER, "local").write_text("garbage")
    assert store.status(Role.USER, "local").corrupt


def test_status_reports_token_expiry(tmp_path, artifact, make_jwt):
    store = SessionStore(tmp_path)
    store.save(Role.USER, "local", artifact)
    status = store.status(Role.USER, "local")
    assert status.token_count == 0
    assert status.token_expiry is None
    assert not status.token_expired

    state = artifact.to_storage_state()
    state["origins"][0]["localStorage"].append({"name": "id_token", "value": make_jwt(expires_in=120)})
    store.save(Role.ADMIN, "local", SessionArtifact.model_validate(state))
    status = store.status(Role.ADMIN, "local")
    assert status.token_count == 1
    assert status.token_expiry is not None
    assert status.token_expired


def test_saved_file_is_private(tmp_path, artifact):
    path = SessionStore(tmp_path).save(Role.USER, "local", artifact)
    assert os.stat(path).st_mode & 0o077 == 0
