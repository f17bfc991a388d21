"""
Pytest configuration and fixtures
"""

import asyncio
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional, Union

import jwt
import pytest

from e2e_harness.config import AuthSettings, RunContext
from e2e_harness.exceptions import BrowserTimeout
from e2e_harness.identity import SUBMIT_SELECTOR
from e2e_harness.types import SessionArtifact

APP_URL = "http://app.test"
IDP_URL = "https://tenant.auth0.com/u/login?state=abc"
JWT_KEY = "e2e-harness-test-signing-key-0123456789"

# =============================================================================
# Scripted Browser
# =============================================================================


class FakePage:
    """
    Page whose navigation is scripted.

    routes: goto target -> landing URL, or an exception to raise
    after_submit: URL the page lands on when the submit button is clicked
    url_sequence: URLs the page moves through, one per wait_for_url call
    present: selectors reported by is_present
    missing: selectors whose fill/click time out
    """

    def __init__(
        self,
        routes: Optional[dict[str, Union[str, Exception]]] = None,
        after_submit: Optional[str] = None,
        url_sequence: Optional[list[str]] = None,
        present: Optional[set[str]] = None,
        missing: Optional[set[str]] = None,
        state: Optional[dict[str, Any]] = None,
    ):
        self.url = "about:blank"
        self.routes = routes or {}
        self.after_submit = after_submit
        self.url_sequence = list(url_sequence or [])
        self.present = present or set()
        self.missing = missing or set()
        self.state = state
        self.filled: dict[str, str] = {}
        self.clicked: list[str] = []
        self.banners: list[str] = []
        self.visited: list[str] = []

    async def goto(self, url: str, timeout: float) -> None:
        self.visited.append(url)
        target = self.routes.get(url, url)
        if isinstance(target, Exception):
            raise target
        self.url = target

    async def wait_for_url(self, predicate, timeout: float) -> str:
        if self.url_sequence:
            self.url = self.url_sequence.pop(0)
        if predicate(self.url):
            return self.url
        await asyncio.sleep(min(timeout, 0.01))
        raise BrowserTimeout(f"Timeout {timeout}s exceeded waiting for URL (at {self.url})")

    async def fill(self, selector: str, value: str, timeout: float) -> None:
        if selector in self.missing:
            raise BrowserTimeout(f"waiting for locator('{selector}')")
        self.filled[selector] = value

    async def click(self, selector: str, timeout: float) -> None:
        if selector in self.missing:
            raise BrowserTimeout(f"waiting for locator('{selector}')")
        self.clicked.append(selector)
        if selector == SUBMIT_SELECTOR and self.after_submit:
            self.url = self.after_submit

    async def is_present(self, selector: str) -> bool:
        return selector in self.present

    async def storage_state(self) -> dict[str, Any]:
        if self.state is not None:
            return self.state
        return artifact_state(domain="app.test")

    async def show_banner(self, title: str, message: str, color: str) -> None:
        self.banners.append(title)

    async def pause(self, seconds: float) -> None:
        pass


class FakeDriver:
    """Yields the scripted page; records every context it opens"""

    def __init__(self, page: Optional[FakePage] = None):
        self.page = page or FakePage()
        self.opened: list[dict[str, Any]] = []
        self.closed = 0

    @asynccontextmanager
    async def open_context(self, storage_state=None, headless: bool = True):
        self.opened.append({"storage_state": storage_state, "headless": headless})
        try:
            yield self.page
        finally:
            self.closed += 1


def artifact_state(domain: str = "app.test", expires: float = -1) -> dict[str, Any]:
    return {
        "cookies": [
            {
                "name": "appSession",
                "value": "opaque",
                "domain": domain,
                "path": "/",
                "expires": expires,
                "httpOnly": True,
                "secure": True,
                "sameSite": "Lax",
            }
        ],
        "origins": [
            {
                "origin": f"https://{domain}",
                "localStorage": [{"name": "token", "value": "t"}],
            }
        ],
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def anyio_backend():
    """The harness is built on stdlib asyncio"""
    return "asyncio"


@pytest.fixture
def app_url():
    return APP_URL


@pytest.fixture
def idp_url():
    return IDP_URL


@pytest.fixture
def artifact():
    """A complete session artifact"""
    return SessionArtifact.model_validate(artifact_state())


@pytest.fixture
def settings():
    """AuthSettings with waits short enough for tests"""
    return AuthSettings(
        idp_domain="tenant.auth0.com",
        interactive_timeout=0.05,
        validator_settle=0,
    )


@pytest.fixture
def fake_page_factory():
    return FakePage


@pytest.fixture
def fake_driver_factory():
    return FakeDriver


@pytest.fixture
def context(tmp_path: Path) -> RunContext:
    """Interactive (non-CI) run context rooted in a temp project"""
    return RunContext(environment="local", automated=False, project_root=tmp_path)


@pytest.fixture
def ci_context(context: RunContext) -> RunContext:
    from dataclasses import replace

    return replace(context, automated=True)


@pytest.fixture
def make_artifact():
    """Build an artifact; expires is the cookie expiry (epoch seconds, -1 for session cookies)"""

    def _make(domain: str = "app.test", expires: float = -1) -> SessionArtifact:
        return SessionArtifact.model_validate(artifact_state(domain, expires))

    return _make


@pytest.fixture
def make_jwt():
    """HS256 token expiring expires_in seconds from now (no exp claim when None)"""

    def _make(expires_in: Optional[float] = 3600, **claims: Any) -> str:
        if expires_in is not None:
            claims["exp"] = int(time.time() + expires_in)
        return jwt.encode(claims, JWT_KEY, algorithm="HS256")

    return _make
