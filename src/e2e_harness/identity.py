"""
Identity Provider Client

Drives the OAuth/OIDC browser-redirect login of the identity provider in two
flavours: fully automated credential login (safe for CI) and a visible
browser in which a human signs in (local development only).
"""

import asyncio
import logging
from typing import Any, Optional

from pydantic import ValidationError

from e2e_harness.browser import BrowserDriver, BrowserPage
from e2e_harness.config import AuthSettings
from e2e_harness.exceptions import (
    AuthenticationError,
    BrowserError,
    BrowserTimeout,
    InteractiveLoginTimeout,
    InteractiveLoginUnavailable,
)
from e2e_harness.types import CredentialPair, Role, SessionArtifact

logger = logging.getLogger(__name__)

USERNAME_SELECTOR = 'input[name="username"], input[type="email"]'
PASSWORD_SELECTOR = 'input[name="password"], input[type="password"]'
CONTINUE_SELECTOR = 'button:has-text("Continue"), button[name="action"][value="default"]'
SUBMIT_SELECTOR = 'button[type="submit"], button[name="action"]'

ROLE_COLORS = {
    Role.ADMIN: "linear-gradient(135deg, #1976d2 0%, #1565c0 100%)",
    Role.USER: "linear-gradient(135deg, #7b1fa2 0%, #6a1b9a 100%)",
}
SUCCESS_COLOR = "linear-gradient(135deg, #2e7d32 0%, #1b5e20 100%)"

# Interactive waits are sliced so the banner can be re-applied after redirects
_INTERACTIVE_POLL = 5.0

_IDP_CONFIG_HINT = (
    "Identity provider configuration issue. Common fixes: "
    "1) ensure the app is running at {app_url}; "
    "2) check the provider's Allowed Callback/Logout/Web Origin URLs"
)


class IdentityProviderClient:
    """
    Obtains fresh session artifacts from the identity provider.

    Both operations return the exported session; persisting it is the
    caller's job (the lifecycle manager or the setup command).
    """

    def __init__(
        self,
        driver: BrowserDriver,
        settings: Optional[AuthSettings] = None,
        automated: bool = False,
    ) -> None:
        """
        Initialize the client.

        Args:
            driver: Browser automation capability
            settings: Routes, identity-provider domain and timeouts
            automated: True when no human can respond (CI); disables interactive login
        """
        self.driver = driver
        self.settings = settings or AuthSettings()
        self.automated = automated

    def _returned_to_app(self, url: str, app_url: str) -> bool:
        if self.settings.is_idp_url(url):
            return False
        return self.settings.is_authenticated_url(url) or url.startswith(app_url.rstrip("/"))

    @staticmethod
    def _to_artifact(role: Role, state: dict[str, Any]) -> SessionArtifact:
        try:
            return SessionArtifact.model_validate(state)
        except ValidationError as e:
            raise AuthenticationError(
                role.value, "Browser returned an unusable session state", str(e)
            ) from e

    async def login_headless(
        self,
        role: Role,
        app_url: str,
        credentials: CredentialPair,
    ) -> SessionArtifact:
        """
        Log in without human interaction.

        Navigates to the app, follows the redirect to the identity provider,
        fills username (and the optional continue step) and password, then
        waits for the redirect back to the app.

        Args:
            role: Role being logged in
            app_url: Application base URL
            credentials: Username/password for the role

        Returns:
            SessionArtifact exported from the authenticated context

        Raises:
            AuthenticationError: On any failure, with the low-level cause in ``detail``
        """
        role = Role(role)
        s = self.settings
        logger.info(f"Headless login: {role.value} ({credentials.username}) at {app_url}")

        last_url = app_url
        try:
            async with self.driver.open_context(headless=True) as page:
                await page.goto(app_url, timeout=s.navigation_timeout)

                try:
                    last_url = await page.wait_for_url(s.is_idp_url, timeout=s.idp_redirect_timeout)
                except BrowserTimeout as e:
                    raise AuthenticationError(
                        role.value, "Identity provider login page was not reached", str(e)
                    ) from e
                logger.debug(f"Reached identity provider: {last_url}")

                await page.fill(USERNAME_SELECTOR, credentials.username, timeout=s.field_timeout)
                await self._continue_if_needed(page)
                await page.fill(PASSWORD_SELECTOR, credentials.password, timeout=s.field_timeout)
                await page.click(SUBMIT_SELECTOR, timeout=s.field_timeout)

                try:
                    last_url = await page.wait_for_url(
                        lambda url: self._returned_to_app(url, app_url),
                        timeout=s.post_login_timeout,
                    )
                except BrowserTimeout as e:
                    reason = "Redirect back to the application was not observed"
                    if s.is_idp_url(page.url):
                        reason += "; still on the identity provider page (wrong credentials?)"
                    raise AuthenticationError(role.value, reason, str(e)) from e

                logger.info(f"Authenticated {role.value} -> {last_url}")
                state = await page.storage_state()
        except AuthenticationError:
            raise
        except BrowserTimeout as e:
            raise AuthenticationError(role.value, "Headless login timed out", str(e)) from e
        except BrowserError as e:
            raise AuthenticationError(role.value, "Headless login failed", str(e)) from e

        return self._to_artifact(role, state)

    async def _continue_if_needed(self, page: BrowserPage) -> None:
        """Identifier-first providers ask for the username before showing the password"""
        if await page.is_present(PASSWORD_SELECTOR):
            return
        if await page.is_present(CONTINUE_SELECTOR):
            logger.debug("Clicking identity provider continue step")
            await page.click(CONTINUE_SELECTOR, timeout=self.settings.field_timeout)
            await page.pause(0.5)

    async def login_interactive(self, role: Role, app_url: str) -> SessionArtifact:
        """
        Open a visible browser and wait for a human to sign in.

        Any sign-in method the provider offers works (social login, SSO,
        password). Completes when the app reaches an authenticated-only route.

        Raises:
            InteractiveLoginUnavailable: In an automated context
            InteractiveLoginTimeout: If nobody signs in before the deadline
            AuthenticationError: On any other failure
        """
        role = Role(role)
        if self.automated:
            raise InteractiveLoginUnavailable(role.value)

        s = self.settings
        title = "E2E Authentication Setup"
        message = f"Sign in as: {role.label}. This window closes automatically when done."
        logger.info(f"Opening browser for {role.value} login at {app_url}")

        last_url = app_url
        try:
            async with self.driver.open_context(headless=False) as page:
                await page.goto(app_url, timeout=s.navigation_timeout)
                await page.show_banner(title, message, ROLE_COLORS[role])
                logger.info(f"Waiting for {role.value} login (up to {s.interactive_timeout / 60:.0f} minutes)")

                last_url = await self._wait_for_human(page, role, app_url, title, message)

                await page.show_banner("Login successful", "Saving session, window closing...", SUCCESS_COLOR)
                await page.pause(1.5)
                state = await page.storage_state()
        except AuthenticationError:
            raise
        except BrowserError as e:
            detail = str(e)
            if "state" in detail or "error=" in last_url:
                detail = f"{detail}. {_IDP_CONFIG_HINT.format(app_url=app_url)}"
            raise AuthenticationError(role.value, "Interactive login failed", detail) from e

        logger.info(f"Authenticated {role.value} interactively -> {last_url}")
        return self._to_artifact(role, state)

    async def _wait_for_human(
        self, page: BrowserPage, role: Role, app_url: str, title: str, message: str
    ) -> str:
        s = self.settings
        loop = asyncio.get_running_loop()
        deadline = loop.time() + s.interactive_timeout
        seen_url = page.url

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise InteractiveLoginTimeout(role.value, s.interactive_timeout)
            try:
                return await page.wait_for_url(
                    s.is_authenticated_url, timeout=min(_INTERACTIVE_POLL, remaining)
                )
            except BrowserTimeout:
                current = page.url
                if "error=" in current:
                    raise AuthenticationError(
                        role.value,
                        "Identity provider returned an error",
                        _IDP_CONFIG_HINT.format(app_url=app_url),
                    ) from None
                if current != seen_url:
                    seen_url = current
                    await page.show_banner(title, message, ROLE_COLORS[role])
