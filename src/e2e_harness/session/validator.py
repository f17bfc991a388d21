"""
Session Validator - checks whether a saved session still grants access.
"""

import logging
from typing import Optional

from e2e_harness.browser import BrowserDriver
from e2e_harness.config import AuthSettings
from e2e_harness.exceptions import BrowserError, BrowserTimeout, NavigationError
from e2e_harness.tokens import all_tokens_expired
from e2e_harness.types import SessionArtifact, SessionVerdict

logger = logging.getLogger(__name__)

# Returned when the app itself cannot be reached. An infrastructure outage is
# not a session expiry; the reachability gate reports outages separately.
UNREACHABLE_REASON = "application unreachable; assuming session is valid"
TOKENS_EXPIRED_REASON = "all session tokens expired"


class SessionValidator:
    """
    Visits an authenticated-only route with a saved session.

    The verdict is recomputed on every call and never persisted.
    """

    def __init__(self, driver: BrowserDriver, settings: Optional[AuthSettings] = None) -> None:
        self.driver = driver
        self.settings = settings or AuthSettings()

    def protected_url(self, app_url: str) -> str:
        return f"{app_url.rstrip('/')}{self.settings.protected_path}"

    def classify(self, url: str) -> SessionVerdict:
        """Classify the URL the browser settled on"""
        s = self.settings
        if s.is_idp_url(url):
            return SessionVerdict(valid=False, reason="redirected to identity provider", final_url=url)
        if s.is_login_url(url):
            return SessionVerdict(valid=False, reason="redirected to login route", final_url=url)
        if s.is_authenticated_url(url):
            return SessionVerdict(valid=True, reason="authenticated route reached", final_url=url)
        return SessionVerdict(valid=False, reason="authenticated route not reached", final_url=url)

    async def check(self, artifact: SessionArtifact, app_url: str) -> SessionVerdict:
        """
        Load the artifact into a fresh context and navigate to the protected route.

        Args:
            artifact: Saved session
            app_url: Application base URL

        Returns:
            SessionVerdict; valid=True when the app is unreachable
        """
        target = self.protected_url(app_url)
        s = self.settings
        if s.token_precheck and all_tokens_expired(artifact):
            logger.info("Every token in the saved session has expired; skipping browser check")
            return SessionVerdict(valid=False, reason=TOKENS_EXPIRED_REASON, final_url=None)
        try:
            async with self.driver.open_context(
                storage_state=artifact.to_storage_state(), headless=True
            ) as page:
                await page.goto(target, timeout=s.validator_timeout)
                await page.pause(s.validator_settle)
                verdict = self.classify(page.url)
        except NavigationError as e:
            if e.unreachable:
                logger.warning(f"Could not reach {target} ({e}); {UNREACHABLE_REASON}")
                return SessionVerdict(valid=True, reason=UNREACHABLE_REASON, final_url=None)
            logger.debug(f"Validation navigation failed: {e}")
            return SessionVerdict(valid=False, reason=f"navigation failed: {e}", final_url=None)
        except BrowserTimeout as e:
            # The host answered slowly; only refused/unresolvable hosts are optimistic
            return SessionVerdict(valid=False, reason=f"timed out: {e}", final_url=None)
        except BrowserError as e:
            return SessionVerdict(valid=False, reason=f"browser error: {e}", final_url=None)

        logger.debug(f"Session verdict for {target}: {verdict.reason} ({verdict.final_url})")
        return verdict

    async def is_valid(self, artifact: SessionArtifact, app_url: str) -> bool:
        return (await self.check(artifact, app_url)).valid
