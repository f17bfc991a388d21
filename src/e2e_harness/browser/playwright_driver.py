"""
Playwright implementation of the browser automation capability
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeout

from e2e_harness.browser.base import UrlPredicate
from e2e_harness.exceptions import BrowserError, BrowserTimeout, NavigationError

logger = logging.getLogger(__name__)

# Chromium/Firefox/WebKit network error markers meaning "nothing answered"
UNREACHABLE_MARKERS = (
    "ERR_CONNECTION_REFUSED",
    "ERR_NAME_NOT_RESOLVED",
    "ERR_ADDRESS_UNREACHABLE",
    "ERR_INTERNET_DISCONNECTED",
    "NS_ERROR_CONNECTION_REFUSED",
    "NS_ERROR_UNKNOWN_HOST",
    "Could not connect to server",
)

_BANNER_SCRIPT = """
({ title, message, color }) => {
  let banner = document.getElementById("e2e-auth-banner");
  if (!banner) {
    banner = document.createElement("div");
    banner.id = "e2e-auth-banner";
    document.body.prepend(banner);
  }
  banner.style.cssText = `
    position: fixed; top: 0; left: 0; right: 0;
    background: ${color}; color: white; padding: 32px; text-align: center;
    z-index: 999999; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
    box-shadow: 0 4px 20px rgba(0,0,0,0.4);
  `;
  banner.innerHTML = "";
  const heading = document.createElement("div");
  heading.style.cssText = "font-size: 26px; font-weight: bold; margin-bottom: 10px;";
  heading.textContent = title;
  const body = document.createElement("div");
  body.style.cssText = "font-size: 17px;";
  body.textContent = message;
  banner.append(heading, body);
}
"""


def is_unreachable_error(message: str) -> bool:
    return any(marker in message for marker in UNREACHABLE_MARKERS)


def _ms(seconds: float) -> float:
    return seconds * 1000


def _first_line(error: Exception) -> str:
    lines = str(error).splitlines()
    return lines[0] if lines else type(error).__name__


class PlaywrightPage:
    """BrowserPage backed by a Playwright page"""

    def __init__(self, page: Page):
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str, timeout: float) -> None:
        try:
            await self._page.goto(url, wait_until="domcontentloaded", timeout=_ms(timeout))
        except PlaywrightTimeout as e:
            raise BrowserTimeout(f"Navigation to {url} timed out after {timeout:.0f}s") from e
        except PlaywrightError as e:
            message = _first_line(e)
            raise NavigationError(
                f"Navigation to {url} failed: {message}",
                unreachable=is_unreachable_error(message),
            ) from e

    async def wait_for_url(self, predicate: UrlPredicate, timeout: float) -> str:
        try:
            await self._page.wait_for_url(predicate, timeout=_ms(timeout))
        except PlaywrightTimeout as e:
            raise BrowserTimeout(
                f"Expected URL not reached within {timeout:.0f}s (at {self._page.url})"
            ) from e
        except PlaywrightError as e:
            raise NavigationError(f"Waiting for URL failed: {e}") from e
        return self._page.url

    async def fill(self, selector: str, value: str, timeout: float) -> None:
        try:
            await self._page.locator(selector).first.fill(value, timeout=_ms(timeout))
        except PlaywrightTimeout as e:
            raise BrowserTimeout(f"Field '{selector}' not found within {timeout:.0f}s") from e
        except PlaywrightError as e:
            raise BrowserError(f"Could not fill '{selector}': {e}") from e

    async def click(self, selector: str, timeout: float) -> None:
        try:
            await self._page.locator(selector).first.click(timeout=_ms(timeout))
        except PlaywrightTimeout as e:
            raise BrowserTimeout(f"Element '{selector}' not clickable within {timeout:.0f}s") from e
        except PlaywrightError as e:
            raise BrowserError(f"Could not click '{selector}': {e}") from e

    async def is_present(self, selector: str) -> bool:
        try:
            return await self._page.locator(selector).count() > 0
        except PlaywrightError:
            return False

    async def storage_state(self) -> dict[str, Any]:
        try:
            return await self._page.context.storage_state()
        except PlaywrightError as e:
            raise BrowserError(f"Could not export storage state: {_first_line(e)}") from e

    async def show_banner(self, title: str, message: str, color: str) -> None:
        try:
            await self._page.evaluate(
                _BANNER_SCRIPT, {"title": title, "message": message, "color": color}
            )
        except PlaywrightError as e:
            # Banner is cosmetic; the page may be mid-navigation
            logger.debug(f"Could not render banner: {e}")

    async def pause(self, seconds: float) -> None:
        try:
            await self._page.wait_for_timeout(_ms(seconds))
        except PlaywrightError as e:
            raise BrowserError(f"Page closed while waiting: {_first_line(e)}") from e


class PlaywrightDriver:
    """
    BrowserDriver launching a fresh Playwright browser per context.

    Usage:
        driver = PlaywrightDriver()
        async with driver.open_context(storage_state=state) as page:
            await page.goto("http://localhost:3000/chats", timeout=8)
    """

    def __init__(self, browser_type: str = "chromium", slow_mo: float = 50):
        self.browser_type = browser_type
        self.slow_mo = slow_mo

    @asynccontextmanager
    async def open_context(
        self,
        storage_state: Optional[dict[str, Any]] = None,
        headless: bool = True,
    ) -> AsyncIterator[PlaywrightPage]:
        async with async_playwright() as playwright:
            launcher = getattr(playwright, self.browser_type)
            try:
                browser = await launcher.launch(
                    headless=headless,
                    slow_mo=0 if headless else self.slow_mo,
                )
            except PlaywrightError as e:
                raise BrowserError(
                    f"Could not launch {self.browser_type}: {_first_line(e)}. "
                    f"Install it with: playwright install {self.browser_type}"
                ) from e

            try:
                # The browser rejects artifacts it cannot apply (e.g. invalid cookie fields)
                try:
                    context = await browser.new_context(storage_state=storage_state)
                    page = await context.new_page()
                except PlaywrightTimeout as e:
                    raise BrowserTimeout(f"Opening a browser context timed out: {_first_line(e)}") from e
                except PlaywrightError as e:
                    raise BrowserError(f"Could not open a browser context: {_first_line(e)}") from e
                yield PlaywrightPage(page)
            finally:
                try:
                    await browser.close()
                except PlaywrightError as e:
                    logger.debug(f"Closing {self.browser_type} failed: {_first_line(e)}")
                else:
                    logger.debug(f"Closed {self.browser_type} context")
