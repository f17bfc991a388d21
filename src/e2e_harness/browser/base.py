"""
Browser automation capability interface

The session machinery only needs a narrow slice of a browser engine. Any
driver providing these operations can be plugged in (Playwright in
production, scripted fakes in tests).
"""

from typing import Any, AsyncContextManager, Callable, Optional, Protocol

UrlPredicate = Callable[[str], bool]


class BrowserPage(Protocol):
    """A single page inside a disposable browsing context"""

    @property
    def url(self) -> str:
        """Current page URL"""
        ...

    async def goto(self, url: str, timeout: float) -> None:
        """Navigate and wait for DOM content, raising NavigationError/BrowserTimeout"""
        ...

    async def wait_for_url(self, predicate: UrlPredicate, timeout: float) -> str:
        """Wait until the current URL satisfies predicate; returns that URL"""
        ...

    async def fill(self, selector: str, value: str, timeout: float) -> None:
        """Fill the first element matching selector"""
        ...

    async def click(self, selector: str, timeout: float) -> None:
        """Click the first element matching selector"""
        ...

    async def is_present(self, selector: str) -> bool:
        """Check whether any element matches selector right now"""
        ...

    async def storage_state(self) -> dict[str, Any]:
        """Export cookies and localStorage of the owning context"""
        ...

    async def show_banner(self, title: str, message: str, color: str) -> None:
        """Render a fixed banner on top of the page"""
        ...

    async def pause(self, seconds: float) -> None:
        """Let client-side redirects settle"""
        ...


class BrowserDriver(Protocol):
    """Factory of disposable browsing contexts"""

    def open_context(
        self,
        storage_state: Optional[dict[str, Any]] = None,
        headless: bool = True,
    ) -> AsyncContextManager[BrowserPage]:
        """
        Open a fresh context, optionally seeded with a saved session.

        The context and its browser process are released when the
        returned async context manager exits, on every exit path.
        """
        ...
