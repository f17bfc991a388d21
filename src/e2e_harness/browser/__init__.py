"""
Browser automation capability
"""

from e2e_harness.browser.base import BrowserDriver, BrowserPage, UrlPredicate

__all__ = [
    "BrowserDriver",
    "BrowserPage",
    "UrlPredicate",
]
