"""
Host Reachability Gate

Pre-flight check run once per environment before any session work. A host
that is up but demands authentication (401/403) counts as reachable.
"""

import logging
import socket
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx

from e2e_harness.exceptions import HostUnreachable

logger = logging.getLogger(__name__)

AUTH_REQUIRED_STATUSES = (401, 403)

_DNS_MARKERS = (
    "Name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "Temporary failure in name resolution",
    "No address associated",
)


@dataclass
class ReachabilityResult:
    """Outcome of probing the application base URL"""

    url: str
    reachable: bool
    status_code: Optional[int] = None
    cause: Optional[str] = None
    hint: str = ""
    detail: str = ""
    elapsed_ms: float = 0.0


def is_reachable_status(status_code: int) -> bool:
    return 200 <= status_code < 400 or status_code in AUTH_REQUIRED_STATUSES


def _is_dns_failure(error: BaseException) -> bool:
    current: Optional[BaseException] = error
    while current is not None:
        if isinstance(current, socket.gaierror):
            return True
        if any(marker in str(current) for marker in _DNS_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


def _hint(cause: str, url: str, timeout: float, status_code: Optional[int] = None) -> str:
    parsed = urlparse(url)
    host = parsed.hostname or url
    if cause == "connection_refused":
        return (
            f"Nothing is listening at {host}:{parsed.port or ('443' if parsed.scheme == 'https' else '80')}. "
            "Make sure the app is running (Docker: docker compose up -d; locally: start the dev server)."
        )
    if cause == "dns_failure":
        return (
            f"Host name '{host}' does not resolve. Check E2E_BASE_URL or the environment's "
            "baseUrls.web for typos, and your VPN/DNS settings."
        )
    if cause == "timeout":
        return (
            f"No response within {timeout:.0f}s. Check network connectivity, VPN or proxy "
            "settings; the app may also be overloaded or still starting."
        )
    if cause == "server_error":
        return (
            f"The app is up but returned {status_code}. Check the application logs "
            "(Docker: docker compose logs)."
        )
    if cause == "bad_status":
        return f"Unexpected status {status_code}. Check that {url} points at the application."
    if cause == "invalid_url":
        return "The base URL is malformed. Check E2E_BASE_URL or the environment's baseUrls.web."
    return "Check the base URL and that the app is running."


class ReachabilityGate:
    """
    Checks the application base URL with a short bounded timeout.

    Usage:
        gate = ReachabilityGate(timeout=5.0)
        await gate.require("http://localhost:3000")  # raises HostUnreachable
    """

    def __init__(
        self,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport

    async def check(self, url: str) -> ReachabilityResult:
        """Request url and classify the outcome"""
        started = time.monotonic()

        def _result(reachable: bool, **kwargs) -> ReachabilityResult:
            return ReachabilityResult(
                url=url,
                reachable=reachable,
                elapsed_ms=(time.monotonic() - started) * 1000,
                **kwargs,
            )

        def _failure(cause: str, detail: str = "", status_code: Optional[int] = None) -> ReachabilityResult:
            return _result(
                False,
                status_code=status_code,
                cause=cause,
                detail=detail,
                hint=_hint(cause, url, self.timeout, status_code),
            )

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            return _failure("invalid_url", f"not an http(s) URL: {url!r}")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport, follow_redirects=False
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            return _failure("timeout", str(e) or type(e).__name__)
        except httpx.ConnectError as e:
            cause = "dns_failure" if _is_dns_failure(e) else "connection_refused"
            return _failure(cause, str(e))
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            return _failure("invalid_url", str(e))
        except httpx.HTTPError as e:
            return _failure("network_error", str(e) or type(e).__name__)

        status = response.status_code
        if is_reachable_status(status):
            return _result(True, status_code=status)
        if status >= 500:
            return _failure("server_error", f"HTTP {status}", status)
        return _failure("bad_status", f"HTTP {status}", status)

    async def require(self, url: str) -> ReachabilityResult:
        """
        Check url and fail fast.

        Raises:
            HostUnreachable: If the host is not reachable
        """
        logger.info(f"Checking if host is reachable: {url}")
        result = await self.check(url)
        if not result.reachable:
            logger.error(f"Host {url} unreachable ({result.cause}): {result.detail}")
            raise HostUnreachable(url, result.cause or "unknown", result.hint, result.detail)

        logger.info(f"Host is reachable (status: {result.status_code}, {result.elapsed_ms:.0f}ms)")
        return result
