"""
e2e-harness custom exception hierarchy
"""


class HarnessError(Exception):
    """e2e-harness base exception"""

    pass


class HostUnreachable(HarnessError):
    """Raised when the target application does not answer the pre-flight check"""

    def __init__(self, url: str, cause: str, hint: str, detail: str = ""):
        self.url = url
        self.cause = cause
        self.hint = hint
        self.detail = detail
        message = f"Cannot reach host {url} ({cause})"
        if detail:
            message += f": {detail}"
        super().__init__(f"{message}. {hint}")


class CredentialsUnavailable(HarnessError):
    """No credentials could be resolved for a role/environment"""

    def __init__(self, environment: str, message: str | None = None):
        self.environment = environment
        super().__init__(
            message
            or f"Credentials not found for environment '{environment}'. "
            f"Run 'e2e-harness credentials setup --env {environment}' to set them up."
        )


class AuthenticationError(HarnessError):
    """Login against the identity provider failed"""

    def __init__(self, role: str, message: str, detail: str | None = None):
        self.role = role
        self.detail = detail
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InteractiveLoginTimeout(AuthenticationError):
    """Nobody completed the interactive login before the deadline"""

    def __init__(self, role: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            role,
            f"Interactive login for '{role}' was not completed within {timeout:.0f}s",
        )


class InteractiveLoginUnavailable(AuthenticationError):
    """Interactive login requested in an automated context"""

    def __init__(self, role: str):
        super().__init__(
            role,
            f"Interactive login for '{role}' is not possible in an automated (CI) context",
        )


class SessionCorrupt(HarnessError):
    """Saved session artifact could not be parsed"""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Saved session {path} is corrupt: {reason}")


class ConfigurationError(HarnessError):
    """Configuration-related error"""

    pass


class EnvironmentNotFound(ConfigurationError):
    """Environment configuration file does not exist"""

    def __init__(self, name: str, path: str, available: list[str]):
        self.name = name
        self.path = path
        self.available = available
        super().__init__(
            f"Environment configuration not found: {name}\n"
            f"Expected file: {path}\n"
            f"Available environments: {', '.join(available) or '(none)'}"
        )


class BrowserError(HarnessError):
    """Browser automation error"""

    pass


class BrowserTimeout(BrowserError):
    """A bounded browser wait elapsed"""

    pass


class NavigationError(BrowserError):
    """Navigation failed"""

    def __init__(self, message: str, unreachable: bool = False):
        self.unreachable = unreachable
        super().__init__(message)


class TokenDecodeError(HarnessError):
    """Value is not a decodable JWT"""

    pass


class TokenRequestError(HarnessError):
    """OAuth token endpoint refused or failed a grant"""

    def __init__(self, grant: str, message: str, status_code: int | None = None):
        self.grant = grant
        self.status_code = status_code
        prefix = f"Token request ({grant}) failed"
        if status_code is not None:
            prefix += f" with HTTP {status_code}"
        super().__init__(f"{prefix}: {message}")
