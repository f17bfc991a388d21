"""
Credential storage and resolution

Credentials for headless login come from an ordered list of sources:
role-specific environment variables first, then the per-environment
credential file. Absence is an expected outcome, not an error.
"""

import json
import logging
import os
import stat
from pathlib import Path
from typing import Mapping, Optional, Protocol

from pydantic import ValidationError

from e2e_harness.exceptions import CredentialsUnavailable
from e2e_harness.types import AccountCredentials, CredentialPair, CredentialsFile, Role
from e2e_harness.utils import atomic_write_text

logger = logging.getLogger(__name__)

FILE_MODE = 0o600
DIR_MODE = 0o700


class CredentialManager:
    """Secure local storage of per-environment credentials"""

    def __init__(self, credentials_dir: Path | str = "credentials"):
        self.credentials_dir = Path(credentials_dir).resolve()

    def path_for(self, environment: str) -> Path:
        return self.credentials_dir / f"{environment}.json"

    def save(
        self,
        environment: str,
        regular: AccountCredentials,
        elevated: Optional[AccountCredentials] = None,
    ) -> Path:
        """
        Save credentials, readable and writable by the owner only.

        Args:
            environment: Environment name
            regular: Credentials for the regular user role
            elevated: Optional credentials for the admin role

        Returns:
            Path of the written file
        """
        credentials = CredentialsFile(regular=regular, elevated=elevated)
        path = self.path_for(environment)
        content = json.dumps(credentials.model_dump(by_alias=True, exclude_none=True), indent=2)
        atomic_write_text(path, content, mode=FILE_MODE, dir_mode=DIR_MODE)
        logger.info(f"Credentials saved for '{environment}' -> {path}")
        return path

    def _read(self, environment: str) -> CredentialsFile:
        path = self.path_for(environment)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise CredentialsUnavailable(environment) from None
        except OSError as e:
            raise CredentialsUnavailable(
                environment, f"Failed to load credentials for '{environment}': {e}"
            ) from e

        mode = stat.S_IMODE(path.stat().st_mode)
        if mode & 0o077:
            logger.warning(f"Credential file {path} is accessible by other users (mode {oct(mode)}); run: chmod 600 {path}")

        try:
            return CredentialsFile.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            raise CredentialsUnavailable(
                environment, f"Failed to load credentials for '{environment}': malformed file {path}"
            ) from e

    def load(self, environment: str, elevated: bool = False) -> AccountCredentials:
        """
        Load credentials from the local file.

        Raises:
            CredentialsUnavailable: If the file or the requested entry is missing
        """
        credentials = self._read(environment)
        if elevated:
            if credentials.elevated is None:
                raise CredentialsUnavailable(
                    environment,
                    f"Elevated credentials not found for environment '{environment}'. "
                    f"Run 'e2e-harness credentials setup --env {environment}' to set up elevated credentials.",
                )
            return credentials.elevated
        return credentials.regular

    def has_credentials(self, environment: str) -> bool:
        return self.path_for(environment).is_file()

    def has_elevated_credentials(self, environment: str) -> bool:
        try:
            return self._read(environment).elevated is not None
        except CredentialsUnavailable:
            return False

    def clear(self, environment: str) -> bool:
        path = self.path_for(environment)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Credentials cleared for '{environment}'")
        return True

    @staticmethod
    def mask_password(password: str) -> str:
        """Mask password for display"""
        if len(password) <= 2:
            return "***"
        return password[0] + "*" * (len(password) - 2) + password[-1]


class CredentialSource(Protocol):
    """One strategy for producing a credential pair"""

    name: str

    async def lookup(self, role: Role, environment: str) -> Optional[CredentialPair]:
        """Return credentials or None when this source has none"""
        ...


class EnvVarCredentialSource:
    """E2E_<ROLE>_EMAIL / E2E_<ROLE>_PASSWORD"""

    name = "env"

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    async def lookup(self, role: Role, environment: str) -> Optional[CredentialPair]:
        username = self._environ.get(role.email_var)
        password = self._environ.get(role.password_var)
        if username and password:
            return CredentialPair(username=username, password=password, source=self.name)
        if username or password:
            logger.warning(
                f"Only one of {role.email_var}/{role.password_var} is set; ignoring env credentials for {role.value}"
            )
        return None


class FileCredentialSource:
    """credentials/<environment>.json (elevated entry for admin)"""

    name = "file"

    def __init__(self, manager: CredentialManager):
        self._manager = manager

    async def lookup(self, role: Role, environment: str) -> Optional[CredentialPair]:
        try:
            account = self._manager.load(environment, elevated=role.elevated)
        except CredentialsUnavailable as e:
            logger.debug(f"No file credentials for {role.value}@{environment}: {e}")
            return None

        if not account.username or not account.password:
            return None
        return CredentialPair(username=account.username, password=account.password, source=self.name)


class CredentialResolver:
    """
    Resolves credentials by trying sources in registration order.

    Usage:
        resolver = CredentialResolver().register(EnvVarCredentialSource())
        pair = await resolver.resolve(Role.ADMIN, "local")
    """

    def __init__(self, sources: Optional[list[CredentialSource]] = None) -> None:
        self._sources: list[CredentialSource] = list(sources or [])

    @classmethod
    def default(
        cls,
        credentials_dir: Path | str,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "CredentialResolver":
        return cls(
            [
                EnvVarCredentialSource(environ),
                FileCredentialSource(CredentialManager(credentials_dir)),
            ]
        )

    @property
    def sources(self) -> list[CredentialSource]:
        return list(self._sources)

    def register(self, source: CredentialSource) -> "CredentialResolver":
        """
        Append a source to the end of the lookup order.

        Returns:
            self for method chaining
        """
        self._sources.append(source)
        return self

    async def resolve(self, role: Role, environment: str) -> Optional[CredentialPair]:
        """Return the first credential pair any source yields, or None"""
        for source in self._sources:
            try:
                pair = await source.lookup(role, environment)
            except Exception as e:
                logger.warning(f"Credential source '{source.name}' failed for {role.value}: {e}")
                continue
            if pair is not None:
                logger.info(f"Using {source.name} credentials for {role.value} ({pair.username})")
                return pair

        logger.info(f"No credentials available for {role.value}@{environment}")
        return None


def missing_credentials_hint(role: Role, environment: str) -> str:
    """Actionable fix for a role without usable credentials"""
    return (
        f"Set {role.email_var} and {role.password_var}, "
        f"or run 'e2e-harness credentials setup --env {environment}'."
    )
