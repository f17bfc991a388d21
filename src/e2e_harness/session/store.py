"""
Session Store

Persists one session artifact per (role, environment) under a local
directory. Overwrites replace the previous artifact atomically.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from e2e_harness.exceptions import SessionCorrupt
from e2e_harness.tokens import find_tokens, is_past
from e2e_harness.types import Role, SessionArtifact
from e2e_harness.utils import atomic_write_text

logger = logging.getLogger(__name__)


@dataclass
class SessionFileStatus:
    """Saved-session summary shown by ``auth-status``"""

    role: Role
    environment: str
    path: Path
    exists: bool
    corrupt: bool = False
    updated_at: Optional[datetime] = None
    cookie_count: int = 0
    earliest_expiry: Optional[datetime] = None
    token_count: int = 0
    token_expiry: Optional[datetime] = None

    @property
    def expired(self) -> bool:
        if self.earliest_expiry is None:
            return False
        return self.earliest_expiry <= datetime.now(timezone.utc)

    @property
    def token_expired(self) -> bool:
        """Soonest token expiry is within the refresh buffer"""
        return self.token_expiry is not None and is_past(self.token_expiry)


class SessionStore:
    """Reads and writes session artifacts keyed by (role, environment)"""

    def __init__(self, auth_dir: Path | str):
        self.auth_dir = Path(auth_dir)

    def path_for(self, role: Role, environment: str) -> Path:
        return self.auth_dir / f"{Role(role).value}-{environment}.json"

    def exists(self, role: Role, environment: str) -> bool:
        return self.path_for(role, environment).is_file()

    def read(self, role: Role, environment: str) -> Optional[SessionArtifact]:
        """
        Strict read.

        Returns:
            The artifact, or None when nothing is saved

        Raises:
            SessionCorrupt: If the file exists but is not a complete artifact
        """
        path = self.path_for(role, environment)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise SessionCorrupt(str(path), f"unreadable: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SessionCorrupt(str(path), f"invalid JSON: {e}") from e

        if not isinstance(data, dict) or "cookies" not in data or "origins" not in data:
            raise SessionCorrupt(str(path), "missing 'cookies' or 'origins'")

        try:
            return SessionArtifact.model_validate(data)
        except ValidationError as e:
            raise SessionCorrupt(str(path), f"schema mismatch: {e.error_count()} error(s)") from e

    def load(self, role: Role, environment: str) -> Optional[SessionArtifact]:
        """Load the saved artifact; absent and corrupt artifacts both yield None"""
        try:
            return self.read(role, environment)
        except SessionCorrupt as e:
            logger.warning(f"{e}; treating as absent")
            return None

    def save(self, role: Role, environment: str, artifact: SessionArtifact) -> Path:
        """Persist artifact, replacing any previous one"""
        path = self.path_for(role, environment)
        content = json.dumps(artifact.to_storage_state(), indent=2)
        atomic_write_text(path, content)
        logger.info(f"Session saved for {Role(role).value}@{environment} -> {path}")
        return path

    def clear(
        self,
        roles: Optional[Iterable[Role]] = None,
        environment: Optional[str] = None,
    ) -> list[Path]:
        """
        Delete saved sessions.

        Args:
            roles: Roles to clear (default: all)
            environment: Environment to clear (default: all)

        Returns:
            Paths that were removed
        """
        if not self.auth_dir.is_dir():
            return []

        wanted = {Role(r).value for r in roles} if roles is not None else None
        removed = []
        for path in sorted(self.auth_dir.glob("*.json")):
            role_name, _, env_name = path.stem.partition("-")
            if wanted is not None and role_name not in wanted:
                continue
            if environment is not None and env_name != environment:
                continue
            path.unlink(missing_ok=True)
            removed.append(path)
            logger.info(f"Removed saved session {path}")
        return removed

    def status(self, role: Role, environment: str) -> SessionFileStatus:
        path = self.path_for(role, environment)
        status = SessionFileStatus(role=Role(role), environment=environment, path=path, exists=path.is_file())
        if not status.exists:
            return status

        status.updated_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        try:
            artifact = self.read(role, environment)
        except SessionCorrupt:
            status.corrupt = True
            return status

        if artifact is not None:
            status.cookie_count = len(artifact.cookies)
            status.earliest_expiry = artifact.earliest_expiry()
            tokens = find_tokens(artifact)
            expiries = [t.expires_at for t in tokens if t.expires_at is not None]
            status.token_count = len(tokens)
            status.token_expiry = min(expiries) if expiries else None
        return status
