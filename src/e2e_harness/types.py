"""
Type definitions for e2e-harness
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Identity class with its own independent session lifecycle"""

    ADMIN = "admin"
    USER = "user"

    @property
    def email_var(self) -> str:
        return f"E2E_{self.name}_EMAIL"

    @property
    def password_var(self) -> str:
        return f"E2E_{self.name}_PASSWORD"

    @property
    def elevated(self) -> bool:
        """Admin sessions use the elevated credential pair"""
        return self is Role.ADMIN

    @property
    def label(self) -> str:
        return ROLE_LABELS[self]


ROLE_LABELS = {
    Role.ADMIN: "Admin (elevated account)",
    Role.USER: "Regular user",
}

SameSite = Literal["Strict", "Lax", "None"]


class Cookie(BaseModel):
    """Browser cookie as exported by the automation engine"""

    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float = -1
    http_only: bool = Field(False, alias="httpOnly")
    secure: bool = False
    same_site: SameSite = Field("Lax", alias="sameSite")

    class Config:
        populate_by_name = True


class StorageEntry(BaseModel):
    """Single localStorage key/value pair"""

    name: str
    value: str


class OriginStorage(BaseModel):
    """localStorage snapshot for one origin"""

    origin: str
    local_storage: list[StorageEntry] = Field(default_factory=list, alias="localStorage")

    class Config:
        populate_by_name = True


class SessionArtifact(BaseModel):
    """Serialized browser authentication state (cookies + local storage)"""

    cookies: list[Cookie] = Field(default_factory=list)
    origins: list[OriginStorage] = Field(default_factory=list)

    def to_storage_state(self) -> dict[str, Any]:
        """Alias-keyed dict accepted by the browser as storage state"""
        return self.model_dump(by_alias=True)

    def earliest_expiry(self) -> Optional[datetime]:
        """Earliest expiry among persistent cookies, None for session-only cookies"""
        expiries = [c.expires for c in self.cookies if c.expires and c.expires > 0]
        if not expiries:
            return None
        return datetime.fromtimestamp(min(expiries), tz=timezone.utc)


class CredentialPair(BaseModel):
    """Username/password for a role + environment"""

    username: str
    password: str
    source: str = "unknown"

    def masked(self) -> str:
        from e2e_harness.credentials import CredentialManager

        return f"{self.username} / {CredentialManager.mask_password(self.password)}"

    def __repr__(self) -> str:
        return f"CredentialPair(username={self.username!r}, password='***', source={self.source!r})"

    __str__ = __repr__


class AccountCredentials(BaseModel):
    """Credential entry stored in the credential file"""

    username: str
    password: str
    auth0_client_id: Optional[str] = Field(None, alias="auth0ClientId")

    class Config:
        populate_by_name = True


class CredentialsFile(BaseModel):
    """Per-environment credential file contents"""

    regular: AccountCredentials
    elevated: Optional[AccountCredentials] = None
    last_updated: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        alias="lastUpdated",
    )

    class Config:
        populate_by_name = True


class BaseUrls(BaseModel):
    """Application endpoints of an environment"""

    web: str
    api: str
    services: dict[str, str] = Field(default_factory=dict)

    class Config:
        frozen = True


class IdentityProviderConfig(BaseModel):
    """OAuth/OIDC provider settings of an environment"""

    domain: str
    client_id: str = Field(alias="clientId")
    audience: Optional[str] = None

    class Config:
        populate_by_name = True
        frozen = True


class EnvironmentTimeouts(BaseModel):
    """Timeouts in milliseconds"""

    api: int
    page_load: int = Field(30000, alias="pageLoad")

    class Config:
        populate_by_name = True
        frozen = True


class EnvironmentConfig(BaseModel):
    """Named deployment target"""

    name: str
    base_urls: BaseUrls = Field(alias="baseUrls")
    auth0: IdentityProviderConfig
    timeouts: EnvironmentTimeouts

    class Config:
        populate_by_name = True
        frozen = True


class SessionVerdict(BaseModel):
    """Result of probing the application with a saved session"""

    valid: bool
    reason: str
    final_url: Optional[str] = None


ResultStatus = Literal["passed", "failed", "skipped"]
Pillar = Literal["synthetic", "integration", "performance"]


class TestResult(BaseModel):
    """One executed test as persisted in the JSONL result log"""

    __test__ = False

    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    pillar: Pillar
    environment: str
    test: str
    status: ResultStatus
    duration: float
    user: str
    error: Optional[str] = None
    screenshot: Optional[str] = None
    trace: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    def parsed_timestamp(self) -> datetime:
        ts = datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts
