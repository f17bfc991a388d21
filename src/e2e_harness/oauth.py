"""
OAuth token client for API tests.

Talks to the identity provider's ``/oauth/token`` endpoint directly so
integration tests can obtain bearer tokens without a browser. Supports the
password (and Auth0 password-realm), client-credentials, refresh-token and
authorization-code grants.
"""

import logging
import os
import secrets
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ValidationError

from e2e_harness.config import EnvironmentSelector, RunContext
from e2e_harness.exceptions import ConfigurationError, TokenRequestError
from e2e_harness.tokens import is_token_expired
from e2e_harness.types import CredentialPair, EnvironmentConfig

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "openid profile email"
PASSWORD_REALM_GRANT = "http://auth0.com/oauth/grant-type/password-realm"

CLIENT_SECRET_VAR = "E2E_OAUTH_CLIENT_SECRET"
AUDIENCE_VAR = "E2E_OAUTH_AUDIENCE"


class TokenSet(BaseModel):
    """Token endpoint response"""

    access_token: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: Optional[str] = "Bearer"
    scope: Optional[str] = None

    class Config:
        extra = "allow"

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"{self.token_type or 'Bearer'} {self.access_token}"}

    @property
    def expired(self) -> bool:
        """True when the access token is a JWT past (or near) its expiry"""
        return is_token_expired(self.access_token)


def _issuer(domain_or_issuer: str) -> str:
    issuer = domain_or_issuer.rstrip("/")
    if "://" not in issuer:
        issuer = f"https://{issuer}"
    return issuer


class OAuthTokenClient:
    """
    Requests tokens from an OAuth2/OIDC provider.

    Usage:
        client = OAuthTokenClient("tenant.us.auth0.com", "client-id", audience="https://api")
        tokens = await client.login(credentials)
        httpx.get(url, headers=tokens.authorization_header())
    """

    def __init__(
        self,
        domain_or_issuer: str,
        client_id: str,
        client_secret: Optional[str] = None,
        audience: Optional[str] = None,
        scope: str = DEFAULT_SCOPE,
        realm: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.issuer = _issuer(domain_or_issuer)
        self.client_id = client_id
        self.client_secret = client_secret
        self.audience = audience
        self.scope = scope
        self.realm = realm
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_environment(
        cls, config: EnvironmentConfig, client_secret: Optional[str] = None, **kwargs
    ) -> "OAuthTokenClient":
        """Client for an environment's identity provider settings"""
        idp = config.auth0
        kwargs.setdefault("audience", idp.audience)
        kwargs.setdefault("timeout", config.timeouts.api / 1000)
        return cls(idp.domain, idp.client_id, client_secret=client_secret, **kwargs)

    @classmethod
    def for_context(
        cls, context: RunContext, environ: Optional[Mapping[str, str]] = None, **kwargs
    ) -> "OAuthTokenClient":
        """
        Client for the run's environment.

        E2E_OAUTH_CLIENT_SECRET and E2E_OAUTH_AUDIENCE override the config file.

        Raises:
            EnvironmentNotFound: If the environment has no config file
        """
        environ = os.environ if environ is None else environ
        config = EnvironmentSelector(context.environments_dir).load_environment(context.environment)
        if environ.get(AUDIENCE_VAR):
            kwargs["audience"] = environ[AUDIENCE_VAR]
        return cls.from_environment(config, client_secret=environ.get(CLIENT_SECRET_VAR) or None, **kwargs)

    @property
    def token_endpoint(self) -> str:
        return f"{self.issuer}/oauth/token"

    def _client_params(self) -> dict[str, str]:
        params = {"client_id": self.client_id}
        if self.client_secret:
            params["client_secret"] = self.client_secret
        return params

    async def password_grant(self, username: str, password: str) -> TokenSet:
        """
        Resource-owner password grant.

        Uses Auth0's password-realm grant when a realm is configured.
        """
        grant = PASSWORD_REALM_GRANT if self.realm else "password"
        params = {
            "grant_type": grant,
            "username": username,
            "password": password,
            "scope": self.scope,
            **self._client_params(),
        }
        if self.realm:
            params["realm"] = self.realm
        if self.audience:
            params["audience"] = self.audience
        return await self._request_token("password", params)

    async def login(self, credentials: CredentialPair) -> TokenSet:
        logger.info(f"Requesting tokens for {credentials.username} ({credentials.source})")
        return await self.password_grant(credentials.username, credentials.password)

    async def client_credentials(self) -> TokenSet:
        """
        Machine-to-machine grant.

        Raises:
            ConfigurationError: If no client secret is configured
        """
        if not self.client_secret:
            raise ConfigurationError("Client secret is required for the client credentials grant")
        params = {"grant_type": "client_credentials", **self._client_params()}
        if self.audience:
            params["audience"] = self.audience
        return await self._request_token("client_credentials", params)

    async def refresh(self, refresh_token: str) -> TokenSet:
        params = {"grant_type": "refresh_token", "refresh_token": refresh_token, **self._client_params()}
        return await self._request_token("refresh_token", params)

    def authorization_url(self, redirect_uri: str, state: Optional[str] = None) -> str:
        """Browser URL starting the authorization-code flow"""
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": self.scope,
            "state": state or secrets.token_urlsafe(16),
        }
        if self.audience:
            params["audience"] = self.audience
        return f"{self.issuer}/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenSet:
        params = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            **self._client_params(),
        }
        return await self._request_token("authorization_code", params)

    async def _request_token(self, grant: str, params: dict[str, Any]) -> TokenSet:
        """
        POST a form-encoded grant to the token endpoint.

        Raises:
            TokenRequestError: On transport failure, non-2xx status or malformed body
        """
        logger.debug(f"Requesting {grant} token from {self.token_endpoint}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.token_endpoint,
                    data=params,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise TokenRequestError(grant, str(e) or type(e).__name__) from e

        if not response.is_success:
            raise TokenRequestError(grant, response.text.strip() or response.reason_phrase, response.status_code)

        try:
            tokens = TokenSet.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TokenRequestError(grant, f"invalid token response: {e}", response.status_code) from e

        logger.debug(f"Received {grant} token (expires in {tokens.expires_in}s)")
        return tokens
