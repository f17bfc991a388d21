"""
Token Inspection

Reads JWTs carried by a saved session artifact (cookies and localStorage,
including JSON-wrapped token caches) to judge how fresh the session is
without opening a browser. Signatures are not verified.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Optional

import jwt

from e2e_harness.exceptions import TokenDecodeError
from e2e_harness.types import SessionArtifact

logger = logging.getLogger(__name__)

# Tokens expiring within this window count as expired
TOKEN_EXPIRY_BUFFER = 300

_JWT_SHAPE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$")


@dataclass
class FoundToken:
    """JWT located inside a session artifact"""

    source: str
    token: str
    claims: dict[str, Any]

    @property
    def expires_at(self) -> Optional[datetime]:
        return _exp_to_datetime(self.claims.get("exp"))


def looks_like_jwt(value: str) -> bool:
    return bool(_JWT_SHAPE.match(value))


def decode_claims(token: str) -> dict[str, Any]:
    """
    Decode the token payload without verifying it.

    Raises:
        TokenDecodeError: If the value is not a JWT
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise TokenDecodeError(f"Failed to decode JWT: {e}") from e
    if not isinstance(claims, dict):
        raise TokenDecodeError("Invalid token format")
    return claims


def _exp_to_datetime(exp: Any) -> Optional[datetime]:
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def token_expiry(token: str) -> Optional[datetime]:
    """Expiry of the token, None when it carries no ``exp`` claim"""
    return _exp_to_datetime(decode_claims(token).get("exp"))


def is_past(
    expiry: datetime,
    buffer: float = TOKEN_EXPIRY_BUFFER,
    now: Optional[datetime] = None,
) -> bool:
    now = now or datetime.now(timezone.utc)
    return now >= expiry - timedelta(seconds=buffer)


def is_token_expired(
    token: str,
    buffer: float = TOKEN_EXPIRY_BUFFER,
    now: Optional[datetime] = None,
) -> bool:
    """
    True when the token expires within ``buffer`` seconds.

    A token whose expiry cannot be read is treated as expired.
    """
    try:
        expiry = token_expiry(token)
    except TokenDecodeError:
        return True
    if expiry is None:
        return True
    return is_past(expiry, buffer, now)


def seconds_remaining(token: str, now: Optional[datetime] = None) -> float:
    """Seconds until expiry; inf without ``exp``, 0 when expired or undecodable"""
    try:
        expiry = token_expiry(token)
    except TokenDecodeError:
        return 0.0
    if expiry is None:
        return float("inf")
    now = now or datetime.now(timezone.utc)
    return max((expiry - now).total_seconds(), 0.0)


def _claim_list(claims: dict[str, Any], name: str) -> Optional[list[str]]:
    candidates = [claims.get(name)] + [v for k, v in claims.items() if k.endswith(f"/{name}")]
    for value in candidates:
        if isinstance(value, list):
            return [str(v) for v in value]
    return None


def extract_roles(token: str) -> list[str]:
    """Roles from ``roles``, a namespaced ``.../roles`` claim or ``role``"""
    claims = decode_claims(token)
    roles = _claim_list(claims, "roles")
    if roles is not None:
        return roles
    role = claims.get("role")
    if isinstance(role, list):
        return [str(r) for r in role]
    if isinstance(role, str):
        return [role]
    return []


def extract_permissions(token: str) -> list[str]:
    """Permissions from ``permissions``, a namespaced claim or the OAuth ``scope``"""
    claims = decode_claims(token)
    permissions = _claim_list(claims, "permissions")
    if permissions is not None:
        return permissions
    scope = claims.get("scope")
    if isinstance(scope, str):
        return scope.split()
    if isinstance(scope, list):
        return [str(s) for s in scope]
    return []


def _walk_strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _walk_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _walk_strings(item)


def _candidates(raw: str) -> Iterator[str]:
    if looks_like_jwt(raw):
        yield raw
        return
    if raw[:1] not in ("{", "["):
        return
    try:
        parsed = json.loads(raw)
    except ValueError:
        return
    for value in _walk_strings(parsed):
        if looks_like_jwt(value):
            yield value


def find_tokens(artifact: SessionArtifact) -> list[FoundToken]:
    """Every decodable JWT stored in the artifact's cookies and localStorage"""
    values = [(f"cookie:{c.name}", c.value) for c in artifact.cookies]
    for origin in artifact.origins:
        values.extend(
            (f"localStorage:{origin.origin}:{entry.name}", entry.value) for entry in origin.local_storage
        )

    found = []
    for source, raw in values:
        for token in _candidates(raw):
            try:
                claims = decode_claims(token)
            except TokenDecodeError:
                continue
            found.append(FoundToken(source=source, token=token, claims=claims))
    logger.debug(f"Found {len(found)} token(s) in session artifact")
    return found


def token_expiries(artifact: SessionArtifact) -> list[datetime]:
    """Expiries of the artifact's tokens that carry one, soonest first"""
    return sorted(t.expires_at for t in find_tokens(artifact) if t.expires_at is not None)


def all_tokens_expired(
    artifact: SessionArtifact,
    buffer: float = TOKEN_EXPIRY_BUFFER,
    now: Optional[datetime] = None,
) -> bool:
    """True only when the artifact holds expiring tokens and every one of them is past due"""
    expiries = token_expiries(artifact)
    return bool(expiries) and all(is_past(e, buffer, now) for e in expiries)
