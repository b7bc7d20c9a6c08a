"""
Service credentials -- signed, expiring tokens for internal bypass.

Responsibility:
    Internal jobs (warehouse moves, shipping updates) may skip approval for
    the non-critical operation types on the internal-bypass allowlist.
    Instead of a static shared secret in the request, they present an
    HS256 JWT whose ``sub`` is the service identity and whose ``iat`` and
    ``exp`` bound its lifetime.

Architecture position:
    Kernel > Services.  The issuer lives wherever internal jobs are
    started; the verifier is injected into ApprovalGuard.

Invariants enforced:
    - A token verifies only under the secret it was signed with.
    - Expired tokens are refused.  Expiry is checked against the injected
      Clock, not the wall clock, so ``exp`` is not left to python-jose.
    - Only identities in ``allowed_services`` (when given) are accepted.

Failure modes:
    - InvalidServiceCredentialError for malformed, forged, expired, or
      unknown-identity tokens.  The guard turns this into a denial.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from trade_kernel.domain.clock import Clock, SystemClock
from trade_kernel.exceptions import InvalidServiceCredentialError

DEFAULT_TOKEN_TTL = timedelta(minutes=15)
TOKEN_ALGORITHM = "HS256"


@dataclass(frozen=True)
class ServiceCredential:
    """A verified token."""

    service_identity: str
    issued_at: datetime
    expires_at: datetime


def _signing_key(secret: str | bytes) -> str:
    if isinstance(secret, bytes):
        secret = secret.decode("utf-8")
    if not secret:
        raise ValueError("Service credential secret must not be empty")
    return secret


class ServiceCredentialIssuer:
    def __init__(
        self,
        secret: str | bytes,
        clock: Clock | None = None,
        ttl: timedelta = DEFAULT_TOKEN_TTL,
    ):
        self._key = _signing_key(secret)
        self._clock = clock or SystemClock()
        self._ttl = ttl

    def issue(self, service_identity: str) -> str:
        if not service_identity or not service_identity.strip():
            raise ValueError(f"Invalid service identity: {service_identity!r}")
        issued = int(self._clock.now_utc().timestamp())
        claims = {
            "sub": service_identity,
            "iat": issued,
            "exp": issued + int(self._ttl.total_seconds()),
        }
        return jwt.encode(claims, self._key, algorithm=TOKEN_ALGORITHM)


class ServiceCredentialVerifier:
    def __init__(
        self,
        secret: str | bytes,
        clock: Clock | None = None,
        allowed_services: frozenset[str] | None = None,
    ):
        self._key = _signing_key(secret)
        self._clock = clock or SystemClock()
        self._allowed_services = allowed_services

    def verify(self, token: str | None, operation_type: str = "") -> ServiceCredential:
        """Return the verified credential or raise InvalidServiceCredentialError."""

        def refuse(reason: str) -> InvalidServiceCredentialError:
            return InvalidServiceCredentialError(operation_type, reason)

        if not token:
            raise refuse("service token missing")
        try:
            jwt.get_unverified_header(token)
        except JWTError:
            raise refuse("service token malformed") from None
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[TOKEN_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTError:
            raise refuse("service token signature invalid") from None

        identity, issued, expires = claims.get("sub"), claims.get("iat"), claims.get("exp")
        if not isinstance(identity, str) or not all(
            isinstance(value, int) for value in (issued, expires)
        ):
            raise refuse("service token malformed")
        issued_at = datetime.fromtimestamp(issued, tz=timezone.utc)
        expires_at = datetime.fromtimestamp(expires, tz=timezone.utc)

        if self._clock.now_utc() >= expires_at:
            raise refuse("service token expired")
        if self._allowed_services is not None and identity not in self._allowed_services:
            raise refuse(f"service '{identity}' is not allowed to bypass approval")
        return ServiceCredential(identity, issued_at, expires_at)
