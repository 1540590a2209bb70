"""Signed, time-limited guest link tokens.

A guest token is an HS256 JWT binding one attestation to its guest and
hotel. It is not a session: holding it only allows reading and
confirming that single attestation until it expires.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog
from jose import JWTError, jwt

from guest_attestation.domain.errors import TokenInvalid

logger = structlog.get_logger(__name__)

TOKEN_ALGORITHM = "HS256"
DEFAULT_TTL = timedelta(hours=24)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GuestTokenClaims:
    """Identifiers and lifetime carried by a guest token."""

    attestation_id: str
    guest_id: str
    hotel_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of verify_token.

    The reason for an invalid token is deliberately not exposed.
    """

    valid: bool
    claims: Optional[GuestTokenClaims] = None


INVALID = TokenVerification(valid=False)


class GuestTokenService:
    """Issues and verifies guest link tokens with a process-wide secret."""

    def __init__(
        self,
        secret: str,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the token service.

        Args:
            secret: HMAC signing secret (loaded once at startup)
            ttl: Default token lifetime
            clock: Returns the current aware UTC time

        Raises:
            ValueError: If secret is empty or ttl is negative
        """
        if not secret:
            raise ValueError("signing secret cannot be empty")
        if ttl < timedelta(0):
            raise ValueError("ttl cannot be negative")

        self._secret = secret
        self.ttl = ttl
        self._clock = clock

    def issue_token(
        self,
        attestation_id: str,
        guest_id: str,
        hotel_id: str,
        ttl: Optional[timedelta] = None,
    ) -> str:
        """Create a signed, URL-safe token for one attestation.

        Args:
            attestation_id: Attestation the link points to
            guest_id: Guest the attestation belongs to
            hotel_id: Hotel that issued the attestation
            ttl: Override of the default lifetime (fixed at issuance)

        Returns:
            Compact JWT string
        """
        lifetime = self.ttl if ttl is None else ttl
        if lifetime < timedelta(0):
            raise ValueError("ttl cannot be negative")

        issued_at = int(self._clock().timestamp())
        claims = {
            "attestation_id": attestation_id,
            "guest_id": guest_id,
            "hotel_id": hotel_id,
            "iat": issued_at,
            "exp": issued_at + int(lifetime.total_seconds()),
        }
        return jwt.encode(claims, self._secret, algorithm=TOKEN_ALGORITHM)

    def decode_claims(self, token: str) -> GuestTokenClaims:
        """Decode a guest token and check its expiry.

        Raises:
            TokenInvalid: On a bad signature, missing claims or an expired token
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[TOKEN_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise TokenInvalid(f"signature or format rejected: {e}") from e

        try:
            claims = GuestTokenClaims(
                attestation_id=_require_str(payload, "attestation_id"),
                guest_id=_require_str(payload, "guest_id"),
                hotel_id=_require_str(payload, "hotel_id"),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TokenInvalid(f"malformed claims: {e}") from e

        # Expiry is exclusive: a token is only valid while exp > now
        if claims.expires_at.timestamp() <= self._clock().timestamp():
            raise TokenInvalid(f"expired at {claims.expires_at.isoformat()}")

        return claims

    def verify_token(self, token: Optional[str]) -> TokenVerification:
        """Check signature, shape and expiry of a guest token.

        Returns TokenVerification(valid=False) on any failure instead of
        raising, so callers answer every bad link the same way.
        """
        if not token or not isinstance(token, str):
            return INVALID

        try:
            claims = self.decode_claims(token)
        except TokenInvalid as e:
            logger.info("guest_token_rejected", token_prefix=token[:12], reason=str(e))
            return INVALID

        return TokenVerification(valid=True, claims=claims)


def _require_str(payload: dict, key: str) -> str:
    value = payload[key]
    if not isinstance(value, str) or not value:
        raise ValueError(f"claim {key} must be a non-empty string")
    return value
