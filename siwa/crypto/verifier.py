"""Identity token verification against the cached Apple key set.

Verification runs in two passes. The first pass reads the token without
checking its signature and only picks the key, audience and subject to
check against. Every trust decision is made by the second, fully verified
pass.
"""

from typing import Any

import jwt
import structlog
from pydantic import ValidationError

from siwa.core.errors import (
    EmptyTokenError,
    InvalidTokenError,
    MalformedTokenError,
    UnknownKeyError,
)
from siwa.core.settings import APPLE_ISSUER
from siwa.crypto.keys import PublicKey, jwk_entry_to_public_key
from siwa.crypto.types import JWKEntry, UnverifiedTokenHeader, VerifiedClaims
from siwa.jwks.cache import KeySetCache

REQUIRED_CLAIMS = ["iss", "aud", "sub", "exp", "iat"]

_ALGORITHMS_BY_KTY = {
    "RSA": frozenset({"RS256", "RS384", "RS512"}),
    "EC": frozenset({"ES256"}),
}

log = structlog.get_logger(__name__)


def read_unverified_header(token: str) -> UnverifiedTokenHeader:
    """Extract kid, first audience and subject without checking the signature.

    The result is routing data only and must never be trusted as identity.
    """
    try:
        header = jwt.get_unverified_header(token)
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        raise MalformedTokenError(f"cannot parse id_token: {exc}") from exc

    key_id = header.get("kid")
    if not isinstance(key_id, str) or not key_id:
        raise MalformedTokenError("id_token header has no 'kid'")

    audience = claims.get("aud")
    if isinstance(audience, list):
        audience = audience[0] if audience else None
    if not isinstance(audience, str) or not audience:
        raise MalformedTokenError("id_token has no 'aud' claim")

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise MalformedTokenError("id_token has no 'sub' claim")

    return UnverifiedTokenHeader(key_id=key_id, audience=audience, subject=subject)


def _public_key_for(record: JWKEntry) -> PublicKey:
    if record.alg not in _ALGORITHMS_BY_KTY.get(record.kty, frozenset()):
        raise MalformedTokenError(
            f"key {record.kid!r} declares {record.alg!r} for a {record.kty} key"
        )
    try:
        return jwk_entry_to_public_key(record)
    except (jwt.PyJWTError, ValueError) as exc:
        raise MalformedTokenError(
            f"cannot rebuild public key {record.kid!r}: {exc}"
        ) from exc


class TokenVerifier:
    """Verifies Apple identity tokens with keys from a KeySetCache."""

    def __init__(
        self,
        cache: KeySetCache,
        issuer: str = APPLE_ISSUER,
        leeway: float = 0,
    ) -> None:
        self._cache = cache
        self._issuer = issuer
        self._leeway = leeway

    def verify(self, token: str) -> VerifiedClaims:
        """Verify an identity token's signature and mandatory claims.

        Raises:
            EmptyTokenError: ``token`` is empty.
            MalformedTokenError: the token or its key record cannot be parsed.
            UnknownKeyError: the token's kid is not in the cached key set.
            InvalidTokenError: signature, issuer, audience, subject or
                expiry check failed.
        """
        if not token:
            raise EmptyTokenError()

        routing = read_unverified_header(token)
        record = self._cache.lookup(routing.key_id)
        if record is None:
            log.info("id_token_unknown_kid", kid=routing.key_id)
            raise UnknownKeyError(routing.key_id)
        public_key = _public_key_for(record)

        raw = self._decode_verified(token, public_key, record, routing)
        try:
            return VerifiedClaims.model_validate(raw)
        except ValidationError as exc:
            raise MalformedTokenError(f"unexpected id_token claims: {exc}") from exc

    def _decode_verified(
        self,
        token: str,
        public_key: PublicKey,
        record: JWKEntry,
        routing: UnverifiedTokenHeader,
    ) -> dict[str, Any]:
        try:
            return jwt.decode(
                token,
                public_key,
                algorithms=[record.alg],
                issuer=self._issuer,
                audience=routing.audience,
                subject=routing.subject,
                leeway=self._leeway,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.PyJWTError as exc:
            log.info("id_token_rejected", kid=record.kid, reason=str(exc))
            raise InvalidTokenError(str(exc)) from exc
