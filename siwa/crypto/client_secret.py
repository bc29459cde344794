"""ES256 client_secret generation for the Sign in with Apple REST API."""

from datetime import UTC, datetime, timedelta

import jwt
import structlog

from siwa.core.errors import BadKeyError, SigningFailedError
from siwa.core.settings import APPLE_ISSUER
from siwa.crypto.keys import load_signing_key
from siwa.crypto.types import AuthKey, ClientSecret

CLIENT_SECRET_ALGORITHM = "ES256"
# Apple rejects client secrets valid for 6 months or longer.
CLIENT_SECRET_TTL = timedelta(days=180) - timedelta(seconds=1)

log = structlog.get_logger(__name__)


def generate_client_secret(
    auth_key: AuthKey, now: datetime | None = None
) -> ClientSecret:
    """Create the client_secret JWT used to call Apple's token endpoints.

    The result is a function of ``auth_key`` and ``now`` only; nothing is
    cached, so callers that reuse a secret must regenerate it before
    ``expires_at``.

    Raises:
        BadKeyError: ``signing_key`` is not a PKCS#8 PEM P-256 private key.
        SigningFailedError: the JWT could not be signed.
    """
    if now is None:
        now = datetime.now(UTC)
    elif now.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    try:
        private_key = load_signing_key(auth_key.signing_key.get_secret_value())
    except ValueError as exc:
        raise BadKeyError(str(exc)) from exc

    issued_at = int(now.timestamp())
    expires_at = issued_at + int(CLIENT_SECRET_TTL.total_seconds())
    payload = {
        "iss": auth_key.team_id,
        "sub": auth_key.client_id,
        "aud": [APPLE_ISSUER],
        "exp": expires_at,
        "iat": issued_at,
    }
    try:
        token = jwt.encode(
            payload,
            private_key,
            algorithm=CLIENT_SECRET_ALGORITHM,
            headers={"kid": auth_key.key_id},
        )
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
        raise SigningFailedError(f"failed to sign client secret: {exc}") from exc

    log.debug("client_secret_generated", kid=auth_key.key_id, exp=expires_at)
    return ClientSecret(
        value=token,
        issued_at=datetime.fromtimestamp(issued_at, UTC),
        expires_at=datetime.fromtimestamp(expires_at, UTC),
    )
