"""Shared test fixtures for siwa."""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import jwt
import pytest

from siwa.core.settings import APPLE_ISSUER
from siwa.crypto.keys import (
    generate_es256_keypair,
    generate_rsa_keypair,
    pem_to_jwk_entry,
)
from siwa.crypto.types import AuthKey, JWKEntry, JWKSet, SigningKeyData
from siwa.jwks.cache import KeySetCache

CLIENT_ID = "com.example.app"
TEAM_ID = "GH56IJ78KL"
USER_SUB = "001234.abcdef0123456789abcdef0123456789.1234"
USER_EMAIL = "abc123@privaterelay.appleid.com"
ID_TOKEN_TTL = 600


class FakeKeySource:
    """Stands in for GET /auth/keys."""

    def __init__(self, keys: list[JWKEntry]) -> None:
        self.keys = keys
        self.error: Exception | None = None
        self.calls = 0

    def __call__(self) -> JWKSet:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return JWKSet(keys=list(self.keys))


@pytest.fixture(scope="session")
def rsa_keypair() -> SigningKeyData:
    """Apple-style identity token signing key."""
    return generate_rsa_keypair()


@pytest.fixture(scope="session")
def other_rsa_keypair() -> SigningKeyData:
    """A second RSA key that Apple never published."""
    return generate_rsa_keypair()


@pytest.fixture(scope="session")
def es256_keypair() -> SigningKeyData:
    return generate_es256_keypair()


@pytest.fixture
def apple_jwk(rsa_keypair: SigningKeyData) -> JWKEntry:
    return pem_to_jwk_entry(rsa_keypair.public_key_pem, rsa_keypair.kid)


@pytest.fixture
def key_source(apple_jwk: JWKEntry) -> FakeKeySource:
    return FakeKeySource([apple_jwk])


@pytest.fixture
def key_cache(key_source: FakeKeySource) -> KeySetCache:
    return KeySetCache(key_source)


@pytest.fixture
def auth_key(es256_keypair: SigningKeyData) -> AuthKey:
    return AuthKey(
        key_id=es256_keypair.kid,
        client_id=CLIENT_ID,
        team_id=TEAM_ID,
        signing_key=es256_keypair.private_key_pem,
    )


@pytest.fixture
def make_id_token(rsa_keypair: SigningKeyData) -> Callable[..., str]:
    """Build identity tokens the way Apple signs them.

    Keyword overrides replace claims; an override of None drops the claim.
    """

    def _make(
        private_key_pem: str | None = None,
        headers: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> str:
        now = int(datetime.now(UTC).timestamp())
        claims: dict[str, Any] = {
            "iss": APPLE_ISSUER,
            "aud": CLIENT_ID,
            "sub": USER_SUB,
            "iat": now,
            "exp": now + ID_TOKEN_TTL,
            "email": USER_EMAIL,
            "email_verified": "true",
            "is_private_email": "true",
            "auth_time": now,
            "nonce_supported": True,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(
            claims,
            private_key_pem or rsa_keypair.private_key_pem,
            algorithm="RS256",
            headers=headers if headers is not None else {"kid": rsa_keypair.kid},
        )

    return _make
