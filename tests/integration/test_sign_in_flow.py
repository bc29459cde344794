"""Integration test: full Sign in with Apple server-side flow."""

from collections.abc import Callable, Iterator
from urllib.parse import parse_qs

import httpx
import jwt
import pytest

from siwa.core.client import AppleClient
from siwa.core.errors import InvalidTokenError, ProviderError
from siwa.core.settings import APPLE_ISSUER, ClientSettings
from siwa.crypto.client_secret import generate_client_secret
from siwa.crypto.types import AuthKey, JWKEntry, SigningKeyData
from siwa.gateway.client import AppleGateway

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
AUTH_CODE = "c1a2b3.0.mrqzu.valid-code"
USER_EMAIL = "abc123@privaterelay.appleid.com"


class FakeApple:
    """Minimal appleid.apple.com: key set, token and revoke endpoints."""

    def __init__(
        self,
        jwk: JWKEntry,
        es256_keypair: SigningKeyData,
        make_id_token: Callable[..., str],
    ) -> None:
        self._jwk = jwk
        self._client_public_key = es256_keypair.public_key_pem
        self._make_id_token = make_id_token
        self.revoked: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/keys":
            return httpx.Response(
                HTTP_OK, json={"keys": [self._jwk.model_dump(exclude_none=True)]}
            )
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        if not self._client_secret_ok(form):
            return httpx.Response(HTTP_BAD_REQUEST, json={"error": "invalid_client"})
        if request.url.path == "/auth/token":
            return self._token(form)
        if request.url.path == "/auth/revoke":
            self.revoked.append(form["token"])
            return httpx.Response(HTTP_OK)
        return httpx.Response(404)

    def _client_secret_ok(self, form: dict[str, str]) -> bool:
        try:
            claims = jwt.decode(
                form["client_secret"],
                self._client_public_key,
                algorithms=["ES256"],
                audience=APPLE_ISSUER,
            )
        except jwt.PyJWTError:
            return False
        return claims["sub"] == form["client_id"]

    def _token(self, form: dict[str, str]) -> httpx.Response:
        if form.get("code") != AUTH_CODE:
            return httpx.Response(
                HTTP_BAD_REQUEST,
                json={"error": "invalid_grant", "error_description": "bad code"},
            )
        return httpx.Response(
            HTTP_OK,
            json={
                "access_token": "a1b2c3.0.access",
                "token_type": "bearer",
                "expires_in": 3600,
                "refresh_token": "r1b2c3.0.refresh",
                "id_token": self._make_id_token(aud=form["client_id"]),
            },
        )


@pytest.fixture
def fake_apple(
    apple_jwk: JWKEntry,
    es256_keypair: SigningKeyData,
    make_id_token: Callable[..., str],
) -> FakeApple:
    return FakeApple(apple_jwk, es256_keypair, make_id_token)


@pytest.fixture
def apple(fake_apple: FakeApple) -> Iterator[AppleClient]:
    gateway = AppleGateway(transport=httpx.MockTransport(fake_apple))
    with gateway, AppleClient(ClientSettings(), gateway=gateway) as client:
        yield client


class TestSignInFlow:
    """Code exchange, identity verification and revocation end to end."""

    def test_full_flow(
        self, apple: AppleClient, auth_key: AuthKey, fake_apple: FakeApple
    ) -> None:
        secret = generate_client_secret(auth_key)

        tokens = apple.validate_app_token(auth_key.client_id, secret.value, AUTH_CODE)
        claims = apple.verify_token_signature(tokens.id_token)

        assert claims.iss == APPLE_ISSUER
        assert claims.aud == auth_key.client_id
        assert claims.email == USER_EMAIL
        assert claims.is_private_email is True

        apple.revoke_refresh_token(
            auth_key.client_id, secret.value, tokens.refresh_token
        )
        assert fake_apple.revoked == ["r1b2c3.0.refresh"]

    def test_bad_code(self, apple: AppleClient, auth_key: AuthKey) -> None:
        secret = generate_client_secret(auth_key)
        with pytest.raises(ProviderError, match="invalid_grant"):
            apple.validate_app_token(auth_key.client_id, secret.value, "used-code")

    def test_foreign_client_secret_rejected(
        self, apple: AppleClient, auth_key: AuthKey
    ) -> None:
        with pytest.raises(ProviderError, match="invalid_client"):
            apple.validate_app_token(auth_key.client_id, "not-a-jwt", AUTH_CODE)

    def test_tampered_id_token(self, apple: AppleClient, auth_key: AuthKey) -> None:
        secret = generate_client_secret(auth_key)
        tokens = apple.validate_app_token(auth_key.client_id, secret.value, AUTH_CODE)
        header, payload, signature = tokens.id_token.split(".")
        tampered = ".".join([header, payload, signature[:-4] + "AAAA"])
        with pytest.raises(InvalidTokenError):
            apple.verify_token_signature(tampered)
