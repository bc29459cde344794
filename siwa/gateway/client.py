"""HTTP client for Apple's Sign in with Apple REST endpoints."""

from typing import Any, Self, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from siwa.core.errors import FetchError, GatewayError, ProviderError
from siwa.core.settings import FETCH_TIMEOUT_DEFAULT, GatewaySettings
from siwa.crypto.types import JWKSet
from siwa.gateway.types import (
    ExchangeIdentifierResponse,
    GenerateTransferSubResponse,
    RevokeResponse,
    TokenResponse,
)

PUBLIC_KEYS_PATH = "/auth/keys"
TOKEN_PATH = "/auth/token"
REVOKE_PATH = "/auth/revoke"
USER_MIGRATION_PATH = "/auth/usermigrationinfo"

MIGRATION_SCOPE = "user.migration"

log = structlog.get_logger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


class AppleGateway:
    """Synchronous client for appleid.apple.com.

    Requests use a bounded timeout and are never retried here; retry policy
    belongs to the caller.
    """

    def __init__(
        self,
        settings: GatewaySettings | None = None,
        timeout: float = FETCH_TIMEOUT_DEFAULT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        settings = settings or GatewaySettings()
        self._http = httpx.Client(
            base_url=settings.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "User-Agent": settings.user_agent,
                "Accept": "application/json",
            },
        )

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def fetch_public_keys(self) -> JWKSet:
        """GET /auth/keys.

        Raises:
            FetchError: transport failure, non-2xx status or a body that is
                not a JSON Web Key Set.
        """
        try:
            resp = self._http.get(PUBLIC_KEYS_PATH)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise FetchError(f"cannot fetch Apple's public keys: {exc}") from exc
        try:
            key_set = JWKSet.model_validate_json(resp.content)
        except ValidationError as exc:
            raise FetchError(f"unexpected public key payload: {exc}") from exc
        log.debug("public_keys_fetched", count=len(key_set.keys))
        return key_set

    def validate_app_token(
        self, client_id: str, client_secret: str, code: str
    ) -> TokenResponse:
        """Exchange an authorization code received by a native app."""
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "grant_type": "authorization_code",
        }
        return self._grant(form)

    def validate_web_token(
        self, client_id: str, client_secret: str, code: str, redirect_uri: str
    ) -> TokenResponse:
        """Exchange an authorization code received by a web redirect."""
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        return self._grant(form)

    def validate_refresh_token(
        self, client_id: str, client_secret: str, refresh_token: str
    ) -> TokenResponse:
        """Validate a stored refresh token."""
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        return self._grant(form)

    def revoke_access_token(
        self, client_id: str, client_secret: str, access_token: str
    ) -> RevokeResponse:
        return self._revoke(client_id, client_secret, access_token, "access_token")

    def revoke_refresh_token(
        self, client_id: str, client_secret: str, refresh_token: str
    ) -> RevokeResponse:
        return self._revoke(client_id, client_secret, refresh_token, "refresh_token")

    def obtain_migration_access_token(
        self, client_id: str, client_secret: str
    ) -> TokenResponse:
        """Get the access token needed to transfer users to another team."""
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": MIGRATION_SCOPE,
            "grant_type": "client_credentials",
        }
        return self._grant(form)

    def generate_transfer_sub(
        self,
        client_id: str,
        recipient_team_id: str,
        client_secret: str,
        access_token: str,
        sub: str,
    ) -> str:
        """Create the transfer identifier for one user of the sending team."""
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "sub": sub,
            "target": recipient_team_id,
        }
        rsp = self._post(
            USER_MIGRATION_PATH,
            form,
            GenerateTransferSubResponse,
            access_token=access_token,
        )
        return rsp.transfer_sub

    def exchange_identifier(
        self,
        client_id: str,
        client_secret: str,
        access_token: str,
        transfer_sub: str,
    ) -> ExchangeIdentifierResponse:
        """Resolve a transfer identifier into the recipient team's user id."""
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "transfer_sub": transfer_sub,
        }
        return self._post(
            USER_MIGRATION_PATH,
            form,
            ExchangeIdentifierResponse,
            access_token=access_token,
        )

    def _grant(self, form: dict[str, str]) -> TokenResponse:
        rsp = self._post(TOKEN_PATH, form, TokenResponse)
        if not rsp.access_token:
            raise GatewayError(
                f"{TOKEN_PATH} returned no access_token for {form['grant_type']}"
            )
        return rsp

    def _revoke(
        self, client_id: str, client_secret: str, token: str, hint: str
    ) -> RevokeResponse:
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "token": token,
            "token_type_hint": hint,
        }
        return self._post(REVOKE_PATH, form, RevokeResponse)

    def _post(
        self,
        path: str,
        form: dict[str, str],
        model: type[ResponseT],
        access_token: str | None = None,
    ) -> ResponseT:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        try:
            resp = self._http.post(path, data=form, headers=headers)
        except httpx.HTTPError as exc:
            raise GatewayError(f"POST {path} failed: {exc}") from exc
        log.debug("apple_request_done", path=path, status=resp.status_code)

        payload = self._json_body(resp, path)
        error = payload.get("error")
        if error:
            raise ProviderError(str(error), str(payload.get("error_description", "")))
        if resp.is_error:
            raise GatewayError(f"POST {path} returned HTTP {resp.status_code}")
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise GatewayError(f"unexpected response from {path}: {exc}") from exc

    @staticmethod
    def _json_body(resp: httpx.Response, path: str) -> dict[str, Any]:
        if not resp.content.strip():
            return {}
        try:
            payload = resp.json()
        except ValueError as exc:
            raise GatewayError(
                f"{path} returned a non-JSON body (HTTP {resp.status_code})"
            ) from exc
        if not isinstance(payload, dict):
            raise GatewayError(f"{path} returned a non-object JSON body")
        return payload
