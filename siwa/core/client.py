"""Sign in with Apple client: key cache, refresh thread, verifier and gateway."""

import threading
from collections.abc import Callable
from typing import Self

import structlog

from siwa.core.settings import ClientSettings
from siwa.crypto.types import KeySetSnapshot, VerifiedClaims
from siwa.crypto.verifier import TokenVerifier
from siwa.gateway.client import AppleGateway
from siwa.gateway.types import (
    ExchangeIdentifierResponse,
    RevokeResponse,
    TokenResponse,
)
from siwa.jwks.cache import KeySetCache
from siwa.jwks.scheduler import RefreshScheduler

log = structlog.get_logger(__name__)


class AppleClient:
    """Owns everything needed to talk to Sign in with Apple.

    Construction fetches Apple's public keys synchronously and fails with
    ConstructionError when none are available. A background thread then
    refreshes them every ``settings.refresh_period`` seconds until
    ``close()``.

    Example::

        with AppleClient(on_refresh_failed=alert_ops) as apple:
            tokens = apple.validate_app_token(client_id, secret.value, code)
            claims = apple.verify_token_signature(tokens.id_token)
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        on_refresh_failed: Callable[[], None] | None = None,
        gateway: AppleGateway | None = None,
    ) -> None:
        self._settings = settings or ClientSettings()
        self._owns_gateway = gateway is None
        self._gateway = gateway or AppleGateway(
            self._settings.gateway, timeout=self._settings.fetch_timeout
        )
        self._close_lock = threading.Lock()
        self._closed = False

        try:
            self._cache = KeySetCache(self._gateway.fetch_public_keys)
        except BaseException:
            if self._owns_gateway:
                self._gateway.close()
            raise

        self._verifier = TokenVerifier(
            self._cache,
            issuer=self._settings.issuer,
            leeway=self._settings.leeway,
        )
        self._scheduler = RefreshScheduler(
            self._cache,
            period=self._settings.refresh_period,
            attempts=self._settings.refresh_attempts,
            on_failure=on_refresh_failed,
            notify_on_stale=self._settings.notify_on_stale,
        )
        self._scheduler.start()
        log.info("apple_client_ready", kids=list(self._cache.current().key_ids))

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop the refresh thread and release HTTP resources. Idempotent."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._scheduler.stop()
        self._cache.close()
        if self._owns_gateway:
            self._gateway.close()
        log.info("apple_client_closed")

    def current_keys(self) -> KeySetSnapshot:
        return self._cache.current()

    def verify_token_signature(self, id_token: str) -> VerifiedClaims:
        """Verify an identity token issued by Apple.

        Raises one of EmptyTokenError, MalformedTokenError, UnknownKeyError
        or InvalidTokenError; never returns unverified claims.
        """
        return self._verifier.verify(id_token)

    def validate_app_token(
        self, client_id: str, client_secret: str, code: str
    ) -> TokenResponse:
        return self._gateway.validate_app_token(client_id, client_secret, code)

    def validate_web_token(
        self, client_id: str, client_secret: str, code: str, redirect_uri: str
    ) -> TokenResponse:
        return self._gateway.validate_web_token(
            client_id, client_secret, code, redirect_uri
        )

    def validate_refresh_token(
        self, client_id: str, client_secret: str, refresh_token: str
    ) -> TokenResponse:
        return self._gateway.validate_refresh_token(
            client_id, client_secret, refresh_token
        )

    def revoke_access_token(
        self, client_id: str, client_secret: str, access_token: str
    ) -> RevokeResponse:
        return self._gateway.revoke_access_token(client_id, client_secret, access_token)

    def revoke_refresh_token(
        self, client_id: str, client_secret: str, refresh_token: str
    ) -> RevokeResponse:
        return self._gateway.revoke_refresh_token(
            client_id, client_secret, refresh_token
        )

    def obtain_migration_access_token(
        self, client_id: str, client_secret: str
    ) -> TokenResponse:
        return self._gateway.obtain_migration_access_token(client_id, client_secret)

    def generate_transfer_sub(
        self,
        client_id: str,
        recipient_team_id: str,
        client_secret: str,
        access_token: str,
        sub: str,
    ) -> str:
        return self._gateway.generate_transfer_sub(
            client_id, recipient_team_id, client_secret, access_token, sub
        )

    def exchange_identifier(
        self,
        client_id: str,
        client_secret: str,
        access_token: str,
        transfer_sub: str,
    ) -> ExchangeIdentifierResponse:
        return self._gateway.exchange_identifier(
            client_id, client_secret, access_token, transfer_sub
        )
