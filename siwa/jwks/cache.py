"""Locally cached copy of Apple's public key set."""

import threading
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from siwa.core.errors import ClientClosedError, ConstructionError, FetchError
from siwa.crypto.types import JWKEntry, JWKSet, KeySetSnapshot

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class KeySetCache:
    """Holds the latest successfully fetched key set.

    Each refresh builds a new immutable ``KeySetSnapshot`` and swaps the
    reference, so readers never lock and never see a half-updated set.
    A failed refresh keeps serving the previous snapshot.
    """

    def __init__(
        self,
        fetch: Callable[[], JWKSet],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._fetch = fetch
        self._clock = clock
        self._snapshot = KeySetSnapshot()
        self._refresh_lock = threading.Lock()
        self._closed = False

        try:
            self.refresh()
        except FetchError as exc:
            raise ConstructionError(
                f"cannot load Apple's public keys at startup: {exc}"
            ) from exc

    @property
    def closed(self) -> bool:
        return self._closed

    def current(self) -> KeySetSnapshot:
        """Return the latest snapshot without blocking."""
        return self._snapshot

    def lookup(self, key_id: str) -> JWKEntry | None:
        """Find the key with the given kid in the current snapshot."""
        for key in self._snapshot.keys:
            if key.kid == key_id:
                return key
        return None

    def refresh(self) -> KeySetSnapshot:
        """Fetch the key set once and publish it as the new snapshot.

        Raises:
            FetchError: the fetch failed, raised an unexpected exception or
                returned no keys. The previous snapshot stays in place.
            ClientClosedError: the cache was closed.
        """
        with self._refresh_lock:
            if self._closed:
                raise ClientClosedError("key set cache is closed")
            try:
                key_set = self._fetch()
            except FetchError as exc:
                log.warning("key_set_fetch_failed", error=str(exc))
                raise
            except Exception as exc:
                log.exception("key_set_fetch_crashed")
                raise FetchError(f"key set fetch raised {exc!r}") from exc
            if not key_set.keys:
                log.warning("key_set_fetch_empty")
                raise FetchError("Apple's public key set is empty")

            snapshot = KeySetSnapshot(
                keys=tuple(key_set.keys), fetched_at=self._clock()
            )
            self._snapshot = snapshot

        log.info("key_set_refreshed", kids=list(snapshot.key_ids))
        return snapshot

    def close(self) -> None:
        """Refuse further refreshes. Lookups keep working."""
        with self._refresh_lock:
            self._closed = True
