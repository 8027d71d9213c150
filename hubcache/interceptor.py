"""Offline cache interceptor with install / activate / intercept lifecycle.

Caching strategy:
- Install: pre-cache every manifest resource as one all-or-nothing batch
- Activate: delete every store not named by the current version tag
- Intercept: cache-first; on a miss fetch from the network, write 200
  same-origin responses through to the store, and serve the offline
  page when the network fails
"""

import logging
from collections.abc import Sequence

from .fetcher import Fetcher, NetworkError, resolve_url
from .models import Request, Response
from .store import CacheStore, MemoryCacheStorage, SqliteCacheStorage, StoreError

logger = logging.getLogger(__name__)

# Lifecycle phases
PHASE_NEW = "new"
PHASE_INSTALLING = "installing"
PHASE_INSTALLED = "installed"
PHASE_ACTIVATING = "activating"
PHASE_ACTIVATED = "activated"
PHASE_REDUNDANT = "redundant"

# Served when the network fails and the offline page itself is not cached.
OFFLINE_PLACEHOLDER_HTML = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>Offline</title></head>
<body><h1>Offline</h1><p>This page is not available offline. Check your connection and try again.</p></body>
</html>"""


class InstallError(Exception):
    """Raised when the manifest could not be cached during install."""

    pass


class LifecycleError(Exception):
    """Raised when a lifecycle hook is called in the wrong phase."""

    pass


class OfflineInterceptor:
    """Cache-first request interceptor backed by a named cache store.

    The storage and fetcher are injected so tests can substitute an
    in-memory storage and a fake network.
    """

    def __init__(
        self,
        storage: SqliteCacheStorage | MemoryCacheStorage,
        fetcher: Fetcher,
        cache_name: str,
        manifest: Sequence[str],
        fallback_path: str,
        origin: str,
    ) -> None:
        self.storage = storage
        self.fetcher = fetcher
        self.cache_name = cache_name
        self.manifest = list(manifest)
        self.fallback_path = fallback_path
        self.origin = origin
        self._phase = PHASE_NEW
        self._store: CacheStore | None = None

    @property
    def phase(self) -> str:
        return self._phase

    def _require_phase(self, hook: str, *allowed: str) -> None:
        if self._phase not in allowed:
            raise LifecycleError(f"Cannot {hook} while {self._phase} (expected {' or '.join(allowed)})")

    def resolve(self, path: str) -> Request:
        """Build the GET request identity for a manifest path."""
        return Request(url=resolve_url(self.origin, path))

    def install(self) -> None:
        """Open the current store and pre-cache every manifest resource.

        Every resource is fetched before anything is written, then all
        entries are stored in one write. If the store did not exist before
        this call and the batch fails, the store is deleted again.

        Raises:
            InstallError: If any manifest resource fails to fetch or is not 2xx.
            LifecycleError: If install was already attempted.
        """
        self._require_phase("install", PHASE_NEW)
        self._phase = PHASE_INSTALLING
        logger.info("Installing cache '%s' (%d resources)", self.cache_name, len(self.manifest))

        try:
            existed = self.storage.has(self.cache_name)
        except StoreError as e:
            self._phase = PHASE_REDUNDANT
            raise InstallError(f"Failed to install cache '{self.cache_name}': {e}") from e

        try:
            store = self.storage.open(self.cache_name)

            entries: list[tuple[Request, Response]] = []
            for path in self.manifest:
                request = self.resolve(path)
                response = self.fetcher.fetch(request)
                if not response.ok:
                    raise InstallError(f"Request for {request.url} returned status {response.status}")
                entries.append((request, response))

            store.put_all(entries)

        except (InstallError, NetworkError, StoreError) as e:
            self._phase = PHASE_REDUNDANT
            if not existed:
                self._discard_partial_store()
            if isinstance(e, InstallError):
                raise
            raise InstallError(f"Failed to install cache '{self.cache_name}': {e}") from e

        self._phase = PHASE_INSTALLED
        logger.info("Cache '%s' installed", self.cache_name)

    def _discard_partial_store(self) -> None:
        try:
            if self.storage.delete(self.cache_name):
                logger.info("Discarded incomplete cache '%s'", self.cache_name)
        except StoreError as e:
            logger.error("Failed to discard incomplete cache '%s': %s", self.cache_name, e)

    def activate(self) -> list[str]:
        """Delete every store whose name is not the current cache name.

        Returns:
            Names of the deleted stores.

        Raises:
            LifecycleError: If install has not completed.
            StoreError: If the stores cannot be listed or deleted. The
                interceptor is then redundant.
        """
        self._require_phase("activate", PHASE_INSTALLED)
        self._phase = PHASE_ACTIVATING
        logger.info("Activating cache '%s'", self.cache_name)

        deleted: list[str] = []
        try:
            for name in self.storage.keys():
                if name != self.cache_name:
                    logger.info("Deleting old cache: %s", name)
                    self.storage.delete(name)
                    deleted.append(name)
            self._store = self.storage.open(self.cache_name)
        except StoreError:
            self._phase = PHASE_REDUNDANT
            logger.error("Activation of cache '%s' failed after deleting %s", self.cache_name, deleted or "nothing")
            raise

        self._phase = PHASE_ACTIVATED
        return deleted

    def handle(self, request: Request) -> Response:
        """Answer request from the cache, the network, or the offline page.

        Never raises for network failures; those are answered with the
        fallback resource.

        Raises:
            LifecycleError: If the interceptor is not activated.
        """
        self._require_phase("intercept requests", PHASE_ACTIVATED)
        store = self._store

        cached = store.match(request)
        if cached is not None:
            logger.debug("Cache hit: %s", request.url)
            return cached

        logger.debug("Cache miss: %s", request.url)
        try:
            response = self.fetcher.fetch(request)
        except NetworkError as e:
            logger.warning("Network unavailable for %s, serving offline page: %s", request.url, e)
            return self._fallback(store)

        if response.status != 200 or response.type != "basic":
            return response

        to_caller, to_store = response.duplicate()
        try:
            store.put(request, to_store)
        except StoreError as e:
            logger.warning("Failed to cache %s: %s", request.url, e)
        return to_caller

    def _fallback(self, store) -> Response:
        fallback_request = self.resolve(self.fallback_path)
        cached = store.match(fallback_request)
        if cached is not None:
            return cached

        logger.warning("Offline page %s is not cached", fallback_request.url)
        return Response(
            status=503,
            url=fallback_request.url,
            body=OFFLINE_PLACEHOLDER_HTML.encode("utf-8"),
            status_text="Service Unavailable",
            headers=[("Content-Type", "text/html; charset=utf-8")],
            type="error",
        )
