"""
Process-wide directory of known repositories and backend health.

Two independent loops keep the directory fresh: a short health probe and a
longer full listing refresh. Both compute their first value eagerly in
`start()`. Each tick replaces its snapshot wholesale, so readers only ever
see the last complete listing.

Refreshes triggered by bootstrap run on a background thread and are never
awaited: a freshly created repository shows up within one listing interval
at the latest.
"""
import logging
import threading
import time
from typing import Any, Callable

from config_depot.base import DocumentStore, RepositoryEntry
from config_depot.errors import RetrievalError

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_INTERVAL = 12.0
DEFAULT_LISTING_INTERVAL = 5 * 60.0


class PeriodicRefresh:
    """Run a callback now, then every `interval` seconds on a daemon timer."""

    def __init__(self, name: str, interval: float, callback: Callable[[], Any]) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._timer: threading.Timer | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True
        self._run_once()
        self._schedule_next()
        logger.debug("Scheduled %s refresh every %.1f seconds", self.name, self.interval)

    def stop(self) -> None:
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_next(self) -> None:
        if not self._running:
            return
        self._timer = threading.Timer(self.interval, self._tick)
        self._timer.daemon = True
        self._timer.name = f"{self.name}-refresh"
        self._timer.start()

    def _run_once(self) -> None:
        try:
            self._callback()
        except Exception:
            logger.exception("Scheduled %s refresh failed", self.name)

    def _tick(self) -> None:
        if not self._running:
            return
        try:
            self._run_once()
        finally:
            self._schedule_next()


class RepositoryDirectory:
    def __init__(
        self,
        store: DocumentStore,
        health_interval: float = DEFAULT_HEALTH_INTERVAL,
        listing_interval: float = DEFAULT_LISTING_INTERVAL,
    ) -> None:
        self.store = store
        self._repositories: tuple[RepositoryEntry, ...] | None = None
        self._refreshed_at: float | None = None
        self._healthy = False
        self._lock = threading.Lock()
        self._health_loop = PeriodicRefresh("health", health_interval, self.check_health)
        self._listing_loop = PeriodicRefresh("listing", listing_interval, self.refresh)

    def __enter__(self) -> "RepositoryDirectory":
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def start(self) -> "RepositoryDirectory":
        self._health_loop.start()
        self._listing_loop.start()
        return self

    def stop(self) -> None:
        self._health_loop.stop()
        self._listing_loop.stop()

    @property
    def is_running(self) -> bool:
        return self._health_loop.is_running or self._listing_loop.is_running

    @property
    def healthy(self) -> bool:
        return self._healthy

    @property
    def is_cached(self) -> bool:
        return self._repositories is not None

    @property
    def refreshed_at(self) -> float | None:
        """time.monotonic() of the last successful listing refresh."""
        return self._refreshed_at

    def check_health(self) -> bool:
        self._healthy = self.store.healthy()
        return self._healthy

    def refresh(self) -> bool:
        """Replace the listing. On failure the previous snapshot is kept."""
        with self._lock:
            try:
                entries = tuple(self.store.list_repositories())
            except RetrievalError as e:
                logger.warning("Failed to refresh repository listing: %s", e)
                return False
            except Exception:
                logger.exception("Unexpected failure refreshing repository listing")
                return False
            self._repositories = entries
            self._refreshed_at = time.monotonic()
        logger.debug("Repository listing refreshed, %d repositories", len(entries))
        return True

    def refresh_async(self) -> threading.Thread:
        """Start one refresh in the background. Nothing waits for it."""
        thread = threading.Thread(
            target=self.refresh, name="repository-refresh", daemon=True
        )
        thread.start()
        return thread

    def repositories(self, environment: str | None = None) -> list[RepositoryEntry] | None:
        entries = self._repositories
        if entries is None:
            return None
        if environment is None:
            return list(entries)
        return [e for e in entries if e.environment == environment]

    def grouped(self, environment: str | None = None) -> dict[str, dict[str, list[dict[str, str]]]]:
        groups: dict[str, list[dict[str, str]]] = {}
        for entry in self.repositories(environment) or []:
            groups.setdefault(entry.application, []).append(
                {"name": entry.name, "path": entry.path}
            )
        return {app: {"repositories": repos} for app, repos in sorted(groups.items())}
