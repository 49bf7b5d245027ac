"""
Work Order External Service Integrations
=========================================

Collaborators used by the lifecycle service and the overdue sweep:
- Webhook notifications (Slack-compatible payload)
- Search re-indexing over HTTP
- In-process read cache and its invalidator
- YAML config file watcher
- APScheduler for the background overdue sweep
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.config import NotificationKind
from src.core import ExternalServiceException
from src.shared.infrastructure.logging import get_logger
from src.workorders.application.services import (
    ICacheInvalidator,
    INotificationDispatcher,
    ISearchIndexer,
    IWorkOrderReadCache,
)
from src.workorders.domain import SearchDocument, WorkOrder, WorkOrderEvent
from src.workorders.infrastructure.repositories import YAMLConfigProvider

logger = get_logger(__name__)


# ========== Config hot reload ==========

class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, watcher: "SLAConfigWatcher", config_path: Path):
        self.watcher = watcher
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA config file changed", extra={"path": str(event.src_path)})
            self.watcher.reload()

    on_created = on_modified


class SLAConfigWatcher:
    """
    Hot-reloads a ``YAMLConfigProvider`` when its file changes.

    Reloads are serialized; readers keep getting the previous config
    until the new one has been parsed.
    """

    def __init__(self, provider: YAMLConfigProvider, path: Path):
        self._provider = provider
        self._path = Path(path)
        self._lock = threading.Lock()
        self._observer = None

    def reload(self) -> None:
        with self._lock:
            self._provider.reload()

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skipped when the file does not exist or inotify is unavailable
        (e.g. some container runtimes).
        """
        if not self._path.exists():
            logger.info(
                "SLA config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)},
            )
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                ConfigFileHandler(self, self._path),
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching SLA config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def is_watching(self) -> bool:
        return self._observer is not None


# ========== Circuit breaker ==========

class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "collaborator": self.name,
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout,
                },
            )


class _HttpCollaborator:
    """Shared httpx client handling for the HTTP-backed collaborators."""

    def __init__(self, timeout: float, client: Optional[httpx.AsyncClient] = None):
        self._timeout = timeout
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


# ========== Notifications ==========

_HEADERS = {
    NotificationKind.CREATED: "New work order",
    NotificationKind.UPDATED: "Work order updated",
    NotificationKind.STATUS_CHANGED: "Work order status changed",
    NotificationKind.SLA_OVERDUE: "Work order SLA overdue",
}


class WebhookNotificationDispatcher(INotificationDispatcher):
    """
    Webhook notification client with circuit breaker and retry logic.

    Posts a Block Kit message with the event attached as JSON. When no
    webhook URL is configured every publish is a logged no-op.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        channel: str,
        timeout: float = 5.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._channel = channel
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._circuit_breaker = CircuitBreaker("notification_dispatcher")
        self._http = _HttpCollaborator(timeout, client)

    def _build_message(self, event: WorkOrderEvent) -> Dict[str, Any]:
        """Build a Block Kit message for an event."""
        fields = [
            {"type": "mrkdwn", "text": f"*Work order:*\n{event.work_order_id}"},
            {"type": "mrkdwn", "text": f"*Plant:*\n{event.plant_id}"},
        ]
        if event.to_status is not None:
            transition = event.to_status.value
            if event.from_status is not None:
                transition = f"{event.from_status.value} → {transition}"
            fields.append({"type": "mrkdwn", "text": f"*Status:*\n{transition}"})

        return {
            "channel": self._channel,
            "text": f"{_HEADERS[event.kind]}: {event.title}",
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": _HEADERS[event.kind]},
                },
                {"type": "section", "fields": fields},
            ],
            "event": event.to_dict(),
        }

    async def publish(self, event: WorkOrderEvent) -> None:
        """
        Send an event to the webhook.

        Raises:
            ExternalServiceException: If the circuit is open or every attempt failed
        """
        if not self._webhook_url:
            logger.debug("Notification webhook URL not configured, skipping notification")
            return

        if not self._circuit_breaker.allow_request():
            raise ExternalServiceException("notification_dispatcher", "circuit breaker open")

        message = self._build_message(event)
        last_error = "no attempt made"

        for attempt in range(self._max_retries):
            try:
                client = await self._http._get_client()
                response = await client.post(self._webhook_url, json=message)
                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Work order notification sent",
                        extra={"work_order_id": event.work_order_id, "kind": event.kind.value},
                    )
                    return
                last_error = f"webhook returned {response.status_code}"
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__

            logger.warning(
                "Notification attempt failed",
                extra={"attempt": attempt + 1, "error": last_error, "work_order_id": event.work_order_id},
            )
            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_base_delay * 2 ** attempt)

        self._circuit_breaker.record_failure()
        raise ExternalServiceException("notification_dispatcher", last_error)

    async def close(self) -> None:
        await self._http.close()


# ========== Search ==========

class HttpSearchIndexer(ISearchIndexer):
    """
    Upserts work order documents into a search cluster over HTTP.

    Uses the document API: ``PUT {base_url}/{index}/_doc/{id}``. When no
    base URL is configured indexing is a logged no-op.
    """

    def __init__(
        self,
        base_url: Optional[str],
        index: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self._base_url = base_url.rstrip("/") if base_url else None
        self._index = index
        self._circuit_breaker = CircuitBreaker("search_indexer")
        self._http = _HttpCollaborator(timeout, client)

    async def index(self, document: SearchDocument) -> None:
        """
        Raises:
            ExternalServiceException: If the circuit is open or the cluster rejects the document
        """
        if not self._base_url:
            logger.debug("Search URL not configured, skipping indexing")
            return

        if not self._circuit_breaker.allow_request():
            raise ExternalServiceException("search_indexer", "circuit breaker open")

        url = f"{self._base_url}/{self._index}/_doc/{document.id}"
        try:
            client = await self._http._get_client()
            response = await client.put(url, json=document.to_dict())
        except httpx.HTTPError as e:
            self._circuit_breaker.record_failure()
            raise ExternalServiceException("search_indexer", str(e) or type(e).__name__)

        if not response.is_success:
            self._circuit_breaker.record_failure()
            raise ExternalServiceException(
                "search_indexer", f"index returned {response.status_code}"
            )

        self._circuit_breaker.record_success()
        logger.debug("Work order indexed", extra={"work_order_id": document.id})

    async def close(self) -> None:
        await self._http.close()


# ========== Read cache ==========

CacheKey = Tuple[str, Optional[str], str]


class InMemoryWorkOrderReadCache(IWorkOrderReadCache):
    """
    Per-process TTL cache for single work order reads.

    Entries are keyed by (tenant, plant scope, id). A TTL of 0 disables caching.
    Every eviction bumps ``generation`` so reads that started before it do not
    store what they loaded.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, Tuple[float, WorkOrder]] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def get(
        self, tenant_id: str, work_order_id: str, plant_id: Optional[str] = None
    ) -> Optional[WorkOrder]:
        key = (tenant_id, plant_id, work_order_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, order = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return order

    def set(
        self,
        order: WorkOrder,
        plant_id: Optional[str] = None,
        generation: Optional[int] = None
    ) -> None:
        if self._ttl <= 0:
            return
        # An eviction ran while the caller was reading; the row may be stale
        if generation is not None and generation != self._generation:
            return
        self._entries[(order.tenant_id, plant_id, order.id)] = (self._clock() + self._ttl, order)

    def evict(self, predicate: Callable[[CacheKey, WorkOrder], bool]) -> int:
        self._generation += 1
        keys = [key for key, (_, order) in self._entries.items() if predicate(key, order)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._entries)


class ReadCacheInvalidator(ICacheInvalidator):
    """Evicts entries from the in-process read cache after writes."""

    def __init__(self, cache: InMemoryWorkOrderReadCache):
        self._cache = cache

    async def invalidate(
        self,
        tenant_id: str,
        plant_id: str,
        work_order_id: Optional[str] = None
    ) -> None:
        def matches(key: CacheKey, order: WorkOrder) -> bool:
            if order.tenant_id != tenant_id:
                return False
            if work_order_id is not None:
                return order.id == work_order_id
            return order.plant_id == plant_id

        evicted = self._cache.evict(matches)
        logger.debug(
            "Read cache invalidated",
            extra={"tenant_id": tenant_id, "plant_id": plant_id, "work_order_id": work_order_id, "evicted": evicted},
        )


# ========== Scheduler ==========

class SLAOverdueScheduler:
    """
    Wrapper for APScheduler running the SLA overdue sweep.

    Manages the lifecycle of the scheduler and its single job.
    """

    def __init__(self, interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA overdue scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_overdue_sweep",
            name="SLA Overdue Sweep",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA overdue scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA overdue scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
