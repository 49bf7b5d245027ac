"""
Shared fixtures: a controllable clock, an in-memory repository with per-order
row locks, and collaborators that record every call.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from src.config import ACTIVE_STATUSES, Priority, WorkOrderStatus
from src.core import ExternalServiceException, RepositoryException, ResourceNotFoundException
from src.workorders.application import (
    BestEffortRunner,
    ICacheInvalidator,
    INotificationDispatcher,
    ISearchIndexer,
    IWorkOrderRepository,
    StaticSLAConfigProvider,
    WorkOrderLifecycleService,
)
from src.workorders.domain import SearchDocument, WorkOrder, WorkOrderEvent

T0 = datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_order(**overrides: Any) -> WorkOrder:
    data = dict(
        id="wo-1",
        tenant_id="acme",
        plant_id="plant-7",
        asset_id="pump-12",
        title="Replace pump bearing",
        status=WorkOrderStatus.OPEN,
        priority=Priority.HIGH,
        created_at=T0,
        updated_at=T0,
        sla_deadline=T0 + timedelta(hours=24),
    )
    data.update(overrides)
    return WorkOrder(**data)


class InMemoryStore:
    """Rows shared by every repository instance, one lock per order."""

    def __init__(self):
        self.orders: Dict[Tuple[str, str], WorkOrder] = {}
        self.locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self.writes = 0
        self.rollbacks = 0
        self.overdue_queries = 0

    def add(self, order: WorkOrder) -> WorkOrder:
        self.orders[(order.tenant_id, order.id)] = order
        return order

    def lock_for(self, key: Tuple[str, str]) -> asyncio.Lock:
        return self.locks.setdefault(key, asyncio.Lock())


class InMemoryWorkOrderRepository(IWorkOrderRepository):
    """One instance per unit of work, like a repository bound to a session."""

    def __init__(self, store: InMemoryStore):
        self.store = store
        self.fail_on_patch = False
        self._held: Optional[asyncio.Lock] = None

    def _find(self, tenant_id, work_order_id, plant_id) -> Optional[WorkOrder]:
        order = self.store.orders.get((tenant_id, work_order_id))
        if order is None or (plant_id is not None and order.plant_id != plant_id):
            return None
        return order

    def _release(self) -> None:
        if self._held is not None:
            self._held.release()
            self._held = None

    async def get(self, tenant_id, work_order_id, plant_id=None):
        return self._find(tenant_id, work_order_id, plant_id)

    async def load_for_update(self, tenant_id, work_order_id, plant_id=None):
        lock = self.store.lock_for((tenant_id, work_order_id))
        await lock.acquire()
        self._held = lock
        return self._find(tenant_id, work_order_id, plant_id)

    async def atomic_patch(self, tenant_id, work_order_id, patch, plant_id=None):
        # Yield so concurrent callers interleave here if the lock allows it
        await asyncio.sleep(0)
        if self.fail_on_patch:
            raise RepositoryException("disk full")
        current = self._find(tenant_id, work_order_id, plant_id)
        if current is None:
            raise ResourceNotFoundException("Work order", work_order_id)
        updated = current.with_changes(patch)
        self.store.orders[(tenant_id, work_order_id)] = updated
        self.store.writes += 1
        self._release()
        return updated

    async def rollback(self):
        self.store.rollbacks += 1
        self._release()

    async def create(self, order):
        return self.store.add(replace(order))

    async def list_overdue_candidates(self, now, limit=500, offset=0):
        due = sorted(
            (
                order for order in self.store.orders.values()
                if order.status in ACTIVE_STATUSES
                and order.sla_deadline is not None
                and order.sla_deadline <= now
                and not (order.status == WorkOrderStatus.PAUSED and order.sla_exclude_pause)
            ),
            key=lambda order: (order.sla_deadline, order.id),
        )
        self.store.overdue_queries += 1
        return due[offset:offset + limit]


class CallLog:
    """Ordered record of collaborator calls across all recorders."""

    def __init__(self):
        self.calls: List[str] = []


class RecordingCacheInvalidator(ICacheInvalidator):
    def __init__(self, log: CallLog):
        self.log = log
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.fail = False

    async def invalidate(self, tenant_id, plant_id, work_order_id=None):
        self.log.calls.append("cache")
        if self.fail:
            raise ConnectionError("cache unreachable")
        self.calls.append((tenant_id, plant_id, work_order_id))


class RecordingSearchIndexer(ISearchIndexer):
    def __init__(self, log: CallLog):
        self.log = log
        self.documents: List[SearchDocument] = []
        self.fail = False

    async def index(self, document):
        self.log.calls.append("search")
        if self.fail:
            raise ExternalServiceException("search_indexer", "index returned 503")
        self.documents.append(document)


class RecordingNotifier(INotificationDispatcher):
    def __init__(self, log: CallLog):
        self.log = log
        self.events: List[WorkOrderEvent] = []
        self.fail = False

    async def publish(self, event):
        self.log.calls.append("notify")
        if self.fail:
            raise ExternalServiceException("notification_dispatcher", "webhook returned 500")
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [e.kind.value for e in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def call_log() -> CallLog:
    return CallLog()


@pytest.fixture
def cache_invalidator(call_log) -> RecordingCacheInvalidator:
    return RecordingCacheInvalidator(call_log)


@pytest.fixture
def search_indexer(call_log) -> RecordingSearchIndexer:
    return RecordingSearchIndexer(call_log)


@pytest.fixture
def notifier(call_log) -> RecordingNotifier:
    return RecordingNotifier(call_log)


@pytest.fixture
def runner() -> BestEffortRunner:
    return BestEffortRunner()


@pytest.fixture
def make_service(store, cache_invalidator, search_indexer, notifier, runner, clock):
    """Factory so tests can build several services over the same store."""

    def _make(**kwargs) -> WorkOrderLifecycleService:
        return WorkOrderLifecycleService(
            repository=kwargs.pop("repository", None) or InMemoryWorkOrderRepository(store),
            cache_invalidator=cache_invalidator,
            search_indexer=search_indexer,
            notification_dispatcher=notifier,
            config_provider=kwargs.pop("config_provider", StaticSLAConfigProvider()),
            runner=runner,
            clock=clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def service(make_service) -> WorkOrderLifecycleService:
    return make_service()
