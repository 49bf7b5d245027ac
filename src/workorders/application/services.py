"""
Work Order Application Services
================================

Application services orchestrate business logic and coordinate between
domain entities, repositories and collaborators.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories, collaborators),
  not concrete implementations. Collaborators are injected, never imported
  as module-level singletons.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from src.config import NotificationKind, Priority, WorkOrderStatus
from src.core import (
    InvalidTransitionException,
    ResourceNotFoundException,
    ValidationException,
)
from src.shared.infrastructure.logging import get_logger, log_latency
from src.workorders.application.best_effort import BestEffortRunner
from src.workorders.application.dto import WorkOrderCreateDTO
from src.workorders.domain import (
    IMMUTABLE_FIELDS,
    PHASE_ORDER,
    STATUS_TIMESTAMP_FIELDS,
    TEXT_FIELDS,
    TIMESTAMP_FIELDS,
    SearchDocument,
    SlaClock,
    SlaSnapshot,
    TransitionValidator,
    WorkOrder,
    WorkOrderEvent,
    WorkOrderSLAConfig,
    normalize_legacy_status,
    normalize_optional_text,
    normalize_timestamp,
    utcnow,
)

logger = get_logger(__name__)

MIN_REASON_LENGTH = 3


# ========== Repository & Collaborator Interfaces (Dependency Inversion) ==========

class IWorkOrderRepository(ABC):
    """Interface for work order persistence."""

    @abstractmethod
    async def get(
        self,
        tenant_id: str,
        work_order_id: str,
        plant_id: Optional[str] = None
    ) -> Optional[WorkOrder]:
        """Read a work order without locking it."""

    @abstractmethod
    async def load_for_update(
        self,
        tenant_id: str,
        work_order_id: str,
        plant_id: Optional[str] = None
    ) -> Optional[WorkOrder]:
        """Read and lock a work order until ``atomic_patch`` or ``rollback``."""

    @abstractmethod
    async def atomic_patch(
        self,
        tenant_id: str,
        work_order_id: str,
        patch: Dict[str, Any],
        plant_id: Optional[str] = None
    ) -> WorkOrder:
        """Apply ``patch`` to the locked row and commit in one transaction."""

    @abstractmethod
    async def rollback(self) -> None:
        """Abandon the current transaction and release any row lock."""

    @abstractmethod
    async def create(self, order: WorkOrder) -> WorkOrder:
        """Insert a new work order and commit."""

    @abstractmethod
    async def list_overdue_candidates(
        self,
        now: datetime,
        limit: int = 500,
        offset: int = 0
    ) -> List[WorkOrder]:
        """
        One page of active orders whose stored deadline has passed, oldest
        deadline first. Orders paused with pause exclusion on are left out.
        """


class ICacheInvalidator(ABC):
    """Interface for read-cache invalidation."""

    @abstractmethod
    async def invalidate(
        self,
        tenant_id: str,
        plant_id: str,
        work_order_id: Optional[str] = None
    ) -> None:
        """Evict cached entries for an order, or for the whole plant."""


class ISearchIndexer(ABC):
    """Interface for search re-indexing."""

    @abstractmethod
    async def index(self, document: SearchDocument) -> None:
        """Upsert the search document of a work order."""


class INotificationDispatcher(ABC):
    """Interface for work order notifications."""

    @abstractmethod
    async def publish(self, event: WorkOrderEvent) -> None:
        """Publish a work order event."""


class ISLAConfigProvider(ABC):
    """Interface for work order SLA configuration access."""

    @abstractmethod
    def get_config(self) -> WorkOrderSLAConfig:
        """Get current SLA configuration."""


class IWorkOrderReadCache(ABC):
    """Interface for the work order read cache."""

    @abstractmethod
    def get(
        self, tenant_id: str, work_order_id: str, plant_id: Optional[str] = None
    ) -> Optional[WorkOrder]:
        """Cached order, or None on miss/expiry."""

    @property
    @abstractmethod
    def generation(self) -> int:
        """Counter bumped by every eviction."""

    @abstractmethod
    def set(
        self,
        order: WorkOrder,
        plant_id: Optional[str] = None,
        generation: Optional[int] = None
    ) -> None:
        """
        Cache an order under the scope it was read with.

        When ``generation`` is given and an eviction happened since it was
        read, the order may predate a write and is not cached.
        """


class StaticSLAConfigProvider(ISLAConfigProvider):
    """Config provider holding a fixed configuration (defaults when None)."""

    def __init__(self, config: Optional[WorkOrderSLAConfig] = None):
        self._config = config or WorkOrderSLAConfig()

    def get_config(self) -> WorkOrderSLAConfig:
        return self._config


# ========== Results ==========

@dataclass(frozen=True)
class LifecycleUpdateResult:
    """Persisted order after ``apply_update``, with the live SLA view if requested."""
    order: WorkOrder
    previous_status: WorkOrderStatus
    status_changed: bool
    sla: Optional[SlaSnapshot] = None


# ========== Application Services ==========

class WorkOrderLifecycleService:
    """
    Service for creating work orders and applying lifecycle updates.

    One ``apply_update`` call is one unit of work:
    load (locked) -> normalize -> validate -> SLA pause accounting ->
    atomic write -> best-effort cache/search/notification side effects.
    """

    def __init__(
        self,
        repository: IWorkOrderRepository,
        cache_invalidator: ICacheInvalidator,
        search_indexer: ISearchIndexer,
        notification_dispatcher: INotificationDispatcher,
        config_provider: Optional[ISLAConfigProvider] = None,
        read_cache: Optional[IWorkOrderReadCache] = None,
        runner: Optional[BestEffortRunner] = None,
        clock: Callable[[], datetime] = utcnow,
        require_transition_reasons: bool = False
    ):
        self._repo = repository
        self._cache_invalidator = cache_invalidator
        self._search_indexer = search_indexer
        self._notifier = notification_dispatcher
        self._config_provider = config_provider or StaticSLAConfigProvider()
        self._read_cache = read_cache
        self._runner = runner or BestEffortRunner()
        self._clock = clock
        self._require_reasons = require_transition_reasons

    # ----- creation -----

    async def create_work_order(
        self,
        tenant_id: str,
        plant_id: str,
        data: WorkOrderCreateDTO
    ) -> WorkOrder:
        """
        Create an open work order with its SLA deadline seeded from priority.

        Args:
            tenant_id: Owning tenant
            plant_id: Owning plant
            data: Validated creation payload

        Returns:
            WorkOrder: The persisted order
        """
        now = self._clock()
        priority = Priority(data.priority)
        hours = self._config_provider.get_config().get_hours(priority, tenant_id)
        scheduled_at = normalize_timestamp("scheduled_at", data.scheduled_at)

        order = WorkOrder(
            id=str(uuid4()),
            tenant_id=tenant_id,
            plant_id=plant_id,
            asset_id=data.asset_id,
            title=data.title.strip(),
            description=normalize_optional_text(data.description),
            status=WorkOrderStatus.OPEN,
            priority=priority,
            created_at=now,
            updated_at=now,
            scheduled_at=scheduled_at,
            sla_deadline=SlaClock.seed_deadline(
                created_at=now,
                hours=hours,
                scheduled_at=scheduled_at,
                explicit_deadline=normalize_timestamp("sla_deadline", data.sla_deadline),
            ),
            sla_exclude_pause=data.sla_exclude_pause,
        )

        created = await self._repo.create(order)

        logger.info(
            "Work order created",
            extra={
                "tenant_id": tenant_id,
                "plant_id": plant_id,
                "work_order_id": created.id,
                "priority": priority.value,
                "sla_hours": hours,
            },
        )

        self._dispatch_side_effects(
            created,
            WorkOrderEvent(
                tenant_id=created.tenant_id,
                plant_id=created.plant_id,
                work_order_id=created.id,
                kind=NotificationKind.CREATED,
                title=created.title,
                to_status=created.status,
            ),
        )
        return created

    # ----- reads -----

    async def get_work_order(
        self,
        tenant_id: str,
        work_order_id: str,
        plant_id: Optional[str] = None
    ) -> Tuple[WorkOrder, SlaSnapshot]:
        """
        Get a work order with its live SLA view.

        Raises:
            ResourceNotFoundException: If the order is not in the tenant/plant scope
        """
        order = None
        if self._read_cache is not None:
            order = self._read_cache.get(tenant_id, work_order_id, plant_id)

        if order is None:
            generation = self._read_cache.generation if self._read_cache is not None else None
            order = await self._repo.get(tenant_id, work_order_id, plant_id)
            if order is None:
                raise ResourceNotFoundException("Work order", work_order_id)
            if self._read_cache is not None:
                self._read_cache.set(order, plant_id, generation)

        return order, SlaClock.snapshot(order, self._clock())

    # ----- lifecycle updates -----

    async def apply_update(
        self,
        tenant_id: str,
        work_order_id: str,
        patch: Dict[str, Any],
        plant_id: Optional[str] = None,
        include_sla: bool = False
    ) -> LifecycleUpdateResult:
        """
        Apply a lifecycle update (field changes and/or a status change).

        Args:
            tenant_id: Owning tenant
            work_order_id: Order to update
            patch: Raw field changes as sent by the caller
            plant_id: Optional plant scope
            include_sla: Also compute the live SLA view of the result

        Returns:
            LifecycleUpdateResult

        Raises:
            ResourceNotFoundException: Order not found in scope (nothing written)
            InvalidTransitionException: Status change rejected (nothing written)
            ValidationException: Malformed patch (nothing written)
        """
        current = await self._repo.load_for_update(tenant_id, work_order_id, plant_id)
        if current is None:
            await self._repo.rollback()
            logger.info(
                "Work order not found",
                extra={"tenant_id": tenant_id, "work_order_id": work_order_id, "plant_id": plant_id},
            )
            raise ResourceNotFoundException("Work order", work_order_id)

        try:
            now = self._clock()
            changes = self._normalize_patch(patch)
            requested = changes.pop("status", None)
            status_changed = requested is not None and requested != current.status

            # Final orders reject any status in the patch, including their own
            if requested is not None and current.is_final:
                raise InvalidTransitionException(
                    current.status,
                    requested,
                    f"order already finalized ({current.status.value} → {requested.value})",
                )

            if status_changed:
                result = TransitionValidator.validate(current.status, requested)
                if not result.ok:
                    raise InvalidTransitionException(current.status, requested, result.reason)
                self._check_reasons(requested, changes)
                changes["status"] = requested
                changes.update(self._lifecycle_timestamps(current, requested, changes, now))
                changes.update(SlaClock.pause_accounting(current, requested, now).changes)

            changes.update(self._downtime(current, changes))
            changes["updated_at"] = now

            with log_latency(logger, "work_order_atomic_patch", work_order_id=work_order_id):
                updated = await self._repo.atomic_patch(
                    tenant_id, work_order_id, changes, plant_id
                )
        except InvalidTransitionException as e:
            await self._repo.rollback()
            logger.info(
                "Work order transition rejected",
                extra={
                    "tenant_id": tenant_id,
                    "work_order_id": work_order_id,
                    "from_status": current.status.value,
                    "reason": e.message,
                },
            )
            raise
        except Exception:
            await self._repo.rollback()
            raise

        if status_changed:
            logger.info(
                "Work order status changed",
                extra={
                    "tenant_id": tenant_id,
                    "work_order_id": work_order_id,
                    "from_status": current.status.value,
                    "to_status": updated.status.value,
                    "sla_paused_ms": updated.sla_paused_ms,
                },
            )

        self._dispatch_side_effects(
            updated,
            WorkOrderEvent(
                tenant_id=updated.tenant_id,
                plant_id=updated.plant_id,
                work_order_id=updated.id,
                kind=NotificationKind.STATUS_CHANGED if status_changed else NotificationKind.UPDATED,
                title=updated.title,
                from_status=current.status if status_changed else None,
                to_status=updated.status if status_changed else None,
            ),
        )

        if (
            status_changed
            and current.status == WorkOrderStatus.PAUSED
            and updated.status == WorkOrderStatus.IN_EXECUTION
            and SlaClock.is_overdue(updated, now)
        ):
            self._notify(
                WorkOrderEvent(
                    tenant_id=updated.tenant_id,
                    plant_id=updated.plant_id,
                    work_order_id=updated.id,
                    kind=NotificationKind.SLA_OVERDUE,
                    title=updated.title,
                    to_status=updated.status,
                )
            )

        return LifecycleUpdateResult(
            order=updated,
            previous_status=current.status,
            status_changed=status_changed,
            sla=SlaClock.snapshot(updated, self._clock()) if include_sla else None,
        )

    async def drain_side_effects(self) -> None:
        """Wait for scheduled collaborator calls (shutdown and tests)."""
        await self._runner.drain()

    # ----- helpers -----

    def _normalize_patch(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Drop immutable fields; canonicalize status, timestamps and free text."""
        changes: Dict[str, Any] = {}
        for key, value in patch.items():
            if key in IMMUTABLE_FIELDS:
                logger.debug("Ignoring immutable field in patch", extra={"field": key})
                continue
            if key == "status":
                if value is not None:
                    changes["status"] = normalize_legacy_status(value)
            elif key in TIMESTAMP_FIELDS:
                changes[key] = normalize_timestamp(key, value)
            elif key in TEXT_FIELDS:
                changes[key] = normalize_optional_text(value)
        return changes

    def _check_reasons(self, requested: WorkOrderStatus, changes: Dict[str, Any]) -> None:
        if not self._require_reasons:
            return
        required = {
            WorkOrderStatus.PAUSED: "pause_reason",
            WorkOrderStatus.CANCELLED: "cancel_reason",
        }.get(requested)
        if required and len(changes.get(required) or "") < MIN_REASON_LENGTH:
            raise ValidationException(
                f"{required} is required (at least {MIN_REASON_LENGTH} characters) "
                f"to move an order to {requested.value}",
                {"field": required},
            )

    @staticmethod
    def _lifecycle_timestamps(
        current: WorkOrder,
        requested: WorkOrderStatus,
        changes: Dict[str, Any],
        now: datetime
    ) -> Dict[str, Any]:
        """Stamp the timestamp of the entered phase; clear later phases on re-entry."""
        stamps: Dict[str, Any] = {}

        field_name = STATUS_TIMESTAMP_FIELDS.get(requested)
        if field_name and changes.get(field_name) is None and getattr(current, field_name) is None:
            stamps[field_name] = now

        if current.status in PHASE_ORDER and requested in PHASE_ORDER:
            target_rank = PHASE_ORDER[requested]
            if target_rank < PHASE_ORDER[current.status]:
                for status, rank in PHASE_ORDER.items():
                    later_field = STATUS_TIMESTAMP_FIELDS.get(status)
                    if rank > target_rank and later_field and later_field not in changes:
                        stamps[later_field] = None

        return stamps

    @staticmethod
    def _downtime(current: WorkOrder, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Recompute downtime_minutes when either downtime bound is patched."""
        if "downtime_started_at" not in changes and "downtime_ended_at" not in changes:
            return {}

        start = changes.get("downtime_started_at", current.downtime_started_at)
        end = changes.get("downtime_ended_at", current.downtime_ended_at)

        if start is None and end is None:
            return {"downtime_minutes": None}
        if start is None or end is None:
            raise ValidationException(
                "downtime: provide both start and end (or clear both)",
                {"field": "downtime_started_at" if start is None else "downtime_ended_at"},
            )
        if end < start:
            raise ValidationException(
                "downtime: end must not be before start",
                {"field": "downtime_ended_at"},
            )
        return {"downtime_minutes": round((end - start) / timedelta(minutes=1))}

    def _dispatch_side_effects(self, order: WorkOrder, event: WorkOrderEvent) -> None:
        """Cache invalidation, re-indexing and notification, in that order."""
        context = {"tenant_id": order.tenant_id, "work_order_id": order.id}
        self._runner.fire_and_forget(
            "cache_invalidator",
            lambda: self._cache_invalidator.invalidate(order.tenant_id, order.plant_id, order.id),
            **context,
        )
        document = SearchDocument.from_work_order(order)
        self._runner.fire_and_forget(
            "search_indexer",
            lambda: self._search_indexer.index(document),
            **context,
        )
        self._notify(event)

    def _notify(self, event: WorkOrderEvent) -> None:
        self._runner.fire_and_forget(
            "notification_dispatcher",
            lambda: self._notifier.publish(event),
            tenant_id=event.tenant_id,
            work_order_id=event.work_order_id,
            kind=event.kind.value,
        )


class SlaOverdueSweeper:
    """
    Finds overdue work orders and publishes one ``sla_overdue`` event per order
    per renotify window.

    Run periodically by the scheduler. It never changes an order's status.
    """

    def __init__(
        self,
        notification_dispatcher: INotificationDispatcher,
        renotify_after: timedelta = timedelta(hours=6),
        runner: Optional[BestEffortRunner] = None,
        clock: Callable[[], datetime] = utcnow,
        batch_size: int = 500
    ):
        self._notifier = notification_dispatcher
        self._renotify_after = renotify_after
        self._batch_size = batch_size
        self._runner = runner or BestEffortRunner()
        self._clock = clock
        self._notified_at: Dict[str, datetime] = {}

    async def sweep(self, repository: IWorkOrderRepository) -> dict:
        """
        Evaluate overdue candidates and notify.

        Args:
            repository: Repository bound to the sweep's session

        Returns:
            Summary of the sweep
        """
        now = self._clock()
        self._forget_expired(now)

        evaluated = 0
        overdue = 0
        notified = 0

        async for order in self._candidates(repository, now):
            evaluated += 1
            if SlaClock.suppress_alerts_while_paused(order) or not SlaClock.is_overdue(order, now):
                continue
            overdue += 1
            if order.id in self._notified_at:
                continue

            sent = await self._runner.run(
                "notification_dispatcher",
                lambda order=order: self._notifier.publish(
                    WorkOrderEvent(
                        tenant_id=order.tenant_id,
                        plant_id=order.plant_id,
                        work_order_id=order.id,
                        kind=NotificationKind.SLA_OVERDUE,
                        title=order.title,
                        to_status=order.status,
                    )
                ),
                tenant_id=order.tenant_id,
                work_order_id=order.id,
            )
            if sent:
                self._notified_at[order.id] = now
                notified += 1

        summary = {
            "orders_evaluated": evaluated,
            "orders_overdue": overdue,
            "notifications_sent": notified,
        }
        logger.info("SLA overdue sweep complete", extra=summary)
        return summary

    async def _candidates(
        self,
        repository: IWorkOrderRepository,
        now: datetime
    ) -> AsyncIterator[WorkOrder]:
        offset = 0
        while True:
            page = await repository.list_overdue_candidates(now, self._batch_size, offset)
            for order in page:
                yield order
            if len(page) < self._batch_size:
                return
            offset += self._batch_size

    def _forget_expired(self, now: datetime) -> None:
        expired = [
            order_id for order_id, at in self._notified_at.items()
            if now - at >= self._renotify_after
        ]
        for order_id in expired:
            del self._notified_at[order_id]
