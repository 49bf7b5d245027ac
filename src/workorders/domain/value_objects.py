"""
Work Order SLA Value Objects
=============================

Immutable value objects and the pause-aware SLA clock.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from src.config import DEFAULT_SLA_HOURS, Priority, WorkOrderStatus
from src.workorders.domain.entities import WorkOrder
from src.workorders.domain.timestamps import ensure_aware

_ONE_MS = timedelta(milliseconds=1)


def _ms_between(start: datetime, end: datetime) -> int:
    """Whole milliseconds from ``start`` to ``end`` (may be negative)."""
    return (ensure_aware(end) - ensure_aware(start)) // _ONE_MS


class WorkOrderSLAConfig(BaseModel):
    """
    Work order SLA configuration loaded from YAML.

    Resolution hours per priority, optionally overridden per tenant.
    Every hours value is clamped to at least one hour.
    """
    default_hours: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_SLA_HOURS),
        description="Resolution hours by priority"
    )
    tenant_overrides: Dict[str, Dict[str, int]] = Field(
        default_factory=dict,
        description="Per-tenant resolution hours by priority"
    )

    @field_validator("default_hours")
    @classmethod
    def validate_default_hours(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Back-fill missing priorities and clamp to >= 1 hour."""
        for priority, hours in DEFAULT_SLA_HOURS.items():
            v.setdefault(priority, hours)
        return {k: max(1, int(hours)) for k, hours in v.items()}

    @field_validator("tenant_overrides")
    @classmethod
    def validate_tenant_overrides(
        cls, v: Dict[str, Dict[str, int]]
    ) -> Dict[str, Dict[str, int]]:
        return {
            tenant: {k: max(1, int(hours)) for k, hours in rules.items()}
            for tenant, rules in v.items()
        }

    def get_hours(self, priority: Priority, tenant_id: Optional[str] = None) -> int:
        """
        Resolution hours for a priority, preferring the tenant's override.

        Falls back to the medium-priority hours for an unconfigured priority.
        """
        key = Priority(priority).value
        if tenant_id and key in self.tenant_overrides.get(tenant_id, {}):
            return self.tenant_overrides[tenant_id][key]
        return self.default_hours.get(key, self.default_hours[Priority.MEDIUM.value])


@dataclass(frozen=True)
class PauseAccounting:
    """SLA field changes implied by a status transition."""
    changes: Dict[str, Any]

    @property
    def is_empty(self) -> bool:
        return not self.changes


@dataclass(frozen=True)
class SlaSnapshot:
    """Read-time SLA view of a work order (never persisted)."""
    deadline: Optional[datetime]
    effective_deadline: Optional[datetime]
    paused_ms: int
    remaining_ms: Optional[int]
    is_overdue: bool
    status_aging_ms: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "effective_deadline": (
                self.effective_deadline.isoformat() if self.effective_deadline else None
            ),
            "paused_ms": self.paused_ms,
            "remaining_ms": self.remaining_ms,
            "is_overdue": self.is_overdue,
            "status_aging_ms": self.status_aging_ms,
        }


class SlaClock:
    """
    Pure functions for the pause-aware SLA clock.

    Stateless utility class: every function takes ``now`` explicitly so
    callers (and tests) control the time source.
    """

    @staticmethod
    def seed_deadline(
        created_at: datetime,
        hours: int,
        scheduled_at: Optional[datetime] = None,
        explicit_deadline: Optional[datetime] = None
    ) -> datetime:
        """
        Calculate the SLA deadline for a new work order.

        Args:
            created_at: When the order was created
            hours: Resolution hours for the order's priority
            scheduled_at: Scheduled start; used as base time when given
            explicit_deadline: Caller-supplied deadline; wins over the computed one

        Returns:
            The SLA deadline
        """
        if explicit_deadline is not None:
            return ensure_aware(explicit_deadline)
        base = ensure_aware(scheduled_at or created_at)
        return base + timedelta(hours=hours)

    @staticmethod
    def pause_accounting(
        order: WorkOrder,
        requested: WorkOrderStatus,
        now: datetime
    ) -> PauseAccounting:
        """
        Compute SLA pause fields for ``order.status -> requested``.

        Entering ``paused`` starts the pause clock; leaving ``paused`` (resume or
        cancel) flushes the elapsed pause into ``sla_paused_ms``. Orders with
        ``sla_exclude_pause`` false never touch these fields.
        """
        if not order.sla_exclude_pause or order.status == requested:
            return PauseAccounting(changes={})

        if requested == WorkOrderStatus.PAUSED:
            if order.sla_pause_started_at is None:
                return PauseAccounting(changes={"sla_pause_started_at": now})
            return PauseAccounting(changes={})

        if order.status == WorkOrderStatus.PAUSED and order.sla_pause_started_at is not None:
            delta = max(0, _ms_between(order.sla_pause_started_at, now))
            return PauseAccounting(changes={
                "sla_paused_ms": (order.sla_paused_ms or 0) + delta,
                "sla_pause_started_at": None,
            })

        return PauseAccounting(changes={})

    @staticmethod
    def live_pause_ms(order: WorkOrder, now: datetime) -> int:
        """Duration of the pause in progress, 0 when not paused."""
        if not order.sla_exclude_pause or not order.is_paused:
            return 0
        if order.sla_pause_started_at is None:
            return 0
        return max(0, _ms_between(order.sla_pause_started_at, now))

    @classmethod
    def total_paused_ms(cls, order: WorkOrder, now: datetime) -> int:
        """Stored paused time plus the live pause, 0 when pauses count."""
        if not order.sla_exclude_pause:
            return 0
        return max(0, (order.sla_paused_ms or 0) + cls.live_pause_ms(order, now))

    @classmethod
    def effective_deadline(cls, order: WorkOrder, now: datetime) -> Optional[datetime]:
        """Deadline pushed back by every excluded pause, including the live one."""
        if order.sla_deadline is None:
            return None
        return ensure_aware(order.sla_deadline) + timedelta(
            milliseconds=cls.total_paused_ms(order, now)
        )

    @classmethod
    def remaining_ms(cls, order: WorkOrder, now: datetime) -> Optional[int]:
        """
        Effective remaining time in milliseconds (negative once overdue).

        remaining = deadline - now + paused_ms + live pause
        """
        if order.sla_deadline is None:
            return None
        return _ms_between(now, order.sla_deadline) + cls.total_paused_ms(order, now)

    @classmethod
    def is_overdue(cls, order: WorkOrder, now: datetime) -> bool:
        remaining = cls.remaining_ms(order, now)
        return remaining is not None and remaining < 0

    @staticmethod
    def suppress_alerts_while_paused(order: WorkOrder) -> bool:
        """A paused order whose pauses are excluded never raises overdue alerts."""
        return order.sla_exclude_pause and order.is_paused

    @classmethod
    def status_aging_ms(cls, order: WorkOrder, now: datetime) -> Optional[int]:
        """
        Time spent in the current status.

        In execution, excluded pause time is subtracted. Final statuses
        (completed, closed, cancelled) have no live aging.
        """
        def since(start: Optional[datetime]) -> Optional[int]:
            return max(0, _ms_between(start, now)) if start else None

        status = order.status
        if status == WorkOrderStatus.OPEN:
            return since(order.created_at)
        if status == WorkOrderStatus.IN_ANALYSIS:
            return since(order.analysis_started_at or order.created_at)
        if status == WorkOrderStatus.IN_EXECUTION:
            base = since(order.started_at or order.analysis_started_at or order.created_at)
            if base is None:
                return None
            return max(0, base - cls.total_paused_ms(order, now))
        if status == WorkOrderStatus.PAUSED:
            return since(
                order.sla_pause_started_at or order.paused_at or order.started_at
                or order.analysis_started_at or order.created_at
            )
        return None

    @classmethod
    def snapshot(cls, order: WorkOrder, now: datetime) -> SlaSnapshot:
        return SlaSnapshot(
            deadline=order.sla_deadline,
            effective_deadline=cls.effective_deadline(order, now),
            paused_ms=cls.total_paused_ms(order, now),
            remaining_ms=cls.remaining_ms(order, now),
            is_overdue=cls.is_overdue(order, now),
            status_aging_ms=cls.status_aging_ms(order, now),
        )
