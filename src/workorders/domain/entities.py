"""
Work Order Domain Entities
===========================

Pure Python domain entities for the work order lifecycle.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, Dict, Optional

from src.config import FINAL_STATUSES, NotificationKind, Priority, WorkOrderStatus


# Lifecycle timestamp stamped when the order enters each status
STATUS_TIMESTAMP_FIELDS: Dict[WorkOrderStatus, str] = {
    WorkOrderStatus.IN_ANALYSIS: "analysis_started_at",
    WorkOrderStatus.IN_EXECUTION: "started_at",
    WorkOrderStatus.PAUSED: "paused_at",
    WorkOrderStatus.COMPLETED: "completed_at",
    WorkOrderStatus.CLOSED: "closed_at",
    WorkOrderStatus.CANCELLED: "cancelled_at",
}

# Position of each status along the forward-only workflow
PHASE_ORDER: Dict[WorkOrderStatus, int] = {
    WorkOrderStatus.OPEN: 0,
    WorkOrderStatus.IN_ANALYSIS: 1,
    WorkOrderStatus.IN_EXECUTION: 2,
    WorkOrderStatus.PAUSED: 3,
    WorkOrderStatus.COMPLETED: 4,
    WorkOrderStatus.CLOSED: 5,
}

TIMESTAMP_FIELDS = (
    "scheduled_at",
    "analysis_started_at",
    "started_at",
    "paused_at",
    "completed_at",
    "closed_at",
    "cancelled_at",
    "downtime_started_at",
    "downtime_ended_at",
)

TEXT_FIELDS = (
    "notes",
    "work_performed",
    "root_cause",
    "corrective_action",
    "pause_reason",
    "cancel_reason",
    "downtime_reason",
)

# Fields a lifecycle patch may never change
IMMUTABLE_FIELDS = frozenset({
    "id", "tenant_id", "plant_id", "asset_id", "priority", "created_at",
    "sla_deadline", "sla_exclude_pause", "sla_paused_ms", "sla_pause_started_at",
})


@dataclass
class WorkOrder:
    """
    Work order entity: one maintenance order tracked through its lifecycle.

    Identity fields are immutable after creation. ``sla_paused_ms`` only grows;
    ``sla_pause_started_at`` is set exactly while the order is paused and
    ``sla_exclude_pause`` is true.
    """

    # Identity
    id: str
    tenant_id: str
    plant_id: str
    asset_id: str

    title: str
    status: WorkOrderStatus
    priority: Priority

    created_at: datetime
    updated_at: datetime

    description: Optional[str] = None

    # Lifecycle timestamps
    scheduled_at: Optional[datetime] = None
    analysis_started_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    # SLA
    sla_deadline: Optional[datetime] = None
    sla_exclude_pause: bool = True
    sla_paused_ms: int = 0
    sla_pause_started_at: Optional[datetime] = None

    # Free text
    pause_reason: Optional[str] = None
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None
    work_performed: Optional[str] = None
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None

    # Downtime
    downtime_started_at: Optional[datetime] = None
    downtime_ended_at: Optional[datetime] = None
    downtime_minutes: Optional[int] = None
    downtime_reason: Optional[str] = None

    @property
    def is_final(self) -> bool:
        """Closed and cancelled orders accept no further status changes."""
        return self.status in FINAL_STATUSES

    @property
    def is_paused(self) -> bool:
        return self.status == WorkOrderStatus.PAUSED

    def with_changes(self, changes: Dict[str, Any]) -> "WorkOrder":
        """Return a copy with ``changes`` applied (unknown keys are ignored)."""
        known = {f.name for f in fields(self)}
        return replace(self, **{k: v for k, v in changes.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, (WorkOrderStatus, Priority)):
                value = value.value
            data[f.name] = value
        return data


@dataclass(frozen=True)
class WorkOrderEvent:
    """Notification published after a work order is created or changed."""
    tenant_id: str
    plant_id: str
    work_order_id: str
    kind: NotificationKind
    title: str = ""
    from_status: Optional[WorkOrderStatus] = None
    to_status: Optional[WorkOrderStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "plant_id": self.plant_id,
            "work_order_id": self.work_order_id,
            "kind": self.kind.value,
            "title": self.title,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value if self.to_status else None,
        }


@dataclass(frozen=True)
class SearchDocument:
    """Projection of a work order sent to the search indexer."""
    id: str
    tenant_id: str
    plant_id: str
    asset_id: str
    title: str
    status: WorkOrderStatus
    priority: Priority
    sla_deadline: Optional[datetime]
    updated_at: datetime

    @classmethod
    def from_work_order(cls, order: WorkOrder) -> "SearchDocument":
        return cls(
            id=order.id,
            tenant_id=order.tenant_id,
            plant_id=order.plant_id,
            asset_id=order.asset_id,
            title=order.title,
            status=order.status,
            priority=order.priority,
            sla_deadline=order.sla_deadline,
            updated_at=order.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "plant_id": self.plant_id,
            "asset_id": self.asset_id,
            "title": self.title,
            "status": self.status.value,
            "priority": self.priority.value,
            "sla_deadline": self.sla_deadline.isoformat() if self.sla_deadline else None,
            "updated_at": self.updated_at.isoformat(),
        }
