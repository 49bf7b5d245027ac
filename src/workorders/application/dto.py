"""
Work Order Application DTOs
============================

Data Transfer Objects for the work order API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Timestamp and status values in the patch are
left raw on purpose: the lifecycle service normalizes them and reports
malformed values as validation errors.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.workorders.domain import SlaSnapshot, WorkOrder


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "critical"]
WorkOrderStatusStr = Literal[
    "open", "in_analysis", "in_execution", "paused", "completed", "closed", "cancelled"
]

# ISO-8601 text only; numbers are rejected rather than read as epoch seconds
RawTimestamp = Optional[str]


# ========== Request DTOs ==========

class WorkOrderCreateDTO(BaseModel):
    """DTO for creating a work order."""
    asset_id: str = Field(..., min_length=1, description="Asset the order is for")
    title: str = Field(..., min_length=1, max_length=500, description="Order title")
    description: Optional[str] = Field(None, description="Order description")
    priority: PriorityStr = Field(default="medium", description="Order priority")
    scheduled_at: Optional[datetime] = Field(None, description="Scheduled start; SLA base time")
    sla_deadline: Optional[datetime] = Field(None, description="Explicit SLA deadline override")
    sla_exclude_pause: bool = Field(default=True, description="Exclude paused time from the SLA")


class WorkOrderPatchDTO(BaseModel):
    """
    DTO for a lifecycle update.

    Only fields present in the request are applied. ``priority`` is accepted
    for compatibility but ignored: it is fixed at creation.
    """
    model_config = ConfigDict(extra="ignore")

    status: Optional[str] = Field(None, description="Requested status (legacy aliases accepted)")
    priority: Optional[str] = Field(None, description="Ignored; priority is immutable")

    notes: Optional[str] = None
    work_performed: Optional[str] = None
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None
    pause_reason: Optional[str] = None
    cancel_reason: Optional[str] = None
    downtime_reason: Optional[str] = None

    scheduled_at: RawTimestamp = None
    analysis_started_at: RawTimestamp = None
    started_at: RawTimestamp = None
    paused_at: RawTimestamp = None
    completed_at: RawTimestamp = None
    closed_at: RawTimestamp = None
    cancelled_at: RawTimestamp = None
    downtime_started_at: RawTimestamp = None
    downtime_ended_at: RawTimestamp = None

    def to_patch(self) -> Dict[str, Any]:
        """Fields the caller actually sent."""
        return self.model_dump(exclude_unset=True)


# ========== Response DTOs ==========

class SlaSnapshotResponse(BaseModel):
    """Read-time SLA view of a work order."""
    deadline: Optional[datetime] = Field(None, description="Stored SLA deadline")
    effective_deadline: Optional[datetime] = Field(
        None, description="Deadline pushed back by excluded pause time"
    )
    paused_ms: int = Field(..., description="Excluded pause time including a live pause")
    remaining_ms: Optional[int] = Field(None, description="Effective remaining time (negative when overdue)")
    is_overdue: bool
    status_aging_ms: Optional[int] = Field(None, description="Time spent in the current status")

    @classmethod
    def from_domain(cls, snapshot: SlaSnapshot) -> "SlaSnapshotResponse":
        return cls(
            deadline=snapshot.deadline,
            effective_deadline=snapshot.effective_deadline,
            paused_ms=snapshot.paused_ms,
            remaining_ms=snapshot.remaining_ms,
            is_overdue=snapshot.is_overdue,
            status_aging_ms=snapshot.status_aging_ms,
        )


class WorkOrderResponse(BaseModel):
    """Full work order entity as returned by the API."""
    id: str
    tenant_id: str
    plant_id: str
    asset_id: str
    title: str
    description: Optional[str] = None
    status: WorkOrderStatusStr
    priority: PriorityStr
    created_at: datetime
    updated_at: datetime

    scheduled_at: Optional[datetime] = None
    analysis_started_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    sla_deadline: Optional[datetime] = None
    sla_exclude_pause: bool = True
    sla_paused_ms: int = 0
    sla_pause_started_at: Optional[datetime] = None

    pause_reason: Optional[str] = None
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None
    work_performed: Optional[str] = None
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None

    downtime_started_at: Optional[datetime] = None
    downtime_ended_at: Optional[datetime] = None
    downtime_minutes: Optional[int] = None
    downtime_reason: Optional[str] = None

    sla: Optional[SlaSnapshotResponse] = Field(None, description="Live SLA view, when requested")

    @classmethod
    def from_domain(
        cls,
        order: WorkOrder,
        snapshot: Optional[SlaSnapshot] = None
    ) -> "WorkOrderResponse":
        data = order.to_dict()
        data["sla"] = SlaSnapshotResponse.from_domain(snapshot) if snapshot else None
        return cls(**data)


class ErrorResponse(BaseModel):
    """Error body for every non-2xx lifecycle response."""
    kind: str = Field(..., description="Error kind, e.g. not_found or invalid_transition")
    message: str = Field(..., description="Human-readable reason")
