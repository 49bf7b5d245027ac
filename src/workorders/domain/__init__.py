"""
Work Order Domain Layer
=======================

Domain layer for the work order lifecycle module.

Contains:
- Entities: Core business objects with identity (WorkOrder) and the payloads
  handed to collaborators (WorkOrderEvent, SearchDocument)
- Value Objects: SlaClock, SlaSnapshot, WorkOrderSLAConfig
- Transitions: TransitionValidator and legacy status normalization

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.workorders.domain.entities import (
    WorkOrder,
    WorkOrderEvent,
    SearchDocument,
    STATUS_TIMESTAMP_FIELDS,
    PHASE_ORDER,
    TIMESTAMP_FIELDS,
    TEXT_FIELDS,
    IMMUTABLE_FIELDS,
)
from src.workorders.domain.transitions import (
    TransitionValidator,
    TransitionResult,
    normalize_legacy_status,
)
from src.workorders.domain.value_objects import (
    SlaClock,
    SlaSnapshot,
    PauseAccounting,
    WorkOrderSLAConfig,
)
from src.workorders.domain.timestamps import (
    normalize_timestamp,
    normalize_optional_text,
    utcnow,
)

__all__ = [
    # Entities
    "WorkOrder",
    "WorkOrderEvent",
    "SearchDocument",
    "STATUS_TIMESTAMP_FIELDS",
    "PHASE_ORDER",
    "TIMESTAMP_FIELDS",
    "TEXT_FIELDS",
    "IMMUTABLE_FIELDS",
    # Transitions
    "TransitionValidator",
    "TransitionResult",
    "normalize_legacy_status",
    # Value Objects & Services
    "SlaClock",
    "SlaSnapshot",
    "PauseAccounting",
    "WorkOrderSLAConfig",
    # Normalization
    "normalize_timestamp",
    "normalize_optional_text",
    "utcnow",
]
