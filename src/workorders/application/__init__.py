"""
Work Order Application Layer
============================

Application layer for the work order lifecycle module.

Contains:
- Services: Lifecycle orchestration and the SLA overdue sweep
- DTOs: Data transfer objects for API serialization
- BestEffortRunner: Post-commit collaborator calls that never fail the caller

This layer depends on the domain layer and collaborator interfaces,
but not on concrete infrastructure implementations.
"""

from src.workorders.application.best_effort import BestEffortRunner
from src.workorders.application.dto import (
    WorkOrderCreateDTO,
    WorkOrderPatchDTO,
    WorkOrderResponse,
    SlaSnapshotResponse,
    ErrorResponse,
)
from src.workorders.application.services import (
    WorkOrderLifecycleService,
    SlaOverdueSweeper,
    LifecycleUpdateResult,
    StaticSLAConfigProvider,
    IWorkOrderRepository,
    ICacheInvalidator,
    ISearchIndexer,
    INotificationDispatcher,
    ISLAConfigProvider,
    IWorkOrderReadCache,
)

__all__ = [
    # DTOs
    "WorkOrderCreateDTO",
    "WorkOrderPatchDTO",
    "WorkOrderResponse",
    "SlaSnapshotResponse",
    "ErrorResponse",
    # Services
    "WorkOrderLifecycleService",
    "SlaOverdueSweeper",
    "LifecycleUpdateResult",
    "StaticSLAConfigProvider",
    "BestEffortRunner",
    # Collaborator Interfaces
    "IWorkOrderRepository",
    "ICacheInvalidator",
    "ISearchIndexer",
    "INotificationDispatcher",
    "ISLAConfigProvider",
    "IWorkOrderReadCache",
]
