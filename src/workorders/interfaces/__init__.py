"""
Work Order Interfaces Layer
===========================

Interface adapters (controllers) for the work order module.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.workorders.interfaces.controllers import (
    router as workorders_router,
    WorkOrderCollaborators,
    get_lifecycle_service,
    get_tenant_id,
)

__all__ = [
    "workorders_router",
    "WorkOrderCollaborators",
    "get_lifecycle_service",
    "get_tenant_id",
]
