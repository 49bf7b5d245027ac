"""
Work Order Controllers (API Routes)
====================================

FastAPI routes for the work order lifecycle.

Controllers are thin - they resolve the tenant, build the service for the
request's session and delegate to it. Errors are rendered as
``{"kind": ..., "message": ...}`` by the application exception handlers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core import ValidationException
from src.infrastructure.database import get_session
from src.shared.infrastructure.logging import get_logger
from src.workorders.application import (
    BestEffortRunner,
    ErrorResponse,
    ICacheInvalidator,
    INotificationDispatcher,
    ISearchIndexer,
    ISLAConfigProvider,
    IWorkOrderReadCache,
    WorkOrderCreateDTO,
    WorkOrderLifecycleService,
    WorkOrderPatchDTO,
    WorkOrderResponse,
)
from src.workorders.infrastructure import SQLAlchemyWorkOrderRepository

logger = get_logger(__name__)
router = APIRouter(prefix="/plants/{plant_id}/work-orders", tags=["Work Orders"])


# ========== Example payloads for Swagger ==========

WORK_ORDER_PATCH_EXAMPLE = {
    "status": "paused",
    "pause_reason": "Waiting for spare part",
    "notes": "Bearing ordered from supplier",
}

WORK_ORDER_RESPONSE_EXAMPLE = {
    "id": "5f0c2a0e-8f1b-4b8e-9a59-1c3f1d2e7b10",
    "tenant_id": "acme",
    "plant_id": "plant-7",
    "asset_id": "pump-12",
    "title": "Replace pump bearing",
    "status": "paused",
    "priority": "high",
    "created_at": "2024-01-15T10:00:00+00:00",
    "updated_at": "2024-01-15T12:00:00+00:00",
    "started_at": "2024-01-15T11:00:00+00:00",
    "paused_at": "2024-01-15T12:00:00+00:00",
    "sla_deadline": "2024-01-16T10:00:00+00:00",
    "sla_exclude_pause": True,
    "sla_paused_ms": 0,
    "sla_pause_started_at": "2024-01-15T12:00:00+00:00",
    "pause_reason": "Waiting for spare part",
}

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid transition or malformed input"},
    404: {"model": ErrorResponse, "description": "Work order not found in tenant/plant scope"},
}


# ========== Dependencies ==========

@dataclass
class WorkOrderCollaborators:
    """Process-wide collaborators shared by every request (built at startup)."""
    config_provider: ISLAConfigProvider
    read_cache: IWorkOrderReadCache
    cache_invalidator: ICacheInvalidator
    search_indexer: ISearchIndexer
    notification_dispatcher: INotificationDispatcher
    runner: BestEffortRunner
    require_transition_reasons: bool = False


def get_collaborators(request: Request) -> WorkOrderCollaborators:
    collaborators = getattr(request.app.state, "workorders", None)
    if collaborators is None:
        raise RuntimeError("Work order collaborators not initialized")
    return collaborators


async def get_tenant_id(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
) -> str:
    """Tenant from the ``X-Tenant-ID`` header."""
    tenant_id = (x_tenant_id or "").strip()
    if not tenant_id:
        raise ValidationException("X-Tenant-ID header is required")
    return tenant_id


async def get_lifecycle_service(
    session: AsyncSession = Depends(get_session),
    collaborators: WorkOrderCollaborators = Depends(get_collaborators)
) -> WorkOrderLifecycleService:
    """Get a lifecycle service bound to the request's session."""
    return WorkOrderLifecycleService(
        repository=SQLAlchemyWorkOrderRepository(session),
        cache_invalidator=collaborators.cache_invalidator,
        search_indexer=collaborators.search_indexer,
        notification_dispatcher=collaborators.notification_dispatcher,
        config_provider=collaborators.config_provider,
        read_cache=collaborators.read_cache,
        runner=collaborators.runner,
        require_transition_reasons=collaborators.require_transition_reasons,
    )


# ========== Route Handlers ==========

@router.post(
    "",
    response_model=WorkOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a work order",
    description="""
    Create a work order in status `open`.

    The SLA deadline is seeded from the priority's resolution hours
    (per-tenant overrides apply), counted from `scheduled_at` when given,
    otherwise from creation. An explicit `sla_deadline` wins.
    """,
    responses={400: ERROR_RESPONSES[400]},
)
async def create_work_order(
    plant_id: str,
    data: WorkOrderCreateDTO,
    tenant_id: str = Depends(get_tenant_id),
    service: WorkOrderLifecycleService = Depends(get_lifecycle_service)
):
    order = await service.create_work_order(tenant_id, plant_id, data)
    return WorkOrderResponse.from_domain(order)


@router.get(
    "/{work_order_id}",
    response_model=WorkOrderResponse,
    summary="Get a work order with its live SLA view",
    responses=ERROR_RESPONSES,
)
async def get_work_order(
    plant_id: str,
    work_order_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: WorkOrderLifecycleService = Depends(get_lifecycle_service)
):
    order, snapshot = await service.get_work_order(tenant_id, work_order_id, plant_id)
    return WorkOrderResponse.from_domain(order, snapshot)


@router.patch(
    "/{work_order_id}",
    response_model=WorkOrderResponse,
    summary="Apply a lifecycle update",
    description="""
    Update fields and/or change status.

    **Workflow**: `open → in_analysis → in_execution → completed → closed`,
    `in_execution ⇄ paused`, and `cancelled` from any non-final status.
    Closed and cancelled orders are final.

    **Legacy statuses**: `approved`, `scheduled`, `assigned` mean `in_analysis`;
    `in_progress` means `in_execution`.

    **SLA**: time spent paused is excluded from the SLA when the order's
    `sla_exclude_pause` is set. Pass `include_sla=true` for the live SLA view.

    `priority` and identity fields are ignored.
    """,
    responses={
        200: {
            "description": "Updated work order",
            "content": {"application/json": {"example": WORK_ORDER_RESPONSE_EXAMPLE}},
        },
        **ERROR_RESPONSES,
    },
)
async def update_work_order(
    plant_id: str,
    work_order_id: str,
    patch: WorkOrderPatchDTO,
    include_sla: bool = Query(False, description="Include the live SLA view"),
    tenant_id: str = Depends(get_tenant_id),
    service: WorkOrderLifecycleService = Depends(get_lifecycle_service)
):
    result = await service.apply_update(
        tenant_id,
        work_order_id,
        patch.to_patch(),
        plant_id=plant_id,
        include_sla=include_sla,
    )
    return WorkOrderResponse.from_domain(result.order, result.sla)
