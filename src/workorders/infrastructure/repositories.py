"""
Work Order Infrastructure Repositories
=======================================

Concrete implementations of the repository and config interfaces.

This layer contains the data access logic - how we store and retrieve
work orders from the database, and where SLA hours come from.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from sqlalchemy import and_, not_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import ACTIVE_STATUSES, LEGACY_STATUS_ALIASES, Priority, WorkOrderStatus
from src.core import (
    ConfigurationException,
    RepositoryException,
    ResourceNotFoundException,
    ValidationException,
)
from src.shared.infrastructure.logging import get_logger
from src.workorders.application.services import IWorkOrderRepository, ISLAConfigProvider
from src.workorders.domain import WorkOrder, WorkOrderSLAConfig, normalize_legacy_status
from src.workorders.domain.entities import TIMESTAMP_FIELDS
from src.workorders.domain.timestamps import ensure_aware
from src.workorders.infrastructure.models import WorkOrderModel

logger = get_logger(__name__)

_DATETIME_FIELDS = TIMESTAMP_FIELDS + (
    "created_at", "updated_at", "sla_deadline", "sla_pause_started_at",
)

# Stored status values (canonical and legacy) that count as active
_ACTIVE_STORED_STATUSES = [s.value for s in ACTIVE_STATUSES] + [
    alias for alias, status in LEGACY_STATUS_ALIASES.items() if status in ACTIVE_STATUSES
]


def model_to_entity(model: WorkOrderModel) -> WorkOrder:
    """Map a row onto the domain entity, folding legacy statuses into the canonical set."""
    try:
        status = normalize_legacy_status(model.status)
    except ValidationException as e:
        raise RepositoryException(
            f"Work order {model.id} has an unreadable status",
            {"status": model.status, "error": e.message}
        )

    data: Dict[str, Any] = {
        column.key: getattr(model, column.key)
        for column in WorkOrderModel.__table__.columns
    }
    for name in _DATETIME_FIELDS:
        data[name] = ensure_aware(data[name])
    data["status"] = status
    data["priority"] = Priority(model.priority)
    data["sla_paused_ms"] = model.sla_paused_ms or 0
    return WorkOrder(**data)


class SQLAlchemyWorkOrderRepository(IWorkOrderRepository):
    """
    SQLAlchemy implementation of the work order repository.

    One instance is bound to one session. ``load_for_update`` opens a
    transaction holding a row lock (``SELECT ... FOR UPDATE``) that lasts
    until ``atomic_patch`` commits or ``rollback`` is called.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    def _scoped(self, tenant_id: str, work_order_id: str, plant_id: Optional[str]):
        stmt = select(WorkOrderModel).where(
            WorkOrderModel.id == work_order_id,
            WorkOrderModel.tenant_id == tenant_id,
        )
        if plant_id is not None:
            stmt = stmt.where(WorkOrderModel.plant_id == plant_id)
        return stmt

    async def get(
        self,
        tenant_id: str,
        work_order_id: str,
        plant_id: Optional[str] = None
    ) -> Optional[WorkOrder]:
        """Get a work order within its tenant (and plant) scope."""
        result = await self._session.execute(self._scoped(tenant_id, work_order_id, plant_id))
        model = result.scalar_one_or_none()
        return model_to_entity(model) if model else None

    async def load_for_update(
        self,
        tenant_id: str,
        work_order_id: str,
        plant_id: Optional[str] = None
    ) -> Optional[WorkOrder]:
        """Get a work order and lock its row for the rest of the transaction."""
        stmt = self._scoped(tenant_id, work_order_id, plant_id).with_for_update()
        # Bypass the identity map so a concurrent writer's commit is seen
        stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return model_to_entity(model) if model else None

    async def atomic_patch(
        self,
        tenant_id: str,
        work_order_id: str,
        patch: Dict[str, Any],
        plant_id: Optional[str] = None
    ) -> WorkOrder:
        """
        Apply ``patch`` to the locked row and commit.

        Raises:
            ResourceNotFoundException: If the row vanished from scope
            RepositoryException: If the write fails (the transaction is rolled back)
        """
        result = await self._session.execute(self._scoped(tenant_id, work_order_id, plant_id))
        model = result.scalar_one_or_none()
        if model is None:
            raise ResourceNotFoundException("Work order", work_order_id)

        # Rewrite legacy rows canonically on their first write
        model.status = normalize_legacy_status(model.status).value

        for key, value in patch.items():
            if not hasattr(model, key):
                continue
            if isinstance(value, (WorkOrderStatus, Priority)):
                value = value.value
            setattr(model, key, value)

        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error(
                "Work order write failed",
                extra={"work_order_id": work_order_id, "error": str(e)},
            )
            raise RepositoryException(f"Failed to update work order {work_order_id}")

        return model_to_entity(model)

    async def rollback(self) -> None:
        await self._session.rollback()

    async def create(self, order: WorkOrder) -> WorkOrder:
        """Insert a new work order and commit."""
        values = {
            column.key: getattr(order, column.key)
            for column in WorkOrderModel.__table__.columns
        }
        values["status"] = order.status.value
        values["priority"] = order.priority.value

        model = WorkOrderModel(**values)
        self._session.add(model)
        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error(
                "Work order insert failed",
                extra={"work_order_id": order.id, "error": str(e)},
            )
            raise RepositoryException(f"Failed to create work order {order.id}")

        return model_to_entity(model)

    async def list_overdue_candidates(
        self,
        now: datetime,
        limit: int = 500,
        offset: int = 0
    ) -> List[WorkOrder]:
        """
        One page of active orders whose stored deadline has passed.

        Orders paused with pause exclusion on are filtered here since they never
        alert. Excluded pause time only pushes the deadline later, so a page is a
        superset of the overdue orders; callers apply ``SlaClock.is_overdue``
        and keep paging until a short page comes back.
        """
        stmt = (
            select(WorkOrderModel)
            .where(
                WorkOrderModel.status.in_(_ACTIVE_STORED_STATUSES),
                WorkOrderModel.sla_deadline.is_not(None),
                WorkOrderModel.sla_deadline <= now,
                not_(and_(
                    WorkOrderModel.status == WorkOrderStatus.PAUSED.value,
                    WorkOrderModel.sla_exclude_pause.is_(True),
                )),
            )
            .order_by(WorkOrderModel.sla_deadline.asc(), WorkOrderModel.id.asc())
            .offset(offset)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [model_to_entity(model) for model in result.scalars().all()]


class YAMLConfigProvider(ISLAConfigProvider):
    """
    Work order SLA configuration provider that loads from YAML.

    A missing file yields the built-in defaults. ``reload`` is called by the
    config watcher when the file changes.
    """

    def __init__(self, config_path: Union[str, Path]):
        self._config_path = Path(config_path)
        self._config: WorkOrderSLAConfig = WorkOrderSLAConfig()
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            logger.info(
                "SLA config file not found, using defaults",
                extra={"path": str(self._config_path)},
            )
            self._config = WorkOrderSLAConfig()
            return

        try:
            with open(self._config_path, "r") as f:
                data = yaml.safe_load(f) or {}
            self._config = WorkOrderSLAConfig(
                default_hours=data.get("default_hours") or {},
                tenant_overrides=data.get("tenant_overrides") or {},
            )
        except (OSError, yaml.YAMLError, ValueError, AttributeError) as e:
            raise ConfigurationException(
                f"Invalid SLA config file {self._config_path}",
                {"error": str(e)}
            )

    def get_config(self) -> WorkOrderSLAConfig:
        """Get current SLA configuration."""
        return self._config

    def reload(self) -> None:
        """Reload configuration from file, keeping the previous one on error."""
        try:
            self._load_config()
            logger.info("SLA config reloaded", extra={"path": str(self._config_path)})
        except ConfigurationException as e:
            logger.error(
                "SLA config reload failed, keeping previous config",
                extra={"path": str(self._config_path), "error": str(e)},
            )
