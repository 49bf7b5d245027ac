"""
Work Order Infrastructure Layer
===============================

Infrastructure implementations for the work order lifecycle:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and YAML SLA config
- External: Collaborators (webhook notifications, search indexing,
  read cache, config watcher, scheduler)
"""

from src.workorders.infrastructure.models import WorkOrderModel
from src.workorders.infrastructure.repositories import (
    SQLAlchemyWorkOrderRepository,
    YAMLConfigProvider,
)
from src.workorders.infrastructure.external import (
    CircuitBreaker,
    WebhookNotificationDispatcher,
    HttpSearchIndexer,
    InMemoryWorkOrderReadCache,
    ReadCacheInvalidator,
    SLAConfigWatcher,
    SLAOverdueScheduler,
)

__all__ = [
    "WorkOrderModel",
    "SQLAlchemyWorkOrderRepository",
    "YAMLConfigProvider",
    "CircuitBreaker",
    "WebhookNotificationDispatcher",
    "HttpSearchIndexer",
    "InMemoryWorkOrderReadCache",
    "ReadCacheInvalidator",
    "SLAConfigWatcher",
    "SLAOverdueScheduler",
]
