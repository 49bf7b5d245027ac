"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="workorder-service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/maintenance",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Work Order SLA ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to work order SLA hours YAML file"
    )
    sla_overdue_check_interval: int = Field(
        default=300,
        description="Seconds between SLA overdue sweeps (0 disables the sweep)",
        ge=0
    )
    sla_overdue_renotify_hours: int = Field(
        default=6,
        description="Hours before an overdue order is notified again",
        ge=1
    )
    require_transition_reasons: bool = Field(
        default=False,
        description="Require pause_reason/cancel_reason when pausing/cancelling"
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL for work order notifications (Slack-compatible)"
    )
    notification_channel: str = Field(
        default="#maintenance-work-orders",
        description="Channel for work order notifications"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )

    # ========== Search ==========
    search_url: Optional[str] = Field(
        default=None,
        description="Search cluster base URL (e.g., http://localhost:9200)"
    )
    search_index: str = Field(default="work_orders", description="Search index name")
    search_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for search indexing calls",
        ge=0.1,
        le=30
    )

    # ========== Read Cache ==========
    cache_ttl_seconds: int = Field(
        default=60,
        description="TTL of the in-process work order read cache",
        ge=0
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class WorkOrderStatus(str, Enum):
    """Canonical work order lifecycle statuses."""
    OPEN = "open"
    IN_ANALYSIS = "in_analysis"
    IN_EXECUTION = "in_execution"
    PAUSED = "paused"
    COMPLETED = "completed"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    """Work order priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationKind(str, Enum):
    """Event kinds published to the notification dispatcher."""
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    SLA_OVERDUE = "sla_overdue"


# ========== Lists for validation ==========

FINAL_STATUSES = frozenset({WorkOrderStatus.CLOSED, WorkOrderStatus.CANCELLED})
ACTIVE_STATUSES = [
    WorkOrderStatus.OPEN, WorkOrderStatus.IN_ANALYSIS,
    WorkOrderStatus.IN_EXECUTION, WorkOrderStatus.PAUSED
]

# Resolution hours per priority, used when no SLA config overrides them
DEFAULT_SLA_HOURS: Dict[str, int] = {
    Priority.LOW.value: 96,
    Priority.MEDIUM.value: 72,
    Priority.HIGH.value: 24,
    Priority.CRITICAL.value: 8,
}

# Statuses written by older clients, mapped onto the canonical set
LEGACY_STATUS_ALIASES: Dict[str, WorkOrderStatus] = {
    "approved": WorkOrderStatus.IN_ANALYSIS,
    "scheduled": WorkOrderStatus.IN_ANALYSIS,
    "assigned": WorkOrderStatus.IN_ANALYSIS,
    "in_progress": WorkOrderStatus.IN_EXECUTION,
}
