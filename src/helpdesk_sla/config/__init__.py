"""
Configuration Module
====================

Engine settings and domain constants, using Pydantic for settings management.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Policies ==========
    sla_policy_path: Path = Field(
        default=Path("sla_policies.yaml"),
        description="Path to the SLA policy YAML file (file-backed policy store)"
    )
    default_timezone: str = Field(
        default="UTC",
        description="IANA timezone used by business calendars that do not name one"
    )

    # ========== Periodic Sweep ==========
    sla_sweep_interval_seconds: int = Field(
        default=300,
        description="Seconds between sweeps over open tickets (0 disables the sweep)",
        ge=0
    )
    sla_sweep_batch_size: int = Field(
        default=100,
        description="Open tickets fetched per page during a sweep",
        ge=1,
        le=1000
    )

    # ========== Notifications ==========
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used to build ticket links in notifications"
    )
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook that receives escalation and violation notifications"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )
    violation_notify_role_id: Optional[str] = Field(
        default="admin",
        description="Role whose holders are notified of new SLA violations"
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
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the default timezone is a known IANA zone."""
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone: {v}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """Ticket priority levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TicketType(str):
    """Ticket types an SLA policy can be scoped to."""
    INCIDENT = "incident"
    REQUEST = "request"
    PROBLEM = "problem"
    CHANGE = "change"


class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING_ON_CLIENT = "waiting_on_client"
    WAITING_ON_THIRD_PARTY = "waiting_on_third_party"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ViolationKind(str):
    """Which SLA clock a violation belongs to."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class TriggerKind(str):
    """Escalation rule trigger kinds."""
    AGE = "age"
    PRIORITY_EQUALS = "priority_equals"
    STATUS_EQUALS = "status_equals"
    MANUAL = "manual"


class ActionKind(str):
    """Escalation rule action kinds."""
    NOTIFY_USER = "notify_user"
    REASSIGN = "reassign"
    CHANGE_PRIORITY = "change_priority"
    NOTIFY_LIST = "notify_list"


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.CRITICAL, Priority.HIGH,
    Priority.MEDIUM, Priority.LOW
]
VALID_TICKET_TYPES = [
    TicketType.INCIDENT, TicketType.REQUEST,
    TicketType.PROBLEM, TicketType.CHANGE
]
VALID_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_ON_CLIENT, TicketStatus.WAITING_ON_THIRD_PARTY,
    TicketStatus.RESOLVED, TicketStatus.CLOSED
]
OPEN_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_ON_CLIENT, TicketStatus.WAITING_ON_THIRD_PARTY
]
VALID_VIOLATION_KINDS = [ViolationKind.RESPONSE, ViolationKind.RESOLUTION]
VALID_TRIGGER_KINDS = [
    TriggerKind.AGE, TriggerKind.PRIORITY_EQUALS,
    TriggerKind.STATUS_EQUALS, TriggerKind.MANUAL
]
VALID_ACTION_KINDS = [
    ActionKind.NOTIFY_USER, ActionKind.REASSIGN,
    ActionKind.CHANGE_PRIORITY, ActionKind.NOTIFY_LIST
]

# Weekday numbering used by business calendars: 0 = Sunday ... 6 = Saturday
DEFAULT_WORKING_WEEKDAYS = [1, 2, 3, 4, 5]
DEFAULT_HOURS_START = 9
DEFAULT_HOURS_END = 17
