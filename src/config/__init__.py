"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="ticket-escalation-service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Escalation Engine ==========
    escalation_enabled: bool = Field(
        default=True,
        description="Run the periodic escalation tick"
    )
    escalation_interval_seconds: int = Field(
        default=300,
        description="Seconds between escalation ticks",
        ge=10
    )
    escalation_candidate_limit: int = Field(
        default=100,
        description="Max candidate tickets fetched per rule per tick",
        ge=1,
        le=1000
    )
    escalation_dedup_window_hours: int = Field(
        default=24,
        description="Cooldown before the same rule may fire again on a ticket",
        ge=1
    )
    rules_source: Literal["database", "yaml"] = Field(
        default="database",
        description="Where escalation rules are loaded from"
    )
    rules_config_path: Path = Field(
        default=Path("escalation_rules.yaml"),
        description="Path to escalation rules YAML file (rules_source=yaml)"
    )

    # ========== Webhook Delivery ==========
    webhook_user_agent: str = Field(
        default="HelpDesk-Webhooks/1.0",
        description="User-Agent header sent with webhook deliveries"
    )
    webhook_max_concurrent_deliveries: int = Field(
        default=10,
        description="Max deliveries in flight for one dispatch",
        ge=1
    )
    webhook_response_max_chars: int = Field(
        default=1000,
        description="Stored response body truncation",
        ge=0
    )
    webhook_base_delay_ms: int = Field(default=1000, description="Backoff base delay", ge=1)
    webhook_max_jitter_ms: int = Field(default=1000, description="Backoff jitter upper bound", ge=0)
    webhook_max_backoff_ms: int = Field(default=300_000, description="Backoff cap", ge=1)
    webhook_retry_poll_interval_seconds: int = Field(
        default=5,
        description="Seconds between retry queue polls",
        ge=1
    )
    webhook_retry_batch_size: int = Field(
        default=50,
        description="Max retry tasks claimed per poll",
        ge=1
    )
    webhook_retry_visibility_timeout_seconds: int = Field(
        default=120,
        description="Lease held on a claimed retry task",
        ge=1
    )
    webhook_test_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for test deliveries",
        ge=0.1,
        le=60
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
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
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str, Enum):
    """Ticket lifecycle statuses used by the ticket-management collaborator."""
    OPEN = "Open"
    ACCEPTED = "Accepted"
    WAITING = "Waiting"
    ON_HOLD = "On Hold"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class ReplyAuthorRole(str, Enum):
    """Roles attached to ticket replies."""
    USER = "user"
    TECH = "tech"
    ADMIN = "admin"


SUPPORT_ROLES = frozenset({ReplyAuthorRole.TECH.value, ReplyAuthorRole.ADMIN.value})


class ConditionType(str, Enum):
    """Escalation condition kinds."""
    STATUS = "status"
    PRIORITY = "priority"
    ASSIGNEE = "assignee"
    TIME_SINCE_CREATED = "time_since_created"
    TIME_SINCE_UPDATED = "time_since_updated"
    NO_RESPONSE = "no_response"


class ConditionOperator(str, Enum):
    """Comparison operators accepted in conditions."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class TimeUnit(str, Enum):
    """Units for time-based conditions."""
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


TIME_UNIT_MS = {
    TimeUnit.MINUTES.value: 60_000,
    TimeUnit.HOURS.value: 3_600_000,
    TimeUnit.DAYS.value: 86_400_000,
}


class ActionType(str, Enum):
    """Escalation action kinds."""
    ASSIGN = "assign"
    PRIORITY_CHANGE = "priority_change"
    STATUS_CHANGE = "status_change"
    WEBHOOK = "webhook"
    EMAIL = "email"
    SMS = "sms"


class DeliveryStatus(str, Enum):
    """Webhook delivery states."""
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_DELIVERY_STATUSES = frozenset({DeliveryStatus.SUCCESS, DeliveryStatus.FAILED})


class WebhookEventType(str, Enum):
    """Events a subscription can listen to."""
    TICKET_CREATED = "ticket.created"
    TICKET_UPDATED = "ticket.updated"
    TICKET_RESOLVED = "ticket.resolved"
    TICKET_CLOSED = "ticket.closed"
    TICKET_ESCALATED = "ticket.escalated"
    TICKET_ASSIGNED = "ticket.assigned"
    TICKET_REPLY_ADDED = "ticket.reply_added"
    TICKET_STATUS_CHANGED = "ticket.status_changed"
    TICKET_PRIORITY_CHANGED = "ticket.priority_changed"


WEBHOOK_TEST_EVENT = "webhook.test"


# ========== Lists for validation ==========

VALID_EVENT_TYPES = [e.value for e in WebhookEventType]
VALID_ACTION_TYPES = [a.value for a in ActionType]
VALID_TIME_UNITS = [u.value for u in TimeUnit]

MIN_RETRY_COUNT = 0
MAX_RETRY_COUNT = 10
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 60_000
DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_RETRY_COUNT = 3
