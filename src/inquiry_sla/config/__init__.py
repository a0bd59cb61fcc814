"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="inquiry-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/inquiries",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_config_source: str = Field(
        default="database",
        description="Where SLA configurations are read from: 'database' or 'yaml'"
    )
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA configuration YAML file (yaml source only)"
    )
    sla_evaluation_interval: int = Field(
        default=300,
        description="Seconds between SLA violation sweeps",
        ge=10
    )
    sla_scheduler_enabled: bool = Field(
        default=True,
        description="Run the periodic violation sweep in-process"
    )
    sla_auto_escalate: bool = Field(
        default=True,
        description="Escalate violations automatically at the end of each sweep"
    )
    sla_auto_escalate_types: List[str] = Field(
        default=["escalation_time"],
        description="Violation types that trigger automatic escalation"
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for notifications"
    )
    slack_channel: str = Field(
        default="#support-escalations",
        description="Slack channel for SLA notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used for inquiry links in notifications"
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
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("sla_config_source")
    @classmethod
    def validate_config_source(cls, v: str) -> str:
        """Ensure SLA configuration source is supported."""
        allowed = {"database", "yaml"}
        if v not in allowed:
            raise ValueError(f"sla_config_source must be one of {allowed}")
        return v

    @field_validator("sla_auto_escalate_types")
    @classmethod
    def validate_auto_escalate_types(cls, v: List[str]) -> List[str]:
        """Ensure every auto-escalation type is a known violation type."""
        unknown = set(v) - set(VALID_VIOLATION_TYPES)
        if unknown:
            raise ValueError(f"unknown violation types: {sorted(unknown)}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Inquiry priority levels, lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WorkItemStatus(str, Enum):
    """Inquiry lifecycle statuses as seen by the SLA engine."""
    OPEN = "open"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ViolationType(str, Enum):
    """Deadline kinds that can be breached."""
    RESPONSE_TIME = "response_time"
    RESOLUTION_TIME = "resolution_time"
    ESCALATION_TIME = "escalation_time"


class Severity(str, Enum):
    """Coarse violation severity buckets."""
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class Role(str, Enum):
    """User roles relevant to escalation, ordered by authority."""
    CONTRIBUTOR = "contributor"
    ADMIN = "admin"
    SYSTEM_ADMIN = "system_admin"

    @property
    def rank(self) -> int:
        return ROLE_ORDER.index(self)

    def outranks(self, other: "Role") -> bool:
        return self.rank > other.rank


AUTO_ESCALATION_REASON = "auto_escalation"


# ========== Lists for validation ==========

PRIORITY_ORDER = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.CRITICAL]
ROLE_ORDER = [Role.CONTRIBUTOR, Role.ADMIN, Role.SYSTEM_ADMIN]
VALID_PRIORITIES = [p.value for p in PRIORITY_ORDER]
VALID_VIOLATION_TYPES = [t.value for t in ViolationType]


# Global settings instance
settings = get_settings()
