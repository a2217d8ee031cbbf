"""Workflow service configuration using pydantic-settings.

This module defines the WorkflowSettings class that reads configuration
from environment variables with the WORKFLOW_ prefix. Every field has a
default, so the service starts with an in-memory repository when nothing
is configured.
"""

from typing import List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.workflow.events.emitter import EventSinkType


class WorkflowSettings(BaseSettings):
    """Workflow service configuration from environment variables.

    All environment variables are prefixed with WORKFLOW_ (e.g., WORKFLOW_DATABASE_URL).
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    # PostgreSQL connection string; unset means in-memory storage
    database_url: Optional[str] = None

    db_min_pool_size: int = 2
    db_max_pool_size: int = 10

    # Upper bound for a single storage call
    storage_timeout_seconds: float = 5.0

    # -------------------------------------------------------------------------
    # Workflow Policy
    # -------------------------------------------------------------------------
    # Only the claimant may complete or flag a claimed stage
    enforce_assignee: bool = True

    # Upper bound for notes, reasons and identities
    max_text_length: int = 2000

    # Seed demonstration orders when storage is empty
    seed_demo_data: bool = False

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------
    event_sinks: List[EventSinkType] = [EventSinkType.LOGGING, EventSinkType.METRICS]

    log_level: str = "INFO"
    log_json: bool = True

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that a configured database URL has a PostgreSQL scheme."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "database_url must start with postgresql:// or postgres://"
            )
        return v

    @field_validator("storage_timeout_seconds")
    @classmethod
    def validate_storage_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("storage_timeout_seconds must be positive")
        return v

    @field_validator("db_min_pool_size", "db_max_pool_size")
    @classmethod
    def validate_pool_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("pool sizes must be at least 1")
        return v

    @field_validator("max_text_length")
    @classmethod
    def validate_max_text_length(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_text_length must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @model_validator(mode="after")
    def validate_pool_bounds(self) -> "WorkflowSettings":
        if self.db_min_pool_size > self.db_max_pool_size:
            raise ValueError("db_min_pool_size must not exceed db_max_pool_size")
        return self


def get_settings() -> WorkflowSettings:
    """Create and return a WorkflowSettings instance.

    Raises:
        pydantic.ValidationError: If a configured value is invalid.
    """
    return WorkflowSettings()
