"""Order workflow state machine and persistence.

Every order moves through the fixed pipeline:
- preparation → assembly → delivery

Each stage has its own lifecycle (pending, claimed, completed, exception,
skipped) and a checklist of tasks to tick off before completion.
Orders are persisted through an OrderRepository, in memory or in
PostgreSQL with optimistic locking.
"""

from src.workflow.state.errors import (
    DatabaseError,
    DuplicateOrderError,
    InvalidTransitionError,
    NotFoundError,
    StorageTimeoutError,
    ValidationError,
    VersionConflictError,
    WorkflowError,
)
from src.workflow.state.machine import OrderRepository, WorkflowEngine
from src.workflow.state.memory import InMemoryOrderRepository
from src.workflow.state.models import ChecklistItem, Order, StageStatus
from src.workflow.state.policy import (
    DEFAULT_CHECKLISTS,
    PIPELINE,
    StageKind,
    StageState,
    is_terminal_state,
    next_stage,
    ordinal,
    pipeline,
)
from src.workflow.state.repository import PostgresOrderRepository

__all__ = [
    # Policy
    "DEFAULT_CHECKLISTS",
    "PIPELINE",
    "StageKind",
    "StageState",
    "is_terminal_state",
    "next_stage",
    "ordinal",
    "pipeline",
    # Models
    "ChecklistItem",
    "Order",
    "StageStatus",
    # Engine
    "OrderRepository",
    "WorkflowEngine",
    # Errors
    "WorkflowError",
    "NotFoundError",
    "DuplicateOrderError",
    "InvalidTransitionError",
    "ValidationError",
    "StorageTimeoutError",
    "VersionConflictError",
    "DatabaseError",
    # Repositories
    "InMemoryOrderRepository",
    "PostgresOrderRepository",
]
