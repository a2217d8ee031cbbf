"""Workflow event models for observability.

This module defines the data models for workflow events, including:
- EventType: Enum of all event types emitted by the engine
- WorkflowEvent: Structured event with all required metadata

Events are emitted after a mutation has been persisted, for monitoring,
dashboards and audit logs. They are never used to rebuild order state.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the workflow engine.

    Attributes:
        ORDER_CREATED: A new order entered the pipeline.
        STAGE_TRANSITION: A stage changed state (claim, complete, ...).
        TRANSITION_REJECTED: A transition precondition was not met.
        PRIORITY_CHANGED: An order's priority was updated.
    """

    ORDER_CREATED = "order_created"
    STAGE_TRANSITION = "stage_transition"
    TRANSITION_REJECTED = "transition_rejected"
    PRIORITY_CHANGED = "priority_changed"


class WorkflowEvent(BaseModel):
    """Structured event emitted by the workflow engine.

    Details Field Conventions:
        For STAGE_TRANSITION events:
            - stage: Stage kind that changed
            - action: claim, complete, update_checklist, flag_exception,
              approve_skip, request_rework
            - from_state / to_state: Stage states around the transition
            - actor: Assignee or supervisor identity
            - service_time_minutes: Present for completions
            - item_id / completed: Present for checklist updates
            - next_stage: Stage that follows, present when a stage is
              completed or skipped (None after the last stage)

        For TRANSITION_REJECTED events:
            - stage, action, current_state, reason

        For PRIORITY_CHANGED events:
            - from_priority / to_priority

    Attributes:
        event_type: The category of event.
        order_id: Internal order identifier.
        order_number: Business key of the order.
        timestamp: When the event occurred (UTC timezone).
        details: Additional context specific to the event type.
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    order_id: Optional[int] = Field(
        default=None,
        description="Internal order identifier",
    )

    order_number: Optional[str] = Field(
        default=None,
        description="Business key of the order",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert event to a flat dictionary suitable for structured logging.

        Example:
            >>> event = WorkflowEvent(
            ...     event_type=EventType.ORDER_CREATED,
            ...     order_id=1,
            ...     order_number="PO-1001",
            ... )
            >>> event.to_log_dict()["event_type"]
            'order_created'
        """
        return {
            "event_type": self.event_type.value,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
