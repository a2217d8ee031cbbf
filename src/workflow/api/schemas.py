"""Request and response schemas for the workflow HTTP API.

Fields are snake_case in Python and camelCase on the wire. Request
schemas only describe shape; workflow rules (positive priority,
non-negative service time, text limits) are enforced by the engine so the
same checks apply to every caller.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.workflow.queue.projector import WipSummary, WorkQueueItem
from src.workflow.state.models import ChecklistItem, Order, StageStatus
from src.workflow.state.policy import StageKind, StageState


DEFAULT_PRIORITY = 3


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class CreateOrderRequest(ApiModel):
    order_number: str
    priority: int = DEFAULT_PRIORITY
    notes: Optional[str] = None


class UpdatePriorityRequest(ApiModel):
    priority: int


class ClaimStageRequest(ApiModel):
    assignee: str


class CompleteStageRequest(ApiModel):
    assignee: str
    service_time_minutes: Optional[int] = None
    notes: Optional[str] = None


class FlagExceptionRequest(ApiModel):
    assignee: str
    exception_reason: str
    notes: Optional[str] = None


class UpdateChecklistItemRequest(ApiModel):
    assignee: str
    task_id: str
    completed: bool


class SupervisorDecisionRequest(ApiModel):
    approver: str
    notes: Optional[str] = None


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class ChecklistItemResponse(ApiModel):
    id: str
    label: str
    required: bool
    completed: bool

    @classmethod
    def from_item(cls, item: ChecklistItem) -> "ChecklistItemResponse":
        return cls.model_validate(item.model_dump())


class StageStatusResponse(ApiModel):
    id: Optional[int] = None
    stage: StageKind
    state: StageState
    assignee: Optional[str] = None
    claimed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    service_time_minutes: Optional[int] = None
    notes: Optional[str] = None
    exception_reason: Optional[str] = None
    supervisor_notes: Optional[str] = None
    approved_by: Optional[str] = None
    checklist: List[ChecklistItemResponse] = []
    updated_at: datetime

    @classmethod
    def from_status(cls, status: StageStatus) -> "StageStatusResponse":
        return cls.model_validate(status.model_dump())


class OrderResponse(ApiModel):
    id: int
    order_number: str
    priority: int
    current_stage: StageKind
    overall_state: StageState
    created_at: datetime
    updated_at: datetime
    notes: Optional[str] = None
    stages: List[StageStatusResponse]

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            priority=order.priority,
            current_stage=order.current_stage(),
            overall_state=order.overall_state(),
            created_at=order.created_at,
            updated_at=order.updated_at,
            notes=order.notes,
            stages=[StageStatusResponse.from_status(s) for s in order.stages()],
        )


class WorkQueueItemResponse(ApiModel):
    order_id: int
    order_number: str
    priority: int
    stage: StageKind
    stage_state: StageState
    current_stage: StageKind
    overall_state: StageState
    assignee: Optional[str] = None
    claimed_at: Optional[datetime] = None
    updated_at: datetime
    exception_reason: Optional[str] = None
    notes: Optional[str] = None
    checklist: List[ChecklistItemResponse] = []

    @classmethod
    def from_item(cls, item: WorkQueueItem) -> "WorkQueueItemResponse":
        return cls(
            order_id=item.order_id,
            order_number=item.order_number,
            priority=item.priority,
            stage=item.stage,
            stage_state=item.stage_state,
            current_stage=item.current_stage,
            overall_state=item.overall_state,
            assignee=item.assignee,
            claimed_at=item.claimed_at,
            updated_at=item.updated_at,
            exception_reason=item.exception_reason,
            notes=item.notes,
            checklist=[ChecklistItemResponse.from_item(c) for c in item.checklist],
        )


class StageSummaryResponse(ApiModel):
    stage: StageKind
    pending: int
    in_progress: int
    exceptions: int
    completed: int


class WipSummaryResponse(ApiModel):
    total_orders: int
    completed_orders: int
    exception_orders: int
    stages: List[StageSummaryResponse]

    @classmethod
    def from_summary(cls, summary: WipSummary) -> "WipSummaryResponse":
        return cls(
            total_orders=summary.total_orders,
            completed_orders=summary.completed_orders,
            exception_orders=summary.exception_orders,
            stages=[
                StageSummaryResponse(
                    stage=s.stage,
                    pending=s.pending,
                    in_progress=s.in_progress,
                    exceptions=s.exceptions,
                    completed=s.completed,
                )
                for s in summary.stages
            ],
        )


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: Dict[str, Any] = {}
