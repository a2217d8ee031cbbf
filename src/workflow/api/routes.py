"""HTTP routes for orders, operator work and supervisor decisions.

Identity is taken from the request body (``assignee`` for operators,
``approver`` for supervisors) and trusted as given; authentication is
handled in front of this service.

Error mapping:
- NotFoundError → 404
- DuplicateOrderError, InvalidTransitionError → 409
- ValidationError → 422
- Retryable storage errors (timeout, version conflict) → 503
- DatabaseError and other WorkflowErrors → 500
"""

from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from src.workflow.api.schemas import (
    ClaimStageRequest,
    CompleteStageRequest,
    CreateOrderRequest,
    ErrorResponse,
    FlagExceptionRequest,
    OrderResponse,
    SupervisorDecisionRequest,
    UpdateChecklistItemRequest,
    UpdatePriorityRequest,
    WipSummaryResponse,
    WorkQueueItemResponse,
)
from src.workflow.queue.projector import WorkQueueFilter, queue, summarize_wip
from src.workflow.state.errors import (
    DuplicateOrderError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from src.workflow.state.machine import WorkflowEngine
from src.workflow.state.policy import StageKind, StageState


logger = structlog.get_logger()

router = APIRouter(prefix="/api")


def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine


def _status_for(error: WorkflowError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (DuplicateOrderError, InvalidTransitionError)):
        return 409
    if isinstance(error, ValidationError):
        return 422
    if error.retryable:
        return 503
    return 500


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    status_code = _status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request failed",
        path=request.url.path,
        method=request.method,
        status_code=status_code,
        error=exc.code,
        message=exc.message,
    )
    body = ErrorResponse(error=exc.code, message=exc.message, details=exc.to_details())
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, workflow_error_handler)


# -----------------------------------------------------------------------------
# Orders
# -----------------------------------------------------------------------------


@router.get("/orders", response_model=List[OrderResponse])
async def list_orders(engine: WorkflowEngine = Depends(get_engine)):
    return [OrderResponse.from_order(o) for o in await engine.list_orders()]


@router.post("/orders", response_model=OrderResponse, status_code=201)
async def create_order(body: CreateOrderRequest, engine: WorkflowEngine = Depends(get_engine)):
    order = await engine.create_order(body.order_number, body.priority, body.notes)
    return OrderResponse.from_order(order)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(order_id: int, engine: WorkflowEngine = Depends(get_engine)):
    return OrderResponse.from_order(await engine.get_order(order_id))


@router.patch("/orders/{order_id}/priority", response_model=OrderResponse)
async def update_priority(
    order_id: int,
    body: UpdatePriorityRequest,
    engine: WorkflowEngine = Depends(get_engine),
):
    return OrderResponse.from_order(await engine.update_priority(order_id, body.priority))


# -----------------------------------------------------------------------------
# Operator
# -----------------------------------------------------------------------------


@router.get("/operator/queue", response_model=List[WorkQueueItemResponse])
async def operator_queue(
    stage: Optional[StageKind] = None,
    states: List[StageState] = Query(default=[]),
    assignee: Optional[str] = None,
    actionable_only: bool = Query(default=False, alias="actionableOnly"),
    engine: WorkflowEngine = Depends(get_engine),
):
    query = WorkQueueFilter(
        stage=stage,
        states=frozenset(states),
        assignee=assignee,
        actionable_only=actionable_only,
    )
    orders = await engine.list_orders()
    return [WorkQueueItemResponse.from_item(item) for item in queue(orders, query)]


@router.post("/operator/orders/{order_id}/stages/{stage}/claim", response_model=OrderResponse)
async def claim_stage(
    order_id: int,
    stage: StageKind,
    body: ClaimStageRequest,
    engine: WorkflowEngine = Depends(get_engine),
):
    order = await engine.claim_stage(order_id, stage, body.assignee)
    return OrderResponse.from_order(order)


@router.post("/operator/orders/{order_id}/stages/{stage}/complete", response_model=OrderResponse)
async def complete_stage(
    order_id: int,
    stage: StageKind,
    body: CompleteStageRequest,
    engine: WorkflowEngine = Depends(get_engine),
):
    order = await engine.complete_stage(
        order_id, stage, body.assignee, body.service_time_minutes, body.notes
    )
    return OrderResponse.from_order(order)


@router.patch(
    "/operator/orders/{order_id}/stages/{stage}/checklist",
    response_model=OrderResponse,
)
async def update_checklist_item(
    order_id: int,
    stage: StageKind,
    body: UpdateChecklistItemRequest,
    engine: WorkflowEngine = Depends(get_engine),
):
    order = await engine.update_checklist_item(
        order_id, stage, body.assignee, body.task_id, body.completed
    )
    return OrderResponse.from_order(order)


@router.post(
    "/operator/orders/{order_id}/stages/{stage}/flag-exception",
    response_model=OrderResponse,
)
async def flag_exception(
    order_id: int,
    stage: StageKind,
    body: FlagExceptionRequest,
    engine: WorkflowEngine = Depends(get_engine),
):
    order = await engine.flag_exception(
        order_id, stage, body.assignee, body.exception_reason, body.notes
    )
    return OrderResponse.from_order(order)


# -----------------------------------------------------------------------------
# Supervisor
# -----------------------------------------------------------------------------


@router.get("/supervisor/wip", response_model=WipSummaryResponse)
async def wip_summary(engine: WorkflowEngine = Depends(get_engine)):
    return WipSummaryResponse.from_summary(summarize_wip(await engine.list_orders()))


@router.post(
    "/supervisor/orders/{order_id}/stages/{stage}/approve-skip",
    response_model=OrderResponse,
)
async def approve_skip(
    order_id: int,
    stage: StageKind,
    body: SupervisorDecisionRequest,
    engine: WorkflowEngine = Depends(get_engine),
):
    order = await engine.approve_skip(order_id, stage, body.approver, body.notes)
    return OrderResponse.from_order(order)


@router.post(
    "/supervisor/orders/{order_id}/stages/{stage}/request-rework",
    response_model=OrderResponse,
)
async def request_rework(
    order_id: int,
    stage: StageKind,
    body: SupervisorDecisionRequest,
    engine: WorkflowEngine = Depends(get_engine),
):
    order = await engine.request_rework(order_id, stage, body.approver, body.notes)
    return OrderResponse.from_order(order)
