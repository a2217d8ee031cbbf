"""Order aggregate models.

This module defines the data models owned by the workflow engine:
- ChecklistItem: One task an operator ticks off while working a stage
- StageStatus: Lifecycle record for one (order, stage kind) pair
- Order: The aggregate owning exactly one StageStatus per pipeline stage

The order's current stage and overall state are never stored; they are
recomputed from the stage statuses on every call so they cannot drift
from the transitions that produced them.

The models use Pydantic for validation, consistent with the events and
API schema modules.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, model_validator

from src.workflow.state.errors import NotFoundError
from src.workflow.state.policy import (
    DEFAULT_CHECKLISTS,
    PIPELINE,
    StageKind,
    StageState,
    is_terminal_state,
    ordinal,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


ChecklistTemplates = Dict[StageKind, Sequence[Tuple[str, str, bool]]]


class ChecklistItem(BaseModel):
    """One task on a stage's checklist.

    Required items must be completed before the stage can be completed.
    """

    id: str = Field(..., min_length=1, description="Stable item key within the stage")
    label: str
    required: bool = False
    completed: bool = False


class StageStatus(BaseModel):
    """Lifecycle record of one stage on one order.

    Timestamps are set once by the transition that introduces them and are
    only cleared by rework. ``exception_reason`` survives skip approval so
    the audit trail shows why the stage was bypassed.

    Attributes:
        stage: The stage kind this record tracks.
        state: Current lifecycle state.
        assignee: Identity of the claimant, cleared on rework.
        claimed_at: When the stage was claimed.
        started_at: When work started (equal to claim time).
        completed_at: When the stage was completed.
        service_time_minutes: Duration reported at completion.
        notes: Free text from the worker.
        exception_reason: Reason given when the stage was flagged.
        supervisor_notes: Notes from the last supervisor decision.
        approved_by: Supervisor who made the last decision.
        checklist: Tasks to tick off while the stage is claimed.
        updated_at: Bumped on every mutation.
    """

    id: Optional[int] = Field(default=None, description="Storage identifier")

    stage: StageKind = Field(..., description="The stage kind this record tracks")

    state: StageState = Field(
        default=StageState.PENDING,
        description="Current lifecycle state of the stage",
    )

    assignee: Optional[str] = None
    claimed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    service_time_minutes: Optional[int] = Field(
        default=None,
        ge=0,
        description="Duration recorded at completion",
    )

    notes: Optional[str] = None
    exception_reason: Optional[str] = None
    supervisor_notes: Optional[str] = None
    approved_by: Optional[str] = None

    checklist: List[ChecklistItem] = Field(default_factory=list)

    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_timestamp_order(self) -> "StageStatus":
        """Validate claimed_at <= started_at <= completed_at where present."""
        stamps = [
            ts for ts in (self.claimed_at, self.started_at, self.completed_at)
            if ts is not None
        ]
        if any(later < earlier for earlier, later in zip(stamps, stamps[1:])):
            raise ValueError(
                "stage timestamps must satisfy claimed_at <= started_at <= completed_at"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return is_terminal_state(self.state)

    @property
    def latest_timestamp(self) -> datetime:
        """The most recent of the stage's timestamps."""
        return max(
            ts for ts in (self.updated_at, self.claimed_at, self.started_at, self.completed_at)
            if ts is not None
        )

    def checklist_item(self, item_id: str) -> ChecklistItem:
        """Return the checklist item keyed ``item_id``.

        Raises:
            NotFoundError: If the stage has no such item.
        """
        for item in self.checklist:
            if item.id == item_id:
                return item
        raise NotFoundError("checklist_item", f"{self.stage.value}/{item_id}")

    def open_required_items(self) -> List[ChecklistItem]:
        return [item for item in self.checklist if item.required and not item.completed]

    def touch(self, now: datetime) -> None:
        self.updated_at = now


class Order(BaseModel):
    """A fulfillment order moving through the production pipeline.

    The order exclusively owns its stage statuses. Use ``stages()`` for the
    pipeline-ordered view and ``stage_status()`` for keyed access.

    Attributes:
        id: Internal identifier assigned by the repository on first save.
        order_number: Unique business key, immutable after creation.
        priority: Positive integer; lower numbers are more urgent.
        notes: Free text supplied at creation.
        created_at: When the order was created (UTC).
        updated_at: When the order or any of its stages last changed (UTC).
        version: Optimistic locking version, incremented on every save.
        statuses: One StageStatus per pipeline stage kind.
    """

    id: Optional[int] = Field(default=None, description="Internal identifier")

    order_number: str = Field(
        ...,
        min_length=1,
        description="Unique business key for the order",
    )

    priority: int = Field(
        ...,
        gt=0,
        description="Urgency; lower numbers are served first",
    )

    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    version: int = Field(
        default=1,
        ge=1,
        description="Optimistic locking version for concurrent update protection",
    )

    statuses: List[StageStatus] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_stages(self) -> "Order":
        """Reject aggregates holding more than one status per stage kind."""
        kinds = [status.stage for status in self.statuses]
        if len(kinds) != len(set(kinds)):
            raise ValueError("an order holds exactly one status per stage kind")
        return self

    @classmethod
    def new(
        cls,
        order_number: str,
        priority: int,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
        checklists: Optional[ChecklistTemplates] = None,
    ) -> "Order":
        """Create an unsaved order with every pipeline stage PENDING.

        Each stage starts with an unchecked copy of its checklist template,
        taken from ``checklists`` or DEFAULT_CHECKLISTS.
        """
        now = now or utcnow()
        templates = DEFAULT_CHECKLISTS if checklists is None else checklists
        return cls(
            order_number=order_number,
            priority=priority,
            notes=notes,
            created_at=now,
            updated_at=now,
            statuses=[
                StageStatus(
                    stage=stage,
                    state=StageState.PENDING,
                    updated_at=now,
                    checklist=[
                        ChecklistItem(id=item_id, label=label, required=required)
                        for item_id, label, required in templates.get(stage, ())
                    ],
                )
                for stage in PIPELINE
            ],
        )

    def stages(self) -> List[StageStatus]:
        """Return the stage statuses ordered by pipeline position."""
        return sorted(self.statuses, key=lambda status: ordinal(status.stage))

    def stage_status(self, stage: StageKind) -> StageStatus:
        """Return the status record for ``stage``.

        Raises:
            NotFoundError: If the order has no status for that stage.
        """
        for status in self.statuses:
            if status.stage == stage:
                return status
        raise NotFoundError("stage", f"{self.order_number}/{getattr(stage, 'value', stage)}")

    def current_stage(self) -> StageKind:
        """Return the earliest stage that is not COMPLETED or SKIPPED.

        When every stage is terminal the last pipeline stage is returned.
        """
        for status in self.stages():
            if not status.is_terminal:
                return status.stage
        return PIPELINE[-1]

    def overall_state(self) -> StageState:
        """Derive the order-level state from its stage states.

        EXCEPTION wins over everything; an order with every stage terminal
        is COMPLETED; otherwise the order mirrors whether its current stage
        is CLAIMED or still PENDING.
        """
        statuses = self.stages()
        if any(s.state == StageState.EXCEPTION for s in statuses):
            return StageState.EXCEPTION
        if all(s.is_terminal for s in statuses):
            return StageState.COMPLETED
        if self.stage_status(self.current_stage()).state == StageState.CLAIMED:
            return StageState.CLAIMED
        return StageState.PENDING

    def sort_key(self):
        """Tie-break key: priority, then creation time, then id."""
        return (self.priority, self.created_at, self.id if self.id is not None else 0)
