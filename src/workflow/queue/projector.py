"""Work queue projections over loaded orders.

Read-only views for operator and supervisor dashboards:
- WorkQueue: Filtered, ordered (order, stage status) items
- summarize_wip: Per-stage work-in-progress counts

Nothing here mutates an order. Each projection works on the snapshots it
is given; there is no cross-order consistency requirement.

Ordering:
    Items are served most urgent first. Priority is ascending (1 is the
    most urgent), then the stage's claimed_at (falling back to updated_at)
    ascending so the longest-waiting work surfaces first, then order
    creation time, then order id.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple

from src.workflow.state.models import ChecklistItem, Order, StageStatus
from src.workflow.state.policy import PIPELINE, StageKind, StageState


@dataclass(frozen=True)
class WorkQueueFilter:
    """Selection criteria for a work queue.

    Attributes:
        stage: Only items for this stage kind.
        states: Only items whose stage state is in this set.
        assignee: Only items claimed by this identity.
        actionable_only: Only each order's current stage.
    """

    stage: Optional[StageKind] = None
    states: FrozenSet[StageState] = field(default_factory=frozenset)
    assignee: Optional[str] = None
    actionable_only: bool = False

    def matches(self, order: Order, status: StageStatus) -> bool:
        if self.stage is not None and status.stage != self.stage:
            return False
        if self.states and status.state not in self.states:
            return False
        if self.assignee is not None and status.assignee != self.assignee:
            return False
        if self.actionable_only and order.current_stage() != status.stage:
            return False
        return True


@dataclass(frozen=True)
class WorkQueueItem:
    """One (order, stage status) pair with the order's derived fields."""

    order_id: Optional[int]
    order_number: str
    priority: int
    stage: StageKind
    stage_state: StageState
    current_stage: StageKind
    overall_state: StageState
    assignee: Optional[str]
    claimed_at: Optional[datetime]
    updated_at: datetime
    exception_reason: Optional[str]
    notes: Optional[str]
    checklist: Tuple[ChecklistItem, ...]
    order_created_at: datetime

    @classmethod
    def from_status(cls, order: Order, status: StageStatus) -> "WorkQueueItem":
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            priority=order.priority,
            stage=status.stage,
            stage_state=status.state,
            current_stage=order.current_stage(),
            overall_state=order.overall_state(),
            assignee=status.assignee,
            claimed_at=status.claimed_at,
            updated_at=status.updated_at,
            exception_reason=status.exception_reason,
            notes=status.notes,
            checklist=tuple(item.model_copy() for item in status.checklist),
            order_created_at=order.created_at,
        )

    def sort_key(self):
        acted_on = self.claimed_at or self.updated_at
        return (
            self.priority,
            acted_on,
            self.order_created_at,
            self.order_id if self.order_id is not None else 0,
        )


class WorkQueue:
    """A lazy, restartable, finite sequence of work queue items.

    Iterating twice over the same WorkQueue yields the same items; the
    orders it was built from are never modified.

    Example:
        >>> queue = WorkQueue(orders, WorkQueueFilter(stage=StageKind.ASSEMBLY))
        >>> for item in queue:
        ...     print(item.order_number, item.stage_state.value)
    """

    def __init__(self, orders: Iterable[Order], query: Optional[WorkQueueFilter] = None):
        self._orders: Sequence[Order] = tuple(orders)
        self._query = query or WorkQueueFilter()

    def __iter__(self) -> Iterator[WorkQueueItem]:
        items = (
            WorkQueueItem.from_status(order, status)
            for order in self._orders
            for status in order.stages()
            if self._query.matches(order, status)
        )
        return iter(sorted(items, key=WorkQueueItem.sort_key))

    def __len__(self) -> int:
        return sum(1 for _ in self)


def queue(orders: Iterable[Order], query: Optional[WorkQueueFilter] = None) -> WorkQueue:
    """Build the work queue for ``orders`` filtered by ``query``."""
    return WorkQueue(orders, query)


@dataclass
class StageSummary:
    """Work-in-progress counts for one stage kind."""

    stage: StageKind
    pending: int = 0
    in_progress: int = 0
    exceptions: int = 0
    completed: int = 0


@dataclass
class WipSummary:
    """Work-in-progress across all orders."""

    total_orders: int = 0
    completed_orders: int = 0
    exception_orders: int = 0
    stages: List[StageSummary] = field(default_factory=list)


def summarize_wip(orders: Iterable[Order]) -> WipSummary:
    """Count orders and stage states for the supervisor dashboard.

    SKIPPED stages count as completed; stage summaries follow pipeline order.
    """
    per_stage: Dict[StageKind, StageSummary] = {
        stage: StageSummary(stage=stage) for stage in PIPELINE
    }
    summary = WipSummary(stages=list(per_stage.values()))

    for order in orders:
        summary.total_orders += 1
        overall = order.overall_state()
        if overall == StageState.COMPLETED:
            summary.completed_orders += 1
        elif overall == StageState.EXCEPTION:
            summary.exception_orders += 1

        for status in order.stages():
            counts = per_stage[status.stage]
            if status.state == StageState.PENDING:
                counts.pending += 1
            elif status.state == StageState.CLAIMED:
                counts.in_progress += 1
            elif status.state == StageState.EXCEPTION:
                counts.exceptions += 1
            else:
                counts.completed += 1

    return summary
