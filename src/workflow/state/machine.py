"""Order workflow engine.

This module implements the WorkflowEngine class that moves order stages
through their lifecycle:

    PENDING --claim--> CLAIMED --complete--> COMPLETED --rework--> PENDING
    CLAIMED --flag_exception--> EXCEPTION --approve_skip--> SKIPPED
    CLAIMED --update_checklist--> CLAIMED

A stage can only be completed once every required checklist item is ticked.

Every mutating operation runs under a lock scoped to the order id: the
aggregate is loaded, the precondition is checked against that snapshot,
the change is applied to a private copy and the copy is persisted. A
failed precondition, a storage error or a cancellation therefore leaves
the stored order untouched.

The engine depends on an OrderRepository for persistence. Implementations
live in memory.py (single process) and repository.py (PostgreSQL).
"""

import asyncio
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

import structlog

from src.workflow.events.emitter import EventEmitter, NullEventEmitter
from src.workflow.events.models import EventType, WorkflowEvent
from src.workflow.state.errors import (
    DuplicateOrderError,
    InvalidTransitionError,
    NotFoundError,
    StorageTimeoutError,
    ValidationError,
)
from src.workflow.state.locks import KeyedLock
from src.workflow.state.models import ChecklistTemplates, Order, StageStatus, utcnow
from src.workflow.state.policy import StageKind, StageState, next_stage


logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_STORAGE_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_TEXT_LENGTH = 2000
MAX_ORDER_NUMBER_LENGTH = 64


@runtime_checkable
class OrderRepository(Protocol):
    """Protocol defining the interface for order persistence.

    Implementations must return copies: mutating a returned order must not
    change what is stored until it is passed back to ``save``.
    """

    async def find_by_id(self, order_id: int) -> Optional[Order]:
        """Get an order by internal id, or None."""
        ...

    async def find_by_order_number(self, order_number: str) -> Optional[Order]:
        """Get an order by business key, or None."""
        ...

    async def save(self, order: Order) -> Order:
        """Insert a new order (id is None) or update an existing one.

        Updates use optimistic locking: the stored version must equal
        ``order.version - 1``.

        Returns:
            The stored order, with its id assigned on insert.

        Raises:
            DuplicateOrderError: If the order number is already taken.
            VersionConflictError: If the stored version moved on.
        """
        ...

    async def find_all(self) -> List[Order]:
        """Return every stored order."""
        ...


# A guard returns None when the transition is allowed, else the reason it is not.
Guard = Callable[[Order, StageStatus], Optional[str]]
Apply = Callable[[StageStatus, datetime], None]


class WorkflowEngine:
    """State machine for fulfillment orders and their stages.

    Attributes:
        repository: The order repository for persistence.
        enforce_assignee: When True, only the claimant may complete, flag
            or tick the checklist of a stage.
        storage_timeout_seconds: Upper bound for each storage call.
        checklists: Checklist templates seeded onto new orders; None
            means DEFAULT_CHECKLISTS.

    Example:
        >>> engine = WorkflowEngine(InMemoryOrderRepository())
        >>> order = await engine.create_order("PO-1001", priority=3)
        >>> order = await engine.claim_stage(order.id, StageKind.PREPARATION, "op1")
        >>> order.overall_state()
        <StageState.CLAIMED: 'CLAIMED'>
    """

    def __init__(
        self,
        repository: OrderRepository,
        event_emitter: Optional[EventEmitter] = None,
        *,
        enforce_assignee: bool = True,
        storage_timeout_seconds: float = DEFAULT_STORAGE_TIMEOUT_SECONDS,
        max_text_length: int = DEFAULT_MAX_TEXT_LENGTH,
        clock: Callable[[], datetime] = utcnow,
        checklists: Optional[ChecklistTemplates] = None,
    ):
        self.repository = repository
        self.event_emitter = event_emitter or NullEventEmitter()
        self.enforce_assignee = enforce_assignee
        self.storage_timeout_seconds = storage_timeout_seconds
        self.max_text_length = max_text_length
        self.checklists = checklists
        self._clock = clock
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: int) -> Order:
        """Get an order by id.

        Raises:
            NotFoundError: If the order doesn't exist.
        """
        return await self._load(self._order_id(order_id))

    async def list_orders(self) -> List[Order]:
        """List all orders, most urgent first."""
        orders = await self._storage("find_all", self.repository.find_all())
        return sorted(orders, key=Order.sort_key)

    # ------------------------------------------------------------------
    # Order lifecycle
    # ------------------------------------------------------------------

    async def create_order(
        self,
        order_number: str,
        priority: int,
        notes: Optional[str] = None,
    ) -> Order:
        """Create an order with every pipeline stage PENDING.

        Raises:
            ValidationError: If the order number, priority or notes are malformed.
            DuplicateOrderError: If the order number already exists.
        """
        order_number = self._identity("order_number", order_number, MAX_ORDER_NUMBER_LENGTH)
        priority = self._priority(priority)
        notes = self._text("notes", notes)

        async with self._locks.hold(("order_number", order_number)):
            existing = await self._storage(
                "find_by_order_number",
                self.repository.find_by_order_number(order_number),
            )
            if existing is not None:
                logger.warning("Duplicate order number rejected", order_number=order_number)
                raise DuplicateOrderError(order_number)

            order = Order.new(
                order_number, priority, notes, now=self._clock(), checklists=self.checklists
            )
            saved = await self._storage("save", self.repository.save(order))

        logger.info(
            "Created order",
            order_id=saved.id,
            order_number=saved.order_number,
            priority=saved.priority,
        )
        await self._emit(
            WorkflowEvent(
                event_type=EventType.ORDER_CREATED,
                order_id=saved.id,
                order_number=saved.order_number,
                details={"priority": saved.priority},
            )
        )
        return saved

    async def update_priority(self, order_id: int, priority: int) -> Order:
        """Change an order's priority without touching its stages.

        Raises:
            ValidationError: If priority is not a positive integer.
            NotFoundError: If the order doesn't exist.
        """
        order_id = self._order_id(order_id)
        priority = self._priority(priority)

        async with self._locks.hold(("order", order_id)):
            order = await self._load(order_id)
            working = order.model_copy(deep=True)
            previous = working.priority
            working.priority = priority
            working.updated_at = max(self._clock(), working.updated_at)
            working.version += 1
            saved = await self._storage("save", self.repository.save(working))

        logger.info(
            "Updated order priority",
            order_id=order_id,
            from_priority=previous,
            to_priority=priority,
        )
        await self._emit(
            WorkflowEvent(
                event_type=EventType.PRIORITY_CHANGED,
                order_id=saved.id,
                order_number=saved.order_number,
                details={"from_priority": previous, "to_priority": priority},
            )
        )
        return saved

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    async def claim_stage(self, order_id: int, stage: StageKind, assignee: str) -> Order:
        """Claim a PENDING stage that is the order's current stage.

        Raises:
            NotFoundError: If the order or stage doesn't exist.
            InvalidTransitionError: If the stage is not PENDING or an
                earlier stage is still open.
        """
        assignee = self._identity("assignee", assignee)

        def guard(order: Order, status: StageStatus) -> Optional[str]:
            if status.state != StageState.PENDING:
                return "stage is not PENDING"
            current = order.current_stage()
            if current != status.stage:
                return f"earlier stage {current.value} is still open"
            return None

        def apply(status: StageStatus, now: datetime) -> None:
            status.state = StageState.CLAIMED
            status.assignee = assignee
            status.claimed_at = now
            status.started_at = now

        return await self._transition(order_id, stage, "claim", assignee, guard, apply)

    async def complete_stage(
        self,
        order_id: int,
        stage: StageKind,
        assignee: str,
        service_time_minutes: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Complete a CLAIMED stage.

        Raises:
            ValidationError: If service time is negative or notes too long.
            NotFoundError: If the order or stage doesn't exist.
            InvalidTransitionError: If the stage is not CLAIMED, is claimed
                by someone else while assignee enforcement is on, or still
                has required checklist items open.
        """
        assignee = self._identity("assignee", assignee)
        service_time_minutes = self._service_time(service_time_minutes)
        notes = self._text("notes", notes)
        claimed = self._claimed_by(assignee)

        def guard(order: Order, status: StageStatus) -> Optional[str]:
            reason = claimed(order, status)
            if reason is not None:
                return reason
            open_items = status.open_required_items()
            if open_items:
                return "required checklist items are incomplete: " + ", ".join(
                    item.id for item in open_items
                )
            return None

        def apply(status: StageStatus, now: datetime) -> None:
            status.state = StageState.COMPLETED
            status.completed_at = now
            status.service_time_minutes = service_time_minutes
            if notes is not None:
                status.notes = notes

        return await self._transition(
            order_id,
            stage,
            "complete",
            assignee,
            guard,
            apply,
            details={"service_time_minutes": service_time_minutes},
        )

    async def update_checklist_item(
        self,
        order_id: int,
        stage: StageKind,
        assignee: str,
        item_id: str,
        completed: bool,
    ) -> Order:
        """Tick or untick one checklist item on a CLAIMED stage.

        The stage state does not change.

        Raises:
            ValidationError: If the item id is blank or completed is not a bool.
            NotFoundError: If the order, stage or checklist item doesn't exist.
            InvalidTransitionError: If the stage is not CLAIMED, or is
                claimed by someone else while assignee enforcement is on.
        """
        assignee = self._identity("assignee", assignee)
        item_id = self._identity("item_id", item_id)
        if not isinstance(completed, bool):
            raise ValidationError("completed", "must be a boolean")
        claimed = self._claimed_by(assignee)

        def guard(order: Order, status: StageStatus) -> Optional[str]:
            status.checklist_item(item_id)
            return claimed(order, status)

        def apply(status: StageStatus, now: datetime) -> None:
            status.checklist_item(item_id).completed = completed

        return await self._transition(
            order_id,
            stage,
            "update_checklist",
            assignee,
            guard,
            apply,
            details={"item_id": item_id, "completed": completed},
        )

    async def flag_exception(
        self,
        order_id: int,
        stage: StageKind,
        assignee: str,
        exception_reason: str,
        notes: Optional[str] = None,
    ) -> Order:
        """Flag a CLAIMED stage as exceptional, blocking the order.

        Raises:
            ValidationError: If no reason is given or text is too long.
            NotFoundError: If the order or stage doesn't exist.
            InvalidTransitionError: If the stage is not CLAIMED, or is
                claimed by someone else while assignee enforcement is on.
        """
        assignee = self._identity("assignee", assignee)
        exception_reason = self._text("exception_reason", exception_reason, required=True)
        notes = self._text("notes", notes)

        def apply(status: StageStatus, now: datetime) -> None:
            status.state = StageState.EXCEPTION
            status.exception_reason = exception_reason
            if notes is not None:
                status.notes = notes

        return await self._transition(
            order_id,
            stage,
            "flag_exception",
            assignee,
            self._claimed_by(assignee),
            apply,
            details={"exception_reason": exception_reason},
        )

    async def approve_skip(
        self,
        order_id: int,
        stage: StageKind,
        supervisor: str,
        supervisor_notes: Optional[str] = None,
    ) -> Order:
        """Resolve an EXCEPTION stage by skipping it.

        Raises:
            NotFoundError: If the order or stage doesn't exist.
            InvalidTransitionError: If the stage is not EXCEPTION.
        """
        supervisor = self._identity("supervisor", supervisor)
        supervisor_notes = self._text("supervisor_notes", supervisor_notes)

        def guard(order: Order, status: StageStatus) -> Optional[str]:
            if status.state != StageState.EXCEPTION:
                return "stage is not in EXCEPTION"
            return None

        def apply(status: StageStatus, now: datetime) -> None:
            status.state = StageState.SKIPPED
            status.approved_by = supervisor
            status.supervisor_notes = supervisor_notes

        return await self._transition(order_id, stage, "approve_skip", supervisor, guard, apply)

    async def request_rework(
        self,
        order_id: int,
        stage: StageKind,
        supervisor: str,
        supervisor_notes: Optional[str] = None,
    ) -> Order:
        """Reopen a COMPLETED stage so it must be claimed again.

        Only the targeted stage is reset, including its checklist; later
        stages keep their state.

        Raises:
            NotFoundError: If the order or stage doesn't exist.
            InvalidTransitionError: If the stage is not COMPLETED.
        """
        supervisor = self._identity("supervisor", supervisor)
        supervisor_notes = self._text("supervisor_notes", supervisor_notes)

        def guard(order: Order, status: StageStatus) -> Optional[str]:
            if status.state != StageState.COMPLETED:
                return "stage is not COMPLETED"
            return None

        def apply(status: StageStatus, now: datetime) -> None:
            status.state = StageState.PENDING
            status.assignee = None
            status.claimed_at = None
            status.started_at = None
            status.completed_at = None
            status.service_time_minutes = None
            for item in status.checklist:
                item.completed = False
            status.approved_by = supervisor
            status.supervisor_notes = supervisor_notes

        return await self._transition(order_id, stage, "request_rework", supervisor, guard, apply)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _claimed_by(self, assignee: str) -> Guard:
        def guard(order: Order, status: StageStatus) -> Optional[str]:
            if status.state != StageState.CLAIMED:
                return "stage is not CLAIMED"
            if self.enforce_assignee and status.assignee != assignee:
                return f"stage is claimed by {status.assignee}"
            return None

        return guard

    async def _transition(
        self,
        order_id: int,
        stage: StageKind,
        action: str,
        actor: str,
        guard: Guard,
        apply: Apply,
        details: Optional[Dict[str, Any]] = None,
    ) -> Order:
        order_id = self._order_id(order_id)
        stage = self._stage(stage)
        rejection: Optional[InvalidTransitionError] = None

        async with self._locks.hold(("order", order_id)):
            order = await self._load(order_id)
            working = order.model_copy(deep=True)
            status = working.stage_status(stage)
            from_state = status.state

            reason = guard(working, status)
            if reason is not None:
                rejection = InvalidTransitionError(order_id, stage, action, from_state, reason)
            else:
                # Never stamp earlier than what is stored, even if the clock steps back.
                now = max(self._clock(), status.latest_timestamp, working.updated_at)
                apply(status, now)
                status.touch(now)
                working.updated_at = now
                working.version += 1
                saved = await self._storage("save", self.repository.save(working))

        if rejection is not None:
            logger.warning(
                "Invalid stage transition attempted",
                order_id=order_id,
                stage=stage.value,
                action=action,
                current_state=from_state.value,
                reason=rejection.reason,
            )
            await self._emit(
                WorkflowEvent(
                    event_type=EventType.TRANSITION_REJECTED,
                    order_id=order_id,
                    order_number=order.order_number,
                    details=rejection.to_details(),
                )
            )
            raise rejection

        to_state = saved.stage_status(stage).state
        details = dict(details or {})
        if to_state != from_state and to_state in (StageState.COMPLETED, StageState.SKIPPED):
            following = next_stage(stage)
            details["next_stage"] = following.value if following is not None else None
        logger.info(
            "Stage transition applied",
            order_id=order_id,
            stage=stage.value,
            action=action,
            actor=actor,
            from_state=from_state.value,
            to_state=to_state.value,
            current_stage=saved.current_stage().value,
            overall_state=saved.overall_state().value,
            version=saved.version,
        )
        await self._emit(
            WorkflowEvent(
                event_type=EventType.STAGE_TRANSITION,
                order_id=saved.id,
                order_number=saved.order_number,
                details={
                    "stage": stage.value,
                    "action": action,
                    "actor": actor,
                    "from_state": from_state.value,
                    "to_state": to_state.value,
                    **details,
                },
            )
        )
        return saved

    async def _load(self, order_id: int) -> Order:
        order = await self._storage("find_by_id", self.repository.find_by_id(order_id))
        if order is None:
            raise NotFoundError("order", order_id)
        return order

    async def _storage(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.storage_timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning(
                "Storage operation timed out",
                operation=operation,
                timeout_seconds=self.storage_timeout_seconds,
            )
            raise StorageTimeoutError(operation, self.storage_timeout_seconds) from e

    async def _emit(self, event: WorkflowEvent) -> None:
        try:
            await self.event_emitter.emit(event)
        except Exception as e:
            logger.error(
                "Failed to emit workflow event",
                event_type=event.event_type.value,
                order_id=event.order_id,
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Input validation, applied before any lock or storage call
    # ------------------------------------------------------------------

    @staticmethod
    def _order_id(order_id: Any) -> int:
        if isinstance(order_id, bool) or not isinstance(order_id, int):
            raise ValidationError("order_id", "must be an integer")
        return order_id

    @staticmethod
    def _stage(stage: Any) -> StageKind:
        try:
            return StageKind(stage)
        except ValueError:
            raise ValidationError("stage", f"unknown stage kind: {stage!r}") from None

    @staticmethod
    def _priority(priority: Any) -> int:
        if isinstance(priority, bool) or not isinstance(priority, int) or priority < 1:
            raise ValidationError("priority", "must be a positive integer")
        return priority

    @staticmethod
    def _service_time(minutes: Any) -> Optional[int]:
        if minutes is None:
            return None
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            raise ValidationError("service_time_minutes", "must be an integer")
        if minutes < 0:
            raise ValidationError("service_time_minutes", "must not be negative")
        return minutes

    def _identity(self, field: str, value: Any, max_length: Optional[int] = None) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(field, "must be a non-empty string")
        value = value.strip()
        limit = max_length or self.max_text_length
        if len(value) > limit:
            raise ValidationError(field, f"must be at most {limit} characters")
        return value

    def _text(self, field: str, value: Any, required: bool = False) -> Optional[str]:
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                raise ValidationError(field, "is required")
            return None
        if not isinstance(value, str):
            raise ValidationError(field, "must be a string")
        if len(value) > self.max_text_length:
            raise ValidationError(field, f"must be at most {self.max_text_length} characters")
        return value
