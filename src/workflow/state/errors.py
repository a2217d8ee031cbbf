"""Error taxonomy for the order workflow.

Every failure the engine surfaces derives from WorkflowError so the
transport layer can map it to a response without knowing the details.
Errors marked ``retryable`` describe transient storage conditions; all
others require the caller to change its request or the real-world state.
"""

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for all workflow failures.

    Attributes:
        message: Human-readable error message.
        retryable: Whether repeating the same call may succeed.
    """

    code = "workflow_error"
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_details(self) -> Dict[str, Any]:
        """Return structured context for logs and error responses."""
        return {}


class NotFoundError(WorkflowError):
    """Raised when an order or one of its stage statuses does not exist.

    Attributes:
        entity: Kind of entity that was looked up ("order", "stage",
            "checklist_item").
        key: The identifier that was not found.
    """

    code = "not_found"

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")

    def to_details(self) -> Dict[str, Any]:
        return {"entity": self.entity, "key": str(self.key)}


class DuplicateOrderError(WorkflowError):
    """Raised when creating an order whose order number already exists."""

    code = "duplicate_order"

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order already exists: {order_number}")

    def to_details(self) -> Dict[str, Any]:
        return {"order_number": self.order_number}


class InvalidTransitionError(WorkflowError):
    """Raised when the precondition for a stage transition is not met.

    Attributes:
        order_id: The order the transition targeted.
        stage: The stage kind the transition targeted.
        action: The attempted operation (claim, complete, ...).
        current_state: The stage state observed under the order lock.
        reason: Which precondition failed.
    """

    code = "invalid_transition"

    def __init__(
        self,
        order_id: Any,
        stage: Any,
        action: str,
        current_state: Any,
        reason: str,
    ):
        self.order_id = order_id
        self.stage = stage
        self.action = action
        self.current_state = current_state
        self.reason = reason
        super().__init__(
            f"Cannot {action} stage {getattr(stage, 'value', stage)} of order "
            f"{order_id} in state {getattr(current_state, 'value', current_state)}: "
            f"{reason}"
        )

    def to_details(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "stage": getattr(self.stage, "value", self.stage),
            "action": self.action,
            "current_state": getattr(self.current_state, "value", self.current_state),
            "reason": self.reason,
        }


class ValidationError(WorkflowError):
    """Raised for malformed input, before any mutation is attempted."""

    code = "validation_error"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_details(self) -> Dict[str, Any]:
        return {"field": self.field}


class StorageTimeoutError(WorkflowError):
    """Raised when a storage call exceeds its timeout.

    The operation had no visible effect and can be repeated.
    """

    code = "storage_timeout"
    retryable = True

    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Storage operation '{operation}' timed out after {timeout_seconds}s"
        )

    def to_details(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "timeout_seconds": self.timeout_seconds,
        }


class VersionConflictError(WorkflowError):
    """Raised when optimistic locking detects a concurrent update.

    Only reachable when several processes share one database; inside a
    single process the order lock serializes writers first.
    """

    code = "version_conflict"
    retryable = True

    def __init__(
        self,
        order_id: Any,
        expected_version: int,
        actual_version: Optional[int] = None,
    ):
        self.order_id = order_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        message = f"Version conflict for order {order_id}: expected {expected_version}"
        if actual_version is not None:
            message += f", found {actual_version}"
        super().__init__(message)

    def to_details(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "expected_version": self.expected_version,
            "actual_version": self.actual_version,
        }


class DatabaseError(WorkflowError):
    """Raised when a storage operation fails.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    code = "database_error"

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.original_error = original_error
        super().__init__(message)
