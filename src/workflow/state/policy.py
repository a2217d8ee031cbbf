"""Stage sequence policy for the fulfillment pipeline.

This module defines the fixed production pipeline and the lifecycle states
a stage can be in:
- StageKind: The stages every order moves through
- StageState: Per-stage lifecycle state
- PIPELINE: The single ordered source of truth for stage sequencing

Adding a stage kind means editing PIPELINE and redeploying; the sequence is
never configured at runtime.
"""

from enum import Enum
from typing import Dict, Optional, Tuple


class StageKind(str, Enum):
    """Production stages of a fulfillment order.

    Stage Flow:
        preparation → assembly → delivery
    """

    PREPARATION = "PREPARATION"
    ASSEMBLY = "ASSEMBLY"
    DELIVERY = "DELIVERY"


class StageState(str, Enum):
    """Lifecycle state of a single stage on a single order.

    Attributes:
        PENDING: Initial state; waiting to be claimed.
        CLAIMED: Owned by an assignee and in progress.
        COMPLETED: Finished successfully. Can be reopened by rework.
        EXCEPTION: Blocked by a reported problem; needs a supervisor.
        SKIPPED: Supervisor-approved bypass of an exceptional stage.
    """

    PENDING = "PENDING"
    CLAIMED = "CLAIMED"
    COMPLETED = "COMPLETED"
    EXCEPTION = "EXCEPTION"
    SKIPPED = "SKIPPED"


PIPELINE: Tuple[StageKind, ...] = (
    StageKind.PREPARATION,
    StageKind.ASSEMBLY,
    StageKind.DELIVERY,
)

_ORDINALS: Dict[StageKind, int] = {stage: i for i, stage in enumerate(PIPELINE)}

TERMINAL_STATES = frozenset({StageState.COMPLETED, StageState.SKIPPED})


def pipeline() -> Tuple[StageKind, ...]:
    """Return the stage kinds in pipeline order."""
    return PIPELINE


def ordinal(stage: StageKind) -> int:
    """Return the position of a stage in the pipeline.

    Args:
        stage: The stage kind to look up.

    Returns:
        Zero-based position used for sorting and claim gating.

    Raises:
        KeyError: If the stage is not part of the pipeline.

    Example:
        >>> ordinal(StageKind.PREPARATION)
        0
        >>> ordinal(StageKind.DELIVERY)
        2
    """
    return _ORDINALS[stage]


def next_stage(stage: StageKind) -> Optional[StageKind]:
    """Return the stage after ``stage``, or None for the last stage."""
    position = ordinal(stage) + 1
    if position >= len(PIPELINE):
        return None
    return PIPELINE[position]


def is_terminal_state(state: StageState) -> bool:
    """Check if a stage state no longer blocks pipeline progress.

    COMPLETED counts as terminal even though rework can reopen it; the
    pipeline treats it as resolved until that happens.

    Example:
        >>> is_terminal_state(StageState.SKIPPED)
        True
        >>> is_terminal_state(StageState.EXCEPTION)
        False
    """
    return state in TERMINAL_STATES


# (item id, label, required) per stage kind. Every new order starts with
# these items unchecked on the matching stage.
DEFAULT_CHECKLISTS: Dict[StageKind, Tuple[Tuple[str, str, bool], ...]] = {
    StageKind.PREPARATION: (
        ("materials-picked", "Materials picked", True),
        ("work-order-reviewed", "Work order reviewed", True),
        ("workspace-cleaned", "Workspace cleaned", False),
    ),
    StageKind.ASSEMBLY: (
        ("components-fitted", "Components fitted", True),
        ("quality-check", "Quality check passed", True),
        ("photos-taken", "Photos taken", False),
    ),
    StageKind.DELIVERY: (
        ("order-packed", "Order packed", True),
        ("label-printed", "Shipping label printed", True),
        ("customer-notified", "Customer notified", False),
    ),
}
