"""Property-based tests for the order workflow engine.

Random sequences of operations are replayed against a fresh engine and the
derived order state is checked after every step:

- current stage is the earliest stage that is neither COMPLETED nor SKIPPED
- overall state follows the EXCEPTION > COMPLETED > CLAIMED > PENDING rules
- a rejected operation leaves the stored order byte-for-byte unchanged
- a successful operation bumps the version by exactly one
- stage timestamps stay ordered and a stage can only be claimed once every
  earlier stage is resolved

Testing Configuration:
- Library: Hypothesis (Python)
- Engine and repository are built per example, not from fixtures
"""

import asyncio
from typing import List, Tuple

from hypothesis import given, settings, strategies as st

from src.workflow.state.errors import InvalidTransitionError, ValidationError
from src.workflow.state.machine import WorkflowEngine
from src.workflow.state.memory import InMemoryOrderRepository
from src.workflow.state.models import Order
from src.workflow.state.policy import PIPELINE, StageKind, StageState, ordinal


# =============================================================================
# Hypothesis Strategies
# =============================================================================


ACTIONS = ("claim", "complete", "flag_exception", "approve_skip", "request_rework")


@st.composite
def operation(draw: st.DrawFn) -> Tuple[str, StageKind, str]:
    """Generate one (action, stage, actor) step."""
    action = draw(st.sampled_from(ACTIONS))
    stage = draw(st.sampled_from(PIPELINE))
    if action in ("approve_skip", "request_rework"):
        actor = draw(st.sampled_from(["sup1", "sup2"]))
    else:
        actor = draw(st.sampled_from(["op1", "op2"]))
    return action, stage, actor


operations = st.lists(operation(), min_size=1, max_size=40)


# =============================================================================
# Helper Functions
# =============================================================================


def run_async(coro):
    return asyncio.run(coro)


def expected_current(order: Order) -> StageKind:
    for stage in PIPELINE:
        if order.stage_status(stage).state not in (StageState.COMPLETED, StageState.SKIPPED):
            return stage
    return PIPELINE[-1]


def expected_overall(order: Order) -> StageState:
    states = [order.stage_status(stage).state for stage in PIPELINE]
    if StageState.EXCEPTION in states:
        return StageState.EXCEPTION
    if all(s in (StageState.COMPLETED, StageState.SKIPPED) for s in states):
        return StageState.COMPLETED
    if order.stage_status(expected_current(order)).state == StageState.CLAIMED:
        return StageState.CLAIMED
    return StageState.PENDING


async def apply_operation(
    engine: WorkflowEngine, order_id: int, action: str, stage: StageKind, actor: str
) -> Order:
    if action == "claim":
        return await engine.claim_stage(order_id, stage, actor)
    if action == "complete":
        return await engine.complete_stage(order_id, stage, actor, 15)
    if action == "flag_exception":
        return await engine.flag_exception(order_id, stage, actor, "Missing components")
    if action == "approve_skip":
        return await engine.approve_skip(order_id, stage, actor)
    return await engine.request_rework(order_id, stage, actor)


def assert_invariants(order: Order) -> None:
    assert order.current_stage() == expected_current(order)
    assert order.overall_state() == expected_overall(order)
    assert sorted((s.stage for s in order.statuses), key=ordinal) == list(PIPELINE)
    for status in order.statuses:
        stamps = [
            ts for ts in (status.claimed_at, status.started_at, status.completed_at)
            if ts is not None
        ]
        assert stamps == sorted(stamps)
        if status.state == StageState.PENDING:
            assert status.assignee is None
            assert status.completed_at is None
        if status.state in (StageState.CLAIMED, StageState.EXCEPTION):
            assert status.assignee is not None
            assert status.claimed_at is not None


# =============================================================================
# Property Tests
# =============================================================================


class TestDerivedStateInvariants:
    """Derived state always agrees with the stage statuses."""

    @given(steps=operations)
    @settings(max_examples=100, deadline=None)
    def test_random_sequences_preserve_invariants(self, steps: List[Tuple[str, StageKind, str]]):
        repository = InMemoryOrderRepository()
        engine = WorkflowEngine(repository, checklists={})

        async def scenario():
            order = await engine.create_order("PO-PROP", 2)
            assert_invariants(order)

            for action, stage, actor in steps:
                before = await repository.find_by_id(order.id)
                try:
                    after = await apply_operation(engine, order.id, action, stage, actor)
                except InvalidTransitionError as e:
                    stored = await repository.find_by_id(order.id)
                    assert stored == before
                    assert e.current_state == before.stage_status(stage).state
                    continue

                assert after.version == before.version + 1
                assert after == await repository.find_by_id(order.id)
                assert_invariants(after)

                if action == "claim":
                    earlier = PIPELINE[: ordinal(stage)]
                    assert all(
                        before.stage_status(s).state in (StageState.COMPLETED, StageState.SKIPPED)
                        for s in earlier
                    )

        run_async(scenario())


class TestTransitionTable:
    """Each action succeeds exactly from its documented source state."""

    SOURCE_STATES = {
        "claim": StageState.PENDING,
        "complete": StageState.CLAIMED,
        "flag_exception": StageState.CLAIMED,
        "approve_skip": StageState.EXCEPTION,
        "request_rework": StageState.COMPLETED,
    }

    @given(steps=operations, final=operation())
    @settings(max_examples=100, deadline=None)
    def test_success_implies_source_state(self, steps, final):
        repository = InMemoryOrderRepository()
        engine = WorkflowEngine(repository, enforce_assignee=False, checklists={})

        async def scenario():
            order = await engine.create_order("PO-TABLE", 1)
            for action, stage, actor in steps:
                try:
                    await apply_operation(engine, order.id, action, stage, actor)
                except InvalidTransitionError:
                    pass

            action, stage, actor = final
            before = await repository.find_by_id(order.id)
            try:
                await apply_operation(engine, order.id, action, stage, actor)
            except InvalidTransitionError:
                return
            assert before.stage_status(stage).state == self.SOURCE_STATES[action]

        run_async(scenario())


class TestValidationBeforeMutation:
    """Malformed input is rejected without touching storage."""

    @given(minutes=st.integers(max_value=-1))
    @settings(max_examples=50, deadline=None)
    def test_negative_service_time_never_persists(self, minutes: int):
        repository = InMemoryOrderRepository()
        engine = WorkflowEngine(repository, checklists={})

        async def scenario():
            order = await engine.create_order("PO-NEG", 1)
            order = await engine.claim_stage(order.id, StageKind.PREPARATION, "op1")
            try:
                await engine.complete_stage(order.id, StageKind.PREPARATION, "op1", minutes)
            except ValidationError:
                pass
            else:
                raise AssertionError("negative service time accepted")
            assert await repository.find_by_id(order.id) == order

        run_async(scenario())
