"""Unit tests for the Order aggregate and its derived state."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.workflow.state.errors import NotFoundError
from src.workflow.state.models import ChecklistItem, Order, StageStatus
from src.workflow.state.policy import DEFAULT_CHECKLISTS, StageKind, StageState


T0 = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)


def make_order(prep: StageState, assembly: StageState, delivery: StageState) -> Order:
    order = Order.new("PO-1", 3, now=T0)
    for stage, state in zip(
        (StageKind.PREPARATION, StageKind.ASSEMBLY, StageKind.DELIVERY),
        (prep, assembly, delivery),
    ):
        order.stage_status(stage).state = state
    return order


class TestOrderNew:
    def test_new_order_has_one_pending_status_per_stage(self):
        order = Order.new("PO-1001", 3, "Client A", now=T0)

        assert order.id is None
        assert order.version == 1
        assert order.created_at == T0
        assert order.updated_at == T0
        assert [s.stage for s in order.stages()] == list(StageKind)
        assert all(s.state == StageState.PENDING for s in order.statuses)
        assert all(s.updated_at == T0 for s in order.statuses)

    def test_priority_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            Order.new("PO-1", 0)

    def test_order_number_required(self):
        with pytest.raises(PydanticValidationError):
            Order.new("", 1)

    def test_duplicate_stage_kind_rejected(self):
        with pytest.raises(PydanticValidationError):
            Order(
                order_number="PO-1",
                priority=1,
                statuses=[
                    StageStatus(stage=StageKind.PREPARATION),
                    StageStatus(stage=StageKind.PREPARATION),
                ],
            )


class TestStageStatus:
    def test_timestamps_must_be_ordered(self):
        with pytest.raises(PydanticValidationError):
            StageStatus(
                stage=StageKind.ASSEMBLY,
                state=StageState.COMPLETED,
                claimed_at=T0,
                started_at=T0,
                completed_at=T0 - timedelta(minutes=1),
            )

    def test_equal_timestamps_allowed(self):
        status = StageStatus(
            stage=StageKind.ASSEMBLY,
            state=StageState.COMPLETED,
            claimed_at=T0,
            started_at=T0,
            completed_at=T0,
        )
        assert status.is_terminal

    def test_negative_service_time_rejected(self):
        with pytest.raises(PydanticValidationError):
            StageStatus(stage=StageKind.DELIVERY, service_time_minutes=-5)

    def test_stage_status_missing(self):
        order = Order(order_number="PO-1", priority=1, statuses=[])
        with pytest.raises(NotFoundError) as exc_info:
            order.stage_status(StageKind.DELIVERY)
        assert exc_info.value.entity == "stage"

    def test_latest_timestamp_covers_every_stamp(self):
        status = StageStatus(
            stage=StageKind.PREPARATION,
            claimed_at=T0 + timedelta(minutes=5),
            started_at=T0 + timedelta(minutes=5),
            completed_at=T0 + timedelta(minutes=9),
            updated_at=T0,
        )
        assert status.latest_timestamp == T0 + timedelta(minutes=9)
        assert StageStatus(stage=StageKind.DELIVERY, updated_at=T0).latest_timestamp == T0


class TestChecklist:
    def test_new_order_seeds_default_checklists(self):
        order = Order.new("PO-1", 3, now=T0)

        for status in order.stages():
            templates = DEFAULT_CHECKLISTS[status.stage]
            assert [(i.id, i.label, i.required) for i in status.checklist] == list(templates)
            assert not any(item.completed for item in status.checklist)

    def test_new_order_with_custom_checklists(self):
        order = Order.new(
            "PO-1", 3, now=T0, checklists={StageKind.DELIVERY: [("sign", "Signature", True)]}
        )

        assert order.stage_status(StageKind.PREPARATION).checklist == []
        assert order.stage_status(StageKind.DELIVERY).checklist == [
            ChecklistItem(id="sign", label="Signature", required=True)
        ]
        assert Order.new("PO-2", 3, now=T0, checklists={}).stages()[0].checklist == []

    def test_orders_do_not_share_items(self):
        first = Order.new("PO-1", 3, now=T0)
        second = Order.new("PO-2", 3, now=T0)
        first.stage_status(StageKind.PREPARATION).checklist[0].completed = True
        assert second.stage_status(StageKind.PREPARATION).checklist[0].completed is False

    def test_open_required_items(self):
        status = Order.new("PO-1", 3, now=T0).stage_status(StageKind.ASSEMBLY)
        status.checklist_item("components-fitted").completed = True

        assert [item.id for item in status.open_required_items()] == ["quality-check"]

    def test_unknown_item(self):
        status = Order.new("PO-1", 3, now=T0).stage_status(StageKind.ASSEMBLY)
        with pytest.raises(NotFoundError) as exc_info:
            status.checklist_item("paint")
        assert exc_info.value.entity == "checklist_item"
        assert exc_info.value.key == "ASSEMBLY/paint"


class TestStagesOrdering:
    def test_stages_sorted_by_pipeline_position(self):
        order = Order(
            order_number="PO-1",
            priority=1,
            statuses=[
                StageStatus(stage=StageKind.DELIVERY),
                StageStatus(stage=StageKind.PREPARATION),
                StageStatus(stage=StageKind.ASSEMBLY),
            ],
        )
        assert [s.stage for s in order.stages()] == [
            StageKind.PREPARATION,
            StageKind.ASSEMBLY,
            StageKind.DELIVERY,
        ]


P, C, D, E, S = (
    StageState.PENDING,
    StageState.CLAIMED,
    StageState.COMPLETED,
    StageState.EXCEPTION,
    StageState.SKIPPED,
)


class TestDerivedState:
    @pytest.mark.parametrize(
        "states,current,overall",
        [
            ((P, P, P), StageKind.PREPARATION, P),
            ((C, P, P), StageKind.PREPARATION, C),
            ((D, P, P), StageKind.ASSEMBLY, P),
            ((D, C, P), StageKind.ASSEMBLY, C),
            ((D, E, P), StageKind.ASSEMBLY, E),
            ((D, S, P), StageKind.DELIVERY, P),
            ((S, S, S), StageKind.DELIVERY, D),
            ((D, D, D), StageKind.DELIVERY, D),
            ((D, S, D), StageKind.DELIVERY, D),
            # Rework of an earlier stage after later ones finished.
            ((P, D, D), StageKind.PREPARATION, P),
            ((D, D, E), StageKind.DELIVERY, E),
        ],
    )
    def test_current_and_overall(self, states, current, overall):
        order = make_order(*states)
        assert order.current_stage() == current
        assert order.overall_state() == overall

    def test_exception_dominates_even_past_current_stage(self):
        order = make_order(P, D, E)
        assert order.current_stage() == StageKind.PREPARATION
        assert order.overall_state() == StageState.EXCEPTION


class TestSortKey:
    def test_priority_then_creation_then_id(self):
        early = Order.new("PO-A", 2, now=T0)
        early.id = 5
        late = Order.new("PO-B", 2, now=T0 + timedelta(minutes=1))
        late.id = 1
        urgent = Order.new("PO-C", 1, now=T0 + timedelta(hours=1))
        urgent.id = 9
        same_time = Order.new("PO-D", 2, now=T0)
        same_time.id = 7

        ordered = sorted([late, same_time, urgent, early], key=Order.sort_key)
        assert [o.order_number for o in ordered] == ["PO-C", "PO-A", "PO-D", "PO-B"]
