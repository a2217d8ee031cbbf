"""Unit tests for demonstration data seeding."""

import asyncio

from src.workflow.seed import seed_demo_orders
from src.workflow.state.policy import StageKind, StageState


def run_async(coro):
    return asyncio.run(coro)


class TestSeedDemoOrders:
    def test_seeded_orders_final_states(self, engine):
        seeded = {o.order_number: o for o in run_async(seed_demo_orders(engine))}

        assert set(seeded) == {"PO-1001", "PO-1002", "PO-1003"}

        reworked = seeded["PO-1001"]
        assert reworked.stage_status(StageKind.PREPARATION).state == StageState.COMPLETED
        assert reworked.stage_status(StageKind.ASSEMBLY).state == StageState.PENDING
        assert reworked.stage_status(StageKind.ASSEMBLY).supervisor_notes == "Quality issue found"
        assert reworked.current_stage() == StageKind.ASSEMBLY
        assert reworked.overall_state() == StageState.PENDING
        assert not any(
            item.completed for item in reworked.stage_status(StageKind.ASSEMBLY).checklist
        )

        skipped = seeded["PO-1002"]
        assert skipped.priority == 1
        assert skipped.stage_status(StageKind.ASSEMBLY).state == StageState.SKIPPED
        assert skipped.stage_status(StageKind.ASSEMBLY).exception_reason == "Missing components"
        assert skipped.current_stage() == StageKind.DELIVERY
        assert skipped.overall_state() == StageState.PENDING

        done = seeded["PO-1003"]
        assert done.overall_state() == StageState.COMPLETED
        assert all(s.service_time_minutes for s in done.stages())
        assert all(not s.open_required_items() for s in done.stages())

    def test_seed_skipped_when_orders_exist(self, engine):
        async def scenario():
            await engine.create_order("PO-EXISTING", 2)
            assert await seed_demo_orders(engine) == []
            return await engine.list_orders()

        orders = run_async(scenario())
        assert [o.order_number for o in orders] == ["PO-EXISTING"]

    def test_seed_is_idempotent(self, engine):
        run_async(seed_demo_orders(engine))
        assert run_async(seed_demo_orders(engine)) == []
        assert len(run_async(engine.list_orders())) == 3
