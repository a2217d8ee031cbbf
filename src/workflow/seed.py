"""Demonstration data for an empty order store.

The seed replays a fixed sequence of public engine operations, so the
resulting orders obey every workflow rule:

- PO-1001: preparation and assembly completed, then assembly sent back
  for rework after a quality issue.
- PO-1002: assembly flagged for missing components, skip approved.
- PO-1003: every stage completed.

Required checklist items are ticked by the operator before each completion.
"""

from typing import List

import structlog

from src.workflow.state.machine import WorkflowEngine
from src.workflow.state.models import Order
from src.workflow.state.policy import StageKind


logger = structlog.get_logger()


async def _finish(
    engine: WorkflowEngine,
    order_id: int,
    stage: StageKind,
    operator: str,
    service_time_minutes: int,
    notes: str,
) -> Order:
    """Tick the stage's required checklist items, then complete it."""
    order = await engine.get_order(order_id)
    for item in order.stage_status(stage).open_required_items():
        await engine.update_checklist_item(order_id, stage, operator, item.id, True)
    return await engine.complete_stage(order_id, stage, operator, service_time_minutes, notes)


async def seed_demo_orders(engine: WorkflowEngine) -> List[Order]:
    """Create the demonstration orders if no orders exist yet.

    Returns:
        The seeded orders in their final state, or an empty list when the
        store already held orders.
    """
    if await engine.list_orders():
        logger.info("Orders already present, skipping demo seed")
        return []

    prep, assembly, delivery = StageKind.PREPARATION, StageKind.ASSEMBLY, StageKind.DELIVERY

    first = await engine.create_order("PO-1001", 3, "Client A first batch")
    await engine.claim_stage(first.id, prep, "operator1")
    await _finish(engine, first.id, prep, "operator1", 30, "Prep done")
    await engine.claim_stage(first.id, assembly, "operator2")
    await _finish(engine, first.id, assembly, "operator2", 55, "Assembly initial pass")

    urgent = await engine.create_order("PO-1002", 1, "Urgent order")
    await engine.claim_stage(urgent.id, prep, "operator1")
    await _finish(engine, urgent.id, prep, "operator1", 20, "Fast prep")
    await engine.claim_stage(urgent.id, assembly, "operator2")
    await engine.flag_exception(
        urgent.id, assembly, "operator2", "Missing components", "Waiting on supplier"
    )

    standard = await engine.create_order("PO-1003", 2, "Standard run")
    await engine.claim_stage(standard.id, prep, "operator3")
    await _finish(engine, standard.id, prep, "operator3", 40, "Long prep")
    await engine.claim_stage(standard.id, assembly, "operator4")
    await _finish(engine, standard.id, assembly, "operator4", 50, "Assembly done")
    await engine.claim_stage(standard.id, delivery, "operator5")
    await _finish(engine, standard.id, delivery, "operator5", 15, "Delivered")

    await engine.approve_skip(
        urgent.id, assembly, "supervisor1", "Approve skip due to parts shortage"
    )
    await engine.request_rework(first.id, assembly, "supervisor1", "Quality issue found")

    seeded = [await engine.get_order(order.id) for order in (first, urgent, standard)]
    logger.info("Seeded demo orders", count=len(seeded))
    return seeded
