"""Read-only work queue and WIP projections over orders."""

from src.workflow.queue.projector import (
    StageSummary,
    WipSummary,
    WorkQueue,
    WorkQueueFilter,
    WorkQueueItem,
    queue,
    summarize_wip,
)

__all__ = [
    "StageSummary",
    "WipSummary",
    "WorkQueue",
    "WorkQueueFilter",
    "WorkQueueItem",
    "queue",
    "summarize_wip",
]
