"""Pytest configuration for all tests."""

from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import CollectorRegistry

from src.workflow.events.metrics import MetricsEventEmitter, WorkflowMetrics
from src.workflow.state.machine import WorkflowEngine
from src.workflow.state.memory import InMemoryOrderRepository


class TickingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def metrics() -> WorkflowMetrics:
    return WorkflowMetrics(registry=CollectorRegistry())


@pytest.fixture
def engine(repository, clock, metrics) -> WorkflowEngine:
    return WorkflowEngine(
        repository,
        MetricsEventEmitter(metrics=metrics),
        clock=clock,
    )
