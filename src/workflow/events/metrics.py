"""Prometheus metrics for workflow observability.

Metrics Defined:
- workflow_orders_created_total: Counter of orders entering the pipeline
- workflow_stage_transitions_total: Counter of applied stage transitions
- workflow_transition_rejections_total: Counter of rejected transitions
- workflow_stage_service_time_minutes: Histogram of reported service time

The MetricsEventEmitter updates these from workflow events, and the
`/metrics` endpoint renders them with generate_metrics_output().
"""

from typing import Optional

import structlog
from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from src.workflow.events.emitter import EventEmitter
from src.workflow.events.models import EventType, WorkflowEvent


logger = structlog.get_logger()


# Service time buckets in minutes, from a few minutes to a full shift
DEFAULT_SERVICE_TIME_BUCKETS = (5.0, 10.0, 15.0, 30.0, 45.0, 60.0, 120.0, 240.0, 480.0)


class WorkflowMetrics:
    """Container for all workflow Prometheus metrics.

    Pass a custom registry in tests so repeated construction does not
    collide with the process-wide default.

    Example:
        >>> metrics = WorkflowMetrics(registry=CollectorRegistry())
        >>> metrics.record_transition("ASSEMBLY", "claim", "CLAIMED")
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.orders_created_total = Counter(
            "workflow_orders_created_total",
            "Total number of orders created",
            registry=self.registry,
        )

        self.stage_transitions_total = Counter(
            "workflow_stage_transitions_total",
            "Total number of applied stage transitions",
            labelnames=["stage", "action", "to_state"],
            registry=self.registry,
        )

        self.transition_rejections_total = Counter(
            "workflow_transition_rejections_total",
            "Total number of stage transitions rejected by a failed precondition",
            labelnames=["stage", "action"],
            registry=self.registry,
        )

        self.stage_service_time_minutes = Histogram(
            "workflow_stage_service_time_minutes",
            "Service time reported when a stage is completed",
            labelnames=["stage"],
            buckets=DEFAULT_SERVICE_TIME_BUCKETS,
            registry=self.registry,
        )

    def record_order_created(self) -> None:
        self.orders_created_total.inc()

    def record_transition(self, stage: str, action: str, to_state: str) -> None:
        self.stage_transitions_total.labels(
            stage=stage,
            action=action,
            to_state=to_state,
        ).inc()

    def record_rejection(self, stage: str, action: str) -> None:
        self.transition_rejections_total.labels(stage=stage, action=action).inc()

    def record_service_time(self, stage: str, minutes: float) -> None:
        self.stage_service_time_minutes.labels(stage=stage).observe(minutes)


_default_metrics: Optional[WorkflowMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> WorkflowMetrics:
    """Get the process-wide metrics, or a fresh instance for ``registry``."""
    global _default_metrics

    if registry is not None:
        return WorkflowMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = WorkflowMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text format output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - ORDER_CREATED: Increments orders_created_total
    - STAGE_TRANSITION: Increments stage_transitions_total and, for
      completions, observes the service time
    - TRANSITION_REJECTED: Increments transition_rejections_total
    """

    def __init__(
        self,
        metrics: Optional[WorkflowMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        if metrics is not None:
            self._metrics = metrics
        else:
            self._metrics = get_metrics(registry)

    @property
    def metrics(self) -> WorkflowMetrics:
        return self._metrics

    async def emit(self, event: WorkflowEvent) -> None:
        try:
            if event.event_type == EventType.ORDER_CREATED:
                self._metrics.record_order_created()
            elif event.event_type == EventType.STAGE_TRANSITION:
                self._handle_transition(event)
            elif event.event_type == EventType.TRANSITION_REJECTED:
                self._metrics.record_rejection(
                    stage=event.details.get("stage", "unknown"),
                    action=event.details.get("action", "unknown"),
                )
        except Exception as e:
            logger.error(
                "Failed to update metrics for event",
                event_type=event.event_type.value,
                order_id=event.order_id,
                error=str(e),
            )

    def _handle_transition(self, event: WorkflowEvent) -> None:
        stage = event.details.get("stage", "unknown")
        self._metrics.record_transition(
            stage=stage,
            action=event.details.get("action", "unknown"),
            to_state=event.details.get("to_state", "unknown"),
        )
        minutes = event.details.get("service_time_minutes")
        if minutes is not None:
            self._metrics.record_service_time(stage, float(minutes))
