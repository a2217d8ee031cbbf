"""Event emitter implementations for workflow observability.

This module provides the event emission infrastructure for the workflow
engine. It defines an abstract EventEmitter interface and concrete sinks:

- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- NullEventEmitter: Discards events

Sinks observe committed changes only; a failing sink never turns a
successful workflow operation into a failure.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Sequence

import structlog

from src.workflow.events.models import EventType, WorkflowEvent


logger = structlog.get_logger()


class EventSinkType(str, Enum):
    """Types of event sinks supported by the service.

    Attributes:
        LOGGING: Emit events as structured log entries.
        METRICS: Emit events as Prometheus metrics.
    """

    LOGGING = "logging"
    METRICS = "metrics"


class EventEmitter(ABC):
    """Abstract base class for workflow event emitters."""

    @abstractmethod
    async def emit(self, event: WorkflowEvent) -> None:
        """Emit a workflow event.

        Args:
            event: The workflow event to emit.
        """

    async def close(self) -> None:
        """Close the emitter and release resources."""


class LoggingEventEmitter(EventEmitter):
    """Event emitter that writes events as structured log entries.

    Rejected transitions are logged at WARNING, everything else at INFO.
    """

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = (
            structlog.get_logger(logger_name) if logger_name else logger
        )
        self._log_level_map = {
            EventType.ORDER_CREATED: logging.INFO,
            EventType.STAGE_TRANSITION: logging.INFO,
            EventType.PRIORITY_CHANGED: logging.INFO,
            EventType.TRANSITION_REJECTED: logging.WARNING,
        }

    async def emit(self, event: WorkflowEvent) -> None:
        log_level = self._log_level_map.get(event.event_type, logging.INFO)
        self._logger.log(log_level, "Workflow event", **event.to_log_dict())


class CompositeEventEmitter(EventEmitter):
    """Event emitter that delegates to multiple child emitters.

    Each child is called independently; a failure in one is logged and
    does not prevent delivery to the others.

    Example:
        >>> composite = CompositeEventEmitter(
        ...     [LoggingEventEmitter(), MetricsEventEmitter()]
        ... )
        >>> await composite.emit(event)  # Emits to both sinks
    """

    def __init__(self, emitters: Optional[List[EventEmitter]] = None):
        self._emitters: List[EventEmitter] = emitters or []

    async def emit(self, event: WorkflowEvent) -> None:
        for emitter in self._emitters:
            try:
                await emitter.emit(event)
            except Exception as e:
                logger.error(
                    "Failed to emit workflow event",
                    emitter_type=type(emitter).__name__,
                    event_type=event.event_type.value,
                    order_id=event.order_id,
                    error=str(e),
                )

    async def close(self) -> None:
        for emitter in self._emitters:
            try:
                await emitter.close()
            except Exception as e:
                logger.error(
                    "Failed to close emitter",
                    emitter_type=type(emitter).__name__,
                    error=str(e),
                )


class NullEventEmitter(EventEmitter):
    """Event emitter that discards all events."""

    async def emit(self, event: WorkflowEvent) -> None:
        pass


def create_event_emitter(
    sink_types: Optional[Sequence[EventSinkType]] = None,
    logger_name: Optional[str] = None,
) -> EventEmitter:
    """Create an event emitter for the requested sinks.

    Args:
        sink_types: Event sink types to enable. If None or empty, a
                    LoggingEventEmitter is returned.
        logger_name: Optional logger name for the LoggingEventEmitter.

    Returns:
        A single emitter, or a CompositeEventEmitter for several sinks.

    Example:
        >>> emitter = create_event_emitter([EventSinkType.LOGGING])
        >>> isinstance(emitter, LoggingEventEmitter)
        True
    """
    if not sink_types:
        return LoggingEventEmitter(logger_name=logger_name)

    emitters: List[EventEmitter] = []

    for sink_type in sink_types:
        if sink_type == EventSinkType.LOGGING:
            emitters.append(LoggingEventEmitter(logger_name=logger_name))
        elif sink_type == EventSinkType.METRICS:
            # metrics.py imports this module
            from src.workflow.events.metrics import MetricsEventEmitter

            emitters.append(MetricsEventEmitter())
        else:
            logger.warning("Unknown event sink type, skipping", sink_type=str(sink_type))

    if not emitters:
        return LoggingEventEmitter(logger_name=logger_name)

    if len(emitters) == 1:
        return emitters[0]

    return CompositeEventEmitter(emitters)
