"""In-memory delivery metrics for the realtime layer.

This module provides the DeliveryMetrics collector that counts published
events and per-connection delivery outcomes. The counters are exposed by the
health endpoint so a silent push layer still leaves a trace of its failures.

Usage:
    >>> from metrics import DeliveryMetrics
    >>> collector = DeliveryMetrics()
    >>> collector.record_publish("task-created", delivered=3, failed=1)
    >>> collector.snapshot().failed
    1
"""

import threading
import time
from collections import Counter
from dataclasses import dataclass, field

import structlog

from models.schemas import DeliveryStats

logger = structlog.get_logger(__name__)


@dataclass
class DeliveryCounters:
    """Accumulated counters since the collector was created.

    Attributes:
        published: Number of publish calls.
        delivered: Number of successful per-connection deliveries.
        failed: Number of per-connection delivery failures.
        by_type: Publish count per event type.
        started_at: Unix timestamp when counting began.
    """

    published: int = 0
    delivered: int = 0
    failed: int = 0
    by_type: Counter[str] = field(default_factory=Counter)
    started_at: float = field(default_factory=time.time)


class DeliveryMetrics:
    """Thread-safe collector of realtime delivery counters."""

    def __init__(self) -> None:
        self._counters = DeliveryCounters()
        self._lock = threading.Lock()
        logger.info("delivery_metrics_initialized")

    def record_publish(self, event_type: str, delivered: int, failed: int) -> None:
        """Record the outcome of one publish call.

        Args:
            event_type: Kind of the published event.
            delivered: Connections the event was handed to.
            failed: Connections the event could not be handed to.
        """
        with self._lock:
            self._counters.published += 1
            self._counters.delivered += delivered
            self._counters.failed += failed
            self._counters.by_type[event_type] += 1

        if failed:
            logger.debug(
                "delivery_failures_recorded",
                event_type=event_type,
                failed=failed,
            )

    def snapshot(self) -> DeliveryStats:
        """Return the current counters as an API model."""
        with self._lock:
            return DeliveryStats(
                published=self._counters.published,
                delivered=self._counters.delivered,
                failed=self._counters.failed,
                by_type=dict(self._counters.by_type),
            )
