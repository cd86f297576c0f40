"""Health reporting and status types."""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List


class ClusterState(str, Enum):
    """Lifecycle state of a cluster handle."""

    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    PARTIALLY_DEGRADED = "partially_degraded"
    STOPPED = "stopped"


class HealthStatus(str, Enum):
    """Health state for nodes and the cluster."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class HealthEvent:
    """Health event emitted by the cluster for itself or one of its nodes."""

    component: str
    status: HealthStatus
    details: Dict[str, object] = field(default_factory=dict)


class HealthReporter:
    """
    Aggregates component health for the cluster.

    Follows Observer pattern: the cluster emits events, reporter aggregates.
    """

    def __init__(self) -> None:
        """Initialize reporter with empty state."""
        self._lock = threading.Lock()
        self._latest: Dict[str, HealthEvent] = {}
        self._history: List[HealthEvent] = []

    def emit(self, event: HealthEvent) -> None:
        """Record a new health event."""
        with self._lock:
            self._latest[event.component] = event
            self._history.append(event)

    def history(self) -> List[HealthEvent]:
        with self._lock:
            return list(self._history)

    def snapshot(self) -> Dict[str, object]:
        """Return latest status per component."""
        with self._lock:
            components = {
                name: {"status": event.status.value, "details": dict(event.details)}
                for name, event in self._latest.items()
            }
            return {"components": components, "event_count": len(self._history)}
