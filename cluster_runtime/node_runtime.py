"""Node runtime interface and typed node handles."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

from cluster_runtime.config import NodeRole, NodeSpec


class NodeRuntime(ABC):
    """
    Starts, stops and inspects single cluster node processes.

    start() returning says nothing about readiness; callers poll
    is_ready() separately. References returned by start() are opaque
    to everything except the runtime that produced them.
    """

    @abstractmethod
    def start(self, spec: NodeSpec, network: Optional[str] = None) -> object:
        """Launch the node described by spec; raise StartupError on failure."""

    @abstractmethod
    def stop(self, ref: object) -> None:
        """Stop the node; stopping an already stopped node is a no-op."""

    @abstractmethod
    def is_ready(self, ref: object) -> bool:
        """Cheap, non-blocking readiness probe."""

    @abstractmethod
    def is_running(self, ref: object) -> bool:
        """Return whether the node process is alive."""

    @abstractmethod
    def network_address(self, ref: object) -> Tuple[str, int]:
        """Return the client-facing (host, port) of the node."""

    def remove(self, ref: object) -> None:
        """Release what a stopped node still holds; its logs are gone afterwards."""

    def logs(self, ref: object) -> str:
        """Return the node's console output collected so far."""
        return ""

    def create_network(self, name: str) -> None:
        """Create a network the nodes attach to."""

    def remove_network(self, name: str) -> None:
        """Remove a network created by create_network()."""


class NodeHandle:
    """
    Handle to one started node, owned by its cluster.

    Stopping goes through the owning cluster so the node set is updated
    under the cluster lock. A stopped handle is never restarted.
    """

    def __init__(
        self,
        spec: NodeSpec,
        runtime: NodeRuntime,
        ref: object,
        on_stop: Callable[["NodeHandle"], None],
    ) -> None:
        self._spec = spec
        self._runtime = runtime
        self._ref = ref
        self._on_stop = on_stop
        self._stopped = False

    @property
    def node_id(self) -> int:
        return self._spec.node_id

    @property
    def role(self) -> NodeRole:
        return self._spec.role

    @property
    def spec(self) -> NodeSpec:
        return self._spec

    @property
    def ref(self) -> object:
        return self._ref

    @property
    def stopped(self) -> bool:
        return self._stopped

    def is_running(self) -> bool:
        """Return whether the node is alive and has not been stopped by the cluster."""
        return not self._stopped and self._runtime.is_running(self._ref)

    def is_ready(self) -> bool:
        """Return whether the node is running and answers its readiness probe."""
        return self.is_running() and self._runtime.is_ready(self._ref)

    def address(self) -> Tuple[str, int]:
        """Return the client-facing (host, port) of the node."""
        return self._runtime.network_address(self._ref)

    def stop(self) -> None:
        """Stop this node; the cluster stays up with the remaining nodes."""
        self._on_stop(self)

    def mark_stopped(self) -> None:
        """Record that teardown has stopped this node."""
        self._stopped = True

    def __repr__(self) -> str:
        state = "stopped" if self._stopped else "started"
        return f"NodeHandle(node_id={self.node_id}, role={self.role.value}, {state})"
