"""In-process node runtime used by tests and dry runs."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from cluster_runtime.config import NodeSpec
from cluster_runtime.errors import StartupError
from cluster_runtime.node_runtime import NodeRuntime


@dataclass
class InMemoryNode:
    """Bookkeeping for one simulated node."""

    spec: NodeSpec
    network: Optional[str]
    address: Tuple[str, int]
    started_at: float
    running: bool = True
    stalled: bool = False
    output: List[str] = field(default_factory=list)


class InMemoryNodeRuntime(NodeRuntime):
    """
    Simulates node processes without launching anything.

    Knobs:
    - start_delay: seconds each start() blocks, to model container launch
    - ready_delay: seconds after start before is_ready() turns true
    - fail_start: node ids whose start() raises StartupError
    - never_ready: node ids that start but never report ready
    - fail_stop: node ids whose stop() raises
    """

    def __init__(
        self,
        start_delay: float = 0.0,
        ready_delay: float = 0.0,
        fail_start: Iterable[int] = (),
        never_ready: Iterable[int] = (),
        fail_stop: Iterable[int] = (),
        host: str = "127.0.0.1",
        base_port: int = 19092,
    ) -> None:
        self._start_delay = start_delay
        self._ready_delay = ready_delay
        self._fail_start = set(fail_start)
        self._never_ready = set(never_ready)
        self._fail_stop = set(fail_stop)
        self._host = host
        self._base_port = base_port
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0
        self.events: List[Tuple[str, object]] = []
        self.networks: Dict[str, bool] = {}

    def start(self, spec: NodeSpec, network: Optional[str] = None) -> InMemoryNode:
        with self._lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self._start_delay:
                time.sleep(self._start_delay)
            if spec.node_id in self._fail_start:
                raise StartupError(spec.node_id, "simulated launch failure")
            node = InMemoryNode(
                spec=spec,
                network=network,
                address=(self._host, self._base_port + spec.node_id),
                started_at=time.monotonic(),
            )
            node.output.append(f"[node {spec.node_id}] starting as {spec.role.process_roles}")
            node.output.append(f"[node {spec.node_id}] quorum voters {spec.quorum_voters}")
            self._record("start", spec.node_id)
            return node
        finally:
            with self._lock:
                self._in_flight -= 1

    def stop(self, ref: InMemoryNode) -> None:
        if not ref.running:
            return
        if ref.spec.node_id in self._fail_stop:
            raise RuntimeError(f"simulated stop failure for node {ref.spec.node_id}")
        ref.running = False
        ref.output.append(f"[node {ref.spec.node_id}] shut down")
        self._record("stop", ref.spec.node_id)

    def remove(self, ref: InMemoryNode) -> None:
        self._record("remove", ref.spec.node_id)

    def is_ready(self, ref: InMemoryNode) -> bool:
        if not ref.running or ref.stalled or ref.spec.node_id in self._never_ready:
            return False
        return time.monotonic() - ref.started_at >= self._ready_delay

    def is_running(self, ref: InMemoryNode) -> bool:
        return ref.running

    def network_address(self, ref: InMemoryNode) -> Tuple[str, int]:
        return ref.address

    def logs(self, ref: InMemoryNode) -> str:
        return "".join(f"{line}\n" for line in ref.output)

    def create_network(self, name: str) -> None:
        with self._lock:
            self.networks[name] = True
        self._record("create_network", name)

    def remove_network(self, name: str) -> None:
        with self._lock:
            self.networks[name] = False
        self._record("remove_network", name)

    def crash(self, ref: InMemoryNode) -> None:
        """Kill a node behind the cluster's back."""
        ref.running = False
        ref.output.append(f"[node {ref.spec.node_id}] crashed")

    def stall(self, ref: InMemoryNode) -> None:
        """Keep a node running but stop it answering readiness probes."""
        ref.stalled = True

    def started_ids(self) -> List[int]:
        return [value for event, value in self.events if event == "start"]

    def stopped_ids(self) -> List[int]:
        return [value for event, value in self.events if event == "stop"]

    def _record(self, event: str, value: object) -> None:
        with self._lock:
            self.events.append((event, value))
