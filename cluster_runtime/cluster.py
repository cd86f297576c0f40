"""Cluster lifecycle manager: start, observe and tear down a topology."""

from __future__ import annotations

import atexit
import logging
import threading
import time
import uuid
import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from cluster_runtime.bootstrap import BootstrapCoordinator, wait_until
from cluster_runtime.config import NodeSpec, Topology
from cluster_runtime.errors import (
    BootstrapCancelledError,
    BootstrapTimeoutError,
    ClusterStartError,
    ClusterStateError,
    TeardownWarning,
)
from cluster_runtime.health import ClusterState, HealthEvent, HealthReporter, HealthStatus
from cluster_runtime.log_collector import LogCollector
from cluster_runtime.network import SHARED_NETWORK_NAME, NetworkRegistry, default_registry
from cluster_runtime.node_runtime import NodeHandle, NodeRuntime
from cluster_runtime.probes import kafka_broker_count
from cluster_runtime.teardown import TeardownCoordinator

logger = logging.getLogger(__name__)


class KafkaCluster:
    """
    Owns the running nodes of one topology.

    Responsibilities:
    - Start nodes tier by tier (controllers first with dedicated roles),
      concurrently within a tier, gated on readiness
    - Roll back every started node when startup fails
    - Expose live views (bootstrap servers, brokers, controllers)
    - Stop single nodes for failure injection and the whole cluster on stop()

    The node map and state are guarded by one lock; readiness polling
    runs outside it so accessors stay responsive while nodes boot.
    A stopped cluster is terminal.
    """

    def __init__(
        self,
        topology: Topology,
        runtime: NodeRuntime,
        startup_timeout: float = 120.0,
        poll_interval: float = 1.0,
        max_concurrency: int = 8,
        network_registry: Optional[NetworkRegistry] = None,
        health: Optional[HealthReporter] = None,
        metadata_probe: Optional[Callable[[str], int]] = None,
    ) -> None:
        """Initialize the cluster in state CREATED; nothing is launched yet."""
        self._topology = topology
        self._runtime = runtime
        self._startup_timeout = startup_timeout
        self._poll_interval = poll_interval
        self._max_concurrency = max(1, max_concurrency)
        self._networks = network_registry or default_registry
        self._health = health or HealthReporter()
        self._metadata_probe = metadata_probe or kafka_broker_count

        self._lock = threading.RLock()
        self._lifecycle_lock = threading.Lock()
        self._cancel = threading.Event()
        self._nodes: Dict[int, NodeHandle] = {}
        self._state = ClusterState.CREATED
        self._network: Optional[str] = None
        self._teardown_failures: Dict[str, BaseException] = {}
        self._private_network = f"kafka-cluster-{uuid.uuid4().hex[:8]}"

        collector = None
        if topology.log_collection_path:
            collector = LogCollector(topology.log_collection_path)
        self._teardown = TeardownCoordinator(runtime, collector, self._max_concurrency)
        self._bootstrap = BootstrapCoordinator(startup_timeout, poll_interval, self._cancel)

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def state(self) -> ClusterState:
        """Current lifecycle state; a node that exited on its own degrades a running cluster."""
        with self._lock:
            self._detect_lost_nodes()
            return self._state

    @property
    def network(self) -> Optional[str]:
        return self._network

    @property
    def teardown_failures(self) -> Dict[str, BaseException]:
        """Every teardown failure reported so far, keyed like TeardownWarning."""
        with self._lock:
            return dict(self._teardown_failures)

    def start(self) -> None:
        """Start every node and block until the cluster is ready."""
        with self._lifecycle_lock:
            with self._lock:
                if self._state is not ClusterState.CREATED:
                    raise ClusterStateError(f"Cannot start a cluster in state {self._state.value}")
                self._state = ClusterState.STARTING

            logger.info(
                "cluster %s starting (%d nodes, dedicated_roles=%s)",
                self._topology.cluster_id,
                len(self._topology.node_specs),
                self._topology.dedicated_roles,
            )
            atexit.register(self._stop_at_exit)
            deadline = time.monotonic() + self._startup_timeout

            try:
                self._network = self._networks.acquire(self._network_name(), self._runtime.create_network)
                for tier in self._topology.startup_tiers():
                    handles = self._start_tier(tier)
                    quorum = self._topology.dedicated_roles and all(h.role.is_controller for h in handles)
                    self._bootstrap.await_ready(handles, quorum=quorum, deadline=deadline)
                    for handle in handles:
                        self._health.emit(HealthEvent(f"node-{handle.node_id}", HealthStatus.HEALTHY))
                        logger.info("node %s ready", handle.node_id)
            except BootstrapCancelledError as exc:
                self._rollback()
                raise ClusterStartError({}, "cluster start cancelled") from exc
            except BootstrapTimeoutError as exc:
                self._rollback()
                raise ClusterStartError(
                    {node_id: exc for node_id in exc.pending}, "cluster did not become ready"
                ) from exc
            except ClusterStartError:
                self._rollback()
                raise
            except Exception as exc:
                self._rollback()
                raise ClusterStartError({}, f"cluster failed to start: {exc}") from exc

            with self._lock:
                self._state = ClusterState.RUNNING
            self._health.emit(HealthEvent("cluster", HealthStatus.HEALTHY, {"state": ClusterState.RUNNING.value}))
            logger.info("cluster %s running, bootstrap servers %s", self._topology.cluster_id, self.bootstrap_servers())

    def stop(self) -> None:
        """Tear down all nodes and shared resources; safe to call repeatedly."""
        if self.state is ClusterState.STARTING:
            self._cancel.set()

        with self._lifecycle_lock:
            with self._lock:
                if self._state is ClusterState.STOPPED:
                    return
                logger.info("cluster %s stopping", self._topology.cluster_id)
                failures = self._teardown.stop_tiers(self._handle_tiers())
                failures.update(self._release_network())
                self._state = ClusterState.STOPPED

            atexit.unregister(self._stop_at_exit)
            self._health.emit(HealthEvent("cluster", HealthStatus.DEGRADED, {"state": ClusterState.STOPPED.value}))
            logger.info("cluster %s stopped", self._topology.cluster_id)
            self._report(failures)

    def bootstrap_servers(self) -> str:
        """Comma-separated host:port of the currently running brokers."""
        return ",".join(f"{host}:{port}" for host, port in (handle.address() for handle in self.brokers()))

    def brokers(self) -> List[NodeHandle]:
        """Running broker-role nodes ordered by id."""
        return [handle for handle in self._running() if handle.role.is_broker]

    def controllers(self) -> List[NodeHandle]:
        """Running controller-role nodes ordered by id."""
        return [handle for handle in self._running() if handle.role.is_controller]

    def nodes(self) -> List[NodeHandle]:
        """Every node started by this cluster, stopped ones included."""
        with self._lock:
            return [self._nodes[node_id] for node_id in sorted(self._nodes)]

    def node(self, node_id: int) -> NodeHandle:
        """Return the handle of a started node, stopped or not."""
        with self._lock:
            try:
                return self._nodes[node_id]
            except KeyError:
                raise KeyError(f"Unknown node id {node_id}") from None

    def stop_node(self, node_id: int) -> None:
        """Stop one node (failure injection); the cluster keeps running."""
        self.node(node_id).stop()

    def wait_for_quorum(self, timeout: Optional[float] = None, excluded: Iterable[int] = ()) -> None:
        """
        Block until a strict majority of controller voters is ready.

        Stopped voters are excluded automatically. Raises
        BootstrapTimeoutError when the quorum cannot be reached.
        """
        with self._lock:
            if self._state not in (ClusterState.RUNNING, ClusterState.PARTIALLY_DEGRADED):
                raise ClusterStateError(f"Quorum check needs a running cluster, state is {self._state.value}")
            voters = [self._nodes[spec.node_id] for spec in self._topology.controllers()]

        excluded_ids = set(excluded) | {handle.node_id for handle in voters if not handle.is_running()}
        timeout = self._startup_timeout if timeout is None else timeout
        coordinator = BootstrapCoordinator(timeout, self._poll_interval, self._cancel)
        try:
            coordinator.await_ready(voters, excluded=excluded_ids, quorum=True)
        except BootstrapTimeoutError as exc:
            logger.warning("controller quorum unavailable: %s", exc)
            self._health.emit(HealthEvent("quorum", HealthStatus.FAILED, {"error": str(exc), "pending": exc.pending}))
            raise

        status = HealthStatus.DEGRADED if excluded_ids else HealthStatus.HEALTHY
        self._health.emit(HealthEvent("quorum", status, {"excluded": sorted(excluded_ids)}))

    def wait_until_operational(self, timeout: float = 60.0) -> None:
        """Poll cluster metadata until it reports every running broker."""
        expected = len(self.brokers())
        wait_until(
            lambda: self._metadata_probe(self.bootstrap_servers()) == expected,
            timeout=timeout,
            interval=self._poll_interval,
            description=f"{expected} brokers in cluster metadata",
            cancel_event=self._cancel,
        )

    def health_snapshot(self) -> Dict[str, object]:
        """Return state, endpoints and per-node status."""
        with self._lock:
            self._detect_lost_nodes()
            nodes = {
                str(handle.node_id): {
                    "role": handle.role.value,
                    "running": handle.is_running(),
                    "ready": handle.is_ready(),
                }
                for handle in self.nodes()
            }
            return {
                "state": self._state.value,
                "cluster_id": self._topology.cluster_id,
                "bootstrap_servers": self.bootstrap_servers(),
                "nodes": nodes,
                "events": self._health.snapshot(),
            }

    def __enter__(self) -> "KafkaCluster":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"KafkaCluster(cluster_id={self._topology.cluster_id!r}, state={self.state.value})"

    def _start_tier(self, tier: Sequence[NodeSpec]) -> List[NodeHandle]:
        """Launch one tier concurrently; register every node that launched."""
        failures: Dict[int, BaseException] = {}
        handles: List[NodeHandle] = []
        workers = min(len(tier), self._max_concurrency)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="node-start") as pool:
            futures = [(spec, pool.submit(self._runtime.start, spec, self._network)) for spec in tier]
            for spec, future in futures:
                try:
                    ref = future.result()
                except Exception as exc:
                    logger.error("node %s failed to start: %s", spec.node_id, exc)
                    self._health.emit(HealthEvent(f"node-{spec.node_id}", HealthStatus.FAILED, {"error": str(exc)}))
                    failures[spec.node_id] = exc
                    continue
                handles.append(self._register(spec, ref))

        if failures:
            raise ClusterStartError(failures)
        return handles

    def _register(self, spec: NodeSpec, ref: object) -> NodeHandle:
        handle = NodeHandle(spec, self._runtime, ref, self._stop_single)
        with self._lock:
            self._nodes[spec.node_id] = handle
        logger.debug("node %s registered", spec.node_id)
        return handle

    def _stop_single(self, handle: NodeHandle) -> None:
        with self._lock:
            if handle.stopped or self._nodes.get(handle.node_id) is not handle:
                return
            failures = self._teardown.stop_node(handle)
            if self._state is ClusterState.RUNNING:
                self._state = ClusterState.PARTIALLY_DEGRADED

        self._health.emit(HealthEvent(f"node-{handle.node_id}", HealthStatus.DEGRADED, {"stopped": True}))
        self._health.emit(
            HealthEvent("cluster", HealthStatus.DEGRADED, {"state": ClusterState.PARTIALLY_DEGRADED.value})
        )
        self._report(failures)

    def _detect_lost_nodes(self) -> None:
        if self._state is not ClusterState.RUNNING:
            return
        lost = sorted(node_id for node_id, handle in self._nodes.items() if not handle.stopped and not handle.is_running())
        if not lost:
            return

        logger.warning("cluster %s lost nodes %s", self._topology.cluster_id, lost)
        self._state = ClusterState.PARTIALLY_DEGRADED
        for node_id in lost:
            self._health.emit(HealthEvent(f"node-{node_id}", HealthStatus.FAILED, {"running": False}))
        self._health.emit(
            HealthEvent("cluster", HealthStatus.DEGRADED, {"state": ClusterState.PARTIALLY_DEGRADED.value})
        )

    def _rollback(self) -> None:
        with self._lock:
            logger.warning("cluster %s start failed, stopping %d started nodes", self._topology.cluster_id, len(self._nodes))
            failures = self._teardown.stop_tiers(self._handle_tiers())
            failures.update(self._release_network())
            self._state = ClusterState.STOPPED

        atexit.unregister(self._stop_at_exit)
        self._health.emit(HealthEvent("cluster", HealthStatus.FAILED, {"state": ClusterState.STOPPED.value}))
        self._report(failures)

    def _handle_tiers(self) -> List[List[NodeHandle]]:
        with self._lock:
            return [
                [self._nodes[spec.node_id] for spec in tier if spec.node_id in self._nodes]
                for tier in self._topology.startup_tiers()
            ]

    def _running(self) -> List[NodeHandle]:
        return [handle for handle in self.nodes() if handle.is_running()]

    def _network_name(self) -> str:
        return SHARED_NETWORK_NAME if self._topology.shared_network else self._private_network

    def _release_network(self) -> Dict[str, BaseException]:
        if self._network is None:
            return {}

        name, self._network = self._network, None
        try:
            self._networks.release(name, self._runtime.remove_network)
        except Exception as exc:
            logger.warning("network %s could not be removed: %s", name, exc)
            return {f"network {name}": exc}
        return {}

    def _stop_at_exit(self) -> None:
        self.stop()

    def _report(self, failures: Dict[str, BaseException]) -> None:
        if not failures:
            return
        with self._lock:
            self._teardown_failures.update(failures)
        warning = TeardownWarning(failures)
        try:
            warnings.warn(warning, stacklevel=3)
        except TeardownWarning:
            # Warning filters set to "error" must not turn teardown into a failure.
            logger.warning("%s", warning)
