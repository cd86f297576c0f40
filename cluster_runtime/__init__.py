"""Kafka cluster runtime package."""

__all__ = [
    "KafkaCluster",
    "TopologyBuilder",
    "Topology",
    "NodeSpec",
    "NodeRole",
    "VoterEndpoint",
    "ConfigRepository",
    "NodeRuntime",
    "NodeHandle",
    "InMemoryNodeRuntime",
    "DockerNodeRuntime",
    "NodeRuntimeFactory",
    "BootstrapCoordinator",
    "TeardownCoordinator",
    "NetworkRegistry",
    "LogCollector",
    "HealthReporter",
    "HealthEvent",
    "HealthStatus",
    "ClusterState",
    "wait_until",
    "ClusterRuntimeError",
    "ConfigurationError",
    "StartupError",
    "ClusterStartError",
    "BootstrapTimeoutError",
    "BootstrapCancelledError",
    "ClusterStateError",
    "TeardownWarning",
]

from cluster_runtime.cluster import KafkaCluster
from cluster_runtime.config import ConfigRepository, NodeRole, NodeSpec, Topology, TopologyBuilder, VoterEndpoint
from cluster_runtime.node_runtime import NodeHandle, NodeRuntime
from cluster_runtime.in_memory import InMemoryNodeRuntime
from cluster_runtime.docker_runtime import DockerNodeRuntime
from cluster_runtime.runtime_factory import NodeRuntimeFactory
from cluster_runtime.bootstrap import BootstrapCoordinator, wait_until
from cluster_runtime.teardown import TeardownCoordinator
from cluster_runtime.network import NetworkRegistry
from cluster_runtime.log_collector import LogCollector
from cluster_runtime.health import ClusterState, HealthEvent, HealthReporter, HealthStatus
from cluster_runtime.errors import (
    BootstrapCancelledError,
    BootstrapTimeoutError,
    ClusterRuntimeError,
    ClusterStartError,
    ClusterStateError,
    ConfigurationError,
    StartupError,
    TeardownWarning,
)
