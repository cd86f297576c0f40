"""Shared fixtures: every test owns the clusters it creates."""

import pytest

from cluster_runtime.cluster import KafkaCluster
from cluster_runtime.in_memory import InMemoryNodeRuntime
from cluster_runtime.network import NetworkRegistry

POLL_INTERVAL = 0.01
STARTUP_TIMEOUT = 2.0


@pytest.fixture
def runtime():
    return InMemoryNodeRuntime()


@pytest.fixture
def registry():
    """Isolated network registry so tests never share refcounts."""
    return NetworkRegistry()


@pytest.fixture
def make_cluster(registry):
    """Build clusters bound to this test and stop them all afterwards."""
    created = []

    def _make(topology, runtime, **kwargs):
        kwargs.setdefault("poll_interval", POLL_INTERVAL)
        kwargs.setdefault("startup_timeout", STARTUP_TIMEOUT)
        kwargs.setdefault("network_registry", registry)
        cluster = KafkaCluster(topology, runtime, **kwargs)
        created.append(cluster)
        return cluster

    yield _make

    for cluster in created:
        cluster.stop()
