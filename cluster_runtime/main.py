"""Cluster runtime entrypoint: run a topology until interrupted."""

from __future__ import annotations

import asyncio
import logging
import os
import threading

from cluster_runtime.cluster import KafkaCluster
from cluster_runtime.config import ConfigRepository
from cluster_runtime.errors import ConfigurationError
from cluster_runtime.health_server import HealthServer
from cluster_runtime.runtime_factory import NodeRuntimeFactory

logger = logging.getLogger(__name__)


async def _run(cluster: KafkaCluster) -> None:
    """Start the cluster and keep the loop alive."""
    cluster.start()
    print(cluster.bootstrap_servers(), flush=True)
    try:
        while True:
            await asyncio.sleep(1)
    finally:
        cluster.stop()


def main() -> None:
    """Application entrypoint for the cluster runtime."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    config_path = os.getenv("CLUSTER_CONFIG")
    runtime_type = os.getenv("CLUSTER_RUNTIME", "docker")
    startup_timeout = os.getenv("CLUSTER_STARTUP_TIMEOUT", "120")
    health_host = os.getenv("HEALTH_HOST")
    health_port = os.getenv("HEALTH_PORT")

    if not config_path:
        raise ConfigurationError("CLUSTER_CONFIG is required")
    if bool(health_host) != bool(health_port):
        raise ConfigurationError("HEALTH_HOST and HEALTH_PORT must be set together")

    try:
        timeout = float(startup_timeout)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid CLUSTER_STARTUP_TIMEOUT: {startup_timeout}") from exc

    topology = ConfigRepository(config_path).load()
    runtime = NodeRuntimeFactory().create(runtime_type)
    cluster = KafkaCluster(topology, runtime, startup_timeout=timeout)

    if health_host and health_port:
        server = HealthServer(health_host, int(health_port), cluster.health_snapshot)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        logger.info("health endpoint on %s:%s", health_host, health_port)

    try:
        asyncio.run(_run(cluster))
    except KeyboardInterrupt:
        logger.info("interrupted")


if __name__ == "__main__":
    main()
