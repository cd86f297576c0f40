"""Docker-backed node runtime: one container per cluster node."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from cluster_runtime.config import NodeSpec
from cluster_runtime.errors import StartupError
from cluster_runtime.node_runtime import NodeRuntime
from cluster_runtime.probes import can_connect, free_port

logger = logging.getLogger(__name__)

EXTERNAL_PORT = 9092
READY_MARKER = "Kafka Server started"


@dataclass
class DockerNode:
    """Container started for one node."""

    spec: NodeSpec
    container_id: str
    host_port: Optional[int]
    removed: bool = False


class DockerNodeRuntime(NodeRuntime):
    """
    Runs each node as a container of a KRaft-capable Kafka image.

    Node properties are rendered as KAFKA_* environment variables, which
    the apache/kafka image turns back into server properties. Broker roles
    publish an external listener on a free host port for test clients.
    """

    def __init__(self, host: str = "localhost") -> None:
        self._host = host
        self._client = None

    def start(self, spec: NodeSpec, network: Optional[str] = None) -> DockerNode:
        client = self._docker_client(spec.node_id)
        host_port = free_port() if spec.role.is_broker else None
        ports = {f"{EXTERNAL_PORT}/tcp": host_port} if host_port is not None else {}

        try:
            container = client.containers.run(
                image=spec.image,
                name=self._container_name(spec),
                hostname=spec.host,
                detach=True,
                environment=self._environment(spec, host_port),
                network=network,
                ports=ports,
                labels=self._labels(spec),
            )
        except Exception as exc:
            self._discard(client, spec)
            raise StartupError(spec.node_id, f"container launch failed: {exc}") from exc

        logger.info("node %s launched as container %s", spec.node_id, container.name)
        return DockerNode(spec=spec, container_id=container.id, host_port=host_port)

    def stop(self, ref: DockerNode) -> None:
        """Stop the container; it stays around so its logs can still be read."""
        container = self._container(ref)
        if container is not None:
            container.stop(timeout=10)

    def remove(self, ref: DockerNode) -> None:
        """Remove the container and its anonymous volumes."""
        container = self._container(ref)
        if container is not None:
            container.remove(v=True, force=True)
        ref.removed = True

    def is_ready(self, ref: DockerNode) -> bool:
        if not self.is_running(ref):
            return False

        if READY_MARKER not in self.logs(ref):
            return False

        if ref.host_port is not None:
            return can_connect(self._host, ref.host_port)
        return True

    def is_running(self, ref: DockerNode) -> bool:
        container = self._container(ref)
        return container is not None and container.status == "running"

    def network_address(self, ref: DockerNode) -> Tuple[str, int]:
        if ref.host_port is None:
            return ref.spec.host, ref.spec.controller_port
        return self._host, ref.host_port

    def logs(self, ref: DockerNode) -> str:
        container = self._container(ref)
        if container is None:
            return ""
        return container.logs().decode("utf-8", errors="replace")

    def create_network(self, name: str) -> None:
        client = self._docker_client()
        try:
            client.networks.get(name)
        except self._not_found():
            client.networks.create(name, driver="bridge", labels={"app": "kafka-cluster-runtime"})

    def remove_network(self, name: str) -> None:
        client = self._docker_client()
        try:
            client.networks.get(name).remove()
        except self._not_found():
            return None

    def _container(self, ref: DockerNode):
        if ref.removed:
            return None
        try:
            return self._docker_client(ref.spec.node_id).containers.get(ref.container_id)
        except self._not_found():
            ref.removed = True
            return None

    def _discard(self, client, spec: NodeSpec) -> None:
        # run() creates before it starts, so a failed start can leave a container behind.
        try:
            client.containers.get(self._container_name(spec)).remove(v=True, force=True)
        except self._not_found():
            return None
        except Exception as exc:
            logger.warning("node %s left container %s behind: %s", spec.node_id, spec.host, exc)

    def _docker_client(self, node_id: int = -1):
        if self._client is None:
            try:
                import docker  # type: ignore
            except ModuleNotFoundError as exc:
                raise StartupError(node_id, "docker SDK is required to run cluster nodes") from exc

            self._client = docker.from_env()
        return self._client

    @staticmethod
    def _not_found():
        import docker.errors  # type: ignore

        return docker.errors.NotFound

    def _environment(self, spec: NodeSpec, host_port: Optional[int]) -> Dict[str, str]:
        listeners = [f"CONTROLLER://0.0.0.0:{spec.controller_port}"] if spec.role.is_controller else []
        advertised = []
        protocols = ["CONTROLLER:PLAINTEXT"]
        if spec.role.is_broker:
            listeners.append(f"BROKER://0.0.0.0:{spec.port}")
            advertised.append(f"BROKER://{spec.internal_address}")
            protocols.append("BROKER:PLAINTEXT")
            if host_port is not None:
                listeners.append(f"PLAINTEXT://0.0.0.0:{EXTERNAL_PORT}")
                advertised.append(f"PLAINTEXT://{self._host}:{host_port}")
                protocols.append("PLAINTEXT:PLAINTEXT")

        properties = dict(spec.properties)
        properties["listeners"] = ",".join(listeners)
        properties["listener.security.protocol.map"] = ",".join(protocols)
        if advertised:
            properties["advertised.listeners"] = ",".join(advertised)

        env = {self._env_name(key): value for key, value in properties.items()}
        env["CLUSTER_ID"] = spec.cluster_id
        return env

    @staticmethod
    def _env_name(key: str) -> str:
        # apache/kafka maps "_" -> ".", "__" -> "_" and "___" -> "-".
        escaped = key.replace("_", "__").replace("-", "___").replace(".", "_")
        return f"KAFKA_{escaped.upper()}"

    @staticmethod
    def _container_name(spec: NodeSpec) -> str:
        # Container names resolve as hostnames on user-defined networks.
        return spec.host

    @staticmethod
    def _labels(spec: NodeSpec) -> Dict[str, str]:
        return {
            "app": "kafka-cluster-runtime",
            "cluster_id": spec.cluster_id,
            "node_id": str(spec.node_id),
            "role": spec.role.value,
            "owner_pid": str(os.getpid()),
        }

