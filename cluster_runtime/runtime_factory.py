"""Factory for creating node runtimes by name."""

from typing import Mapping, Optional

from cluster_runtime.docker_runtime import DockerNodeRuntime
from cluster_runtime.errors import ConfigurationError
from cluster_runtime.in_memory import InMemoryNodeRuntime
from cluster_runtime.node_runtime import NodeRuntime


class NodeRuntimeFactory:
    """
    Factory for node runtimes.

    Supports Docker containers and the in-process simulation.
    """

    def create(self, runtime_type: str, options: Optional[Mapping[str, object]] = None) -> NodeRuntime:
        """Create a runtime instance; options are passed to its constructor."""
        kwargs = dict(options or {})
        try:
            if runtime_type == "docker":
                return DockerNodeRuntime(**kwargs)
            if runtime_type == "in_memory":
                return InMemoryNodeRuntime(**kwargs)
        except TypeError as exc:
            raise ConfigurationError(f"Invalid options for {runtime_type} runtime: {exc}") from exc

        raise ConfigurationError(f"Unsupported node runtime: {runtime_type}")
