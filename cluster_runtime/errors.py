"""Custom exceptions for the cluster runtime."""

from __future__ import annotations

from typing import Dict, Iterable, List


class ClusterRuntimeError(Exception):
    """Base class for cluster runtime failures."""


class ConfigurationError(ClusterRuntimeError):
    """Raised when topology parameters or config files are invalid."""


class StartupError(ClusterRuntimeError):
    """Raised when a single node fails to launch."""

    def __init__(self, node_id: int, message: str) -> None:
        super().__init__(f"node {node_id}: {message}")
        self.node_id = node_id


class ClusterStartError(ClusterRuntimeError):
    """Raised when the cluster does not reach readiness; aggregates per-node causes."""

    def __init__(self, failures: Dict[int, BaseException], message: str = "cluster failed to start") -> None:
        self.failures = dict(failures)
        details = "; ".join(f"node {node_id}: {exc}" for node_id, exc in sorted(self.failures.items()))
        super().__init__(f"{message} ({details})" if details else message)

    @property
    def node_ids(self) -> List[int]:
        return sorted(self.failures)


class BootstrapTimeoutError(ClusterRuntimeError):
    """Raised when target nodes are not ready before the deadline."""

    def __init__(self, message: str, pending: Iterable[int] = ()) -> None:
        super().__init__(message)
        self.pending = sorted(pending)


class BootstrapCancelledError(BootstrapTimeoutError):
    """Raised when a readiness wait is cancelled before completion."""


class ClusterStateError(ClusterRuntimeError):
    """Raised when a lifecycle operation is invalid for the current cluster state."""


class TeardownWarning(UserWarning):
    """Reported (never raised) when some nodes or resources fail to stop cleanly."""

    def __init__(self, failures: Dict[str, BaseException]) -> None:
        self.failures = dict(failures)
        details = "; ".join(f"{name}: {exc}" for name, exc in self.failures.items())
        super().__init__(f"teardown finished with {len(self.failures)} failure(s): {details}")
