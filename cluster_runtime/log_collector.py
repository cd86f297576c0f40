"""Persist node console output to per-node log files."""

from __future__ import annotations

from pathlib import Path

from cluster_runtime.config import NodeSpec


class LogCollector:
    """Appends node output to <path>/<node_id>.log."""

    def __init__(self, path: str) -> None:
        self._path = Path(path)

    def path_for(self, spec: NodeSpec) -> Path:
        """Return the log file of a node, preferring the path fixed in its spec."""
        if spec.log_path:
            return Path(spec.log_path)
        return self._path / f"{spec.node_id}.log"

    def collect(self, spec: NodeSpec, output: str) -> Path:
        """Append output to the node's log file and return its path."""
        target = self.path_for(spec)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as handle:
            handle.write(output)
        return target
