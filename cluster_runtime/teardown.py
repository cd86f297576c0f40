"""Best-effort, ordered node shutdown."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

from cluster_runtime.log_collector import LogCollector
from cluster_runtime.node_runtime import NodeHandle, NodeRuntime

logger = logging.getLogger(__name__)


class TeardownCoordinator:
    """
    Stops nodes tier by tier and collects failures instead of raising.

    Tiers are given in start order and stopped in reverse, so brokers
    release their controller connections before the quorum goes away.
    """

    def __init__(
        self,
        runtime: NodeRuntime,
        log_collector: Optional[LogCollector] = None,
        max_concurrency: int = 8,
    ) -> None:
        self._runtime = runtime
        self._log_collector = log_collector
        self._max_concurrency = max(1, max_concurrency)

    def stop_node(self, handle: NodeHandle) -> Dict[str, BaseException]:
        """Stop one node, collect its logs, then remove it; return failures keyed by node."""
        failures: Dict[str, BaseException] = {}
        key = f"node {handle.node_id}"

        try:
            self._runtime.stop(handle.ref)
        except Exception as exc:
            logger.warning("node %s failed to stop: %s", handle.node_id, exc)
            failures[key] = exc
        else:
            logger.info("node %s stopped", handle.node_id)
        finally:
            handle.mark_stopped()

        # Output must be read between stop and remove to include the shutdown.
        if self._log_collector is not None:
            try:
                self._log_collector.collect(handle.spec, self._runtime.logs(handle.ref))
            except Exception as exc:
                logger.warning("log collection failed for node %s: %s", handle.node_id, exc)
                failures[f"{key} logs"] = exc

        try:
            self._runtime.remove(handle.ref)
        except Exception as exc:
            logger.warning("node %s could not be removed: %s", handle.node_id, exc)
            failures[f"{key} remove"] = exc

        return failures

    def stop_tiers(self, tiers: Sequence[Sequence[NodeHandle]]) -> Dict[str, BaseException]:
        """Stop every handle, last tier first; nodes within a tier stop concurrently."""
        failures: Dict[str, BaseException] = {}
        for tier in reversed(tiers):
            pending: List[NodeHandle] = [handle for handle in tier if not handle.stopped]
            if not pending:
                continue
            workers = min(len(pending), self._max_concurrency)
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="node-stop") as pool:
                for result in pool.map(self.stop_node, pending):
                    failures.update(result)
        return failures
