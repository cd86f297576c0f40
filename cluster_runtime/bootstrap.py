"""Readiness polling with deadlines."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable, List, Optional, Sequence

from cluster_runtime.errors import BootstrapCancelledError, BootstrapTimeoutError
from cluster_runtime.node_runtime import NodeHandle

logger = logging.getLogger(__name__)


def majority(voters: int) -> int:
    """Smallest strict majority of a voter set."""
    return voters // 2 + 1


def wait_until(
    predicate: Callable[[], bool],
    timeout: float,
    interval: float = 1.0,
    description: str = "condition",
    cancel_event: Optional[threading.Event] = None,
) -> None:
    """Poll predicate until it returns True or the timeout elapses."""
    deadline = time.monotonic() + timeout
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise BootstrapCancelledError(f"Cancelled while waiting for {description}")
        if predicate():
            return
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise BootstrapTimeoutError(f"Timed out after {timeout}s waiting for {description}")
        time.sleep(min(interval, remaining))


class BootstrapCoordinator:
    """
    Gates cluster startup and quorum checks on node readiness.

    await_ready() succeeds when every non-excluded target reports ready.
    In quorum mode the non-excluded targets must also form a strict
    majority of the whole target set; when they cannot, the wait fails
    immediately instead of running out the clock.
    """

    def __init__(
        self,
        timeout: float = 120.0,
        interval: float = 1.0,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._timeout = timeout
        self._interval = interval
        self._cancel_event = cancel_event

    def await_ready(
        self,
        handles: Sequence[NodeHandle],
        excluded: Iterable[int] = (),
        quorum: bool = False,
        deadline: Optional[float] = None,
    ) -> List[NodeHandle]:
        """Block until the target set is ready; return the ready handles."""
        excluded_ids = set(excluded)
        required = [handle for handle in handles if handle.node_id not in excluded_ids]
        if deadline is None:
            deadline = time.monotonic() + self._timeout

        if quorum:
            needed = majority(len(handles))
            if len(required) < needed:
                raise BootstrapTimeoutError(
                    f"Quorum unreachable: {len(required)} of {len(handles)} voters available, {needed} required",
                    pending=[handle.node_id for handle in handles if handle.node_id in excluded_ids],
                )

        pending = [handle.node_id for handle in required]
        while True:
            if self._cancel_event is not None and self._cancel_event.is_set():
                raise BootstrapCancelledError("Readiness wait cancelled", pending=pending)

            pending = [handle.node_id for handle in required if not handle.is_ready()]
            if not pending:
                logger.debug("nodes %s ready", [handle.node_id for handle in required])
                return list(required)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise BootstrapTimeoutError(
                    f"Nodes {pending} did not become ready before the deadline",
                    pending=pending,
                )
            time.sleep(min(self._interval, remaining))
