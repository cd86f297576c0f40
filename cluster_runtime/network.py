"""Reference-counted networks shared between clusters."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict

logger = logging.getLogger(__name__)

SHARED_NETWORK_NAME = "kafka-cluster-shared"


class NetworkRegistry:
    """
    Tracks how many clusters use each named network.

    The network is created by the first acquire() and removed by the
    release() that drops the count to zero.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._refs: Dict[str, int] = {}

    def acquire(self, name: str, create: Callable[[str], None]) -> str:
        with self._lock:
            count = self._refs.get(name, 0)
            if count == 0:
                create(name)
                logger.info("network %s created", name)
            self._refs[name] = count + 1
            return name

    def release(self, name: str, remove: Callable[[str], None]) -> bool:
        """Drop one reference; return True when the network was removed."""
        with self._lock:
            count = self._refs.get(name, 0)
            if count == 0:
                return False
            if count > 1:
                self._refs[name] = count - 1
                return False
            del self._refs[name]
            remove(name)
            logger.info("network %s removed", name)
            return True

    def references(self, name: str) -> int:
        with self._lock:
            return self._refs.get(name, 0)


default_registry = NetworkRegistry()
