"""Network and Kafka metadata probes."""

from __future__ import annotations

import logging
import socket

from kafka import KafkaAdminClient
from kafka.errors import KafkaError

logger = logging.getLogger(__name__)


def can_connect(host: str, port: int, timeout: float = 1.0) -> bool:
    """Attempt a TCP connection to host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def free_port() -> int:
    """Ask the OS for a currently unused TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("", 0))
        return sock.getsockname()[1]


def kafka_broker_count(bootstrap: str) -> int:
    """Return the number of brokers the cluster metadata reports, 0 when unreachable."""
    try:
        admin = KafkaAdminClient(bootstrap_servers=bootstrap, request_timeout_ms=5000)
    except KafkaError as exc:
        logger.debug("metadata probe could not connect to %s: %s", bootstrap, exc)
        return 0

    try:
        return len(admin.describe_cluster().get("brokers", []))
    except KafkaError as exc:
        logger.debug("metadata probe failed against %s: %s", bootstrap, exc)
        return 0
    finally:
        admin.close()
