import socket

import pytest

from cluster_runtime import main as entrypoint
from cluster_runtime.errors import ConfigurationError
from cluster_runtime.probes import can_connect, free_port


def test_main_requires_cluster_config(monkeypatch):
    monkeypatch.delenv("CLUSTER_CONFIG", raising=False)

    with pytest.raises(ConfigurationError, match="CLUSTER_CONFIG"):
        entrypoint.main()


def test_main_requires_complete_health_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("CLUSTER_CONFIG", str(tmp_path / "topology.json"))
    monkeypatch.setenv("HEALTH_HOST", "127.0.0.1")
    monkeypatch.delenv("HEALTH_PORT", raising=False)

    with pytest.raises(ConfigurationError, match="HEALTH_HOST and HEALTH_PORT"):
        entrypoint.main()


def test_main_rejects_bad_timeout(monkeypatch, tmp_path):
    monkeypatch.setenv("CLUSTER_CONFIG", str(tmp_path / "topology.json"))
    monkeypatch.setenv("CLUSTER_STARTUP_TIMEOUT", "soon")
    monkeypatch.delenv("HEALTH_HOST", raising=False)
    monkeypatch.delenv("HEALTH_PORT", raising=False)

    with pytest.raises(ConfigurationError, match="CLUSTER_STARTUP_TIMEOUT"):
        entrypoint.main()


def test_can_connect_to_listening_socket():
    with socket.socket() as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen()
        port = listener.getsockname()[1]

        assert can_connect("127.0.0.1", port)


def test_free_port_is_bindable():
    port = free_port()

    with socket.socket() as sock:
        sock.bind(("127.0.0.1", port))
