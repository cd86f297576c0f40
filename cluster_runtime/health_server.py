"""Health endpoint server for a running cluster."""

from __future__ import annotations

from http.server import BaseHTTPRequestHandler, HTTPServer
import json
from typing import Callable, Dict, Tuple

READY_STATES = ("running",)
LIVE_STATES = ("starting", "running", "partially_degraded")


def render(path: str, snapshot: Dict[str, object]) -> Tuple[int, Dict[str, object]]:
    """Map a request path and cluster snapshot to (status code, body)."""
    state = snapshot.get("state")
    if path == "/health":
        return 200, snapshot
    if path == "/health/live":
        return (200 if state in LIVE_STATES else 503), {"state": state}
    if path == "/health/ready":
        return (200 if state in READY_STATES else 503), {
            "state": state,
            "bootstrap_servers": snapshot.get("bootstrap_servers", ""),
        }
    if path == "/health/nodes":
        return 200, {"nodes": snapshot.get("nodes", {})}
    return 404, {"error": f"unknown path {path}"}


class HealthHandler(BaseHTTPRequestHandler):
    """HTTP handler that serves views of the cluster health snapshot."""

    def do_GET(self) -> None:  # noqa: N802
        status, payload = render(self.path, self.server.get_health())  # type: ignore[attr-defined]
        body = json.dumps(payload).encode("utf-8")

        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        return


class HealthServer(HTTPServer):
    """HTTP server wrapper that exposes a health callback."""

    def __init__(self, host: str, port: int, get_health: Callable[[], Dict[str, object]]) -> None:
        self.get_health = get_health
        super().__init__((host, port), HealthHandler)
