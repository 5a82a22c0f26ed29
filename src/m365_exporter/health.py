"""
Liveness check for the exporter.

Instead of returning a static 200, /health sends a HEAD request to our own
/metrics and mirrors the status code. HEAD skips the body, which keeps
frequent kubelet liveness checks cheap while still proving the registry can render.
"""

from __future__ import annotations

import logging

import httpx

log = logging.getLogger(__name__)

METRICS_PATH = "/metrics"


def health_target(host: str, port: int, metrics_path: str = METRICS_PATH) -> str:
    """URL of our own metrics endpoint.

    Wildcard listen addresses are reached via localhost. IPv6 literals get
    brackets, so `::1` becomes `http://[::1]:8080/metrics`.
    """
    if not host or host in ("0.0.0.0", "::"):
        host = "localhost"
    elif ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"http://{host}:{port}{metrics_path}"


def metrics_status(client: httpx.Client, target: str) -> int:
    """HEAD the metrics endpoint and return its status, or 500 if unreachable."""
    try:
        response = client.head(target)
    except httpx.HTTPError as e:
        log.error("health endpoint encountered an error while querying metrics: %s", e)
        return 500
    return response.status_code
