"""
Shared httpx client for all upstream calls.

Requests are counted and timed per method/host/status so slow or failing
Microsoft endpoints show up next to the collector metrics on /metrics.
"""

from __future__ import annotations

import time
from typing import Optional

import httpx
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from m365_exporter import __version__
from m365_exporter.auth import AzureTokenAuth, TokenProvider
from m365_exporter.config import ExporterConfig
from m365_exporter.errors import ConfigError

DEFAULT_TIMEOUT = 30.0

DURATION_BUCKETS = (0.1, 0.3, 0.6, 1, 3, 6, 9, 20)

LABELS = ("method", "host", "code")


class RequestMetrics:
    """The three client-side request metrics, registered once per registry."""

    def __init__(self, registry: CollectorRegistry):
        self.requests = Counter(
            "http_client_requests_total",
            "Tracks the number of HTTP requests.",
            LABELS,
            registry=registry,
        )
        self.duration = Histogram(
            "http_client_request_duration_seconds",
            "Tracks the latencies for HTTP requests.",
            LABELS,
            buckets=DURATION_BUCKETS,
            registry=registry,
        )
        self.in_flight = Gauge(
            "http_client_requests_inflight",
            "Tracks the number of client requests currently in progress.",
            registry=registry,
        )


class InstrumentedTransport(httpx.BaseTransport):

    def __init__(self, inner: httpx.BaseTransport, metrics: RequestMetrics):
        self._inner = inner
        self._metrics = metrics

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host or "unknown"
        self._metrics.in_flight.inc()
        started = time.perf_counter()
        try:
            response = self._inner.handle_request(request)
        finally:
            self._metrics.in_flight.dec()

        # transport errors propagate uncounted
        labels = (request.method, host, str(response.status_code))
        self._metrics.duration.labels(*labels).observe(time.perf_counter() - started)
        self._metrics.requests.labels(*labels).inc()
        return response

    def close(self):
        self._inner.close()


def build_client(
    config: ExporterConfig,
    registry: CollectorRegistry,
    transport: Optional[httpx.BaseTransport] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> httpx.Client:
    """Authenticated, instrumented client for the collectors.

    `transport` replaces the real network transport, which is what the
    tests use to fake upstream responses.
    """
    azure = config.azure
    if not azure.clientid or not azure.clientsecret:
        raise ConfigError("azure.clientId and azure.clientSecret are required to authenticate")

    metrics = RequestMetrics(registry)
    headers = {"User-Agent": f"m365-exporter/{__version__}"}

    token_client = httpx.Client(
        transport=InstrumentedTransport(transport or httpx.HTTPTransport(), metrics),
        timeout=timeout,
        headers=headers,
    )
    provider = TokenProvider(azure.tenantid, azure.clientid, azure.clientsecret, token_client)

    return httpx.Client(
        transport=InstrumentedTransport(transport or httpx.HTTPTransport(), metrics),
        auth=AzureTokenAuth(provider),
        timeout=timeout,
        headers=headers,
    )
