"""
HTTP endpoint serving /metrics and /health.

Built on http.server with one thread per request. /metrics only reads the
collectors' snapshot stores, so a scrape returns in milliseconds no matter
how slow the Microsoft APIs are.
"""

from __future__ import annotations

import logging
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional, Tuple

import httpx
from prometheus_client import CONTENT_TYPE_LATEST

from m365_exporter.health import METRICS_PATH, health_target, metrics_status
from m365_exporter.registry import Registry

log = logging.getLogger(__name__)

HEALTH_PATH = "/health"
HEALTH_TIMEOUT = 10.0


class _ExporterHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    registry: Registry
    health_client: httpx.Client
    health_url: str


class _ExporterHTTPServerV6(_ExporterHTTPServer):
    address_family = socket.AF_INET6


class _MetricsHandler(BaseHTTPRequestHandler):
    server: _ExporterHTTPServer

    def do_GET(self):
        self._dispatch(send_body=True)

    def do_HEAD(self):
        self._dispatch(send_body=False)

    def _dispatch(self, send_body: bool):
        path = self.path.split("?", 1)[0]
        if path == METRICS_PATH:
            self._serve_metrics(send_body)
        elif path == HEALTH_PATH:
            self._serve_health()
        else:
            self._respond(404, b"not found\n", "text/plain; charset=utf-8", send_body)

    def _serve_metrics(self, send_body: bool):
        try:
            body = self.server.registry.exposition()
        except Exception as e:
            log.error("error gathering metrics: %s", e, exc_info=True)
            self._respond(500, f"error gathering metrics: {e}\n".encode(), "text/plain; charset=utf-8", send_body)
            return
        self._respond(200, body, CONTENT_TYPE_LATEST, send_body)

    def _serve_health(self):
        status = metrics_status(self.server.health_client, self.server.health_url)
        self.send_response(status)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _respond(self, status: int, body: bytes, content_type: str, send_body: bool):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if send_body:
            self.wfile.write(body)

    def log_message(self, format, *args):
        log.debug("%s - %s", self.address_string(), format % args)


class MetricsServer:

    def __init__(self, registry: Registry, host: str = "", port: int = 8080):
        server_cls = _ExporterHTTPServerV6 if ":" in host else _ExporterHTTPServer
        self._httpd = server_cls((host.strip("[]"), port), _MetricsHandler)
        self._httpd.registry = registry
        self._httpd.health_client = httpx.Client(timeout=HEALTH_TIMEOUT)
        self._httpd.health_url = health_target(host, self.port)
        self._thread: Optional[threading.Thread] = None

    @property
    def server_address(self) -> Tuple[str, int]:
        return self._httpd.server_address[:2]

    @property
    def port(self) -> int:
        return self._httpd.server_address[1]

    @property
    def url(self) -> str:
        return health_target(self.server_address[0], self.port, "")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        self._thread = threading.Thread(target=self._serve, name="metrics-server", daemon=True)
        self._thread.start()

    def _serve(self):
        try:
            self.serve_forever()
        except Exception:
            log.exception("metrics server stopped unexpectedly")

    def serve_forever(self):
        log.info("listening on %s:%d", *self.server_address)
        self._httpd.serve_forever()

    def shutdown(self):
        log.info("shutting down server")
        # shutdown() blocks until serve_forever returns, so only call it if the loop is running
        if self._thread is not None:
            self._httpd.shutdown()
            self._thread.join(timeout=5.0)
        self._httpd.server_close()
        self._httpd.health_client.close()
