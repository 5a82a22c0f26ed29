"""
m365-exporter entry point.

Usage:
    m365-exporter serve                        Run the exporter
    m365-exporter serve --config cfg.yaml      Run with an explicit config file
    m365-exporter collectors                   Show which collectors are enabled
    m365-exporter status --url http://localhost:8080
                                               Health of a running exporter
"""

from __future__ import annotations

import logging
import signal
import threading
from typing import Iterable, List, Optional

import click
import httpx
from rich.console import Console
from rich.table import Table

from m365_exporter import __version__
from m365_exporter.collector import COLLECTORS, Collector, build_collectors
from m365_exporter.config import ExporterConfig, load_config
from m365_exporter.errors import ExporterError
from m365_exporter.graph import GraphClient
from m365_exporter.httpclient import build_client
from m365_exporter.registry import Registry
from m365_exporter.server import MetricsServer
from m365_exporter.status import build_table, fetch_status

log = logging.getLogger("m365_exporter")


def _setup_logging(level: int = logging.INFO):
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_collectors(
    registry: Registry,
    config: ExporterConfig,
    collectors: Iterable[Collector],
    shutdown: threading.Event,
) -> List[Collector]:
    """Register every enabled collector, then start their workers.

    All registrations happen before the first worker starts, so a
    duplicate subsystem aborts startup with nothing running yet.
    """
    registered = []
    for collector in collectors:
        name = collector.subsystem_name()
        if not config.collector(name).enabled:
            log.info("collector disabled, skipping registration: %s", name)
            continue
        registry.register(collector)
        registered.append(collector)

    registry.start_workers(shutdown, config.intervals())
    return registered


def wait_for_shutdown(server: MetricsServer, shutdown: threading.Event, poll: float = 1.0) -> int:
    """Block until shutdown is requested or the server thread dies.

    Returns the process exit code: 0 for a requested shutdown, 1 if the
    server stopped on its own.
    """
    while not shutdown.wait(poll):
        if not server.running:
            log.error("metrics server is no longer running, exiting")
            return 1
    return 0


@click.group()
@click.version_option(version=__version__, prog_name="m365-exporter")
def cli():
    """Prometheus exporter for Microsoft 365."""


@cli.command()
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Config file (default: search /etc/m365-exporter/ and ./)")
@click.option("--host", default=None, help="Listen host, overrides server.host")
@click.option("--port", default=None, type=int, help="Listen port, overrides server.port")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
def serve(config_path: Optional[str], host: Optional[str], port: Optional[int], verbose: bool):
    """Scrape Microsoft 365 in the background and serve /metrics."""
    _setup_logging()

    try:
        config = load_config(config_path)
    except ExporterError as e:
        log.error("error while configuring exporter: %s", e)
        raise SystemExit(1)

    logging.getLogger().setLevel(logging.DEBUG if verbose else config.logging_level)
    if host is not None:
        config.server.host = host
    if port is not None:
        config.server.port = port

    shutdown = threading.Event()
    registry = Registry(include_runtime=True)
    try:
        http = build_client(config, registry.prometheus_registry)
    except ExporterError as e:
        log.error("failed to set up the API client: %s", e)
        raise SystemExit(1)

    try:
        sources = build_collectors(config.azure.tenantid, GraphClient(http))
        setup_collectors(registry, config, sources, shutdown)
        server = MetricsServer(registry, config.server.host, config.server.port)
    except (ExporterError, OSError) as e:
        log.error("failed to start exporter: %s", e)
        shutdown.set()
        http.close()
        raise SystemExit(1)

    def _request_shutdown(signum, frame):
        log.info("received signal %d, shutting down", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, _request_shutdown)
    signal.signal(signal.SIGTERM, _request_shutdown)

    server.start()
    try:
        code = wait_for_shutdown(server, shutdown)
    finally:
        shutdown.set()
        server.shutdown()
        http.close()
    if code:
        raise SystemExit(code)


@cli.command()
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Config file (default: search /etc/m365-exporter/ and ./)")
def collectors(config_path: Optional[str]):
    """List known collectors with their enabled flag and interval."""
    try:
        config = load_config(config_path, require_tenant=False)
    except ExporterError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Collector", style="cyan")
    table.add_column("Enabled", justify="center")
    table.add_column("Interval", justify="right")

    for name in COLLECTORS:
        settings = config.collector(name)
        enabled = "[green]yes[/green]" if settings.enabled else "[dim]no[/dim]"
        table.add_row(name, enabled, f"{settings.interval:.0f}s")

    Console().print(table)


@cli.command()
@click.option("--url", default="http://localhost:8080", show_default=True, help="Exporter base URL")
@click.option("--timeout", default=10.0, show_default=True, help="Request timeout in seconds")
def status(url: str, timeout: float):
    """Show collector health of a running exporter."""
    try:
        with httpx.Client(timeout=timeout) as client:
            health = fetch_status(client, url)
    except httpx.HTTPError as e:
        click.echo(f"Could not reach exporter at {url}: {e}", err=True)
        raise SystemExit(1)

    console = Console()
    if not health:
        console.print("[yellow]No collectors reported by this exporter.[/yellow]")
        return
    console.print(build_table(health))


if __name__ == "__main__":
    cli()
