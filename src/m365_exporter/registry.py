"""
Aggregates every enabled collector into one scrape target.

Registration happens at startup, before any background worker runs, so a
failed registration never leaves half-started collectors behind. Serving a
scrape only reads snapshot stores. It makes no outbound requests.
"""

from __future__ import annotations

import logging
import platform
import threading
from typing import Dict, Iterator, List, Mapping, Optional

from prometheus_client import (
    CollectorRegistry,
    GCCollector,
    Info,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from m365_exporter import __version__
from m365_exporter.collector.base import Collector
from m365_exporter.errors import DuplicateSubsystemError, ExporterError, RegistrationError

log = logging.getLogger(__name__)


class Registry:

    def __init__(self, include_runtime: bool = False):
        self._prometheus = CollectorRegistry(auto_describe=True)
        self._collectors: Dict[str, Collector] = {}
        self._lock = threading.Lock()

        if include_runtime:
            ProcessCollector(registry=self._prometheus)
            PlatformCollector(registry=self._prometheus)
            GCCollector(registry=self._prometheus)
            build = Info("m365_exporter_build", "Build information about the exporter.", registry=self._prometheus)
            build.info({"version": __version__, "python_version": platform.python_version()})

    @property
    def prometheus_registry(self) -> CollectorRegistry:
        return self._prometheus

    def register(self, collector: Collector):
        subsystem = collector.subsystem_name()
        with self._lock:
            if subsystem in self._collectors:
                raise DuplicateSubsystemError(subsystem)
            try:
                self._prometheus.register(collector)
            except ValueError as e:
                # prometheus_client refuses clashing metric names
                raise RegistrationError(f"failed to register collector {subsystem!r}: {e}") from e
            self._collectors[subsystem] = collector
        log.debug("registered collector %s", subsystem)

    def unregister(self, subsystem: str) -> Collector:
        with self._lock:
            collector = self._collectors.pop(subsystem, None)
            if collector is None:
                raise KeyError(subsystem)
            self._prometheus.unregister(collector)
        return collector

    def get(self, subsystem: str) -> Optional[Collector]:
        return self._collectors.get(subsystem)

    def subsystems(self) -> List[str]:
        return list(self._collectors)

    def __contains__(self, subsystem: str) -> bool:
        return subsystem in self._collectors

    def __len__(self) -> int:
        return len(self._collectors)

    def __iter__(self) -> Iterator[Collector]:
        return iter(list(self._collectors.values()))

    def start_workers(self, shutdown: threading.Event, intervals: Mapping[str, float]):
        """Start one background worker per registered collector."""
        if shutdown.is_set():
            raise ExporterError("shutdown already requested, not starting collectors")

        for subsystem, collector in self._collectors.items():
            interval = intervals.get(subsystem)
            if interval is None:
                raise ExporterError(f"no scrape interval configured for collector {subsystem!r}")
            collector.start_background_worker(shutdown, interval)
            log.info("started collector %s, interval=%ss", subsystem, interval)

    def exposition(self) -> bytes:
        """Render every collector's current snapshot in the Prometheus text format."""
        return generate_latest(self._prometheus)
