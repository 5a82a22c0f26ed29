"""
Base collector interface.

A collector binds one data source's fetch logic to a SnapshotStore and a
ScrapeWorker. The registry only ever talks to this interface, so it never
needs to know which API a collector reads from or how long that takes:
collect() serves whatever the last scrape left in the store.
"""

from __future__ import annotations

import logging
import threading
from abc import abstractmethod
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector as PrometheusCollector

from m365_exporter.collector.store import SnapshotStore
from m365_exporter.collector.worker import FetchFunction, ScrapeWorker
from m365_exporter.errors import ExporterError, SerializationError
from m365_exporter.metrics import MetricDescriptor, MetricKind, Observation

log = logging.getLogger(__name__)


def _new_family(desc: MetricDescriptor) -> Metric:
    cls = CounterMetricFamily if desc.kind == MetricKind.COUNTER else GaugeMetricFamily
    return cls(desc.name, desc.help, labels=list(desc.all_label_names))


class Collector(PrometheusCollector):
    """Interface for all data sources.

    Subclasses build their descriptors in __init__, return them from
    descriptors(), and implement scrape().
    """

    def __init__(self, subsystem: str):
        if not subsystem:
            raise ValueError("collector subsystem name must not be empty")
        self._subsystem = subsystem
        self._store = SnapshotStore(subsystem)
        self._worker: Optional[ScrapeWorker] = None
        self._by_name: Optional[Dict[str, MetricDescriptor]] = None
        self.log = log.getChild(subsystem)

    @abstractmethod
    def scrape(self, shutdown: threading.Event) -> List[Observation]:
        """Fetch one full set of observations from the upstream API.

        Raise ScrapeError for expected failures. Long fetches should check
        `shutdown` between upstream calls and bail out once it's set.
        """
        ...

    @abstractmethod
    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        """Data-source descriptors, health metrics excluded. Must not change."""
        ...

    def subsystem_name(self) -> str:
        return self._subsystem

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def worker(self) -> Optional[ScrapeWorker]:
        return self._worker

    def all_descriptors(self) -> Tuple[MetricDescriptor, ...]:
        return self._store.descriptors + tuple(self.descriptors())

    def describe(self) -> List[Metric]:
        return [_new_family(desc) for desc in self.all_descriptors()]

    def observations(self) -> Tuple[Observation, ...]:
        return self._store.read()

    def _descriptor_map(self) -> Dict[str, MetricDescriptor]:
        if self._by_name is None:
            self._by_name = {d.name: d for d in self.all_descriptors()}
        return self._by_name

    def check(self, obs: Observation) -> MetricDescriptor:
        """Return the descriptor `obs` belongs to.

        Raises SerializationError if the name wasn't described or the kind
        or label names differ from the descriptor.
        """
        desc = self._descriptor_map().get(obs.name)
        if desc is None:
            raise SerializationError(f"{self._subsystem}: collected metric {obs.name!r} was not described")
        if not desc.accepts(obs):
            raise SerializationError(
                f"{self._subsystem}: metric {obs.name!r} with labels {list(obs.label_names)} "
                f"does not match described labels {list(desc.all_label_names)}"
            )
        return desc

    def collect(self) -> Iterator[Metric]:
        """Turn the current snapshot into metric families, grouped by name.

        Never touches the network. Raises SerializationError if an
        observation doesn't fit any descriptor.
        """
        by_name = self._descriptor_map()
        families: Dict[str, Metric] = {}

        for obs in self._store.read():
            desc = self.check(obs)

            family = families.get(obs.name)
            if family is None:
                family = families[obs.name] = _new_family(desc)
            labels = obs.label_dict()
            family.add_metric([labels[name] for name in desc.all_label_names], obs.value)

        # keep describe() order so output is stable between scrapes
        for desc in by_name.values():
            if desc.name in families:
                yield families[desc.name]

    def start_background_worker(self, shutdown: threading.Event, interval: float) -> ScrapeWorker:
        if self._worker is not None:
            raise ExporterError(f"background worker for {self._subsystem!r} already started")
        worker = ScrapeWorker(
            self._store, self.scrape, interval, shutdown, validate=self.check, logger=self.log,
        )
        worker.start()
        self._worker = worker
        return worker

    def __repr__(self):
        return f"<{type(self).__name__} subsystem={self._subsystem!r}>"


class FunctionCollector(Collector):
    """Collector around a plain fetch function and a fixed descriptor list."""

    def __init__(self, subsystem: str, fetch: FetchFunction, descriptors: Sequence[MetricDescriptor] = ()):
        super().__init__(subsystem)
        self._fetch = fetch
        self._descriptors = tuple(descriptors)

    def scrape(self, shutdown: threading.Event) -> List[Observation]:
        return list(self._fetch(shutdown))

    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        return self._descriptors
