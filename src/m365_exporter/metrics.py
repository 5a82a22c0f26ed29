"""
Core metric definitions for the exporter.

An Observation is one data point produced by a collector's fetch function.
A MetricDescriptor is the static schema it was built from: name, help text,
kind and label names. Collectors describe themselves with descriptors and
only ever emit observations created through them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

from m365_exporter.errors import SerializationError

NAMESPACE = "m365"


class MetricKind(str, Enum):
    """Exposition type of a family.

    Counters are exposed under `<name>_total` whether or not the described
    name already ends in `_total`: prometheus_client strips the suffix from
    the family name and appends it to the sample. A counter described as
    `m365_a_hits` is scraped as `m365_a_hits_total`.
    """

    COUNTER = "counter"
    GAUGE = "gauge"


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join non-empty parts with underscores, e.g. m365_adsync_sync_enabled."""
    return "_".join(part for part in (namespace, subsystem, name) if part)


@dataclass(frozen=True)
class Observation:
    """A single metric reading. Labels are kept as ordered (name, value) pairs."""

    name: str
    kind: MetricKind
    value: float
    labels: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def gauge(cls, name: str, value: float, labels: Optional[Mapping[str, str]] = None) -> "Observation":
        return cls(name, MetricKind.GAUGE, float(value), _freeze(labels))

    @property
    def label_names(self) -> Tuple[str, ...]:
        return tuple(k for k, _ in self.labels)

    def label_dict(self) -> Dict[str, str]:
        return dict(self.labels)


def _freeze(labels: Optional[Mapping[str, str]]) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return ()
    return tuple((str(k), str(v)) for k, v in labels.items())


@dataclass(frozen=True)
class MetricDescriptor:
    """Static schema for one metric family.

    `const_labels` are appended to every observation (tenant id, mostly),
    so fetch functions only pass the variable label values.
    """

    name: str
    help: str
    kind: MetricKind = MetricKind.GAUGE
    label_names: Tuple[str, ...] = ()
    const_labels: Tuple[Tuple[str, str], ...] = field(default=())

    @classmethod
    def new(
        cls,
        name: str,
        help: str,
        label_names=(),
        const_labels: Optional[Mapping[str, str]] = None,
        kind: MetricKind = MetricKind.GAUGE,
    ) -> "MetricDescriptor":
        return cls(name, help, kind, tuple(label_names), _freeze(const_labels))

    @property
    def all_label_names(self) -> Tuple[str, ...]:
        return self.label_names + tuple(k for k, _ in self.const_labels)

    def observe(self, value: float, *label_values: str) -> Observation:
        if len(label_values) != len(self.label_names):
            raise SerializationError(
                f"{self.name}: expected {len(self.label_names)} label values "
                f"{list(self.label_names)}, got {len(label_values)}"
            )
        labels = tuple(zip(self.label_names, (str(v) for v in label_values))) + self.const_labels
        return Observation(self.name, self.kind, float(value), labels)

    def accepts(self, observation: Observation) -> bool:
        return (
            observation.name == self.name
            and observation.kind == self.kind
            and set(observation.label_names) == set(self.all_label_names)
        )
