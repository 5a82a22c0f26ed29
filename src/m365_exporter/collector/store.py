"""
Last-known-good metric storage for one collector.

The store keeps an immutable Snapshot and replaces the reference on every
write. Readers grab whatever reference is current and never take the lock,
so a scrape of /metrics can't be held up by a collector mid-write and can't
see half of one cycle's observations mixed with the next.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from typing import Iterable, Tuple

from m365_exporter.metrics import NAMESPACE, MetricDescriptor, Observation, build_fq_name


def health_descriptors(subsystem: str) -> Tuple[MetricDescriptor, MetricDescriptor, MetricDescriptor]:
    """Descriptors for (last_update_timestamp, scrape_duration, scrape_success)."""
    return (
        MetricDescriptor.new(
            build_fq_name(NAMESPACE, subsystem, "last_update_timestamp_seconds"),
            "The timestamp of the last successful update of the metrics.",
        ),
        MetricDescriptor.new(
            build_fq_name(NAMESPACE, subsystem, "scrape_duration_seconds"),
            "The duration of the last scrape.",
        ),
        MetricDescriptor.new(
            build_fq_name(NAMESPACE, subsystem, "scrape_success"),
            "Whether the last scrape was successful.",
        ),
    )


@dataclass(frozen=True)
class Snapshot:
    """One collector's complete state at a point in time."""

    observations: Tuple[Observation, ...] = ()
    last_update_timestamp: float = 0.0
    scrape_duration_seconds: float = 0.0
    scrape_success: float = 0.0


class SnapshotStore:

    def __init__(self, subsystem: str):
        self._subsystem = subsystem
        self._health = health_descriptors(subsystem)
        self._snapshot = Snapshot()
        self._write_lock = threading.Lock()

    @property
    def subsystem(self) -> str:
        return self._subsystem

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        return self._health

    def read(self) -> Tuple[Observation, ...]:
        """Health observations followed by the data observations."""
        snap = self._snapshot  # single read of the reference, everything below uses it
        last_update, duration, success = self._health
        return (
            last_update.observe(snap.last_update_timestamp),
            duration.observe(snap.scrape_duration_seconds),
            success.observe(snap.scrape_success),
        ) + snap.observations

    def write(self, observations: Iterable[Observation], duration: float, success: bool) -> Snapshot:
        """Publish the result of one scrape attempt.

        On failure the previous observations and timestamp are kept, only
        the duration and success gauges move.
        """
        with self._write_lock:
            current = self._snapshot
            if success:
                updated = Snapshot(
                    observations=tuple(observations),
                    last_update_timestamp=max(time.time(), current.last_update_timestamp),
                    scrape_duration_seconds=duration,
                    scrape_success=1.0,
                )
            else:
                updated = replace(current, scrape_duration_seconds=duration, scrape_success=0.0)
            self._snapshot = updated
        return updated
