"""Tests for the per-collector snapshot store."""

import threading
import time

from m365_exporter.collector.store import Snapshot, SnapshotStore
from m365_exporter.metrics import Observation


def _health(store: SnapshotStore) -> dict:
    return {obs.name: obs.value for obs in store.read()[:3]}


def _data(store: SnapshotStore) -> list:
    return list(store.read()[3:])


def test_new_store_is_empty_and_unhealthy():
    store = SnapshotStore("test")

    assert store.snapshot == Snapshot()
    assert _data(store) == []
    assert _health(store) == {
        "m365_test_last_update_timestamp_seconds": 0.0,
        "m365_test_scrape_duration_seconds": 0.0,
        "m365_test_scrape_success": 0.0,
    }


def test_successful_write_replaces_observations():
    store = SnapshotStore("test")
    first = [Observation.gauge("a", 1), Observation.gauge("b", 2)]
    second = [Observation.gauge("c", 3)]

    store.write(first, 0.5, True)
    assert _data(store) == first

    store.write(second, 0.25, True)
    assert _data(store) == second

    health = _health(store)
    assert health["m365_test_scrape_success"] == 1.0
    assert health["m365_test_scrape_duration_seconds"] == 0.25
    assert health["m365_test_last_update_timestamp_seconds"] > 0


def test_failed_write_keeps_stale_observations():
    store = SnapshotStore("test")
    good = [Observation.gauge("x_total", 42)]

    store.write(good, 0.1, True)
    last_update = store.snapshot.last_update_timestamp

    store.write([Observation.gauge("ignored", 1)], 2.0, False)

    assert _data(store) == good
    assert store.snapshot.scrape_success == 0.0
    assert store.snapshot.scrape_duration_seconds == 2.0
    assert store.snapshot.last_update_timestamp == last_update


def test_last_update_never_goes_backwards():
    store = SnapshotStore("test")
    stamps = []
    for _ in range(5):
        store.write([], 0.0, True)
        stamps.append(store.snapshot.last_update_timestamp)

    assert stamps == sorted(stamps)


def test_read_is_taken_from_a_single_snapshot():
    store = SnapshotStore("test")
    old = [Observation.gauge(f"m{i}", 1) for i in range(50)]
    new = [Observation.gauge(f"m{i}", 2) for i in range(50)]
    store.write(old, 0.0, True)

    stop = threading.Event()
    mixed = []

    def writer():
        while not stop.is_set():
            store.write(new, 0.0, True)
            store.write(old, 0.0, True)

    def reader():
        while not stop.is_set():
            values = {obs.value for obs in _data(store)}
            if len(values) != 1:
                mixed.append(values)

    threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    time.sleep(0.3)
    stop.set()
    for t in threads:
        t.join()

    assert mixed == []
