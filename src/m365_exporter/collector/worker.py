"""
Background scrape loop for one collector.

Each worker owns a daemon thread that calls the collector's fetch function,
times it, and publishes the result to the collector's SnapshotStore. The
next cycle starts `interval` seconds after the previous one started, or
right away if the fetch took longer than that.

A fetch function reports expected trouble (network errors, upstream 4xx/5xx,
bad payloads) by raising ScrapeError or letting an httpx.HTTPError escape.
Anything else, including an observation that `validate` rejects, is treated
as a bug in that collector: it gets logged with a traceback, the last good
snapshot stays, and the loop carries on at the next tick. One broken data source
never takes down the process or the other collectors.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable, Optional

import httpx

from m365_exporter.collector.store import SnapshotStore
from m365_exporter.errors import ExporterError, ScrapeError
from m365_exporter.metrics import Observation

log = logging.getLogger(__name__)

FetchFunction = Callable[[threading.Event], Iterable[Observation]]

# Failures the fetch function is allowed to signal. Everything else is a fault.
EXPECTED_ERRORS = (ScrapeError, httpx.HTTPError)


class ScrapeWorker:

    def __init__(
        self,
        store: SnapshotStore,
        fetch: FetchFunction,
        interval: float,
        shutdown: threading.Event,
        validate: Optional[Callable[[Observation], object]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if interval <= 0:
            raise ValueError(f"scrape interval must be positive, got {interval}")
        self._store = store
        self._fetch = fetch
        self._interval = interval
        self._shutdown = shutdown
        self._validate = validate
        self._log = logger or log.getChild(store.subsystem)
        self._thread: Optional[threading.Thread] = None

        self.cycles = 0
        self.failures = 0
        self.faults = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self._shutdown.is_set():
            raise ExporterError(f"cannot start scrape worker for {self._store.subsystem!r}: shutdown in progress")
        if self._thread is not None:
            raise ExporterError(f"scrape worker for {self._store.subsystem!r} already started")

        self._thread = threading.Thread(
            target=self._run,
            name=f"scrape-{self._store.subsystem}",
            daemon=True,
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the loop to exit. Returns False if it's still running."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self):
        self._log.debug("starting scrape worker, interval=%.1fs", self._interval)
        while True:
            started = time.monotonic()
            self.run_once()

            remaining = self._interval - (time.monotonic() - started)
            if self._shutdown.wait(max(0.0, remaining)):
                break
        self._log.debug("scrape worker stopped")

    def run_once(self) -> bool:
        """One fetch-and-store cycle. Returns True if the scrape succeeded."""
        self.cycles += 1
        started = time.monotonic()

        try:
            observations = list(self._fetch(self._shutdown))
            for obs in observations:
                if not isinstance(obs, Observation):
                    raise TypeError(f"fetch function returned {type(obs).__name__}, expected Observation")
                if self._validate is not None:
                    self._validate(obs)
        except EXPECTED_ERRORS as e:
            duration = time.monotonic() - started
            if self._shutdown.is_set():
                return False
            self.failures += 1
            self._store.write((), duration, False)
            self._log.error(
                "collector failed after %.3fs, resulting in %d metrics: %s",
                duration, len(getattr(e, "partial", ())), e,
            )
            return False
        except Exception:
            duration = time.monotonic() - started
            self.faults += 1
            self._log.exception("fault in scrape worker after %.3fs, restarting loop", duration)
            if not self._shutdown.is_set():
                self._store.write((), duration, False)
            return False

        duration = time.monotonic() - started
        if self._shutdown.is_set():
            return False
        self._store.write(observations, duration, True)
        self._log.debug("collector succeeded after %.3fs, resulting in %d metrics", duration, len(observations))
        return True
