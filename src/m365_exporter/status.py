"""Collector health table for a running exporter, rendered with Rich."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx
from prometheus_client.parser import text_string_to_metric_families
from rich.table import Table

from m365_exporter.health import METRICS_PATH
from m365_exporter.metrics import NAMESPACE

log = logging.getLogger(__name__)

_SUCCESS_RE = re.compile(rf"^{NAMESPACE}_(\w+)_scrape_success$")


@dataclass
class CollectorHealth:
    subsystem: str
    success: bool
    last_update: float
    duration: float

    def age(self, now: float) -> Optional[float]:
        if not self.last_update:
            return None
        return max(0.0, now - self.last_update)


def parse_samples(text: str) -> Dict[str, float]:
    """Map sample name to value for every unlabelled sample in an exposition."""
    return {
        sample.name: sample.value
        for family in text_string_to_metric_families(text)
        for sample in family.samples
        if not sample.labels
    }


def collector_health(samples: Dict[str, float]) -> List[CollectorHealth]:
    """Pull the per-collector health gauges out of parsed samples."""
    result = []
    for name, value in samples.items():
        match = _SUCCESS_RE.match(name)
        if not match:
            continue
        subsystem = match.group(1)
        prefix = f"{NAMESPACE}_{subsystem}"
        result.append(CollectorHealth(
            subsystem=subsystem,
            success=value == 1.0,
            last_update=samples.get(f"{prefix}_last_update_timestamp_seconds", 0.0),
            duration=samples.get(f"{prefix}_scrape_duration_seconds", 0.0),
        ))
    return sorted(result, key=lambda h: h.subsystem)


def fetch_status(client: httpx.Client, base_url: str) -> List[CollectorHealth]:
    url = base_url.rstrip("/")
    if not url.endswith(METRICS_PATH):
        url += METRICS_PATH

    response = client.get(url)
    response.raise_for_status()
    return collector_health(parse_samples(response.text))


def _format_age(seconds: Optional[float]) -> str:
    if seconds is None:
        return "never"
    if seconds < 120:
        return f"{seconds:.0f}s ago"
    if seconds < 7200:
        return f"{seconds / 60:.0f}m ago"
    return f"{seconds / 3600:.1f}h ago"


def build_table(health: List[CollectorHealth], now: Optional[float] = None) -> Table:
    now = time.time() if now is None else now

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Collector")
    table.add_column("Last scrape", justify="center")
    table.add_column("Last update", justify="right")
    table.add_column("Duration", justify="right")

    for h in health:
        if h.success:
            status = "[green]OK[/green]"
        elif h.last_update:
            status = "[yellow]STALE[/yellow]"
        else:
            status = "[red]NO DATA[/red]"
        table.add_row(h.subsystem, status, _format_age(h.age(now)), f"{h.duration:.2f}s")

    return table
