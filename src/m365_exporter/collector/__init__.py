"""Collectors, one per Microsoft 365 data source."""

from __future__ import annotations

from typing import Dict, List, Type

from m365_exporter.collector.adsync import ADSyncCollector
from m365_exporter.collector.base import Collector, FunctionCollector
from m365_exporter.collector.exchange import ExchangeCollector
from m365_exporter.collector.intune import IntuneCollector
from m365_exporter.collector.license import LicenseCollector
from m365_exporter.collector.securescore import SecureScoreCollector
from m365_exporter.collector.teams import TeamsCollector
from m365_exporter.graph import GraphClient

# Registration order is also the order on /metrics
COLLECTORS: Dict[str, Type[Collector]] = {
    "adsync": ADSyncCollector,
    "exchange": ExchangeCollector,
    "securescore": SecureScoreCollector,
    "license": LicenseCollector,
    "intune": IntuneCollector,
    "teams": TeamsCollector,
}


def build_collectors(tenant_id: str, graph: GraphClient) -> List[Collector]:
    return [cls(tenant_id, graph) for cls in COLLECTORS.values()]


__all__ = ["COLLECTORS", "Collector", "FunctionCollector", "build_collectors"]
