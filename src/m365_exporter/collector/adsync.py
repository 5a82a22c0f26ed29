"""
Entra ID Connect (AD sync) collector.

Reads the on-premises sync flags of the tenant's organization from Graph.
When sync is enabled it also pulls export error counts per sync service
from the AD Hybrid Health service on management.azure.com.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Tuple

from m365_exporter.collector.base import Collector
from m365_exporter.errors import ScrapeError
from m365_exporter.graph import GraphClient, number, parse_datetime, value_list
from m365_exporter.metrics import NAMESPACE, MetricDescriptor, Observation, build_fq_name

SUBSYSTEM = "adsync"

URL_ALL_SERVICES = (
    "https://management.azure.com/providers/Microsoft.ADHybridHealthService/services?api-version=2014-01-01"
)
URL_SERVICE_ERRORS = (
    "https://management.azure.com/providers/Microsoft.ADHybridHealthService/services/{service}"
    "/exporterrors/counts?api-version=2014-01-01"
)


class ADSyncCollector(Collector):

    def __init__(self, tenant_id: str, graph: GraphClient):
        super().__init__(SUBSYSTEM)
        self._graph = graph
        tenant = {"tenant": tenant_id}

        self.enabled_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "on_premises_sync_enabled"),
            "status of azure ad connect synchronization",
            ("organization",),
            tenant,
        )
        self.last_sync_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "on_premises_last_sync_date_time"),
            "last Unix time of azure ad connect synchronization",
            ("organization",),
            tenant,
        )
        self.error_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "on_premises_sync_error"),
            "count of entra id connect synchronization errors",
            ("sync_service", "error_bucket"),
            tenant,
        )

    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        return (self.enabled_desc, self.last_sync_desc, self.error_desc)

    def scrape(self, shutdown: threading.Event) -> List[Observation]:
        payload = self._graph.get_object(
            "organization",
            params={"$select": "onPremisesLastSyncDateTime,onPremisesSyncEnabled,id"},
        )
        organizations = value_list(payload, "organization")

        metrics: List[Observation] = []
        error_metrics: List[Observation] = []

        # Only the first organization is reported. Tenants with several
        # organizations would need a sync status per org.
        for org in organizations[:1]:
            org_id = org.get("id", "")
            sync_enabled = bool(org.get("onPremisesSyncEnabled"))

            if sync_enabled:
                error_metrics = self._scrape_errors(shutdown)

            last_sync = org.get("onPremisesLastSyncDateTime")
            last_sync_ts = parse_datetime(last_sync).timestamp() if last_sync else 0.0

            metrics.append(self.enabled_desc.observe(1.0 if sync_enabled else 0.0, org_id))
            metrics.append(self.last_sync_desc.observe(last_sync_ts, org_id))

        return metrics + error_metrics

    def _scrape_errors(self, shutdown: threading.Event) -> List[Observation]:
        services = value_list(self._graph.get_object(URL_ALL_SERVICES), "sync services")

        errors_by_service: Dict[str, List[Dict[str, Any]]] = {}
        for service in services:
            if shutdown.is_set():
                raise ScrapeError("cancelled while fetching sync errors")
            name = service.get("serviceName", "")
            sync_errors = self._graph.get(URL_SERVICE_ERRORS.format(service=name))
            if not isinstance(sync_errors, list) or not all(isinstance(e, dict) for e in sync_errors):
                raise ScrapeError(f"no entraID errors found for sync service {name!r}")
            errors_by_service[name] = sync_errors

        metrics = []
        for service_name, sync_errors in errors_by_service.items():
            for sync_error in sync_errors:
                metrics.append(self.error_desc.observe(
                    number(sync_error.get("count", 0), f"export error count of {service_name}"),
                    service_name,
                    sync_error.get("errorBucket", ""),
                ))
        return metrics
