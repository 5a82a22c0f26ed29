"""
License collector.

Reports consumed and prepaid units per subscribed SKU, the SKU capability
status, and every group that has members with license assignment errors.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Tuple

from m365_exporter.collector.base import Collector
from m365_exporter.errors import ScrapeError
from m365_exporter.graph import GraphClient, number
from m365_exporter.metrics import NAMESPACE, MetricDescriptor, Observation, build_fq_name

SUBSYSTEM = "license"

# capabilityStatus -> gauge value, anything else is reported as -1
CAPABILITY_STATUSES: Dict[str, float] = {
    "Enabled": 0,
    "Warning": 1,
    "Suspended": 2,
    "Deleted": 3,
    "LockedOut": 4,
}

PREPAID_STATES = ("enabled", "warning", "suspended")


class LicenseCollector(Collector):

    def __init__(self, tenant_id: str, graph: GraphClient):
        super().__init__(SUBSYSTEM)
        self._graph = graph
        tenant = {"tenant": tenant_id}

        self.current_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "current"),
            "current amount of licenses",
            ("license",),
            tenant,
        )
        self.total_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "total"),
            "total amount of licenses",
            ("license", "status"),
            tenant,
        )
        self.status_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "status"),
            "status of licenses",
            ("license",),
            tenant,
        )
        self.group_error_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "group_errors"),
            "groups with assignment errors",
            ("group_name", "group_id", "license"),
            tenant,
        )

    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        return (self.current_desc, self.total_desc, self.status_desc, self.group_error_desc)

    def scrape(self, shutdown: threading.Event) -> List[Observation]:
        skus = self._graph.get_collection("subscribedSkus", shutdown=shutdown)
        groups = self._graph.get_collection(
            "groups",
            params={
                "$count": "false",
                "$filter": "hasMembersWithLicenseErrors eq true",
                "$select": "id,displayName,assignedLicenses",
            },
            headers={"ConsistencyLevel": "eventual"},
            shutdown=shutdown,
        )

        metrics: List[Observation] = []
        for sku in skus:
            part_number = sku.get("skuPartNumber", "")
            status = CAPABILITY_STATUSES.get(sku.get("capabilityStatus", ""), -1)
            prepaid = sku.get("prepaidUnits") or {}
            if not isinstance(prepaid, dict):
                raise ScrapeError(f"unexpected prepaidUnits for {part_number}: expected an object")

            metrics.append(self.status_desc.observe(status, part_number))
            consumed = number(sku.get("consumedUnits"), f"consumedUnits of {part_number}")
            metrics.append(self.current_desc.observe(consumed, part_number))
            for state in PREPAID_STATES:
                units = number(prepaid.get(state, 0), f"prepaidUnits.{state} of {part_number}")
                metrics.append(self.total_desc.observe(units, part_number, state))

            metrics.extend(self._group_errors(sku, part_number, groups))

        return metrics

    def _group_errors(self, sku: Dict[str, Any], part_number: str, groups: List[Dict[str, Any]]) -> List[Observation]:
        metrics = []
        for group in groups:
            assigned_licenses = group.get("assignedLicenses") or []
            if not isinstance(assigned_licenses, list) or not all(isinstance(a, dict) for a in assigned_licenses):
                raise ScrapeError(f"unexpected assignedLicenses for group {group.get('id')!r}")
            for assigned in assigned_licenses:
                if assigned.get("skuId") != sku.get("skuId"):
                    continue

                display_name = group.get("displayName")
                group_id = group.get("id")
                if display_name is None or group_id is None:
                    self.log.warning("group with license assignment errors is missing its display name or id")
                    continue

                metrics.append(self.group_error_desc.observe(1.0, display_name, group_id, part_number))
        return metrics
