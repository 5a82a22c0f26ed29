"""
Intune device management collector.

Reports device compliance counts, managed devices per operating system and
version, and the expiry of Apple VPP and DEP tokens. The four parts are
fetched independently: one failing doesn't stop the others, but the scrape
as a whole still counts as failed.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Callable, Dict, List, Tuple

import httpx

from m365_exporter.collector.base import Collector
from m365_exporter.errors import ScrapeError
from m365_exporter.graph import GraphClient, number, parse_datetime, value_list
from m365_exporter.metrics import NAMESPACE, MetricDescriptor, Observation, build_fq_name

SUBSYSTEM = "intune"

UNKNOWN = "unknown"

URL_DEP_ONBOARDING_SETTINGS = "https://graph.microsoft.com/beta/deviceManagement/depOnboardingSettings"

# deviceCompliancePolicyDeviceStateSummary field -> `type` label
COMPLIANCE_FIELDS: Dict[str, str] = {
    "compliantDeviceCount": "compliant",
    "nonCompliantDeviceCount": "noncompliant",
    "unknownDeviceCount": "unknown",
    "inGracePeriodCount": "graceperiod",
    "remediatedDeviceCount": "remediated",
    "conflictDeviceCount": "conflict",
    "errorDeviceCount": "error",
    "notApplicableDeviceCount": "notapplicable",
}

# vppToken.state -> gauge value, anything else is unknown (0)
VPP_STATES: Dict[str, float] = {
    "unknown": 0,
    "valid": 1,
    "expired": 2,
    "invalid": 3,
    "assignedToExternalMDM": 4,
}


class IntuneCollector(Collector):

    def __init__(self, tenant_id: str, graph: GraphClient):
        super().__init__(SUBSYSTEM)
        self._graph = graph
        tenant = {"tenant": tenant_id}

        self.compliance_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "device_compliance"),
            "Compliance of devices managed by Intune",
            ("type",),
            tenant,
        )
        self.os_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "device_count"),
            "Device information of devices managed by Intune",
            ("os_name", "os_version"),
            tenant,
        )
        self.vpp_status_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "vpp_status"),
            "Status of Apple VPP tokens (0=unknown, 1=valid, 2=expired, 3=invalid, 4=assigned_to_external_mdm)",
            ("appleId", "organizationName", "id"),
            tenant,
        )
        self.vpp_expiry_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "vpp_expiry"),
            "Expiration timestamp of Apple VPP tokens in Unix timestamp",
            ("appleId", "organizationName", "id"),
            tenant,
        )
        self.dep_expiry_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "dep_token_expiry"),
            "Expiration timestamp of Apple DEP onboarding tokens in Unix timestamp",
            ("appleIdentifier", "id"),
            tenant,
        )

    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        return (
            self.compliance_desc,
            self.os_desc,
            self.vpp_status_desc,
            self.vpp_expiry_desc,
            self.dep_expiry_desc,
        )

    def scrape(self, shutdown: threading.Event) -> List[Observation]:
        parts: List[Tuple[str, Callable[[threading.Event], List[Observation]]]] = [
            ("compliance", self._scrape_compliance),
            ("os", self._scrape_devices),
            ("apple vpp token", self._scrape_vpp_tokens),
            ("apple dep onboarding settings", self._scrape_dep_tokens),
        ]

        metrics: List[Observation] = []
        errors: List[str] = []
        for what, scrape_part in parts:
            if shutdown.is_set():
                raise ScrapeError("cancelled while scraping intune", partial=metrics)
            try:
                metrics.extend(scrape_part(shutdown))
            except (ScrapeError, httpx.HTTPError) as e:
                errors.append(f"error scraping {what} metrics: {e}")

        if errors:
            raise ScrapeError("; ".join(errors), partial=metrics)
        return metrics

    def _scrape_compliance(self, shutdown: threading.Event) -> List[Observation]:
        overview = self._graph.get_object("deviceManagement/managedDeviceOverview")
        enrolled = number(overview.get("enrolledDeviceCount"), "enrolledDeviceCount")
        metrics = [self.compliance_desc.observe(enrolled, "all")]

        summary = self._graph.get_object("deviceManagement/deviceCompliancePolicyDeviceStateSummary")
        for field, label in COMPLIANCE_FIELDS.items():
            metrics.append(self.compliance_desc.observe(number(summary.get(field), field), label))
        return metrics

    def _scrape_devices(self, shutdown: threading.Event) -> List[Observation]:
        devices = self._graph.get_collection("deviceManagement/managedDevices", shutdown=shutdown)

        counts: Counter = Counter()
        for device in devices:
            counts[(device.get("operatingSystem") or UNKNOWN, device.get("osVersion") or UNKNOWN)] += 1

        return [self.os_desc.observe(count, os_name, os_version) for (os_name, os_version), count in counts.items()]

    def _scrape_vpp_tokens(self, shutdown: threading.Event) -> List[Observation]:
        tokens = self._graph.get_collection("deviceAppManagement/vppTokens", shutdown=shutdown)

        metrics = []
        for token in tokens:
            labels = (
                token.get("appleId") or UNKNOWN,
                token.get("organizationName") or UNKNOWN,
                token.get("id") or UNKNOWN,
            )
            expires = token.get("expirationDateTime")
            expiry = parse_datetime(expires).timestamp() if expires else 0.0

            metrics.append(self.vpp_status_desc.observe(VPP_STATES.get(token.get("state") or "", 0), *labels))
            metrics.append(self.vpp_expiry_desc.observe(expiry, *labels))
        return metrics

    def _scrape_dep_tokens(self, shutdown: threading.Event) -> List[Observation]:
        payload = self._graph.get_object(URL_DEP_ONBOARDING_SETTINGS)

        metrics = []
        for setting in value_list(payload, "depOnboardingSettings"):
            expires = setting.get("tokenExpirationDateTime")
            expiry = parse_datetime(expires).timestamp() if expires else 0.0
            metrics.append(self.dep_expiry_desc.observe(
                expiry,
                setting.get("appleIdentifier", ""),
                setting.get("id", ""),
            ))
        return metrics
