"""
Exchange Online mail flow collector.

Runs Get-MailFlowStatusReport through the Exchange admin REST API and
reports message counts for the most recent complete day. Today's rows are
skipped because the numbers are still moving.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from m365_exporter.collector.base import Collector
from m365_exporter.graph import GraphClient, number, parse_datetime, value_list
from m365_exporter.metrics import NAMESPACE, MetricDescriptor, Observation, build_fq_name

SUBSYSTEM = "exchange"

EXCHANGE_ADMIN_API = "https://outlook.office365.com/adminapi/beta/{tenant}/InvokeCommand"

MAILFLOW_COMMAND = {"CmdletInput": {"CmdletName": "Get-MailFlowStatusReport"}}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExchangeCollector(Collector):

    def __init__(self, tenant_id: str, graph: GraphClient, now: Callable[[], datetime] = _utcnow):
        super().__init__(SUBSYSTEM)
        self._graph = graph
        self._now = now
        self._url = EXCHANGE_ADMIN_API.format(tenant=tenant_id)

        self.mailflow_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "mailflow_messages"),
            "Number of messages in the mail flow",
            ("organization", "direction", "event_type"),
            {"tenant": tenant_id},
        )

    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        return (self.mailflow_desc,)

    def scrape(self, shutdown: threading.Event) -> List[Observation]:
        payload = self._graph.post_object(self._url, json=MAILFLOW_COMMAND)
        rows = [(parse_datetime(row.get("Date") or ""), row) for row in value_list(payload, "mail flow report")]

        cutoff = self._now() - timedelta(hours=24)
        latest: Optional[datetime] = None
        for date, _ in rows:
            if date > cutoff:
                continue
            if latest is None or date > latest:
                latest = date

        if latest is None:
            self.log.debug("no complete mail flow day in report (%d rows)", len(rows))
            return []

        return [
            self.mailflow_desc.observe(
                number(row.get("MessageCount", 0), "MessageCount"),
                row.get("Organization", ""),
                row.get("Direction", ""),
                row.get("EventType", ""),
            )
            for date, row in rows
            if date == latest
        ]
