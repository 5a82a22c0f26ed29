"""Microsoft Secure Score collector. Reports the latest current and max score."""

from __future__ import annotations

import threading
from typing import List, Tuple

from m365_exporter.collector.base import Collector
from m365_exporter.graph import GraphClient, number, value_list
from m365_exporter.metrics import NAMESPACE, MetricDescriptor, Observation, build_fq_name

SUBSYSTEM = "securescore"


class SecureScoreCollector(Collector):

    def __init__(self, tenant_id: str, graph: GraphClient):
        super().__init__(SUBSYSTEM)
        self._graph = graph
        tenant = {"tenant": tenant_id}

        self.max_score = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "max"),
            "The maximum achievable secure score",
            const_labels=tenant,
        )
        self.cur_score = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "current"),
            "Currently achieved secure score",
            const_labels=tenant,
        )

    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        return (self.max_score, self.cur_score)

    def scrape(self, shutdown: threading.Event) -> List[Observation]:
        payload = self._graph.get_object("security/secureScores", params={"$top": 1})
        scores = value_list(payload, "secureScores")

        metrics = []
        for score in scores:
            if score.get("maxScore") is not None:
                metrics.append(self.max_score.observe(number(score["maxScore"], "maxScore")))
            if score.get("currentScore") is not None:
                metrics.append(self.cur_score.observe(number(score["currentScore"], "currentScore")))
        return metrics
