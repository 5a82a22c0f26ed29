"""Microsoft Teams collector. Reports member and owner counts per team."""

from __future__ import annotations

import threading
from typing import List, Tuple

from m365_exporter.collector.base import Collector
from m365_exporter.errors import ScrapeError
from m365_exporter.graph import GraphClient, number
from m365_exporter.metrics import NAMESPACE, MetricDescriptor, Observation, build_fq_name

SUBSYSTEM = "teams"


class TeamsCollector(Collector):

    def __init__(self, tenant_id: str, graph: GraphClient):
        super().__init__(SUBSYSTEM)
        self._graph = graph
        tenant = {"tenant": tenant_id}

        self.member_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "team_member_count"),
            "The number of members in the team",
            ("teamName", "teamID"),
            tenant,
        )
        self.owner_desc = MetricDescriptor.new(
            build_fq_name(NAMESPACE, SUBSYSTEM, "team_owner_count"),
            "the number of owners in the team",
            ("teamName", "teamID"),
            tenant,
        )

    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        return (self.member_desc, self.owner_desc)

    def scrape(self, shutdown: threading.Event) -> List[Observation]:
        teams = self._graph.get_collection("teams", params={"$select": "id"}, shutdown=shutdown)

        # one request per team, the list endpoint doesn't return the summary
        metrics: List[Observation] = []
        for listed in teams:
            if shutdown.is_set():
                raise ScrapeError("cancelled while fetching teams", partial=metrics)
            team_id = listed.get("id")
            if not team_id:
                raise ScrapeError("team without id in teams listing", partial=metrics)

            team = self._graph.get_object(f"teams/{team_id}")
            summary = team.get("summary")
            if not isinstance(summary, dict):
                raise ScrapeError(f"team {team_id} has no summary", partial=metrics)

            name = team.get("displayName") or ""
            members = number(summary.get("membersCount"), f"membersCount of team {team_id}")
            owners = number(summary.get("ownersCount"), f"ownersCount of team {team_id}")
            metrics.append(self.member_desc.observe(members, name, team_id))
            metrics.append(self.owner_desc.observe(owners, name, team_id))
        return metrics
