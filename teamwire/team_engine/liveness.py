"""Read-side liveness classification of team members.

Classification is advisory. Nothing here touches the registry except the
explicitly invoked :meth:`LivenessMonitor.reconcile`.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List

from .models import LivenessReport, Member
from .protocol import PANE_TITLE_PREFIX, LivenessState

logger = logging.getLogger(__name__)

ACTIVE_THRESHOLD_S = 5 * 60
STALE_THRESHOLD_S = 60 * 60


class LivenessMonitor:
    def __init__(
        self,
        team_store,
        mailbox,
        supervisor,
        active_threshold_s: float = ACTIVE_THRESHOLD_S,
        stale_threshold_s: float = STALE_THRESHOLD_S,
        clock: Callable[[], float] = time.time,
    ):
        if stale_threshold_s < active_threshold_s:
            raise ValueError("stale threshold must not be shorter than the active threshold")
        self.team_store = team_store
        self.mailbox = mailbox
        self.supervisor = supervisor
        self.active_threshold_s = float(active_threshold_s)
        self.stale_threshold_s = float(stale_threshold_s)
        self._clock = clock

    def classify(self, team_name: str, member: Member) -> LivenessReport:
        if not member.is_active:
            return LivenessReport(member=member.id, state=LivenessState.INACTIVE)

        alive = self.supervisor.is_alive(team_name, member.id, member.process_handle)
        last = self.mailbox.last_authored_at(team_name, member.id)
        if last is None:
            last = member.joined_at
        if not alive:
            return LivenessReport(
                member=member.id,
                state=LivenessState.OFFLINE,
                process_alive=False,
                last_activity=last,
                warning=f"{member.id} is marked active but its execution context is gone",
            )

        age = max(0.0, self._clock() - last)
        if age < self.active_threshold_s:
            state = LivenessState.ACTIVE
        elif age < self.stale_threshold_s:
            state = LivenessState.IDLE
        else:
            state = LivenessState.STALE
        return LivenessReport(member=member.id, state=state, process_alive=True, last_activity=last)

    def team_report(self, team_name: str) -> List[LivenessReport]:
        team = self.team_store.read_team(team_name)
        reports = [self.classify(team.name, member) for member in team.members]
        for report in reports:
            if report.state == LivenessState.OFFLINE:
                logger.warning("Consistency fault in team %s: %s", team.name, report.warning)
        return reports

    def reconcile(self, team_name: str) -> List[str]:
        """Deactivate every member classified Offline; returns their ids."""
        deactivated: List[str] = []
        for report in self.team_report(team_name):
            if report.state != LivenessState.OFFLINE:
                continue
            self.team_store.deactivate_member(team_name, report.member)
            logger.warning("Reconciled offline member %s/%s to inactive", team_name, report.member)
            deactivated.append(report.member)
        return deactivated

    def find_orphan_panes(self) -> List[str]:
        """Teammate panes that no active member of any team references."""
        referenced = set()
        for name in self.team_store.list_teams():
            for member in self.team_store.read_team(name).active_members():
                if member.process_handle:
                    referenced.add(member.process_handle)

        orphans: List[str] = []
        for pane_id, info in sorted(self.supervisor.list_panes().items()):
            if pane_id in referenced:
                continue
            if not str(info.get("title") or "").startswith(PANE_TITLE_PREFIX):
                continue
            orphans.append(pane_id)
        return orphans

    def kill_orphan_panes(self) -> List[str]:
        killed: List[str] = []
        for pane_id in self.find_orphan_panes():
            if self.supervisor.orchestrator.kill_pane(pane_id):
                logger.warning("Killed orphan pane %s", pane_id)
                killed.append(pane_id)
        return killed
