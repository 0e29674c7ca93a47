"""Leader-side facade over the team engine stores and services."""

from __future__ import annotations

import logging
import os
import shlex
import time
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

from teamwire.config import Config

from .display_mode import resolve_execution_mode
from .errors import DUPLICATE_MEMBER, INVALID_PARAM, NOT_FOUND, SPAWN_FAILED, TeamEngineError
from .liveness import LivenessMonitor
from .locks import DirLock
from .mailbox import MailboxStore
from .models import LivenessReport, MailboxEntry, Member, ShutdownOutcome, Task, TaskGraph, Team
from .protocol import LEADER_MAILBOX, RESERVED_MEMBER_NAMES, MessageKind, TaskStatus, sanitize_name
from .shutdown import ShutdownCoordinator
from .store import TeamStore
from .supervisor import LeaderContext, ProcessSupervisor
from .task_board_store import TaskBoardStore
from .tmux_orchestrator import TmuxOrchestrator

logger = logging.getLogger(__name__)


class TeamManager:
    """Everything the leader does goes through here.

    No view is cached: every read goes back to the stores, so several
    managers (or a manager and the CLI) can share one project root.
    """

    def __init__(
        self,
        project_root: Optional[str] = None,
        config: Optional[Config] = None,
        orchestrator: Optional[TmuxOrchestrator] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        leader_process_id: Optional[str] = None,
        leader_session: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or Config.from_env()
        root = project_root or self.config.root_dir
        self.store = TeamStore(
            project_root=root,
            team_store_dir=self.config.team_store_dir,
            task_store_dir=self.config.task_store_dir,
            lock_timeout_s=self.config.lock_timeout_s,
            lock_stale_s=self.config.lock_stale_s,
        )
        self.mailbox = MailboxStore(
            self.store,
            lock=DirLock(timeout_s=self.config.lock_timeout_s, stale_s=self.config.lock_stale_s),
        )
        self.task_board = TaskBoardStore(
            project_root=root,
            task_store_dir=self.config.task_store_dir,
            mailbox=self.mailbox,
            lock_timeout_s=self.config.lock_timeout_s,
            lock_stale_s=self.config.lock_stale_s,
        )
        worker_command = shlex.split(self.config.worker_command) if self.config.worker_command else None
        self.supervisor = supervisor or ProcessSupervisor(
            self.mailbox,
            self.task_board,
            orchestrator=orchestrator or TmuxOrchestrator(tmux_bin=self.config.tmux_bin),
            worker_command=worker_command,
            poll_interval_s=self.config.poll_interval_s,
        )
        self.liveness = LivenessMonitor(
            self.store,
            self.mailbox,
            self.supervisor,
            active_threshold_s=self.config.active_threshold_s,
            stale_threshold_s=self.config.stale_threshold_s,
            clock=clock,
        )
        self.shutdown = ShutdownCoordinator(
            self.store,
            self.mailbox,
            self.supervisor,
            poll_interval_s=self.config.poll_interval_s,
            member_timeout_s=self.config.member_shutdown_timeout_s,
            team_timeout_s=self.config.team_shutdown_timeout_s,
            sleep=sleep,
        )
        self.leader_process_id = str(leader_process_id or os.getpid())
        if leader_session is None:
            leader_session = self.supervisor.orchestrator.current_session() or ""
        self.leader_session = leader_session
        self._sleep = sleep

    # Team lifecycle

    def create_team(self, team_name: str, description: str = "") -> Team:
        team = self.store.create_team(
            team_name,
            description=description,
            leader_process_id=self.leader_process_id,
            leader_session=self.leader_session,
        )
        self.mailbox.init_mailbox(team.name, LEADER_MAILBOX)
        return team

    def add_member(
        self,
        team_name: str,
        name: str,
        role_type: str = "worker",
        model_class: str = "",
        execution_mode: Optional[str] = None,
    ) -> Member:
        """Register, spawn and activate one member.

        Precondition faults and the prerequisite check run before any state
        is written. A spawn that raises or dies within the grace period is
        rolled back and reported as SPAWN_FAILED.
        """
        team = self.store.read_team(team_name)
        member_id = sanitize_name(name)
        if member_id in RESERVED_MEMBER_NAMES:
            raise TeamEngineError(INVALID_PARAM, f"member name is reserved: {member_id}")
        if team.get_member(member_id) is not None:
            raise TeamEngineError(DUPLICATE_MEMBER, f"duplicate member in {team.name}: {member_id}")

        mode, note = resolve_execution_mode(execution_mode or self.config.execution_mode, self.config.tmux_bin)
        if note:
            logger.info("Member %s/%s: %s", team.name, member_id, note)
        self.supervisor.check_prerequisites(mode)

        member = self.store.add_member(
            team.name,
            {"name": name, "role_type": role_type, "model_class": model_class, "execution_mode": mode},
        )
        self.mailbox.init_mailbox(team.name, member.id)
        ctx = LeaderContext(
            team_name=team.name,
            project_root=str(self.store.project_root),
            leader_process_id=team.leader_process_id,
            leader_session=team.leader_session,
            team_store_dir=self.store.team_store_dir,
            task_store_dir=self.store.task_store_dir,
        )

        try:
            handle = self.supervisor.spawn(member, ctx)
        except Exception as exc:
            self._rollback_member(team.name, member.id)
            if isinstance(exc, TeamEngineError) and exc.code == SPAWN_FAILED:
                raise
            raise TeamEngineError(SPAWN_FAILED, f"could not start {team.name}/{member.id}: {exc}") from exc

        if self.config.spawn_grace_s > 0:
            self._sleep(self.config.spawn_grace_s)
        if not self.supervisor.is_alive(team.name, member.id, handle):
            self.supervisor.terminate(team.name, member.id, handle)
            self._rollback_member(team.name, member.id)
            raise TeamEngineError(
                SPAWN_FAILED,
                f"{team.name}/{member.id} exited within {self.config.spawn_grace_s:.1f}s of starting",
            )

        member = self.store.activate_member(team.name, member.id, handle)
        logger.info(
            "Member %s/%s joined (%s%s)",
            team.name,
            member.id,
            member.execution_mode.value,
            f", pane {handle}" if handle else "",
        )
        return member

    def delete_team(self, team_name: str) -> None:
        team = self.store.read_team(team_name)
        self.store.delete_team(team.name)
        # Inactive embedded members may still be winding down.
        self.supervisor.stop_team(team.name, own_session=not team.leader_session)

    def teardown_team(
        self,
        team_name: str,
        timeout_s: Optional[float] = None,
        force: bool = False,
    ) -> List[ShutdownOutcome]:
        outcomes = self.shutdown.shutdown_team(team_name, timeout_s=timeout_s, force=force)
        self.delete_team(team_name)
        return outcomes

    def cleanup_leader_session(self, leader_process_id: Optional[str] = None) -> List[str]:
        """Force down and delete every team led by ``leader_process_id``.

        Used when a leader session ends without tearing its teams down.
        """
        leader = str(leader_process_id or self.leader_process_id)
        removed: List[str] = []
        for name in self.store.list_teams():
            try:
                team = self.store.read_team(name)
            except TeamEngineError as exc:
                logger.warning("Skipping team %s during leader cleanup: %s", name, exc.message)
                continue
            if team.leader_process_id != leader:
                continue
            for member in team.active_members():
                self.shutdown.force_shutdown(name, member.id, reason="leader session ended")
            self.delete_team(name)
            removed.append(name)
        if removed:
            logger.info("Cleaned up %d team(s) of leader %s: %s", len(removed), leader, ", ".join(removed))
        return removed

    # Messaging

    def send_message(
        self,
        team_name: str,
        recipient: str,
        body: str,
        summary: str = "",
        sender: str = LEADER_MAILBOX,
        kind: MessageKind | str = MessageKind.MESSAGE,
    ) -> List[MailboxEntry]:
        return self.mailbox.send(team_name, sender, recipient, kind=kind, body=body, summary=summary)

    def receive(self, team_name: str, member: str = LEADER_MAILBOX) -> List[MailboxEntry]:
        return self.mailbox.receive(team_name, member)

    def peek_recent(self, team_name: str, member: str = LEADER_MAILBOX, n: int = 5) -> List[MailboxEntry]:
        return self.mailbox.peek_recent(team_name, member, n)

    # Tasks

    def create_task(
        self,
        team_name: str,
        subject: str,
        description: str = "",
        owner: Optional[str] = None,
        blocked_by: Optional[List[str]] = None,
        blocks: Optional[List[str]] = None,
        priority: str = "medium",
    ) -> Task:
        team = self.store.read_team(team_name)
        self._require_owner(team, owner)
        return self.task_board.create_task(
            team.name,
            subject,
            description=description,
            owner=owner,
            blocked_by=blocked_by,
            blocks=blocks,
            priority=priority,
        )

    def add_dependency(self, team_name: str, task_id: str, blocked_by: List[str]) -> Task:
        team = self.store.read_team(team_name)
        return self.task_board.add_dependency(team.name, task_id, blocked_by)

    def transition_task(self, team_name: str, task_id: str, status: TaskStatus | str) -> Task:
        team = self.store.read_team(team_name)
        return self.task_board.transition(team.name, task_id, status)

    def assign_task(self, team_name: str, task_id: str, owner: Optional[str]) -> Task:
        team = self.store.read_team(team_name)
        self._require_owner(team, owner)
        return self.task_board.assign(team.name, task_id, owner)

    def list_tasks(
        self,
        team_name: str,
        status: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> List[Task]:
        team = self.store.read_team(team_name)
        return self.task_board.list_tasks(team.name, status=status, owner=owner)

    def list_blockers(self, team_name: str, task_id: str) -> List[Task]:
        team = self.store.read_team(team_name)
        return self.task_board.list_blockers(team.name, task_id)

    def dependency_graph(self, team_name: str) -> TaskGraph:
        team = self.store.read_team(team_name)
        return self.task_board.dependency_graph(team.name)

    def find_cycles(self, team_name: str) -> List[List[str]]:
        """Cycles in the stored graph; only a hand-edited store can hold one."""
        team = self.store.read_team(team_name)
        return self.task_board.find_cycles(team.name)

    # Shutdown

    def request_shutdown(self, team_name: str, member_id: str, timeout_s: Optional[float] = None) -> ShutdownOutcome:
        return self.shutdown.request_shutdown(team_name, member_id, timeout_s=timeout_s)

    def force_shutdown(self, team_name: str, member_id: str, reason: str = "") -> ShutdownOutcome:
        return self.shutdown.force_shutdown(team_name, member_id, reason=reason)

    def shutdown_team(
        self,
        team_name: str,
        timeout_s: Optional[float] = None,
        force: bool = False,
    ) -> List[ShutdownOutcome]:
        return self.shutdown.shutdown_team(team_name, timeout_s=timeout_s, force=force)

    # Observation

    def liveness_report(self, team_name: str) -> List[LivenessReport]:
        return self.liveness.team_report(team_name)

    def reconcile(self, team_name: str) -> List[str]:
        return self.liveness.reconcile(team_name)

    def find_orphan_panes(self) -> List[str]:
        return self.liveness.find_orphan_panes()

    def kill_orphan_panes(self) -> List[str]:
        return self.liveness.kill_orphan_panes()

    def get_status(self, team_name: str) -> Dict[str, Any]:
        team = self.store.read_team(team_name)
        reports = {r.member: r for r in self.liveness.team_report(team.name)}
        tasks = self.task_board.list_tasks(team.name)
        status_counts = Counter(t.status.value for t in tasks)

        members = []
        for member in team.members:
            report = reports.get(member.id)
            members.append(
                {
                    **member.model_dump(mode="json"),
                    "liveness": report.state.value if report else None,
                    "last_activity": report.last_activity if report else None,
                    "unread": self._unread(team.name, member.id),
                    "open_tasks": sum(
                        1
                        for t in tasks
                        if t.owner == member.id and t.status in {TaskStatus.PENDING, TaskStatus.IN_PROGRESS}
                    ),
                }
            )

        return {
            "team_name": team.name,
            "description": team.description,
            "created_at": team.created_at,
            "leader_process_id": team.leader_process_id,
            "members": members,
            "leader_unread": self._unread(team.name, LEADER_MAILBOX),
            "task_counts": {s.value: status_counts.get(s.value, 0) for s in TaskStatus},
            "ready_tasks": [t.id for t in self.task_board.ready_tasks(team.name)],
            "warnings": [r.warning for r in reports.values() if r.warning],
        }

    def _unread(self, team_name: str, member: str) -> int:
        return sum(1 for e in self.mailbox.read_all(team_name, member) if not e.delivered)

    def _require_owner(self, team: Team, owner: Optional[str]) -> None:
        if not str(owner or "").strip():
            return
        owner_id = sanitize_name(owner)
        if team.get_member(owner_id) is None:
            raise TeamEngineError(NOT_FOUND, f"owner not in team {team.name}: {owner_id}")

    def _rollback_member(self, team_name: str, member_id: str) -> None:
        self.mailbox.delete_mailbox(team_name, member_id)
        self.store.remove_member(team_name, member_id)
        logger.warning("Rolled back member %s/%s after a failed spawn", team_name, member_id)
