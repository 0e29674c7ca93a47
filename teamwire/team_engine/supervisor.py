"""Worker lifecycle supervision.

Owns every execution context backing a teammate: tmux panes for isolated
members and in-process worker threads for embedded ones. Nothing else in
the engine starts or kills processes.
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple

from .agent import MemberAgent
from .errors import PREREQUISITE_MISSING, SPAWN_FAILED, TeamEngineError
from .models import Member
from .protocol import ExecutionMode, sanitize_name
from .tmux_orchestrator import TmuxError, TmuxOrchestrator
from .worker import TeammateWorker

logger = logging.getLogger(__name__)

DEFAULT_WORKER_COMMAND = (sys.executable, "-m", "teamwire", "worker")


@dataclass
class LeaderContext:
    """What a spawned teammate needs to find its team and reply to the leader."""

    team_name: str
    project_root: str
    leader_process_id: str = ""
    leader_session: str = ""
    team_store_dir: str = ".teams"
    task_store_dir: str = ".tasks"
    extra_env: Dict[str, str] = field(default_factory=dict)


class ProcessSupervisor:
    def __init__(
        self,
        mailbox,
        task_board,
        orchestrator: Optional[TmuxOrchestrator] = None,
        worker_command: Optional[Sequence[str]] = None,
        poll_interval_s: float = 0.2,
        agent_factory: Optional[Callable[..., MemberAgent]] = None,
        join_timeout_s: float = 2.0,
    ):
        self.mailbox = mailbox
        self.task_board = task_board
        self.orchestrator = orchestrator or TmuxOrchestrator()
        self.worker_command = list(worker_command or DEFAULT_WORKER_COMMAND)
        self.poll_interval_s = poll_interval_s
        self.join_timeout_s = join_timeout_s
        self._agent_factory = agent_factory or MemberAgent
        self._workers: Dict[Tuple[str, str], TeammateWorker] = {}
        self._workers_lock = threading.Lock()

    def check_prerequisites(self, mode: ExecutionMode) -> None:
        """Fail fast, before any registry or mailbox state exists."""
        if mode != ExecutionMode.ISOLATED:
            return
        if not self.orchestrator.is_installed():
            raise TeamEngineError(
                PREREQUISITE_MISSING,
                f"isolated execution needs tmux ({self.orchestrator.tmux_bin}) but it is not available",
            )

    def spawn(self, member: Member, ctx: LeaderContext) -> Optional[str]:
        if member.execution_mode == ExecutionMode.ISOLATED:
            return self._spawn_isolated(member, ctx)
        self._spawn_embedded(member, ctx)
        return None

    def _spawn_isolated(self, member: Member, ctx: LeaderContext) -> str:
        session = ctx.leader_session or self.orchestrator.session_name(ctx.team_name)
        env = {
            "TEAMWIRE_ROOT": ctx.project_root,
            "TEAMWIRE_TEAM": ctx.team_name,
            "TEAMWIRE_MEMBER": member.id,
            "TEAMWIRE_ROLE": member.role_type,
            "TEAMWIRE_MODEL_CLASS": member.model_class,
            "TEAMWIRE_LEADER_SESSION": session,
            "TEAMWIRE_LEADER_PID": ctx.leader_process_id,
            "TEAMWIRE_TEAM_STORE_DIR": ctx.team_store_dir,
            "TEAMWIRE_TASK_STORE_DIR": ctx.task_store_dir,
            **ctx.extra_env,
        }
        command = self.worker_command + [
            "--root", ctx.project_root,
            "--team", ctx.team_name,
            "--member", member.id,
        ]
        try:
            self.orchestrator.ensure_session(session)
            pane_id = self.orchestrator.spawn_pane(session, command, env=env, title=member.id)
        except TmuxError as exc:
            raise TeamEngineError(SPAWN_FAILED, f"could not start {ctx.team_name}/{member.id}: {exc}") from exc
        logger.info("Spawned isolated member %s/%s in pane %s", ctx.team_name, member.id, pane_id)
        return pane_id

    def _spawn_embedded(self, member: Member, ctx: LeaderContext) -> None:
        key = (sanitize_name(ctx.team_name), member.id)
        with self._workers_lock:
            existing = self._workers.get(key)
            if existing and existing.is_alive():
                return
            agent = self._agent_factory(
                mailbox=self.mailbox,
                task_board=self.task_board,
                team_name=ctx.team_name,
                member_id=member.id,
            )
            worker = TeammateWorker(
                team_name=key[0],
                member_id=member.id,
                poll_fn=agent.poll_once,
                should_exit=lambda: agent.stop_requested,
                poll_interval_s=self.poll_interval_s,
            )
            worker.start()
            self._workers[key] = worker
        logger.info("Spawned embedded member %s/%s", key[0], member.id)

    def is_alive(self, team_name: str, member_id: str, handle: Optional[str] = None) -> bool:
        """Never raises; unknown or vanished contexts are simply not alive."""
        if handle:
            try:
                return self.orchestrator.pane_exists(handle)
            except Exception as exc:  # a broken tmux server means the pane is gone
                logger.debug("Liveness check for pane %s failed: %s", handle, exc)
                return False
        worker = self._workers.get((sanitize_name(team_name), sanitize_name(member_id)))
        return bool(worker and worker.is_alive())

    def terminate(self, team_name: str, member_id: str, handle: Optional[str] = None) -> None:
        """Idempotent: terminating something already gone is a no-op."""
        if handle:
            killed = self.orchestrator.kill_pane(handle)
            logger.info("Terminate pane %s for %s/%s (killed=%s)", handle, team_name, member_id, killed)
            return
        key = (sanitize_name(team_name), sanitize_name(member_id))
        with self._workers_lock:
            worker = self._workers.pop(key, None)
        if worker is None:
            return
        worker.stop()
        if worker is not threading.current_thread() and not worker.wait_stopped(timeout=self.join_timeout_s):
            logger.warning("Embedded member %s/%s did not stop within %.1fs", key[0], key[1], self.join_timeout_s)
        logger.info("Terminated embedded member %s/%s", key[0], key[1])

    def list_panes(self) -> Dict[str, Dict[str, str]]:
        try:
            return self.orchestrator.list_panes()
        except Exception as exc:
            logger.debug("Listing tmux panes failed: %s", exc)
            return {}

    def stop_team(self, team_name: str, own_session: bool = False) -> None:
        """Stop leftover embedded workers; with ``own_session`` also drop the team's tmux session."""
        team = sanitize_name(team_name)
        for w_team, member in list(self._workers):
            if w_team == team:
                self.terminate(w_team, member)
        if own_session:
            self.orchestrator.cleanup_session(self.orchestrator.session_name(team))
