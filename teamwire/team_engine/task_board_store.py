"""File-based task graph store.

One JSON file per task under ``<root>/<task_store_dir>/<team>/``, so status
tooling can scan a team's tasks without the registry. Graph edits (cycle
check) and the completion fan-out are serialized by one board lock per team;
different teams never contend.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from .errors import (
    CYCLE_DETECTED,
    INVALID_PARAM,
    INVALID_TRANSITION,
    NOT_FOUND,
    STILL_BLOCKED,
    TeamEngineError,
)
from .locks import DirLock
from .models import Task, TaskGraph
from .protocol import (
    LEADER_MAILBOX,
    TASK_BOARD_SENDER,
    MessageKind,
    TaskPriority,
    TaskStatus,
    can_transition,
    parse_enum,
    sanitize_name,
)

logger = logging.getLogger(__name__)


def _depends_on(blocked_by: Dict[str, Set[str]], start: str, target: str) -> bool:
    """True when ``start`` transitively waits on ``target``."""
    stack = [start]
    seen: Set[str] = set()
    while stack:
        node = stack.pop()
        if node == target:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(blocked_by.get(node, ()))
    return False


class TaskBoardStore:
    def __init__(
        self,
        project_root: str | Path,
        task_store_dir: str = ".tasks",
        mailbox=None,
        lock_timeout_s: float = 3.0,
        lock_stale_s: float = 30.0,
        lock_retry_interval_s: float = 0.01,
    ):
        self.project_root = Path(project_root).resolve()
        self.task_store_dir = task_store_dir
        self.tasks_root = (self.project_root / self.task_store_dir).resolve()
        self.tasks_root.mkdir(parents=True, exist_ok=True)
        self.mailbox = mailbox
        self._lock = DirLock(
            timeout_s=lock_timeout_s,
            stale_s=lock_stale_s,
            retry_interval_s=lock_retry_interval_s,
        )

    def _team_dir(self, team_name: str) -> Path:
        return self.tasks_root / sanitize_name(team_name)

    def _task_path(self, team_name: str, task_id: str) -> Path:
        return self._team_dir(team_name) / f"task_{task_id}.json"

    def _lock_path(self, team_name: str) -> Path:
        return self._team_dir(team_name) / ".board.lock"

    def _board_lock(self, team_name: str):
        self._team_dir(team_name).mkdir(parents=True, exist_ok=True)
        return self._lock.hold(self._lock_path(team_name))

    def _load_all(self, team_name: str) -> Dict[str, Task]:
        team_dir = self._team_dir(team_name)
        if not team_dir.exists():
            return {}
        tasks: Dict[str, Task] = {}
        for path in team_dir.glob("task_*.json"):
            task = Task.model_validate(json.loads(path.read_text(encoding="utf-8")))
            tasks[task.id] = task
        return tasks

    def _write_task(self, task: Task) -> None:
        path = self._task_path(task.team, task.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(task.model_dump(mode="json"), ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)

    def _require(self, tasks: Dict[str, Task], task_id: str, what: str = "task") -> Task:
        task = tasks.get(str(task_id))
        if task is None:
            raise TeamEngineError(NOT_FOUND, f"{what} not found: {task_id}")
        return task

    @staticmethod
    def _check_edges(tasks: Dict[str, Task], edges: Iterable[tuple[str, str]]) -> None:
        """Reject edges (dependent, blocker) that would close a cycle.

        Works on a copy of the graph so a rejected request leaves the store
        untouched.
        """
        graph: Dict[str, Set[str]] = {tid: set(t.blocked_by) for tid, t in tasks.items()}
        for dependent, blocker in edges:
            if dependent == blocker or _depends_on(graph, blocker, dependent):
                raise TeamEngineError(
                    CYCLE_DETECTED,
                    f"dependency {dependent} -> {blocker} would create a cycle",
                )
            graph.setdefault(dependent, set()).add(blocker)

    def create_task(
        self,
        team_name: str,
        subject: str,
        description: str = "",
        owner: Optional[str] = None,
        blocked_by: Optional[List[str]] = None,
        blocks: Optional[List[str]] = None,
        priority: TaskPriority | str = TaskPriority.MEDIUM,
    ) -> Task:
        team = sanitize_name(team_name)
        if not isinstance(subject, str) or not subject.strip():
            raise TeamEngineError(INVALID_PARAM, "subject is required")
        task_priority = parse_enum(TaskPriority, priority, "priority")
        owner_id = sanitize_name(owner) if str(owner or "").strip() else None

        with self._board_lock(team):
            tasks = self._load_all(team)
            blocker_ids = list(dict.fromkeys(str(x) for x in (blocked_by or [])))
            blocked_ids = list(dict.fromkeys(str(x) for x in (blocks or [])))
            for tid in blocker_ids:
                self._require(tasks, tid, "blocker task")
            for tid in blocked_ids:
                dependent = self._require(tasks, tid, "blocked task")
                if dependent.status != TaskStatus.PENDING:
                    raise TeamEngineError(
                        INVALID_PARAM,
                        f"task {tid} is {dependent.status.value}; only pending tasks can gain blockers",
                    )

            task = Task(
                team=team,
                subject=subject.strip(),
                description=str(description or ""),
                owner=owner_id,
                priority=task_priority,
                blocked_by=blocker_ids,
                blocks=blocked_ids,
            )
            edges = [(task.id, b) for b in blocker_ids] + [(d, task.id) for d in blocked_ids]
            self._check_edges({**tasks, task.id: task.model_copy(update={"blocked_by": []})}, edges)

            now = time.time()
            self._write_task(task)
            for tid in blocker_ids:
                blocker = tasks[tid]
                if task.id not in blocker.blocks:
                    blocker.blocks.append(task.id)
                    blocker.updated_at = now
                    self._write_task(blocker)
            for tid in blocked_ids:
                dependent = tasks[tid]
                if task.id not in dependent.blocked_by:
                    dependent.blocked_by.append(task.id)
                    dependent.updated_at = now
                    self._write_task(dependent)

        logger.info("Created task %s (%s) in %s owner=%s", task.id, task.subject, team, owner_id or "-")
        if owner_id:
            self._notify(
                team,
                owner_id,
                MessageKind.TASK_ASSIGNMENT,
                body=f"Task assigned: {task.subject}",
                summary=task.subject,
                task_id=task.id,
            )
        return task

    def add_dependency(self, team_name: str, task_id: str, blocked_by: List[str]) -> Task:
        team = sanitize_name(team_name)
        with self._board_lock(team):
            tasks = self._load_all(team)
            task = self._require(tasks, task_id)
            if task.status != TaskStatus.PENDING:
                raise TeamEngineError(
                    INVALID_PARAM,
                    f"task {task.id} is {task.status.value}; only pending tasks can gain blockers",
                )
            new_blockers = [str(b) for b in dict.fromkeys(blocked_by or []) if str(b) not in task.blocked_by]
            for tid in new_blockers:
                self._require(tasks, tid, "blocker task")
            self._check_edges(tasks, [(task.id, b) for b in new_blockers])

            now = time.time()
            for tid in new_blockers:
                blocker = tasks[tid]
                if task.id not in blocker.blocks:
                    blocker.blocks.append(task.id)
                    blocker.updated_at = now
                    self._write_task(blocker)
            task.blocked_by.extend(new_blockers)
            task.updated_at = now
            self._write_task(task)
            return task

    def transition(self, team_name: str, task_id: str, new_status: TaskStatus | str) -> Task:
        team = sanitize_name(team_name)
        target = parse_enum(TaskStatus, new_status, "task status")
        with self._board_lock(team):
            tasks = self._load_all(team)
            task = self._require(tasks, task_id)
            if not can_transition(task.status, target):
                raise TeamEngineError(
                    INVALID_TRANSITION,
                    f"task {task.id} cannot move from {task.status.value} to {target.value}",
                )
            if target == TaskStatus.IN_PROGRESS:
                open_blockers = [
                    tid for tid in task.blocked_by
                    if tid not in tasks or tasks[tid].status != TaskStatus.COMPLETED
                ]
                if open_blockers:
                    raise TeamEngineError(
                        STILL_BLOCKED,
                        f"task {task.id} is blocked by: {', '.join(open_blockers)}",
                    )

            now = time.time()
            task.status = target
            task.updated_at = now
            if target == TaskStatus.IN_PROGRESS:
                task.started_at = now
            elif target in {TaskStatus.COMPLETED, TaskStatus.CANCELLED}:
                task.completed_at = now
            self._write_task(task)
            logger.info("Task %s in %s -> %s", task.id, team, target.value)

            if target == TaskStatus.COMPLETED:
                self._notify_dependents(team, task, tasks)
            return task

    def assign(self, team_name: str, task_id: str, owner: Optional[str]) -> Task:
        team = sanitize_name(team_name)
        owner_id = sanitize_name(owner) if str(owner or "").strip() else None
        with self._board_lock(team):
            tasks = self._load_all(team)
            task = self._require(tasks, task_id)
            if task.status in {TaskStatus.COMPLETED, TaskStatus.CANCELLED}:
                raise TeamEngineError(
                    INVALID_TRANSITION,
                    f"task {task.id} is {task.status.value} and cannot be reassigned",
                )
            task.owner = owner_id
            task.updated_at = time.time()
            self._write_task(task)
        if owner_id:
            self._notify(
                team,
                owner_id,
                MessageKind.TASK_ASSIGNMENT,
                body=f"Task assigned: {task.subject}",
                summary=task.subject,
                task_id=task.id,
            )
        return task

    def get_task(self, team_name: str, task_id: str) -> Task:
        path = self._task_path(sanitize_name(team_name), str(task_id))
        if not path.exists():
            raise TeamEngineError(NOT_FOUND, f"task not found: {task_id}")
        return Task.model_validate(json.loads(path.read_text(encoding="utf-8")))

    def list_tasks(
        self,
        team_name: str,
        status: Optional[TaskStatus | str] = None,
        owner: Optional[str] = None,
    ) -> List[Task]:
        wanted = parse_enum(TaskStatus, status, "task status") if status else None
        owner_id = sanitize_name(owner) if owner else None
        rows = []
        for task in self._load_all(sanitize_name(team_name)).values():
            if wanted is not None and task.status != wanted:
                continue
            if owner_id is not None and task.owner != owner_id:
                continue
            rows.append(task)
        rows.sort(key=lambda t: (t.created_at, t.id))
        return rows

    def list_blockers(self, team_name: str, task_id: str) -> List[Task]:
        """Immediate blocking set only; see :meth:`blocker_chain` for the closure."""
        tasks = self._load_all(sanitize_name(team_name))
        task = self._require(tasks, task_id)
        return [tasks[tid] for tid in task.blocked_by if tid in tasks]

    def blocker_chain(self, team_name: str, task_id: str) -> List[Task]:
        tasks = self._load_all(sanitize_name(team_name))
        root = self._require(tasks, task_id)
        chain: List[Task] = []
        seen: Set[str] = {root.id}
        stack = list(reversed(root.blocked_by))
        while stack:
            tid = stack.pop()
            if tid in seen or tid not in tasks:
                continue
            seen.add(tid)
            chain.append(tasks[tid])
            stack.extend(reversed(tasks[tid].blocked_by))
        return chain

    def ready_tasks(self, team_name: str, owner: Optional[str] = None) -> List[Task]:
        """Pending tasks whose blockers have all completed."""
        tasks = self._load_all(sanitize_name(team_name))
        owner_id = sanitize_name(owner) if owner else None
        ready = []
        for task in tasks.values():
            if task.status != TaskStatus.PENDING:
                continue
            if owner_id is not None and task.owner != owner_id:
                continue
            if all(tid in tasks and tasks[tid].status == TaskStatus.COMPLETED for tid in task.blocked_by):
                ready.append(task)
        ready.sort(key=lambda t: (t.created_at, t.id))
        return ready

    def dependency_graph(self, team_name: str) -> TaskGraph:
        team = sanitize_name(team_name)
        tasks = self._load_all(team)
        ordered = sorted(tasks.values(), key=lambda t: (t.created_at, t.id))
        edges = [(blocker, t.id) for t in ordered for blocker in t.blocked_by if blocker in tasks]
        roots = [t.id for t in ordered if not any(tid in tasks for tid in t.blocked_by)]
        return TaskGraph(team=team, tasks=ordered, edges=edges, roots=roots)

    def find_cycles(self, team_name: str) -> List[List[str]]:
        """Audit the stored graph for cycles (e.g. after a hand edit)."""
        tasks = self._load_all(sanitize_name(team_name))
        white, grey, black = 0, 1, 2
        color = {tid: white for tid in tasks}
        cycles: List[List[str]] = []

        def visit(node: str, path: List[str]) -> None:
            color[node] = grey
            path.append(node)
            for nxt in tasks[node].blocked_by:
                if nxt not in tasks:
                    continue
                if color[nxt] == grey:
                    cycles.append(path[path.index(nxt):] + [nxt])
                elif color[nxt] == white:
                    visit(nxt, path)
            path.pop()
            color[node] = black

        for tid in sorted(tasks):
            if color[tid] == white:
                visit(tid, [])
        return cycles

    def _notify_dependents(self, team: str, completed: Task, tasks: Dict[str, Task]) -> None:
        for tid in completed.blocks:
            dependent = tasks.get(tid)
            if dependent is None or dependent.status != TaskStatus.PENDING:
                continue
            # Unowned work is routed to the leader, who assigns it.
            self._notify(
                team,
                dependent.owner or LEADER_MAILBOX,
                MessageKind.MESSAGE,
                body=(
                    f"Dependency cleared: task {completed.id} ({completed.subject}) completed; "
                    f"task {dependent.id} ({dependent.subject}) no longer waits on it."
                ),
                summary=f"unblocked by {completed.subject}",
                task_id=completed.id,
            )

    def _notify(self, team: str, recipient: str, kind: MessageKind, body: str, summary: str, task_id: str) -> None:
        if self.mailbox is None:
            return
        try:
            self.mailbox.send(
                team,
                TASK_BOARD_SENDER,
                recipient,
                kind=kind,
                body=body,
                summary=summary,
                task_id=task_id,
            )
        except TeamEngineError as exc:
            # Task state is authoritative; readers re-derive readiness from it.
            logger.warning("Task notification to %s/%s failed: %s", team, recipient, exc.message)
