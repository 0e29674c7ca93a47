"""Persisted records: team descriptor, members, mailbox entries and tasks."""

from __future__ import annotations

import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .protocol import (
    TEAM_CONFIG_VERSION,
    ExecutionMode,
    LivenessState,
    MessageKind,
    ShutdownState,
    TaskPriority,
    TaskStatus,
)


class Member(BaseModel):
    id: str
    name: str
    role_type: str = "worker"
    model_class: str = ""
    is_active: bool = False
    process_handle: Optional[str] = None
    execution_mode: ExecutionMode = ExecutionMode.EMBEDDED
    joined_at: float = Field(default_factory=time.time)

    @model_validator(mode="after")
    def _check_handle(self) -> "Member":
        wants_handle = self.is_active and self.execution_mode == ExecutionMode.ISOLATED
        if wants_handle and not self.process_handle:
            raise ValueError(f"active isolated member {self.id} requires a process handle")
        if not wants_handle and self.process_handle:
            raise ValueError(f"member {self.id} cannot hold a process handle")
        return self


class Team(BaseModel):
    version: int = TEAM_CONFIG_VERSION
    name: str
    description: str = ""
    created_at: float = Field(default_factory=time.time)
    leader_process_id: str = ""
    leader_session: str = ""
    members: List[Member] = Field(default_factory=list)

    def get_member(self, member_id: str) -> Optional[Member]:
        for member in self.members:
            if member.id == member_id:
                return member
        return None

    def active_members(self) -> List[Member]:
        return [m for m in self.members if m.is_active]


class MailboxEntry(BaseModel):
    """One line of a mailbox log.

    ``delivered`` is never written to disk; it is derived from the mailbox
    read cursor each time the log is read, so entries stay immutable.
    ``expires_at`` is set on a ``shutdown_request``: once it passes, the
    leader has recorded a timeout and the request no longer applies.
    """

    model_config = ConfigDict(populate_by_name=True)

    entry_id: str = Field(default_factory=lambda: f"msg_{uuid.uuid4().hex}")
    sender: str = Field(alias="from")
    to: str
    kind: MessageKind = MessageKind.MESSAGE
    body: str = ""
    summary: str = ""
    timestamp: float = Field(default_factory=time.time)
    request_id: str = ""
    approve: Optional[bool] = None
    task_id: str = ""
    expires_at: Optional[float] = None
    delivered: bool = Field(default=False, exclude=True)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Task(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    team: str
    subject: str
    description: str = ""
    owner: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    blocks: List[str] = Field(default_factory=list)
    blocked_by: List[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None


class LivenessReport(BaseModel):
    member: str
    state: LivenessState
    process_alive: bool = False
    last_activity: Optional[float] = None
    warning: str = ""


class ShutdownOutcome(BaseModel):
    team: str
    member: str
    state: ShutdownState
    request_id: str = ""
    reason: str = ""
    elapsed_s: float = 0.0


DOT_STATUS_COLORS = {
    TaskStatus.PENDING: "lightyellow",
    TaskStatus.IN_PROGRESS: "lightblue",
    TaskStatus.COMPLETED: "lightgreen",
    TaskStatus.CANCELLED: "lightgray",
}


def _dot_quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class TaskGraph(BaseModel):
    """Snapshot of a team's blocking graph.

    ``edges`` run blocker -> dependent. ``roots`` are the tasks with no
    blocker on the board; a graph whose tasks all wait on something has
    none, which only happens when the store holds a cycle.
    """

    team: str
    tasks: List[Task] = Field(default_factory=list)
    edges: List[Tuple[str, str]] = Field(default_factory=list)
    roots: List[str] = Field(default_factory=list)

    def get(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def children(self, task_id: str) -> List[str]:
        return [dependent for blocker, dependent in self.edges if blocker == task_id]

    def to_dot(self) -> str:
        """Graphviz source; pipe it into ``dot -Tpng``."""
        lines = [
            f"digraph {_dot_quote('tasks_' + self.team)} {{",
            "    rankdir=TB;",
            '    node [shape=box, style="filled,rounded"];',
        ]
        for task in self.tasks:
            label = f"{task.id[:8]}\\n{task.subject}"
            if task.owner:
                label += f"\\n({task.owner})"
            label = label.replace('"', '\\"')
            lines.append(
                f'    {_dot_quote(task.id)} [label="{label}", fillcolor="{DOT_STATUS_COLORS[task.status]}"];'
            )
        for blocker, dependent in self.edges:
            lines.append(f'    {_dot_quote(blocker)} -> {_dot_quote(dependent)} [label="blocks"];')
        lines.append('    labelloc="t";')
        lines.append(f"    label={_dot_quote('Task dependencies: ' + self.team)};")
        lines.append("}")
        return "\n".join(lines)
