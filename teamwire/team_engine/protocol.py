"""Protocol constants for team orchestration."""

from __future__ import annotations

import re
from enum import Enum
from typing import Dict, FrozenSet

from .errors import INVALID_PARAM, TeamEngineError

TEAM_CONFIG_VERSION = 1

LEADER_MAILBOX = "team-lead"
TASK_BOARD_SENDER = "task-board"
BROADCAST_RECIPIENT = "all"
RESERVED_MEMBER_NAMES = frozenset({LEADER_MAILBOX, BROADCAST_RECIPIENT, TASK_BOARD_SENDER})

ISOLATED_SESSION_PREFIX = "teamwire_"
PANE_TITLE_PREFIX = "teamwire:"


class ExecutionMode(str, Enum):
    ISOLATED = "isolated"
    EMBEDDED = "embedded"


class MessageKind(str, Enum):
    MESSAGE = "message"
    BROADCAST = "broadcast"
    TASK_ASSIGNMENT = "task_assignment"
    SHUTDOWN_REQUEST = "shutdown_request"
    SHUTDOWN_RESPONSE = "shutdown_response"
    IDLE_NOTIFICATION = "idle_notification"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LivenessState(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    STALE = "stale"
    OFFLINE = "offline"
    INACTIVE = "inactive"


class ShutdownState(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    DENIED = "denied"
    TIMED_OUT = "timed_out"
    FORCED = "forced"


TASK_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in TASK_TRANSITIONS.get(current, frozenset())


_SANITIZE_PATTERN = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_name(raw: str) -> str:
    value = (raw or "").strip()
    value = _SANITIZE_PATTERN.sub("-", value)
    value = value.strip("-._")
    if not value:
        raise TeamEngineError(INVALID_PARAM, f"name is empty after sanitization: {raw!r}")
    return value


def parse_enum(enum_cls, raw, field: str):
    """Coerce a raw string into ``enum_cls`` or raise INVALID_PARAM."""
    if isinstance(raw, enum_cls):
        return raw
    value = str(raw or "").strip().lower()
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(item.value for item in enum_cls)
        raise TeamEngineError(INVALID_PARAM, f"invalid {field}: {raw!r} (expected one of: {allowed})") from None
