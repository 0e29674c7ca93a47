"""Leader-facing commands returning JSON envelopes."""

from .base import Command, CommandError, CommandParameter, CommandStatus, ErrorCode, map_error_code
from .member_add import MemberAdd
from .send_message import SendMessage
from .shutdown_request import ShutdownRequest
from .task_create import TaskCreate
from .task_transition import TaskTransition
from .team_create import TeamCreate
from .team_delete import TeamDelete
from .team_status import TeamStatus

COMMAND_CLASSES = (
    TeamCreate,
    MemberAdd,
    SendMessage,
    TaskCreate,
    TaskTransition,
    ShutdownRequest,
    TeamDelete,
    TeamStatus,
)


def build_commands(team_manager):
    """Instantiate every command against one manager, keyed by name."""
    commands = [cls(team_manager=team_manager) for cls in COMMAND_CLASSES]
    return {command.name: command for command in commands}


__all__ = [
    "Command",
    "CommandError",
    "CommandParameter",
    "CommandStatus",
    "ErrorCode",
    "map_error_code",
    "TeamCreate",
    "MemberAdd",
    "SendMessage",
    "TaskCreate",
    "TaskTransition",
    "ShutdownRequest",
    "TeamDelete",
    "TeamStatus",
    "COMMAND_CLASSES",
    "build_commands",
]
