"""TaskCreate command."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from teamwire.team_engine.errors import INVALID_PARAM, TeamEngineError

from .base import Command, CommandParameter, CommandStatus


def _id_list(value: Any, field: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [str(part) for part in value]
    raise TeamEngineError(INVALID_PARAM, f"Parameter '{field}' must be a list of task ids.")


class TaskCreate(Command):
    def __init__(self, team_manager=None, name: str = "TaskCreate"):
        super().__init__(
            name=name,
            description="Create a task on the team's task graph.",
            team_manager=team_manager,
        )

    def get_parameters(self) -> List[CommandParameter]:
        return [
            CommandParameter(name="team_name", type="string", description="Team name"),
            CommandParameter(name="subject", type="string", description="Task subject"),
            CommandParameter(name="description", type="string", description="Details", required=False),
            CommandParameter(name="owner", type="string", description="Owning member id", required=False),
            CommandParameter(
                name="blocked_by",
                type="array",
                description="Task ids that must complete first",
                required=False,
            ),
            CommandParameter(
                name="blocks",
                type="array",
                description="Pending task ids that wait on this one",
                required=False,
            ),
            CommandParameter(
                name="priority",
                type="string",
                description="low | medium | high",
                required=False,
                default="medium",
            ),
        ]

    def execute(self, parameters: Dict[str, Any]) -> Tuple[CommandStatus, Dict[str, Any], str]:
        task = self._team_manager.create_task(
            parameters["team_name"],
            parameters["subject"],
            description=str(parameters.get("description") or ""),
            owner=parameters.get("owner") or None,
            blocked_by=_id_list(parameters.get("blocked_by"), "blocked_by"),
            blocks=_id_list(parameters.get("blocks"), "blocks"),
            priority=str(parameters.get("priority") or "medium"),
        )
        return CommandStatus.SUCCESS, task.model_dump(mode="json"), f"Task {task.id} created: {task.subject}"
