"""TaskTransition command."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from .base import Command, CommandParameter, CommandStatus


class TaskTransition(Command):
    def __init__(self, team_manager=None, name: str = "TaskTransition"):
        super().__init__(
            name=name,
            description="Move a task along pending -> in_progress -> completed, or cancel it.",
            team_manager=team_manager,
        )

    def get_parameters(self) -> List[CommandParameter]:
        return [
            CommandParameter(name="team_name", type="string", description="Team name"),
            CommandParameter(name="task_id", type="string", description="Task id"),
            CommandParameter(
                name="status",
                type="string",
                description="in_progress | completed | cancelled",
            ),
        ]

    def execute(self, parameters: Dict[str, Any]) -> Tuple[CommandStatus, Dict[str, Any], str]:
        task = self._team_manager.transition_task(
            parameters["team_name"],
            str(parameters["task_id"]),
            parameters["status"],
        )
        return CommandStatus.SUCCESS, task.model_dump(mode="json"), f"Task {task.id} is now {task.status.value}."
