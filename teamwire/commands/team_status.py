"""TeamStatus command."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from .base import Command, CommandParameter, CommandStatus


class TeamStatus(Command):
    def __init__(self, team_manager=None, name: str = "TeamStatus"):
        super().__init__(
            name=name,
            description="Members with liveness, unread counts and task counts for one team.",
            team_manager=team_manager,
        )

    def get_parameters(self) -> List[CommandParameter]:
        return [CommandParameter(name="team_name", type="string", description="Team name")]

    def execute(self, parameters: Dict[str, Any]) -> Tuple[CommandStatus, Dict[str, Any], str]:
        status = self._team_manager.get_status(parameters["team_name"])
        active = sum(1 for m in status["members"] if m["is_active"])
        text = (
            f"Team '{status['team_name']}': {active}/{len(status['members'])} members active, "
            f"{status['task_counts']['pending']} pending / "
            f"{status['task_counts']['in_progress']} in progress tasks."
        )
        # Offline members are a consistency fault worth surfacing.
        if status["warnings"]:
            return CommandStatus.PARTIAL, status, text + " " + "; ".join(status["warnings"])
        return CommandStatus.SUCCESS, status, text
