"""TeamCreate command."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from .base import Command, CommandParameter, CommandStatus


class TeamCreate(Command):
    def __init__(self, team_manager=None, name: str = "TeamCreate"):
        super().__init__(
            name=name,
            description="Create a team and the leader's mailbox.",
            team_manager=team_manager,
        )

    def get_parameters(self) -> List[CommandParameter]:
        return [
            CommandParameter(name="team_name", type="string", description="Team name"),
            CommandParameter(
                name="description",
                type="string",
                description="What the team is for",
                required=False,
                default="",
            ),
        ]

    def execute(self, parameters: Dict[str, Any]) -> Tuple[CommandStatus, Dict[str, Any], str]:
        team = self._team_manager.create_team(
            parameters["team_name"],
            description=str(parameters.get("description") or ""),
        )
        data = team.model_dump(mode="json")
        return CommandStatus.SUCCESS, data, f"Team '{team.name}' created."
