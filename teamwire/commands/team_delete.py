"""TeamDelete command."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from .base import Command, CommandParameter, CommandStatus
from .shutdown_request import _flag


class TeamDelete(Command):
    def __init__(self, team_manager=None, name: str = "TeamDelete"):
        super().__init__(
            name=name,
            description=(
                "Delete a team with its mailboxes and tasks. Fails while any member is active "
                "unless teardown is set, which shuts every member down first."
            ),
            team_manager=team_manager,
        )

    def get_parameters(self) -> List[CommandParameter]:
        return [
            CommandParameter(name="team_name", type="string", description="Team name"),
            CommandParameter(
                name="teardown",
                type="boolean",
                description="Run the team-wide shutdown handshake before deleting",
                required=False,
                default=False,
            ),
            CommandParameter(
                name="force",
                type="boolean",
                description="With teardown, force-terminate members that do not approve",
                required=False,
                default=False,
            ),
            CommandParameter(name="timeout_s", type="number", description="Wait per member", required=False),
        ]

    def execute(self, parameters: Dict[str, Any]) -> Tuple[CommandStatus, Dict[str, Any], str]:
        team_name = parameters["team_name"]
        outcomes = []
        if _flag(parameters.get("teardown")):
            timeout = parameters.get("timeout_s")
            outcomes = self._team_manager.teardown_team(
                team_name,
                timeout_s=float(timeout) if timeout is not None else None,
                force=_flag(parameters.get("force")),
            )
        else:
            self._team_manager.delete_team(team_name)
        data = {
            "team_name": team_name,
            "deleted": True,
            "outcomes": [o.model_dump(mode="json") for o in outcomes],
        }
        return CommandStatus.SUCCESS, data, f"Team '{team_name}' deleted."
