"""MemberAdd command: register and spawn one teammate."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from .base import Command, CommandParameter, CommandStatus


class MemberAdd(Command):
    def __init__(self, team_manager=None, name: str = "MemberAdd"):
        super().__init__(
            name=name,
            description="Add a member to a team and start its execution context.",
            team_manager=team_manager,
        )

    def get_parameters(self) -> List[CommandParameter]:
        return [
            CommandParameter(name="team_name", type="string", description="Team name"),
            CommandParameter(name="name", type="string", description="Member display name"),
            CommandParameter(
                name="role_type",
                type="string",
                description="Behavioral template tag (opaque)",
                required=False,
                default="worker",
            ),
            CommandParameter(
                name="model_class",
                type="string",
                description="Capability tier (opaque)",
                required=False,
                default="",
            ),
            CommandParameter(
                name="execution_mode",
                type="string",
                description="auto | isolated | embedded (aliases: tmux, in-process)",
                required=False,
            ),
        ]

    def execute(self, parameters: Dict[str, Any]) -> Tuple[CommandStatus, Dict[str, Any], str]:
        member = self._team_manager.add_member(
            parameters["team_name"],
            parameters["name"],
            role_type=str(parameters.get("role_type") or "worker"),
            model_class=str(parameters.get("model_class") or ""),
            execution_mode=parameters.get("execution_mode"),
        )
        text = f"Member '{member.id}' joined ({member.execution_mode.value})."
        return CommandStatus.SUCCESS, member.model_dump(mode="json"), text
