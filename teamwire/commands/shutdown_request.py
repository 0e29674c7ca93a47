"""ShutdownRequest command: ask one member, or all of them, to stop."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from teamwire.team_engine.protocol import BROADCAST_RECIPIENT, ShutdownState

from .base import Command, CommandError, CommandParameter, CommandStatus, ErrorCode


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "y", "on"}


class ShutdownRequest(Command):
    def __init__(self, team_manager=None, name: str = "ShutdownRequest"):
        super().__init__(
            name=name,
            description=(
                "Run the shutdown handshake with a member, or with every active member for 'all'. "
                "With force, members that did not approve are terminated anyway."
            ),
            team_manager=team_manager,
        )

    def get_parameters(self) -> List[CommandParameter]:
        return [
            CommandParameter(name="team_name", type="string", description="Team name"),
            CommandParameter(name="member", type="string", description="Member id or 'all'"),
            CommandParameter(name="timeout_s", type="number", description="Wait per member", required=False),
            CommandParameter(
                name="force",
                type="boolean",
                description="Force-terminate members that deny or time out",
                required=False,
                default=False,
            ),
        ]

    def execute(self, parameters: Dict[str, Any]) -> Tuple[CommandStatus, Dict[str, Any], str]:
        team_name = parameters["team_name"]
        member = str(parameters["member"]).strip()
        force = _flag(parameters.get("force"))
        timeout = parameters.get("timeout_s")
        timeout_s = float(timeout) if timeout is not None else None

        if member.lower() == BROADCAST_RECIPIENT:
            outcomes = self._team_manager.shutdown_team(team_name, timeout_s=timeout_s, force=force)
        else:
            outcome = self._team_manager.request_shutdown(team_name, member, timeout_s=timeout_s)
            if force and outcome.state != ShutdownState.APPROVED:
                outcome = self._team_manager.force_shutdown(
                    team_name, member, reason=f"shutdown {outcome.state.value}"
                )
            outcomes = [outcome]

        data = {
            "team_name": team_name,
            "outcomes": [o.model_dump(mode="json") for o in outcomes],
        }
        states = [o.state for o in outcomes]
        summary = ", ".join(f"{o.member}={o.state.value}" for o in outcomes) or "no active members"
        if ShutdownState.TIMED_OUT in states:
            raise CommandError(ErrorCode.TIMED_OUT, f"Shutdown incomplete: {summary}", data)
        if ShutdownState.DENIED in states:
            raise CommandError(ErrorCode.DENIED, f"Shutdown incomplete: {summary}", data)
        if ShutdownState.FORCED in states:
            return CommandStatus.PARTIAL, data, f"Shutdown finished with forced terminations: {summary}"
        return CommandStatus.SUCCESS, data, f"Shutdown finished: {summary}"
