"""SendMessage command."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from teamwire.team_engine.protocol import LEADER_MAILBOX

from .base import Command, CommandParameter, CommandStatus


class SendMessage(Command):
    def __init__(self, team_manager=None, name: str = "SendMessage"):
        super().__init__(
            name=name,
            description="Append a message to a member's mailbox, or to every active member with 'all'.",
            team_manager=team_manager,
        )

    def get_parameters(self) -> List[CommandParameter]:
        return [
            CommandParameter(name="team_name", type="string", description="Team name"),
            CommandParameter(name="to", type="string", description="Recipient member id or 'all'"),
            CommandParameter(name="body", type="string", description="Message body"),
            CommandParameter(name="summary", type="string", description="Short preview", required=False),
            CommandParameter(
                name="from",
                type="string",
                description="Sender; defaults to the leader",
                required=False,
                default=LEADER_MAILBOX,
            ),
        ]

    def execute(self, parameters: Dict[str, Any]) -> Tuple[CommandStatus, Dict[str, Any], str]:
        sent = self._team_manager.send_message(
            parameters["team_name"],
            parameters["to"],
            parameters["body"],
            summary=str(parameters.get("summary") or ""),
            sender=str(parameters.get("from") or LEADER_MAILBOX),
        )
        data = {
            "team_name": parameters["team_name"],
            "recipients": [entry.to for entry in sent],
            "entries": [entry.to_record() for entry in sent],
        }
        return CommandStatus.SUCCESS, data, f"Message delivered to {len(sent)} mailbox(es)."
