"""Member-side runtime shared by embedded threads and isolated worker processes.

A conformant member polls its own mailbox, answers every live
``shutdown_request`` with a ``shutdown_response`` (expired ones are dropped:
the leader has already recorded a timeout for them) and tells the leader once
when it runs out of ready work.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .errors import TeamEngineError
from .models import MailboxEntry
from .protocol import LEADER_MAILBOX, MessageKind, TaskStatus, sanitize_name

logger = logging.getLogger(__name__)

ShutdownPolicy = Callable[["MemberAgent", MailboxEntry], bool]
MessageHandler = Callable[["MemberAgent", MailboxEntry], None]


def approve_always(agent: "MemberAgent", entry: MailboxEntry) -> bool:
    return True


def deny_while_busy(agent: "MemberAgent", entry: MailboxEntry) -> bool:
    """Refuse to stop while the member still owns an in-progress task."""
    busy = agent.task_board.list_tasks(agent.team_name, status=TaskStatus.IN_PROGRESS, owner=agent.member_id)
    return not busy


class MemberAgent:
    def __init__(
        self,
        mailbox,
        task_board,
        team_name: str,
        member_id: str,
        handler: Optional[MessageHandler] = None,
        shutdown_policy: Optional[ShutdownPolicy] = None,
    ):
        self.mailbox = mailbox
        self.task_board = task_board
        self.team_name = sanitize_name(team_name)
        self.member_id = sanitize_name(member_id)
        self.handler = handler
        self.shutdown_policy = shutdown_policy or approve_always
        self.stop_requested = False
        self._idle_sent = False

    def poll_once(self) -> bool:
        """Process everything new in the mailbox; True when anything arrived."""
        entries = self.mailbox.receive(self.team_name, self.member_id)
        for entry in entries:
            if entry.kind == MessageKind.SHUTDOWN_REQUEST:
                self._answer_shutdown(entry)
                if self.stop_requested:
                    break
                continue
            if entry.kind == MessageKind.TASK_ASSIGNMENT or entry.task_id:
                self._idle_sent = False
            if self.handler is not None:
                self.handler(self, entry)
        if not self.stop_requested:
            self._maybe_notify_idle()
        return bool(entries)

    def run(self, poll_interval_s: float = 0.5, stop_event: Optional[threading.Event] = None) -> None:
        """Blocking loop used by the isolated worker process."""
        logger.info("Member %s/%s started", self.team_name, self.member_id)
        while not self.stop_requested:
            if stop_event is not None and stop_event.is_set():
                break
            if not self.poll_once():
                time.sleep(max(0.01, float(poll_interval_s)))
        logger.info("Member %s/%s stopped", self.team_name, self.member_id)

    def _answer_shutdown(self, entry: MailboxEntry) -> None:
        if entry.expires_at is not None and time.time() > entry.expires_at:
            logger.info(
                "Member %s/%s ignored expired shutdown %s",
                self.team_name,
                self.member_id,
                entry.request_id,
            )
            return
        approve = bool(self.shutdown_policy(self, entry))
        self.mailbox.send(
            self.team_name,
            self.member_id,
            entry.sender or LEADER_MAILBOX,
            kind=MessageKind.SHUTDOWN_RESPONSE,
            body="approved" if approve else "denied",
            summary="shutdown approved" if approve else "shutdown denied",
            request_id=entry.request_id,
            approve=approve,
        )
        logger.info(
            "Member %s/%s answered shutdown %s: approve=%s",
            self.team_name,
            self.member_id,
            entry.request_id,
            approve,
        )
        if approve:
            self.stop_requested = True

    def _maybe_notify_idle(self) -> None:
        if self._idle_sent:
            return
        try:
            ready = self.task_board.ready_tasks(self.team_name, owner=self.member_id)
            running = self.task_board.list_tasks(
                self.team_name, status=TaskStatus.IN_PROGRESS, owner=self.member_id
            )
        except TeamEngineError as exc:
            logger.debug("Idle check skipped for %s/%s: %s", self.team_name, self.member_id, exc)
            return
        if ready or running:
            return
        self.mailbox.send(
            self.team_name,
            self.member_id,
            LEADER_MAILBOX,
            kind=MessageKind.IDLE_NOTIFICATION,
            body=f"{self.member_id} has no remaining unblocked tasks",
            summary="idle",
        )
        self._idle_sent = True
