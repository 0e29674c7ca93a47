"""Durable per-participant mailboxes.

Each mailbox is a JSONL log at ``<team_dir>/inboxes/<member>.jsonl``. Lines
are only ever appended, under a per-mailbox lock, so two senders writing to
different mailboxes never wait on each other. Receiving is a poll: the
recipient reads everything past its cursor file and then advances the
cursor. A crash between the two steps redelivers, which makes delivery
at-least-once.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import INVALID_PARAM, NOT_FOUND, TeamEngineError
from .locks import DirLock
from .models import MailboxEntry
from .protocol import (
    BROADCAST_RECIPIENT,
    LEADER_MAILBOX,
    TASK_BOARD_SENDER,
    MessageKind,
    parse_enum,
    sanitize_name,
)
from .store import TeamStore

logger = logging.getLogger(__name__)


class MailboxStore:
    def __init__(self, team_store: TeamStore, lock: Optional[DirLock] = None):
        self._teams = team_store
        self._lock = lock or DirLock()

    def _inbox_dir(self, team_name: str) -> Path:
        return self._teams.team_dir(team_name) / "inboxes"

    def _inbox_path(self, team_name: str, member: str) -> Path:
        return self._inbox_dir(team_name) / f"{sanitize_name(member)}.jsonl"

    def _cursor_path(self, team_name: str, member: str) -> Path:
        return self._inbox_dir(team_name) / f"{sanitize_name(member)}.cursor"

    def _lock_path(self, team_name: str, member: str) -> Path:
        return self._inbox_dir(team_name) / f"{sanitize_name(member)}.lock"

    def init_mailbox(self, team_name: str, member: str) -> Path:
        path = self._inbox_path(team_name, member)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)
        return path

    def delete_mailbox(self, team_name: str, member: str) -> None:
        for path in (self._inbox_path(team_name, member), self._cursor_path(team_name, member)):
            path.unlink(missing_ok=True)

    def has_mailbox(self, team_name: str, member: str) -> bool:
        return self._inbox_path(team_name, member).exists()

    def append(self, team_name: str, recipient: str, entry: MailboxEntry) -> MailboxEntry:
        path = self._inbox_path(team_name, recipient)
        if not self.has_mailbox(team_name, recipient):
            raise TeamEngineError(NOT_FOUND, f"mailbox not found: {team_name}/{recipient}")
        with self._lock.hold(self._lock_path(team_name, recipient)):
            torn = self._has_torn_tail(path)
            with path.open("a", encoding="utf-8") as f:
                if torn:
                    # Terminate a crashed writer's partial line so this entry stays parseable.
                    f.write("\n")
                f.write(json.dumps(entry.to_record(), ensure_ascii=False))
                f.write("\n")
        return entry

    def send(
        self,
        team_name: str,
        sender: str,
        recipient: str,
        kind: MessageKind | str = MessageKind.MESSAGE,
        body: str = "",
        summary: str = "",
        request_id: str = "",
        approve: Optional[bool] = None,
        task_id: str = "",
        expires_at: Optional[float] = None,
    ) -> List[MailboxEntry]:
        """Append one entry per recipient and return the appended entries.

        ``recipient="all"`` (or ``kind=broadcast``) fans out to every active
        member except the sender as individually appended entries.
        """
        message_kind = parse_enum(MessageKind, kind, "message kind")
        team = self._teams.read_team(team_name)
        from_name = sanitize_name(sender)
        known = {m.id for m in team.members}
        if from_name not in known and from_name not in {LEADER_MAILBOX, TASK_BOARD_SENDER}:
            raise TeamEngineError(NOT_FOUND, f"sender not in team {team.name}: {from_name}")

        if str(recipient or "").strip().lower() == BROADCAST_RECIPIENT:
            message_kind = MessageKind.BROADCAST
        if message_kind == MessageKind.SHUTDOWN_RESPONSE:
            if not request_id:
                raise TeamEngineError(INVALID_PARAM, "shutdown_response requires request_id")
            if not isinstance(approve, bool):
                raise TeamEngineError(INVALID_PARAM, "shutdown_response requires approve: bool")

        if message_kind == MessageKind.BROADCAST:
            recipients = [m.id for m in team.active_members() if m.id != from_name]
            if not recipients:
                raise TeamEngineError(INVALID_PARAM, "broadcast requires at least one active recipient")
        else:
            to_name = sanitize_name(recipient)
            if to_name not in known and to_name != LEADER_MAILBOX:
                raise TeamEngineError(NOT_FOUND, f"recipient not in team {team.name}: {to_name}")
            recipients = [to_name]

        sent: List[MailboxEntry] = []
        for to_name in recipients:
            entry = MailboxEntry(
                sender=from_name,
                to=to_name,
                kind=message_kind,
                body=str(body or ""),
                summary=str(summary or ""),
                request_id=str(request_id or ""),
                approve=approve if message_kind == MessageKind.SHUTDOWN_RESPONSE else None,
                task_id=str(task_id or ""),
                expires_at=expires_at,
            )
            sent.append(self.append(team.name, to_name, entry))
        logger.debug(
            "Sent %s from %s to %s in %s",
            message_kind.value,
            from_name,
            ",".join(recipients),
            team.name,
        )
        return sent

    def read_all(self, team_name: str, member: str) -> List[MailboxEntry]:
        return self.read_since(team_name, member, 0)

    def read_since(self, team_name: str, member: str, offset: int) -> List[MailboxEntry]:
        """Entries at positions >= ``offset``; never touches the cursor."""
        rows = self._read_rows(self._inbox_path(team_name, member))
        cursor = self._read_cursor(team_name, member)
        entries: List[MailboxEntry] = []
        for idx, row in enumerate(rows):
            if idx < offset:
                continue
            entry = MailboxEntry.model_validate(row)
            entry.delivered = idx < cursor
            entries.append(entry)
        return entries

    def count(self, team_name: str, member: str) -> int:
        return len(self._read_rows(self._inbox_path(team_name, member)))

    def receive(self, team_name: str, member: str) -> List[MailboxEntry]:
        """Return undelivered entries and advance the read cursor past them."""
        path = self._inbox_path(team_name, member)
        if not self.has_mailbox(team_name, member):
            raise TeamEngineError(NOT_FOUND, f"mailbox not found: {team_name}/{member}")
        cursor = self._read_cursor(team_name, member)
        rows = self._read_rows(path)
        fresh = [MailboxEntry.model_validate(row) for row in rows[cursor:]]
        if fresh:
            self._write_cursor(team_name, member, cursor + len(fresh))
        return fresh

    def peek_recent(self, team_name: str, member: str, n: int = 5) -> List[MailboxEntry]:
        if n <= 0:
            return []
        entries = self.read_all(team_name, member)
        return entries[-n:]

    def last_authored_at(self, team_name: str, member: str) -> Optional[float]:
        """Newest timestamp of any entry ``member`` wrote, across the team."""
        author = sanitize_name(member)
        inbox_dir = self._inbox_dir(team_name)
        if not inbox_dir.exists():
            return None
        latest: Optional[float] = None
        for path in sorted(inbox_dir.glob("*.jsonl")):
            for row in self._read_rows(path):
                if row.get("from") != author:
                    continue
                ts = float(row.get("timestamp") or 0)
                if latest is None or ts > latest:
                    latest = ts
        return latest

    def _read_cursor(self, team_name: str, member: str) -> int:
        path = self._cursor_path(team_name, member)
        if not path.exists():
            return 0
        try:
            return max(0, int(path.read_text(encoding="utf-8").strip() or 0))
        except ValueError:
            logger.warning("Ignoring unreadable cursor %s", path)
            return 0

    def _write_cursor(self, team_name: str, member: str, value: int) -> None:
        path = self._cursor_path(team_name, member)
        with self._lock.hold(self._lock_path(team_name, member)):
            tmp = path.with_suffix(".cursor.tmp")
            tmp.write_text(str(int(value)), encoding="utf-8")
            tmp.replace(path)

    @staticmethod
    def _has_torn_tail(path: Path) -> bool:
        if path.stat().st_size == 0:
            return False
        with path.open("rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) != b"\n"

    @staticmethod
    def _read_rows(path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        rows: List[Dict[str, Any]] = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError:
                # A torn final line from a crashed writer.
                logger.warning("Skipping malformed mailbox line in %s", path)
                continue
            rows.append(row)
        return rows

