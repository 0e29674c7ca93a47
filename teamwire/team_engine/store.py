"""File-based team registry.

One ``config.json`` per team under ``<root>/<team_store_dir>/<team>/``. The
descriptor is indented JSON so dashboards and shell tooling can read it
directly. All mutations of a team's descriptor go through the team's
registry lock.
"""

from __future__ import annotations

import json
import logging
import shutil
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .errors import (
    ALREADY_EXISTS,
    DUPLICATE_MEMBER,
    INTERNAL_ERROR,
    INVALID_PARAM,
    MEMBERS_STILL_ACTIVE,
    NOT_FOUND,
    TeamEngineError,
)
from .locks import DirLock
from .models import Member, Team
from .protocol import RESERVED_MEMBER_NAMES, ExecutionMode, parse_enum, sanitize_name

logger = logging.getLogger(__name__)

TOMBSTONE_PREFIX = ".deleting-"


class TeamStore:
    def __init__(
        self,
        project_root: Path | str,
        team_store_dir: str = ".teams",
        task_store_dir: str = ".tasks",
        lock_timeout_s: float = 3.0,
        lock_stale_s: float = 30.0,
        lock_retry_interval_s: float = 0.01,
    ):
        self.project_root = Path(project_root).resolve()
        self.team_store_dir = team_store_dir
        self.task_store_dir = task_store_dir
        self.teams_root = (self.project_root / self.team_store_dir).resolve()
        self.tasks_root = (self.project_root / self.task_store_dir).resolve()
        self.teams_root.mkdir(parents=True, exist_ok=True)
        self.tasks_root.mkdir(parents=True, exist_ok=True)
        self._lock = DirLock(
            timeout_s=lock_timeout_s,
            stale_s=lock_stale_s,
            retry_interval_s=lock_retry_interval_s,
        )

    def team_dir(self, team_name: str) -> Path:
        return self.teams_root / sanitize_name(team_name)

    def _config_path(self, team_name: str) -> Path:
        return self.team_dir(team_name) / "config.json"

    def _registry_lock_path(self, team_name: str) -> Path:
        # Outside the team directory, which delete_team renames away while holding it.
        return self.teams_root / f".{sanitize_name(team_name)}.registry.lock"

    def lock(self, lock_dir: Path | str, timeout_s: Optional[float] = None):
        return self._lock.hold(lock_dir, timeout_s=timeout_s)

    def create_team(
        self,
        team_name: str,
        description: str = "",
        leader_process_id: str = "",
        leader_session: str = "",
    ) -> Team:
        name = sanitize_name(team_name)
        team = Team(
            name=name,
            description=str(description or ""),
            leader_process_id=str(leader_process_id or ""),
            leader_session=str(leader_session or ""),
        )
        # Exclusive create: the descriptor decides who owns the name.
        with self.lock(self._registry_lock_path(name)):
            self.team_dir(name).mkdir(parents=True, exist_ok=True)
            try:
                with self._config_path(name).open("x", encoding="utf-8") as f:
                    f.write(json.dumps(team.model_dump(mode="json"), ensure_ascii=False, indent=2))
            except FileExistsError:
                raise TeamEngineError(ALREADY_EXISTS, f"team already exists: {name}") from None
        logger.info("Created team %s (leader=%s)", name, team.leader_process_id or "-")
        return team

    def exists(self, team_name: str) -> bool:
        return self._config_path(team_name).exists()

    def read_team(self, team_name: str) -> Team:
        path = self._config_path(team_name)
        if not path.exists():
            raise TeamEngineError(NOT_FOUND, f"team not found: {team_name}")
        try:
            return Team.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (ValueError, ValidationError) as exc:
            raise TeamEngineError(INTERNAL_ERROR, f"corrupt team descriptor {path}: {exc}") from exc

    def list_teams(self) -> List[str]:
        if not self.teams_root.exists():
            return []
        names: List[str] = []
        for item in self.teams_root.iterdir():
            if not item.is_dir():
                continue
            if (item / "config.json").exists():
                names.append(item.name)
        return sorted(names)

    def add_member(self, team_name: str, spec: Dict[str, Any]) -> Member:
        """Register a member in the inactive state.

        The caller activates it with :meth:`activate_member` once its
        execution context is confirmed alive.
        """
        raw_name = str((spec or {}).get("name") or "")
        member_id = sanitize_name(raw_name)
        if member_id in RESERVED_MEMBER_NAMES:
            raise TeamEngineError(INVALID_PARAM, f"member name is reserved: {member_id}")
        mode = parse_enum(ExecutionMode, spec.get("execution_mode") or ExecutionMode.EMBEDDED, "execution_mode")

        self._require_team(team_name)
        with self.lock(self._registry_lock_path(team_name)):
            team = self.read_team(team_name)
            if team.get_member(member_id) is not None:
                raise TeamEngineError(DUPLICATE_MEMBER, f"duplicate member in {team.name}: {member_id}")
            member = Member(
                id=member_id,
                name=raw_name.strip() or member_id,
                role_type=str(spec.get("role_type") or "worker"),
                model_class=str(spec.get("model_class") or ""),
                execution_mode=mode,
            )
            team.members.append(member)
            self._write_team(team)
        return member

    def activate_member(self, team_name: str, member_id: str, process_handle: Optional[str] = None) -> Member:
        def mutate(member: Member) -> Member:
            handle = process_handle if member.execution_mode == ExecutionMode.ISOLATED else None
            return Member.model_validate(
                {**member.model_dump(), "is_active": True, "process_handle": handle}
            )

        return self._update_member(team_name, member_id, mutate)

    def deactivate_member(self, team_name: str, member_id: str) -> Member:
        """Mark a member inactive. Does not stop its process."""

        def mutate(member: Member) -> Member:
            return member.model_copy(update={"is_active": False, "process_handle": None})

        member = self._update_member(team_name, member_id, mutate)
        logger.info("Deactivated member %s/%s", team_name, member_id)
        return member

    def remove_member(self, team_name: str, member_id: str) -> None:
        member_id = sanitize_name(member_id)
        self._require_team(team_name)
        with self.lock(self._registry_lock_path(team_name)):
            team = self.read_team(team_name)
            before = len(team.members)
            team.members = [m for m in team.members if m.id != member_id]
            if len(team.members) == before:
                raise TeamEngineError(NOT_FOUND, f"member not found: {team_name}/{member_id}")
            self._write_team(team)

    def get_member(self, team_name: str, member_id: str) -> Member:
        team = self.read_team(team_name)
        member = team.get_member(sanitize_name(member_id))
        if member is None:
            raise TeamEngineError(NOT_FOUND, f"member not found: {team_name}/{member_id}")
        return member

    def delete_team(self, team_name: str) -> None:
        """Purge the team descriptor, every mailbox and every task of the team."""
        name = sanitize_name(team_name)
        self._require_team(name)
        with self.lock(self._registry_lock_path(name)):
            team = self.read_team(name)
            active = [m.id for m in team.active_members()]
            if active:
                raise TeamEngineError(
                    MEMBERS_STILL_ACTIVE,
                    f"team {name} still has active members: {', '.join(active)}",
                )
            # Descriptor first: once it is gone the team no longer exists.
            self._config_path(name).unlink()
            # Move the data aside while still holding the lock so a team
            # re-created under the same name never shares these directories.
            tombstones = self._tombstone(name)
        for path in tombstones:
            shutil.rmtree(path, ignore_errors=True)
        logger.info("Deleted team %s", name)

    def _tombstone(self, name: str) -> List[Path]:
        suffix = uuid.uuid4().hex[:12]
        moved: List[Path] = []
        for src in (self.team_dir(name), self.tasks_root / name):
            if not src.exists():
                continue
            moved.append(src.rename(src.parent / f"{TOMBSTONE_PREFIX}{name}-{suffix}"))
        return moved

    def _update_member(self, team_name: str, member_id: str, mutate) -> Member:
        member_id = sanitize_name(member_id)
        self._require_team(team_name)
        with self.lock(self._registry_lock_path(team_name)):
            team = self.read_team(team_name)
            for idx, member in enumerate(team.members):
                if member.id != member_id:
                    continue
                updated = mutate(member)
                team.members[idx] = updated
                self._write_team(team)
                return updated
        raise TeamEngineError(NOT_FOUND, f"member not found: {team_name}/{member_id}")

    def _write_team(self, team: Team) -> None:
        path = self._config_path(team.name)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(
            json.dumps(team.model_dump(mode="json"), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp.replace(path)

    def _require_team(self, team_name: str) -> None:
        # Checked before taking the registry lock so a missing team fails fast.
        if not self.exists(team_name):
            raise TeamEngineError(NOT_FOUND, f"team not found: {team_name}")
