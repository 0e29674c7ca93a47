"""tmux orchestration for isolated teammates."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .protocol import ISOLATED_SESSION_PREFIX, PANE_TITLE_PREFIX, sanitize_name

logger = logging.getLogger(__name__)


class TmuxError(RuntimeError):
    pass


class TmuxOrchestrator:
    """Creates, inspects and kills tmux panes that host teammates."""

    def __init__(
        self,
        command_runner: Callable[[List[str]], Tuple[int, str]] | None = None,
        tmux_bin: str = "tmux",
    ):
        self._runner = command_runner or self._run_subprocess
        self.tmux_bin = tmux_bin

    @staticmethod
    def _run_subprocess(argv: List[str]) -> Tuple[int, str]:
        try:
            proc = subprocess.run(argv, capture_output=True, text=True, check=False, timeout=10)
        except (OSError, subprocess.TimeoutExpired) as exc:
            return 127, str(exc)
        output = proc.stdout if proc.returncode == 0 else (proc.stderr or proc.stdout)
        return proc.returncode, output or ""

    def _tmux(self, *args: str) -> Tuple[int, str]:
        return self._runner([self.tmux_bin, *args])

    @staticmethod
    def session_name(team_name: str) -> str:
        return f"{ISOLATED_SESSION_PREFIX}{sanitize_name(team_name)}"

    def is_installed(self) -> bool:
        if shutil.which(self.tmux_bin) is None and self._runner is self._run_subprocess:
            return False
        rc, _ = self._tmux("-V")
        return rc == 0

    def current_session(self) -> Optional[str]:
        """Name of the tmux session this process runs in, if any."""
        if not os.getenv("TMUX"):
            return None
        rc, out = self._tmux("display-message", "-p", "#S")
        if rc != 0:
            return None
        return out.strip() or None

    def ensure_session(self, session: str) -> bool:
        rc, _ = self._tmux("has-session", "-t", session)
        if rc == 0:
            return False
        create_rc, create_out = self._tmux("new-session", "-d", "-s", session, "-n", "lead")
        if create_rc != 0:
            raise TmuxError(f"tmux new-session failed: {create_out.strip()}")
        logger.info("Created tmux session %s", session)
        return True

    def spawn_pane(
        self,
        session: str,
        command: List[str],
        env: Optional[Mapping[str, str]] = None,
        title: str = "",
    ) -> str:
        """Split a new pane in ``session`` running ``command``; returns the pane id."""
        argv = ["split-window", "-d", "-t", session, "-P", "-F", "#{pane_id}"]
        for key, value in sorted((env or {}).items()):
            argv.extend(["-e", f"{key}={value}"])
        argv.append(shlex.join(command))
        rc, out = self._tmux(*argv)
        if rc != 0:
            raise TmuxError(f"tmux split-window failed: {out.strip()}")
        pane_id = out.strip().splitlines()[-1].strip() if out.strip() else ""
        if not pane_id.startswith("%"):
            raise TmuxError(f"tmux returned an unexpected pane id: {out!r}")
        self._tmux("select-layout", "-t", session, "tiled")
        if title:
            self._tmux("select-pane", "-t", pane_id, "-T", f"{PANE_TITLE_PREFIX}{title}")
        return pane_id

    def list_panes(self) -> Dict[str, Dict[str, str]]:
        """Live panes across the server: pane id -> {"session", "title"}."""
        rc, out = self._tmux(
            "list-panes", "-a", "-F", "#{pane_id}\t#{session_name}\t#{pane_dead}\t#{pane_title}"
        )
        if rc != 0:
            return {}
        panes: Dict[str, Dict[str, str]] = {}
        for line in out.splitlines():
            parts = line.split("\t")
            if len(parts) < 3 or not parts[0].startswith("%"):
                continue
            if parts[2] == "1":
                continue
            panes[parts[0]] = {"session": parts[1], "title": parts[3] if len(parts) > 3 else ""}
        return panes

    def pane_exists(self, pane_id: str) -> bool:
        if not pane_id:
            return False
        return pane_id in self.list_panes()

    def kill_pane(self, pane_id: str) -> bool:
        rc, out = self._tmux("kill-pane", "-t", pane_id)
        if rc != 0:
            logger.debug("tmux kill-pane %s ignored: %s", pane_id, out.strip())
        return rc == 0

    def cleanup_session(self, session: str) -> None:
        self._tmux("kill-session", "-t", session)
