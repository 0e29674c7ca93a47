"""Execution mode resolver for teammate runtime."""

import os
import shutil
from typing import Optional, Tuple

from .errors import INVALID_PARAM, TeamEngineError
from .protocol import ExecutionMode

VALID_EXECUTION_MODES = {"auto", "isolated", "embedded", "tmux", "in-process"}

_ALIASES = {
    "tmux": ExecutionMode.ISOLATED,
    "isolated": ExecutionMode.ISOLATED,
    "in-process": ExecutionMode.EMBEDDED,
    "embedded": ExecutionMode.EMBEDDED,
}


def resolve_execution_mode(requested_mode: Optional[str], tmux_bin: str = "tmux") -> Tuple[ExecutionMode, Optional[str]]:
    """Resolve a requested mode to a concrete one with an optional note.

    An explicit ``isolated`` request is never downgraded here; the
    prerequisite check rejects it if tmux is missing.
    """
    mode = str(requested_mode or "auto").strip().lower()
    if mode not in VALID_EXECUTION_MODES:
        raise TeamEngineError(INVALID_PARAM, f"invalid execution mode: {requested_mode!r}")
    if mode in _ALIASES:
        return _ALIASES[mode], None

    # auto: only go isolated when the leader already runs inside tmux.
    tmux_available = shutil.which(tmux_bin) is not None
    if os.getenv("TMUX") and tmux_available:
        return ExecutionMode.ISOLATED, None
    if tmux_available:
        return ExecutionMode.EMBEDDED, "leader is not inside tmux; running teammate embedded"
    return ExecutionMode.EMBEDDED, "tmux is unavailable; running teammate embedded"
