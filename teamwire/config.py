"""Configuration"""

import os
from typing import Optional

from pydantic import BaseModel

from teamwire.env import load_env

load_env()


def _flag(raw: Optional[str], default: bool = False) -> bool:
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


class Config(BaseModel):
    """teamwire settings."""

    root_dir: str = "."
    team_store_dir: str = ".teams"
    task_store_dir: str = ".tasks"

    # Teammate execution
    execution_mode: str = "auto"
    tmux_bin: str = "tmux"
    worker_command: Optional[str] = None
    spawn_grace_s: float = 1.0
    poll_interval_s: float = 0.2

    # Shutdown handshake
    member_shutdown_timeout_s: float = 30.0
    team_shutdown_timeout_s: float = 20.0

    # Liveness thresholds
    active_threshold_s: float = 300.0
    stale_threshold_s: float = 3600.0

    # File locks
    lock_timeout_s: float = 3.0
    lock_stale_s: float = 30.0

    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Build a config from ``TEAMWIRE_*`` environment variables."""
        debug = _flag(os.getenv("TEAMWIRE_DEBUG"))
        return cls(
            root_dir=os.getenv("TEAMWIRE_ROOT", "."),
            team_store_dir=os.getenv("TEAMWIRE_TEAM_STORE_DIR", ".teams"),
            task_store_dir=os.getenv("TEAMWIRE_TASK_STORE_DIR", ".tasks"),
            execution_mode=os.getenv("TEAMWIRE_EXECUTION_MODE", "auto"),
            tmux_bin=os.getenv("TEAMWIRE_TMUX_BIN", "tmux"),
            worker_command=os.getenv("TEAMWIRE_WORKER_COMMAND") or None,
            spawn_grace_s=float(os.getenv("TEAMWIRE_SPAWN_GRACE_S", "1.0")),
            poll_interval_s=float(os.getenv("TEAMWIRE_POLL_INTERVAL_S", "0.2")),
            member_shutdown_timeout_s=float(os.getenv("TEAMWIRE_MEMBER_SHUTDOWN_TIMEOUT_S", "30")),
            team_shutdown_timeout_s=float(os.getenv("TEAMWIRE_TEAM_SHUTDOWN_TIMEOUT_S", "20")),
            active_threshold_s=float(os.getenv("TEAMWIRE_ACTIVE_THRESHOLD_S", "300")),
            stale_threshold_s=float(os.getenv("TEAMWIRE_STALE_THRESHOLD_S", "3600")),
            lock_timeout_s=float(os.getenv("TEAMWIRE_LOCK_TIMEOUT_S", "3")),
            lock_stale_s=float(os.getenv("TEAMWIRE_LOCK_STALE_S", "30")),
            debug=debug,
            log_level="DEBUG" if debug else os.getenv("TEAMWIRE_LOG_LEVEL", "INFO"),
        )
