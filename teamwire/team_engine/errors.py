"""Shared errors for team engine services."""

from __future__ import annotations

NOT_FOUND = "NOT_FOUND"
ALREADY_EXISTS = "ALREADY_EXISTS"
DUPLICATE_MEMBER = "DUPLICATE_MEMBER"
MEMBERS_STILL_ACTIVE = "MEMBERS_STILL_ACTIVE"
CYCLE_DETECTED = "CYCLE_DETECTED"
STILL_BLOCKED = "STILL_BLOCKED"
INVALID_TRANSITION = "INVALID_TRANSITION"
PREREQUISITE_MISSING = "PREREQUISITE_MISSING"
SPAWN_FAILED = "SPAWN_FAILED"
TIMED_OUT = "TIMED_OUT"
DENIED = "DENIED"
INVALID_PARAM = "INVALID_PARAM"
INTERNAL_ERROR = "INTERNAL_ERROR"

ERROR_CODES = (
    NOT_FOUND,
    ALREADY_EXISTS,
    DUPLICATE_MEMBER,
    MEMBERS_STILL_ACTIVE,
    CYCLE_DETECTED,
    STILL_BLOCKED,
    INVALID_TRANSITION,
    PREREQUISITE_MISSING,
    SPAWN_FAILED,
    TIMED_OUT,
    DENIED,
    INVALID_PARAM,
    INTERNAL_ERROR,
)


class TeamEngineError(Exception):
    """Typed error carrying a stable code for command-level mapping."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = str(code or INTERNAL_ERROR)
        self.message = str(message or "")

    def __repr__(self) -> str:
        return f"TeamEngineError({self.code!r}, {self.message!r})"
