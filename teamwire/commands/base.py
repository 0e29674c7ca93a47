"""Command base class and the JSON response envelope.

Every command returns the same envelope::

    {"status": "success" | "partial" | "error",
     "data": {...}, "text": "...", "error": {"code", "message"},
     "stats": {"time_ms": ...}, "context": {"params_input": {...}}}

``error`` is only present when ``status == "error"``.
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from teamwire.team_engine import errors
from teamwire.team_engine.errors import TeamEngineError


class CommandStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class ErrorCode(str, Enum):
    NOT_FOUND = errors.NOT_FOUND
    ALREADY_EXISTS = errors.ALREADY_EXISTS
    DUPLICATE_MEMBER = errors.DUPLICATE_MEMBER
    CYCLE_DETECTED = errors.CYCLE_DETECTED
    STILL_BLOCKED = errors.STILL_BLOCKED
    MEMBERS_STILL_ACTIVE = errors.MEMBERS_STILL_ACTIVE
    PREREQUISITE_MISSING = errors.PREREQUISITE_MISSING
    SPAWN_FAILED = errors.SPAWN_FAILED
    TIMED_OUT = errors.TIMED_OUT
    DENIED = errors.DENIED
    INVALID_TRANSITION = errors.INVALID_TRANSITION
    INVALID_PARAM = errors.INVALID_PARAM
    INTERNAL_ERROR = errors.INTERNAL_ERROR


def map_error_code(code: str) -> ErrorCode:
    try:
        return ErrorCode(code)
    except ValueError:
        return ErrorCode.INTERNAL_ERROR


class CommandParameter(BaseModel):
    name: str
    type: str
    description: str
    required: bool = True
    default: Any = None


class CommandError(Exception):
    """Raised from :meth:`Command.execute` to return an error envelope with data."""

    def __init__(self, code: ErrorCode, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data or {}


class Command(ABC):
    """A leader-facing operation over a :class:`TeamManager`.

    Subclasses declare their parameters and implement :meth:`execute`;
    :meth:`run` validates required parameters, times the call and turns
    engine errors into error envelopes.
    """

    def __init__(self, name: str, description: str, team_manager=None):
        if team_manager is None:
            raise ValueError("team_manager is required")
        self.name = name
        self.description = description
        self._team_manager = team_manager

    @abstractmethod
    def get_parameters(self) -> List[CommandParameter]:
        pass

    @abstractmethod
    def execute(self, parameters: Dict[str, Any]) -> Tuple[CommandStatus, Dict[str, Any], str]:
        """Return ``(status, data, text)``; raise to report an error."""

    def run(self, parameters: Dict[str, Any]) -> str:
        start_time = time.monotonic()
        params_input = dict(parameters or {})
        for param in self.get_parameters():
            if not param.required:
                continue
            value = params_input.get(param.name)
            if value is None or (isinstance(value, str) and not value.strip()):
                return self.create_error_response(
                    ErrorCode.INVALID_PARAM,
                    f"Parameter '{param.name}' is required.",
                    params_input,
                )

        try:
            status, data, text = self.execute(params_input)
        except CommandError as exc:
            return self.create_error_response(
                exc.code,
                exc.message,
                params_input,
                time_ms=self._elapsed_ms(start_time),
                data=exc.data,
            )
        except TeamEngineError as exc:
            return self.create_error_response(
                map_error_code(exc.code),
                exc.message,
                params_input,
                time_ms=self._elapsed_ms(start_time),
            )
        except TimeoutError as exc:
            return self.create_error_response(
                ErrorCode.TIMED_OUT,
                f"{self.name} timed out: {exc}",
                params_input,
                time_ms=self._elapsed_ms(start_time),
            )
        except Exception as exc:  # pragma: no cover
            return self.create_error_response(
                ErrorCode.INTERNAL_ERROR,
                f"{self.name} failed: {exc}",
                params_input,
                time_ms=self._elapsed_ms(start_time),
            )
        return self._build_response(status, data, text, params_input, self._elapsed_ms(start_time))

    def create_error_response(
        self,
        error_code: ErrorCode,
        message: str,
        params_input: Dict[str, Any],
        time_ms: int = 0,
        data: Optional[Dict[str, Any]] = None,
    ) -> str:
        payload = {
            "status": CommandStatus.ERROR.value,
            "data": data or {},
            "text": message,
            "error": {"code": error_code.value, "message": message},
            "stats": {"time_ms": time_ms},
            "context": {"command": self.name, "params_input": params_input},
        }
        return json.dumps(payload, ensure_ascii=False, indent=2)

    def _build_response(
        self,
        status: CommandStatus,
        data: Dict[str, Any],
        text: str,
        params_input: Dict[str, Any],
        time_ms: int,
    ) -> str:
        payload = {
            "status": status.value,
            "data": data,
            "text": text,
            "stats": {"time_ms": time_ms},
            "context": {"command": self.name, "params_input": params_input},
        }
        return json.dumps(payload, ensure_ascii=False, indent=2)

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": [param.model_dump() for param in self.get_parameters()],
        }

    def __repr__(self) -> str:
        return f"Command(name={self.name})"
