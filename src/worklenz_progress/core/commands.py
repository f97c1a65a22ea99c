"""Inbound progress commands and the socket event names they travel under."""

import math
from dataclasses import dataclass
from typing import Any, ClassVar

from worklenz_progress.core.errors import ValidationError

GET_TASK_PROGRESS = "get_task_progress"
TASK_PROGRESS = "task_progress"
SET_MANUAL_PROGRESS = "set_manual_progress"
UPDATE_TASK_WEIGHT = "update_task_weight"
JOIN_PROJECT = "join_project"
LEAVE_PROJECT = "leave_project"
ERROR = "error"

WEIGHT_MESSAGE = "Weight must be a positive integer"
PROGRESS_MESSAGE = "Progress value must be a number between 0 and 100"


@dataclass(frozen=True)
class GetProgress:
    event: ClassVar[str] = GET_TASK_PROGRESS

    task_id: str


@dataclass(frozen=True)
class SetManualProgress:
    event: ClassVar[str] = SET_MANUAL_PROGRESS

    task_id: str
    enable_manual: bool
    progress_value: float | None = None
    team_id: str | None = None
    recalculate: bool = False
    parent_task_id: str | None = None

    @property
    def wants_manual(self) -> bool:
        return self.enable_manual and not self.recalculate


@dataclass(frozen=True)
class SetWeight:
    event: ClassVar[str] = UPDATE_TASK_WEIGHT

    task_id: str
    weight: float


Command = GetProgress | SetManualProgress | SetWeight

COMMAND_EVENTS = (GET_TASK_PROGRESS, SET_MANUAL_PROGRESS, UPDATE_TASK_WEIGHT)


def parse_command(event: str, data: Any) -> Command:
    """Build a command from a socket event name and its raw payload.

    Raises ValidationError when the payload is malformed. The error carries
    the task id when one could be read, so the acknowledgement can echo it.
    """
    if event == GET_TASK_PROGRESS:
        task_id = data.get("task_id") if isinstance(data, dict) else data
        return GetProgress(task_id=_require_task_id(task_id))

    if event not in (SET_MANUAL_PROGRESS, UPDATE_TASK_WEIGHT):
        raise ValidationError(f"Unknown event: {event}")

    if not isinstance(data, dict):
        raise ValidationError("Payload must be an object")

    task_id = _require_task_id(data.get("task_id"))

    if event == SET_MANUAL_PROGRESS:
        enable_manual = bool(data.get("enable_manual"))
        recalculate = bool(data.get("recalculate"))
        progress_value = _parse_number(data.get("progress_value"))
        if enable_manual and not recalculate and progress_value is None:
            raise ValidationError(PROGRESS_MESSAGE, task_id)
        return SetManualProgress(
            task_id=task_id,
            enable_manual=enable_manual,
            progress_value=progress_value,
            team_id=data.get("team_id"),
            recalculate=recalculate,
            parent_task_id=data.get("parent_task_id") or None,
        )

    weight = _parse_number(data.get("weight"))
    if weight is None or weight <= 0:
        raise ValidationError(WEIGHT_MESSAGE, task_id)
    return SetWeight(task_id=task_id, weight=weight)


def _require_task_id(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Task ID is required")
    return value.strip()


def _parse_number(value: Any) -> float | None:
    """Accept ints, floats and numeric strings; reject bools, NaN and infinities."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number
