"""Progress ratio computation for tasks and their subtasks.

Everything in this module is pure: the same task rows always produce the
same ratio, and nothing here touches the database or the socket layer.
"""

import math
from dataclasses import dataclass

from worklenz_progress.db.models import Task

MIN_PROGRESS = 0
MAX_PROGRESS = 100
MIN_WEIGHT = 1


@dataclass(frozen=True)
class ProgressRatio:
    ratio: int
    completed_count: int | None
    total_count: int | None


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def clamp_progress(value: float) -> int:
    """Round and clamp a progress value into [0, 100]."""
    return max(MIN_PROGRESS, min(MAX_PROGRESS, round_half_up(value)))


def clamp_weight(value: float) -> int:
    """Round a weight and clamp it to a minimum of 1."""
    return max(MIN_WEIGHT, round_half_up(value))


def effective_ratio(task: Task) -> int:
    """The ratio a subtask contributes to its parent.

    Manual subtasks contribute their literal value; automatic ones count as
    fully done (100) or not at all (0) based on their status.
    """
    if task.manual_progress:
        return clamp_progress(task.progress_value or 0)
    return MAX_PROGRESS if task.status == "done" else MIN_PROGRESS


def compute_ratio(task: Task, subtasks: list[Task], weighted: bool = True) -> ProgressRatio:
    """Compute the display ratio of ``task`` given its subtasks."""
    if task.manual_progress:
        return ProgressRatio(clamp_progress(task.progress_value or 0), None, None)

    if not subtasks:
        return ProgressRatio(0, 0, 0)

    total_weight = 0
    weighted_sum = 0
    completed = 0
    for sub in subtasks:
        ratio = effective_ratio(sub)
        weight = clamp_weight(sub.weight or 0) if weighted else 1
        total_weight += weight
        weighted_sum += ratio * weight
        if ratio == MAX_PROGRESS:
            completed += 1

    if total_weight == 0:
        return ProgressRatio(0, completed, len(subtasks))

    return ProgressRatio(round_half_up(weighted_sum / total_weight), completed, len(subtasks))
