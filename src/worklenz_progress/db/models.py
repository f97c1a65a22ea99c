"""Data models for the progress store."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Project:
    id: str
    name: str
    use_manual_progress: bool = True
    use_weighted_progress: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Task:
    id: str
    project_id: str
    title: str
    status: str = "todo"
    parent_task_id: str | None = None
    manual_progress: bool = False
    progress_value: int | None = None
    weight: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    subtasks: list["Task"] = field(default_factory=list)

    @property
    def is_subtask(self) -> bool:
        return self.parent_task_id is not None


@dataclass
class TaskEvent:
    id: int | None = None
    task_id: str = ""
    event_type: str = ""
    old_value: str | None = None
    new_value: str | None = None
    created_at: datetime | None = None
