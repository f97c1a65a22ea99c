"""Task management operations and the progress fields of the task store."""

import re
import sqlite3
from datetime import datetime

from worklenz_progress.core.progress import clamp_progress, clamp_weight
from worklenz_progress.db.models import Task, TaskEvent

VALID_STATUSES = ("todo", "in-progress", "done")


def slugify(title: str) -> str:
    """Convert a title to a URL-friendly slug."""
    slug = title.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60]


def _unique_id(db: sqlite3.Connection, base_slug: str) -> str:
    """Generate a unique task ID from a slug, appending a number if needed."""
    existing = db.execute(
        "SELECT id FROM tasks WHERE id = ?", (base_slug,)
    ).fetchone()
    if not existing:
        return base_slug

    i = 2
    while True:
        candidate = f"{base_slug}-{i}"
        existing = db.execute(
            "SELECT id FROM tasks WHERE id = ?", (candidate,)
        ).fetchone()
        if not existing:
            return candidate
        i += 1


def create_task(
    db: sqlite3.Connection,
    title: str,
    project_id: str = "default",
    parent_task_id: str | None = None,
    weight: int = 1,
) -> Task:
    """Create a new task. Subtasks inherit their parent's project."""
    if parent_task_id is not None:
        parent = get_task(db, parent_task_id)
        if not parent:
            raise ValueError(f"Parent task not found: {parent_task_id}")
        if parent.parent_task_id is not None:
            raise ValueError(f"Subtasks cannot have subtasks: {parent_task_id}")
        project_id = parent.project_id

    task_id = _unique_id(db, slugify(title))
    db.execute(
        """INSERT INTO tasks (id, project_id, title, parent_task_id, weight)
           VALUES (?, ?, ?, ?, ?)""",
        (task_id, project_id, title, parent_task_id, clamp_weight(weight)),
    )
    _log_event(db, task_id, "created", None, "todo")
    db.commit()
    return get_task(db, task_id)


def get_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    """Get a task by ID with its subtasks."""
    row = db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if not row:
        return None

    task = _row_to_task(row)
    task.subtasks = list_subtasks(db, task_id)
    return task


def list_subtasks(db: sqlite3.Connection, task_id: str) -> list[Task]:
    rows = db.execute(
        "SELECT * FROM tasks WHERE parent_task_id = ? ORDER BY created_at ASC, rowid ASC",
        (task_id,),
    ).fetchall()
    return [_row_to_task(r) for r in rows]


def list_tasks(
    db: sqlite3.Connection,
    project_id: str = "default",
    status: str | None = None,
    parent_task_id: str | None = None,
) -> list[Task]:
    """List tasks with optional filters. Without a parent, only top-level tasks."""
    query = "SELECT * FROM tasks WHERE project_id = ?"
    params: list = [project_id]

    if status:
        query += " AND status = ?"
        params.append(status)

    if parent_task_id is not None:
        query += " AND parent_task_id = ?"
        params.append(parent_task_id)
    else:
        query += " AND parent_task_id IS NULL"

    query += " ORDER BY created_at ASC, rowid ASC"
    rows = db.execute(query, params).fetchall()
    return [_row_to_task(r) for r in rows]


def update_task_status(
    db: sqlite3.Connection,
    task_id: str,
    status: str,
) -> Task | None:
    """Update a task's status. Returns the updated task."""
    if status not in VALID_STATUSES:
        raise ValueError(f"Invalid status: {status}")
    task = get_task(db, task_id)
    if not task:
        return None

    db.execute(
        "UPDATE tasks SET status = ?, updated_at = datetime('now') WHERE id = ?",
        (status, task_id),
    )
    _log_event(db, task_id, "status_changed", task.status, status)
    db.commit()
    return get_task(db, task_id)


def delete_task(db: sqlite3.Connection, task_id: str) -> bool:
    """Delete a task and its subtasks."""
    task = get_task(db, task_id)
    if not task:
        return False

    for subtask in task.subtasks:
        delete_task(db, subtask.id)

    db.execute("DELETE FROM task_events WHERE task_id = ?", (task_id,))
    db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
    db.commit()
    return True


# ── Progress fields ───────────────────────────────────────────────────────────


def set_manual_progress(
    db: sqlite3.Connection,
    task_id: str,
    progress_value: float,
) -> Task | None:
    """Put a task in manual mode with a clamped literal progress value."""
    task = get_task(db, task_id)
    if not task:
        return None

    value = clamp_progress(progress_value)
    db.execute(
        """UPDATE tasks SET manual_progress = 1, progress_value = ?, updated_at = datetime('now')
           WHERE id = ?""",
        (value, task_id),
    )
    _log_event(db, task_id, "manual_progress_changed", _progress_label(task), f"manual:{value}")
    db.commit()
    return get_task(db, task_id)


def set_automatic_progress(
    db: sqlite3.Connection,
    task_id: str,
    materialized_ratio: int | None,
) -> Task | None:
    """Return a task to automatic mode, storing the last computed ratio."""
    task = get_task(db, task_id)
    if not task:
        return None

    value = clamp_progress(materialized_ratio) if materialized_ratio is not None else None
    db.execute(
        """UPDATE tasks SET manual_progress = 0, progress_value = ?, updated_at = datetime('now')
           WHERE id = ?""",
        (value, task_id),
    )
    _log_event(db, task_id, "progress_recalculated", _progress_label(task), f"auto:{value}")
    db.commit()
    return get_task(db, task_id)


def update_task_weight(
    db: sqlite3.Connection,
    task_id: str,
    weight: float,
) -> Task | None:
    """Persist a task's weight, rounded and clamped to at least 1."""
    task = get_task(db, task_id)
    if not task:
        return None

    value = clamp_weight(weight)
    db.execute(
        "UPDATE tasks SET weight = ?, updated_at = datetime('now') WHERE id = ?",
        (value, task_id),
    )
    _log_event(db, task_id, "weight_changed", str(task.weight), str(value))
    db.commit()
    return get_task(db, task_id)


def get_task_events(db: sqlite3.Connection, task_id: str) -> list[TaskEvent]:
    """Get the event history for a task."""
    rows = db.execute(
        "SELECT * FROM task_events WHERE task_id = ? ORDER BY created_at, id",
        (task_id,),
    ).fetchall()
    return [
        TaskEvent(
            id=r["id"],
            task_id=r["task_id"],
            event_type=r["event_type"],
            old_value=r["old_value"],
            new_value=r["new_value"],
            created_at=_parse_dt(r["created_at"]),
        )
        for r in rows
    ]


def _progress_label(task: Task) -> str:
    mode = "manual" if task.manual_progress else "auto"
    return f"{mode}:{task.progress_value}"


def _log_event(
    db: sqlite3.Connection,
    task_id: str,
    event_type: str,
    old_value: str | None,
    new_value: str | None,
):
    db.execute(
        "INSERT INTO task_events (task_id, event_type, old_value, new_value) VALUES (?, ?, ?, ?)",
        (task_id, event_type, old_value, new_value),
    )


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        project_id=row["project_id"],
        title=row["title"],
        status=row["status"],
        parent_task_id=row["parent_task_id"],
        manual_progress=bool(row["manual_progress"]),
        progress_value=row["progress_value"],
        weight=row["weight"] if row["weight"] is not None else 1,
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
