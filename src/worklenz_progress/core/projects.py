"""Project management operations."""

import sqlite3
from datetime import datetime

from worklenz_progress.db.models import Project


def create_project(
    db: sqlite3.Connection,
    project_id: str,
    name: str,
    use_manual_progress: bool = True,
    use_weighted_progress: bool = True,
) -> Project:
    """Create a new project."""
    db.execute(
        """INSERT INTO projects (id, name, use_manual_progress, use_weighted_progress)
           VALUES (?, ?, ?, ?)""",
        (project_id, name, int(use_manual_progress), int(use_weighted_progress)),
    )
    db.commit()
    return get_project(db, project_id)


def get_project(db: sqlite3.Connection, project_id: str) -> Project | None:
    """Get a project by ID."""
    row = db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    if not row:
        return None
    return _row_to_project(row)


def list_projects(db: sqlite3.Connection) -> list[Project]:
    """List all projects."""
    rows = db.execute("SELECT * FROM projects ORDER BY created_at DESC").fetchall()
    return [_row_to_project(r) for r in rows]


def update_project(
    db: sqlite3.Connection,
    project_id: str,
    **kwargs,
) -> Project | None:
    """Update project fields, including the progress-mode settings."""
    allowed = {"name", "use_manual_progress", "use_weighted_progress"}
    updates = {k: v for k, v in kwargs.items() if k in allowed and v is not None}
    if not updates:
        return get_project(db, project_id)

    for key in ("use_manual_progress", "use_weighted_progress"):
        if key in updates:
            updates[key] = int(bool(updates[key]))

    set_clause = ", ".join(f"{k} = ?" for k in updates)
    values = list(updates.values()) + [project_id]
    db.execute(
        f"UPDATE projects SET {set_clause}, updated_at = datetime('now') WHERE id = ?",
        values,
    )
    db.commit()
    return get_project(db, project_id)


def ensure_default_project(db: sqlite3.Connection) -> Project:
    """Ensure a 'default' project exists, creating it if needed."""
    project = get_project(db, "default")
    if not project:
        project = create_project(db, "default", "Default Project")
    return project


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        use_manual_progress=bool(row["use_manual_progress"]),
        use_weighted_progress=bool(row["use_weighted_progress"]),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
