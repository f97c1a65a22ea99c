"""Shared fixtures: a seeded progress store on a temporary SQLite file."""

import tempfile
from pathlib import Path

import pytest

from worklenz_progress.core import projects as projects_mod
from worklenz_progress.core import tasks as tasks_mod
from worklenz_progress.db.engine import init_db


@pytest.fixture
def store():
    """Parent P with manual subtasks S1 (100%, weight 1) and S2 (0%, weight 3), plus a leaf task."""
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        db = init_db(db_path)
        projects_mod.create_project(db, "demo", "Demo")
        tasks_mod.create_task(db, "P", "demo")
        tasks_mod.create_task(db, "S1", "demo", parent_task_id="p", weight=1)
        tasks_mod.create_task(db, "S2", "demo", parent_task_id="p", weight=3)
        tasks_mod.set_manual_progress(db, "s1", 100)
        tasks_mod.set_manual_progress(db, "s2", 0)
        tasks_mod.create_task(db, "Leaf", "demo")
        db.close()
        yield db_path
