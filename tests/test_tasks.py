"""Tests for task store operations and the progress fields."""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from worklenz_progress.core import projects as projects_mod
from worklenz_progress.core import tasks as tasks_mod
from worklenz_progress.db.engine import init_db


@pytest.fixture
def db():
    """Create a temporary SQLite database for testing."""
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        conn = init_db(db_path)
        projects_mod.create_project(conn, "test", "Test Project")
        yield conn
        conn.close()


class TestSlugify:
    def test_basic(self):
        assert tasks_mod.slugify("Hello World") == "hello-world"

    def test_special_chars(self):
        assert tasks_mod.slugify("Auth: Login & Signup!") == "auth-login-signup"

    def test_truncation(self):
        assert len(tasks_mod.slugify("a" * 100)) <= 60


class TestTaskCRUD:
    def test_create_task_defaults(self, db):
        task = tasks_mod.create_task(db, "Build login page", "test")
        assert task.id == "build-login-page"
        assert task.status == "todo"
        assert task.manual_progress is False
        assert task.progress_value is None
        assert task.weight == 1
        assert task.parent_task_id is None

    def test_create_duplicate_gets_suffix(self, db):
        t1 = tasks_mod.create_task(db, "Same", "test")
        t2 = tasks_mod.create_task(db, "Same", "test")
        assert t1.id == "same"
        assert t2.id == "same-2"

    def test_subtask_inherits_project(self, db):
        projects_mod.create_project(db, "other", "Other")
        tasks_mod.create_task(db, "Parent", "test")
        sub = tasks_mod.create_task(db, "Child", "other", parent_task_id="parent")
        assert sub.project_id == "test"
        assert sub.is_subtask

    def test_subtask_of_missing_parent(self, db):
        with pytest.raises(ValueError, match="not found"):
            tasks_mod.create_task(db, "Orphan", "test", parent_task_id="ghost")

    def test_nesting_is_single_level(self, db):
        tasks_mod.create_task(db, "Top", "test")
        tasks_mod.create_task(db, "Middle", "test", parent_task_id="top")
        with pytest.raises(ValueError, match="cannot have subtasks"):
            tasks_mod.create_task(db, "Bottom", "test", parent_task_id="middle")

    def test_get_task_loads_subtasks_in_order(self, db):
        tasks_mod.create_task(db, "Parent", "test")
        tasks_mod.create_task(db, "First", "test", parent_task_id="parent")
        tasks_mod.create_task(db, "Second", "test", parent_task_id="parent")
        parent = tasks_mod.get_task(db, "parent")
        assert [s.id for s in parent.subtasks] == ["first", "second"]

    def test_list_tasks_top_level_only(self, db):
        tasks_mod.create_task(db, "Parent", "test")
        tasks_mod.create_task(db, "Child", "test", parent_task_id="parent")
        assert [t.id for t in tasks_mod.list_tasks(db, "test")] == ["parent"]
        assert [t.id for t in tasks_mod.list_tasks(db, "test", parent_task_id="parent")] == ["child"]

    def test_update_status(self, db):
        tasks_mod.create_task(db, "Status test", "test")
        task = tasks_mod.update_task_status(db, "status-test", "done")
        assert task.status == "done"

    def test_update_status_rejects_unknown(self, db):
        tasks_mod.create_task(db, "Status test", "test")
        with pytest.raises(ValueError, match="Invalid status"):
            tasks_mod.update_task_status(db, "status-test", "blocked")

    def test_delete_task_removes_subtasks(self, db):
        tasks_mod.create_task(db, "Parent", "test")
        tasks_mod.create_task(db, "Child", "test", parent_task_id="parent")
        assert tasks_mod.delete_task(db, "parent") is True
        assert tasks_mod.get_task(db, "parent") is None
        assert tasks_mod.get_task(db, "child") is None

    def test_delete_nonexistent(self, db):
        assert tasks_mod.delete_task(db, "nope") is False


class TestWeight:
    @pytest.mark.parametrize("raw, stored", [(-5, 1), (0, 1), (3.7, 4), (2.5, 3), (7, 7)])
    def test_weight_rounded_and_clamped(self, db, raw, stored):
        tasks_mod.create_task(db, "Weighted", "test")
        task = tasks_mod.update_task_weight(db, "weighted", raw)
        assert task.weight == stored

    def test_create_with_weight_clamped(self, db):
        task = tasks_mod.create_task(db, "Light", "test", weight=0)
        assert task.weight == 1

    def test_weight_missing_task(self, db):
        assert tasks_mod.update_task_weight(db, "ghost", 3) is None

    def test_weight_change_logged(self, db):
        tasks_mod.create_task(db, "Weighted", "test")
        tasks_mod.update_task_weight(db, "weighted", 3)
        events = [e for e in tasks_mod.get_task_events(db, "weighted") if e.event_type == "weight_changed"]
        assert len(events) == 1
        assert events[0].old_value == "1"
        assert events[0].new_value == "3"

    def test_schema_rejects_zero_weight(self, db):
        tasks_mod.create_task(db, "Raw", "test")
        with pytest.raises(sqlite3.IntegrityError):
            db.execute("UPDATE tasks SET weight = 0 WHERE id = 'raw'")


class TestManualProgressFields:
    @pytest.mark.parametrize("raw, stored", [(150, 100), (-20, 0), (42, 42), (33.5, 34)])
    def test_manual_value_clamped(self, db, raw, stored):
        tasks_mod.create_task(db, "Leaf", "test")
        task = tasks_mod.set_manual_progress(db, "leaf", raw)
        assert task.manual_progress is True
        assert task.progress_value == stored

    def test_back_to_automatic_materializes_ratio(self, db):
        tasks_mod.create_task(db, "Leaf", "test")
        tasks_mod.set_manual_progress(db, "leaf", 70)
        task = tasks_mod.set_automatic_progress(db, "leaf", 0)
        assert task.manual_progress is False
        assert task.progress_value == 0

    def test_missing_task(self, db):
        assert tasks_mod.set_manual_progress(db, "ghost", 10) is None
        assert tasks_mod.set_automatic_progress(db, "ghost", 10) is None

    def test_events_logged(self, db):
        tasks_mod.create_task(db, "Leaf", "test")
        tasks_mod.set_manual_progress(db, "leaf", 40)
        tasks_mod.set_automatic_progress(db, "leaf", 0)
        types = [e.event_type for e in tasks_mod.get_task_events(db, "leaf")]
        assert types == ["created", "manual_progress_changed", "progress_recalculated"]


class TestProjects:
    def test_progress_flags_default_on(self, db):
        project = projects_mod.get_project(db, "test")
        assert project.use_manual_progress is True
        assert project.use_weighted_progress is True

    def test_update_flags(self, db):
        project = projects_mod.update_project(db, "test", use_weighted_progress=False)
        assert project.use_weighted_progress is False
        assert project.use_manual_progress is True

    def test_ensure_default_project(self, db):
        projects_mod.ensure_default_project(db)
        projects_mod.ensure_default_project(db)
        ids = [p.id for p in projects_mod.list_projects(db)]
        assert ids.count("default") == 1
