"""CLI entry point for the task progress service."""

import asyncio
import json
import sys

import click

from worklenz_progress.config import get_config
from worklenz_progress.core import projects as projects_mod
from worklenz_progress.core import tasks as tasks_mod
from worklenz_progress.core.commands import SET_MANUAL_PROGRESS, UPDATE_TASK_WEIGHT
from worklenz_progress.core.handler import ProgressCommandHandler, progress_payload
from worklenz_progress.db.engine import get_db
from worklenz_progress.logging_setup import configure_logging
from worklenz_progress.realtime.broadcaster import Broadcaster

CLI_SESSION = "cli"


def _get_db():
    config = get_config()
    return get_db(config.db_path)


def _run_command(event: str, data: dict) -> dict | None:
    """Run one socket command through the handler with no listeners attached."""
    handler = ProgressCommandHandler(get_config().db_path, Broadcaster())
    return asyncio.run(handler.handle(CLI_SESSION, event, data))


@click.group()
@click.option("--log-level", default="WARNING", help="Logging level for CLI output")
def main(log_level):
    """wlp - Worklenz task progress CLI"""
    configure_logging(log_level)


# ── Project Commands ──────────────────────────────────────────────────────────


@main.group("project")
def project_group():
    """Manage projects."""
    pass


@project_group.command("add")
@click.argument("name")
@click.option("--manual/--no-manual", default=True, help="Allow manual progress on leaf tasks")
@click.option("--weighted/--unweighted", default=True, help="Weight subtasks when aggregating")
def project_add(name, manual, weighted):
    """Create a new project."""
    project_id = tasks_mod.slugify(name)
    with _get_db() as db:
        project = projects_mod.create_project(db, project_id, name, manual, weighted)
        click.echo(f"Project created: {project.id} ({project.name})")


@project_group.command("set")
@click.argument("project_id")
@click.option("--name", default=None, help="Rename the project")
@click.option("--manual/--no-manual", default=None, help="Allow manual progress on leaf tasks")
@click.option("--weighted/--unweighted", default=None, help="Weight subtasks when aggregating")
def project_set(project_id, name, manual, weighted):
    """Change a project's name or progress settings."""
    with _get_db() as db:
        project = projects_mod.update_project(
            db, project_id, name=name, use_manual_progress=manual, use_weighted_progress=weighted
        )
        if not project:
            click.echo(f"Project not found: {project_id}", err=True)
            sys.exit(1)
        click.echo(f"Project '{project.id}' updated")
        click.echo(f"  Manual progress: {'on' if project.use_manual_progress else 'off'}")
        click.echo(f"  Weighted progress: {'on' if project.use_weighted_progress else 'off'}")


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage tasks."""
    pass


@task_group.command("add")
@click.argument("title")
@click.option("--project", default="default", help="Project ID")
@click.option("--parent", default=None, help="Parent task ID (creates a subtask)")
@click.option("--weight", "-w", default=1, type=int, help="Contribution weight as a subtask")
def task_add(title, project, parent, weight):
    """Create a new task."""
    with _get_db() as db:
        if project == "default":
            projects_mod.ensure_default_project(db)
        elif not projects_mod.get_project(db, project):
            click.echo(f"Project not found: {project}", err=True)
            sys.exit(1)
        try:
            task = tasks_mod.create_task(db, title, project, parent_task_id=parent, weight=weight)
        except ValueError as e:
            click.echo(str(e), err=True)
            sys.exit(1)
        click.echo(f"Created task: {task.id}")
        click.echo(f"  Title: {task.title}")
        if task.is_subtask:
            click.echo(f"  Parent: {task.parent_task_id}")
            click.echo(f"  Weight: {task.weight}")


@task_group.command("list")
@click.option("--project", default="default", help="Project ID")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_list(project, json_output):
    """List tasks with their progress."""
    with _get_db() as db:
        tasks = [tasks_mod.get_task(db, t.id) for t in tasks_mod.list_tasks(db, project)]

        if json_output:
            rows = []
            for task in tasks:
                row = _task_dict(db, task)
                row["subtasks"] = [_task_dict(db, s) for s in task.subtasks]
                rows.append(row)
            click.echo(json.dumps(rows, indent=2))
            return

        if not tasks:
            click.echo("No tasks found.")
            return

        for task in tasks:
            click.echo(f"  {_progress_line(db, task)}")
            for sub in task.subtasks:
                click.echo(f"    {_progress_line(db, sub)} [w{sub.weight}]")


@task_group.command("done")
@click.argument("task_id")
@click.option("--undo", is_flag=True, help="Move the task back to todo")
def task_done(task_id, undo):
    """Mark a task done."""
    with _get_db() as db:
        task = tasks_mod.update_task_status(db, task_id, "todo" if undo else "done")
        if not task:
            click.echo(f"Task not found: {task_id}", err=True)
            sys.exit(1)
        click.echo(f"Task '{task.id}' is now {task.status}")


# ── Progress Commands ─────────────────────────────────────────────────────────


@main.group("progress")
def progress_group():
    """Inspect and change task progress."""
    pass


@progress_group.command("get")
@click.argument("task_id")
def progress_get(task_id):
    """Show the computed progress of a task as JSON."""
    with _get_db() as db:
        task = tasks_mod.get_task(db, task_id)
        if not task:
            click.echo(f"Task not found: {task_id}", err=True)
            sys.exit(1)
        click.echo(json.dumps(progress_payload(db, task), indent=2))


@progress_group.command("set")
@click.argument("task_id")
@click.argument("value", required=False, type=float)
@click.option("--auto", "automatic", is_flag=True, help="Return the task to automatic progress")
def progress_set(task_id, value, automatic):
    """Set manual progress (0-100) on a leaf task, or --auto to recalculate."""
    if automatic:
        data = {"task_id": task_id, "enable_manual": False, "recalculate": True}
    else:
        if value is None:
            click.echo("A progress value is required unless --auto is given", err=True)
            sys.exit(2)
        data = {"task_id": task_id, "enable_manual": True, "progress_value": value}

    ack = _run_command(SET_MANUAL_PROGRESS, data)
    _report(ack)
    mode = "manual" if ack["is_manual"] else "automatic"
    click.echo(f"Task '{task_id}' progress: {ack['complete_ratio']}% ({mode})")


@progress_group.command("weight")
@click.argument("task_id")
@click.argument("weight", type=float)
def progress_weight(task_id, weight):
    """Set the contribution weight of a subtask."""
    ack = _run_command(UPDATE_TASK_WEIGHT, {"task_id": task_id, "weight": weight})
    _report(ack)
    click.echo(ack["message"])


# ── Server Command ────────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--host", default=None, help="Host to bind to (defaults to WLP_HOST)")
@click.option("--port", default=None, type=int, help="Port to listen on (defaults to WLP_PORT)")
def serve_command(host, port):
    """Run the HTTP + WebSocket progress server."""
    from worklenz_progress.web.app import run_server

    run_server(host=host, port=port)


# ── Helpers ───────────────────────────────────────────────────────────────────


def _report(ack: dict | None):
    if ack is None:
        click.echo("Failed to update: the store is unavailable", err=True)
        sys.exit(1)
    if not ack["success"]:
        click.echo(f"Error: {ack['message']}", err=True)
        sys.exit(1)


def _progress_line(db, task) -> str:
    progress = progress_payload(db, task)
    marker = " (manual)" if progress["is_manual"] else ""
    counts = ""
    if progress["total_tasks_count"]:
        counts = f" [{progress['completed_count']}/{progress['total_tasks_count']}]"
    return f"{progress['complete_ratio']:>3}% {task.id}: {task.title}{marker}{counts}"


def _task_dict(db, task) -> dict:
    progress = progress_payload(db, task)
    return {
        "id": task.id,
        "title": task.title,
        "status": task.status,
        "project": task.project_id,
        "parent_task_id": task.parent_task_id,
        "weight": task.weight,
        "complete_ratio": progress["complete_ratio"],
        "is_manual": progress["is_manual"],
    }


if __name__ == "__main__":
    main()
