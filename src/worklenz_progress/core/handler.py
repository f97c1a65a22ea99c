"""Authoritative handling of progress commands arriving over the socket."""

import asyncio
import dataclasses
import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from worklenz_progress.core import projects as projects_mod
from worklenz_progress.core import tasks as tasks_mod
from worklenz_progress.core.commands import (
    COMMAND_EVENTS,
    ERROR,
    GET_TASK_PROGRESS,
    JOIN_PROJECT,
    LEAVE_PROJECT,
    TASK_PROGRESS,
    Command,
    GetProgress,
    SetManualProgress,
    SetWeight,
    parse_command,
)
from worklenz_progress.core.errors import NotFoundError, ProgressError, StructuralViolation, ValidationError
from worklenz_progress.core.progress import compute_ratio
from worklenz_progress.db.engine import get_db
from worklenz_progress.db.models import Task
from worklenz_progress.realtime.broadcaster import ProgressChannel, project_room, task_room

logger = logging.getLogger(__name__)


class TaskLocks:
    """One asyncio.Lock per task id, released from the table once unused."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, task_id: str):
        lock = self._locks.setdefault(task_id, asyncio.Lock())
        self._holders[task_id] = self._holders.get(task_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[task_id] -= 1
            if not self._holders[task_id]:
                del self._holders[task_id]
                del self._locks[task_id]

    def __len__(self) -> int:
        return len(self._locks)


class ProgressCommandHandler:
    """Validates commands, mutates the store and pushes recomputed progress.

    Business-rule failures become ``success: false`` acknowledgements to the
    caller. Store failures are logged and produce no acknowledgement at all.
    """

    def __init__(self, db_path: Path, channel: ProgressChannel):
        self.db_path = db_path
        self.channel = channel
        self.locks = TaskLocks()

    async def handle(self, session_id: str, event: str, data: Any) -> dict | None:
        """Entry point for one inbound socket event."""
        if event in (JOIN_PROJECT, LEAVE_PROJECT):
            return self._room_membership(session_id, event, data)

        if event not in COMMAND_EVENTS:
            await self.channel.emit(session_id, ERROR, {"message": f"Unknown event: {event}"})
            return None

        try:
            command = parse_command(event, data)
        except ValidationError as e:
            if event == GET_TASK_PROGRESS:
                logger.debug("Ignoring %s without a task id", event)
                return None
            ack = _failure_ack(e)
            await self.channel.emit(session_id, event, ack)
            return ack

        return await self.dispatch(session_id, command)

    async def dispatch(self, session_id: str, command: Command) -> dict | None:
        try:
            if isinstance(command, GetProgress):
                return await self._on_get_progress(session_id, command)
            if isinstance(command, SetManualProgress):
                return await self._on_set_manual_progress(session_id, command)
            if isinstance(command, SetWeight):
                return await self._on_set_weight(session_id, command)
        except sqlite3.Error:
            logger.exception("Store failure handling %s for task %s", command.event, command.task_id)
            return None
        raise TypeError(f"Unsupported command: {command!r}")

    def get_progress(self, task_id: str) -> dict | None:
        """Read-only progress payload for a task, or None if it does not exist."""
        with get_db(self.db_path) as db:
            task = tasks_mod.get_task(db, task_id)
            if not task:
                return None
            return progress_payload(db, task)

    # ── Commands ──────────────────────────────────────────────────────────────

    async def _on_get_progress(self, session_id: str, command: GetProgress) -> dict | None:
        payload = self.get_progress(command.task_id)
        if payload is None:
            logger.debug("Progress requested for unknown task %s", command.task_id)
            return None
        self.channel.join(session_id, task_room(command.task_id))
        await self.channel.emit(session_id, TASK_PROGRESS, payload)
        return payload

    async def _on_set_manual_progress(self, session_id: str, command: SetManualProgress) -> dict:
        async with self.locks.hold(command.task_id):
            with get_db(self.db_path) as db:
                try:
                    ack = _apply_manual_progress(db, command)
                except ProgressError as e:
                    ack = _failure_ack(e, command.task_id)
                    await self.channel.emit(session_id, command.event, ack)
                    return ack

                await self.channel.emit(session_id, command.event, ack)
                await self._publish(session_id, db, command.task_id)
                return ack

    async def _on_set_weight(self, session_id: str, command: SetWeight) -> dict:
        async with self.locks.hold(command.task_id):
            with get_db(self.db_path) as db:
                task = tasks_mod.update_task_weight(db, command.task_id, command.weight)
                if not task:
                    ack = _failure_ack(NotFoundError("Task not found"), command.task_id)
                    await self.channel.emit(session_id, command.event, ack)
                    return ack

                logger.info("Task %s weight set to %d", task.id, task.weight)
                ack = {
                    "success": True,
                    "message": "Task weight updated successfully",
                    "task_id": task.id,
                }
                await self.channel.emit(session_id, command.event, ack)
                await self.channel.broadcast(
                    TASK_PROGRESS, {"id": task.id, "weight": task.weight}, exclude=session_id
                )
                await self._publish(session_id, db, task.id)
                return ack

    # ── Fan-out ───────────────────────────────────────────────────────────────

    async def _publish(self, session_id: str, db: sqlite3.Connection, task_id: str) -> list[dict]:
        """Push the task's progress, then its parent's, to the caller and the rooms."""
        task = tasks_mod.get_task(db, task_id)
        if not task:
            return []
        targets = [task]
        # Nesting is one level deep, so the parent is the only ancestor.
        if task.is_subtask and (parent := tasks_mod.get_task(db, task.parent_task_id)):
            targets.append(parent)

        published = []
        for target in targets:
            payload = progress_payload(db, target)
            self.channel.join(session_id, task_room(target.id))
            await self.channel.emit(session_id, TASK_PROGRESS, payload)
            await self.channel.broadcast(
                TASK_PROGRESS,
                payload,
                rooms=[task_room(target.id), project_room(target.project_id)],
                exclude=session_id,
            )
            published.append(payload)
        return published

    def _room_membership(self, session_id: str, event: str, data: Any) -> dict | None:
        project_id = data.get("project_id") if isinstance(data, dict) else data
        if not isinstance(project_id, str) or not project_id:
            logger.debug("Ignoring %s without a project id", event)
            return None
        room = project_room(project_id)
        if event == JOIN_PROJECT:
            self.channel.join(session_id, room)
        else:
            self.channel.leave(session_id, room)
        return {"room": room}


def progress_payload(db: sqlite3.Connection, task: Task) -> dict:
    """The ``task_progress`` payload for a loaded task (subtasks included)."""
    project = projects_mod.get_project(db, task.project_id)
    weighted = project.use_weighted_progress if project else True
    result = compute_ratio(task, task.subtasks, weighted=weighted)
    payload = {
        "id": task.id,
        "complete_ratio": result.ratio,
        "completed_count": result.completed_count or 0,
        "total_tasks_count": result.total_count or 0,
        "is_manual": task.manual_progress,
    }
    if task.is_subtask:
        payload["parent_task"] = task.parent_task_id
    return payload


def _apply_manual_progress(db: sqlite3.Connection, command: SetManualProgress) -> dict:
    task = tasks_mod.get_task(db, command.task_id)
    if not task:
        raise NotFoundError("Task not found", command.task_id)

    project = projects_mod.get_project(db, task.project_id)
    weighted = project.use_weighted_progress if project else True

    if command.wants_manual:
        if task.subtasks:
            raise StructuralViolation("Manual progress cannot be set on tasks with subtasks", task.id)
        if project and not project.use_manual_progress:
            raise StructuralViolation("Manual progress is disabled for this project", task.id)
        task = tasks_mod.set_manual_progress(db, task.id, command.progress_value)
    else:
        automatic = dataclasses.replace(task, manual_progress=False)
        ratio = compute_ratio(automatic, task.subtasks, weighted=weighted).ratio
        task = tasks_mod.set_automatic_progress(db, task.id, ratio)

    result = compute_ratio(task, task.subtasks, weighted=weighted)
    logger.info(
        "Task %s progress now %s at %d%%",
        task.id,
        "manual" if task.manual_progress else "automatic",
        result.ratio,
    )
    return {
        "success": True,
        "task_id": task.id,
        "manual_progress": task.manual_progress,
        "complete_ratio": result.ratio,
        "is_manual": task.manual_progress,
        "parent_task_id": task.parent_task_id,
    }


def _failure_ack(error: ProgressError, task_id: str | None = None) -> dict:
    return {"success": False, "message": error.message, "task_id": task_id or error.task_id}
