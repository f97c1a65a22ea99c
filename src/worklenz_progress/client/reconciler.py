"""Client-side progress state kept consistent with server pushes.

Server state always wins. The one exception is a task the user is
editing: pushes for it are held back until the edit's acknowledgement
arrives, so the slider does not jump around under the user's hand.
"""

import dataclasses
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from worklenz_progress.client.channel import ClientChannel
from worklenz_progress.core.commands import (
    GET_TASK_PROGRESS,
    SET_MANUAL_PROGRESS,
    TASK_PROGRESS,
    UPDATE_TASK_WEIGHT,
)
from worklenz_progress.core.progress import clamp_progress, clamp_weight

logger = logging.getLogger(__name__)


@dataclass
class ProgressView:
    task_id: str
    complete_ratio: int = 0
    completed_count: int = 0
    total_tasks_count: int = 0
    is_manual: bool = False
    weight: int | None = None
    parent_task: str | None = None
    stale: bool = True


@dataclass
class PendingEdit:
    task_id: str
    value: int
    base: ProgressView
    deferred: dict | None = None


class ProgressReconciler:
    def __init__(self, channel: ClientChannel, team_id: str | None = None):
        self.channel = channel
        self.team_id = team_id
        self.views: dict[str, ProgressView] = {}
        self.pending: dict[str, PendingEdit] = {}
        self.errors: dict[str, str] = {}
        self._weight_requests: dict[str, int] = {}
        self._listeners: list[Callable[[str], None]] = []

        channel.on(TASK_PROGRESS, self._on_task_progress)
        channel.on(SET_MANUAL_PROGRESS, self._on_manual_ack)
        channel.on(UPDATE_TASK_WEIGHT, self._on_weight_ack)

    def close(self) -> None:
        self.channel.off(TASK_PROGRESS, self._on_task_progress)
        self.channel.off(SET_MANUAL_PROGRESS, self._on_manual_ack)
        self.channel.off(UPDATE_TASK_WEIGHT, self._on_weight_ack)

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Call ``callback(task_id)`` whenever a task's displayed progress changes."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get(self, task_id: str) -> ProgressView | None:
        return self.views.get(task_id)

    def display_ratio(self, task_id: str) -> int | None:
        """What the UI shows: the pending edit value if any, else server state."""
        if task_id in self.pending:
            return self.pending[task_id].value
        view = self.views.get(task_id)
        return view.complete_ratio if view else None

    # ── Fetching ──────────────────────────────────────────────────────────────

    def mount(self, task_id: str) -> None:
        """A progress element for ``task_id`` came into view."""
        if not task_id:
            return
        self._view(task_id)
        self.channel.emit(GET_TASK_PROGRESS, task_id)

    def mount_many(self, tasks: Iterable[Any]) -> None:
        """Fetch progress for a list view: parent tasks first, then subtasks."""
        tasks = list(tasks)
        parents = [t for t in tasks if not _field(t, "parent_task_id")]
        subtasks = [t for t in tasks if _field(t, "parent_task_id")]
        for task in parents + subtasks:
            self.mount(_field(task, "id"))

    def refresh_stale(self) -> list[str]:
        stale = [task_id for task_id, view in self.views.items() if view.stale]
        for task_id in stale:
            self.channel.emit(GET_TASK_PROGRESS, task_id)
        return stale

    # ── Editing ───────────────────────────────────────────────────────────────

    def begin_edit(self, task_id: str) -> None:
        view = self._view(task_id)
        self.pending[task_id] = PendingEdit(
            task_id=task_id,
            value=view.complete_ratio,
            base=dataclasses.replace(view),
        )

    def preview(self, task_id: str, value: float) -> None:
        edit = self.pending.get(task_id)
        if edit is None:
            raise KeyError(f"No edit in progress for task {task_id}")
        edit.value = clamp_progress(value)
        self._notify(task_id)

    def commit_edit(self, task_id: str) -> None:
        edit = self.pending.get(task_id)
        if edit is None:
            raise KeyError(f"No edit in progress for task {task_id}")
        view = self._view(task_id)
        self.channel.emit(SET_MANUAL_PROGRESS, {
            "task_id": task_id,
            "enable_manual": True,
            "progress_value": edit.value,
            "team_id": self.team_id,
            "parent_task_id": view.parent_task,
        })

    def cancel_edit(self, task_id: str) -> None:
        edit = self.pending.pop(task_id, None)
        if edit is None:
            return
        self._restore(edit)

    def recalculate(self, task_id: str) -> None:
        """Return a task to automatic progress."""
        self.channel.emit(SET_MANUAL_PROGRESS, {
            "task_id": task_id,
            "enable_manual": False,
            "recalculate": True,
            "team_id": self.team_id,
        })

    def update_weight(self, task_id: str, weight: float) -> None:
        value = clamp_weight(weight)
        self._weight_requests[task_id] = value
        self.channel.emit(UPDATE_TASK_WEIGHT, {"task_id": task_id, "weight": value})

    # ── Server events ─────────────────────────────────────────────────────────

    def _on_task_progress(self, payload: dict) -> None:
        if not isinstance(payload, dict) or not payload.get("id"):
            return
        task_id = payload["id"]

        if "complete_ratio" not in payload:
            # Weight-only notices go to every session; only refresh tasks in view.
            view = self.views.get(task_id)
            if view is None:
                return
            if "weight" in payload:
                view.weight = payload["weight"]
            view.stale = True
            self._notify(task_id)
            self.channel.emit(GET_TASK_PROGRESS, task_id)
            return

        edit = self.pending.get(task_id)
        if edit is not None:
            edit.deferred = payload
            return

        self._apply(payload)

        parent_id = payload.get("parent_task")
        if parent_id:
            self._view(parent_id).stale = True
            self.channel.emit(GET_TASK_PROGRESS, parent_id)

    def _on_manual_ack(self, ack: dict) -> None:
        if not isinstance(ack, dict):
            return
        task_id = ack.get("task_id")
        edit = self.pending.pop(task_id, None) if task_id else None

        if not ack.get("success"):
            message = ack.get("message") or "Failed to update progress"
            if task_id:
                self.errors[task_id] = message
            logger.warning("Progress update for %s rejected: %s", task_id, message)
            if edit is not None:
                self._restore(edit)
            return

        self.errors.pop(task_id, None)
        view = self._view(task_id)
        view.complete_ratio = ack.get("complete_ratio", view.complete_ratio)
        view.is_manual = bool(ack.get("is_manual"))
        if ack.get("parent_task_id"):
            view.parent_task = ack["parent_task_id"]
        self._notify(task_id)

        if edit is None:
            # Recalculation requests get a fresh fetch.
            self.channel.emit(GET_TASK_PROGRESS, task_id)

    def _on_weight_ack(self, ack: dict) -> None:
        if not isinstance(ack, dict):
            return
        task_id = ack.get("task_id")
        requested = self._weight_requests.pop(task_id, None)
        if not ack.get("success"):
            if task_id:
                self.errors[task_id] = ack.get("message") or "Failed to update weight"
            return

        view = self._view(task_id)
        if requested is not None:
            view.weight = requested
        self._notify(task_id)
        self.channel.emit(GET_TASK_PROGRESS, task_id)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _view(self, task_id: str) -> ProgressView:
        view = self.views.get(task_id)
        if view is None:
            view = self.views[task_id] = ProgressView(task_id=task_id)
        return view

    def _apply(self, payload: dict) -> None:
        view = self._view(payload["id"])
        view.complete_ratio = payload.get("complete_ratio", 0)
        view.completed_count = payload.get("completed_count", 0)
        view.total_tasks_count = payload.get("total_tasks_count", 0)
        view.is_manual = bool(payload.get("is_manual"))
        view.parent_task = payload.get("parent_task") or view.parent_task
        if "weight" in payload:
            view.weight = payload["weight"]
        view.stale = False
        self._notify(view.task_id)

    def _restore(self, edit: PendingEdit) -> None:
        if edit.deferred is not None:
            self._apply(edit.deferred)
            return
        self.views[edit.task_id] = dataclasses.replace(edit.base)
        self._notify(edit.task_id)

    def _notify(self, task_id: str) -> None:
        for callback in list(self._listeners):
            callback(task_id)


def _field(task: Any, name: str) -> Any:
    if isinstance(task, dict):
        return task.get(name)
    return getattr(task, name, None)
