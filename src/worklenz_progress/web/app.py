"""HTTP API and WebSocket transport for task progress."""

import json
import logging
from pathlib import Path

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from worklenz_progress.config import get_config
from worklenz_progress.core import projects as projects_mod
from worklenz_progress.core import tasks as tasks_mod
from worklenz_progress.core.commands import ERROR
from worklenz_progress.core.handler import ProgressCommandHandler, progress_payload
from worklenz_progress.db.engine import init_db
from worklenz_progress.logging_setup import configure_logging
from worklenz_progress.realtime.broadcaster import Broadcaster

logger = logging.getLogger(__name__)

CONNECTED = "connected"


def _get_db(request: Request):
    return init_db(request.app.state.db_path)


# ── HTTP handlers ─────────────────────────────────────────────────────────────


async def api_list_projects(request: Request):
    db = _get_db(request)
    try:
        return JSONResponse([_project_dict(p) for p in projects_mod.list_projects(db)])
    finally:
        db.close()


async def api_project_tasks(request: Request):
    project_id = request.path_params["project_id"]
    db = _get_db(request)
    try:
        if not projects_mod.get_project(db, project_id):
            return JSONResponse({"error": "Project not found"}, status_code=404)
        result = []
        for task in tasks_mod.list_tasks(db, project_id):
            full = tasks_mod.get_task(db, task.id)
            td = _task_dict(db, full)
            if full.subtasks:
                td["subtasks"] = [_task_dict(db, s) for s in full.subtasks]
            result.append(td)
        return JSONResponse(result)
    finally:
        db.close()


async def api_get_task(request: Request):
    task_id = request.path_params["task_id"]
    db = _get_db(request)
    try:
        task = tasks_mod.get_task(db, task_id)
        if not task:
            return JSONResponse({"error": "Task not found"}, status_code=404)
        td = _task_dict(db, task)
        td["events"] = [_event_dict(e) for e in tasks_mod.get_task_events(db, task_id)]
        if task.subtasks:
            td["subtasks"] = [_task_dict(db, s) for s in task.subtasks]
        return JSONResponse(td)
    finally:
        db.close()


async def api_task_progress(request: Request):
    payload = request.app.state.handler.get_progress(request.path_params["task_id"])
    if payload is None:
        return JSONResponse({"error": "Task not found"}, status_code=404)
    return JSONResponse(payload)


# ── WebSocket ─────────────────────────────────────────────────────────────────


async def progress_socket(websocket: WebSocket):
    """One connection: frames are ``{"event": ..., "data": ...}`` JSON objects."""
    broadcaster: Broadcaster = websocket.app.state.broadcaster
    handler: ProgressCommandHandler = websocket.app.state.handler

    await websocket.accept()

    async def send(event: str, payload: dict):
        await websocket.send_json({"event": event, "data": payload})

    session_id = broadcaster.connect(send)
    try:
        await send(CONNECTED, {"session_id": session_id})
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None:
                await send(ERROR, {"message": "Frames must be JSON text, not binary"})
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await send(ERROR, {"message": "Frames must be JSON"})
                continue
            if not isinstance(message, dict) or not isinstance(message.get("event"), str):
                await send(ERROR, {"message": "Frames must be {event, data} objects"})
                continue
            await handler.handle(session_id, message["event"], message.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(session_id)


# ── Serialization ─────────────────────────────────────────────────────────────


def _project_dict(p) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "use_manual_progress": p.use_manual_progress,
        "use_weighted_progress": p.use_weighted_progress,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


def _task_dict(db, t) -> dict:
    progress = progress_payload(db, t)
    return {
        "id": t.id,
        "title": t.title,
        "status": t.status,
        "project_id": t.project_id,
        "parent_task_id": t.parent_task_id,
        "weight": t.weight,
        "manual_progress": t.manual_progress,
        "progress_value": t.progress_value,
        "complete_ratio": progress["complete_ratio"],
        "completed_count": progress["completed_count"],
        "total_tasks_count": progress["total_tasks_count"],
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }


def _event_dict(e) -> dict:
    return {
        "id": e.id,
        "event_type": e.event_type,
        "old_value": e.old_value,
        "new_value": e.new_value,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(db_path: Path | None = None) -> Starlette:
    routes = [
        Route("/api/projects", api_list_projects),
        Route("/api/projects/{project_id}/tasks", api_project_tasks),
        Route("/api/tasks/{task_id}", api_get_task),
        Route("/api/tasks/{task_id}/progress", api_task_progress),
        WebSocketRoute("/ws", progress_socket),
    ]
    app = Starlette(routes=routes)
    app.state.db_path = db_path or get_config().db_path
    app.state.broadcaster = Broadcaster()
    app.state.handler = ProgressCommandHandler(app.state.db_path, app.state.broadcaster)
    return app


def run_server(host: str | None = None, port: int | None = None):
    config = get_config()
    configure_logging(config.log_level)
    app = create_app(config.db_path)
    logger.info("Serving task progress on %s:%s", host or config.host, port or config.port)
    uvicorn.run(app, host=host or config.host, port=port or config.port, log_config=None)
