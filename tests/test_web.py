"""Tests for the HTTP API and the WebSocket transport."""

import pytest
from starlette.testclient import TestClient

from worklenz_progress.web.app import create_app


@pytest.fixture
def client(store):
    with TestClient(create_app(store)) as client:
        yield client


def _receive_until(ws, event):
    """Read frames until one for ``event`` arrives, returning its data."""
    for _ in range(20):
        frame = ws.receive_json()
        if frame["event"] == event:
            return frame["data"]
    raise AssertionError(f"no {event} frame received")


class TestProjectsAPI:
    def test_list_projects(self, client):
        resp = client.get("/api/projects")
        assert resp.status_code == 200
        data = resp.json()
        assert data[0]["id"] == "demo"
        assert data[0]["use_weighted_progress"] is True

    def test_project_tasks_nested_with_progress(self, client):
        resp = client.get("/api/projects/demo/tasks")
        assert resp.status_code == 200
        tasks = resp.json()
        assert [t["id"] for t in tasks] == ["p", "leaf"]
        parent = tasks[0]
        assert parent["complete_ratio"] == 25
        assert parent["total_tasks_count"] == 2
        assert [s["id"] for s in parent["subtasks"]] == ["s1", "s2"]
        assert parent["subtasks"][1]["weight"] == 3

    def test_unknown_project(self, client):
        assert client.get("/api/projects/nope/tasks").status_code == 404


class TestTasksAPI:
    def test_get_task_with_events(self, client):
        resp = client.get("/api/tasks/s1")
        assert resp.status_code == 200
        data = resp.json()
        assert data["manual_progress"] is True
        assert data["progress_value"] == 100
        assert [e["event_type"] for e in data["events"]] == ["created", "manual_progress_changed"]

    def test_get_task_progress(self, client):
        resp = client.get("/api/tasks/p/progress")
        assert resp.status_code == 200
        assert resp.json() == {
            "id": "p",
            "complete_ratio": 25,
            "completed_count": 1,
            "total_tasks_count": 2,
            "is_manual": False,
        }

    def test_unknown_task(self, client):
        assert client.get("/api/tasks/nope").status_code == 404
        assert client.get("/api/tasks/nope/progress").status_code == 404


class TestWebSocket:
    def test_connected_frame(self, client):
        with client.websocket_connect("/ws") as ws:
            data = _receive_until(ws, "connected")
            assert data["session_id"]

    def test_get_progress(self, client):
        with client.websocket_connect("/ws") as ws:
            _receive_until(ws, "connected")
            ws.send_json({"event": "get_task_progress", "data": "p"})
            assert _receive_until(ws, "task_progress")["complete_ratio"] == 25

    def test_weight_then_refetch(self, client):
        with client.websocket_connect("/ws") as ws:
            _receive_until(ws, "connected")
            ws.send_json({"event": "update_task_weight", "data": {"task_id": "s2", "weight": 1}})
            ack = _receive_until(ws, "update_task_weight")
            assert ack["success"] is True
            assert ack["task_id"] == "s2"
            ws.send_json({"event": "get_task_progress", "data": "p"})
            payloads = [_receive_until(ws, "task_progress") for _ in range(3)]
            assert [p["id"] for p in payloads] == ["s2", "p", "p"]
            assert payloads[-1]["complete_ratio"] == 50

    def test_manual_progress_rejected_on_parent(self, client):
        with client.websocket_connect("/ws") as ws:
            _receive_until(ws, "connected")
            ws.send_json({
                "event": "set_manual_progress",
                "data": {"task_id": "p", "enable_manual": True, "progress_value": 75, "team_id": "t"},
            })
            ack = _receive_until(ws, "set_manual_progress")
            assert ack["success"] is False
        assert client.get("/api/tasks/p/progress").json()["is_manual"] is False

    def test_bad_frames_keep_connection_open(self, client):
        with client.websocket_connect("/ws") as ws:
            _receive_until(ws, "connected")
            ws.send_text("not json")
            assert "JSON" in _receive_until(ws, "error")["message"]
            ws.send_json(["no", "event"])
            assert "event" in _receive_until(ws, "error")["message"]
            ws.send_json({"event": "get_task_progress", "data": "leaf"})
            assert _receive_until(ws, "task_progress")["id"] == "leaf"

    def test_binary_frame_keeps_connection_open(self, client):
        with client.websocket_connect("/ws") as ws:
            _receive_until(ws, "connected")
            ws.send_bytes(b'{"event": "get_task_progress", "data": "leaf"}')
            assert "binary" in _receive_until(ws, "error")["message"]
            ws.send_json({"event": "get_task_progress", "data": "leaf"})
            assert _receive_until(ws, "task_progress")["id"] == "leaf"

    def test_update_reaches_project_watcher(self, client):
        with client.websocket_connect("/ws") as editor, client.websocket_connect("/ws") as watcher:
            _receive_until(editor, "connected")
            _receive_until(watcher, "connected")
            watcher.send_json({"event": "join_project", "data": {"project_id": "demo"}})
            # Round-trip so the join is processed before the edit.
            watcher.send_json({"event": "get_task_progress", "data": "leaf"})
            _receive_until(watcher, "task_progress")

            editor.send_json({
                "event": "set_manual_progress",
                "data": {"task_id": "leaf", "enable_manual": True, "progress_value": 55},
            })
            assert _receive_until(editor, "set_manual_progress")["complete_ratio"] == 55
            pushed = _receive_until(watcher, "task_progress")
            assert pushed == {
                "id": "leaf",
                "complete_ratio": 55,
                "completed_count": 0,
                "total_tasks_count": 0,
                "is_manual": True,
            }
