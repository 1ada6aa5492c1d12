"""Tests for FastAPI endpoints (relay mocked, no LLM calls)."""

import asyncio
import json
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from forge3d import config
from forge3d.main import app
from forge3d.services import chat_service, llm_service
from forge3d.services.llm_service import RelayError
from forge3d.services.export_service import EMPTY_SCENE_MESSAGE

client = TestClient(app)


CUBE = """\
def create_object():
    cube = THREE.Mesh(THREE.BoxGeometry(1, 1, 1), THREE.MeshStandardMaterial(color=0xff0000))
    cube.position.y = 0.5
    return cube
"""


def fake_relay(code=CUBE, error=None):
    async def generate_code(message, provider=None, model=None):
        if error is not None:
            raise error
        return code.strip(), f"```python\n{code}```", {"provider": "openrouter", "model": "gemini-flash"}

    return generate_code


def new_scene() -> str:
    resp = client.post("/api/scenes")
    assert resp.status_code == 201
    return resp.json()["id"]


def add_cube(scene_id: str) -> str:
    resp = client.post(f"/api/scenes/{scene_id}/objects", json={"code": CUBE})
    assert resp.status_code == 201
    return resp.json()["id"]


class TestHealthEndpoint:
    def test_health(self):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        datetime.fromisoformat(data["timestamp"])
        assert "version" in data
        assert set(data["providers"]) == {"openrouter", "claude", "gemini"}


class TestGenerateEndpoint:
    def test_success(self, monkeypatch):
        monkeypatch.setattr(llm_service, "generate_code", fake_relay())
        resp = client.post("/api/generate", json={"message": "a red cube"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["code"] == CUBE.strip()
        assert data["rawResponse"].startswith("```python")

    def test_message_required(self):
        resp = client.post("/api/generate", json={"message": ""})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Message is required"}

    def test_missing_message_field(self):
        resp = client.post("/api/generate", json={})
        assert resp.status_code == 400

    def test_key_not_configured(self, monkeypatch):
        monkeypatch.setattr(config, "OPENROUTER_API_KEY", "")
        resp = client.post("/api/generate", json={"message": "a cube", "provider": "openrouter"})
        assert resp.status_code == 500
        assert resp.json()["error"] == "OpenRouter API key not configured"

    def test_upstream_error(self, monkeypatch):
        error = RelayError(429, "Failed to generate 3D code", "rate limited")
        monkeypatch.setattr(llm_service, "generate_code", fake_relay(error=error))
        resp = client.post("/api/generate", json={"message": "a cube"})
        assert resp.status_code == 429
        assert resp.json() == {"error": "Failed to generate 3D code", "details": "rate limited"}


class TestValidateEndpoint:
    def test_accepted(self):
        resp = client.post("/api/validate", json={"code": CUBE})
        assert resp.status_code == 200
        assert resp.json()["accepted"] is True

    def test_rejected(self):
        resp = client.post("/api/validate", json={"code": "def create_object():\n    eval('1')"})
        data = resp.json()
        assert data["accepted"] is False
        assert data["category"] == "dynamic-code"
        assert data["reason"].startswith("Security violation")

    def test_fenced_input(self):
        resp = client.post("/api/validate", json={"code": f"```python\n{CUBE}```"})
        assert resp.json()["accepted"] is True


class TestExamplesEndpoint:
    def test_examples(self):
        resp = client.get("/api/examples")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data) > 0
        assert all("prompt" in ex and "code" in ex for ex in data)


class TestScenes:
    def test_create_and_get(self):
        scene_id = new_scene()
        resp = client.get(f"/api/scenes/{scene_id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == scene_id
        assert data["objects"] == []
        assert data["infrastructure"] == 6

    def test_unknown_scene(self):
        resp = client.get("/api/scenes/does-not-exist")
        assert resp.status_code == 404
        assert "error" in resp.json()

    def test_delete(self):
        scene_id = new_scene()
        assert client.delete(f"/api/scenes/{scene_id}").status_code == 204
        assert client.get(f"/api/scenes/{scene_id}").status_code == 404
        assert client.delete(f"/api/scenes/{scene_id}").status_code == 404


class TestObjects:
    def test_add_and_dispose(self):
        scene_id = new_scene()
        ids = [add_cube(scene_id) for _ in range(3)]
        summary = client.get(f"/api/scenes/{scene_id}").json()
        assert [o["id"] for o in summary["objects"]] == ids
        for object_id in ids:
            resp = client.delete(f"/api/scenes/{scene_id}/objects/{object_id}")
            assert resp.status_code == 204
        assert client.get(f"/api/scenes/{scene_id}").json()["objects"] == []

    def test_dispose_unknown(self):
        scene_id = new_scene()
        resp = client.delete(f"/api/scenes/{scene_id}/objects/nope")
        assert resp.status_code == 404

    def test_sandbox_rejection(self):
        scene_id = new_scene()
        code = "def create_object():\n    fetch('https://x')\n    return THREE.Group()"
        resp = client.post(f"/api/scenes/{scene_id}/objects", json={"code": code})
        assert resp.status_code == 422
        data = resp.json()
        assert data["kind"] == "security"
        assert "network-access" in data["error"]
        assert client.get(f"/api/scenes/{scene_id}").json()["objects"] == []

    def test_corrupted_transform_rejected(self):
        scene_id = new_scene()
        code = CUBE.replace("cube.position.y = 0.5", "cube.position = 5")
        resp = client.post(f"/api/scenes/{scene_id}/objects", json={"code": code})
        assert resp.status_code == 422
        assert resp.json()["kind"] == "result-kind"
        assert client.get(f"/api/scenes/{scene_id}").json()["objects"] == []
        assert client.get(f"/api/scenes/{scene_id}/export/gltf").status_code == 409

    def test_appended_child_rejected(self):
        scene_id = new_scene()
        code = """\
def create_object():
    group = THREE.Group()
    group.position.x = 10
    group.children.append(THREE.Mesh(THREE.BoxGeometry(1, 1, 1), THREE.MeshStandardMaterial()))
    return group
"""
        resp = client.post(f"/api/scenes/{scene_id}/objects", json={"code": code})
        assert resp.status_code == 422
        assert "parent link" in resp.json()["error"]
        assert client.get(f"/api/scenes/{scene_id}/export/obj").status_code == 409

    def test_runaway_loop_rejected(self, monkeypatch):
        monkeypatch.setattr(config, "EXECUTION_MAX_STEPS", 5000)
        scene_id = new_scene()
        code = "def create_object():\n    n = 0\n    while True:\n        n = n + 1\n"
        resp = client.post(f"/api/scenes/{scene_id}/objects", json={"code": code})
        assert resp.status_code == 422
        data = resp.json()
        assert data["kind"] == "execution"
        assert "budget exceeded" in data["error"]
        assert client.get("/api/health").status_code == 200

    def test_code_runs_off_the_event_loop(self, monkeypatch):
        loops = []
        run_code = chat_service.run_code

        def recording(session, code):
            try:
                loops.append(asyncio.get_running_loop())
            except RuntimeError:
                loops.append(None)
            return run_code(session, code)

        monkeypatch.setattr(chat_service, "run_code", recording)
        add_cube(new_scene())
        assert loops == [None]

    def test_clear(self):
        scene_id = new_scene()
        add_cube(scene_id)
        add_cube(scene_id)
        resp = client.delete(f"/api/scenes/{scene_id}/objects")
        assert resp.json() == {"removed": 2}
        assert client.get(f"/api/scenes/{scene_id}").json()["infrastructure"] == 6

    def test_camera_reset(self):
        scene_id = new_scene()
        add_cube(scene_id)
        resp = client.post(f"/api/scenes/{scene_id}/camera/reset")
        assert resp.status_code == 200
        assert resp.json()["position"] == [5.0, 4.0, 8.0]


class TestChat:
    def test_chat_success(self, monkeypatch):
        monkeypatch.setattr(llm_service, "generate_code", fake_relay())
        scene_id = new_scene()
        resp = client.post(f"/api/scenes/{scene_id}/chat", json={"message": "a red cube"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["role"] == "assistant"
        assert data["error"] is None
        assert data["object_id"]

        messages = client.get(f"/api/scenes/{scene_id}/messages").json()
        assert [m["role"] for m in messages] == ["user", "assistant"]

    def test_chat_failure_is_a_message(self, monkeypatch):
        error = RelayError(502, "Upstream request failed", "connection refused")
        monkeypatch.setattr(llm_service, "generate_code", fake_relay(error=error))
        scene_id = new_scene()
        resp = client.post(f"/api/scenes/{scene_id}/chat", json={"message": "a red cube"})
        assert resp.status_code == 200
        assert resp.json()["error_kind"] == "upstream"

    def test_chat_unknown_scene(self):
        resp = client.post("/api/scenes/nope/chat", json={"message": "a cube"})
        assert resp.status_code == 404


class TestExport:
    def test_gltf(self):
        scene_id = new_scene()
        add_cube(scene_id)
        add_cube(scene_id)
        resp = client.get(f"/api/scenes/{scene_id}/export/gltf")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("model/gltf+json")
        assert f'{config.EXPORT_FILENAME}.gltf' in resp.headers["content-disposition"]
        doc = json.loads(resp.content)
        assert len(doc["scenes"][0]["nodes"]) == 2

    def test_obj(self):
        scene_id = new_scene()
        add_cube(scene_id)
        resp = client.get(f"/api/scenes/{scene_id}/export/obj")
        assert resp.status_code == 200
        assert b"v " in resp.content
        assert b"f " in resp.content

    def test_png(self):
        scene_id = new_scene()
        add_cube(scene_id)
        resp = client.get(f"/api/scenes/{scene_id}/export/png")
        assert resp.status_code == 200
        assert resp.content[:4] == b"\x89PNG"

    def test_empty_scene(self):
        scene_id = new_scene()
        resp = client.get(f"/api/scenes/{scene_id}/export/gltf")
        assert resp.status_code == 409
        assert resp.json() == {"error": EMPTY_SCENE_MESSAGE}

    def test_unknown_format(self):
        scene_id = new_scene()
        add_cube(scene_id)
        resp = client.get(f"/api/scenes/{scene_id}/export/fbx")
        assert resp.status_code == 400


class TestWebSocket:
    def test_streamed_generation(self, monkeypatch):
        async def fake_stream(message, provider=None, model=None):
            for token in ["```python\n", CUBE, "```"]:
                yield token

        monkeypatch.setattr(llm_service, "stream", fake_stream)
        scene_id = new_scene()
        with client.websocket_connect(f"/ws/scenes/{scene_id}") as ws:
            ws.send_json({"message": "a red cube"})
            events = []
            while True:
                event = ws.receive_json()
                events.append(event)
                if event["type"] in ("done", "error"):
                    break

        types = [e["type"] for e in events]
        assert "tokens" in types
        assert types[-1] == "done"
        code_event = next(e for e in events if e["type"] == "code")
        assert code_event["code"] == CUBE.strip()
        assert len(client.get(f"/api/scenes/{scene_id}").json()["objects"]) == 1

    def test_empty_message(self):
        scene_id = new_scene()
        with client.websocket_connect(f"/ws/scenes/{scene_id}") as ws:
            ws.send_json({"message": ""})
            assert ws.receive_json() == {"type": "error", "message": "Message is required"}

    def test_unknown_scene(self):
        with client.websocket_connect("/ws/scenes/nope") as ws:
            event = ws.receive_json()
            assert event["type"] == "error"
