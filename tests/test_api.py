"""HTTP and WebSocket tests for the FastAPI app.

The app runs with an in-memory store, a scripted live transport and a
canned speech client, so nothing leaves the process.
"""

import os
import sys

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from caregiver.app import create_app
from caregiver.config import runtime_settings
from caregiver.errors import ConfigurationError, ConnectionFailedError
from caregiver.state import AppState
from caregiver.store import InMemoryRecordStore

from fakes import FakeTransport


class FakeSpeech:
    def __init__(self, error=None):
        self._error = error
        self.spoken = []

    async def synthesize(self, text, voice=None):
        if self._error is not None:
            raise self._error
        self.spoken.append((text, voice))
        return b"\x00\x10" * 240

    async def ask(self, prompt, context=""):
        if self._error is not None:
            raise self._error
        return f"{prompt} | {context}"


class FakeSettings:
    def __init__(self, admin_api_key="", debug=False):
        self.admin_api_key = admin_api_key
        self.debug = debug


@pytest.fixture
def client():
    app = create_app(
        app_state=AppState(InMemoryRecordStore()),
        transport_factory=FakeTransport,
        speech=FakeSpeech(),
    )
    with TestClient(app) as c:
        yield c


@pytest.fixture
def mary(client):
    resp = client.post("/api/patients", json={"name": "Mary", "age": 80, "condition": "arthritis"})
    assert resp.status_code == 201
    return resp.json()


def add_medicine(client, patient_id, stock=None, schedule="09:00"):
    body = {"patientId": patient_id, "name": "Aspirin", "dosage": "1 tablet", "schedule": schedule}
    if stock is not None:
        body["stock"] = stock
    resp = client.post("/api/medicines", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Health ──────────────────────────────────────────────────────


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert "uptime" in body


# ── Records ─────────────────────────────────────────────────────


class TestPatients:
    def test_create_and_list(self, client, mary):
        assert mary["name"] == "Mary"
        assert mary["id"]
        assert client.get("/api/patients").json() == [mary]

    def test_blank_name_rejected(self, client):
        assert client.post("/api/patients", json={"name": ""}).status_code == 422

    def test_delete_cascades(self, client, mary):
        add_medicine(client, mary["id"])
        client.post("/api/reminders", json={"patientId": mary["id"], "task": "Walk", "time": "17:00"})
        client.post("/api/doctornotes", json={"patientId": mary["id"], "note": "Stable"})

        assert client.delete(f"/api/patients/{mary['id']}").status_code == 200

        assert client.get("/api/patients").json() == []
        assert client.get("/api/medicines").json() == []
        assert client.get("/api/reminders").json() == []
        assert client.get("/api/doctornotes").json() == []

    def test_delete_unknown(self, client):
        assert client.delete("/api/patients/nope").status_code == 404

    def test_summary(self, client, mary):
        add_medicine(client, mary["id"])
        client.post("/api/doctornotes", json={"patientId": mary["id"], "note": "First"})
        client.post("/api/doctornotes", json={"patientId": mary["id"], "note": "Second"})

        body = client.get(f"/api/patients/{mary['id']}/summary").json()

        assert body["patient"]["name"] == "Mary"
        assert len(body["medicines"]) == 1
        assert [n["note"] for n in body["notes"]] == ["Second", "First"]

    def test_summary_unknown(self, client):
        assert client.get("/api/patients/ghost/summary").status_code == 404


class TestMedicines:
    def test_camel_case_wire_format(self, client, mary):
        med = add_medicine(client, mary["id"], stock=12)
        assert med["patientId"] == mary["id"]
        assert med["stock"] == 12

    def test_default_stock(self, client, mary):
        assert add_medicine(client, mary["id"])["stock"] == 30

    def test_unknown_patient(self, client):
        resp = client.post("/api/medicines", json={
            "patientId": "ghost", "name": "Aspirin", "schedule": "09:00",
        })
        assert resp.status_code == 404

    def test_bad_schedule(self, client, mary):
        resp = client.post("/api/medicines", json={
            "patientId": mary["id"], "name": "Aspirin", "schedule": "9am",
        })
        assert resp.status_code == 422

    def test_negative_stock(self, client, mary):
        resp = client.post("/api/medicines", json={
            "patientId": mary["id"], "name": "Aspirin", "schedule": "09:00", "stock": -1,
        })
        assert resp.status_code == 422

    def test_delete(self, client, mary):
        med = add_medicine(client, mary["id"])
        assert client.delete(f"/api/medicines/{med['id']}").status_code == 200
        assert client.get("/api/medicines").json() == []


class TestReminders:
    def test_create_and_complete(self, client, mary):
        resp = client.post("/api/reminders", json={
            "patientId": mary["id"], "task": "Check blood pressure", "time": "15:00",
        })
        reminder = resp.json()
        assert reminder["completed"] is False

        done = client.put(f"/api/reminders/{reminder['id']}/complete").json()
        assert done["completed"] is True

    def test_complete_unknown(self, client):
        assert client.put("/api/reminders/ghost/complete").status_code == 404


# ── Alerts ──────────────────────────────────────────────────────


class TestAlerts:
    def _low_stock_alert(self, client, mary, stock=2):
        med = add_medicine(client, mary["id"], stock=stock)
        raised = client.post("/api/alerts/check").json()
        [alert] = [a for a in raised if a["type"] == "critical"]
        assert alert["sourceId"] == med["id"]
        return med, alert

    def test_check_raises_low_stock_once(self, client, mary):
        self._low_stock_alert(client, mary)
        again = client.post("/api/alerts/check").json()
        assert not any(a["type"] == "critical" for a in again)
        assert any(a["type"] == "critical" for a in client.get("/api/alerts").json())

    def test_taken(self, client, mary):
        _, alert = self._low_stock_alert(client, mary, stock=1)
        first = client.post(f"/api/alerts/{alert['id']}/taken").json()
        second = client.post(f"/api/alerts/{alert['id']}/taken").json()
        assert first["updated"]["stock"] == 0
        assert second["updated"]["stock"] == 0

    def test_snooze(self, client, mary):
        _, alert = self._low_stock_alert(client, mary)
        body = client.post(f"/api/alerts/{alert['id']}/snooze").json()
        assert body["reminder"]["task"] == "SNOOZE: Aspirin dose"
        assert len(client.get("/api/reminders").json()) == 1

    def test_reschedule(self, client, mary):
        _, alert = self._low_stock_alert(client, mary)
        resp = client.post(f"/api/alerts/{alert['id']}/reschedule", json={"time": "10:30"})
        assert resp.json()["updated"]["schedule"] == "10:30"

    def test_reschedule_bad_time(self, client, mary):
        _, alert = self._low_stock_alert(client, mary)
        resp = client.post(f"/api/alerts/{alert['id']}/reschedule", json={"time": "25:00"})
        assert resp.status_code == 422

    def test_unknown_alert(self, client):
        assert client.post("/api/alerts/ghost/taken").status_code == 404


# ── Speech ──────────────────────────────────────────────────────


class TestSpeech:
    def test_tts_returns_wav(self, client):
        resp = client.post("/api/tts", json={"text": "Time for your medicine"})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "audio/wav"
        assert resp.content[:4] == b"RIFF"
        assert len(resp.content) == 44 + 480

    def test_tts_empty_text(self, client):
        assert client.post("/api/tts", json={"text": "   "}).status_code == 400

    def test_tts_too_long(self, client):
        assert client.post("/api/tts", json={"text": "a" * 501}).status_code == 400

    def test_tts_not_configured(self, client):
        client.app.state.speech = FakeSpeech(error=ConfigurationError())
        resp = client.post("/api/tts", json={"text": "hello"})
        assert resp.status_code == 503
        assert resp.json()["detail"] == "API key not configured."

    def test_tts_upstream_failure(self, client):
        client.app.state.speech = FakeSpeech(error=ConnectionFailedError())
        assert client.post("/api/tts", json={"text": "hello"}).status_code == 502

    def test_ask_includes_patient_context(self, client, mary):
        answer = client.post("/api/ask", json={"prompt": "Who is here?"}).json()["answer"]
        assert answer.startswith("Who is here? | ")
        assert "Mary (age 80, arthritis)" in answer


# ── Admin ───────────────────────────────────────────────────────


class TestAdmin:
    def test_config_requires_token(self, client, monkeypatch):
        monkeypatch.setattr("caregiver.auth.settings", FakeSettings(admin_api_key="secret"))
        assert client.get("/api/config").status_code == 401
        resp = client.get("/api/config", headers={"Authorization": "Bearer secret"})
        assert resp.status_code == 200
        assert resp.json()["default_medicine_stock"] == 30

    def test_config_update_ignores_unknown_keys(self, client, monkeypatch):
        monkeypatch.setattr("caregiver.auth.settings", FakeSettings(debug=True))
        monkeypatch.setitem(runtime_settings, "snooze_minutes", 5)

        body = client.post("/api/config", json={"snooze_minutes": 10, "bogus": 1}).json()

        assert body["snooze_minutes"] == 10
        assert "bogus" not in body

    def test_locked_without_key(self, client, monkeypatch):
        monkeypatch.setattr("caregiver.auth.settings", FakeSettings())
        assert client.get("/api/voice/sessions").status_code == 403

    def test_unknown_session(self, client, monkeypatch):
        monkeypatch.setattr("caregiver.auth.settings", FakeSettings(debug=True))
        assert client.get("/api/voice/sessions/nope").status_code == 404


# ── Voice WebSocket ─────────────────────────────────────────────


def receive_until(ws, message_type):
    seen = []
    while True:
        message = ws.receive_json()
        seen.append(message)
        if message["type"] == message_type:
            return seen


class TestVoiceWebSocket:
    def test_start_and_stop(self, client, monkeypatch):
        monkeypatch.setattr("caregiver.auth.settings", FakeSettings(debug=True))

        with client.websocket_connect("/ws/voice?lang=en") as ws:
            session = ws.receive_json()
            assert session["type"] == "session"

            ws.send_json({"type": "start", "microphone": "ok"})
            seen = receive_until(ws, "state")
            seen += receive_until(ws, "state")
            assert [m for m in seen if m["type"] == "state"] == [
                {"type": "state", "state": "connecting"},
                {"type": "state", "state": "active"},
            ]
            assert {"type": "audio_open", "sample_rate": 24000} in seen

            info = client.get(f"/api/voice/sessions/{session['session_id']}").json()
            assert info["state"] == "active"

            ws.send_json({"type": "stop"})
            states = [m["state"] for m in receive_until(ws, "state") + receive_until(ws, "state")
                      if m["type"] == "state"]
            assert states == ["closing", "idle"]

        sessions = client.get("/api/voice/sessions").json()
        assert session["session_id"] not in [s["session_id"] for s in sessions["sessions"]]

    def test_denied_microphone_reports_error(self, client):
        with client.websocket_connect("/ws/voice") as ws:
            ws.receive_json()
            ws.send_json({"type": "start", "microphone": "denied"})

            seen = receive_until(ws, "error")

            assert seen[-1]["message"] == (
                "Failed to start voice assistant. Microphone access was denied."
            )
            assert receive_until(ws, "state")[-1]["state"] == "idle"


class TestDebugStream:
    def test_unknown_session_closes(self, client, monkeypatch):
        monkeypatch.setattr("caregiver.auth.settings", FakeSettings(debug=True))
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/api/voice/sessions/nope/debug"):
                pass
        assert exc_info.value.code == 4004
