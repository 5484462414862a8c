"""FastAPI application — caregiver records REST API plus the voice WebSocket.

Endpoints:

  GET  /health                               Health check
  /api/patients, /api/medicines,             Record CRUD (camelCase JSON)
  /api/reminders, /api/doctornotes
  GET  /api/alerts                           Alert feed, newest first
  POST /api/alerts/{id}/taken|snooze|reschedule
  POST /api/alerts/check                     Evaluate due doses/reminders now
  POST /api/tts, POST /api/ask               One-shot speech / chat
  WS   /ws/voice?lang=en                     Live voice session for a browser tab

Admin (bearer token, see auth.py):

  GET/POST /api/config
  GET      /api/voice/sessions[/{id}]
  WS       /api/voice/sessions/{id}/debug?token=

The voice flow:
  1. Browser connects to WS /ws/voice and acquires its microphone
  2. Sends {"type": "start"}; the server opens a Gemini Live session
  3. Mic frames stream up as binary; speech streams down as "audio"
     messages scheduled back-to-back on the browser's clock
  4. Function calls from the model mutate AppState via the ToolDispatcher
"""

from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

# Configure root logger early so every caregiver.* logger has a handler
# when run via `uvicorn caregiver.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from caregiver.audio.codec import PLAYBACK_SAMPLE_RATE, wav_bytes
from caregiver.auth import require_admin_token, require_admin_ws
from caregiver.channels.websocket_channel import BrowserVoiceChannel
from caregiver.config import runtime_settings, settings
from caregiver.errors import ConfigurationError, UnknownRecordError, VoiceSessionError
from caregiver.models import (
    Alert,
    DoctorNote,
    DoctorNoteCreate,
    Medicine,
    MedicineCreate,
    Patient,
    PatientCreate,
    PatientSummary,
    Reminder,
    ReminderCreate,
    RescheduleRequest,
)
from caregiver.state import AppState
from caregiver.store import create_store
from caregiver.voice.controller import (
    create_controller,
    get_active_sessions,
    get_session,
    register_session,
    unregister_session,
)
from caregiver.voice.gemini import GeminiLiveTransport, SpeechClient
from caregiver.voice.transport import LiveTransport

log = logging.getLogger("caregiver.app")

_START_TIME = time.time()

TransportFactory = Callable[[], LiveTransport]


class SpeakRequest(BaseModel):
    text: str
    voice: Optional[str] = None


class AskRequest(BaseModel):
    prompt: str = Field(min_length=1)


def _patient_context(app_state: AppState) -> str:
    if not app_state.patients:
        return "No patients registered."
    return "; ".join(
        f"{p.name} (age {p.age}, {p.condition or 'no condition noted'})"
        for p in app_state.patients
    )


def create_app(
    app_state: AppState | None = None,
    transport_factory: TransportFactory | None = None,
    speech: SpeechClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for warning in settings.validate_startup():
            log.warning(warning)
        records: AppState = app.state.records
        try:
            await records.load()
        except Exception as e:
            log.error("Could not load records from store: %s", e)
        yield
        for controller in list(get_active_sessions().values()):
            await controller.stop()
        await records.flush()
        await records.store.close()

    app = FastAPI(
        title="Caregiver Voice Assistant",
        description="Patient, medicine and reminder tracking with a live voice assistant",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.records = app_state or AppState(create_store(settings.record_store_url))
    app.state.transport_factory = transport_factory or GeminiLiveTransport
    app.state.speech = speech or SpeechClient()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UnknownRecordError)
    async def unknown_record(request: Request, exc: UnknownRecordError) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_404_NOT_FOUND)

    def records() -> AppState:
        return app.state.records

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({
            "status": "ok",
            "uptime": uptime,
            "voice_configured": bool(settings.google_api_key),
            "active_sessions": len(get_active_sessions()),
        })

    # ── Patients ───────────────────────────────────────────────

    @app.get("/api/patients", response_model=list[Patient])
    async def list_patients():
        return records().patients

    @app.post("/api/patients", response_model=Patient, status_code=201)
    async def create_patient(body: PatientCreate):
        return records().add_patient(body.name, body.age, body.condition)

    @app.delete("/api/patients/{patient_id}", response_model=Patient)
    async def delete_patient(patient_id: str):
        return records().delete_patient(patient_id)

    @app.get("/api/patients/{patient_id}/summary", response_model=PatientSummary)
    async def patient_summary(patient_id: str):
        return records().patient_summary(patient_id)

    # ── Medicines ──────────────────────────────────────────────

    @app.get("/api/medicines", response_model=list[Medicine])
    async def list_medicines():
        return records().medicines

    @app.post("/api/medicines", response_model=Medicine, status_code=201)
    async def create_medicine(body: MedicineCreate):
        return records().add_medicine(
            body.patient_id, body.name, body.dosage, body.schedule, body.stock,
        )

    @app.delete("/api/medicines/{medicine_id}", response_model=Medicine)
    async def delete_medicine(medicine_id: str):
        return records().delete_medicine(medicine_id)

    # ── Reminders ──────────────────────────────────────────────

    @app.get("/api/reminders", response_model=list[Reminder])
    async def list_reminders():
        return records().reminders

    @app.post("/api/reminders", response_model=Reminder, status_code=201)
    async def create_reminder(body: ReminderCreate):
        return records().add_reminder(body.patient_id, body.task, body.time)

    @app.put("/api/reminders/{reminder_id}/complete", response_model=Reminder)
    async def complete_reminder(reminder_id: str):
        return records().complete_reminder(reminder_id)

    # ── Doctor notes ───────────────────────────────────────────

    @app.get("/api/doctornotes", response_model=list[DoctorNote])
    async def list_notes():
        return records().notes

    @app.post("/api/doctornotes", response_model=DoctorNote, status_code=201)
    async def create_note(body: DoctorNoteCreate):
        return records().add_doctor_note(body.patient_id, body.note)

    # ── Alerts ─────────────────────────────────────────────────

    @app.get("/api/alerts", response_model=list[Alert])
    async def list_alerts():
        return list(records().alerts)

    @app.post("/api/alerts/check", response_model=list[Alert])
    async def check_alerts():
        return records().check_due()

    @app.post("/api/alerts/{alert_id}/taken")
    async def alert_taken(alert_id: str):
        updated = records().mark_taken(alert_id)
        return {"updated": updated.to_wire() if updated else None}

    @app.post("/api/alerts/{alert_id}/snooze")
    async def alert_snooze(alert_id: str):
        reminder = records().snooze(alert_id)
        return {"reminder": reminder.to_wire() if reminder else None}

    @app.post("/api/alerts/{alert_id}/reschedule")
    async def alert_reschedule(alert_id: str, body: RescheduleRequest):
        updated = records().reschedule(alert_id, body.time)
        return {"updated": updated.to_wire() if updated else None}

    # ── Speech ─────────────────────────────────────────────────

    @app.post("/api/tts")
    async def tts(body: SpeakRequest):
        """Synthesize text and return 24kHz WAV audio."""
        text = body.text.strip()
        if not text:
            raise HTTPException(status_code=400, detail="No text provided")
        if len(text) > 500:
            raise HTTPException(status_code=400, detail="Text too long (max 500 chars)")

        try:
            pcm = await app.state.speech.synthesize(text, body.voice)
        except ConfigurationError as e:
            raise HTTPException(status_code=503, detail=e.message)
        except VoiceSessionError as e:
            raise HTTPException(status_code=502, detail=e.message)

        return Response(
            content=wav_bytes(pcm, PLAYBACK_SAMPLE_RATE),
            media_type="audio/wav",
            headers={"Content-Disposition": "inline"},
        )

    @app.post("/api/ask")
    async def ask(body: AskRequest):
        try:
            answer = await app.state.speech.ask(body.prompt, _patient_context(records()))
        except ConfigurationError as e:
            raise HTTPException(status_code=503, detail=e.message)
        return {"answer": answer}

    # ── Admin ──────────────────────────────────────────────────

    @app.get("/api/config", dependencies=[Depends(require_admin_token)])
    async def get_config():
        return JSONResponse(runtime_settings)

    @app.post("/api/config", dependencies=[Depends(require_admin_token)])
    async def update_config(request: Request):
        body = await request.json()
        for key in body:
            if key in runtime_settings:
                runtime_settings[key] = body[key]
        log.info("Config updated: %s", runtime_settings)
        return JSONResponse(runtime_settings)

    @app.get("/api/voice/sessions", dependencies=[Depends(require_admin_token)])
    async def list_voice_sessions():
        sessions = get_active_sessions()
        return {
            "sessions": [c.describe() for c in sessions.values()],
            "count": len(sessions),
        }

    @app.get("/api/voice/sessions/{session_id}", dependencies=[Depends(require_admin_token)])
    async def get_voice_session(session_id: str):
        controller = get_session(session_id)
        if controller is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return controller.describe()

    @app.websocket("/api/voice/sessions/{session_id}/debug")
    async def debug_stream(
        websocket: WebSocket,
        session_id: str,
        _auth: None = Depends(require_admin_ws),
    ) -> None:
        """Stream a session's controller events as they happen."""
        controller = get_session(session_id)
        if controller is None or controller.broadcaster is None:
            await websocket.close(code=4004, reason="Session not found")
            return

        await websocket.accept()
        broadcaster = controller.broadcaster
        queue = broadcaster.subscribe()
        try:
            while True:
                event = await queue.get()
                await websocket.send_json(event)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            log.warning("Debug stream error for %s: %s", session_id, e)
        finally:
            broadcaster.unsubscribe(queue)

    # ── Voice session ──────────────────────────────────────────

    @app.websocket("/ws/voice")
    async def voice_ws(websocket: WebSocket, lang: str = "en") -> None:
        await websocket.accept()
        channel = BrowserVoiceChannel(websocket)
        await channel.open()

        controller = create_controller(
            records(), app.state.transport_factory(), channel.capture, channel.playback, lang,
        )
        controller.add_listener(channel.forward_event)
        sid = register_session(controller)
        channel.send({"type": "session", "session_id": sid})

        try:
            async for control in channel.controls():
                kind = control.get("type")
                if kind == "start":
                    try:
                        await controller.start()
                    except VoiceSessionError:
                        log.info("Voice session %s did not start: %s", sid, controller.last_error)
                elif kind == "stop":
                    await controller.stop()
                else:
                    log.debug("Ignoring control message %r", kind)
        finally:
            await controller.stop()
            unregister_session(sid)
            await channel.close()

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


def run() -> None:
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )
    uvicorn.run(
        "caregiver.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )


if __name__ == "__main__":
    run()
