"""FastAPI bridge between the browser page and the assistant core.

The page posts user actions and engine reports; everything the core wants
the page to do (render, open a link, drive its speech engines) flows back
over the /events Server-Sent Events stream.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from jarvis.bridge import BridgeRecognitionEngine, BridgeSynthesisEngine, BrowserBridge
from jarvis.config import Config
from jarvis.credentials import CredentialStore
from jarvis.events import EventBus
from jarvis.models import ProviderId, parse_language
from jarvis.orchestrator import ListeningPolicy, Orchestrator
from jarvis.providers import create_all
from jarvis.speech_input import SpeechInputSession
from jarvis.speech_output import SpeechOutputSession
from jarvis.storage import MemoryStorage, SqliteStorage, StorageError
from jarvis.transcript import TranscriptStore

logger = logging.getLogger(__name__)


# Request models
class TextRequest(BaseModel):
    text: str


class ProviderRequest(BaseModel):
    provider: str


class LanguageRequest(BaseModel):
    language: str


class ReadyReport(BaseModel):
    recognition: bool
    synthesis: bool


class PermissionReport(BaseModel):
    id: str
    granted: bool


class RecognitionReport(BaseModel):
    kind: str  # "result", "end" or "error"
    text: Optional[str] = None


class SynthesisReport(BaseModel):
    id: str
    kind: str  # "start", "end" or "error"
    detail: Optional[str] = None


def open_storage(db_path: str):
    """SQLite storage, or in-memory when the file cannot be opened."""
    try:
        return SqliteStorage(db_path)
    except StorageError as e:
        logger.warning("Persistence unavailable, history will not survive restarts: %s", e)
        return MemoryStorage()


def build_assistant(bus: EventBus, bridge: BrowserBridge, storage, client: Optional[httpx.AsyncClient] = None) -> Orchestrator:
    """Wire the production collaborators together."""
    credentials = CredentialStore(storage)
    try:
        provider = ProviderId.parse(Config.PROVIDER)
    except ValueError as e:
        logger.warning("%s; using gemini", e)
        provider = ProviderId.GEMINI
    try:
        language = parse_language(Config.LANGUAGE)
    except ValueError as e:
        logger.warning("%s; using en-US", e)
        language = "en-US"

    policy = ListeningPolicy(
        auto_stop_seconds=Config.AUTO_STOP_SECONDS,
        arm_on_start=Config.AUTO_STOP_ON_START,
        arm_on_restart=Config.AUTO_STOP_ON_RESTART,
        listen_after_reply=Config.LISTEN_AFTER_REPLY,
    )
    return Orchestrator(
        session=credentials.session(provider, language),
        speech_in=SpeechInputSession(BridgeRecognitionEngine(bridge)),
        speech_out=SpeechOutputSession(BridgeSynthesisEngine(bridge)),
        transcript=TranscriptStore(storage),
        providers=create_all(client=client),
        ui=bus,
        policy=policy,
        preferences=storage,
        ready_timeout=Config.ENGINE_READY_TIMEOUT_SECONDS,
    )


def create_app(
    assistant: Optional[Orchestrator] = None,
    bus: Optional[EventBus] = None,
    bridge: Optional[BrowserBridge] = None,
) -> FastAPI:
    bus = bus or EventBus()
    bridge = bridge or BrowserBridge(bus)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        storage = None
        client = None
        current = assistant
        if current is None:
            for problem in Config.validate():
                logger.warning("Missing configuration: %s", problem)
            storage = open_storage(Config.DB_PATH)
            client = httpx.AsyncClient(timeout=Config.REQUEST_TIMEOUT_SECONDS)
            current = build_assistant(bus, bridge, storage, client)
        app.state.assistant = current
        startup = asyncio.create_task(current.start_up())
        try:
            yield
        finally:
            startup.cancel()
            await current.close()
            if client is not None:
                await client.aclose()
            if isinstance(storage, SqliteStorage):
                storage.close()

    app = FastAPI(title="Jarvis Voice Assistant", lifespan=lifespan)

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def current_assistant() -> Orchestrator:
        return app.state.assistant

    @app.get("/")
    async def status():
        """Current mic state, provider and language."""
        return current_assistant().status()

    @app.get("/transcript")
    async def transcript():
        """Transcript as stored."""
        return {"messages": [m.to_dict() for m in current_assistant().transcript.messages]}

    @app.get("/events")
    async def events():
        """Stream render calls and engine commands via Server-Sent Events."""

        async def event_generator():
            async for topic, payload in bus.stream():
                if topic == "heartbeat":
                    # keep the connection alive
                    yield ": heartbeat\n\n"
                    continue
                yield f"event: {topic}\ndata: {json.dumps(payload)}\n\n"

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable buffering for nginx
            },
        )

    # --- user actions ---

    @app.post("/mic")
    async def mic():
        await current_assistant().mic_pressed()
        return current_assistant().status()

    @app.post("/text")
    async def text(request: TextRequest):
        await current_assistant().submit(request.text, typed=True)
        return current_assistant().status()

    @app.post("/provider")
    async def provider(request: ProviderRequest):
        try:
            await current_assistant().select_provider(request.provider)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return current_assistant().status()

    @app.post("/language")
    async def language(request: LanguageRequest):
        try:
            await current_assistant().select_language(request.language)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return current_assistant().status()

    @app.post("/clear")
    async def clear():
        current_assistant().clear_transcript()
        return current_assistant().status()

    # --- engine reports from the page ---

    @app.post("/engine/ready")
    async def engine_ready(report: ReadyReport):
        bridge.report_ready(report.recognition, report.synthesis)
        # each page load brings new engines
        await current_assistant().refresh_engines()
        return current_assistant().status()

    @app.post("/engine/permission")
    async def engine_permission(report: PermissionReport):
        bridge.report_permission(report.id, report.granted)
        return {"ok": True}

    @app.post("/engine/recognition")
    async def engine_recognition(report: RecognitionReport):
        bridge.report_recognition(report.kind, report.text)
        return {"ok": True}

    @app.post("/engine/synthesis")
    async def engine_synthesis(report: SynthesisReport):
        bridge.report_synthesis(report.id, report.kind, report.detail)
        return {"ok": True}

    return app


app = create_app()
