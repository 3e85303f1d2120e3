"""Main FastAPI application."""
import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from app.core.config import settings
from app.core.logging import setup_logging
from app.db.database import AsyncSessionLocal, engine, init_db
from app.api import calls, health, notifications
from app.api.webhooks import voice
from app.services.agent.elevenlabs import ElevenLabsConversationService
from app.services.call_session.console import CallConsole
from app.services.call_session.controller import CallSessionController
from app.services.media.manager import MediaManager
from app.services.media.pyaudio_device import PyAudioDevice
from app.services.notifications import NotificationHub
from app.services.persistence.store import CallStore
from app.services.telephony.twilio_provider import TwilioTelephonyProvider
from app.services.transcription.stt import SpeechToTextService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()

    store = CallStore(AsyncSessionLocal)
    notification_hub = NotificationHub()
    # The Twilio async HTTP client needs a running event loop
    telephony = TwilioTelephonyProvider()
    media = MediaManager(PyAudioDevice())
    transcriber = SpeechToTextService()
    conversation_service = (
        ElevenLabsConversationService() if settings.elevenlabs_api_key else None
    )
    if conversation_service is None:
        logger.warning("ELEVENLABS_API_KEY not set; AI agent bridge disabled")

    def new_controller() -> CallSessionController:
        return CallSessionController(media, telephony, store, notification_hub, transcriber=transcriber)

    app.state.store = store
    app.state.notifications = notification_hub
    app.state.console = CallConsole(
        store, notification_hub, new_controller, conversation_service=conversation_service
    )
    yield

    # Shutdown
    await app.state.console.shutdown()
    await telephony.aclose()
    if conversation_service is not None:
        await conversation_service.aclose()
    await engine.dispose()


app = FastAPI(
    title="Contact Center Call Core",
    description="Call session lifecycle, inbound routing and AI agent bridge for a contact center",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(voice.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(calls.router, tags=["calls"])
app.include_router(notifications.router, tags=["notifications"])


@app.get("/")
async def root():
    return {"message": "Contact Center Call Core API", "version": "0.1.0"}
