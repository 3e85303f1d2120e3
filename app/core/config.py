"""Application configuration."""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI (speech-to-text)
    openai_api_key: str
    transcription_model: str = "whisper-1"

    # Twilio
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_phone_number: str

    # ElevenLabs Conversational AI
    elevenlabs_api_key: str = ""
    elevenlabs_api_url: str = "https://api.elevenlabs.io"

    # Database
    database_url: str

    # Public URL the provider uses to reach our webhooks
    base_url: Optional[str] = None

    # Contact center
    company_name: str = "Contact Center"
    call_language: str = "en-US"
    greeting_message: str = "Welcome to our contact center. Your call is being processed."
    connecting_message: str = "Connecting you with an available agent."
    unavailable_message: str = "All of our agents are busy right now. Please try again later."
    farewell_message: str = "Thank you for contacting us. Goodbye."
    apology_message: str = "We're sorry, an error occurred while processing your call. Please try again."
    ai_greeting_message: str = "Hello, thank you for calling. How can I help you today?"
    agent_dial_timeout_seconds: int = 30
    operator_client_name: str = "operator"

    # Call lifecycle timing
    status_poll_interval_seconds: float = 3.0
    transcription_flush_interval_seconds: float = 3.0
    capture_window_seconds: float = 1.0
    audio_sample_rate: int = 16000
    dial_dedup_window_seconds: float = 30.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
