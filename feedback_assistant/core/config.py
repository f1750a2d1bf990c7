"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    APP_NAME: str = "Feedback Assistant"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Frontend (links in delivered answers, created resource URLs)
    FRONTEND_URL: str = "http://localhost:3000"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Rate Limiting (requests per minute)
    RATE_LIMIT_API: int = 60  # General API
    RATE_LIMIT_ASK: int = 20  # Questions and transcriptions (model-backed)

    # Assistant model
    OPENAI_API_KEY: str = ""
    ASK_AI_MODEL: str = "gpt-4o-mini"
    ASK_REPORT_MODEL: str = "gpt-4o"
    ASK_HISTORY_LIMIT: int = 10  # Prior messages sent as context
    ASK_SOURCE_LIMIT: int = 10
    ASK_MATCH_THRESHOLD: float = 0.7

    # Feedback corpus API (search, listing, priority updates)
    FEEDBACK_API_URL: str = "http://localhost:8080/api"
    FEEDBACK_API_KEY: str = ""

    # Issue tracker webhook for create_ticket actions
    ISSUE_TRACKER_WEBHOOK_URL: str = ""

    # Delivery channels
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "assistant@example.com"
    SLACK_BOT_TOKEN: str = ""

    # Voice input
    TRANSCRIPTION_MODEL: str = "whisper-1"
    VOICE_MAX_DURATION_SECONDS: int = 120

    # Background analysis cadence
    SUGGESTION_INTERVAL_MINUTES: int = 360

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"


settings = Settings()
