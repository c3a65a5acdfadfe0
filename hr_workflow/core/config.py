import os
import logging
from pydantic import BaseModel, Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()

class WorkflowSettings(BaseModel):
    due_reminder_days: int = Field(default=int(os.getenv("DUE_REMINDER_DAYS", "2")))
    rejection_progress: int = Field(default=int(os.getenv("REJECTION_PROGRESS", "99")))
    revision_progress: int = Field(default=int(os.getenv("REVISION_PROGRESS", "95")))
    seed_default_criteria: bool = Field(default=os.getenv("SEED_DEFAULT_CRITERIA", "true").lower() == "true")

class MailSettings(BaseModel):
    webhook_url: Optional[str] = Field(default=os.getenv("MAIL_WEBHOOK_URL"))
    api_key: Optional[str] = Field(default=os.getenv("MAIL_API_KEY"))
    sender: str = Field(default=os.getenv("MAIL_SENDER", "no-reply@hr-workflow.local"))
    max_attempts: int = Field(default=int(os.getenv("MAIL_MAX_ATTEMPTS", "3")))
    backoff_seconds: float = Field(default=float(os.getenv("MAIL_BACKOFF_SECONDS", "1")))
    timeout: int = 10

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

class Config(BaseModel):
    app_name: str = "HR Workflow Engine"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./workflow.db")

    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"
    actor_header: str = "X-Employee-Id"

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if o.strip()
        ]
    )

    rate_limit_per_minute: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))

    workflow: WorkflowSettings = WorkflowSettings()
    mail: MailSettings = MailSettings()

settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment == "production":
    if settings.mail.enabled and not settings.mail.api_key:
        raise RuntimeError(
            "FATAL: MAIL_API_KEY must be set when MAIL_WEBHOOK_URL is configured in production."
        )
    if settings.database_url.startswith("sqlite"):
        _logger.warning("⚠ Running production on SQLite; approval races are only serialized per file lock.")
