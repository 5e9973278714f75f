"""Application configuration using Pydantic BaseSettings."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Inscriber configuration loaded from environment variables."""

    model_config = {"env_prefix": "ORDINSCRIBE_", "env_file": ".env", "extra": "ignore"}

    # Remote execution endpoint
    api_base_url: str = "http://localhost:5000"
    request_timeout_seconds: float = 60.0
    default_serve_port: int = 8000

    # Redis / Celery
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"

    # Uploads
    upload_dir: Path = Path("/tmp/ordinscribe/uploads")
    upload_max_size_mb: int = 60

    # Diagnostics
    diagnostics_max_entries: int = 100
    diagnostics_log_dir: Path | None = Path("/tmp/ordinscribe/logs")


def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
