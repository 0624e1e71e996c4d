from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration options for the query runner service."""

    # Frontend internal API (source of truth for saved queries and the user/org directory)
    frontend_internal_url: str = "http://frontend-internal:3090"
    frontend_timeout_seconds: float = 30.0

    # Public URL used to build search links in notifications
    external_url: str = "http://localhost:3080"

    # Email delivery via SendGrid
    sendgrid_api_key: str = ""
    email_from: str = "noreply@localhost"
    email_from_name: str = "Saved Search Notifications"

    # Startup bulk load
    bulk_load_retry_delay: float = 5.0
    bulk_load_quiet_attempts: int = 3

    # How long shutdown waits for in-flight notifications
    shutdown_drain_seconds: float = 10.0

    host: str = "0.0.0.0"
    port: int = 3183

    log_level: str = "INFO"
    log_format: str = "text"

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
    )
