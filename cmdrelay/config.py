# cmdrelay/config.py
"""Application configuration using pydantic-settings.

Provides a centralized Settings class for all environment variables.
Supports both VERIFY_TOKEN and FEISHU_VERIFY_TOKEN for the event signature
secret.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings are loaded from .env file and environment variables.
    Environment variables take precedence over .env file values.
    """

    # Storage
    sessions_db_path: str = "data/sessions.db"
    relay_state_file: str = "data/relay-state.json"

    # Inbound event listener
    event_host: str = "0.0.0.0"
    event_port: int = 3000
    events_path: str = "/feishu/events"

    # Event verification (supports both VERIFY_TOKEN and FEISHU_VERIFY_TOKEN)
    verify_token: str = ""
    feishu_verify_token: str = ""

    # Outbound notification webhook
    notify_webhook: str = ""
    notify_secret: str = ""

    # Session policy
    session_ttl_hours: int = 24
    session_max_commands: int = 10

    # Command filter
    max_command_length: int = 1000

    # Relay queue
    drain_interval_seconds: float = 3.0
    max_retries: int = 3
    retry_delay_seconds: int = 60
    completed_retention_hours: int = 24
    cleanup_interval_minutes: int = 60
    session_sweep_interval_minutes: int = 15
    command_channel_size: int = 100

    # Executor
    executor_timeout_seconds: float = 30.0
    tmux_session: str = "claude-code"

    # Observability
    logfire_token: str = ""
    log_level: str = "INFO"
    log_json: bool = True

    # API Security
    api_auth_key: str = ""  # Required for /status and /notify (X-API-Key header)
    api_rate_limit: int = 60  # Requests per minute

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
        case_sensitive=False,  # Allow case-insensitive env var names
    )

    @property
    def event_secret(self) -> str:
        """Get the event signature secret with fallback support.

        Returns VERIFY_TOKEN if set, otherwise falls back to FEISHU_VERIFY_TOKEN.
        An empty string disables signature verification.

        Returns:
            The secret string, or empty string if neither is set.
        """
        return self.verify_token or self.feishu_verify_token


# Singleton instance - import this in your code
settings = Settings()
