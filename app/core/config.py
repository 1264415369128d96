"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


WEAK_SECRETS = ("changeme", "secret", "password", "admin")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    # Comma-separated, e.g. http://localhost:3000,https://app.example.com. Empty = default list.
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    db_connect_timeout: int = 5

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # PAYMENT GATEWAY (PortOne V2)
    # ===========================================
    portone_api_base: str = "https://api.portone.io"
    portone_api_secret: str = ""
    portone_store_id: str = ""
    payment_webhook_secret: str  # Required, no default
    payment_currency: str = "KRW"
    # Polling fallback: bounded blocking wait (attempts * interval)
    payment_poll_max_attempts: int = 5
    payment_poll_interval_seconds: float = 1.0
    purchase_rate_limit: int = 3  # max prepared orders per window
    purchase_rate_window_seconds: int = 60

    # ===========================================
    # SESSIONS & TIME CREDITS
    # ===========================================
    free_allowance_seconds: int = 120
    allowed_chat_durations: str = "5,10,30"
    one_shot_session_ttl_seconds: int = 86400
    payment_prompt_threshold_seconds: int = 30
    interaction_history_limit: int = 10

    # ===========================================
    # RESULT TOKENS & ARTIFACTS
    # ===========================================
    result_token_secret: str  # Required, no default
    result_token_ttl_seconds: int = 86400  # 24 hours
    result_token_max_age_seconds: int = 30 * 86400
    artifact_ttl_days: int = 30

    # ===========================================
    # AUTH (JWT issued by the identity provider)
    # ===========================================
    jwt_secret_key: str  # Required, no default
    jwt_algorithm: str = "HS256"

    # ===========================================
    # CONTENT GENERATION (OpenAI)
    # ===========================================
    openai_api_key: str = ""
    openai_text_model: str = "gpt-4o-mini"
    openai_request_timeout: float = 120.0

    # ===========================================
    # INTERNAL SERVICES
    # ===========================================
    admin_api_key: str | None = None
    http_client_timeout: float = 10.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @property
    def chat_durations_set(self) -> set[int]:
        """Allowed paid chat durations in minutes."""
        return {int(d.strip()) for d in self.allowed_chat_durations.split(",") if d.strip()}

    @field_validator("payment_webhook_secret", "result_token_secret", "jwt_secret_key")
    @classmethod
    def validate_secret(cls, v: str, info) -> str:
        """Ensure shared secrets are reasonably secure."""
        if len(v) < 16:
            raise ValueError(f"{info.field_name} must be at least 16 characters")
        if v in WEAK_SECRETS:
            raise ValueError(f"{info.field_name} is too weak, please change it")
        return v

    @field_validator("payment_poll_max_attempts")
    @classmethod
    def validate_poll_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("payment_poll_max_attempts must be >= 1")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
