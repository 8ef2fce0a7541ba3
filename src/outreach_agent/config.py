"""Application configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database configuration."""

    url: str = "sqlite+aiosqlite:///data/outreach_agent.db"
    echo: bool = False


class RetrySettings(BaseModel):
    """Call retry policy configuration."""

    # Delay before retry n is 2**n * base_delay_minutes (5, 10, 20, ...)
    base_delay_minutes: int = 5
    default_max_retries: int = 3

    # Substrings of the provider ended reason that qualify for a retry
    retryable_reasons: list[str] = Field(
        default_factory=lambda: ["dial-busy", "dial-no-answer", "voicemail"]
    )


class BatchSettings(BaseModel):
    """Batch dispatch configuration."""

    chunk_size: int = 10
    email_stagger_seconds: int = 20
    call_stagger_seconds: int = 120

    # Local wall-clock defaults used when a batch is created without times
    timezone: str = "America/Los_Angeles"
    default_email_time: str = "10:00"
    default_call_time: str = "16:00"
    email_delay_days: int = 1
    call_delay_days: int = 3


class SchedulerSettings(BaseModel):
    """Delayed job queue configuration."""

    provider: str = "local"  # local, qstash
    base_url: str = "https://qstash.upstash.io"
    token: str = ""
    # Endpoint the queue calls back when a job fires
    callback_url: str = ""
    timeout_seconds: float = 10.0
    max_attempts: int = 3


class OrchestrationSettings(BaseModel):
    """Per-case orchestration service configuration."""

    url: str = ""
    token: str = ""
    timeout_seconds: float = 30.0


class WebhookSettings(BaseModel):
    """Voice provider webhook security configuration."""

    validate_secret: bool = False
    secret: str = ""
    secret_header: str = "X-Provider-Secret"
    # Optional HMAC-SHA256 body signature, checked when a signing secret is set
    signing_secret: str = ""
    signature_header: str = "X-Provider-Signature"


class EnrichmentSettings(BaseModel):
    """Background transcript enrichment configuration."""

    enabled: bool = True
    queue_size: int = 1000


class Settings(BaseSettings):
    """Application settings.

    Loaded from:
    1. Environment variables (OUTREACH_*)
    2. configs/{environment}.yaml
    3. configs/default.yaml
    """

    model_config = SettingsConfigDict(
        env_prefix="OUTREACH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    service_name: str = "outreach-agent"

    # Environment
    environment: str = "development"
    debug: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Subsystems
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    orchestration: OrchestrationSettings = Field(default_factory=OrchestrationSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)

    @property
    def is_production(self) -> bool:
        """Whether the service runs in a production-like environment."""
        return self.environment in ("production", "staging", "prod")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings object loaded from config files and environment.
    """
    import os
    from dynaconf import Dynaconf

    config_dir = Path(os.getenv("OUTREACH_CONFIG_DIR", "configs"))
    env = os.getenv("OUTREACH_ENV", "development")

    settings_files = []
    if (config_dir / "default.yaml").exists():
        settings_files.append(str(config_dir / "default.yaml"))
    if (config_dir / f"{env}.yaml").exists():
        settings_files.append(str(config_dir / f"{env}.yaml"))

    dynaconf = Dynaconf(
        envvar_prefix="OUTREACH",
        settings_files=settings_files,
        load_dotenv=True,
    )

    config_dict: dict[str, Any] = {}
    for key in dynaconf.keys():
        if not key.startswith("_"):
            config_dict[key.lower()] = dynaconf[key]

    config_dict["environment"] = env

    return Settings(**config_dict)


def validate_production_settings(settings: Settings) -> list[str]:
    """Validate settings for production readiness.

    Args:
        settings: Application settings to validate.

    Returns:
        List of validation error messages (empty if all valid).
    """
    errors: list[str] = []

    if not settings.is_production:
        return errors

    if "sqlite" in settings.database.url:
        errors.append("OUTREACH_DATABASE__URL must point to a server database in production")

    if settings.scheduler.provider == "local":
        errors.append(
            "OUTREACH_SCHEDULER__PROVIDER must not be 'local' in production; "
            "retries would be lost on restart"
        )
    elif settings.scheduler.provider == "qstash":
        if not settings.scheduler.token:
            errors.append("OUTREACH_SCHEDULER__TOKEN must be set when using qstash")
        if not settings.scheduler.callback_url:
            errors.append("OUTREACH_SCHEDULER__CALLBACK_URL must be set when using qstash")

    if not settings.orchestration.url:
        errors.append("OUTREACH_ORCHESTRATION__URL must be set in production")

    if not settings.webhooks.validate_secret:
        errors.append("OUTREACH_WEBHOOKS__VALIDATE_SECRET must be enabled in production")
    elif not settings.webhooks.secret:
        errors.append(
            "OUTREACH_WEBHOOKS__SECRET must be set when webhook validation is enabled"
        )

    return errors


def require_valid_settings() -> Settings:
    """Get settings and raise if production validation fails.

    Raises:
        ValueError: If production settings are invalid.

    Returns:
        Validated settings.
    """
    settings = get_settings()
    errors = validate_production_settings(settings)

    if errors:
        error_list = "\n  - ".join(errors)
        raise ValueError(
            f"Production configuration errors:\n  - {error_list}"
        )

    return settings
