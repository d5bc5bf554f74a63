"""Application configuration and environment variable validation."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralised application settings loaded from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Supabase Configuration
    supabase_url: str = Field(..., alias="SUPABASE_URL")
    supabase_key: str = Field(..., alias="SUPABASE_KEY")
    supabase_schema: str = Field(default="public", alias="SUPABASE_SCHEMA")

    # Vapi Configuration
    vapi_api_key: Optional[str] = Field(None, alias="VAPI_API_KEY")
    vapi_base_url: str = Field(default="https://api.vapi.ai", alias="VAPI_BASE_URL")
    vapi_webhook_secret: Optional[str] = Field(None, alias="VAPI_WEBHOOK_SECRET")
    vapi_signature_header: str = Field(default="x-vapi-signature", alias="VAPI_SIGNATURE_HEADER")
    provider_timeout_seconds: float = Field(default=30.0, alias="PROVIDER_TIMEOUT_SECONDS")

    # LLM Configuration
    llm_provider: str = Field(default="openai", alias="LLM_PROVIDER")
    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    openrouter_api_key: Optional[str] = Field(None, alias="OPENROUTER_API_KEY")
    cerebras_api_key: Optional[str] = Field(None, alias="CEREBRAS_API_KEY")
    extraction_model: str = Field(default="gpt-4o-mini", alias="EXTRACTION_MODEL")
    brief_model: str = Field(default="gpt-4o-mini", alias="BRIEF_MODEL")
    llm_temperature: float = Field(default=0.3, alias="LLM_TEMPERATURE")
    llm_timeout_seconds: float = Field(default=45.0, alias="LLM_TIMEOUT_SECONDS")

    # Redis Configuration (for webhook event deduplication)
    redis_url: Optional[str] = Field(None, alias="REDIS_URL")
    dedup_ttl_seconds: int = Field(default=86400, alias="DEDUP_TTL_SECONDS")  # 24 hours
    dedup_max_entries: int = Field(default=10000, alias="DEDUP_MAX_ENTRIES")

    # Job retry policy
    webhook_job_max_attempts: int = Field(default=3, alias="WEBHOOK_JOB_MAX_ATTEMPTS")
    webhook_job_base_delay: float = Field(default=2.0, alias="WEBHOOK_JOB_BASE_DELAY")
    call_processing_max_attempts: int = Field(default=5, alias="CALL_PROCESSING_MAX_ATTEMPTS")
    call_processing_base_delay: float = Field(default=5.0, alias="CALL_PROCESSING_BASE_DELAY")
    transcript_fetch_max_attempts: int = Field(default=6, alias="TRANSCRIPT_FETCH_MAX_ATTEMPTS")
    transcript_fetch_base_delay: float = Field(default=10.0, alias="TRANSCRIPT_FETCH_BASE_DELAY")

    # Recovery sweep for completed calls whose jobs were lost or parked
    recovery_sweep_interval_seconds: float = Field(default=300.0, alias="RECOVERY_SWEEP_INTERVAL_SECONDS")  # 0 disables
    recovery_grace_seconds: float = Field(default=600.0, alias="RECOVERY_GRACE_SECONDS")
    recovery_max_age_hours: float = Field(default=24.0, alias="RECOVERY_MAX_AGE_HOURS")
    recovery_batch_size: int = Field(default=50, alias="RECOVERY_BATCH_SIZE")

    # Lead pipeline
    brief_interest_threshold: int = Field(default=5, alias="BRIEF_INTEREST_THRESHOLD")
    lead_notes_cap: int = Field(default=20, alias="LEAD_NOTES_CAP")
    default_organization_id: Optional[str] = Field(None, alias="DEFAULT_ORGANIZATION_ID")

    # Logfire Configuration
    logfire_api_key: Optional[str] = Field(None, alias="LOGFIRE_API_KEY")

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @property
    def llm_api_key(self) -> Optional[str]:
        """API key for the configured LLM provider."""
        return {
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
            "cerebras": self.cerebras_api_key,
        }.get(self.llm_provider)

    @property
    def llm_configured(self) -> bool:
        return bool(self.llm_api_key)

    @property
    def signature_configured(self) -> bool:
        return bool(self.vapi_webhook_secret)

    def validate_required(self) -> None:
        """Fail fast on configuration the service cannot run without.

        Raises:
            ValueError: If a required credential is empty or the LLM provider is unknown
        """
        missing: List[str] = []
        if not self.supabase_url:
            missing.append("SUPABASE_URL")
        if not self.supabase_key:
            missing.append("SUPABASE_KEY")
        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        if self.llm_provider not in ("openai", "openrouter", "cerebras"):
            raise ValueError(f"Unknown LLM provider: {self.llm_provider}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance."""

    return Settings()  # type: ignore[call-arg]
