"""Tests for settings loading and validation."""

import pytest

from voice_crm.core.config import Settings

from .fakes import make_settings


class TestSettings:
    """Environment aliases and derived flags."""

    def test_defaults(self) -> None:
        settings = make_settings()
        assert settings.llm_provider == "openai"
        assert settings.vapi_signature_header == "x-vapi-signature"
        assert settings.lead_notes_cap == 20
        assert settings.recovery_sweep_interval_seconds == 300.0
        assert settings.recovery_grace_seconds == 600.0
        assert settings.llm_configured is False
        assert settings.signature_configured is False

    def test_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("SUPABASE_URL", "http://db")
        monkeypatch.setenv("SUPABASE_KEY", "key")
        monkeypatch.setenv("LLM_PROVIDER", "cerebras")
        monkeypatch.setenv("CEREBRAS_API_KEY", "csk-1")
        monkeypatch.setenv("CALL_PROCESSING_MAX_ATTEMPTS", "7")

        settings = Settings(_env_file=None)

        assert settings.llm_api_key == "csk-1"
        assert settings.llm_configured is True
        assert settings.call_processing_max_attempts == 7

    def test_unknown_provider_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            make_settings(LLM_PROVIDER="mystery").validate_required()

    def test_empty_credentials_rejected(self) -> None:
        with pytest.raises(ValueError, match="SUPABASE_KEY"):
            make_settings(SUPABASE_KEY="").validate_required()
