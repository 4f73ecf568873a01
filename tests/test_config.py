"""Tests for configuration settings."""

import pytest

from fasthook.config import Settings, clear_settings_cache, get_settings


def make_settings(**overrides) -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        root_api_key="test_key_12345",
        **overrides,
    )


class TestDeliveryPolicyValidation:
    """Tests for retry and signing setting validation."""

    def test_defaults(self):
        settings = make_settings()
        assert settings.webhook_timeout == 10.0
        assert settings.webhook_max_attempts == 10
        assert settings.webhook_retry_base_delay == 1.0
        assert settings.webhook_retry_max_delay == 3600.0
        assert settings.webhook_retry_jitter == 0.1
        assert settings.signature_tolerance == 300
        assert settings.signature_encoding == "hex"

    @pytest.mark.parametrize("jitter", [-0.1, 1.0, 1.5])
    def test_jitter_out_of_range(self, jitter):
        with pytest.raises(ValueError, match="webhook_retry_jitter"):
            make_settings(webhook_retry_jitter=jitter)

    def test_cap_below_base(self):
        with pytest.raises(ValueError, match="webhook_retry_max_delay"):
            make_settings(webhook_retry_base_delay=10.0, webhook_retry_max_delay=5.0)

    def test_unknown_signature_encoding(self):
        with pytest.raises(ValueError, match="signature_encoding"):
            make_settings(signature_encoding="base32")

    def test_max_attempts_at_least_one(self):
        with pytest.raises(ValueError):
            make_settings(webhook_max_attempts=0)

    def test_schemes_lowercased(self):
        assert make_settings(webhook_allowed_schemes=["HTTPS"]).webhook_allowed_schemes == [
            "https"
        ]

    def test_stale_claim_after(self):
        settings = make_settings(webhook_timeout=5.0, worker_claim_margin=20.0)
        assert settings.stale_claim_after == 25.0

    def test_root_api_key_hidden_in_repr(self):
        assert "test_key_12345" not in repr(make_settings())


class TestEnvironment:
    """Tests for environment loading."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("FASTHOOK_WEBHOOK_MAX_ATTEMPTS", "4")
        assert make_settings().webhook_max_attempts == 4


class TestSettingsCache:
    """Tests for settings caching behavior."""

    def test_cached(self):
        clear_settings_cache()
        assert get_settings() is get_settings()

    def test_clear_returns_fresh_instance(self):
        settings1 = get_settings()
        clear_settings_cache()
        settings2 = get_settings()
        assert settings1 is not settings2

    def test_clear_is_idempotent(self):
        clear_settings_cache()
        clear_settings_cache()
