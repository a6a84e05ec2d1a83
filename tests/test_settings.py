"""Tests for configuration settings."""

import pytest


def test_settings_loads_from_env():
    """Test that settings loads from environment variables."""
    # Import after env vars are set in conftest
    from qbo_bridge.config.settings import get_settings

    # Clear the cache to force reload
    get_settings.cache_clear()

    settings = get_settings()

    assert settings.qbo_client_id == "test-client-id"
    assert settings.qbo_client_secret.get_secret_value() == "test-client-secret"
    assert settings.public_url == "https://bridge.example.com"


def test_settings_has_defaults():
    """Test that settings has sensible defaults."""
    from qbo_bridge.config.settings import get_settings

    get_settings.cache_clear()
    settings = get_settings()

    assert settings.qbo_api_url == "https://quickbooks.api.intuit.com"
    assert settings.qbo_minor_version == 75
    assert settings.qbo_timeout == 60.0
    assert settings.qbo_max_retries == 3
    assert settings.qbo_retry_base_delay == 1.0
    assert settings.qbo_token_url.endswith("/oauth2/v1/tokens/bearer")
    assert "com.intuit.quickbooks.accounting" in settings.qbo_scope


def test_settings_are_cached():
    """Test that get_settings returns cached instance."""
    from qbo_bridge.config.settings import get_settings

    get_settings.cache_clear()

    settings1 = get_settings()
    settings2 = get_settings()

    assert settings1 is settings2


def test_connection_tokens_read_from_env(monkeypatch):
    """Test that pre-authorized tokens seed the connection slots."""
    from qbo_bridge.config.settings import FlatSettings
    from qbo_bridge.connections import ConnectionSlot, ConnectionStore

    monkeypatch.setenv("QBO_FROM_ACCESS_TOKEN", "from-token")
    monkeypatch.setenv("QBO_FROM_REALM_ID", "111")

    store = ConnectionStore.from_settings(FlatSettings())

    assert store.get(ConnectionSlot.FROM).access_token == "from-token"
    assert store.get(ConnectionSlot.FROM).is_usable
    assert not store.get(ConnectionSlot.TO).is_usable


def test_invalid_log_level_rejected(monkeypatch):
    """Test that an unknown log level fails validation."""
    from pydantic import ValidationError

    from qbo_bridge.config.settings import FlatSettings

    monkeypatch.setenv("LOG_LEVEL", "LOUD")

    with pytest.raises(ValidationError):
        FlatSettings()
