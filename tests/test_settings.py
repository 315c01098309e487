import logging

import pytest

from crypto_utils import DEFAULT_KDF_ITERATIONS, DEFAULT_KDF_SALT
from settings import DEV_ENCRYPTION_SECRET, Settings


def test_defaults_from_empty_environment():
    settings = Settings.from_env({})
    assert settings.origin == "https://localhost"
    assert settings.rp_name is None
    assert settings.encryption_secret == DEV_ENCRYPTION_SECRET
    assert settings.kdf_salt == DEFAULT_KDF_SALT
    assert settings.kdf_iterations == DEFAULT_KDF_ITERATIONS
    assert settings.session_duration_ms == 3_600_000


def test_values_from_environment(tmp_path):
    settings = Settings.from_env(
        {
            "BIOAUTH_ORIGIN": "https://example.com",
            "BIOAUTH_RP_NAME": "Example",
            "BIOAUTH_ENCRYPTION_SECRET": "x" * 40,
            "BIOAUTH_KDF_SALT": "custom-salt",
            "BIOAUTH_KDF_ITERATIONS": " 2000 ",
            "BIOAUTH_SESSION_DURATION": "90",
            "BIOAUTH_STORAGE_DIR": str(tmp_path),
            "BIOAUTH_LOG_LEVEL": "debug",
        }
    )
    assert settings.origin == "https://example.com"
    assert settings.rp_name == "Example"
    assert settings.kdf_salt == b"custom-salt"
    assert settings.kdf_iterations == 2000
    assert settings.session_duration_ms == 90_000
    assert settings.store_path == str(tmp_path / "biometric_auth_store.json")
    assert settings.log_level == "DEBUG"


def test_from_env_reads_process_environment(monkeypatch):
    monkeypatch.setenv("BIOAUTH_SESSION_DURATION", "42")
    assert Settings.from_env().session_duration == 42


def test_non_integer_setting_is_rejected():
    with pytest.raises(ValueError):
        Settings.from_env({"BIOAUTH_SESSION_DURATION": "an hour"})


@pytest.mark.parametrize("field", ["session_duration", "kdf_iterations"])
def test_validate_rejects_non_positive_values(field):
    settings = Settings(encryption_secret="y" * 40)
    setattr(settings, field, -1)
    with pytest.raises(ValueError):
        settings.validate()


def test_validate_warns_about_weak_secrets(caplog):
    with caplog.at_level(logging.WARNING, logger="settings"):
        Settings().validate()
        Settings(encryption_secret="short").validate()
    assert "development encryption secret" in caplog.text
    assert "at least 32 characters" in caplog.text


def test_validate_is_quiet_for_strong_secret(caplog):
    with caplog.at_level(logging.WARNING, logger="settings"):
        assert Settings(encryption_secret="z" * 32).validate().encryption_secret == "z" * 32
    assert caplog.text == ""
