from __future__ import annotations

import os

import pytest

from calboard.config import (
    DEFAULT_EVENT_TYPES,
    fallback_settings,
    load_settings,
    settings_as_dict,
)

BACKEND_ENV = {
    "CALBOARD_API_KEY": "key",
    "CALBOARD_AUTH_DOMAIN": "calendar.example.com",
    "CALBOARD_PROJECT_ID": "project",
    "CALBOARD_APP_ID": "app",
    "CALBOARD_DATABASE_URL": "sqlite:///calboard.sqlite",
    "CALBOARD_SESSION_SECRET": "secret",
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("CALBOARD_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("CALBOARD_BASE_DIR", str(tmp_path))


def test_defaults_without_config(tmp_path):
    settings = load_settings()
    assert settings.config_path == tmp_path / "calboard.toml"
    assert settings.event_types == DEFAULT_EVENT_TYPES
    assert settings.session_ttl.total_seconds() == 168 * 3600
    assert not settings.backend.is_complete
    assert "CALBOARD_API_KEY" in settings.backend.missing()


def test_environment_overrides_toml(monkeypatch, tmp_path):
    (tmp_path / "calboard.toml").write_text(
        'app_port = 9000\nmax_failed_sign_ins = 10\nproject_id = "from-file"\n'
        'event_types = ["Lecture", "Lab"]\n'
    )
    monkeypatch.setenv("CALBOARD_APP_PORT", "9100")
    monkeypatch.setenv("CALBOARD_ENABLE_SCHEDULER", "off")

    settings = load_settings()

    assert settings.app_port == 9100
    assert settings.max_failed_sign_ins == 10
    assert settings.enable_scheduler is False
    assert settings.event_types == ("Lecture", "Lab")
    assert settings.backend.project_id == "from-file"


def test_comma_separated_event_types(monkeypatch):
    monkeypatch.setenv("CALBOARD_EVENT_TYPES", "Exam, Field trip,,")
    assert load_settings().event_types == ("Exam", "Field trip")


def test_blank_backend_values_count_as_missing(monkeypatch):
    for key, value in BACKEND_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("CALBOARD_SESSION_SECRET", "   ")
    assert load_settings().backend.missing() == ["CALBOARD_SESSION_SECRET"]


def test_invalid_boolean_raises(monkeypatch):
    monkeypatch.setenv("CALBOARD_COOKIE_SECURE", "maybe")
    with pytest.raises(ValueError):
        load_settings()


def test_settings_as_dict_masks_secrets(monkeypatch):
    for key, value in BACKEND_ENV.items():
        monkeypatch.setenv(key, value)
    data = settings_as_dict(load_settings())
    assert data["api_key"] == "********"
    assert data["session_secret"] == "********"
    assert data["project_id"] == "project"


def test_invalid_integer_raises(monkeypatch):
    monkeypatch.setenv("CALBOARD_APP_PORT", "not-a-number")
    with pytest.raises(ValueError):
        load_settings()


def test_fallback_settings_use_defaults(tmp_path):
    settings = fallback_settings(tmp_path)
    assert settings.base_dir == tmp_path
    assert settings.app_port == 8000
    assert settings.event_types == DEFAULT_EVENT_TYPES
    assert not settings.backend.is_complete
