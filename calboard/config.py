"""Global configuration for Calboard."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

# Values that identify the backend project and its credentials. All six must
# be present for the backend client to initialize.
BACKEND_KEYS: tuple[str, ...] = (
    "api_key",
    "auth_domain",
    "project_id",
    "app_id",
    "database_url",
    "session_secret",
)

DEFAULT_EVENT_TYPES: tuple[str, ...] = (
    "Lecture",
    "Exam",
    "Holiday",
    "Seminar",
    "Meeting",
    "Deadline",
    "Other",
)

DEFAULTS: dict[str, Any] = {
    "app_host": "0.0.0.0",
    "app_port": 8000,
    "session_ttl_hours": 168,
    "session_purge_interval_hours": 6,
    "max_failed_sign_ins": 5,
    "sign_in_lockout_minutes": 15,
    "min_password_length": 6,
    "event_types": DEFAULT_EVENT_TYPES,
    "enable_scheduler": True,
    "cookie_secure": False,
    "seed_users": 3,
    "seed_events_per_user": 4,
    "seed_invitations": 2,
}


def _listify(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return tuple(item.strip() for item in items if str(item).strip())


TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "app_host": str,
    "app_port": int,
    "session_ttl_hours": int,
    "session_purge_interval_hours": int,
    "max_failed_sign_ins": int,
    "sign_in_lockout_minutes": int,
    "min_password_length": int,
    "event_types": _listify,
    "enable_scheduler": bool,
    "cookie_secure": bool,
    "seed_users": int,
    "seed_events_per_user": int,
    "seed_invitations": int,
}


@dataclass(frozen=True)
class BackendConfig:
    api_key: str | None
    auth_domain: str | None
    project_id: str | None
    app_id: str | None
    database_url: str | None
    session_secret: str | None

    def missing(self) -> list[str]:
        """Return the environment names of backend values that are unset."""
        return [
            f"CALBOARD_{key.upper()}"
            for key in BACKEND_KEYS
            if not (getattr(self, key) or "").strip()
        ]

    @property
    def is_complete(self) -> bool:
        return not self.missing()


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    config_path: Path
    backend: BackendConfig
    app_host: str
    app_port: int
    session_ttl_hours: int
    session_purge_interval_hours: int
    max_failed_sign_ins: int
    sign_in_lockout_minutes: int
    min_password_length: int
    event_types: tuple[str, ...]
    enable_scheduler: bool
    cookie_secure: bool
    seed_users: int
    seed_events_per_user: int
    seed_invitations: int

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(hours=self.session_ttl_hours)

    @property
    def sign_in_lockout(self) -> timedelta:
        return timedelta(minutes=self.sign_in_lockout_minutes)


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"CALBOARD_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _backend_value(key: str, *, toml_config: dict[str, Any]) -> str | None:
    env_key = f"CALBOARD_{key.upper()}"
    raw = os.environ.get(env_key, toml_config.get(key))
    if raw is None:
        return None
    return str(raw).strip() or None


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("CALBOARD_BASE_DIR", Path.cwd()))
    env_config = os.getenv("CALBOARD_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "calboard.toml")
    toml_config = _load_toml_config(config_path)

    backend = BackendConfig(
        **{key: _backend_value(key, toml_config=toml_config) for key in BACKEND_KEYS}
    )
    values = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    return Settings(
        base_dir=base_dir,
        config_path=config_path,
        backend=backend,
        **values,
    )


def fallback_settings(base_dir: Path | None = None) -> Settings:
    """Defaults with no backend values, used when the real settings cannot load."""
    base_dir = Path(base_dir or os.getenv("CALBOARD_BASE_DIR") or Path.cwd())
    return Settings(
        base_dir=base_dir,
        config_path=base_dir / "calboard.toml",
        backend=BackendConfig(**{key: None for key in BACKEND_KEYS}),
        **DEFAULTS,
    )


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    """Return a printable view of the settings with credentials masked."""
    backend = {
        key: getattr(settings.backend, key) for key in BACKEND_KEYS
    }
    for secret in ("api_key", "session_secret"):
        if backend[secret]:
            backend[secret] = "********"
    return {
        "base_dir": str(settings.base_dir),
        "config_path": str(settings.config_path),
        **backend,
        "app_host": settings.app_host,
        "app_port": settings.app_port,
        "session_ttl_hours": settings.session_ttl_hours,
        "session_purge_interval_hours": settings.session_purge_interval_hours,
        "max_failed_sign_ins": settings.max_failed_sign_ins,
        "sign_in_lockout_minutes": settings.sign_in_lockout_minutes,
        "min_password_length": settings.min_password_length,
        "event_types": list(settings.event_types),
        "enable_scheduler": settings.enable_scheduler,
        "cookie_secure": settings.cookie_secure,
    }
