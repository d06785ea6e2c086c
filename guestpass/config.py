"""Global configuration for GuestPass."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

SANDBOX_FROM_EMAIL = "onboarding@resend.dev"

DEFAULTS: dict[str, Any] = {
    "resend_api_key": "",
    "resend_from_email": SANDBOX_FROM_EMAIL,
    "resend_from_name": "Event Manager",
    "resend_api_url": "https://api.resend.com",
    "email_timeout_seconds": 10.0,
    "public_base_url": "",
    "app_host": "0.0.0.0",
    "app_port": 8000,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "resend_api_key": str,
    "resend_from_email": str,
    "resend_from_name": str,
    "resend_api_url": str,
    "email_timeout_seconds": float,
    "public_base_url": str,
    "app_host": str,
    "app_port": int,
}

# Never written back to the TOML file by ``guestpass config``.
SECRET_KEYS = {"resend_api_key"}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    database_url: str
    resend_api_key: str
    resend_from_email: str
    resend_from_name: str
    resend_api_url: str
    email_timeout_seconds: float
    public_base_url: str
    app_host: str
    app_port: int
    config_path: Path

    @property
    def email_enabled(self) -> bool:
        return bool(self.resend_api_key.strip())

    @property
    def from_address(self) -> str:
        sender = self.resend_from_email.strip() or SANDBOX_FROM_EMAIL
        return f"{self.resend_from_name} <{sender}>"


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    return TYPE_CASTERS[key](value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"GUESTPASS_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "guestpass.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("GUESTPASS_BASE_DIR", Path.cwd()))
    env_config = os.getenv("GUESTPASS_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "guestpass.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("GUESTPASS_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("GUESTPASS_DB", toml_config.get("database_path")),
    )
    database_url = os.getenv(
        "GUESTPASS_DATABASE_URL",
        toml_config.get("database_url") or f"sqlite:///{database_path_value}",
    )

    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        database_url=database_url,
        **{key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS},
        config_path=config_path,
    )
    if settings.database_url.startswith("sqlite"):
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
        "database_url": settings.database_url,
    }
    for key in DEFAULTS:
        payload[key] = getattr(settings, key)
    if settings.resend_api_key:
        payload["resend_api_key"] = "********"
    return payload


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# GuestPass configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS or key in SECRET_KEYS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
