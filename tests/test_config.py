from __future__ import annotations

import tomllib

import pytest

from guestpass import config


@pytest.fixture()
def isolated_env(monkeypatch, tmp_path):
    for key in config.DEFAULTS:
        monkeypatch.delenv(f"GUESTPASS_{key.upper()}", raising=False)
    for key in ("GUESTPASS_CONFIG", "GUESTPASS_DATA_DIR", "GUESTPASS_DB", "GUESTPASS_DATABASE_URL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GUESTPASS_BASE_DIR", str(tmp_path))
    monkeypatch.setattr(config, "settings", config.settings)
    return tmp_path


def test_defaults_without_config_file(isolated_env):
    settings = config.load_settings()

    assert settings.config_path == isolated_env / "guestpass.toml"
    assert settings.database_path == isolated_env / "data" / "guestpass.db"
    assert settings.database_url == f"sqlite:///{isolated_env / 'data' / 'guestpass.db'}"
    assert settings.resend_from_email == "onboarding@resend.dev"
    assert settings.from_address == "Event Manager <onboarding@resend.dev>"
    assert not settings.email_enabled
    assert (isolated_env / "data").is_dir()


def test_environment_overrides_file(isolated_env, monkeypatch):
    (isolated_env / "guestpass.toml").write_text(
        'resend_from_name = "Party Bot"\napp_port = 9000\n', encoding="utf-8"
    )
    monkeypatch.setenv("GUESTPASS_APP_PORT", "9100")
    monkeypatch.setenv("GUESTPASS_RESEND_API_KEY", "re_secret")

    settings = config.load_settings()

    assert settings.resend_from_name == "Party Bot"
    assert settings.app_port == 9100
    assert settings.email_enabled


def test_update_config_file_never_writes_api_key(isolated_env):
    path = isolated_env / "guestpass.toml"
    updated = config.update_config_file(
        {"public_base_url": "https://guests.example.com", "resend_api_key": "re_secret"},
        path=path,
    )

    stored = tomllib.loads(path.read_text(encoding="utf-8"))
    assert stored == {"public_base_url": "https://guests.example.com"}
    assert updated.public_base_url == "https://guests.example.com"
    assert updated.resend_api_key == ""


def test_settings_as_dict_masks_api_key(isolated_env, monkeypatch):
    monkeypatch.setenv("GUESTPASS_RESEND_API_KEY", "re_secret")
    payload = config.settings_as_dict(config.load_settings())
    assert payload["resend_api_key"] == "********"
    assert payload["data_dir"] == str(isolated_env / "data")
