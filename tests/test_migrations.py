from __future__ import annotations

import types

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from guestpass import database, storage
from guestpass.models import Base


def _patch_db(monkeypatch: pytest.MonkeyPatch, engine: Engine, db_path) -> None:
    monkeypatch.setattr(storage, "engine", engine)
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "DATABASE_URL", str(engine.url))
    fake_settings = types.SimpleNamespace(database_path=db_path)
    monkeypatch.setattr(storage, "settings", fake_settings)


def _get_version(engine: Engine) -> str | None:
    with engine.connect() as conn:
        try:
            return conn.execute(
                text("select version_num from alembic_version")
            ).scalar()
        except Exception:
            return None


def test_upgrade_database_stamps_existing_db(monkeypatch, tmp_path):
    db_path = tmp_path / "existing.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(bind=engine)  # existing schema without Alembic tracking
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Stamped existing database to Alembic head" in actions
    assert _get_version(engine) == "0001_initial"


def test_upgrade_database_creates_fresh_schema(monkeypatch, tmp_path):
    db_path = tmp_path / "fresh.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0001_initial"
    inspector = inspect(engine)
    assert inspector.has_table("profiles")
    assert inspector.has_table("events")
    assert inspector.has_table("participants")
    unique_names = {
        constraint["name"]
        for constraint in inspector.get_unique_constraints("participants")
    }
    assert "uq_participants_event_email" in unique_names


def test_upgrade_database_backs_up_sqlite_file(monkeypatch, tmp_path):
    db_path = tmp_path / "backed.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)
    storage.upgrade_database(make_backup=False)

    actions = storage.upgrade_database()

    assert f"Backup created at {db_path}.bak" in actions
    assert "Applied Alembic migrations to head" in actions
    assert (tmp_path / "backed.sqlite.bak").exists()


def test_migrated_schema_enforces_capacity(monkeypatch, tmp_path):
    db_path = tmp_path / "checks.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)
    storage.upgrade_database(make_backup=False)

    with engine.begin() as conn:
        conn.execute(
            text("insert into profiles (id, email, full_name, created_at, updated_at) "
                 "values ('u1', '', '', '2025-01-01', '2025-01-01')")
        )
    with pytest.raises(Exception):
        with engine.begin() as conn:
            conn.execute(
                text(
                    "insert into events (id, title, location, capacity, event_date, "
                    "created_by, created_at, updated_at) values ('e1', 't', 'l', 0, "
                    "'2025-01-01', 'u1', '2025-01-01', '2025-01-01')"
                )
            )


def test_migrated_schema_enforces_participant_status(monkeypatch, tmp_path):
    db_path = tmp_path / "status.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)
    storage.upgrade_database(make_backup=False)

    stamp = "'2025-01-01'"
    with engine.begin() as conn:
        conn.execute(
            text(
                "insert into profiles (id, email, full_name, created_at, updated_at) "
                f"values ('u1', '', '', {stamp}, {stamp})"
            )
        )
        conn.execute(
            text(
                "insert into events (id, title, location, capacity, event_date, "
                f"created_by, created_at, updated_at) values ('e1', 't', 'l', 5, "
                f"{stamp}, 'u1', {stamp}, {stamp})"
            )
        )
    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(
                text(
                    "insert into participants (id, event_id, email, status, "
                    "invitation_token, created_at, updated_at) values ('p1', 'e1', "
                    f"'a@example.com', 'maybe', 'tok-12345678', {stamp}, {stamp})"
                )
            )
