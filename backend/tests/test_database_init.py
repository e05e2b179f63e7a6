import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import StaticPool

from gearmarket.config import settings
from gearmarket.core import database


def _memory_engine():
    return create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)


def test_migration_head_is_accounts_revision():
    assert database._head_revision() == "202610010001"


def test_migrate_mode_refuses_unmigrated_database(monkeypatch):
    monkeypatch.setattr(database, "engine", _memory_engine())
    monkeypatch.setattr(settings, "DB_INIT_MODE", "migrate")
    monkeypatch.setattr(settings, "DB_REQUIRE_HEAD", True)

    with pytest.raises(RuntimeError, match="alembic upgrade head"):
        database.init_db()


def test_create_all_mode_builds_tables(monkeypatch):
    engine = _memory_engine()
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(settings, "DB_INIT_MODE", "create_all")

    database.init_db()

    assert {"accounts", "refresh_tokens", "block_records"} <= set(inspect(engine).get_table_names())


def test_unknown_mode_is_rejected(monkeypatch):
    monkeypatch.setattr(settings, "DB_INIT_MODE", "sometimes")
    with pytest.raises(RuntimeError):
        database.init_db()
