from datetime import datetime, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError

from notekeeper.config import Settings
from notekeeper.database import SqlRecordStore, create_db_engine, ssl_mode_for
from notekeeper.errors import StoreUnavailableError
from notekeeper.schemas import NoteRecord, UserRecord
from notekeeper.store import NOTES, USERS


@pytest.fixture
def owner(sql_store):
    return sql_store.insert(USERS, UserRecord(email="owner@example.com", password_hash="h"))


def test_bootstrap_is_idempotent(sql_store, owner):
    sql_store.bootstrap()
    sql_store.bootstrap()
    assert sql_store.get_by_id(USERS, owner.id, owner.id) == owner


def test_trigger_refreshes_updated_at_for_direct_sql(sql_store, owner):
    old = datetime(2020, 1, 1, tzinfo=timezone.utc)
    note = sql_store.insert(NOTES, NoteRecord(user_id=owner.id, title="t", created_at=old, updated_at=old))

    with sql_store.engine.begin() as conn:
        conn.execute(text("UPDATE notes SET title = 'edited' WHERE id = :id"), {"id": note.id})

    fetched = sql_store.get_by_id(NOTES, note.id, owner.id)
    assert fetched.title == "edited"
    assert fetched.updated_at > old
    assert fetched.created_at == old


def test_user_delete_cascades_at_the_database(sql_store, owner):
    note = sql_store.insert(NOTES, NoteRecord(user_id=owner.id, title="t"))

    with sql_store.engine.begin() as conn:
        conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": owner.id})

    assert sql_store.get_by_id(NOTES, note.id, owner.id) is None


def test_email_uniqueness_holds_for_direct_sql(sql_store, owner):
    with pytest.raises(IntegrityError):
        with sql_store.engine.begin() as conn:
            conn.execute(
                text("INSERT INTO users (id, email, password_hash) VALUES ('x', 'OWNER@example.com', 'h')")
            )


def test_unreachable_database_raises_store_unavailable(tmp_path):
    missing = tmp_path / "no" / "such" / "dir" / "notes.db"
    store = SqlRecordStore(create_db_engine(Settings(database_url=f"sqlite:///{missing}")))

    with pytest.raises(StoreUnavailableError):
        store.bootstrap()
    with pytest.raises(StoreUnavailableError):
        store.list_by_owner(NOTES, "u1")
    assert store.healthcheck() is False


def test_healthcheck_reports_reachable_database(sql_store):
    assert sql_store.healthcheck() is True


def test_in_memory_database_is_supported():
    store = SqlRecordStore(create_db_engine(Settings(database_url="sqlite://")))
    store.bootstrap()
    user = store.insert(USERS, UserRecord(email="mem@example.com", password_hash="h"))
    assert store.find_user_by_email("MEM@example.com").id == user.id
    store.close()


@pytest.mark.parametrize(
    "url,env,flag,expected",
    [
        ("postgresql://u:p@localhost/notes", "dev", None, None),
        ("postgresql://u:p@127.0.0.1:5432/notes", "dev", None, None),
        ("postgresql://u:p@db.example.com/notes", "dev", None, "require"),
        ("postgresql://u:p@db.example.com/notes", "dev", "disable", None),
        ("postgresql://u:p@localhost/notes", "production", None, "require"),
        ("postgresql://u:p@localhost/notes", "production", "disable", "require"),
        ("postgresql://u:p@localhost/notes", "dev", "require", "require"),
        ("postgresql://u:p@db.example.com/notes?sslmode=verify-full", "production", None, None),
        ("sqlite:///notes.db", "production", "require", None),
    ],
)
def test_ssl_mode_for(url, env, flag, expected):
    settings = Settings(database_url=url, env=env, database_ssl=flag)
    assert ssl_mode_for(make_url(url), settings) == expected
