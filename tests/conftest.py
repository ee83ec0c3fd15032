import pytest

from notekeeper.config import Settings
from notekeeper.database import SqlRecordStore, create_db_engine
from notekeeper.file_store import FileRecordStore
from notekeeper.schemas import UserRecord
from notekeeper.store import USERS

SECRET = "test-secret"


@pytest.fixture
def file_store(tmp_path):
    return FileRecordStore(tmp_path / "db")


@pytest.fixture
def sql_store(tmp_path):
    settings = Settings(database_url=f"sqlite:///{tmp_path / 'notes.db'}", secret_key=SECRET)
    store = SqlRecordStore(create_db_engine(settings))
    store.bootstrap()
    yield store
    store.close()


@pytest.fixture(params=["file", "relational"])
def store(request, tmp_path):
    if request.param == "file":
        yield FileRecordStore(tmp_path / "db")
        return
    yield request.getfixturevalue("sql_store")


def make_user(store, email="alice@example.com"):
    return store.insert(USERS, UserRecord(email=email, password_hash="hashed"))


@pytest.fixture
def alice(store):
    return make_user(store, "alice@example.com")


@pytest.fixture
def bob(store):
    return make_user(store, "bob@example.com")
