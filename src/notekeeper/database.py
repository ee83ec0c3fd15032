import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel
from sqlalchemy import create_engine, delete, event, func, insert, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.engine.url import URL
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from notekeeper.config import Settings
from notekeeper.errors import ConflictError, StoreUnavailableError, ValidationError
from notekeeper.models import UPDATED_AT_TRIGGER_DDL, Base, notes_table, users_table
from notekeeper.schemas import UserRecord
from notekeeper.store import (
    NOTES,
    ORDER_FIELDS,
    OWNER_FIELDS,
    USERS,
    Record,
    RecordStore,
    check_collection,
    check_new_record,
    check_update_fields,
    coerce_record,
)
from notekeeper.utils import utc_now

logger = logging.getLogger(__name__)

TABLES = {USERS: users_table, NOTES: notes_table}

LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


def ssl_mode_for(url: URL, settings: Settings) -> Optional[str]:
    """
    Decide whether to force TLS for a database URL.

    Production deployments and DATABASE_SSL=require always encrypt; otherwise
    any host that is not a local instance is encrypted unless DATABASE_SSL=disable.
    An sslmode already present in the URL is left untouched.
    """
    if url.get_backend_name() == "sqlite" or "sslmode" in url.query:
        return None
    mode = (settings.database_ssl or "").lower()
    if settings.is_production or mode == "require":
        return "require"
    if mode == "disable":
        return None
    if url.host and url.host not in LOCAL_HOSTS:
        return "require"
    return None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# PUBLIC_INTERFACE
def create_db_engine(settings: Settings) -> Engine:
    """
    Build the bounded, timeout-guarded connection pool for DATABASE_URL.
    """
    url = make_url(settings.database_url)
    kwargs: Dict[str, Any] = {"future": True}

    if url.get_backend_name() == "sqlite":
        # SQLite needs check_same_thread=False for multithreading in FastAPI
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": settings.statement_timeout}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            kwargs.update(pool_size=settings.pool_size, max_overflow=0, pool_timeout=settings.pool_timeout)
    else:
        connect_args: Dict[str, Any] = {"connect_timeout": settings.connect_timeout}
        if url.get_backend_name() == "postgresql":
            connect_args["options"] = f"-c statement_timeout={settings.statement_timeout * 1000}"
        sslmode = ssl_mode_for(url, settings)
        if sslmode:
            connect_args["sslmode"] = sslmode
        kwargs.update(
            connect_args=connect_args,
            pool_size=settings.pool_size,
            max_overflow=0,
            pool_timeout=settings.pool_timeout,
            pool_recycle=settings.idle_timeout,
            pool_pre_ping=True,  # avoids stale connections
        )

    engine = create_engine(url, **kwargs)
    if url.get_backend_name() == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


@contextmanager
def unavailable_on_disconnect():
    """Translate connectivity failures and timeouts into StoreUnavailableError."""
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
        logger.error("[Database] Backend unavailable: %s", exc)
        raise StoreUnavailableError("Database unavailable") from exc


class SqlRecordStore(RecordStore):
    """Record store backed by a relational engine through SQLAlchemy."""

    mode = "relational"

    def __init__(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(autoflush=False, bind=engine)

    @contextmanager
    def _session(self):
        with unavailable_on_disconnect():
            with self.SessionLocal.begin() as db:
                yield db

    # PUBLIC_INTERFACE
    def bootstrap(self) -> None:
        """
        Create tables, indexes and the updated_at trigger if absent.

        Safe to run against a database that already has the schema.
        """
        with unavailable_on_disconnect():
            with self.engine.begin() as conn:
                Base.metadata.create_all(conn)
                for ddl in UPDATED_AT_TRIGGER_DDL.get(self.engine.dialect.name, ()):
                    conn.execute(text(ddl))
        logger.info("[Database] %s schema initialized", self.engine.dialect.name)

    def _insert_statement(self, table, values: Mapping[str, Any]):
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(table).values(**values).on_conflict_do_nothing()
        elif dialect == "sqlite":
            stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing()
        else:
            stmt = insert(table).values(**values)
        return stmt.returning(*table.c)

    @staticmethod
    def _to_record(collection: str, row: Mapping[str, Any]) -> Record:
        model = check_collection(collection)
        return model.model_validate(dict(row))

    def list_by_owner(self, collection: str, owner_id: str) -> List[Record]:
        check_collection(collection)
        table = TABLES[collection]
        stmt = (
            select(table)
            .where(table.c[OWNER_FIELDS[collection]] == owner_id)
            .order_by(table.c[ORDER_FIELDS[collection]].desc(), table.c.created_at.asc())
        )
        with self._session() as db:
            rows = db.execute(stmt).mappings().all()
        return [self._to_record(collection, row) for row in rows]

    def get_by_id(self, collection: str, record_id: str, owner_id: str) -> Optional[Record]:
        check_collection(collection)
        table = TABLES[collection]
        stmt = select(table).where(
            table.c.id == record_id, table.c[OWNER_FIELDS[collection]] == owner_id
        )
        with self._session() as db:
            row = db.execute(stmt).mappings().first()
        return self._to_record(collection, row) if row else None

    def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        table = TABLES[USERS]
        stmt = select(table).where(func.lower(table.c.email) == email.strip().lower()).limit(1)
        with self._session() as db:
            row = db.execute(stmt).mappings().first()
        return self._to_record(USERS, row) if row else None

    def insert(self, collection: str, record: Union[BaseModel, Mapping[str, Any]]) -> Record:
        record = coerce_record(collection, record)
        check_new_record(collection, record)
        values = record.model_dump()
        now = utc_now()
        if values.get("created_at") is None:
            values["created_at"] = now
        if collection == NOTES and values.get("updated_at") is None:
            values["updated_at"] = values["created_at"]

        stmt = self._insert_statement(TABLES[collection], values)
        try:
            with self._session() as db:
                row = db.execute(stmt).mappings().first()
        except IntegrityError as exc:
            if collection == NOTES and self.get_by_id(USERS, record.user_id, record.user_id) is None:
                raise ValidationError("Note owner does not exist") from exc
            raise self._conflict(collection) from exc
        if row is None:
            raise self._conflict(collection)
        return self._to_record(collection, row)

    @staticmethod
    def _conflict(collection: str) -> ConflictError:
        if collection == USERS:
            return ConflictError("Email already registered")
        return ConflictError("Record already exists")

    def update(
        self, collection: str, record_id: str, owner_id: str, fields: Mapping[str, Any]
    ) -> Optional[Record]:
        changes = check_update_fields(collection, fields)
        table = TABLES[collection]
        if "updated_at" in table.c:
            changes["updated_at"] = utc_now()
        if not changes:
            return self.get_by_id(collection, record_id, owner_id)

        stmt = (
            update(table)
            .where(table.c.id == record_id, table.c[OWNER_FIELDS[collection]] == owner_id)
            .values(**changes)
            .returning(*table.c)
        )
        with self._session() as db:
            row = db.execute(stmt).mappings().first()
        return self._to_record(collection, row) if row else None

    def delete(self, collection: str, record_id: str, owner_id: str) -> bool:
        check_collection(collection)
        table = TABLES[collection]
        stmt = delete(table).where(
            table.c.id == record_id, table.c[OWNER_FIELDS[collection]] == owner_id
        )
        with self._session() as db:
            result = db.execute(stmt)
            return result.rowcount > 0

    def healthcheck(self) -> bool:
        """SELECT 1; True if the database is reachable."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, InterfaceError, PoolTimeoutError):
            return False

    def close(self) -> None:
        self.engine.dispose()
        logger.info("[Database] Pool closed")
