import logging

from sqlalchemy.exc import SQLAlchemyError

from notekeeper.config import Settings
from notekeeper.database import SqlRecordStore, create_db_engine
from notekeeper.errors import StoreError
from notekeeper.file_store import FileRecordStore
from notekeeper.store import RecordStore

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def select_backend(settings: Settings) -> RecordStore:
    """
    Choose the storage backend once, at process start.

    The relational backend is used when DATABASE_URL is set, a connection can
    be made and the schema bootstraps; anything else falls back to JSON files.
    The decision is never revisited while the process runs.
    """
    if settings.database_url:
        store = _try_relational(settings)
        if store is not None:
            return store

    logger.warning(
        "[Database] Using file-based storage in %s (degraded mode: data is local to this machine)",
        settings.data_dir,
    )
    store = FileRecordStore(settings.data_dir)
    store.data_dir.mkdir(parents=True, exist_ok=True)
    return store


def _try_relational(settings: Settings):
    try:
        engine = create_db_engine(settings)
    except (SQLAlchemyError, ImportError, ValueError) as exc:
        logger.warning("[Database] Relational backend not usable: %s", exc)
        return None

    store = SqlRecordStore(engine)
    try:
        store.bootstrap()
    except (StoreError, SQLAlchemyError) as exc:
        logger.warning("[Database] Relational backend not available: %s", exc)
        engine.dispose()
        return None

    logger.info("[Database] %s connected and initialized", engine.dialect.name)
    return store
