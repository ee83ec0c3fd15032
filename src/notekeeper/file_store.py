"""
JSON-file backend for the record store.

Each collection lives in ``<data_dir>/<name>.json`` as a single JSON array.
Writes replace the whole array:

1. copy the current main file to ``<name>.backup.json`` (best effort),
2. serialize the new array to ``<name>.json.tmp``,
3. atomically rename the temporary file over the main file.

Reads that cannot parse the main file fall back to the backup, repair the
main file from it, and otherwise degrade to an empty collection.
Rows that fail validation are hidden from reads but written back unchanged.
"""

import json
import logging
import os
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from notekeeper.errors import ConflictError, PersistenceError, ValidationError
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

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class CorruptFileError(Exception):
    """Collection file is unreadable or not a JSON array."""


class FileRecordStore(RecordStore):
    """Record store persisted as one JSON array file per collection."""

    mode = "file"

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self._lock = threading.RLock()

    # ---------- paths ----------

    def paths(self, name: str) -> Dict[str, Path]:
        return {
            "main": self.data_dir / f"{name}.json",
            "temp": self.data_dir / f"{name}.json.tmp",
            "backup": self.data_dir / f"{name}.backup.json",
        }

    def _ensure_file(self, name: str) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        p = self.paths(name)
        if p["main"].exists():
            return
        if p["backup"].exists():
            logger.info("Restoring %s from backup", p["main"].name)
            shutil.copyfile(p["backup"], p["main"])
        else:
            p["main"].write_text("[]", encoding="utf-8")

    # ---------- raw array I/O ----------

    @staticmethod
    def _load_array(path: Path) -> List[Any]:
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise CorruptFileError(str(exc))
        if not raw.strip():
            return []
        try:
            rows = json.loads(raw)
        except ValueError as exc:
            raise CorruptFileError(str(exc))
        if not isinstance(rows, list):
            raise CorruptFileError(f"expected a JSON array, got {type(rows).__name__}")
        return rows

    def read_array(self, name: str) -> List[Any]:
        """Raw rows of a collection file; never raises for unreadable content."""
        # A read may repair the main file, so it must not interleave with writes
        with self._lock:
            return self._read_array(name)

    def _read_array(self, name: str) -> List[Any]:
        p = self.paths(name)
        try:
            self._ensure_file(name)
        except OSError:
            logger.exception("Could not prepare %s", p["main"])
            return []
        try:
            return self._load_array(p["main"])
        except CorruptFileError as exc:
            logger.error("Failed reading %s: %s", p["main"].name, exc)

        if p["backup"].exists():
            try:
                rows = self._load_array(p["backup"])
            except CorruptFileError as exc:
                logger.error("Backup recovery failed for %s: %s", p["main"].name, exc)
            else:
                logger.warning("Recovered %s from backup", p["main"].name)
                try:
                    # Repair without touching the backup: it is the good copy
                    self._replace(name, rows)
                except OSError:
                    logger.exception("Could not repair %s from backup", p["main"].name)
                return rows
        return []

    def write_array(self, name: str, rows: List[Any]) -> None:
        """Persist a full collection snapshot with backup and atomic rename."""
        if not isinstance(rows, list):
            raise TypeError(f"{name} must be a list")
        with self._lock:
            self._write_array(name, rows)

    def _write_array(self, name: str, rows: List[Any]) -> None:
        p = self.paths(name)
        try:
            self._ensure_file(name)
        except OSError as exc:
            raise PersistenceError(f"Failed to save {name}") from exc

        try:
            if p["main"].exists():
                shutil.copyfile(p["main"], p["backup"])
        except OSError as exc:
            logger.warning("Failed to create backup for %s: %s", p["main"].name, exc)

        try:
            self._replace(name, rows)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Error writing %s: %s", p["main"].name, exc)
            raise PersistenceError(f"Failed to save {name}") from exc

    def _replace(self, name: str, rows: List[Any]) -> None:
        p = self.paths(name)
        try:
            with open(p["temp"], "w", encoding="utf-8") as fh:
                json.dump(rows, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(p["temp"], p["main"])
        except BaseException:
            try:
                p["temp"].unlink()
            except OSError:
                pass
            raise

    def snapshot(self, collection: str) -> Optional[Path]:
        """Copy the collection file to a timestamped backup and return its path."""
        check_collection(collection)
        p = self.paths(collection)
        with self._lock:
            if not p["main"].exists():
                return None
            stamp = utc_now().strftime("%Y-%m-%dT%H-%M-%S-%f")
            target = self.data_dir / f"{collection}-{stamp}.backup.json"
            try:
                shutil.copyfile(p["main"], target)
            except OSError:
                logger.exception("Failed to create snapshot of %s", p["main"].name)
                return None
            return target

    # ---------- records ----------

    def _load(self, collection: str) -> List[Tuple[Any, Optional[Record]]]:
        """Raw rows paired with their parsed record (None when the row is invalid)."""
        model = check_collection(collection)
        loaded = []
        for row in self.read_array(collection):
            try:
                record = model.model_validate(row)
            except SchemaError:
                logger.warning("Skipping invalid row in %s.json", collection)
                record = None
            loaded.append((row, record))
        return loaded

    def _records(self, collection: str) -> List[Record]:
        return [record for _, record in self._load(collection) if record is not None]

    def _save(self, collection: str, loaded: List[Tuple[Any, Optional[Record]]]) -> None:
        # Invalid rows are written back untouched so they are never lost
        self.write_array(collection, [row for row, _ in loaded])

    @staticmethod
    def _entry(record: Record) -> Tuple[Any, Record]:
        return record.model_dump(mode="json", by_alias=True), record

    @staticmethod
    def _raw_id(row: Any) -> Any:
        return row.get("id") if isinstance(row, dict) else None

    @staticmethod
    def _owned(collection: str, record: Optional[Record], record_id: str, owner_id: str) -> bool:
        if record is None:
            return False
        return record.id == record_id and getattr(record, OWNER_FIELDS[collection]) == owner_id

    def list_by_owner(self, collection: str, owner_id: str) -> List[Record]:
        records = self._records(collection)
        owner_field = OWNER_FIELDS[collection]
        order_field = ORDER_FIELDS[collection]
        owned = [r for r in records if getattr(r, owner_field) == owner_id]

        def newest(record):
            return getattr(record, order_field) or record.created_at or _EPOCH

        # sorted() is stable, so equal timestamps keep file (insertion) order
        return sorted(owned, key=newest, reverse=True)

    def get_by_id(self, collection: str, record_id: str, owner_id: str) -> Optional[Record]:
        for record in self._records(collection):
            if self._owned(collection, record, record_id, owner_id):
                return record
        return None

    def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        wanted = email.strip().lower()
        for user in self._records(USERS):
            if user.email == wanted:
                return user
        return None

    def insert(self, collection: str, record: Union[BaseModel, Mapping[str, Any]]) -> Record:
        record = coerce_record(collection, record)
        check_new_record(collection, record)
        now = utc_now()
        updates = {}
        if record.created_at is None:
            updates["created_at"] = now
        if collection == NOTES and record.updated_at is None:
            updates["updated_at"] = record.created_at or now
        record = record.model_copy(update=updates)

        with self._lock:
            loaded = self._load(collection)
            if any(self._raw_id(row) == record.id for row, _ in loaded):
                raise ConflictError(f"Record {record.id} already exists")
            if collection == USERS and any(r is not None and r.email == record.email for _, r in loaded):
                raise ConflictError("Email already registered")
            if collection == NOTES and not any(u.id == record.user_id for u in self._records(USERS)):
                raise ValidationError("Note owner does not exist")
            loaded.append(self._entry(record))
            self._save(collection, loaded)
        return record

    def update(
        self, collection: str, record_id: str, owner_id: str, fields: Mapping[str, Any]
    ) -> Optional[Record]:
        changes = check_update_fields(collection, fields)
        with self._lock:
            loaded = self._load(collection)
            for index, (_, record) in enumerate(loaded):
                if not self._owned(collection, record, record_id, owner_id):
                    continue
                if collection == NOTES:
                    now = utc_now()
                    previous = record.updated_at
                    changes["updated_at"] = max(now, previous) if previous else now
                loaded[index] = self._entry(record.model_copy(update=changes))
                self._save(collection, loaded)
                return loaded[index][1]
        return None

    def delete(self, collection: str, record_id: str, owner_id: str) -> bool:
        check_collection(collection)
        with self._lock:
            loaded = self._load(collection)
            kept = [e for e in loaded if not self._owned(collection, e[1], record_id, owner_id)]
            if len(kept) == len(loaded):
                return False
            self._save(collection, kept)
            if collection == USERS:
                # Notes go after the user; leftovers from a failed save are unreachable
                notes = self._load(NOTES)
                remaining = [(row, n) for row, n in notes if n is None or n.user_id != record_id]
                if len(remaining) != len(notes):
                    self._save(NOTES, remaining)
            return True
