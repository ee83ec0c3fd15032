"""
Record store interface shared by the file and relational backends.

Both backends expose the same owner-scoped operations over two collections,
``users`` and ``notes``. Records cross this boundary as validated pydantic
models; callers never see the storage medium.
"""

import abc
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from notekeeper.errors import ValidationError
from notekeeper.schemas import NoteRecord, UserRecord

USERS = "users"
NOTES = "notes"

RECORD_TYPES: Dict[str, Type[BaseModel]] = {
    USERS: UserRecord,
    NOTES: NoteRecord,
}

# Attribute holding the owning user's id
OWNER_FIELDS = {USERS: "id", NOTES: "user_id"}

# Attribute used for newest-first listing
ORDER_FIELDS = {USERS: "created_at", NOTES: "updated_at"}

# Attributes a caller may change through update()
MUTABLE_FIELDS = {USERS: frozenset(), NOTES: frozenset({"title", "content"})}

Record = Union[UserRecord, NoteRecord]


def check_collection(collection: str) -> Type[BaseModel]:
    try:
        return RECORD_TYPES[collection]
    except KeyError:
        raise ValidationError(f"Unknown collection: {collection}")


def coerce_record(collection: str, record: Union[BaseModel, Mapping[str, Any]]) -> Record:
    """Validate a mapping (or model) against the collection's schema."""
    model = check_collection(collection)
    if isinstance(record, BaseModel):
        record = record.model_dump(by_alias=True, exclude_none=True)
    try:
        return model.model_validate(record)
    except SchemaError as exc:
        raise ValidationError(_describe(exc))


def check_new_record(collection: str, record: Record) -> None:
    if collection == NOTES and record.is_blank():
        raise ValidationError("Title or content required")


def check_update_fields(collection: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate a presence-based partial update.

    Only keys present in ``fields`` are changed. Keys may be given by field
    name or camelCase alias. Returns a mapping of attribute name to value.
    """
    model = check_collection(collection)
    allowed = MUTABLE_FIELDS[collection]
    aliases = {
        (info.alias or name): name for name, info in model.model_fields.items()
    }
    changes: Dict[str, Any] = {}
    for key, value in fields.items():
        name = aliases.get(key, key)
        if name not in allowed:
            raise ValidationError(f"Field cannot be updated: {key}")
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be a string")
        max_length = _max_length(model, name)
        if max_length is not None and len(value) > max_length:
            raise ValidationError(f"{key} exceeds maximum length of {max_length} characters")
        changes[name] = value
    return changes


def _max_length(model: Type[BaseModel], name: str) -> Optional[int]:
    for meta in model.model_fields[name].metadata:
        max_length = getattr(meta, "max_length", None)
        if max_length is not None:
            return max_length
    return None


def _describe(exc: SchemaError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", ""))
    return "; ".join(parts) or "Invalid record"


class RecordStore(abc.ABC):
    """Durable owner-scoped CRUD over the ``users`` and ``notes`` collections."""

    mode = "abstract"

    @abc.abstractmethod
    def list_by_owner(self, collection: str, owner_id: str) -> List[Record]:
        """Records owned by ``owner_id``, newest first; ties keep insertion order."""

    @abc.abstractmethod
    def get_by_id(self, collection: str, record_id: str, owner_id: str) -> Optional[Record]:
        """The record, or None when absent or owned by someone else."""

    @abc.abstractmethod
    def insert(self, collection: str, record: Union[BaseModel, Mapping[str, Any]]) -> Record:
        """Store a new record, filling in id and timestamps when absent."""

    @abc.abstractmethod
    def update(
        self, collection: str, record_id: str, owner_id: str, fields: Mapping[str, Any]
    ) -> Optional[Record]:
        """Apply a partial update and refresh updatedAt; None when not found."""

    @abc.abstractmethod
    def delete(self, collection: str, record_id: str, owner_id: str) -> bool:
        """Remove the record; False when nothing matched id and owner."""

    @abc.abstractmethod
    def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        """Case-insensitive lookup used by login and registration."""

    def healthcheck(self) -> bool:
        return True

    def close(self) -> None:
        pass
