"""
Copy users and notes from the JSON file store into the relational database.

Usage:
    python -m notekeeper.migrate [--data-dir DIR] [--database-url URL]

Existing users (same id or email) and existing notes are skipped, so the
command can be re-run. Notes whose owner is not present in the database are
reported and skipped; they are never attached to some other user.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field, replace
from typing import List, Optional

from pydantic import ValidationError as SchemaError

from notekeeper.config import configure_logging, load_settings
from notekeeper.database import SqlRecordStore, create_db_engine
from notekeeper.errors import ConflictError, StoreUnavailableError, ValidationError
from notekeeper.file_store import FileRecordStore
from notekeeper.schemas import NoteRecord, UserRecord
from notekeeper.store import NOTES, USERS

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    users_migrated: int = 0
    users_skipped: int = 0
    notes_migrated: int = 0
    notes_skipped: int = 0
    orphaned_notes: List[str] = field(default_factory=list)
    invalid_rows: int = 0


# PUBLIC_INTERFACE
def migrate(source: FileRecordStore, target: SqlRecordStore) -> MigrationReport:
    """Copy every valid user and note row from ``source`` into ``target``."""
    report = MigrationReport()

    for row in source.read_array(USERS):
        try:
            user = UserRecord.model_validate(row)
        except SchemaError:
            report.invalid_rows += 1
            continue
        if target.find_user_by_email(user.email) or target.get_by_id(USERS, user.id, user.id):
            logger.info("User %s already exists, skipping", user.email)
            report.users_skipped += 1
            continue
        try:
            target.insert(USERS, user)
        except ConflictError:
            report.users_skipped += 1
            continue
        report.users_migrated += 1

    for row in source.read_array(NOTES):
        try:
            note = NoteRecord.model_validate(row)
        except SchemaError:
            report.invalid_rows += 1
            continue
        if target.get_by_id(USERS, note.user_id, note.user_id) is None:
            logger.warning("Note %s has no owner in the database, skipping", note.id)
            report.orphaned_notes.append(note.id)
            continue
        try:
            target.insert(NOTES, note)
        except ConflictError:
            report.notes_skipped += 1
            continue
        except ValidationError as exc:
            logger.warning("Note %s rejected: %s", note.id, exc.detail)
            report.invalid_rows += 1
            continue
        report.notes_migrated += 1

    return report


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--data-dir", help="directory holding users.json and notes.json")
    parser.add_argument("--database-url", help="target database (defaults to DATABASE_URL)")
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings.log_level)
    overrides = {}
    if args.data_dir:
        overrides["data_dir"] = args.data_dir
    if args.database_url:
        overrides["database_url"] = args.database_url
    settings = replace(settings, **overrides)

    if not settings.database_url:
        print("DATABASE_URL is not set", file=sys.stderr)
        return 2

    target = SqlRecordStore(create_db_engine(settings))
    try:
        target.bootstrap()
        report = migrate(FileRecordStore(settings.data_dir), target)
    except StoreUnavailableError as exc:
        print(f"Database unavailable: {exc.detail}", file=sys.stderr)
        return 1
    finally:
        target.close()

    print(f"Users: {report.users_migrated} migrated, {report.users_skipped} skipped")
    print(f"Notes: {report.notes_migrated} migrated, {report.notes_skipped} skipped")
    if report.orphaned_notes:
        print(f"Notes without an owner (not migrated): {len(report.orphaned_notes)}")
    if report.invalid_rows:
        print(f"Invalid rows ignored: {report.invalid_rows}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
