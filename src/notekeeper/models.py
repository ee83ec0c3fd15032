from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class User(Base):
    """
    User entity with unique (case-insensitive) email and hashed password.
    """
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Note(Base):
    """
    Note entity owned by a user; removed together with its owner.
    """
    __tablename__ = "notes"

    id = Column(String(255), primary_key=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, default="", server_default="", nullable=False)
    content = Column(Text, default="", server_default="", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


users_table = User.__table__
notes_table = Note.__table__

Index("ux_users_email_lower", func.lower(users_table.c.email), unique=True)
Index("idx_notes_user_id", notes_table.c.user_id)
Index("idx_notes_user_updated", notes_table.c.user_id, notes_table.c.updated_at.desc())


# Keeps notes.updated_at fresh for any UPDATE, including ones issued outside the API
UPDATED_AT_TRIGGER_DDL = {
    "postgresql": [
        """
        CREATE OR REPLACE FUNCTION set_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
          NEW.updated_at = now();
          RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
        """,
        "DROP TRIGGER IF EXISTS trg_set_updated_at ON notes",
        """
        CREATE TRIGGER trg_set_updated_at
        BEFORE UPDATE ON notes
        FOR EACH ROW
        EXECUTE FUNCTION set_updated_at()
        """,
    ],
    # SQLite has no BEFORE-row assignment; refresh when the statement left it alone
    "sqlite": [
        """
        CREATE TRIGGER IF NOT EXISTS trg_set_updated_at
        AFTER UPDATE ON notes
        FOR EACH ROW
        WHEN NEW.updated_at IS OLD.updated_at
        BEGIN
          UPDATE notes
          SET updated_at = strftime('%Y-%m-%d %H:%M:%f000', 'now')
          WHERE id = NEW.id;
        END
        """,
    ],
}
