"""
NoteMind Backend — Note, Summary and Tag Models
=================================================

What:  ORM models for the three tables the AI features touch.
Why:   Notes are owned by a user; summaries and tags hang off a note and are
       rewritten by AI runs and manual edits.
How:   SQLAlchemy 2.0 typed mappings. Column types are portable (Uuid,
       DateTime with timezone) so the same models run on PostgreSQL in
       production and SQLite in tests. PostgreSQL-only server defaults live
       in the Alembic migration.

Table Design:
    notes       One row per note, owned by user_id.
    summaries   At most one row per note (note_id is the primary key), so
                "save summary" is an upsert.
    note_tags   (note_id, tag) pairs; "save tags" deletes all then inserts.
    Both child tables cascade on note deletion.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Note(Base):
    """A user's note. Created and edited outside this service; read here."""

    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier",
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        comment="Owner of the note",
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # Ownership lookups always filter on user_id
    __table_args__ = (
        Index("idx_notes_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Note(id={self.id}, user_id={self.user_id}, title='{self.title[:30]}')>"


class Summary(Base):
    __tablename__ = "summaries"

    note_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("notes.id", ondelete="CASCADE"),
        primary_key=True,
    )
    # Gemini model name, or "manual-edit" for user-written summaries
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<Summary(note_id={self.note_id}, model='{self.model}')>"


class NoteTag(Base):
    __tablename__ = "note_tags"

    note_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("notes.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag: Mapped[str] = mapped_column(String(100), primary_key=True)

    def __repr__(self) -> str:
        return f"<NoteTag(note_id={self.note_id}, tag='{self.tag}')>"
