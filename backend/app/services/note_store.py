"""
NoteMind Backend — Note Store
===============================

What:  Data access for notes, summaries and tags as the AI features need it.
Why:   The orchestrator should not know about sessions or SQL; it asks for
       "the caller's note", "save this summary", "replace these tags".
How:   Each method opens its own session from the factory and runs in its own
       transaction. SQLAlchemy errors are converted to DatabaseError here, at
       the boundary, so callers see a DATABASE_ERROR kind.

Ids arrive as strings from the URL; anything that is not a UUID cannot match
a row and is treated as "not found" rather than as a database error.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import async_session_factory
from app.exceptions import DatabaseError
from app.models.note import Note, NoteTag, Summary

logger = logging.getLogger(__name__)


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError, TypeError):
        return None


class NoteStore:
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory or async_session_factory

    async def find_note_by_id_for_owner(self, owner_id: str, note_id: str) -> Optional[Note]:
        """The note if it exists AND belongs to owner_id; otherwise None."""
        note_uuid = _as_uuid(note_id)
        owner_uuid = _as_uuid(owner_id)
        if note_uuid is None or owner_uuid is None:
            return None

        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Note).where(Note.id == note_uuid, Note.user_id == owner_uuid)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error loading note %s: %s", note_id, e, exc_info=True)
            raise DatabaseError(
                message="Database error while loading the note",
                context={"note_id": note_id, "error_type": type(e).__name__},
            )

    async def upsert_summary(self, note_id: str, model: str, content: str) -> None:
        note_uuid = uuid.UUID(str(note_id))
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    summary = await session.get(Summary, note_uuid)
                    if summary is None:
                        session.add(Summary(note_id=note_uuid, model=model, content=content))
                    else:
                        summary.model = model
                        summary.content = content
        except SQLAlchemyError as e:
            logger.error("Database error saving summary for note %s: %s", note_id, e, exc_info=True)
            raise DatabaseError(
                message="Database error while saving the summary",
                context={"note_id": note_id, "error_type": type(e).__name__},
            )

    async def replace_tags(self, note_id: str, tags: List[str]) -> None:
        """Delete every tag of the note, then insert `tags`, in one transaction."""
        note_uuid = uuid.UUID(str(note_id))
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(delete(NoteTag).where(NoteTag.note_id == note_uuid))
                    session.add_all([NoteTag(note_id=note_uuid, tag=tag) for tag in tags])
        except SQLAlchemyError as e:
            logger.error("Database error saving tags for note %s: %s", note_id, e, exc_info=True)
            raise DatabaseError(
                message="Database error while saving tags",
                context={"note_id": note_id, "error_type": type(e).__name__},
            )

    async def delete_summary(self, note_id: str) -> None:
        note_uuid = uuid.UUID(str(note_id))
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(delete(Summary).where(Summary.note_id == note_uuid))
        except SQLAlchemyError as e:
            logger.error("Database error deleting summary for note %s: %s", note_id, e, exc_info=True)
            raise DatabaseError(
                message="Database error while deleting the summary",
                context={"note_id": note_id, "error_type": type(e).__name__},
            )

    async def get_summary(self, note_id: str) -> Optional[str]:
        note_uuid = uuid.UUID(str(note_id))
        try:
            async with self._session_factory() as session:
                summary = await session.get(Summary, note_uuid)
                return summary.content if summary else None
        except SQLAlchemyError as e:
            logger.error("Database error loading summary for note %s: %s", note_id, e, exc_info=True)
            raise DatabaseError(
                message="Database error while loading the summary",
                context={"note_id": note_id, "error_type": type(e).__name__},
            )

    async def get_tags(self, note_id: str) -> List[str]:
        note_uuid = uuid.UUID(str(note_id))
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(NoteTag.tag).where(NoteTag.note_id == note_uuid).order_by(NoteTag.tag)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error loading tags for note %s: %s", note_id, e, exc_info=True)
            raise DatabaseError(
                message="Database error while loading tags",
                context={"note_id": note_id, "error_type": type(e).__name__},
            )


note_store = NoteStore()
