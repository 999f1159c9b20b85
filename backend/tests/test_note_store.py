"""
NoteMind Backend — Note Store Tests (in-memory SQLite)
========================================================

What:  Runs NoteStore against a real database: SQLite in memory via aiosqlite.
Why:   Ownership filtering, upsert and replace semantics are SQL behaviour;
       a mocked session would only test the mock.
How:   StaticPool keeps the single in-memory connection alive across the
       sessions NoteStore opens per operation.
"""

import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.exceptions import DatabaseError
from app.models.note import Note
from app.services.note_store import NoteStore


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return NoteStore(session_factory)


@pytest.fixture
def owner_id():
    return str(uuid.uuid4())


@pytest_asyncio.fixture
async def saved_note(session_factory, owner_id):
    note = Note(
        id=uuid.uuid4(),
        user_id=uuid.UUID(owner_id),
        title="Trip ideas",
        content="Lisbon in May, Porto by train.",
    )
    async with session_factory() as session:
        async with session.begin():
            session.add(note)
    return note


class TestFindNote:
    @pytest.mark.asyncio
    async def test_owner_gets_note(self, store, saved_note, owner_id):
        note = await store.find_note_by_id_for_owner(owner_id, str(saved_note.id))

        assert note is not None
        assert note.title == "Trip ideas"
        assert note.content == "Lisbon in May, Porto by train."

    @pytest.mark.asyncio
    async def test_other_user_gets_none(self, store, saved_note):
        assert await store.find_note_by_id_for_owner(str(uuid.uuid4()), str(saved_note.id)) is None

    @pytest.mark.asyncio
    async def test_unknown_note_gets_none(self, store, saved_note, owner_id):
        assert await store.find_note_by_id_for_owner(owner_id, str(uuid.uuid4())) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_id", ["not-a-uuid", "123", ""])
    async def test_malformed_ids_get_none(self, store, saved_note, owner_id, bad_id):
        assert await store.find_note_by_id_for_owner(owner_id, bad_id) is None
        assert await store.find_note_by_id_for_owner(bad_id, str(saved_note.id)) is None


class TestSummary:
    @pytest.mark.asyncio
    async def test_missing_summary_is_none(self, store, saved_note):
        assert await store.get_summary(str(saved_note.id)) is None

    @pytest.mark.asyncio
    async def test_upsert_inserts_then_updates(self, store, saved_note):
        note_id = str(saved_note.id)

        await store.upsert_summary(note_id, "gemini-test", "- first")
        await store.upsert_summary(note_id, "manual-edit", "- second")

        assert await store.get_summary(note_id) == "- second"

    @pytest.mark.asyncio
    async def test_delete_summary(self, store, saved_note):
        note_id = str(saved_note.id)
        await store.upsert_summary(note_id, "gemini-test", "- first")

        await store.delete_summary(note_id)
        await store.delete_summary(note_id)

        assert await store.get_summary(note_id) is None


class TestTags:
    @pytest.mark.asyncio
    async def test_no_tags(self, store, saved_note):
        assert await store.get_tags(str(saved_note.id)) == []

    @pytest.mark.asyncio
    async def test_replace_tags_replaces_everything(self, store, saved_note):
        note_id = str(saved_note.id)

        await store.replace_tags(note_id, ["travel", "portugal"])
        await store.replace_tags(note_id, ["spring", "travel"])

        assert await store.get_tags(note_id) == ["spring", "travel"]

    @pytest.mark.asyncio
    async def test_replace_with_empty_list_clears(self, store, saved_note):
        note_id = str(saved_note.id)
        await store.replace_tags(note_id, ["travel"])

        await store.replace_tags(note_id, [])

        assert await store.get_tags(note_id) == []

    @pytest.mark.asyncio
    async def test_duplicate_tag_is_database_error_and_rolls_back(self, store, saved_note):
        note_id = str(saved_note.id)
        await store.replace_tags(note_id, ["travel"])

        with pytest.raises(DatabaseError):
            await store.replace_tags(note_id, ["dup", "dup"])

        assert await store.get_tags(note_id) == ["travel"]


class TestDatabaseFailures:
    @pytest.mark.asyncio
    async def test_sqlalchemy_errors_become_database_errors(self, engine, store, saved_note, owner_id):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        with pytest.raises(DatabaseError):
            await store.find_note_by_id_for_owner(owner_id, str(saved_note.id))
        with pytest.raises(DatabaseError):
            await store.upsert_summary(str(saved_note.id), "gemini-test", "- s")
        with pytest.raises(DatabaseError):
            await store.get_tags(str(saved_note.id))
