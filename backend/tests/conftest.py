"""
NoteMind Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment overrides are applied before any `app` import, because
       `app.config.settings` is built at import time.

Fixtures (all function-scoped):
    ├── monitor / classifier / backups: isolated reliability stores
    ├── mock_store: AsyncMock NoteStore returning `sample_note`
    ├── mock_llm: AsyncMock LLMService
    ├── identity / anonymous: StaticIdentityProvider for a user / nobody
    ├── ai_service: NoteAIService wired to all of the above, no real sleeping
    └── test_client: HTTPX AsyncClient with the service and monitor overridden
"""

import os

# Must run before `app` is imported anywhere
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["LOG_LEVEL"] = "WARNING"

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.services.ai_service import NoteAIService
from app.services.backup_service import BackupManager
from app.services.error_classifier import ErrorClassifier
from app.services.error_monitor import ErrorMonitor
from app.services.identity import StaticIdentityProvider
from app.services.llm_base import LLMResponse, LLMService


@pytest.fixture
def user_id():
    return str(uuid4())


@pytest.fixture
def note_id():
    return str(uuid4())


@pytest.fixture
def sample_note(note_id, user_id):
    """Stands in for a loaded Note row; the service only reads title and content."""
    return SimpleNamespace(
        id=note_id,
        user_id=user_id,
        title="Weekly planning",
        content="Finish the quarterly report, book the venue, email the team about Friday.",
    )


@pytest.fixture
def monitor():
    return ErrorMonitor(max_log_entries=100, retention_days=30, detailed_logging=False)


@pytest.fixture
def classifier(monitor):
    return ErrorClassifier(monitor=monitor)


@pytest.fixture
def backups():
    return BackupManager(expiry_seconds=3600)


@pytest.fixture
def mock_store(sample_note):
    store = AsyncMock()
    store.find_note_by_id_for_owner = AsyncMock(return_value=sample_note)
    store.upsert_summary = AsyncMock(return_value=None)
    store.replace_tags = AsyncMock(return_value=None)
    store.delete_summary = AsyncMock(return_value=None)
    store.get_summary = AsyncMock(return_value="- old summary")
    store.get_tags = AsyncMock(return_value=["old", "tags"])
    return store


@pytest.fixture
def mock_llm():
    llm = MagicMock(spec=LLMService)
    llm.model_name = "gemini-test"
    llm.generate = AsyncMock(return_value=LLMResponse(text="- point one\n- point two"))
    llm.health_check = AsyncMock(return_value=True)
    return llm


@pytest.fixture
def identity(user_id):
    return StaticIdentityProvider(user_id)


@pytest.fixture
def anonymous():
    return StaticIdentityProvider(None)


@pytest.fixture
def no_sleep():
    return AsyncMock(return_value=None)


@pytest.fixture
def ai_service(mock_llm, mock_store, classifier, backups, no_sleep):
    return NoteAIService(
        llm=mock_llm,
        store=mock_store,
        classifier=classifier,
        backups=backups,
        sleep=no_sleep,
    )


@pytest_asyncio.fixture
async def test_client(ai_service, monitor):
    """
    HTTPX AsyncClient talking to the FastAPI app in-process.

    Identity comes from the real X-User-ID header handling; the AI service and
    the error monitor are the isolated test instances.
    """
    from app.main import app
    from app.routes.admin import get_error_monitor
    from app.services.ai_service import get_ai_service

    app.dependency_overrides[get_ai_service] = lambda: ai_service
    app.dependency_overrides[get_error_monitor] = lambda: monitor

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
