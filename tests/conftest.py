import os
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="licensing-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'app.db'}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["UPLOAD_DIR"] = str(_TMP / "uploads")
os.environ["STORAGE_BACKEND"] = "local"
os.environ["CREATE_TABLES_ON_STARTUP"] = "false"

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import app.db.models  # noqa: F401
from app.api.deps import get_attachments_storage, get_contracts_storage, get_store
from app.core.config import settings
from app.core.db import Base
from app.core.exceptions import TransportError
from app.core.security import create_access_token
from app.domains.licensing.services import (
    ApprovalTracker, AttachmentService, ContractDraftService, ExecutionRecorder,
    NegotiationEngine, RequestLocks
)
from app.domains.licensing.terms import LicenseTerms
from app.infrastructure.storage import LocalObjectStorage
from app.infrastructure.store import NegotiationStore
from app.main import app


def make_store(db_path: Path) -> NegotiationStore:
    """Хранилище на отдельном файле SQLite"""
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(bind=sync_engine)
    sync_engine.dispose()

    async_engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    session_factory = async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)
    return NegotiationStore(session_factory, timeout=10.0)


class RecordingNotifier:
    """Нотификатор, запоминающий опубликованные события"""

    def __init__(self):
        self.events = []

    async def publish(self, event):
        self.events.append(event)

    def types(self):
        return [e.type.value for e in self.events]


class FailingNotifier:
    async def publish(self, event):
        raise TransportError("realtime channel is down")


@pytest.fixture
def store(tmp_path):
    return make_store(tmp_path / "licensing.db")


@pytest.fixture
def locks():
    return RequestLocks()


@pytest.fixture
def engine(store, locks):
    return NegotiationEngine(store, locks, retry_attempts=5)


@pytest.fixture
def tracker(store):
    return ApprovalTracker(store)


@pytest.fixture
def contracts_storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "files"), bucket="contracts", public_base_url="http://testserver")


@pytest.fixture
def attachments_storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "files"), bucket="attachments", public_base_url="http://testserver")


@pytest.fixture
def recorder(store, locks, contracts_storage):
    return ExecutionRecorder(store, contracts_storage, locks, retry_attempts=5, signed_url_ttl=600)


@pytest.fixture
def drafts(engine, contracts_storage):
    return ContractDraftService(engine, contracts_storage, signed_url_ttl=600)


@pytest.fixture
def attachments(store, attachments_storage):
    return AttachmentService(store, attachments_storage, signed_url_ttl=600)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def requester_id():
    return uuid.uuid4()


@pytest.fixture
def owner_id():
    return uuid.uuid4()


@pytest.fixture
def artwork_id():
    return uuid.uuid4()


@pytest.fixture
def base_terms():
    return LicenseTerms(
        purpose="Ad",
        term_months=6,
        territory="US",
        media=["web"],
        exclusivity="non-exclusive",
        fee={"amount": 1000, "currency": "USD"},
    )


@pytest.fixture
def client(tmp_path, monkeypatch):
    files_root = tmp_path / "uploads"
    monkeypatch.setattr(settings, "upload_dir", str(files_root))

    test_store = make_store(tmp_path / "api.db")
    app.dependency_overrides[get_store] = lambda: test_store
    app.dependency_overrides[get_contracts_storage] = lambda: LocalObjectStorage(
        str(files_root), bucket="contracts", public_base_url="http://testserver"
    )
    app.dependency_overrides[get_attachments_storage] = lambda: LocalObjectStorage(
        str(files_root), bucket="attachments", public_base_url="http://testserver"
    )

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


def auth_headers(user_id: uuid.UUID) -> dict:
    token = create_access_token({"sub": str(user_id)})
    return {"Authorization": f"Bearer {token}"}
