"""
Pytest configuration and shared fixtures for inkpipe tests.
"""

import os
import tempfile
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing the app
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["S3_BUCKET_NAME"] = "test-bucket"
os.environ["PUBLIC_BASE_URL"] = "https://files.example.com"
os.environ["WORKDIR"] = tempfile.gettempdir()
os.environ["AUTH_ENABLED"] = "False"
os.environ["DEFAULT_USER_ID"] = "user"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["CHUNK_STAGGER_SECONDS"] = "0"

from inkpipe.api.common import get_processing_engine, get_provider, get_store  # noqa: E402
from inkpipe.database import Base, get_db  # noqa: E402
from inkpipe.errors import ExtractionFailure  # noqa: E402
from inkpipe.main import app as fastapi_app  # noqa: E402
from inkpipe.models import FileRecord  # noqa: E402
from inkpipe.utils.ai_provider import InferenceProvider, InferenceResult  # noqa: E402
from inkpipe.utils.processing_engine import ProcessingEngine  # noqa: E402


class FakeObjectStore:
    """In-memory stand-in for ObjectStoreClient."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.public_base_url = "https://files.example.com"

    def create_upload_url(self, key: str, content_type: str) -> str:
        return f"https://test-bucket.s3.example.com/{key}?X-Amz-Signature=test"

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = data
        self.content_types[key] = content_type

    def get_bytes(self, key: str) -> bytes:
        if key not in self.objects:
            raise ExtractionFailure(f"Stored object not found: {key}")
        return self.objects[key]

    def download_to(self, key: str, path: str) -> str:
        with open(path, "wb") as f:
            f.write(self.get_bytes(key))
        return path


class FakeProvider(InferenceProvider):
    """Inference provider returning canned results."""

    def __init__(self, image_result: Optional[InferenceResult] = None):
        self.image_result = image_result or InferenceResult(text="# Extracted", tokens_used=10)
        self.image_calls: List[str] = []
        self.audio_calls: List[str] = []

    def extract_image_text(self, image_url: str) -> InferenceResult:
        self.image_calls.append(image_url)
        if isinstance(self.image_result, Exception):
            raise self.image_result
        return self.image_result

    def transcribe_audio(self, audio_path: str, audio_format: str = "mp3") -> InferenceResult:
        self.audio_calls.append(audio_path)
        return InferenceResult(text="transcript", tokens_used=5)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_store():
    return FakeObjectStore()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def engine_under_test(fake_provider, fake_store):
    """ProcessingEngine wired to the fakes."""
    return ProcessingEngine(provider=fake_provider, store=fake_store)


@pytest.fixture(scope="function")
def client(db_session, fake_store, fake_provider, engine_under_test) -> TestClient:
    """Create a test client with a fresh database and fake collaborators."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_store] = lambda: fake_store
    fastapi_app.dependency_overrides[get_provider] = lambda: fake_provider
    fastapi_app.dependency_overrides[get_processing_engine] = lambda: engine_under_test

    with TestClient(fastapi_app) as test_client:
        yield test_client

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def auth_enabled(monkeypatch):
    """Require bearer tokens for the duration of a test."""
    from inkpipe.config import settings

    monkeypatch.setattr(settings, "auth_enabled", True)


@pytest.fixture
def make_file(db_session):
    """Factory inserting FileRecord rows."""
    counter = {"n": 0}

    def _make(
        owner_id: str = "user",
        status: str = "pending",
        media_type: str = "image/jpeg",
        original_name: Optional[str] = None,
        **fields,
    ) -> FileRecord:
        counter["n"] += 1
        name = original_name or f"file-{counter['n']}.jpg"
        record = FileRecord(
            owner_id=owner_id,
            storage_key=fields.pop("storage_key", f"uploads/{owner_id}/{counter['n']:04d}-{name}"),
            public_url=fields.pop("public_url", f"https://files.example.com/uploads/{owner_id}/{name}"),
            media_type=media_type,
            original_name=name,
            status=status,
            **fields,
        )
        db_session.add(record)
        db_session.commit()
        db_session.refresh(record)
        return record

    return _make


# Markers for categorizing tests
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual functions/methods")
    config.addinivalue_line("markers", "integration: Integration tests for API endpoints and workflows")
    config.addinivalue_line("markers", "requires_ffmpeg: Tests that shell out to ffmpeg/ffprobe")
