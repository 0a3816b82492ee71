"""
StripScan Backend — Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Provides reusable test infrastructure (database, pipeline, API client,
       generated JPEG images).
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── db_engine:        In-memory SQLite engine with the tables created
    ├── db_session:       AsyncSession bound to db_engine
    ├── mock_db_session:  AsyncMock session (no database at all)
    ├── upload_root:      Temporary upload directory
    ├── pipeline_config:  PipelineConfig rooted at upload_root
    ├── make_jpeg:        Factory producing real JPEG bytes of any size
    ├── photo_file:       A 300x300 JPEG written to disk
    └── test_client:      HTTPX AsyncClient wired to the app with overrides
"""

import io
import os
import tempfile
from typing import Callable, Optional
from unittest.mock import AsyncMock, MagicMock

# Override settings for testing BEFORE any stripscan imports
# Why: settings are read once at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["UPLOAD_ROOT"] = tempfile.mkdtemp(prefix="stripscan_test_")
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests
os.environ["RATE_LIMIT_REQUESTS"] = "10000"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from stripscan.database import init_models
from stripscan.services.qr_extractor import QRExtractor
from stripscan.services.upload_pipeline import PipelineConfig, UploadPipeline

# Fixed reference year so expiration assertions never drift
TEST_YEAR = 2025


class StaticDecoder:
    """QR decoder stand-in returning a fixed payload and counting calls."""

    def __init__(self, payload: Optional[str]):
        self.payload = payload
        self.calls = 0

    def __call__(self, image: Image.Image) -> Optional[str]:
        self.calls += 1
        return self.payload


def jpeg_bytes(width: int = 300, height: int = 300, color=(200, 200, 200)) -> bytes:
    """Encode a solid-color RGB image as JPEG."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


def build_pipeline(config: PipelineConfig, payload: Optional[str]) -> UploadPipeline:
    """Pipeline whose extractor 'reads' the given payload from every image."""
    extractor = QRExtractor(
        max_dimension=config.detection_max_dimension,
        decoder=StaticDecoder(payload),
        year_provider=lambda: TEST_YEAR,
    )
    return UploadPipeline(config, extractor=extractor)


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def db_engine():
    """
    In-memory SQLite with the real schema (including the UNIQUE qr_code).

    StaticPool keeps one connection, so every session sees the same database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    factory = async_sessionmaker(db_engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def mock_db_session():
    """
    Provides a mock async database session.

    Usage:
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = row
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


# ══════════════════════════════════════════════════════════════════════════
# Files & Pipeline
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def upload_root(tmp_path):
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def pipeline_config(upload_root):
    return PipelineConfig(upload_root=upload_root)


@pytest.fixture
def make_jpeg() -> Callable[..., bytes]:
    return jpeg_bytes


@pytest.fixture
def photo_file(tmp_path):
    """A 300x300 JPEG on disk, named like a phone photo."""
    path = tmp_path / "IMG 0001.jpg"
    path.write_bytes(jpeg_bytes(300, 300))
    return path


# ══════════════════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def test_client(db_engine, pipeline_config):
    """
    Provides an async HTTP test client for endpoint testing.

    The database session and the pipeline are overridden: requests run against
    the in-memory database and a per-test upload directory. The decoder used
    by the pipeline can be changed through `test_client.decoder.payload`.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from stripscan.database import get_db_session
    from stripscan.dependencies import get_history_service, get_upload_pipeline
    from stripscan.main import app
    from stripscan.services.history_service import HistoryService

    factory = async_sessionmaker(db_engine, expire_on_commit=False)

    async def override_db_session():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    pipeline = build_pipeline(pipeline_config, "ELI-2099-XYZ")
    history = HistoryService(year_provider=lambda: TEST_YEAR)

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_upload_pipeline] = lambda: pipeline
    app.dependency_overrides[get_history_service] = lambda: history

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        client.decoder = pipeline.extractor.decoder
        client.pipeline = pipeline
        yield client

    app.dependency_overrides.clear()
