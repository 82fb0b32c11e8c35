"""
Shared fixtures for Casebook backend tests.

Each test function gets its own SQLite database file (aiosqlite) under
pytest's tmp_path and a fresh in-memory blob store. The FastAPI
``get_db`` and ``get_blob_store`` dependencies are overridden to use them.
"""
from __future__ import annotations

import io
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override settings *before* any casebook module is imported, so that
# settings.DATABASE_URL and the global engine never point at PostgreSQL.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./casebook_test.db"
os.environ["BLOB_BACKEND"] = "memory"
os.environ["STORAGE_RETRY_BASE_DELAY"] = "0"

from casebook.database import Base, get_db  # noqa: E402
from casebook.dependencies.services import get_blob_store  # noqa: E402
from casebook.main import app  # noqa: E402
from casebook.models import database_models  # noqa: E402,F401
from casebook.services.blob_store import MemoryBlobStore  # noqa: E402
from casebook.services.case_study_service import CaseStudyService  # noqa: E402
from casebook.services.repository import CaseStudyRepository  # noqa: E402


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_session(tmp_path) -> AsyncGenerator[AsyncSession, None]:
    """Provide a session on a throwaway SQLite database with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'casebook.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    await engine.dispose()


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def repository(db_session: AsyncSession, blob_store: MemoryBlobStore) -> CaseStudyRepository:
    return CaseStudyRepository(db_session, blob_store)


@pytest.fixture
def service(repository: CaseStudyRepository, blob_store: MemoryBlobStore) -> CaseStudyService:
    return CaseStudyService(repository, blob_store)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    blob_store: MemoryBlobStore,
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB and blob store
    dependencies overridden to use the per-test instances.
    """

    async def _override_get_db():
        yield db_session

    async def _override_get_blob_store():
        return blob_store

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_blob_store] = _override_get_blob_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def png_bytes(width: int = 120, height: int = 80, color=(200, 30, 30)) -> bytes:
    """A small real PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


MINIMAL_SUBMISSION = {
    "title": "cst12",
    "challenge": "c",
    "solution": "s",
    "results": "r",
    "labels": {"client": ["Acme"]},
}
