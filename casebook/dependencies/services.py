"""
Service dependencies for FastAPI routes.

The blob store is built once per process from settings; tests override
``get_blob_store`` (and ``get_db``) through ``app.dependency_overrides``.
"""
from __future__ import annotations

import functools

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from casebook.config import settings
from casebook.database import get_db
from casebook.services.blob_store import BlobStore, build_blob_store
from casebook.services.case_study_service import CaseStudyService
from casebook.services.labels import LabelService
from casebook.services.repository import CaseStudyRepository


@functools.lru_cache(maxsize=1)
def default_blob_store() -> BlobStore:
    return build_blob_store(settings)


async def get_blob_store() -> BlobStore:
    """Process-wide blob store for the configured backend."""
    return default_blob_store()


async def get_repository(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> CaseStudyRepository:
    return CaseStudyRepository(db, blob_store)


async def get_case_study_service(
    repository: CaseStudyRepository = Depends(get_repository),
    blob_store: BlobStore = Depends(get_blob_store),
) -> CaseStudyService:
    return CaseStudyService(repository, blob_store)


async def get_label_service(
    blob_store: BlobStore = Depends(get_blob_store),
) -> LabelService:
    return LabelService(blob_store)
