"""Tests for CaseStudyService write ordering against concurrent writers."""
import io

import pytest
from docx import Document

from casebook.core.exceptions import ConflictError, StorageError
from casebook.services.blob_store import MemoryBlobStore
from casebook.services.case_study_service import CaseStudyService
from casebook.services.repository import CaseStudyRepository, document_key

from conftest import MINIMAL_SUBMISSION


class DocxOutageStore(MemoryBlobStore):
    """Accepts everything except .docx uploads once ``failing`` is set."""

    failing = False

    async def put(self, key, data, content_type=None):
        if self.failing and key.endswith(".docx"):
            raise StorageError("docx upload refused", key=key)
        await super().put(key, data, content_type=content_type)


async def stored_document_text(store: MemoryBlobStore) -> list:
    data = await store.get(document_key("cst12"))
    return [p.text for p in Document(io.BytesIO(data)).paragraphs]


@pytest.mark.asyncio
async def test_losing_writer_leaves_winner_documents(
    service: CaseStudyService,
    repository: CaseStudyRepository,
    blob_store: MemoryBlobStore,
    monkeypatch,
):
    await service.create_or_submit(MINIMAL_SUBMISSION)
    stale = await repository.get_case_study("cst12")

    await service.update_labels("cst12", {"client": ["Winner"]})

    async def stale_read(folder_name):
        return stale

    monkeypatch.setattr(repository, "get_case_study", stale_read)
    with pytest.raises(ConflictError):
        await service.update_labels("cst12", {"client": ["Loser"]})
    await repository.rollback()
    monkeypatch.undo()

    texts = await stored_document_text(blob_store)
    assert "Client: Winner" in texts
    assert "Client: Loser" not in texts
    current = await repository.get_case_study("cst12")
    assert current.row_version == 2
    assert current.record.labels["client"] == ["Winner"]


@pytest.mark.asyncio
async def test_failed_document_upload_commits_nothing(repository: CaseStudyRepository):
    store = DocxOutageStore()
    service = CaseStudyService(repository, store)
    await service.create_or_submit(MINIMAL_SUBMISSION)

    store.failing = True
    with pytest.raises(StorageError):
        await service.update_labels("cst12", {"client": ["Globex"]})
    await repository.rollback()

    current = await repository.get_case_study("cst12")
    assert current.row_version == 1
    assert current.record.labels["client"] == ["Acme"]
