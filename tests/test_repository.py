"""Tests for CaseStudyRepository: compare-and-swap writes and blob mirroring."""
import json
from datetime import datetime, timezone

import pytest

from casebook.core.exceptions import ConflictError, NotFoundError, StorageError
from casebook.models.schemas import CaseStudy, CaseStudyStatus, Draft, DraftData, ReviewComment
from casebook.services.blob_store import MemoryBlobStore
from casebook.services.repository import (
    CaseStudyRepository,
    case_study_comments_key,
    draft_key,
    metadata_key,
)

NOW = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


def make_case_study(folder: str = "cst12", draft_id: str = "d-1") -> CaseStudy:
    return CaseStudy(
        id=f"id-{folder}",
        folder_name=folder,
        original_title=folder,
        status=CaseStudyStatus.UNDER_REVIEW,
        created_at=NOW,
        updated_at=NOW,
        original_draft_id=draft_id,
    )


class BrokenStore(MemoryBlobStore):
    async def put(self, key, data, content_type=None):
        raise StorageError("down", key=key)


@pytest.mark.asyncio
async def test_add_and_get_case_study(repository: CaseStudyRepository):
    await repository.add_case_study(make_case_study())
    await repository.commit()

    stored = await repository.get_case_study("cst12")
    assert stored.row_version == 1
    assert stored.record.original_draft_id == "d-1"


@pytest.mark.asyncio
async def test_missing_case_study_raises_not_found(repository: CaseStudyRepository):
    with pytest.raises(NotFoundError):
        await repository.get_case_study("nope")
    assert await repository.find_case_study("nope") is None


@pytest.mark.asyncio
async def test_swap_with_stale_row_version_conflicts(repository: CaseStudyRepository):
    await repository.add_case_study(make_case_study())
    await repository.commit()

    first = await repository.get_case_study("cst12")
    second = await repository.get_case_study("cst12")

    approved = first.record.model_copy(update={"status": CaseStudyStatus.APPROVED})
    await repository.swap_case_study(first.row_version, approved)
    await repository.commit()

    rejected = second.record.model_copy(update={"status": CaseStudyStatus.REJECTED})
    with pytest.raises(ConflictError):
        await repository.swap_case_study(second.row_version, rejected)
    await repository.rollback()

    current = await repository.get_case_study("cst12")
    assert current.record.status == CaseStudyStatus.APPROVED
    assert current.row_version == 2


@pytest.mark.asyncio
async def test_find_case_study_for_prefers_draft_id(repository: CaseStudyRepository):
    await repository.add_case_study(make_case_study("alpha", draft_id="d-a"))
    await repository.add_case_study(make_case_study("beta", draft_id="d-b"))
    await repository.commit()

    stored = await repository.find_case_study_for("d-b", "alpha")
    assert stored.record.folder_name == "beta"

    stored = await repository.find_case_study_for("unknown", "alpha")
    assert stored.record.folder_name == "alpha"


@pytest.mark.asyncio
async def test_commit_mirrors_metadata(repository: CaseStudyRepository, blob_store: MemoryBlobStore):
    await repository.add_case_study(make_case_study())
    assert not await blob_store.exists(metadata_key("cst12"))

    await repository.commit()

    payload = json.loads(await blob_store.get(metadata_key("cst12")))
    assert payload["folderName"] == "cst12"
    assert payload["status"] == "under_review"


@pytest.mark.asyncio
async def test_mirror_failure_does_not_fail_commit(db_session):
    repository = CaseStudyRepository(db_session, BrokenStore())
    await repository.add_case_study(make_case_study())
    await repository.commit()

    assert (await repository.get_case_study("cst12")).row_version == 1


@pytest.mark.asyncio
async def test_drafts_and_comments(repository: CaseStudyRepository, blob_store: MemoryBlobStore):
    draft = Draft(id="d-1", title="t", created_at=NOW, updated_at=NOW, data=DraftData(title="t"))
    await repository.add_draft(draft)
    await repository.add_case_study(make_case_study())
    await repository.add_case_study_comment(
        "cst12", ReviewComment(comment="Looks good", author="Reviewer", timestamp=NOW)
    )
    await repository.commit()

    assert await blob_store.exists(draft_key("d-1"))
    mirrored = json.loads(await blob_store.get(case_study_comments_key("cst12")))
    assert mirrored[0]["comment"] == "Looks good"

    comments = await repository.list_case_study_comments("cst12")
    assert [c.author for c in comments] == ["Reviewer"]
    assert await repository.list_draft_comments("d-1") == []

    await repository.delete_draft("d-1")
    await repository.commit()
    assert await repository.find_draft("d-1") is None
    assert not await blob_store.exists(draft_key("d-1"))
