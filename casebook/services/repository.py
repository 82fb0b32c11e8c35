"""
CaseStudyRepository: the single owner of draft, case-study and review-comment
state.

Records live in the relational store (see ``models/database_models.py``) as
full JSON payloads guarded by a ``row_version`` counter. Every lifecycle write
goes through ``swap_draft`` / ``swap_case_study``, a compare-and-swap on that
counter, so two requests racing on the same record produce one winner and one
``ConflictError`` instead of two silent writes.

Writes only flush. ``commit()`` commits the session and then mirrors the
touched records to the blob store (``metadata.json``, ``draft.json``,
``comments.json``). Mirror failures are logged; the database stays the source
of truth.
"""
from __future__ import annotations

import dataclasses
import json
import logging
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from casebook.core.exceptions import ConflictError, NotFoundError, StorageError
from casebook.models.database_models import CaseStudyRow, DraftRow, ReviewCommentRow
from casebook.models.schemas import CaseStudy, CaseStudyStatus, Draft, ReviewComment
from casebook.services.blob_store import BlobStore

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclasses.dataclass
class Stored(Generic[R]):
    """A record together with the row version it was read at."""

    record: R
    row_version: int


# ---------------------------------------------------------------------------
# Blob key layout
# ---------------------------------------------------------------------------

def case_study_prefix(folder_name: str) -> str:
    return f"case-studies/{folder_name}/"


def document_key(folder_name: str) -> str:
    return f"case-studies/{folder_name}/{folder_name}.docx"


def one_pager_key(folder_name: str) -> str:
    return f"case-studies/{folder_name}/{folder_name}-one-pager.docx"


def metadata_key(folder_name: str) -> str:
    return f"case-studies/{folder_name}/metadata.json"


def draft_key(draft_id: str) -> str:
    return f"drafts/{draft_id}/draft.json"


def draft_comments_key(draft_id: str) -> str:
    return f"draft-reviews/{draft_id}/comments.json"


def case_study_comments_key(folder_name: str) -> str:
    return f"reviews/{folder_name}/comments.json"


def _json_bytes(payload) -> bytes:
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class CaseStudyRepository:
    def __init__(self, db: AsyncSession, blob_store: BlobStore) -> None:
        self.db = db
        self.blob_store = blob_store
        self._after_commit: List[Callable[[], Awaitable[None]]] = []

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def commit(self) -> None:
        await self.db.commit()
        pending, self._after_commit = self._after_commit, []
        for job in pending:
            try:
                await job()
            except StorageError as exc:
                logger.error("Blob mirror failed after commit: %s", exc)

    async def rollback(self) -> None:
        self._after_commit.clear()
        await self.db.rollback()

    def _mirror(self, key: str, payload) -> None:
        async def _put() -> None:
            await self.blob_store.put(key, _json_bytes(payload), content_type="application/json")

        self._after_commit.append(_put)

    def _mirror_delete(self, prefix: str) -> None:
        async def _delete() -> None:
            removed = await self.blob_store.delete(prefix)
            logger.info("Removed %d blobs under '%s'", removed, prefix)

        self._after_commit.append(_delete)

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    async def find_draft(self, draft_id: str) -> Optional[Stored[Draft]]:
        result = await self.db.execute(
            select(DraftRow)
            .where(DraftRow.id == draft_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return Stored(Draft.model_validate(row.payload), row.row_version)

    async def get_draft(self, draft_id: str) -> Stored[Draft]:
        stored = await self.find_draft(draft_id)
        if stored is None:
            raise NotFoundError("Draft", draft_id)
        return stored

    async def list_drafts(self, status: Optional[CaseStudyStatus] = None) -> List[Draft]:
        query = select(DraftRow).order_by(DraftRow.updated_at.desc(), DraftRow.id)
        if status is not None:
            query = query.where(DraftRow.status == status.value)
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return [Draft.model_validate(row.payload) for row in result.scalars().all()]

    async def add_draft(self, draft: Draft) -> Stored[Draft]:
        self.db.add(
            DraftRow(
                id=draft.id,
                title=draft.title,
                status=draft.status.value,
                row_version=1,
                payload=draft.to_wire(),
                created_at=draft.created_at,
                updated_at=draft.updated_at,
            )
        )
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise ConflictError("Draft", draft.id) from exc
        self._mirror(draft_key(draft.id), draft.to_wire())
        return Stored(draft, 1)

    async def swap_draft(self, expected_row_version: int, draft: Draft) -> Stored[Draft]:
        """
        Replace a draft only if nobody wrote it since ``expected_row_version``.

        Raises:
            ConflictError: the stored row version moved on.
        """
        result = await self.db.execute(
            update(DraftRow)
            .where(DraftRow.id == draft.id, DraftRow.row_version == expected_row_version)
            .values(
                title=draft.title,
                status=draft.status.value,
                payload=draft.to_wire(),
                row_version=expected_row_version + 1,
                updated_at=draft.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Draft", draft.id, expected_row_version)
        self._mirror(draft_key(draft.id), draft.to_wire())
        return Stored(draft, expected_row_version + 1)

    async def delete_draft(self, draft_id: str) -> None:
        result = await self.db.execute(delete(DraftRow).where(DraftRow.id == draft_id))
        if result.rowcount == 0:
            raise NotFoundError("Draft", draft_id)
        await self.db.execute(
            delete(ReviewCommentRow).where(ReviewCommentRow.target_id == _draft_target(draft_id))
        )
        self._mirror_delete(f"drafts/{draft_id}/")
        self._mirror_delete(f"draft-reviews/{draft_id}/")

    # ------------------------------------------------------------------
    # Case studies
    # ------------------------------------------------------------------

    async def _find_case_study_by(self, clause) -> Optional[Stored[CaseStudy]]:
        result = await self.db.execute(
            select(CaseStudyRow)
            .where(clause)
            .order_by(CaseStudyRow.updated_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return Stored(CaseStudy.model_validate(row.payload), row.row_version)

    async def find_case_study(self, folder_name: str) -> Optional[Stored[CaseStudy]]:
        return await self._find_case_study_by(CaseStudyRow.folder_name == folder_name)

    async def get_case_study(self, folder_name: str) -> Stored[CaseStudy]:
        stored = await self.find_case_study(folder_name)
        if stored is None:
            raise NotFoundError("Case study", folder_name)
        return stored

    async def find_case_study_for(
        self,
        draft_id: Optional[str],
        folder_name: Optional[str],
    ) -> Optional[Stored[CaseStudy]]:
        """Match an existing case study by originating draft first, then by folder."""
        if draft_id:
            stored = await self._find_case_study_by(CaseStudyRow.original_draft_id == draft_id)
            if stored is not None:
                return stored
        if folder_name:
            return await self.find_case_study(folder_name)
        return None

    async def list_case_studies(self, status: Optional[CaseStudyStatus] = None) -> List[CaseStudy]:
        """All case studies, newest first."""
        query = select(CaseStudyRow).order_by(CaseStudyRow.created_at.desc(), CaseStudyRow.id)
        if status is not None:
            query = query.where(CaseStudyRow.status == status.value)
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return [CaseStudy.model_validate(row.payload) for row in result.scalars().all()]

    async def add_case_study(self, case_study: CaseStudy) -> Stored[CaseStudy]:
        self.db.add(
            CaseStudyRow(
                id=case_study.id,
                folder_name=case_study.folder_name,
                status=case_study.status.value,
                version=case_study.version,
                original_draft_id=case_study.original_draft_id,
                row_version=1,
                payload=case_study.to_wire(),
                created_at=case_study.created_at,
                updated_at=case_study.updated_at,
            )
        )
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise ConflictError("Case study", case_study.folder_name) from exc
        self._mirror(metadata_key(case_study.folder_name), case_study.to_wire())
        return Stored(case_study, 1)

    async def swap_case_study(
        self,
        expected_row_version: int,
        case_study: CaseStudy,
    ) -> Stored[CaseStudy]:
        """
        Compare-and-swap a case study record.

        Raises:
            ConflictError: the stored row version no longer equals
                ``expected_row_version``.
        """
        result = await self.db.execute(
            update(CaseStudyRow)
            .where(
                CaseStudyRow.id == case_study.id,
                CaseStudyRow.row_version == expected_row_version,
            )
            .values(
                folder_name=case_study.folder_name,
                status=case_study.status.value,
                version=case_study.version,
                original_draft_id=case_study.original_draft_id,
                payload=case_study.to_wire(),
                row_version=expected_row_version + 1,
                updated_at=case_study.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Case study", case_study.folder_name, expected_row_version)
        self._mirror(metadata_key(case_study.folder_name), case_study.to_wire())
        return Stored(case_study, expected_row_version + 1)

    async def save_case_study(
        self,
        case_study: CaseStudy,
        expected_row_version: Optional[int],
    ) -> Stored[CaseStudy]:
        """Insert when ``expected_row_version`` is None, otherwise compare-and-swap."""
        if expected_row_version is None:
            return await self.add_case_study(case_study)
        return await self.swap_case_study(expected_row_version, case_study)

    async def delete_case_study(self, case_study: CaseStudy, expected_row_version: int) -> None:
        result = await self.db.execute(
            delete(CaseStudyRow).where(
                CaseStudyRow.id == case_study.id,
                CaseStudyRow.row_version == expected_row_version,
            )
        )
        if result.rowcount != 1:
            raise ConflictError("Case study", case_study.folder_name, expected_row_version)
        await self.db.execute(
            delete(ReviewCommentRow).where(
                ReviewCommentRow.target_id == _case_study_target(case_study.folder_name)
            )
        )
        self._mirror_delete(case_study_prefix(case_study.folder_name))
        self._mirror_delete(f"reviews/{case_study.folder_name}/")

    # ------------------------------------------------------------------
    # Review comments
    # ------------------------------------------------------------------

    async def _list_comments(self, target_id: str) -> List[ReviewComment]:
        result = await self.db.execute(
            select(ReviewCommentRow)
            .where(ReviewCommentRow.target_id == target_id)
            .order_by(ReviewCommentRow.created_at, ReviewCommentRow.id)
        )
        return [
            ReviewComment(comment=row.comment, author=row.author, timestamp=row.created_at)
            for row in result.scalars().all()
        ]

    async def _add_comment(self, target_id: str, mirror_key: str, comment: ReviewComment) -> None:
        self.db.add(
            ReviewCommentRow(
                target_id=target_id,
                comment=comment.comment,
                author=comment.author,
                created_at=comment.timestamp,
            )
        )
        await self.db.flush()
        comments = await self._list_comments(target_id)
        self._mirror(mirror_key, [c.to_wire() for c in comments])

    async def list_draft_comments(self, draft_id: str) -> List[ReviewComment]:
        return await self._list_comments(_draft_target(draft_id))

    async def add_draft_comment(self, draft_id: str, comment: ReviewComment) -> None:
        await self._add_comment(_draft_target(draft_id), draft_comments_key(draft_id), comment)

    async def list_case_study_comments(self, folder_name: str) -> List[ReviewComment]:
        return await self._list_comments(_case_study_target(folder_name))

    async def add_case_study_comment(self, folder_name: str, comment: ReviewComment) -> None:
        await self._add_comment(
            _case_study_target(folder_name), case_study_comments_key(folder_name), comment
        )


def _draft_target(draft_id: str) -> str:
    return f"draft:{draft_id}"


def _case_study_target(folder_name: str) -> str:
    return f"case-study:{folder_name}"
