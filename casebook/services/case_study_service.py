"""
Case-study workflow: drafts, submission, review decisions, feedback rounds,
publication, labels, comments and document (re)generation.

Every mutating operation follows the same shape:

1. read the current record(s) and their row versions
2. compute the new record(s) through the lifecycle state machine
3. generate documents when content changed
4. compare-and-swap the records
5. upload the documents, then commit

Documents are produced before any metadata is written, so a failed
generation leaves the stored records untouched. They are uploaded only
once the swap has succeeded, so a writer that loses the swap leaves the
stored documents alone.
"""
from __future__ import annotations

import dataclasses
import logging
import math
import uuid
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from casebook.config import settings
from casebook.core.exceptions import ValidationError
from casebook.models.schemas import (
    CaseStudy,
    CaseStudyStatus,
    DiagramRef,
    DiagramSection,
    Draft,
    DraftData,
    Pagination,
    ReviewComment,
    Workstream,
)
from casebook.services.blob_store import BlobStore
from casebook.services.document_service import DocumentService, GeneratedDocuments
from casebook.services.form_parser import (
    build_questionnaire,
    flatten_case_study,
    merge_form,
    parse_form,
    validate_mandatory,
)
from casebook.services.labels import normalize_labels
from casebook.services.lifecycle import DRAFT_STATUSES, LifecycleStateMachine, lifecycle
from casebook.services.repository import CaseStudyRepository, Stored
from casebook.utils.helpers import is_blank, sanitize_title, unique_blob_name, utc_now

logger = logging.getLogger(__name__)

S = CaseStudyStatus

UNTITLED_DRAFT = "Untitled Draft"
ARCHITECTURE_FIELD = "architectureDiagrams"


@dataclasses.dataclass(frozen=True)
class UploadedDiagram:
    """A diagram file received with a submission, before it is stored."""

    field_name: str
    file_name: str
    content_type: str
    data: bytes


class CaseStudyService:
    def __init__(
        self,
        repository: CaseStudyRepository,
        blob_store: BlobStore,
        documents: Optional[DocumentService] = None,
        machine: Optional[LifecycleStateMachine] = None,
    ) -> None:
        self.repo = repository
        self.blob_store = blob_store
        self.documents = documents or DocumentService(blob_store)
        self.machine = machine or lifecycle

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    async def save_draft(self, raw: Mapping[str, Any]) -> Draft:
        """Create a draft, or update the one named by ``id``/``draftId``."""
        form = parse_form(raw)
        now = utc_now()

        stored = await self.repo.find_draft(form.draft_id) if form.draft_id else None
        if stored is not None:
            draft = stored.record
            if not self.machine.is_draft_editable(draft):
                raise ValidationError(
                    f"Draft '{draft.id}' can no longer be edited (status {draft.status.value})"
                )
            data = merge_form(draft.data, form)
            updated = draft.model_copy(
                update={"data": data, "title": data.title or UNTITLED_DRAFT, "updated_at": now}
            )
            result = await self.repo.swap_draft(stored.row_version, updated)
            logger.info("Draft %s updated", draft.id)
        else:
            draft = Draft(
                id=form.draft_id or str(uuid.uuid4()),
                title=form.data.title or UNTITLED_DRAFT,
                status=S.DRAFT,
                created_at=now,
                updated_at=now,
                data=form.data,
            )
            result = await self.repo.add_draft(draft)
            logger.info("Draft %s created", draft.id)

        await self.repo.commit()
        return result.record

    async def get_draft(self, draft_id: str) -> Draft:
        return (await self.repo.get_draft(draft_id)).record

    async def list_drafts(self, status: Optional[CaseStudyStatus] = None) -> List[Draft]:
        return await self.repo.list_drafts(status)

    async def delete_draft(self, draft_id: str) -> None:
        await self.repo.delete_draft(draft_id)
        await self.repo.commit()
        logger.info("Draft %s deleted", draft_id)

    async def update_draft_status(self, draft_id: str, status: CaseStudyStatus) -> Draft:
        stored = await self.repo.get_draft(draft_id)
        updated = self.machine.transition_draft(stored.record, status)
        result = await self.repo.swap_draft(stored.row_version, updated)
        await self.repo.commit()
        return result.record

    async def submit_draft(self, draft_id: str) -> CaseStudy:
        """Submit a stored draft for review, unchanged."""
        await self.repo.get_draft(draft_id)
        return await self.create_or_submit({"id": draft_id})

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def create_or_submit(
        self,
        raw: Mapping[str, Any],
        uploads: Sequence[UploadedDiagram] = (),
    ) -> CaseStudy:
        """
        Submit questionnaire data for review.

        The draft is created or updated to ``under_review``; the matching
        case study (same originating draft, else same folder) is updated in
        place, otherwise a new one starts at version 0.1.

        Raises:
            ValidationError: mandatory fields missing or an upload is rejected.
            ImmutableError: the matching case study is already published.
        """
        form = parse_form(raw)
        self._validate_uploads(uploads)

        stored_draft = await self.repo.find_draft(form.draft_id) if form.draft_id else None
        data = merge_form(stored_draft.record.data, form) if stored_draft else form.data
        validate_mandatory(data)

        folder = sanitize_title(data.title, settings.FOLDER_NAME_MAX_LENGTH)
        draft_id = stored_draft.record.id if stored_draft else form.draft_id or str(uuid.uuid4())
        existing = await self.repo.find_case_study_for(draft_id, folder)
        if existing is not None:
            self.machine.ensure_mutable(existing.record)
            folder = existing.record.folder_name

        data = await self._store_uploads(folder, data, uploads)
        now = utc_now()

        if stored_draft is not None:
            draft = stored_draft.record.model_copy(
                update={"data": data, "title": data.title, "updated_at": now}
            )
            if draft.status != S.UNDER_REVIEW:
                draft = self.machine.transition_draft(draft, S.UNDER_REVIEW, now)
        else:
            draft = Draft(
                id=draft_id,
                title=data.title,
                status=S.UNDER_REVIEW,
                created_at=now,
                updated_at=now,
                data=data,
            )

        if existing is not None:
            case_study = self._apply_content(existing.record, data)
            case_study = case_study.model_copy(update={"original_draft_id": draft.id})
            case_study = self.machine.resubmission(case_study, now)
        else:
            case_study = self._new_case_study(folder, data, draft.id, now)

        case_study, documents = await self.documents.prepare(case_study)

        if stored_draft is not None:
            await self.repo.swap_draft(stored_draft.row_version, draft)
        else:
            await self.repo.add_draft(draft)
        result = await self.repo.save_case_study(
            case_study, existing.row_version if existing else None
        )
        await self._commit_with_documents(result.record, documents)

        logger.info(
            "Case study '%s' submitted for review (version %s)",
            case_study.folder_name,
            case_study.version,
        )
        return result.record

    # ------------------------------------------------------------------
    # Review decisions
    # ------------------------------------------------------------------

    async def approve(self, draft_id: str) -> CaseStudy:
        return await self._decide(draft_id, S.APPROVED)

    async def reject(self, draft_id: str) -> CaseStudy:
        return await self._decide(draft_id, S.REJECTED)

    async def _decide(self, draft_id: str, target: CaseStudyStatus) -> CaseStudy:
        stored_draft = await self.repo.get_draft(draft_id)
        draft = stored_draft.record
        now = utc_now()
        decided_draft = self.machine.transition_draft(draft, target, now)

        data = draft.data
        if is_blank(data.title):
            data = data.model_copy(update={"title": draft.title})
        folder = sanitize_title(data.title, settings.FOLDER_NAME_MAX_LENGTH)

        existing = await self.repo.find_case_study_for(draft.id, folder)
        if existing is not None:
            self.machine.ensure_mutable(existing.record)
            case_study = self._apply_content(existing.record, data)
            case_study = case_study.model_copy(update={"original_draft_id": draft.id})
            case_study = self.machine.resubmission(case_study, now)
        else:
            case_study = self._new_case_study(folder, data, draft.id, now)
        case_study = self.machine.transition(case_study, target, now)

        case_study, documents = await self.documents.prepare(case_study)

        await self.repo.swap_draft(stored_draft.row_version, decided_draft)
        result = await self.repo.save_case_study(
            case_study, existing.row_version if existing else None
        )
        await self._commit_with_documents(result.record, documents)

        logger.info("Draft %s %s as case study '%s'", draft_id, target.value, case_study.folder_name)
        return result.record

    # ------------------------------------------------------------------
    # Case-study lifecycle
    # ------------------------------------------------------------------

    async def update_status(self, folder_name: str, status: CaseStudyStatus) -> CaseStudy:
        """
        Raises:
            ImmutableError: the case study is published and ``status`` is not.
            InvalidTransitionError: the move is not allowed.
        """
        stored = await self.repo.get_case_study(folder_name)
        updated = self.machine.transition(stored.record, status)
        if stored.record.status == S.PUBLISHED:
            return stored.record

        result = await self.repo.swap_case_study(stored.row_version, updated)
        await self._sync_draft_status(updated)
        await self.repo.commit()
        return result.record

    async def incorporate_feedback(
        self,
        folder_name: str,
        raw: Mapping[str, Any],
        uploads: Sequence[UploadedDiagram] = (),
    ) -> CaseStudy:
        """
        Merge revised fields over the case study, bump its minor version and
        send it back to review. Fields absent from ``raw`` keep their values.
        """
        stored = await self.repo.get_case_study(folder_name)
        case_study = stored.record
        self.machine.ensure_mutable(case_study)
        self._validate_uploads(uploads)

        form = parse_form(raw)
        merged = merge_form(flatten_case_study(case_study), form)
        validate_mandatory(merged)
        merged = await self._store_uploads(case_study.folder_name, merged, uploads)

        now = utc_now()
        revised = self.machine.feedback_revision(case_study, now)
        revised = self._apply_content(revised, merged)
        revised, documents = await self.documents.prepare(revised)

        result = await self.repo.swap_case_study(stored.row_version, revised)
        await self._sync_draft_content(revised, merged, now)
        await self._commit_with_documents(result.record, documents)
        return result.record

    async def regenerate_documents(self, folder_name: str) -> CaseStudy:
        stored = await self.repo.get_case_study(folder_name)
        updated, documents = await self.documents.prepare(stored.record)
        result = await self.repo.swap_case_study(stored.row_version, updated)
        await self._commit_with_documents(result.record, documents)
        return result.record

    async def update_labels(self, folder_name: str, labels: Any) -> CaseStudy:
        stored = await self.repo.get_case_study(folder_name)
        self.machine.ensure_mutable(stored.record)

        updated = stored.record.model_copy(
            update={"labels": normalize_labels(labels), "updated_at": utc_now()}
        )
        updated, documents = await self.documents.prepare(updated)
        result = await self.repo.swap_case_study(stored.row_version, updated)
        await self._commit_with_documents(result.record, documents)
        logger.info("Labels updated for '%s'", folder_name)
        return result.record

    async def delete_case_study(self, folder_name: str) -> None:
        stored = await self.repo.get_case_study(folder_name)
        self.machine.ensure_mutable(stored.record)
        await self.repo.delete_case_study(stored.record, stored.row_version)
        await self.repo.commit()
        logger.info("Case study '%s' deleted", folder_name)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_case_study(self, folder_name: str) -> CaseStudy:
        return (await self.repo.get_case_study(folder_name)).record

    async def list_case_studies(
        self,
        search: Optional[str] = None,
        status: Optional[CaseStudyStatus] = None,
        label_filters: Optional[Mapping[str, Sequence[str]]] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Tuple[List[CaseStudy], Pagination]:
        """Filter newest-first case studies and cut one page out of them."""
        limit = max(1, limit or settings.DEFAULT_PAGE_SIZE)
        page = max(1, page)

        items = await self.repo.list_case_studies(status)
        if search and search.strip():
            needle = search.strip().lower()
            items = [cs for cs in items if needle in _search_text(cs)]
        if label_filters:
            items = [cs for cs in items if _matches_labels(cs, label_filters)]

        total = len(items)
        total_pages = math.ceil(total / limit) if total else 0
        start = (page - 1) * limit
        pagination = Pagination(
            current_page=page,
            total_pages=total_pages,
            total_count=total,
            limit=limit,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )
        return items[start:start + limit], pagination

    async def read_file(self, folder_name: str, file_name: str) -> bytes:
        """Stored document or diagram under a case-study folder."""
        if "/" in file_name or file_name in ("", ".", ".."):
            raise ValidationError(f"Invalid file name '{file_name}'")
        await self.repo.get_case_study(folder_name)
        return await self.blob_store.get(f"case-studies/{folder_name}/{file_name}")

    # ------------------------------------------------------------------
    # Review comments
    # ------------------------------------------------------------------

    @staticmethod
    def _new_comment(comment: str, author: Optional[str]) -> ReviewComment:
        if is_blank(comment):
            raise ValidationError("Comment text is required", details={"comment": "required"})
        return ReviewComment(
            comment=comment.strip(),
            author=author.strip() if not is_blank(author) else "Anonymous",
            timestamp=utc_now(),
        )

    async def add_draft_comment(self, draft_id: str, comment: str, author: Optional[str]) -> ReviewComment:
        entry = self._new_comment(comment, author)
        await self.repo.get_draft(draft_id)
        await self.repo.add_draft_comment(draft_id, entry)
        await self.repo.commit()
        return entry

    async def list_draft_comments(self, draft_id: str) -> List[ReviewComment]:
        await self.repo.get_draft(draft_id)
        return await self.repo.list_draft_comments(draft_id)

    async def add_case_study_comment(
        self, folder_name: str, comment: str, author: Optional[str]
    ) -> ReviewComment:
        entry = self._new_comment(comment, author)
        await self.repo.get_case_study(folder_name)
        await self.repo.add_case_study_comment(folder_name, entry)
        await self.repo.commit()
        return entry

    async def list_case_study_comments(self, folder_name: str) -> List[ReviewComment]:
        await self.repo.get_case_study(folder_name)
        return await self.repo.list_case_study_comments(folder_name)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _commit_with_documents(self, case_study: CaseStudy, documents: GeneratedDocuments) -> None:
        """Upload documents inside the swapped transaction, then commit."""
        await self.documents.upload_documents(case_study, documents)
        await self.repo.commit()

    def _new_case_study(self, folder: str, data: DraftData, draft_id: str, now) -> CaseStudy:
        return CaseStudy(
            id=str(uuid.uuid4()),
            folder_name=folder,
            original_title=data.title,
            status=S.UNDER_REVIEW,
            version=self.machine.versions.initial(),
            created_at=now,
            updated_at=now,
            original_draft_id=draft_id,
            labels=normalize_labels(data.labels),
            custom_metrics=data.custom_metrics,
            questionnaire=build_questionnaire(data),
        )

    @staticmethod
    def _apply_content(case_study: CaseStudy, data: DraftData) -> CaseStudy:
        return case_study.model_copy(
            update={
                "questionnaire": build_questionnaire(data),
                "labels": normalize_labels(data.labels),
                "custom_metrics": list(data.custom_metrics),
            }
        )

    async def _linked_draft(self, case_study: CaseStudy) -> Optional[Stored[Draft]]:
        if not case_study.original_draft_id:
            return None
        return await self.repo.find_draft(case_study.original_draft_id)

    async def _sync_draft_status(self, case_study: CaseStudy) -> None:
        if case_study.status not in DRAFT_STATUSES:
            return
        stored = await self._linked_draft(case_study)
        if stored is None or stored.record.status == case_study.status:
            return
        updated = stored.record.model_copy(
            update={"status": case_study.status, "updated_at": case_study.updated_at}
        )
        await self.repo.swap_draft(stored.row_version, updated)

    async def _sync_draft_content(self, case_study: CaseStudy, data: DraftData, now) -> None:
        stored = await self._linked_draft(case_study)
        if stored is None:
            return
        updated = stored.record.model_copy(
            update={
                "data": data,
                "title": data.title,
                "status": S.UNDER_REVIEW,
                "updated_at": now,
            }
        )
        await self.repo.swap_draft(stored.row_version, updated)

    @staticmethod
    def _validate_uploads(uploads: Sequence[UploadedDiagram]) -> None:
        if len(uploads) > settings.MAX_DIAGRAM_FILES:
            raise ValidationError(
                f"Too many files: {len(uploads)} (max {settings.MAX_DIAGRAM_FILES})"
            )
        for upload in uploads:
            if upload.content_type not in settings.SUPPORTED_DIAGRAM_TYPES:
                raise ValidationError(
                    f"Unsupported file type '{upload.content_type}' for '{upload.file_name}'",
                    details={"file": upload.file_name},
                )
            if len(upload.data) > settings.MAX_DIAGRAM_SIZE:
                raise ValidationError(
                    f"File '{upload.file_name}' exceeds "
                    f"{settings.MAX_DIAGRAM_SIZE // (1024 * 1024)} MB",
                    details={"file": upload.file_name},
                )

    async def _store_uploads(
        self,
        folder: str,
        data: DraftData,
        uploads: Sequence[UploadedDiagram],
    ) -> DraftData:
        """Upload diagram files and reference them from the questionnaire data."""
        if not uploads:
            return data

        sections = [s.model_copy(deep=True) for s in data.architecture_diagrams]
        workstreams = [w.model_copy(deep=True) for w in data.implementation_workstreams]

        for upload in uploads:
            target = _upload_target(upload.field_name)
            if target is None:
                logger.warning("Ignoring upload under unknown field '%s'", upload.field_name)
                continue

            prefix = "architecture" if target == ARCHITECTURE_FIELD else f"workstream-{target}"
            blob_name = unique_blob_name(prefix, upload.file_name)
            key = f"case-studies/{folder}/{blob_name}"
            await self.blob_store.put(key, upload.data, content_type=upload.content_type)

            ref = DiagramRef(
                name=upload.file_name,
                file_name=blob_name,
                s3_key=key,
                type=upload.content_type,
                size=len(upload.data),
            )
            if target == ARCHITECTURE_FIELD:
                if not sections:
                    sections.append(DiagramSection())
                sections[0].diagrams.append(ref)
            else:
                while len(workstreams) <= target:
                    workstreams.append(Workstream())
                workstreams[target].diagrams.append(ref)

        logger.info("Stored %d uploaded diagram(s) for '%s'", len(uploads), folder)
        return data.model_copy(
            update={"architecture_diagrams": sections, "implementation_workstreams": workstreams}
        )


def _upload_target(field_name: str):
    """``architectureDiagrams`` or the workstream index of ``workstream-{i}-diagrams``."""
    if field_name == ARCHITECTURE_FIELD:
        return ARCHITECTURE_FIELD
    parts = field_name.split("-")
    if len(parts) == 3 and parts[0] == "workstream" and parts[2] == "diagrams" and parts[1].isdigit():
        return int(parts[1])
    return None


def _search_text(case_study: CaseStudy) -> str:
    q = case_study.questionnaire
    chunks = [
        case_study.title,
        case_study.folder_name,
        q.basic_info.point_of_contact,
        q.content.challenge,
        q.content.solution,
        q.content.results,
    ]
    for values in case_study.labels.values():
        chunks.extend(values)
    return "\n".join(c for c in chunks if c).lower()


def _matches_labels(case_study: CaseStudy, filters: Mapping[str, Sequence[str]]) -> bool:
    for category, wanted in filters.items():
        wanted_lower = {w.lower() for w in wanted if w}
        if not wanted_lower:
            continue
        have = {v.lower() for v in case_study.labels.get(category, [])}
        if not have & wanted_lower:
            return False
    return True
