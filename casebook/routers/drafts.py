"""
Draft endpoints.

POST   /                 - save a draft (create, or update when id/draftId given)
GET    /                 - list drafts, optionally by status
GET    /{id}             - fetch one draft
DELETE /{id}             - delete a draft and its comments
POST   /{id}/submit      - submit a stored draft for review
POST   /{id}/approve     - approve: builds/updates the case study and its documents
POST   /{id}/reject      - reject: same, with status rejected
PUT    /{id}/status      - draft-only status change
GET    /{id}/comments    - review comments
POST   /{id}/comments    - add a review comment
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from casebook.dependencies.services import get_case_study_service
from casebook.dependencies.submission import Submission, get_submission
from casebook.models.schemas import (
    CaseStudyResponse,
    CaseStudyStatus,
    CommentCreateRequest,
    CommentListResponse,
    CommentResponse,
    DraftListResponse,
    DraftResponse,
    MessageResponse,
    StatusUpdateRequest,
)
from casebook.services.case_study_service import CaseStudyService

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

@router.post("/", response_model=DraftResponse)
async def save_draft(
    submission: Submission = Depends(get_submission),
    service: CaseStudyService = Depends(get_case_study_service),
) -> DraftResponse:
    """
    Save questionnaire progress.

    No field is mandatory here; a missing title becomes "Untitled Draft".
    Only drafts that are still ``draft`` or ``under_review`` can be updated.
    """
    draft = await service.save_draft(submission.fields)
    return DraftResponse(draft=draft, message="Draft saved")


@router.get("/", response_model=DraftListResponse)
async def list_drafts(
    status_filter: Optional[CaseStudyStatus] = Query(None, alias="status"),
    service: CaseStudyService = Depends(get_case_study_service),
) -> DraftListResponse:
    drafts = await service.list_drafts(status_filter)
    return DraftListResponse(drafts=drafts)


@router.get("/{draft_id}", response_model=DraftResponse)
async def get_draft(
    draft_id: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> DraftResponse:
    draft = await service.get_draft(draft_id)
    return DraftResponse(draft=draft)


@router.delete("/{draft_id}", response_model=MessageResponse)
async def delete_draft(
    draft_id: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> MessageResponse:
    await service.delete_draft(draft_id)
    return MessageResponse(message=f"Draft '{draft_id}' deleted")


# ---------------------------------------------------------------------------
# Review workflow
# ---------------------------------------------------------------------------

@router.post("/{draft_id}/submit", response_model=CaseStudyResponse)
async def submit_draft(
    draft_id: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> CaseStudyResponse:
    case_study = await service.submit_draft(draft_id)
    return CaseStudyResponse(case_study=case_study, message="Draft submitted for review")


@router.post("/{draft_id}/approve", response_model=CaseStudyResponse)
async def approve_draft(
    draft_id: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> CaseStudyResponse:
    """Approve an under-review draft. The draft itself is kept."""
    case_study = await service.approve(draft_id)
    return CaseStudyResponse(case_study=case_study, message="Draft approved")


@router.post("/{draft_id}/reject", response_model=CaseStudyResponse)
async def reject_draft(
    draft_id: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> CaseStudyResponse:
    """Reject an under-review draft. The draft itself is kept."""
    case_study = await service.reject(draft_id)
    return CaseStudyResponse(case_study=case_study, message="Draft rejected")


@router.put("/{draft_id}/status", response_model=DraftResponse)
async def update_draft_status(
    draft_id: str,
    body: StatusUpdateRequest,
    service: CaseStudyService = Depends(get_case_study_service),
) -> DraftResponse:
    draft = await service.update_draft_status(draft_id, body.status)
    return DraftResponse(draft=draft, message=f"Status updated to {draft.status.value}")


# ---------------------------------------------------------------------------
# Review comments
# ---------------------------------------------------------------------------

@router.get("/{draft_id}/comments", response_model=CommentListResponse)
async def list_comments(
    draft_id: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> CommentListResponse:
    comments = await service.list_draft_comments(draft_id)
    return CommentListResponse(comments=comments)


@router.post(
    "/{draft_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    draft_id: str,
    body: CommentCreateRequest,
    service: CaseStudyService = Depends(get_case_study_service),
) -> CommentResponse:
    comment = await service.add_draft_comment(draft_id, body.comment, body.author)
    return CommentResponse(comment=comment)
