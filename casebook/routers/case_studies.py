"""
Case-study endpoints.

POST   /create                              - submit questionnaire data for review
GET    /                                    - list with search, filters, pagination
GET    /{folder}                            - fetch one case study
DELETE /{folder}                            - delete record and stored files
PUT    /{folder}/labels                     - replace labels
PUT    /{folder}/status                     - lifecycle status change
PUT    /{folder}/incorporate-feedback       - revise content, bump minor version
POST   /{folder}/documents                  - regenerate both documents
GET    /{folder}/comments                   - review comments
POST   /{folder}/comments                   - add a review comment

GET    /download/{folder}/{file}            - full .docx
GET    /download-one-pager/{folder}/{file}  - one-pager .docx
GET    /file/{folder}/{file}                - uploaded diagram
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import Response

from casebook.dependencies.services import get_case_study_service
from casebook.dependencies.submission import Submission, get_submission
from casebook.models.schemas import (
    CaseStudyListResponse,
    CaseStudyResponse,
    CaseStudyStatus,
    CommentCreateRequest,
    CommentListResponse,
    CommentResponse,
    DocumentsResponse,
    LabelsUpdateRequest,
    MessageResponse,
    StatusUpdateRequest,
)
from casebook.services.case_study_service import CaseStudyService
from casebook.utils.helpers import DOCX_CONTENT_TYPE, content_type_for

logger = logging.getLogger(__name__)

router = APIRouter()

_LIST_PARAMS = {"search", "status", "page", "limit"}


def _label_filters(request: Request) -> Dict[str, List[str]]:
    """Any query parameter besides the listing ones is a label category filter."""
    filters: Dict[str, List[str]] = {}
    for key, value in request.query_params.multi_items():
        if key in _LIST_PARAMS or not value:
            continue
        filters.setdefault(key, []).extend(v.strip() for v in value.split(",") if v.strip())
    return filters


def _attachment(data: bytes, file_name: str, media_type: str) -> Response:
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

@router.post(
    "/create",
    response_model=CaseStudyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_case_study(
    submission: Submission = Depends(get_submission),
    service: CaseStudyService = Depends(get_case_study_service),
) -> CaseStudyResponse:
    """
    Submit questionnaire data for review.

    - Accepts JSON or multipart form data (diagram files under
      ``architectureDiagrams`` / ``workstream-{i}-diagrams``)
    - ``title``, ``challenge``, ``solution`` and ``results`` are required
    - Resubmitting the same draft or title updates the existing case study
    """
    case_study = await service.create_or_submit(submission.fields, submission.uploads)
    return CaseStudyResponse(case_study=case_study, message="Case study submitted for review")


# ---------------------------------------------------------------------------
# Listing / lookup
# ---------------------------------------------------------------------------

@router.get("/", response_model=CaseStudyListResponse)
async def list_case_studies(
    request: Request,
    search: Optional[str] = Query(None, description="Free-text search"),
    status_filter: Optional[CaseStudyStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    service: CaseStudyService = Depends(get_case_study_service),
) -> CaseStudyListResponse:
    """
    List case studies, newest first.

    Label filters are passed as ``?<category>=a,b``; a case study matches a
    category when it carries any of the listed values.
    """
    filters = _label_filters(request)
    items, pagination = await service.list_case_studies(
        search=search,
        status=status_filter,
        label_filters=filters,
        page=page,
        limit=limit,
    )
    return CaseStudyListResponse(
        case_studies=items,
        pagination=pagination,
        filters={
            "search": search,
            "status": status_filter.value if status_filter else None,
            "labels": filters,
        },
    )


@router.get("/download/{folder_name}/{file_name}")
async def download_document(
    folder_name: str,
    file_name: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> Response:
    """Stream the full .docx document."""
    data = await service.read_file(folder_name, file_name)
    return _attachment(data, file_name, DOCX_CONTENT_TYPE)


@router.get("/download-one-pager/{folder_name}/{file_name}")
async def download_one_pager(
    folder_name: str,
    file_name: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> Response:
    """Stream the one-pager .docx document."""
    data = await service.read_file(folder_name, file_name)
    return _attachment(data, file_name, DOCX_CONTENT_TYPE)


@router.get("/file/{folder_name}/{file_name}")
async def get_file(
    folder_name: str,
    file_name: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> Response:
    """Stream an uploaded diagram file."""
    data = await service.read_file(folder_name, file_name)
    return Response(content=data, media_type=content_type_for(file_name))


@router.get("/{folder_name}", response_model=CaseStudyResponse)
async def get_case_study(
    folder_name: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> CaseStudyResponse:
    case_study = await service.get_case_study(folder_name)
    return CaseStudyResponse(case_study=case_study)


@router.delete("/{folder_name}", response_model=MessageResponse)
async def delete_case_study(
    folder_name: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> MessageResponse:
    """Delete a case study and everything stored under its folder. Published ones are kept."""
    await service.delete_case_study(folder_name)
    return MessageResponse(message=f"Case study '{folder_name}' deleted")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@router.put("/{folder_name}/status", response_model=CaseStudyResponse)
async def update_status(
    folder_name: str,
    body: StatusUpdateRequest,
    service: CaseStudyService = Depends(get_case_study_service),
) -> CaseStudyResponse:
    """
    Move a case study through its lifecycle.

    Publishing pins the version to 1.0; a published case study rejects any
    other status with an "immutable" error.
    """
    case_study = await service.update_status(folder_name, body.status)
    return CaseStudyResponse(
        case_study=case_study,
        message=f"Status updated to {case_study.status.value}",
    )


@router.put("/{folder_name}/incorporate-feedback", response_model=CaseStudyResponse)
async def incorporate_feedback(
    folder_name: str,
    submission: Submission = Depends(get_submission),
    service: CaseStudyService = Depends(get_case_study_service),
) -> CaseStudyResponse:
    """Merge the supplied fields, bump the minor version and resubmit for review."""
    case_study = await service.incorporate_feedback(
        folder_name, submission.fields, submission.uploads
    )
    return CaseStudyResponse(
        case_study=case_study,
        message=f"Feedback incorporated, now version {case_study.version}",
    )


@router.put("/{folder_name}/labels", response_model=CaseStudyResponse)
async def update_labels(
    folder_name: str,
    body: LabelsUpdateRequest,
    service: CaseStudyService = Depends(get_case_study_service),
) -> CaseStudyResponse:
    case_study = await service.update_labels(folder_name, body.labels)
    return CaseStudyResponse(case_study=case_study, message="Labels updated")


@router.post("/{folder_name}/documents", response_model=DocumentsResponse)
async def regenerate_documents(
    folder_name: str,
    request: Request,
    service: CaseStudyService = Depends(get_case_study_service),
) -> DocumentsResponse:
    """Rebuild both .docx files from the stored record."""
    case_study = await service.regenerate_documents(folder_name)
    base = str(request.base_url).rstrip("/") + "/api/case-studies"
    return DocumentsResponse(
        folder_name=case_study.folder_name,
        document_key=case_study.document_key,
        one_pager_key=case_study.one_pager_key,
        download_url=f"{base}/download/{case_study.folder_name}/{case_study.file_name}",
        one_pager_download_url=(
            f"{base}/download-one-pager/{case_study.folder_name}/{case_study.one_pager_file_name}"
        ),
    )


# ---------------------------------------------------------------------------
# Review comments
# ---------------------------------------------------------------------------

@router.get("/{folder_name}/comments", response_model=CommentListResponse)
async def list_comments(
    folder_name: str,
    service: CaseStudyService = Depends(get_case_study_service),
) -> CommentListResponse:
    comments = await service.list_case_study_comments(folder_name)
    return CommentListResponse(comments=comments)


@router.post(
    "/{folder_name}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    folder_name: str,
    body: CommentCreateRequest,
    service: CaseStudyService = Depends(get_case_study_service),
) -> CommentResponse:
    comment = await service.add_case_study_comment(folder_name, body.comment, body.author)
    return CommentResponse(comment=comment)
