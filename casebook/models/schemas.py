"""
Pydantic schemas for case-study records and request/response validation.

Wire format is camelCase (``teamSize``, ``originalDraftId``); Python
attributes are snake_case. Every model accepts either spelling on input.
"""
from pydantic import BaseModel, Field, ConfigDict, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class CamelModel(BaseModel):
    """Base for every wire-facing model."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        """JSON-safe camelCase dict, as stored in payload columns and blobs."""
        return self.model_dump(mode="json", by_alias=True)


# Enums
class CaseStudyStatus(str, Enum):
    """Lifecycle status shared by drafts and case studies."""

    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PUBLISHED = "published"


class DocumentMode(str, Enum):
    """Rendering mode of the document synthesizer."""

    FULL = "full"
    ONE_PAGER = "one_pager"


# Questionnaire building blocks
class DiagramRef(CamelModel):
    """Reference to an uploaded diagram file."""

    name: str = ""
    file_name: Optional[str] = None
    s3_key: Optional[str] = None
    type: str = ""
    size: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data: Any) -> Any:
        # Older clients sent ``filename`` and ``mimetype``
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("fileName") and not data.get("file_name") and data.get("filename"):
            data["fileName"] = data["filename"]
        if not data.get("type") and data.get("mimetype"):
            data["type"] = data["mimetype"]
        if not data.get("name"):
            data["name"] = data.get("fileName") or data.get("file_name") or ""
        return data

    @property
    def display_name(self) -> str:
        return self.name or self.file_name or "Diagram"

    @property
    def is_image(self) -> bool:
        """Raster images are embedded; SVG and everything else are only referenced."""
        mime = (self.type or "").lower()
        return mime.startswith("image/") and "svg" not in mime

    @property
    def lookup_key(self) -> str:
        """Stable key identifying this reference inside a case study."""
        return self.s3_key or self.file_name or self.name


class Workstream(CamelModel):
    """Named implementation sub-section with its own description and diagrams."""

    name: str = ""
    description: str = ""
    diagrams: List[DiagramRef] = Field(default_factory=list)

    @property
    def has_content(self) -> bool:
        return bool(self.name.strip() or self.description.strip())


class DiagramSection(Workstream):
    """Group of architecture diagrams. Same shape as a workstream."""


class CustomMetric(CamelModel):
    name: str = ""
    value: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.name.strip() and self.value.strip())


class BasicInfo(CamelModel):
    title: str = ""
    duration: str = ""
    team_size: str = ""
    point_of_contact: str = ""
    customer: Optional[str] = None
    industry: Optional[str] = None
    use_case: Optional[str] = None


class Content(CamelModel):
    overview: str = ""
    challenge: str = ""
    solution: str = ""
    implementation: str = ""
    implementation_workstreams: List[Workstream] = Field(default_factory=list)
    architecture_diagrams: List[DiagramSection] = Field(default_factory=list)
    results: str = ""
    lessons_learned: str = ""
    conclusion: str = ""
    executive_summary: str = ""


class Metrics(CamelModel):
    performance_improvement: str = ""
    cost_reduction: str = ""
    cost_savings: str = ""
    time_savings: str = ""
    user_satisfaction: str = ""
    other_benefits: str = ""


class Technical(CamelModel):
    aws_services: List[str] = Field(default_factory=list)
    architecture: str = ""
    technologies: str = ""


class Questionnaire(CamelModel):
    """Nested questionnaire shape consumed by the document synthesizer."""

    basic_info: BasicInfo = Field(default_factory=BasicInfo)
    content: Content = Field(default_factory=Content)
    metrics: Metrics = Field(default_factory=Metrics)
    technical: Optional[Technical] = None


class DraftData(CamelModel):
    """Flat questionnaire input, as submitted by the authoring form."""

    model_config = ConfigDict(extra="ignore")

    title: str = ""
    duration: str = ""
    team_size: str = ""
    point_of_contact: str = ""
    customer: Optional[str] = None
    industry: Optional[str] = None
    use_case: Optional[str] = None

    overview: str = ""
    challenge: str = ""
    solution: str = ""
    implementation: str = ""
    results: str = ""
    lessons_learned: str = ""
    conclusion: str = ""
    executive_summary: str = ""

    performance_improvement: str = ""
    cost_reduction: str = ""
    cost_savings: str = ""
    time_savings: str = ""
    user_satisfaction: str = ""
    other_benefits: str = ""

    aws_services: List[str] = Field(default_factory=list)
    architecture: str = ""
    technologies: str = ""

    labels: Dict[str, List[str]] = Field(default_factory=dict)
    custom_metrics: List[CustomMetric] = Field(default_factory=list)
    implementation_workstreams: List[Workstream] = Field(default_factory=list)
    architecture_diagrams: List[DiagramSection] = Field(default_factory=list)


# Records
class Draft(CamelModel):
    """Unpublished, freely editable submission. Retained after approval/rejection."""

    id: str
    title: str
    status: CaseStudyStatus = CaseStudyStatus.DRAFT
    created_at: datetime
    updated_at: datetime
    data: DraftData = Field(default_factory=DraftData)


class CaseStudy(CamelModel):
    """Lifecycle-tracked, versioned record derived from a draft."""

    id: str
    folder_name: str
    original_title: str
    status: CaseStudyStatus
    version: str = "0.1"
    previous_version: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    original_draft_id: Optional[str] = None
    labels: Dict[str, List[str]] = Field(default_factory=dict)
    custom_metrics: List[CustomMetric] = Field(default_factory=list)
    questionnaire: Questionnaire = Field(default_factory=Questionnaire)
    file_name: Optional[str] = None
    one_pager_file_name: Optional[str] = None
    document_key: Optional[str] = None
    one_pager_key: Optional[str] = None

    @property
    def title(self) -> str:
        return self.questionnaire.basic_info.title or self.original_title


class ReviewComment(CamelModel):
    comment: str
    author: str = "Anonymous"
    timestamp: datetime


# Requests
class StatusUpdateRequest(CamelModel):
    status: CaseStudyStatus


class CommentCreateRequest(CamelModel):
    comment: str = ""
    author: Optional[str] = None


class LabelsUpdateRequest(CamelModel):
    # Any of the accepted label shapes; normalized by the service
    labels: Any = None


# Responses
class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_count: int
    limit: int
    has_next_page: bool
    has_prev_page: bool


class CaseStudyResponse(CamelModel):
    success: bool = True
    case_study: CaseStudy
    message: Optional[str] = None


class CaseStudyListResponse(CamelModel):
    success: bool = True
    case_studies: List[CaseStudy]
    pagination: Pagination
    filters: Dict[str, Any] = Field(default_factory=dict)


class DraftResponse(CamelModel):
    success: bool = True
    draft: Draft
    message: Optional[str] = None


class DraftListResponse(CamelModel):
    success: bool = True
    drafts: List[Draft]


class CommentResponse(CamelModel):
    success: bool = True
    comment: ReviewComment


class CommentListResponse(CamelModel):
    success: bool = True
    comments: List[ReviewComment]


class LabelsResponse(CamelModel):
    success: bool = True
    labels: Dict[str, List[str]]
    message: Optional[str] = None


class FlatLabel(CamelModel):
    category: str
    label: str
    value: str


class FlatLabelsResponse(CamelModel):
    success: bool = True
    labels: List[FlatLabel]


class DocumentsResponse(CamelModel):
    success: bool = True
    folder_name: str
    document_key: str
    one_pager_key: str
    download_url: str
    one_pager_download_url: str


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class HealthCheckResponse(CamelModel):
    status: str
    database: str
    blob_store: str
    timestamp: datetime
