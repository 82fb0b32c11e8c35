"""Database and schema models for Casebook."""
from casebook.models.database_models import (
    DraftRow,
    CaseStudyRow,
    ReviewCommentRow,
)
from casebook.models.schemas import (
    CaseStudyStatus,
    DocumentMode,
    DiagramRef,
    Workstream,
    DiagramSection,
    CustomMetric,
    BasicInfo,
    Content,
    Metrics,
    Technical,
    Questionnaire,
    DraftData,
    Draft,
    CaseStudy,
    ReviewComment,
)

__all__ = [
    # Database models
    "DraftRow",
    "CaseStudyRow",
    "ReviewCommentRow",
    # Pydantic schemas
    "CaseStudyStatus",
    "DocumentMode",
    "DiagramRef",
    "Workstream",
    "DiagramSection",
    "CustomMetric",
    "BasicInfo",
    "Content",
    "Metrics",
    "Technical",
    "Questionnaire",
    "DraftData",
    "Draft",
    "CaseStudy",
    "ReviewComment",
]
