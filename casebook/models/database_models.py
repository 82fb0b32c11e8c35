"""
SQLAlchemy ORM models for the Casebook record store.

Each row keeps the full camelCase JSON of its pydantic record in ``payload``;
the scalar columns duplicate the fields that are queried or guarded.
``row_version`` is the optimistic-concurrency counter bumped by every
compare-and-swap write.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    JSON,
)
from sqlalchemy.sql import func

from casebook.database import Base


class DraftRow(Base):
    """Stored draft submission."""

    __tablename__ = "drafts"

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, index=True)
    row_version = Column(Integer, nullable=False, default=1)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class CaseStudyRow(Base):
    """Stored case study, one per folder."""

    __tablename__ = "case_studies"

    id = Column(String(36), primary_key=True)
    folder_name = Column(String(255), nullable=False, unique=True, index=True)
    status = Column(String(32), nullable=False, index=True)
    version = Column(String(16), nullable=False)
    original_draft_id = Column(String(36), nullable=True, index=True)
    row_version = Column(Integer, nullable=False, default=1)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class ReviewCommentRow(Base):
    """Append-only review discussion entry for a draft id or case-study folder."""

    __tablename__ = "review_comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    target_id = Column(String(255), nullable=False, index=True)
    comment = Column(Text, nullable=False)
    author = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
