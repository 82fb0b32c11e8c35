"""
Common utility functions and helpers.
"""
from datetime import date, datetime, timezone
from typing import Optional
import os
import re
import time
import uuid


DOCX_CONTENT_TYPE = (
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
)

_CONTENT_TYPES = {
    ".docx": DOCX_CONTENT_TYPE,
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".json": "application/json",
}


def sanitize_title(title: str, max_length: int = 50) -> str:
    """
    Derive a case-study folder name (slug) from its title.

    Args:
        title: Human-readable title
        max_length: Maximum slug length

    Returns:
        Lowercase slug of letters, digits and hyphens
    """
    slug = title.lower()
    slug = re.sub(r'[^a-z0-9\s]', '', slug)
    slug = re.sub(r'\s+', '-', slug.strip())
    slug = slug[:max_length].strip('-')
    return slug or "case-study"


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def format_generation_date(day: date) -> str:
    """Render a date as e.g. ``October 18, 2026``."""
    return f"{day:%B} {day.day}, {day.year}"


def unique_blob_name(prefix: str, original_name: str) -> str:
    """
    Collision-free blob file name for an uploaded diagram.

    Args:
        prefix: Upload group, e.g. ``architecture`` or ``workstream-0``
        original_name: File name supplied by the client

    Returns:
        ``{prefix}-{millis}-{random}-{safe original name}``
    """
    base = os.path.basename(original_name or "file")
    safe = re.sub(r'[^A-Za-z0-9._-]', '_', base)
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}-{safe}"


def content_type_for(file_name: str, default: str = "application/octet-stream") -> str:
    """Guess a content type from a file extension."""
    ext = os.path.splitext(file_name)[1].lower()
    return _CONTENT_TYPES.get(ext, default)


def is_blank(value: Optional[str]) -> bool:
    """True for None, empty or whitespace-only strings."""
    return value is None or not str(value).strip()

