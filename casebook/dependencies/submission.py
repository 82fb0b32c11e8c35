"""
Request-body dependency for questionnaire submissions.

Submissions come either as a JSON object or as multipart form data carrying
text fields plus diagram files (``architectureDiagrams``,
``workstream-{i}-diagrams``). Both are reduced to a plain dict of raw fields
and a list of ``UploadedDiagram``; field coercion happens later in
``services.form_parser``.
"""
from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any, Dict, List

from fastapi import Request
from starlette.datastructures import UploadFile

from casebook.core.exceptions import ValidationError
from casebook.services.case_study_service import UploadedDiagram
from casebook.utils.helpers import content_type_for

logger = logging.getLogger(__name__)

_FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


@dataclasses.dataclass
class Submission:
    fields: Dict[str, Any]
    uploads: List[UploadedDiagram]


async def get_submission(request: Request) -> Submission:
    content_type = request.headers.get("content-type", "")

    if content_type.startswith(_FORM_TYPES):
        form = await request.form()
        fields: Dict[str, Any] = {}
        uploads: List[UploadedDiagram] = []
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if not value.filename:
                    continue
                uploads.append(
                    UploadedDiagram(
                        field_name=key,
                        file_name=value.filename,
                        content_type=value.content_type or content_type_for(value.filename),
                        data=await value.read(),
                    )
                )
            else:
                fields[key] = value
        logger.debug("Form submission: %d fields, %d files", len(fields), len(uploads))
        return Submission(fields=fields, uploads=uploads)

    body = await request.body()
    if not body.strip():
        return Submission(fields={}, uploads=[])
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise ValidationError("Request body must be JSON or multipart form data") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return Submission(fields=payload, uploads=[])
