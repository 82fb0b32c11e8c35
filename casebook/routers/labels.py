"""
Label taxonomy endpoints.

GET /        - category -> values taxonomy (seeded with defaults on first use)
GET /flat    - one entry per (category, label)
GET /search  - flat entries whose label contains ``q``
PUT /        - replace the taxonomy (normalized)
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from casebook.dependencies.services import get_label_service
from casebook.models.schemas import (
    FlatLabel,
    FlatLabelsResponse,
    LabelsResponse,
    LabelsUpdateRequest,
)
from casebook.services.labels import LabelService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=LabelsResponse)
async def get_labels(service: LabelService = Depends(get_label_service)) -> LabelsResponse:
    return LabelsResponse(labels=await service.get_labels())


@router.get("/flat", response_model=FlatLabelsResponse)
async def get_flat_labels(service: LabelService = Depends(get_label_service)) -> FlatLabelsResponse:
    items = await service.get_flat_labels()
    return FlatLabelsResponse(labels=[FlatLabel(**item) for item in items])


@router.get("/search", response_model=FlatLabelsResponse)
async def search_labels(
    q: str = Query("", description="Substring to look for, case-insensitive"),
    service: LabelService = Depends(get_label_service),
) -> FlatLabelsResponse:
    items = await service.search_labels(q)
    return FlatLabelsResponse(labels=[FlatLabel(**item) for item in items])


@router.put("/", response_model=LabelsResponse)
async def replace_labels(
    body: LabelsUpdateRequest,
    service: LabelService = Depends(get_label_service),
) -> LabelsResponse:
    """Replace the whole taxonomy. Any accepted label shape is normalized first."""
    labels = await service.save_labels(body.labels)
    return LabelsResponse(labels=labels, message="Labels saved")
