"""
Diagram resolution and image sizing for generated documents.

``ImageEmbedder.resolve`` fetches the bytes behind a ``DiagramRef`` from the
blob store, trying the explicit blob key first and then the file name inside
the case study's folder. It never raises: ``None`` means "render a text
fallback instead".

``calculate_image_dimensions`` fills the page content box with an image while
keeping its aspect ratio and a minimum readable size.
"""
from __future__ import annotations

import asyncio
import io
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from casebook.config import settings
from casebook.core.exceptions import StorageError
from casebook.models.schemas import CaseStudy, DiagramRef
from casebook.services.blob_store import BlobStore

logger = logging.getLogger(__name__)

# Layout boxes in pixels (96 dpi)
FULL_MAX_SIZE = (580, 435)
ONE_PAGER_MAX_SIZE = (520, 390)
MIN_SIZE = (300, 200)


def calculate_image_dimensions(
    width: Optional[float],
    height: Optional[float],
    one_pager: bool = False,
) -> Tuple[int, int]:
    """
    Fit ``width`` x ``height`` into the layout box for the mode.

    Every image fills the box width, then is clipped to the box height, so
    small diagrams are enlarged and large ones reduced. If the result is
    below the minimum size in both directions it is scaled up uniformly and
    clipped to the box again. Unknown dimensions yield the box.
    """
    max_w, max_h = ONE_PAGER_MAX_SIZE if one_pager else FULL_MAX_SIZE
    min_w, min_h = MIN_SIZE

    if not width or not height or width <= 0 or height <= 0:
        return max_w, max_h

    ratio = width / height
    w = float(max_w)
    h = w / ratio
    if h > max_h:
        h = max_h
        w = h * ratio

    if w < min_w and h < min_h:
        scale = min(min_w / w, min_h / h)
        w *= scale
        h *= scale
        if w > max_w:
            w = max_w
            h = w / ratio
        if h > max_h:
            h = max_h
            w = h * ratio

    return round(w), round(h)


def read_image_size(data: bytes) -> Optional[Tuple[int, int]]:
    """Pixel size of an encoded image, or None when Pillow cannot read it."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.debug("Could not read image size: %s", exc)
        return None


class ImageEmbedder:
    """
    Resolves diagram references to bytes.

    * Lookups run under a semaphore (MAX_CONCURRENT_IMAGE_FETCHES)
    * Each attempt is bounded by IMAGE_FETCH_TIMEOUT seconds
    * A failed lookup is logged and returned as None
    """

    def __init__(
        self,
        blob_store: BlobStore,
        timeout: Optional[float] = None,
        max_concurrent: Optional[int] = None,
    ) -> None:
        self.blob_store = blob_store
        self.timeout = timeout if timeout is not None else settings.IMAGE_FETCH_TIMEOUT
        self._semaphore = asyncio.Semaphore(max_concurrent or settings.MAX_CONCURRENT_IMAGE_FETCHES)

    @staticmethod
    def candidate_keys(ref: DiagramRef, folder_name: str) -> List[str]:
        keys = []
        if ref.s3_key:
            keys.append(ref.s3_key)
        file_name = ref.file_name or ref.name
        if file_name:
            fallback = f"case-studies/{folder_name}/{file_name}"
            if fallback not in keys:
                keys.append(fallback)
        return keys

    async def resolve(self, ref: DiagramRef, folder_name: str) -> Optional[bytes]:
        async with self._semaphore:
            for key in self.candidate_keys(ref, folder_name):
                try:
                    return await asyncio.wait_for(self.blob_store.get(key), timeout=self.timeout)
                except asyncio.TimeoutError:
                    logger.warning("Timed out fetching diagram '%s'", key)
                except StorageError as exc:
                    logger.info("Diagram lookup missed '%s': %s", key, exc)

        logger.warning(
            "Diagram '%s' could not be resolved; using text reference", ref.display_name
        )
        return None

    async def resolve_all(
        self,
        refs: Iterable[DiagramRef],
        folder_name: str,
    ) -> Dict[str, Optional[bytes]]:
        """Resolve every image reference concurrently, keyed by ``lookup_key``."""
        unique: Dict[str, DiagramRef] = {}
        for ref in refs:
            if ref.is_image and ref.lookup_key not in unique:
                unique[ref.lookup_key] = ref

        results = await asyncio.gather(
            *(self.resolve(ref, folder_name) for ref in unique.values())
        )
        return dict(zip(unique.keys(), results))


def diagram_refs(case_study: CaseStudy) -> List[DiagramRef]:
    """Every diagram reference in a case study, architecture sections first."""
    content = case_study.questionnaire.content
    refs: List[DiagramRef] = []
    for section in content.architecture_diagrams:
        refs.extend(section.diagrams)
    for workstream in content.implementation_workstreams:
        refs.extend(workstream.diagrams)
    return refs
