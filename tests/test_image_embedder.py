"""Tests for diagram resolution and image sizing."""
import asyncio

import pytest

from casebook.models.schemas import DiagramRef
from casebook.services.blob_store import MemoryBlobStore
from casebook.services.image_embedder import (
    FULL_MAX_SIZE,
    ONE_PAGER_MAX_SIZE,
    ImageEmbedder,
    calculate_image_dimensions,
    read_image_size,
)

from conftest import png_bytes


@pytest.mark.parametrize(
    "size, one_pager, expected",
    [
        ((1160, 870), False, (580, 435)),     # halved to fit the width
        ((400, 1000), False, (174, 435)),     # height-bound portrait
        ((1040, 780), True, (520, 390)),
        ((400, 300), False, (580, 435)),      # smaller than the box, enlarged to fill it
        ((450, 300), False, (580, 387)),
        ((150, 100), False, (580, 387)),
        ((100, 50), False, (580, 290)),
        ((100, 20), False, (580, 116)),
        ((2000, 100), False, (580, 29)),      # wide strip
        ((100, 1000), False, (44, 435)),      # tall strip stays narrow
    ],
)
def test_calculate_image_dimensions(size, one_pager, expected):
    assert calculate_image_dimensions(*size, one_pager=one_pager) == expected


@pytest.mark.parametrize("width, height", [(None, 100), (0, 0), (-5, 10)])
def test_unknown_dimensions_use_the_box(width, height):
    assert calculate_image_dimensions(width, height) == FULL_MAX_SIZE
    assert calculate_image_dimensions(width, height, one_pager=True) == ONE_PAGER_MAX_SIZE


def test_aspect_ratio_preserved_when_shrinking():
    w, h = calculate_image_dimensions(2000, 1000)
    assert w <= FULL_MAX_SIZE[0] and h <= FULL_MAX_SIZE[1]
    assert abs(w / h - 2.0) < 0.02


def test_read_image_size():
    assert read_image_size(png_bytes(64, 32)) == (64, 32)
    assert read_image_size(b"not an image") is None


@pytest.mark.asyncio
async def test_resolve_prefers_explicit_key_then_folder():
    store = MemoryBlobStore()
    await store.put("uploads/x.png", b"explicit")
    await store.put("case-studies/cs/y.png", b"folder")
    embedder = ImageEmbedder(store, timeout=1, max_concurrent=2)

    explicit = DiagramRef(name="x", s3_key="uploads/x.png", file_name="y.png", type="image/png")
    by_folder = DiagramRef(name="y", s3_key="uploads/gone.png", file_name="y.png", type="image/png")

    assert await embedder.resolve(explicit, "cs") == b"explicit"
    assert await embedder.resolve(by_folder, "cs") == b"folder"


@pytest.mark.asyncio
async def test_resolve_returns_none_when_nothing_found():
    embedder = ImageEmbedder(MemoryBlobStore(), timeout=1, max_concurrent=1)
    ref = DiagramRef(name="missing.png", type="image/png")
    assert await embedder.resolve(ref, "cs") is None


@pytest.mark.asyncio
async def test_resolve_times_out_to_none():
    class SlowStore(MemoryBlobStore):
        async def get(self, key):
            await asyncio.sleep(1)
            return b"late"

    embedder = ImageEmbedder(SlowStore(), timeout=0.01, max_concurrent=1)
    ref = DiagramRef(name="slow.png", type="image/png")
    assert await embedder.resolve(ref, "cs") is None


@pytest.mark.asyncio
async def test_resolve_all_skips_non_images():
    store = MemoryBlobStore()
    await store.put("case-studies/cs/a.png", b"a")
    embedder = ImageEmbedder(store, timeout=1, max_concurrent=4)

    refs = [
        DiagramRef(name="a.png", type="image/png"),
        DiagramRef(name="a.png", type="image/png"),
        DiagramRef(name="spec.pdf", type="application/pdf"),
        DiagramRef(name="flow.svg", type="image/svg+xml"),
    ]
    assert await embedder.resolve_all(refs, "cs") == {"a.png": b"a"}
