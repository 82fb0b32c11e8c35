"""Tests for .docx packing and the document service."""
import asyncio
import io
from datetime import date, datetime, timezone

import pytest
from docx import Document

from casebook.core.exceptions import DocumentGenerationError
from casebook.models.schemas import (
    BasicInfo,
    CaseStudy,
    CaseStudyStatus,
    Content,
    DiagramRef,
    DiagramSection,
    DocumentMode,
    Questionnaire,
)
from casebook.services.blob_store import MemoryBlobStore
from casebook.services.document_service import DocumentService, build_documents
from casebook.services.document_synthesizer import (
    RESULTS_PLACEHOLDER,
    Block,
    BlockKind,
    synthesize,
)
from casebook.services.docx_renderer import render_docx
from casebook.services.image_embedder import ImageEmbedder
from casebook.utils.helpers import DOCX_CONTENT_TYPE

from conftest import png_bytes

NOW = datetime(2026, 10, 18, tzinfo=timezone.utc)


def make_case_study(**content) -> CaseStudy:
    return CaseStudy(
        id="cs-1",
        folder_name="cst12",
        original_title="cst12",
        status=CaseStudyStatus.UNDER_REVIEW,
        created_at=NOW,
        updated_at=NOW,
        labels={"client": ["Acme"]},
        questionnaire=Questionnaire(
            basic_info=BasicInfo(title="cst12", duration="3 months"),
            content=Content(**content),
        ),
    )


def paragraph_texts(data: bytes):
    return [p.text for p in Document(io.BytesIO(data)).paragraphs]


def test_rendered_document_is_readable():
    cs = make_case_study(challenge="c", solution="s")
    data = render_docx(synthesize(cs, DocumentMode.FULL, {}, date(2026, 10, 18)), cs.title, DocumentMode.FULL)

    texts = paragraph_texts(data)
    assert "cst12" in texts
    assert "Generated on: October 18, 2026" in texts
    assert "Project Duration: 3 months" in texts
    assert "Client: Acme" in texts
    assert "Solution Approach" in texts
    assert RESULTS_PLACEHOLDER in texts


def test_header_carries_title():
    data = render_docx([Block(BlockKind.TITLE, "title", text="Hello")], "Hello", DocumentMode.ONE_PAGER)
    doc = Document(io.BytesIO(data))
    assert doc.sections[0].header.paragraphs[0].text == "Hello"


def test_embedded_image_and_corrupt_image_fallback():
    blocks = [
        Block(BlockKind.IMAGE, "architecture_diagrams", text="ok.png (image/png)",
              image=png_bytes(60, 40), width=300, height=200),
        Block(BlockKind.IMAGE, "architecture_diagrams", text="bad.png (image/png)",
              image=b"garbage", width=300, height=200),
    ]
    doc = Document(io.BytesIO(render_docx(blocks, "T", DocumentMode.FULL)))

    assert len(doc.inline_shapes) == 1
    assert "• bad.png (image/png)" in [p.text for p in doc.paragraphs]


TRUNCATED_IMAGES = {
    "short-ihdr.png": b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR\x00\x00",
    "signature-only.png": b"\x89PNG\r\n\x1a\n",
    "short.gif": b"GIF89a\x01",
}


@pytest.mark.parametrize("name", sorted(TRUNCATED_IMAGES))
def test_truncated_image_header_falls_back_to_text(name):
    block = Block(BlockKind.IMAGE, "architecture_diagrams", text=f"{name} (image/png)",
                  image=TRUNCATED_IMAGES[name], width=580, height=435)
    doc = Document(io.BytesIO(render_docx([block], "T", DocumentMode.FULL)))

    assert len(doc.inline_shapes) == 0
    assert f"• {name} (image/png)" in [p.text for p in doc.paragraphs]


def test_build_documents_survives_truncated_diagrams():
    refs = [DiagramRef(name=name, type="image/png", s3_key=f"k/{name}") for name in sorted(TRUNCATED_IMAGES)]
    cs = make_case_study(architecture_diagrams=[DiagramSection(diagrams=refs)])
    images = {f"k/{name}": data for name, data in TRUNCATED_IMAGES.items()}

    documents = build_documents(cs, images, date(2026, 10, 18))

    for data in (documents.main_document, documents.one_pager):
        assert len(Document(io.BytesIO(data)).inline_shapes) == 0
    assert "• short.gif (image/png)" in paragraph_texts(documents.main_document)


def test_build_documents_produces_both_files():
    documents = build_documents(make_case_study(overview="o"), {}, date(2026, 10, 18))
    full = paragraph_texts(documents.main_document)
    one_pager = paragraph_texts(documents.one_pager)

    assert "Solution Approach" in full
    assert "Solution" not in one_pager
    assert not any(t.startswith("Generated on") for t in one_pager)


@pytest.mark.asyncio
async def test_prepare_then_upload_documents():
    store = MemoryBlobStore()
    await store.put("case-studies/cst12/arch.png", png_bytes(800, 600))
    cs = make_case_study(
        architecture_diagrams=[DiagramSection(diagrams=[DiagramRef(name="arch.png", type="image/png")])]
    )
    service = DocumentService(store, ImageEmbedder(store, timeout=1, max_concurrent=2), timeout=30)

    published, documents = await service.prepare(cs)
    assert not await store.exists(published.document_key)

    await service.upload_documents(published, documents)

    assert published.document_key == "case-studies/cst12/cst12.docx"
    assert published.one_pager_key == "case-studies/cst12/cst12-one-pager.docx"
    assert published.file_name == "cst12.docx"
    assert store.content_types[published.document_key] == DOCX_CONTENT_TYPE
    doc = Document(io.BytesIO(await store.get(published.document_key)))
    assert len(doc.inline_shapes) == 1


@pytest.mark.asyncio
async def test_generation_timeout_is_reported():
    class StalledEmbedder(ImageEmbedder):
        async def resolve_all(self, refs, folder_name):
            await asyncio.sleep(1)
            return {}

    store = MemoryBlobStore()
    service = DocumentService(store, StalledEmbedder(store), timeout=0.01)

    with pytest.raises(DocumentGenerationError) as excinfo:
        await service.generate_documents(make_case_study())
    assert excinfo.value.timed_out
