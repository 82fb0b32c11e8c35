"""
Render synthesized blocks into a Word (.docx) package with python-docx.
"""
from __future__ import annotations

import dataclasses
import io
import logging
from typing import Sequence

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Emu, Inches, Pt, RGBColor

from casebook.models.schemas import DocumentMode
from casebook.services.document_synthesizer import Block, BlockKind

logger = logging.getLogger(__name__)

FONT_NAME = "Calibri"
BLACK = RGBColor(0, 0, 0)
EMU_PER_PIXEL = 9525  # 914400 EMU per inch / 96 dpi


@dataclasses.dataclass(frozen=True)
class LayoutProfile:
    title_size: Pt
    heading_size: Pt
    subheading_size: Pt
    body_size: Pt
    detail_size: Pt
    header_size: Pt
    footer_alignment: int
    footer_prefix: str
    margin: Inches = Inches(0.5)


FULL_LAYOUT = LayoutProfile(
    title_size=Pt(16),
    heading_size=Pt(14),
    subheading_size=Pt(12),
    body_size=Pt(11),
    detail_size=Pt(10),
    header_size=Pt(9),
    footer_alignment=WD_ALIGN_PARAGRAPH.CENTER,
    footer_prefix="Page ",
)

ONE_PAGER_LAYOUT = LayoutProfile(
    title_size=Pt(16),
    heading_size=Pt(12),
    subheading_size=Pt(11),
    body_size=Pt(10),
    detail_size=Pt(9),
    header_size=Pt(9),
    footer_alignment=WD_ALIGN_PARAGRAPH.RIGHT,
    footer_prefix="",
)

LAYOUTS = {
    DocumentMode.FULL: FULL_LAYOUT,
    DocumentMode.ONE_PAGER: ONE_PAGER_LAYOUT,
}


# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------

def _style_run(run, size, bold=False, italic=False):
    run.font.name = FONT_NAME
    run.font.size = size
    run.font.bold = bold
    run.font.italic = italic
    run.font.color.rgb = BLACK
    return run


def _add_bottom_border(paragraph) -> None:
    p_pr = paragraph._p.get_or_add_pPr()
    borders = OxmlElement("w:pBdr")
    bottom = OxmlElement("w:bottom")
    bottom.set(qn("w:val"), "single")
    bottom.set(qn("w:sz"), "6")
    bottom.set(qn("w:space"), "1")
    bottom.set(qn("w:color"), "000000")
    borders.append(bottom)
    p_pr.append(borders)


def _add_page_number_field(paragraph) -> None:
    field = OxmlElement("w:fldSimple")
    field.set(qn("w:instr"), "PAGE")
    run = OxmlElement("w:r")
    text = OxmlElement("w:t")
    text.text = "1"
    run.append(text)
    field.append(run)
    paragraph._p.append(field)


def _setup_document(title: str, layout: LayoutProfile):
    doc = Document()

    normal = doc.styles["Normal"]
    normal.font.name = FONT_NAME
    normal.font.size = layout.body_size

    section = doc.sections[0]
    section.top_margin = layout.margin
    section.bottom_margin = layout.margin
    section.left_margin = layout.margin
    section.right_margin = layout.margin

    header = section.header.paragraphs[0]
    header.alignment = WD_ALIGN_PARAGRAPH.RIGHT
    _style_run(header.add_run(title), layout.header_size)

    footer = section.footer.paragraphs[0]
    footer.alignment = layout.footer_alignment
    if layout.footer_prefix:
        _style_run(footer.add_run(layout.footer_prefix), layout.header_size)
    _add_page_number_field(footer)
    return doc


# ---------------------------------------------------------------------------
# Block rendering
# ---------------------------------------------------------------------------

def _render_image(doc, block: Block, layout: LayoutProfile) -> None:
    paragraph = doc.add_paragraph()
    paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
    try:
        paragraph.add_run().add_picture(
            io.BytesIO(block.image),
            width=Emu(block.width * EMU_PER_PIXEL),
            height=Emu(block.height * EMU_PER_PIXEL),
        )
    except Exception as exc:  # truncated headers raise assorted error types
        logger.warning("Could not embed image '%s': %s", block.text, exc)
        paragraph.alignment = WD_ALIGN_PARAGRAPH.LEFT
        # python-docx may leave a partial run behind
        for run in list(paragraph.runs):
            run._r.getparent().remove(run._r)
        _style_run(paragraph.add_run(f"• {block.text}"), layout.detail_size)


def _render_block(doc, block: Block, layout: LayoutProfile) -> None:
    kind = block.kind

    if kind == BlockKind.TITLE:
        paragraph = doc.add_paragraph()
        _style_run(paragraph.add_run(block.text), layout.title_size, bold=True)
        paragraph.paragraph_format.space_after = Pt(12)
        _add_bottom_border(paragraph)

    elif kind == BlockKind.SUBTITLE:
        paragraph = doc.add_paragraph()
        _style_run(paragraph.add_run(block.text), layout.detail_size, italic=True)

    elif kind in (BlockKind.HEADING, BlockKind.SUBHEADING):
        level = 1 if kind == BlockKind.HEADING else 2
        size = layout.heading_size if level == 1 else layout.subheading_size
        heading = doc.add_heading("", level=level)
        _style_run(heading.add_run(block.text), size, bold=True)

    elif kind == BlockKind.PARAGRAPH:
        paragraph = doc.add_paragraph()
        _style_run(paragraph.add_run(block.text), layout.body_size)

    elif kind in (BlockKind.FIELD, BlockKind.BULLET):
        paragraph = doc.add_paragraph()
        prefix = "• " if kind == BlockKind.BULLET else ""
        _style_run(paragraph.add_run(f"{prefix}{block.label}: "), layout.body_size, bold=True)
        if block.text:
            _style_run(paragraph.add_run(block.text), layout.body_size)

    elif kind == BlockKind.CAPTION:
        paragraph = doc.add_paragraph()
        paragraph.paragraph_format.space_before = Pt(8)
        _style_run(paragraph.add_run(block.text), layout.detail_size, bold=True)

    elif kind == BlockKind.IMAGE:
        _render_image(doc, block, layout)

    elif kind == BlockKind.REFERENCE:
        paragraph = doc.add_paragraph()
        _style_run(paragraph.add_run(block.text), layout.detail_size, italic=True)

    elif kind == BlockKind.FALLBACK:
        paragraph = doc.add_paragraph()
        _style_run(paragraph.add_run(block.text), layout.detail_size)

    elif kind == BlockKind.SPACER:
        doc.add_paragraph()


def render_docx(blocks: Sequence[Block], title: str, mode: DocumentMode) -> bytes:
    """Pack ``blocks`` into a .docx file and return its bytes."""
    layout = LAYOUTS[DocumentMode(mode)]
    doc = _setup_document(title or "Case Study", layout)
    for block in blocks:
        _render_block(doc, block, layout)

    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()
