"""
Document synthesis: CaseStudy -> ordered list of layout blocks.

The synthesizer is a pure function of its inputs. Diagram bytes are resolved
beforehand (see ``image_embedder``) and passed in as a mapping, so nothing
here touches storage or the clock.

Section order is data, not control flow: each mode has a fixed tuple of
``SectionDescriptor(key, predicate, builder)`` entries, evaluated in order.
A section whose predicate is false emits nothing at all.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
from datetime import date
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from casebook.models.schemas import (
    CaseStudy,
    CustomMetric,
    DiagramRef,
    DocumentMode,
    Workstream,
)
from casebook.services.image_embedder import calculate_image_dimensions, read_image_size
from casebook.utils.helpers import format_generation_date, is_blank

logger = logging.getLogger(__name__)

CHALLENGE_PLACEHOLDER = "Challenge description not provided."
SOLUTION_PLACEHOLDER = "Solution description not provided."
RESULTS_PLACEHOLDER = "Results description not provided."


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------

class BlockKind(str, enum.Enum):
    TITLE = "title"
    SUBTITLE = "subtitle"          # "Generated on: ..." line
    HEADING = "heading"
    SUBHEADING = "subheading"
    PARAGRAPH = "paragraph"
    FIELD = "field"                # bold "label: " + value
    BULLET = "bullet"              # "• label: value"
    IMAGE = "image"
    CAPTION = "caption"            # diagram title above an image
    REFERENCE = "reference"        # italic non-image attachment line
    FALLBACK = "fallback"          # image that could not be resolved
    SPACER = "spacer"


@dataclasses.dataclass(frozen=True)
class Block:
    kind: BlockKind
    section: str
    text: str = ""
    label: Optional[str] = None
    image: Optional[bytes] = dataclasses.field(default=None, repr=False)
    width: int = 0
    height: int = 0


@dataclasses.dataclass(frozen=True)
class SynthesisContext:
    case_study: CaseStudy
    mode: DocumentMode
    images: Mapping[str, Optional[bytes]]
    generated_on: date

    @property
    def one_pager(self) -> bool:
        return self.mode == DocumentMode.ONE_PAGER

    @property
    def basic_info(self):
        return self.case_study.questionnaire.basic_info

    @property
    def content(self):
        return self.case_study.questionnaire.content

    @property
    def metrics(self):
        return self.case_study.questionnaire.metrics


Predicate = Callable[[SynthesisContext], bool]
Builder = Callable[[SynthesisContext, str], List[Block]]


@dataclasses.dataclass(frozen=True)
class SectionDescriptor:
    key: str
    predicate: Predicate
    builder: Builder


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _present(value: Optional[str]) -> bool:
    return not is_blank(value)


def standard_metrics(ctx: SynthesisContext) -> List[Tuple[str, str]]:
    m = ctx.metrics
    candidates = [
        ("Performance Improvement", m.performance_improvement),
        ("Cost Reduction", m.cost_reduction or m.cost_savings),
        ("Time Savings", m.time_savings),
        ("User Satisfaction", m.user_satisfaction),
    ]
    return [(label, value.strip()) for label, value in candidates if _present(value)]


def complete_custom_metrics(ctx: SynthesisContext) -> List[CustomMetric]:
    return [m for m in ctx.case_study.custom_metrics if m.is_complete]


def non_empty_labels(ctx: SynthesisContext) -> List[Tuple[str, List[str]]]:
    return [(category, values) for category, values in ctx.case_study.labels.items() if values]


def _category_title(category: str) -> str:
    return category[:1].upper() + category[1:]


def _has_metrics(ctx: SynthesisContext) -> bool:
    return bool(standard_metrics(ctx) or complete_custom_metrics(ctx))


def _diagram_blocks(ctx: SynthesisContext, section: str, ref: DiagramRef) -> List[Block]:
    blocks = [Block(BlockKind.CAPTION, section, text=ref.display_name)]
    reference_text = f"{ref.display_name} ({ref.type})"

    if not ref.is_image:
        blocks.append(Block(BlockKind.REFERENCE, section, text=f"📄 {reference_text}"))
        return blocks

    data = ctx.images.get(ref.lookup_key)
    if data is None:
        blocks.append(Block(BlockKind.FALLBACK, section, text=f"• {reference_text}"))
        return blocks

    size = read_image_size(data)
    width, height = calculate_image_dimensions(
        size[0] if size else None,
        size[1] if size else None,
        one_pager=ctx.one_pager,
    )
    blocks.append(
        Block(
            BlockKind.IMAGE,
            section,
            text=reference_text,
            image=data,
            width=width,
            height=height,
        )
    )
    return blocks


# ---------------------------------------------------------------------------
# Section builders
# ---------------------------------------------------------------------------

def _title(ctx: SynthesisContext, key: str) -> List[Block]:
    blocks = [Block(BlockKind.TITLE, key, text=ctx.case_study.title or "Case Study")]
    if not ctx.one_pager:
        blocks.append(
            Block(
                BlockKind.SUBTITLE,
                key,
                text=f"Generated on: {format_generation_date(ctx.generated_on)}",
            )
        )
    return blocks


def _background(ctx: SynthesisContext, key: str) -> List[Block]:
    info = ctx.basic_info
    blocks = [Block(BlockKind.HEADING, key, text="Background")]
    for label, value in (
        ("Project Duration", info.duration),
        ("Team Size", info.team_size),
        ("Point of Contact(s)", info.point_of_contact),
    ):
        if _present(value):
            blocks.append(Block(BlockKind.FIELD, key, label=label, text=value.strip()))
    return blocks


def _labels(ctx: SynthesisContext, key: str) -> List[Block]:
    blocks = [Block(BlockKind.SPACER, key)]
    for category, values in non_empty_labels(ctx):
        blocks.append(
            Block(BlockKind.FIELD, key, label=_category_title(category), text=", ".join(values))
        )
    return blocks


def _text_section(heading: str, attr: str, placeholder: Optional[str] = None) -> Builder:
    def build(ctx: SynthesisContext, key: str) -> List[Block]:
        value = getattr(ctx.content, attr)
        text = value.strip() if _present(value) else placeholder
        return [
            Block(BlockKind.HEADING, key, text=heading),
            Block(BlockKind.PARAGRAPH, key, text=text or ""),
        ]

    return build


def _key_metrics(ctx: SynthesisContext, key: str) -> List[Block]:
    blocks = [Block(BlockKind.HEADING, key, text="Key Metrics")]
    for label, value in standard_metrics(ctx):
        blocks.append(Block(BlockKind.FIELD, key, label=label, text=value))

    custom = complete_custom_metrics(ctx)
    if custom:
        blocks.append(Block(BlockKind.SUBHEADING, key, text="Additional Metrics:"))
        for metric in custom:
            blocks.append(
                Block(BlockKind.FIELD, key, label=metric.name.strip(), text=metric.value.strip())
            )
    return blocks


def _compact_metrics(ctx: SynthesisContext, key: str) -> List[Block]:
    blocks = [Block(BlockKind.HEADING, key, text="Key Metrics")]
    for label, value in standard_metrics(ctx):
        blocks.append(Block(BlockKind.BULLET, key, label=label, text=value))
    for metric in complete_custom_metrics(ctx):
        blocks.append(
            Block(BlockKind.BULLET, key, label=metric.name.strip(), text=metric.value.strip())
        )
    return blocks


def _architecture_diagrams(ctx: SynthesisContext, key: str) -> List[Block]:
    blocks = [Block(BlockKind.HEADING, key, text="Architecture Diagrams")]
    for section in ctx.content.architecture_diagrams:
        if not section.diagrams:
            continue
        if _present(section.name):
            blocks.append(Block(BlockKind.SUBHEADING, key, text=section.name.strip()))
        if _present(section.description):
            blocks.append(Block(BlockKind.PARAGRAPH, key, text=section.description.strip()))
        for ref in section.diagrams:
            blocks.extend(_diagram_blocks(ctx, key, ref))
    return blocks


def _workstream_blocks(ctx: SynthesisContext, key: str, index: int, ws: Workstream) -> List[Block]:
    name = ws.name.strip() if _present(ws.name) else f"Workstream {index + 1}"
    blocks = [Block(BlockKind.SUBHEADING, key, text=name)]
    if _present(ws.description):
        blocks.append(Block(BlockKind.PARAGRAPH, key, text=ws.description.strip()))
    if ws.diagrams:
        blocks.append(Block(BlockKind.FIELD, key, label="Associated Diagrams", text=""))
        for ref in ws.diagrams:
            blocks.extend(_diagram_blocks(ctx, key, ref))
    return blocks


def _workstreams(ctx: SynthesisContext, key: str) -> List[Block]:
    blocks = [Block(BlockKind.HEADING, key, text="Implementation Workstreams")]
    for index, ws in enumerate(ctx.content.implementation_workstreams):
        if ws.has_content:
            blocks.extend(_workstream_blocks(ctx, key, index, ws))
    return blocks


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def _always(ctx: SynthesisContext) -> bool:
    return True


def _content_present(attr: str) -> Predicate:
    return lambda ctx: _present(getattr(ctx.content, attr))


def _any_label(ctx: SynthesisContext) -> bool:
    return bool(non_empty_labels(ctx))


def _any_diagram(ctx: SynthesisContext) -> bool:
    return any(section.diagrams for section in ctx.content.architecture_diagrams)


def _any_workstream(ctx: SynthesisContext) -> bool:
    return any(ws.has_content for ws in ctx.content.implementation_workstreams)


# ---------------------------------------------------------------------------
# Section tables
# ---------------------------------------------------------------------------

FULL_SECTIONS: Tuple[SectionDescriptor, ...] = (
    SectionDescriptor("title", _always, _title),
    SectionDescriptor("background", _always, _background),
    SectionDescriptor("labels", _any_label, _labels),
    SectionDescriptor(
        "executive_summary",
        _content_present("executive_summary"),
        _text_section("Executive Summary", "executive_summary"),
    ),
    SectionDescriptor("key_metrics", _has_metrics, _key_metrics),
    SectionDescriptor("overview", _content_present("overview"), _text_section("Overview", "overview")),
    SectionDescriptor(
        "challenges", _always, _text_section("Challenges", "challenge", CHALLENGE_PLACEHOLDER)
    ),
    SectionDescriptor(
        "solution", _always, _text_section("Solution Approach", "solution", SOLUTION_PLACEHOLDER)
    ),
    SectionDescriptor("architecture_diagrams", _any_diagram, _architecture_diagrams),
    SectionDescriptor("implementation_workstreams", _any_workstream, _workstreams),
    SectionDescriptor("results", _always, _text_section("Results", "results", RESULTS_PLACEHOLDER)),
    SectionDescriptor(
        "lessons_learnt",
        _content_present("lessons_learned"),
        _text_section("Lessons Learnt", "lessons_learned"),
    ),
    SectionDescriptor(
        "conclusion", _content_present("conclusion"), _text_section("Conclusion", "conclusion")
    ),
)

ONE_PAGER_SECTIONS: Tuple[SectionDescriptor, ...] = (
    SectionDescriptor("title", _always, _title),
    SectionDescriptor("background", _always, _background),
    SectionDescriptor("labels", _any_label, _labels),
    SectionDescriptor("overview", _content_present("overview"), _text_section("Overview", "overview")),
    SectionDescriptor(
        "challenges", _content_present("challenge"), _text_section("Challenges", "challenge")
    ),
    SectionDescriptor("solution", _content_present("solution"), _text_section("Solution", "solution")),
    SectionDescriptor("results", _always, _text_section("Results", "results", RESULTS_PLACEHOLDER)),
    SectionDescriptor("key_metrics", _has_metrics, _compact_metrics),
)

SECTIONS_BY_MODE = {
    DocumentMode.FULL: FULL_SECTIONS,
    DocumentMode.ONE_PAGER: ONE_PAGER_SECTIONS,
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def synthesize(
    case_study: CaseStudy,
    mode: DocumentMode,
    images: Mapping[str, Optional[bytes]],
    generated_on: date,
) -> List[Block]:
    """
    Build the block list for ``case_study`` in ``mode``.

    Args:
        case_study: Record to render. Not modified.
        mode: FULL or ONE_PAGER.
        images: Diagram bytes keyed by ``DiagramRef.lookup_key``; a missing
            or None entry renders as a text fallback.
        generated_on: Date shown under the title.
    """
    ctx = SynthesisContext(case_study, DocumentMode(mode), images, generated_on)
    blocks: List[Block] = []
    for descriptor in SECTIONS_BY_MODE[ctx.mode]:
        if descriptor.predicate(ctx):
            blocks.extend(descriptor.builder(ctx, descriptor.key))
    return blocks


def section_keys(blocks: Sequence[Block]) -> List[str]:
    """Distinct section keys in emission order."""
    keys: List[str] = []
    for block in blocks:
        if not keys or keys[-1] != block.section:
            keys.append(block.section)
    return keys
