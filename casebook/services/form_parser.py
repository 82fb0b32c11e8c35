"""
Coerce-and-locate step for submitted questionnaire data.

Submissions reach the API as JSON bodies or multipart forms, from the
current flat form or from older clients that nested everything under
``questionnaire.{basicInfo,content,metrics,technical}``. Structured fields
(labels, custom metrics, workstreams, diagrams, AWS services) may arrive as
JSON-encoded strings.

``parse_form`` resolves all of that once, into a flat ``DraftData`` plus the
set of fields the caller actually supplied. Priority is fixed for every
field: a root-level value wins over the same field nested under
``questionnaire``.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from casebook.core.exceptions import MalformedInputError, ValidationError
from casebook.models.schemas import (
    BasicInfo,
    CaseStudy,
    Content,
    CustomMetric,
    DiagramRef,
    DiagramSection,
    DraftData,
    Metrics,
    Questionnaire,
    Technical,
    Workstream,
)
from casebook.services.labels import decode_json_field, normalize_labels
from casebook.utils.helpers import is_blank

logger = logging.getLogger(__name__)

BASIC_FIELDS = ("title", "duration", "team_size", "point_of_contact", "customer", "industry", "use_case")
CONTENT_FIELDS = (
    "overview",
    "challenge",
    "solution",
    "implementation",
    "implementation_workstreams",
    "architecture_diagrams",
    "results",
    "lessons_learned",
    "conclusion",
    "executive_summary",
)
METRIC_FIELDS = (
    "performance_improvement",
    "cost_reduction",
    "cost_savings",
    "time_savings",
    "user_satisfaction",
    "other_benefits",
)
TECHNICAL_FIELDS = ("aws_services", "architecture", "technologies")

MANDATORY_FIELDS = ("title", "challenge", "solution", "results")

# field -> questionnaire section holding it in the nested shape
_NESTED_SECTION: Dict[str, Tuple[str, ...]] = {
    **{f: ("basicInfo",) for f in BASIC_FIELDS},
    **{f: ("content",) for f in CONTENT_FIELDS},
    **{f: ("metrics",) for f in METRIC_FIELDS},
    **{f: ("technical",) for f in TECHNICAL_FIELDS},
    "labels": ("",),
    "custom_metrics": ("", "metrics"),
}


@dataclasses.dataclass
class ParsedForm:
    data: DraftData
    supplied: FrozenSet[str]
    draft_id: Optional[str] = None

    def has(self, field: str) -> bool:
        return field in self.supplied


# ---------------------------------------------------------------------------
# Locate
# ---------------------------------------------------------------------------

def _as_mapping(field: str, value: Any) -> Dict[str, Any]:
    try:
        decoded = decode_json_field(field, value)
    except MalformedInputError:
        logger.warning("Ignoring malformed '%s' payload", field)
        return {}
    return decoded if isinstance(decoded, dict) else {}


def _locate(field: str, root: Mapping[str, Any], nested: Mapping[str, Any]) -> Tuple[bool, Any]:
    """Find ``field`` at the root first, then under ``questionnaire``."""
    camel = to_camel(field)
    for key in (camel, field):
        if key in root and root[key] is not None:
            return True, root[key]

    for section in _NESTED_SECTION.get(field, ()):
        holder = nested if not section else _as_mapping(section, nested.get(section))
        if camel in holder and holder[camel] is not None:
            return True, holder[camel]
    return False, None


# ---------------------------------------------------------------------------
# Coerce
# ---------------------------------------------------------------------------

def _decode_list(field: str, value: Any) -> List[Any]:
    try:
        decoded = decode_json_field(field, value)
    except MalformedInputError:
        logger.warning("Discarding malformed '%s' payload", field)
        return []
    if decoded is None:
        return []
    if isinstance(decoded, dict):
        return [decoded]
    return decoded if isinstance(decoded, list) else []


def coerce_custom_metrics(value: Any) -> List[CustomMetric]:
    metrics = []
    for item in _decode_list("customMetrics", value):
        if not isinstance(item, dict):
            continue
        try:
            metrics.append(CustomMetric.model_validate(item))
        except PydanticValidationError:
            logger.warning("Dropping unreadable custom metric: %.80r", item)
    return metrics


def coerce_workstreams(value: Any) -> List[Workstream]:
    workstreams = []
    for item in _decode_list("implementationWorkstreams", value):
        if not isinstance(item, dict):
            continue
        item = dict(item)
        item["diagrams"] = [d for d in _decode_list("diagrams", item.get("diagrams")) if isinstance(d, dict)]
        try:
            workstreams.append(Workstream.model_validate(item))
        except PydanticValidationError:
            logger.warning("Dropping unreadable workstream: %.80r", item)
    return workstreams


def _is_section(item: Mapping[str, Any]) -> bool:
    return "diagrams" in item or "description" in item


def coerce_diagram_sections(value: Any) -> List[DiagramSection]:
    """
    Accept a list of sections, or the legacy flat list of diagram references,
    which becomes a single unnamed section.
    """
    sections: List[DiagramSection] = []
    loose: Optional[DiagramSection] = None
    for item in _decode_list("architectureDiagrams", value):
        if not isinstance(item, dict):
            continue
        try:
            if _is_section(item):
                item = dict(item)
                item["diagrams"] = [
                    d for d in _decode_list("diagrams", item.get("diagrams")) if isinstance(d, dict)
                ]
                sections.append(DiagramSection.model_validate(item))
            else:
                if loose is None:
                    loose = DiagramSection()
                    sections.append(loose)
                loose.diagrams.append(DiagramRef.model_validate(item))
        except PydanticValidationError:
            logger.warning("Dropping unreadable diagram entry: %.80r", item)
    return sections


def coerce_aws_services(value: Any) -> List[str]:
    if isinstance(value, str):
        try:
            value = decode_json_field("awsServices", value)
        except MalformedInputError:
            # plain comma separated text
            return [part.strip() for part in value.split(",") if part.strip()]
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


_COERCERS = {
    "labels": normalize_labels,
    "custom_metrics": coerce_custom_metrics,
    "implementation_workstreams": coerce_workstreams,
    "architecture_diagrams": coerce_diagram_sections,
    "aws_services": coerce_aws_services,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_form(raw: Mapping[str, Any]) -> ParsedForm:
    """Resolve a raw submission into flat ``DraftData`` and its supplied fields."""
    nested = _as_mapping("questionnaire", raw.get("questionnaire"))

    values: Dict[str, Any] = {}
    for field in DraftData.model_fields:
        found, value = _locate(field, raw, nested)
        if not found:
            continue
        coercer = _COERCERS.get(field)
        if coercer is not None:
            values[field] = coercer(value)
        else:
            text = _coerce_text(value)
            if text is None:
                logger.warning("Ignoring non-text value for '%s'", field)
                continue
            values[field] = text

    draft_id = raw.get("id") or raw.get("draftId")
    return ParsedForm(
        data=DraftData(**values),
        supplied=frozenset(values),
        draft_id=str(draft_id) if draft_id else None,
    )


def missing_mandatory(data: DraftData) -> List[str]:
    return [to_camel(f) for f in MANDATORY_FIELDS if is_blank(getattr(data, f))]


def validate_mandatory(data: DraftData) -> None:
    """
    Raises:
        ValidationError: title, challenge, solution or results is blank.
    """
    missing = missing_mandatory(data)
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={field: "required" for field in missing},
        )


def merge_form(base: DraftData, form: ParsedForm) -> DraftData:
    """Overlay only the supplied fields; everything else keeps its prior value."""
    update = {field: getattr(form.data, field) for field in form.supplied}
    return base.model_copy(update=update, deep=True)


def build_questionnaire(data: DraftData) -> Questionnaire:
    """Map flat draft fields into the nested questionnaire shape."""
    dump = data.model_dump()
    technical = None
    if data.aws_services or data.architecture or data.technologies:
        technical = Technical(**{f: dump[f] for f in TECHNICAL_FIELDS})

    return Questionnaire(
        basic_info=BasicInfo(**{f: dump[f] for f in BASIC_FIELDS}),
        content=Content(**{f: dump[f] for f in CONTENT_FIELDS}),
        metrics=Metrics(**{f: dump[f] for f in METRIC_FIELDS}),
        technical=technical,
    )


def flatten_case_study(case_study: CaseStudy) -> DraftData:
    """Inverse of ``build_questionnaire`` plus the record-level labels and metrics."""
    q = case_study.questionnaire
    values: Dict[str, Any] = {}
    values.update(q.basic_info.model_dump())
    values.update(q.content.model_dump())
    values.update(q.metrics.model_dump())
    if q.technical is not None:
        values.update(q.technical.model_dump())
    values["labels"] = case_study.labels
    values["custom_metrics"] = [m.model_dump() for m in case_study.custom_metrics]
    if not values.get("title"):
        values["title"] = case_study.original_title
    return DraftData(**values)
