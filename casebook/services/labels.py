"""
Label normalisation and the label taxonomy store.

Incoming label data arrives in several historical shapes:

* a list of plain strings                 ``["Acme", "Globex"]``
* a list of ``{name, client}`` objects     ``[{"name": "Acme", "client": "Acme"}]``
* a mapping of category -> either list    ``{"client": [...], "sector": [...]}``
* any of the above JSON-encoded as a string

``LabelNormalizer.normalize`` parses each entry once into a tagged variant
(``StringLabel`` | ``ObjectLabel``) and emits the canonical ``LabelSet``:
category -> list of display strings, every known category present, order
preserved, duplicates kept, malformed entries dropped. Nothing past this
module branches on label shape.
"""
from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any, Dict, List, Optional, Union

from casebook.core.exceptions import BlobNotFoundError, MalformedInputError, StorageError
from casebook.services.blob_store import BlobStore

logger = logging.getLogger(__name__)

LabelSet = Dict[str, List[str]]

KNOWN_CATEGORIES = (
    "client",
    "sector",
    "projectType",
    "technology",
    "objective",
    "solution",
    "methodology",
    "region",
    "Circles",
)

LABELS_KEY = "labels/labels.json"

DEFAULT_TAXONOMY: LabelSet = {
    "client": ["Bank of America", "Confidential (Global Bank)"],
    "sector": ["Banking", "Financial Services", "Investment Banking"],
    "projectType": ["Data Modelling", "Data Strategy", "Regulatory Reporting", "Automation"],
    "technology": [
        "SAP PowerDesigner",
        "Data Warehouse",
        "Metadata Portal",
        "AngularJS",
        "Java",
        "Python",
        "Data Lakehouse",
        "Kanban",
    ],
    "objective": [
        "Regulatory Compliance",
        "Data Quality Improvement",
        "Process Optimisation",
        "Future-Proofing Data Systems",
    ],
    "solution": [
        "Robust Data Models",
        "Automation Scripts",
        "Metadata Portal",
        "Strategic Roadmap",
        "Data Lakehouse Architecture",
    ],
    "methodology": ["Agile", "Safe Agile", "Kanban", "Data Analysis", "Normalisation"],
    "region": ["UK", "US", "India"],
    "Circles": [],
}


# ---------------------------------------------------------------------------
# Tagged label variants
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class StringLabel:
    value: str

    @property
    def display(self) -> str:
        return self.value


@dataclasses.dataclass(frozen=True)
class ObjectLabel:
    """Legacy ``{name, client}`` option object from the multi-select widget."""

    name: str
    client: Optional[str] = None

    @property
    def display(self) -> str:
        return self.name


LabelEntry = Union[StringLabel, ObjectLabel]


def parse_label_entry(entry: Any) -> Optional[LabelEntry]:
    """Classify one raw entry; ``None`` for anything malformed."""
    if entry is None:
        return None
    if isinstance(entry, str):
        text = entry.strip()
        return StringLabel(text) if text else None
    if isinstance(entry, dict):
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            return None
        client = entry.get("client")
        return ObjectLabel(name=name.strip(), client=client if isinstance(client, str) else None)
    if isinstance(entry, (int, float)) and not isinstance(entry, bool):
        return StringLabel(str(entry))
    return None


def decode_json_field(field: str, raw: Any) -> Any:
    """
    Decode a JSON-encoded string field.

    Non-string values are returned unchanged.

    Raises:
        MalformedInputError: the string is not valid JSON.
    """
    if not isinstance(raw, str):
        return raw
    text = raw.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except (TypeError, ValueError) as exc:
        raise MalformedInputError(field, raw) from exc


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

class LabelNormalizer:
    """
    Reconciles every accepted label shape into one canonical ``LabelSet``.

    Parameters
    ----------
    default_category:
        Category that receives a bare (uncategorised) list. The legacy
        ``{name, client}`` widget only ever fed the client picker, so this
        defaults to ``"client"``.
    """

    def __init__(self, default_category: str = "client") -> None:
        self.default_category = default_category

    def normalize(self, raw: Any) -> LabelSet:
        result: LabelSet = {category: [] for category in KNOWN_CATEGORIES}

        try:
            data = decode_json_field("labels", raw)
        except MalformedInputError:
            logger.warning("Discarding unparseable labels payload: %.80r", raw)
            return result

        if data is None:
            return result

        if isinstance(data, list):
            result[self.default_category] = self._normalize_values(data)
            return result

        if isinstance(data, dict):
            for category, values in data.items():
                if not isinstance(category, str) or not category:
                    continue
                result[category] = self._normalize_values(values)
            return result

        logger.warning("Ignoring labels payload of type %s", type(data).__name__)
        return result

    def _normalize_values(self, values: Any) -> List[str]:
        if values is None:
            return []
        if not isinstance(values, list):
            values = [values]
        normalized: List[str] = []
        for entry in values:
            parsed = parse_label_entry(entry)
            if parsed is not None:
                normalized.append(parsed.display)
        return normalized


label_normalizer = LabelNormalizer()


def normalize_labels(raw: Any) -> LabelSet:
    """Module-level shortcut for ``label_normalizer.normalize``."""
    return label_normalizer.normalize(raw)


# ---------------------------------------------------------------------------
# Taxonomy store
# ---------------------------------------------------------------------------

class LabelService:
    """Category -> values taxonomy kept at ``labels/labels.json`` in the blob store."""

    def __init__(self, blob_store: BlobStore) -> None:
        self.blob_store = blob_store

    async def get_labels(self) -> LabelSet:
        """
        Return the stored taxonomy, seeding it with defaults on first use.

        A stored document that cannot be decoded degrades to the defaults.
        """
        try:
            raw = await self.blob_store.get(LABELS_KEY)
        except BlobNotFoundError:
            logger.info("No label taxonomy stored yet, seeding defaults")
            defaults = normalize_labels(DEFAULT_TAXONOMY)
            await self.save_labels(defaults)
            return defaults

        try:
            return normalize_labels(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, ValueError):
            logger.warning("Stored label taxonomy is unreadable, using defaults")
            return normalize_labels(DEFAULT_TAXONOMY)

    async def save_labels(self, labels: Any) -> LabelSet:
        normalized = normalize_labels(labels)
        await self.blob_store.put(
            LABELS_KEY,
            json.dumps(normalized, indent=2).encode("utf-8"),
            content_type="application/json",
        )
        logger.info("Label taxonomy saved (%d categories)", len(normalized))
        return normalized

    async def get_flat_labels(self) -> List[Dict[str, str]]:
        labels = await self.get_labels()
        return [
            {"category": category, "label": label, "value": label.lower()}
            for category, values in labels.items()
            for label in values
        ]

    async def search_labels(self, text: str) -> List[Dict[str, str]]:
        needle = text.lower()
        return [item for item in await self.get_flat_labels() if needle in item["value"]]

    async def is_available(self) -> bool:
        """Cheap probe used by the health endpoint."""
        try:
            await self.blob_store.list("labels/")
            return True
        except StorageError as exc:
            logger.error("Blob store health check failed: %s", exc)
            return False
