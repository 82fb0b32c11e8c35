"""Tests for label normalisation, the taxonomy store and /api/labels."""
import json

import pytest
from httpx import AsyncClient

from casebook.services.blob_store import MemoryBlobStore
from casebook.services.labels import (
    DEFAULT_TAXONOMY,
    KNOWN_CATEGORIES,
    LABELS_KEY,
    LabelService,
    ObjectLabel,
    StringLabel,
    normalize_labels,
    parse_label_entry,
)


# ---------------------------------------------------------------------------
# Entry parsing
# ---------------------------------------------------------------------------

def test_parse_label_entry_variants():
    assert parse_label_entry("Acme") == StringLabel("Acme")
    assert parse_label_entry({"name": "Acme", "client": "Acme"}) == ObjectLabel("Acme", "Acme")
    assert parse_label_entry(42) == StringLabel("42")


@pytest.mark.parametrize("entry", [None, {}, {"client": "Acme"}, {"name": ""}, "   ", True, [1]])
def test_parse_label_entry_drops_malformed(entry):
    assert parse_label_entry(entry) is None


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def test_every_known_category_present():
    result = normalize_labels({"sector": ["Banking"]})
    assert list(result)[: len(KNOWN_CATEGORIES)] == list(KNOWN_CATEGORIES)
    assert result["sector"] == ["Banking"]
    assert result["client"] == []
    assert result["Circles"] == []


def test_object_labels_become_strings():
    result = normalize_labels({"client": [{"name": "Acme", "client": "Acme"}, {"name": "Globex"}]})
    assert result["client"] == ["Acme", "Globex"]


def test_order_and_duplicates_preserved():
    result = normalize_labels({"technology": ["Python", "Java", "Python"]})
    assert result["technology"] == ["Python", "Java", "Python"]


def test_malformed_entries_dropped_silently():
    result = normalize_labels({"client": [None, {"client": "x"}, "Acme", ""]})
    assert result["client"] == ["Acme"]


def test_unknown_categories_pass_through():
    result = normalize_labels({"partner": ["AWS"]})
    assert result["partner"] == ["AWS"]


def test_json_string_is_decoded():
    result = normalize_labels(json.dumps({"region": ["UK", "US"]}))
    assert result["region"] == ["UK", "US"]


def test_unparseable_json_degrades_to_empty():
    result = normalize_labels("{not json")
    assert set(result) == set(KNOWN_CATEGORIES)
    assert all(values == [] for values in result.values())


def test_bare_list_goes_to_client():
    result = normalize_labels(["Acme", {"name": "Globex"}])
    assert result["client"] == ["Acme", "Globex"]


@pytest.mark.parametrize(
    "raw",
    [
        {"client": ["Acme", "Globex"], "sector": ["Banking"]},
        {"client": [{"name": "Acme", "client": "Acme"}], "Circles": [{"name": "Data"}]},
        json.dumps({"client": [{"name": "Acme"}], "region": ["UK"]}),
        ["Acme", "Acme"],
    ],
)
def test_normalize_is_idempotent(raw):
    once = normalize_labels(raw)
    assert normalize_labels(once) == once


# ---------------------------------------------------------------------------
# Taxonomy store
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_label_service_seeds_defaults():
    store = MemoryBlobStore()
    service = LabelService(store)

    labels = await service.get_labels()

    assert labels["region"] == DEFAULT_TAXONOMY["region"]
    assert labels["Circles"] == []
    assert await store.exists(LABELS_KEY)


@pytest.mark.asyncio
async def test_label_service_save_and_search():
    service = LabelService(MemoryBlobStore())
    await service.save_labels({"technology": [{"name": "Python"}, "PySpark", "Java"]})

    hits = await service.search_labels("py")

    assert [h["label"] for h in hits] == ["Python", "PySpark"]
    assert hits[0] == {"category": "technology", "label": "Python", "value": "python"}


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_labels_endpoint(client: AsyncClient):
    resp = await client.get("/api/labels/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert "Circles" in data["labels"]


@pytest.mark.asyncio
async def test_replace_labels_endpoint_normalizes(client: AsyncClient):
    resp = await client.put(
        "/api/labels/",
        json={"labels": {"client": [{"name": "Acme"}, None], "custom": ["x"]}},
    )
    assert resp.status_code == 200
    labels = resp.json()["labels"]
    assert labels["client"] == ["Acme"]
    assert labels["custom"] == ["x"]

    flat = (await client.get("/api/labels/flat")).json()["labels"]
    assert {"category": "client", "label": "Acme", "value": "acme"} in flat
