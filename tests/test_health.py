"""Tests for GET /api/health and the API root."""
import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_returns_200(client: AsyncClient):
    resp = await client.get("/api/health/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert data["blobStore"] == "ok"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_health_sets_process_time_header(client: AsyncClient):
    resp = await client.get("/api/health/")
    assert resp.headers["X-Process-Time"].endswith("ms")


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    resp = await client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Casebook API"
    assert data["endpoints"]["case_studies"] == "/api/case-studies"
