"""HTTP boundary tests: status mapping and response shapes."""

import pytest
from fastapi.testclient import TestClient

from app.api import import_routes
from app.core.errors import (
    AdImportError,
    BrandNotFoundError,
    CollectionNotFoundError,
    IntegrationNotConfiguredError,
)
from app.database import get_session
from app.importer.pipeline import RescrapeOutcome
from app.main import app
from app.models.import_models import AuditResult, DateRange, ImportSummary, ProcessedAdRow


@pytest.fixture
def client(session):
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


def _fail_with(error):
    async def run(*args, **kwargs):
        raise error

    return run


def test_import_success(client, monkeypatch):
    captured = {}

    async def fake_run(**kwargs):
        captured.update(kwargs)
        return AuditResult(
            ads=[ProcessedAdRow(id="a1", spend="10.00")],
            summary=ImportSummary(total_spend=10.0),
            date_range=DateRange(start="2026-01-01", end="2026-01-31"),
            total_ads_imported=1,
        )

    monkeypatch.setattr(import_routes, "run_import", fake_run)

    resp = client.post(
        "/ad-audit/import",
        json={"collection_id": "col1", "max_ads": 50, "date_range": {"start": "2026-01-01", "end": "2026-01-31"}},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "success"
    assert body["data"]["ads_imported"] == 1
    assert body["data"]["import_method"] == "tiered_spending"
    assert body["data"]["summary"]["totalSpend"] == 10.0
    assert captured["collection_id"] == "col1"
    assert captured["max_ads"] == 50


@pytest.mark.parametrize(
    "error,status",
    [
        (CollectionNotFoundError("Collection not found"), 404),
        (BrandNotFoundError("Brand not found"), 404),
        (IntegrationNotConfiguredError("Meta integration not configured"), 400),
        (AdImportError("Meta access token is invalid or expired", status_code=401), 401),
    ],
)
def test_import_error_mapping(client, monkeypatch, error, status):
    monkeypatch.setattr(import_routes, "run_import", _fail_with(error))

    resp = client.post("/ad-audit/import", json={"collection_id": "col1"})

    assert resp.status_code == status
    assert resp.json()["detail"] == str(error)


def test_unexpected_error_is_generic_500(client, monkeypatch):
    monkeypatch.setattr(import_routes, "run_import", _fail_with(RuntimeError("secret internals")))

    resp = client.post("/ad-audit/import", json={"collection_id": "col1"})

    assert resp.status_code == 500
    assert "secret internals" not in resp.json()["detail"]


def test_get_audit_no_data(client, collection):
    resp = client.get("/ad-audit/col1")
    assert resp.status_code == 200
    assert resp.json()["status"] == "no_data"


def test_get_audit_unknown_collection(client):
    assert client.get("/ad-audit/missing").status_code == 404


def test_rescrape_response(client, monkeypatch):
    async def fake_rescrape(session, collection_id, ad_ids=None):
        assert ad_ids == ["a1"]
        return RescrapeOutcome(
            rescraped_count=1,
            failed_count=0,
            rescraped_ads=[ProcessedAdRow(id="a1", asset_placement="rescraped")],
        )

    monkeypatch.setattr(import_routes, "rescrape_videos", fake_rescrape)

    resp = client.post("/ad-audit/rescrape-videos", json={"collection_id": "col1", "ad_ids": ["a1"]})

    assert resp.status_code == 200
    body = resp.json()
    assert body["rescraped_count"] == 1
    assert body["rescraped_ads"][0]["assetPlacement"] == "rescraped"


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
