"""End-to-end import and re-scrape tests against faked Graph, page and CDN traffic."""

import json

import httpx
import pytest

from app.core.errors import (
    AdImportError,
    AuditNotFoundError,
    CollectionNotFoundError,
    InvalidRequestError,
)
from app.importer.pipeline import clamp_max_ads, get_audit, rescrape_videos, resolve_date_range, run_import
from app.importer.scraper import ScraperCache
from app.models.brand_models import AuditCollection
from app.models.import_models import AuditResult, DateRange, ProcessedAdRow
from app.storage.object_store import LocalObjectStore
from tests.conftest import graph_error, graph_url, insights

ADS_URL = graph_url("act_123/ads")
VIDEO_URL = "https://video.example.com/v1.mp4"
SMALL_IMAGE_URL = "https://cdn.example.com/small.jpg"

VIDEO_AD = {
    "id": "a1",
    "name": "Video ad",
    "status": "ACTIVE",
    "creative": {"id": "c1", "video_id": "v1", "title": "Watch this"},
    "insights": insights(
        100,
        1000,
        actions=[{"action_type": "purchase", "value": "2"}],
        action_values=[{"action_type": "purchase", "value": "400"}],
        video_play_actions=[{"action_type": "video_view", "value": "200"}],
    ),
    "campaign": {"id": "cmp1", "name": "Prospecting"},
}
IMAGE_AD = {
    "id": "a2",
    "name": "Image ad",
    "status": "ACTIVE",
    "creative": {"id": "c2", "image_url": SMALL_IMAGE_URL, "image_hash": "h2"},
    "insights": insights(50, 500),
}


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(root=str(tmp_path), public_base_url="https://assets.test", bucket="bucket")


@pytest.fixture
def meta(fake_http):
    fake_http.add(ADS_URL, json={"data": [IMAGE_AD, VIDEO_AD]})
    fake_http.add(graph_url("a1"), json={"creative": VIDEO_AD["creative"]})
    fake_http.add(graph_url("a2"), json={"creative": IMAGE_AD["creative"]})
    fake_http.add(graph_url("v1"), json={"source": VIDEO_URL})
    fake_http.add(VIDEO_URL, content=b"\x00" * 4096, headers={"content-type": "video/mp4"})
    fake_http.add(SMALL_IMAGE_URL, content=b"x" * 512, headers={"content-type": "image/jpeg"})
    return fake_http


async def _import(session, fake_http, store, tuning, **kwargs):
    return await run_import(
        session,
        "col1",
        object_store=store,
        http_client=fake_http.client(),
        tuning=tuning,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_import_builds_rows_and_stores_result(session, collection, meta, store, tuning):
    result = await _import(session, meta, store, tuning)

    assert [r.id for r in result.ads] == ["a1", "a2"]
    video, image = result.ads
    assert video.asset_url == "https://assets.test/bucket/brand1/v1.mp4"
    assert video.asset_original_url == VIDEO_URL
    assert video.asset_type == "video"
    assert (video.cpa, video.roas, video.hook_rate) == ("50.00", "4.00", "20.0")
    assert video.campaign_name == "Prospecting"

    # 512-byte body is an error page: no stored copy, remote URL kept
    assert image.asset_url == ""
    assert image.asset_original_url == SMALL_IMAGE_URL
    assert image.status == "ACTIVE"

    assert result.total_ads_imported == 2
    assert result.summary.total_spend == 150.0
    assert result.import_method == "tiered_spending"

    session.refresh(collection)
    stored = json.loads(collection.ad_account_audit_json)
    assert stored["ads"][0]["assetUrl"] == video.asset_url
    assert stored["totalAdsImported"] == 2
    assert json.loads(collection.stages_completed_json) == {"ad_audit": True}
    assert get_audit(session, "col1").ads[0].id == "a1"


@pytest.mark.asyncio
async def test_reimport_does_not_download_again(session, collection, meta, store, tuning):
    await _import(session, meta, store, tuning)
    await _import(session, meta, store, tuning)

    assert meta.count(VIDEO_URL) == 1


@pytest.mark.asyncio
async def test_custom_date_range_applied(session, collection, meta, store, tuning):
    result = await _import(
        session, meta, store, tuning, date_range=DateRange(start="2026-01-01", end="2026-01-15")
    )

    ads_call = next(r for r in meta.calls if str(r.url).startswith(ADS_URL))
    assert json.loads(ads_call.url.params["time_range"]) == {"since": "2026-01-01", "until": "2026-01-15"}
    assert result.date_range.start == "2026-01-01"


@pytest.mark.asyncio
async def test_shared_scraper_cache_used(session, collection, fake_http, store, tuning):
    fake_http.add(ADS_URL, json={"data": [VIDEO_AD]})
    fake_http.add(graph_url("a1"), json={"creative": VIDEO_AD["creative"]})
    fake_http.add_handler(graph_url("v1"), lambda r: graph_error(400, 10, "Permission denied"))
    cache = ScraperCache({"v1": None})

    result = await _import(session, fake_http, store, tuning, scraper_cache=cache)

    # Cached failure: no page was scraped
    assert not any("facebook.com" in str(r.url) for r in fake_http.calls)
    assert result.ads[0].asset_url == ""


@pytest.mark.asyncio
async def test_invalid_token_is_run_level_error(session, collection, fake_http, store, tuning):
    fake_http.add_handler(ADS_URL, lambda r: graph_error(400, 190, "Error validating access token"))

    with pytest.raises(AdImportError) as exc:
        await _import(session, fake_http, store, tuning)
    assert exc.value.status_code == 401
    session.refresh(collection)
    assert collection.ad_account_audit_json == ""


@pytest.mark.asyncio
async def test_unknown_collection(session, brand, fake_http, store, tuning):
    with pytest.raises(CollectionNotFoundError):
        await _import(session, fake_http, store, tuning)


@pytest.mark.asyncio
async def test_empty_collection_id(session, fake_http, tuning):
    with pytest.raises(InvalidRequestError):
        await run_import(session, "", http_client=fake_http.client(), tuning=tuning)


def test_clamp_max_ads():
    assert clamp_max_ads(None) == 500
    assert clamp_max_ads(3) == 10
    assert clamp_max_ads(5000) == 1000
    assert clamp_max_ads(200) == 200


def test_date_range_defaults_and_validation():
    default = resolve_date_range(None)
    assert len(default.start) == 10 and default.start < default.end
    assert resolve_date_range(DateRange(start="bad", end="2026-01-01")) == default
    with pytest.raises(InvalidRequestError):
        resolve_date_range(DateRange(start="2026-02-01", end="2026-01-01"))


def _store_audit(session, collection, rows):
    collection.ad_account_audit_json = AuditResult(ads=rows, total_ads_imported=len(rows)).model_dump_json(by_alias=True)
    session.add(collection)
    session.commit()


@pytest.mark.asyncio
async def test_rescrape_updates_video_rows(session, collection, fake_http, store, tuning):
    _store_audit(
        session,
        collection,
        [
            ProcessedAdRow(id="a9", video_id="v9", asset_type="video", asset_placement="legacy"),
            ProcessedAdRow(id="a10", asset_type="image"),
        ],
    )
    fake_http.add(graph_url("v9"), json={"from": {"id": "111", "username": "acmepage"}})
    fake_http.add(
        "https://www.facebook.com/acmepage/videos/v9",
        content=b'{"browser_native_hd_url":"https:\\/\\/video.example.com\\/v9.mp4"}',
    )
    fake_http.add("https://video.example.com/v9.mp4", content=b"\x00" * 4096, headers={"content-type": "video/mp4"})

    outcome = await rescrape_videos(session, "col1", object_store=store, http_client=fake_http.client(), tuning=tuning)

    assert (outcome.rescraped_count, outcome.failed_count) == (1, 0)
    session.refresh(collection)
    row = get_audit(session, "col1").ads[0]
    assert row.asset_placement == "rescraped"
    assert row.asset_url == "https://assets.test/bucket/brand1/v9.mp4"
    assert row.asset_original_url == "https://video.example.com/v9.mp4"


@pytest.mark.asyncio
async def test_rescrape_counts_failures(session, collection, fake_http, store, tuning):
    _store_audit(session, collection, [ProcessedAdRow(id="a9", video_id="v9"), ProcessedAdRow(id="a8", video_id="v8")])

    outcome = await rescrape_videos(
        session, "col1", ["a9"], object_store=store, http_client=fake_http.client(), tuning=tuning
    )

    assert (outcome.rescraped_count, outcome.failed_count) == (0, 1)


@pytest.mark.asyncio
async def test_rescrape_without_audit(session, collection, fake_http, tuning):
    with pytest.raises(AuditNotFoundError):
        await rescrape_videos(session, "col1", http_client=fake_http.client(), tuning=tuning)
