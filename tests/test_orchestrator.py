"""Batch orchestration, degraded rows and circuit breaker tests."""

import asyncio

import pytest

from app.importer import orchestrator
from app.importer.orchestrator import AdProcessor, BatchOrchestrator, CircuitBreaker, error_row
from app.models.import_models import AssetKind, CreativeDetails, ImportTuning, ResolvedAsset
from tests.conftest import insights


def _tuning(**overrides):
    values = dict(batch_size=2, stagger_delay=0, download_delay=0, max_errors=20)
    values.update(overrides)
    return ImportTuning(**values)


def _ad(ad_id, **creative):
    return {
        "id": ad_id,
        "name": f"Ad {ad_id}",
        "status": "ACTIVE",
        "creative": creative,
        "insights": insights(100, 1000),
    }


class StubProcessor(AdProcessor):
    """AdProcessor with the network-facing resolution step replaced."""

    def __init__(self, resolve):
        super().__init__(endpoints=None, resolver=None, downloader=None, collection_id="col1")
        self._resolve = resolve
        self.resolved = []

    async def resolve_asset(self, ad_id, ad_creative):
        self.resolved.append(ad_id)
        return await self._resolve(ad_id, ad_creative)


async def _stored_video(ad_id, ad_creative):
    asset = ResolvedAsset(
        remote_url=f"https://video.example.com/{ad_id}.mp4",
        kind=AssetKind.VIDEO,
        local_url=f"https://assets.test/{ad_id}.mp4",
        placement="legacy",
        asset_id=ad_id,
    )
    return asset, None, None


@pytest.mark.asyncio
async def test_one_row_per_ad_in_input_order():
    async def slow_first(ad_id, ad_creative):
        # Earlier ads finish later
        await asyncio.sleep({"a1": 0.03, "a2": 0.02, "a3": 0.01}.get(ad_id, 0))
        return await _stored_video(ad_id, ad_creative)

    processor = StubProcessor(slow_first)
    ads = [_ad("a1"), "garbage", _ad("a2"), None, {"no": "id"}, _ad("a3")]

    rows = await BatchOrchestrator(processor, _tuning()).run(ads)

    assert len(rows) == len(ads)
    assert [r.id for r in rows] == ["a1", "unknown", "a2", "unknown", "unknown", "a3"]
    assert [r.status for r in rows] == ["ACTIVE", "error", "ACTIVE", "error", "error", "ACTIVE"]
    assert [r.is_unprocessed for r in rows] == [False, True, False, True, True, False]
    assert rows[0].asset_url == "https://assets.test/a1.mp4"


@pytest.mark.asyncio
async def test_resolution_exception_gives_error_row():
    async def explode(ad_id, ad_creative):
        raise RuntimeError("storage down")

    processor = StubProcessor(explode)
    rows = await BatchOrchestrator(processor, _tuning()).run([_ad("a1", video_id="v1")])

    row = rows[0]
    assert row.status == "error"
    assert row.asset_placement == "error"
    assert row.asset_type == "unknown"
    assert not row.is_unprocessed
    assert row.asset_url == ""
    assert row.video_id == "v1"
    assert "storage down" in row.error
    # Metrics still present on a failed ad
    assert row.spend == "100.00"


@pytest.mark.asyncio
async def test_breaker_switches_to_metadata_only():
    async def explode(ad_id, ad_creative):
        raise RuntimeError("upstream failing")

    processor = StubProcessor(explode)
    ads = [_ad(f"a{i}", image_url=f"https://cdn.example.com/{i}.jpg") for i in range(6)]

    rows = await BatchOrchestrator(processor, _tuning(max_errors=1)).run(ads)

    assert len(rows) == 6
    # Two failures in the first batch open the breaker; later batches skip resolution
    assert processor.resolved == ["a0", "a1"]
    skipped = rows[2:]
    assert all(r.asset_placement == "skipped" for r in skipped)
    assert all(r.status == "ACTIVE" for r in skipped)
    assert skipped[0].asset_original_url == "https://cdn.example.com/2.jpg"
    assert skipped[0].asset_url == ""


@pytest.mark.asyncio
async def test_download_failures_count_towards_breaker():
    async def not_stored(ad_id, ad_creative):
        return ResolvedAsset(remote_url="https://x", kind=AssetKind.IMAGE, download_failed=True), None, None

    processor = StubProcessor(not_stored)
    orchestrator = BatchOrchestrator(processor, _tuning())
    rows = await orchestrator.run([_ad("a1"), _ad("a2")])

    assert orchestrator.breaker.failures == 2
    assert all(r.status == "ACTIVE" and r.asset_url == "" for r in rows)


def test_breaker_threshold():
    breaker = CircuitBreaker(2)
    breaker.record_failure()
    breaker.record_failure()
    assert not breaker.is_open
    breaker.record_failure()
    assert breaker.is_open


def test_error_row_keeps_video_id():
    row = error_row({"id": "a1", "creative": {"video_id": "v1"}}, "Processing failed")
    assert row.name == "Processing Failed"
    assert row.status == "error"
    assert row.asset_type == "error"
    assert row.video_id == "v1"


def test_row_metrics_from_insights():
    processor = StubProcessor(_stored_video)
    ad = _ad("a1", video_id="v1")
    ad["insights"] = insights(
        100,
        1000,
        actions=[{"action_type": "purchase", "value": "2"}],
        action_values=[{"action_type": "purchase", "value": "400"}],
        video_play_actions=[{"action_type": "video_view", "value": "200"}],
    )
    row = processor.build_row(ad, ResolvedAsset())
    assert (row.cpa, row.roas, row.hook_rate) == ("50.00", "4.00", "20.0")
    assert row.video_id == "v1"
    assert row.asset_id == "v1"
    dumped = row.model_dump(by_alias=True)
    assert dumped["hookRate"] == "20.0"
    assert dumped["assetUrl"] == ""


class ImageOnlyResolver:
    """Resolves image references only; every video lookup comes back empty."""

    async def resolve_download_url(self, reference):
        if reference.kind == AssetKind.IMAGE:
            return reference.source_url or f"https://cdn.example.com/{reference.asset_id}.jpg"
        return None


class RecordingDownloader:
    def __init__(self):
        self.stored = []

    async def download_and_store(self, url, asset_id, kind, collection_id, ad_id):
        self.stored.append((asset_id, kind))
        return f"https://assets.test/{asset_id}"


@pytest.mark.asyncio
async def test_reference_is_the_one_that_resolved(monkeypatch):
    creative = CreativeDetails(
        id="c1",
        image_url="https://cdn.example.com/legacy.jpg",
        image_hash="h1",
        asset_feed_spec={"videos": [{"video_id": "v9"}]},
    )

    async def fake_resolve_creative(endpoints, ad_id):
        return creative

    monkeypatch.setattr(orchestrator, "resolve_creative", fake_resolve_creative)
    downloader = RecordingDownloader()
    processor = AdProcessor(
        endpoints=None, resolver=ImageOnlyResolver(), downloader=downloader, collection_id="col1"
    )

    asset, resolved, reference = await processor.resolve_asset("a1", {})

    # The feed-spec video never resolved; the legacy image did
    assert asset.kind == AssetKind.IMAGE
    assert asset.placement == "legacy"
    assert reference.kind == AssetKind.IMAGE
    assert reference.asset_id == "h1"
    assert reference.placement == "legacy"
    assert downloader.stored == [("h1", AssetKind.IMAGE)]

    row = processor.build_row(_ad("a1"), asset, resolved, reference)
    assert row.asset_type == "image"
    assert row.asset_url == "https://assets.test/h1"
