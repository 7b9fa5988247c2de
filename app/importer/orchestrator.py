"""AdAudit - Batch Import Orchestrator.

Drives every fetched ad through creative → URL → download → metrics.
Ads run in fixed-size batches with staggered starts; a circuit breaker
switches the rest of the run to metadata-only rows once failures pile up.
Output rows always match the input ads one-to-one and in order.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from app.importer.ad_fields import extract_ad_name, extract_landing_page, extract_video_id
from app.importer.asset_resolver import AssetUrlResolver, legacy_asset_references
from app.importer.creative_resolver import pick_best_asset, resolve_creative
from app.importer.downloader import AssetDownloader
from app.importer.metrics import compute_ad_metrics, metric_fields
from app.connectors.meta.endpoints import MetaEndpoints
from app.models.import_models import (
    AdState,
    AssetKind,
    AssetReference,
    CreativeDetails,
    ImportTuning,
    ProcessedAdRow,
    ResolvedAsset,
)
from app.core.logging import get_logger

logger = get_logger("importer.orchestrator")


class CircuitBreaker:
    """Counts failures across a run; opens once they exceed the threshold."""

    def __init__(self, max_errors: int):
        self.max_errors = max_errors
        self.failures = 0

    def record_failure(self) -> None:
        self.failures += 1

    @property
    def is_open(self) -> bool:
        return self.failures > self.max_errors


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_insight(ad: Dict[str, Any]) -> Dict[str, Any]:
    data = _dict(ad.get("insights")).get("data")
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return {}


def error_row(ad: Any, message: str) -> ProcessedAdRow:
    """Degraded row for an ad that could not be processed at all."""
    ad = _dict(ad)
    creative = _dict(ad.get("creative"))
    return ProcessedAdRow(
        id=str(ad.get("id") or "unknown"),
        name="Processing Failed",
        status="error",
        asset_type=AssetKind.ERROR.value,
        asset_placement="error",
        error=message,
        video_id=creative.get("video_id"),
    )


class AdProcessor:
    """Processes a single ad through the resolution pipeline."""

    def __init__(
        self,
        endpoints: MetaEndpoints,
        resolver: AssetUrlResolver,
        downloader: AssetDownloader,
        collection_id: str,
    ):
        self.endpoints = endpoints
        self.resolver = resolver
        self.downloader = downloader
        self.collection_id = collection_id

    def _set_state(self, ad_id: str, state: AdState) -> None:
        logger.debug(f"Ad {ad_id} → {state.value}", extra={"ad_id": ad_id})

    async def _fetch_asset(self, ad_id: str, reference: AssetReference) -> Optional[ResolvedAsset]:
        """Resolve and download one reference; None when no URL could be resolved."""
        self._set_state(ad_id, AdState.RESOLVING_URL)
        url = await self.resolver.resolve_download_url(reference)
        if not url:
            return None

        self._set_state(ad_id, AdState.DOWNLOADING)
        local_url = await self.downloader.download_and_store(
            url, reference.asset_id, reference.kind, self.collection_id, ad_id
        )
        return ResolvedAsset(
            remote_url=url,
            kind=reference.kind,
            local_url=local_url,
            placement=reference.placement,
            asset_id=reference.asset_id,
            download_failed=local_url is None,
        )

    async def resolve_asset(
        self, ad_id: str, ad_creative: Dict[str, Any]
    ) -> Tuple[ResolvedAsset, Optional[CreativeDetails], Optional[AssetReference]]:
        """Walk the feed-spec, legacy and fallback paths until an asset resolves."""
        self._set_state(ad_id, AdState.RESOLVING_CREATIVE)
        creative = await resolve_creative(self.endpoints, ad_id)

        best: Optional[AssetReference] = None
        if creative is not None and creative.asset_feed_spec:
            best = pick_best_asset(creative.asset_feed_spec)
            if best is not None:
                logger.info(f"Found {best.kind.value} asset {best.asset_id} for placement {best.placement}")
                asset = await self._fetch_asset(ad_id, best)
                if asset is not None:
                    return asset, creative, best

        logger.info(f"Falling back to legacy creative fields for ad {ad_id}")
        for reference in legacy_asset_references(creative, ad_id, "legacy"):
            asset = await self._fetch_asset(ad_id, reference)
            if asset is not None:
                return asset, creative, reference

        original = CreativeDetails.model_validate(ad_creative) if ad_creative else None
        for reference in legacy_asset_references(original, ad_id, "fallback"):
            asset = await self._fetch_asset(ad_id, reference)
            if asset is not None:
                return asset, creative, reference
            if reference.kind == AssetKind.VIDEO:
                # Unresolvable video: keep its thumbnail for reference, skip images
                return (
                    ResolvedAsset(
                        remote_url=original.thumbnail_url or "",
                        kind=AssetKind.VIDEO,
                        placement="fallback",
                        asset_id=reference.asset_id,
                    ),
                    creative,
                    reference,
                )

        return ResolvedAsset(), creative, best

    def build_row(
        self,
        ad: Dict[str, Any],
        asset: ResolvedAsset,
        creative: Optional[CreativeDetails] = None,
        reference: Optional[AssetReference] = None,
        error: Optional[str] = None,
    ) -> ProcessedAdRow:
        ad_creative = _dict(ad.get("creative"))
        metrics = compute_ad_metrics(_first_insight(ad))
        return ProcessedAdRow(
            id=str(ad.get("id")),
            name=extract_ad_name(ad),
            status="error" if error else ad.get("status"),
            asset_url=asset.local_url or "",
            asset_original_url=asset.remote_url,
            asset_type=asset.kind.value,
            asset_id=(
                ad_creative.get("video_id")
                or ad_creative.get("image_hash")
                or ad_creative.get("id")
                or asset.asset_id
                or ""
            ),
            asset_placement=asset.placement or "unknown",
            landing_page=extract_landing_page(ad_creative),
            **metric_fields(metrics),
            campaign_name=_dict(ad.get("campaign")).get("name") or "",
            adset_name=_dict(ad.get("adset")).get("name") or "",
            creative_title=ad_creative.get("title") or "",
            creative_body=ad_creative.get("body") or "",
            thumbnail_url=ad_creative.get("thumbnail_url"),
            image_url=ad_creative.get("image_url"),
            video_id=extract_video_id(ad_creative, creative, reference),
            error=error,
        )

    async def process(self, ad: Dict[str, Any], breaker: CircuitBreaker) -> ProcessedAdRow:
        ad_id = str(ad["id"])
        ad_creative = _dict(ad.get("creative"))
        self._set_state(ad_id, AdState.PENDING)

        if breaker.is_open:
            # Degraded mode: metadata only, no resolve/download
            asset = ResolvedAsset(
                remote_url=ad_creative.get("image_url") or ad_creative.get("thumbnail_url") or "",
                kind=AssetKind.VIDEO if ad_creative.get("video_id") else AssetKind.IMAGE,
                placement="skipped",
            )
            return self.build_row(ad, asset)

        try:
            asset, creative, reference = await self.resolve_asset(ad_id, ad_creative)
        except Exception as e:
            logger.warning(f"Failed to extract asset for ad {ad_id}: {e!r}", extra={"ad_id": ad_id})
            breaker.record_failure()
            self._set_state(ad_id, AdState.ERROR)
            asset = ResolvedAsset(placement="error")
            return self.build_row(ad, asset, error=f"Asset extraction failed: {e}")

        if asset.download_failed:
            breaker.record_failure()
        self._set_state(ad_id, AdState.DONE)
        return self.build_row(ad, asset, creative, reference)


class BatchOrchestrator:
    """Runs ``AdProcessor`` over a list of ads with bounded concurrency."""

    def __init__(self, processor: AdProcessor, tuning: ImportTuning | None = None):
        self.processor = processor
        self.tuning = tuning or ImportTuning()
        self.breaker = CircuitBreaker(self.tuning.max_errors)

    async def _process_staggered(self, ad: Any, index: int) -> ProcessedAdRow:
        delay = index * self.tuning.stagger_delay
        if delay > 0:
            await asyncio.sleep(delay)
        return await self.processor.process(ad, self.breaker)

    async def run(self, ads: List[Any]) -> List[ProcessedAdRow]:
        rows: List[ProcessedAdRow] = []
        batch_size = max(1, self.tuning.batch_size)
        total_batches = (len(ads) + batch_size - 1) // batch_size
        logger.info(f"Processing {len(ads)} ads in batches of {batch_size}")

        for start in range(0, len(ads), batch_size):
            batch = ads[start : start + batch_size]
            logger.info(f"Processing batch {start // batch_size + 1}/{total_batches}")
            if self.breaker.is_open:
                logger.warning(
                    f"Too many errors ({self.breaker.failures}), skipping asset downloads for remaining ads"
                )

            results = await asyncio.gather(
                *(self._process_staggered(ad, i) for i, ad in enumerate(batch)),
                return_exceptions=True,
            )

            # gather keeps input order
            for ad, result in zip(batch, results):
                if isinstance(result, ProcessedAdRow):
                    rows.append(result)
                elif isinstance(result, Exception):
                    logger.warning(f"Failed to process ad in batch: {result!r}")
                    self.breaker.record_failure()
                    rows.append(error_row(ad, "Processing failed"))
                else:
                    raise result

            if start + batch_size < len(ads) and self.tuning.download_delay > 0:
                logger.info(f"Batch complete. Waiting {self.tuning.download_delay}s before next batch...")
                await asyncio.sleep(self.tuning.download_delay)

        logger.info(f"Completed processing {len(rows)} ads")
        return rows
