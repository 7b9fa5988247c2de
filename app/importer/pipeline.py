"""AdAudit - Import Pipeline.

Runs the full ad import for one audit collection:
  credentials → tiered fetch → per-ad resolve/download/metrics → store result

Also hosts the video re-scrape pass over an already stored result.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import httpx
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.config import settings
from app.connectors.meta.client import MetaAPIError, MetaClient
from app.connectors.meta.endpoints import MetaEndpoints, build_time_params
from app.core.errors import (
    AdImportError,
    AuditNotFoundError,
    CollectionNotFoundError,
    InvalidRequestError,
    ResultPersistenceError,
)
from app.importer.asset_resolver import AssetUrlResolver
from app.importer.credentials import get_brand_meta_credentials
from app.importer.downloader import AssetDownloader
from app.importer.metrics import build_summary
from app.importer.orchestrator import AdProcessor, BatchOrchestrator
from app.importer.scraper import FacebookPageScraper, ScraperCache, VideoScraper
from app.importer.tiered_fetcher import fetch_top_spending_ads
from app.models.brand_models import AuditCollection
from app.models.import_models import (
    AssetKind,
    AuditResult,
    DateRange,
    ImportTuning,
    ProcessedAdRow,
)
from app.storage.asset_repository import AssetRepository
from app.storage.object_store import LocalObjectStore, ObjectStore
from app.core.logging import get_logger

logger = get_logger("importer.pipeline")

DEFAULT_WINDOW_DAYS = 30


class RescrapeOutcome(BaseModel):
    """Counts and updated rows from a video re-scrape pass."""

    rescraped_count: int = 0
    failed_count: int = 0
    rescraped_ads: List[ProcessedAdRow] = []


def _validate_date(d: Optional[str]) -> Optional[str]:
    """Return the date string if valid YYYY-MM-DD, else None."""
    if not d:
        return None
    try:
        datetime.strptime(d, "%Y-%m-%d")
        return d
    except ValueError:
        return None


def resolve_date_range(date_range: Optional[DateRange] = None) -> DateRange:
    """Validated explicit window, or the last 30 days ending today."""
    if date_range is not None:
        start = _validate_date(date_range.start)
        end = _validate_date(date_range.end)
        if start and end:
            if start > end:
                raise InvalidRequestError("Date range start must not be after its end")
            return DateRange(start=start, end=end)
        logger.warning(f"Ignoring invalid date range {date_range.start}..{date_range.end}")

    today = datetime.now(timezone.utc).date()
    return DateRange(
        start=(today - timedelta(days=DEFAULT_WINDOW_DAYS)).strftime("%Y-%m-%d"),
        end=today.strftime("%Y-%m-%d"),
    )


def clamp_max_ads(max_ads: Optional[int]) -> int:
    if max_ads is None:
        return settings.import_default_max_ads
    return max(settings.import_min_ads, min(settings.import_max_ads, int(max_ads)))


def _load_collection(session: Session, collection_id: str) -> AuditCollection:
    if not collection_id:
        raise InvalidRequestError("Collection ID is required")
    collection = session.get(AuditCollection, collection_id)
    if collection is None:
        raise CollectionNotFoundError("Collection not found")
    return collection


def load_audit_result(collection: AuditCollection) -> Optional[AuditResult]:
    if not collection.ad_account_audit_json:
        return None
    return AuditResult.model_validate_json(collection.ad_account_audit_json)


def save_audit_result(session: Session, collection: AuditCollection, result: AuditResult) -> None:
    """Write the result back onto the collection and mark the audit stage done."""
    try:
        stages = json.loads(collection.stages_completed_json or "{}")
    except ValueError:
        stages = {}
    if not isinstance(stages, dict):
        stages = {}
    stages["ad_audit"] = True

    collection.ad_account_audit_json = result.model_dump_json(by_alias=True)
    collection.stages_completed_json = json.dumps(stages)
    collection.updated_at = datetime.now(timezone.utc)
    try:
        session.add(collection)
        session.commit()
        session.refresh(collection)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to save audit result for collection {collection.id}: {e}")
        raise ResultPersistenceError("Failed to save imported ads") from e


def get_audit(session: Session, collection_id: str) -> Optional[AuditResult]:
    """Stored audit result for a collection, None if nothing was imported yet."""
    return load_audit_result(_load_collection(session, collection_id))


async def run_import(
    session: Session,
    collection_id: str,
    date_range: Optional[DateRange] = None,
    max_ads: Optional[int] = None,
    *,
    scraper_cache: Optional[ScraperCache] = None,
    object_store: Optional[ObjectStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    tuning: Optional[ImportTuning] = None,
) -> AuditResult:
    """Import the top-spending ads of the collection's brand.

    Args:
        scraper_cache: Shared scrape outcomes; a fresh cache when omitted.
        object_store: Binary sink; the local filesystem store when omitted.
        http_client: Shared HTTP client for the Graph API, scraping and downloads.
        tuning: Rate-limit and batching constants; read from settings when omitted.

    Raises:
        AdImportError: when no ad list can be produced or the result cannot be saved.
    """
    collection = _load_collection(session, collection_id)
    credentials = get_brand_meta_credentials(session, collection.brand_id)
    tuning = tuning or settings.import_tuning()
    limit = clamp_max_ads(max_ads)
    dates = resolve_date_range(date_range)

    logger.info(
        f"Starting ad import for collection {collection_id}: up to {limit} ads, "
        f"{dates.start} → {dates.end}",
        extra={"entity_id": collection_id},
    )
    started = datetime.now(timezone.utc)

    client = MetaClient(
        access_token=credentials.access_token,
        ad_account_id=credentials.ad_account_id,
        timeout=tuning.request_timeout,
        http_client=http_client,
    )
    endpoints = MetaEndpoints(client, tuning)
    page_scraper = FacebookPageScraper(http_client, timeout=tuning.download_timeout)
    downloader = AssetDownloader(
        object_store or LocalObjectStore(),
        AssetRepository(session),
        collection.brand_id,
        tuning,
        http_client,
    )

    try:
        try:
            ads = await fetch_top_spending_ads(
                endpoints, limit, tuning, build_time_params(dates.start, dates.end)
            )
        except MetaAPIError as e:
            logger.error(f"Meta API rejected the ad list request: {e}")
            raise AdImportError(
                "Meta access token is invalid or expired", status_code=401
            ) from e

        scraper = VideoScraper(
            page_scraper,
            scraper_cache if scraper_cache is not None else ScraperCache(),
            endpoints,
            credentials.page_ids,
            tuning,
        )
        processor = AdProcessor(
            endpoints, AssetUrlResolver(endpoints, scraper, tuning), downloader, collection_id
        )
        rows = await BatchOrchestrator(processor, tuning).run(ads)
    finally:
        await client.close()
        await page_scraper.close()
        await downloader.close()

    result = AuditResult(
        ads=rows,
        summary=build_summary(rows),
        last_imported=datetime.now(timezone.utc).isoformat(),
        date_range=dates,
        total_ads_imported=len(rows),
    )
    save_audit_result(session, collection, result)

    duration_ms = (datetime.now(timezone.utc) - started).total_seconds() * 1000
    logger.info(
        f"Imported {len(rows)} ads for collection {collection_id} "
        f"({sum(1 for r in rows if r.is_error)} errors)",
        extra={"entity_id": collection_id, "duration_ms": round(duration_ms, 1)},
    )
    return result


async def rescrape_videos(
    session: Session,
    collection_id: str,
    ad_ids: Optional[List[str]] = None,
    *,
    object_store: Optional[ObjectStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    tuning: Optional[ImportTuning] = None,
) -> RescrapeOutcome:
    """Re-run the page scraper for stored video rows and store what it finds."""
    collection = _load_collection(session, collection_id)
    audit = load_audit_result(collection)
    if audit is None or not audit.ads:
        raise AuditNotFoundError("No ad audit data found for this collection")

    credentials = get_brand_meta_credentials(session, collection.brand_id)
    tuning = tuning or settings.import_tuning()
    wanted = set(ad_ids or [])

    client = MetaClient(
        access_token=credentials.access_token,
        ad_account_id=credentials.ad_account_id,
        timeout=tuning.request_timeout,
        http_client=http_client,
    )
    endpoints = MetaEndpoints(client, tuning)
    page_scraper = FacebookPageScraper(http_client, timeout=tuning.download_timeout)
    # A fresh cache so earlier failures are retried
    scraper = VideoScraper(page_scraper, ScraperCache(), endpoints, credentials.page_ids, tuning)
    downloader = AssetDownloader(
        object_store or LocalObjectStore(),
        AssetRepository(session),
        collection.brand_id,
        tuning,
        http_client,
    )

    outcome = RescrapeOutcome()
    try:
        for row in audit.ads:
            if not row.video_id or (wanted and row.id not in wanted):
                continue
            logger.info(f"Re-scraping video {row.video_id} for ad {row.id}", extra={"ad_id": row.id})

            video_url = await scraper.scrape_video_url(row.video_id)
            local_url = None
            if video_url:
                local_url = await downloader.download_and_store(
                    video_url, row.video_id, AssetKind.VIDEO, collection_id, row.id
                )
            if not local_url:
                outcome.failed_count += 1
                continue

            row.asset_url = local_url
            row.asset_original_url = video_url
            row.asset_type = AssetKind.VIDEO.value
            row.asset_placement = "rescraped"
            outcome.rescraped_count += 1
            outcome.rescraped_ads.append(row)
    finally:
        await client.close()
        await page_scraper.close()
        await downloader.close()

    if outcome.rescraped_count:
        save_audit_result(session, collection, audit)
    logger.info(
        f"Re-scrape finished for collection {collection_id}: "
        f"{outcome.rescraped_count} updated, {outcome.failed_count} failed",
        extra={"entity_id": collection_id},
    )
    return outcome
