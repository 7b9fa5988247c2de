"""AdAudit - Tiered Ad Fetcher.

The ads edge has no global "top N by spend" query, so ads are pulled in
descending minimum-spend tiers: the biggest spenders arrive in the first
few pages and the loop stops as soon as enough unique ads are collected.
"""

import asyncio
from typing import Any, Dict, List, Optional

from app.connectors.meta.client import MetaAPIError
from app.connectors.meta.endpoints import MetaEndpoints
from app.models.import_models import ImportTuning
from app.core.logging import get_logger

logger = get_logger("importer.fetcher")

# Insight fields some accounts reject; the tier is skipped when this shows up
UNSUPPORTED_FIELD_SIGNATURES = ("video_thruplay_actions",)


def _first_insight(ad: Dict[str, Any]) -> Dict[str, Any]:
    insights = ad.get("insights") or {}
    data = insights.get("data") if isinstance(insights, dict) else None
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return {}


def ad_spend(ad: Dict[str, Any]) -> float:
    try:
        return float(_first_insight(ad).get("spend") or 0)
    except (TypeError, ValueError):
        return 0.0


def ad_impressions(ad: Dict[str, Any]) -> int:
    try:
        return int(float(_first_insight(ad).get("impressions") or 0))
    except (TypeError, ValueError):
        return 0


async def _fetch_tier(
    endpoints: MetaEndpoints,
    min_spend: float,
    seen_ids: set,
    remaining: int,
    tuning: ImportTuning,
    time_params: Optional[Dict[str, str]],
) -> List[Dict[str, Any]]:
    """Page through one spend tier, returning ads not already in ``seen_ids``."""
    tier_ads: List[Dict[str, Any]] = []
    next_url: Optional[str] = endpoints.ads_url()
    params: Optional[Dict[str, Any]] = endpoints.ads_params(min_spend, time_params)
    page_count = 0

    while next_url and page_count < tuning.max_pages_per_tier and len(tier_ads) < remaining:
        logger.info(f"  Tier ${min_spend:g}: fetching page {page_count + 1}")
        try:
            result = await endpoints.fetch_ads_page(next_url, params)
        except MetaAPIError as e:
            if e.is_auth_error:
                raise
            if any(sig in str(e) for sig in UNSUPPORTED_FIELD_SIGNATURES):
                logger.warning(f"Unsupported field error, skipping tier ${min_spend:g}")
            else:
                logger.warning(
                    f"Skipping tier ${min_spend:g} due to error: {e}",
                    extra={"status_code": e.status_code},
                )
            break

        for ad in result.get("data") or []:
            if not isinstance(ad, dict) or not ad.get("id") or ad["id"] in seen_ids:
                continue
            if ad_impressions(ad) > 0 and ad_spend(ad) >= min_spend:
                seen_ids.add(ad["id"])
                tier_ads.append(ad)

        paging = result.get("paging") or {}
        next_url = paging.get("next")
        params = None
        page_count += 1

        if next_url and tuning.request_delay > 0:
            await asyncio.sleep(tuning.request_delay)

    return tier_ads


async def fetch_top_spending_ads(
    endpoints: MetaEndpoints,
    target_count: int,
    tuning: ImportTuning | None = None,
    time_params: Optional[Dict[str, str]] = None,
) -> List[Dict[str, Any]]:
    """Return up to ``target_count`` ads sorted by spend, highest first.

    A failing tier is abandoned and the next one tried; only an invalid
    token aborts the whole fetch.
    """
    tuning = tuning or endpoints.tuning
    all_ads: List[Dict[str, Any]] = []
    seen_ids: set = set()

    logger.info(f"Starting tiered ad fetch for top {target_count} highest spending ads")

    for tier_index, min_spend in enumerate(tuning.spending_tiers):
        if len(all_ads) >= target_count:
            break
        if tier_index > 0 and tuning.request_delay > 0:
            await asyncio.sleep(tuning.request_delay)

        new_ads = await _fetch_tier(
            endpoints,
            min_spend,
            seen_ids,
            target_count - len(all_ads),
            tuning,
            time_params,
        )
        all_ads.extend(new_ads)
        logger.info(
            f"Tier ${min_spend:g} complete: {len(new_ads)} new ads added. Total: {len(all_ads)}"
        )

    all_ads.sort(key=ad_spend, reverse=True)
    final_ads = all_ads[:target_count]
    logger.info(f"Final result: {len(final_ads)} ads selected from {len(all_ads)} found")
    return final_ads
