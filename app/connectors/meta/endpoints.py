"""AdAudit - Meta API Endpoints.

Graph API lookups used by the import pipeline. Each method returns the raw
JSON shape and leaves fallback decisions to the caller. Single-object
lookups are preceded by a short fixed delay to avoid bursting the rate limit.
"""

import asyncio
import json
from datetime import date
from typing import Any, Dict, List, Optional

from app.connectors.meta.client import MetaClient, META_BASE
from app.models.import_models import ImportTuning
from app.core.logging import get_logger

logger = get_logger("meta.endpoints")

CREATIVE_FIELDS = (
    "id,name,title,body,image_url,video_id,thumbnail_url,"
    "object_story_spec,asset_feed_spec,image_hash"
)
CREATIVE_DETAIL_FIELDS = (
    "asset_feed_spec,object_story_spec,image_url,video_id,image_hash,"
    "title,body,thumbnail_url"
)
INSIGHT_FIELDS = (
    "spend,impressions,clicks,ctr,cpm,cpp,actions,action_values,"
    "video_p25_watched_actions,video_p50_watched_actions,"
    "video_p75_watched_actions,video_p100_watched_actions,"
    "video_play_actions,video_avg_time_watched_actions"
)
AD_FIELDS = ",".join(
    [
        "id",
        "name",
        "status",
        f"creative{{{CREATIVE_FIELDS}}}",
        f"insights{{{INSIGHT_FIELDS}}}",
        "adset{id,name,targeting}",
        "campaign{id,name,objective}",
    ]
)
PREVIEW_AD_FORMAT = "MOBILE_FEED_STANDARD"
DATE_PRESETS = {7: "last_7d", 30: "last_30d", 90: "last_90d"}


def build_time_params(date_start: Optional[str], date_stop: Optional[str]) -> Dict[str, str]:
    """Map a date window to Graph time parameters.

    Windows of exactly 7/30/90 days use the matching preset, anything
    else an explicit time_range. No window means the last 30 days.
    """
    if not date_start or not date_stop:
        return {"date_preset": "last_30d"}
    days = (date.fromisoformat(date_stop) - date.fromisoformat(date_start)).days
    if days in DATE_PRESETS:
        return {"date_preset": DATE_PRESETS[days]}
    return {"time_range": json.dumps({"since": date_start, "until": date_stop})}


class MetaEndpoints:
    """Graph lookups scoped to one ad account."""

    def __init__(self, client: MetaClient, tuning: ImportTuning | None = None):
        self.client = client
        self.tuning = tuning or ImportTuning()
        self.ad_account_id = client.ad_account_id

    async def _pause(self) -> None:
        if self.tuning.lookup_delay > 0:
            await asyncio.sleep(self.tuning.lookup_delay)

    # ── Ad List ──

    def ads_url(self) -> str:
        return f"{META_BASE}/act_{self.ad_account_id}/ads"

    def ads_params(self, min_spend: float, time_params: Dict[str, str] | None = None) -> Dict[str, Any]:
        """Query for ads spending at least ``min_spend`` with impressions."""
        params: Dict[str, Any] = {
            "fields": AD_FIELDS,
            "level": "ad",
            "limit": str(self.tuning.page_size),
            "sort": "spend_descending",
            "filtering": json.dumps(
                [
                    {"field": "impressions", "operator": "GREATER_THAN", "value": 0},
                    {
                        "field": "spend",
                        "operator": "GREATER_THAN_OR_EQUAL",
                        "value": min_spend,
                    },
                ]
            ),
        }
        params.update(time_params or {"date_preset": "last_30d"})
        return params

    async def fetch_ads_page(self, url: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        """Fetch one page of ads. Paging links already carry their query."""
        return await self.client.get(url, params)

    # ── Creatives ──

    async def fetch_ad_creative(self, ad_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the creative summary attached to an ad."""
        await self._pause()
        result = await self.client.get(ad_id, {"fields": f"creative{{{CREATIVE_FIELDS}}}"})
        creative = result.get("creative")
        return creative if isinstance(creative, dict) else None

    async def fetch_creative(self, creative_id: str) -> Dict[str, Any]:
        """Fetch the full creative object by ID."""
        await self._pause()
        return await self.client.get(creative_id, {"fields": CREATIVE_DETAIL_FIELDS})

    async def fetch_ad_previews(self, ad_id: str) -> List[Dict[str, Any]]:
        result = await self.client.get(
            f"{ad_id}/previews", {"ad_format": PREVIEW_AD_FORMAT}
        )
        return result.get("data") or []

    def preview_url(self, ad_id: str) -> str:
        """Preview endpoint address without credentials."""
        return f"{META_BASE}/{ad_id}/previews?ad_format={PREVIEW_AD_FORMAT}"

    # ── Videos ──

    async def fetch_video_source(self, video_id: str) -> Dict[str, Any]:
        await self._pause()
        return await self.client.get(video_id, {"fields": "source"})

    async def fetch_video_owner(self, video_id: str) -> Dict[str, Any]:
        """Return the ``from`` object (page) that owns a video, or {}."""
        result = await self.client.get(video_id, {"fields": "from{id,username,name}"})
        owner = result.get("from")
        return owner if isinstance(owner, dict) else {}

    # ── Images ──

    async def fetch_account_images(self, image_hash: str) -> List[Dict[str, Any]]:
        """Look up an image hash in the ad account's image library."""
        await self._pause()
        result = await self.client.get(
            f"act_{self.ad_account_id}/adimages",
            {"hashes": json.dumps([image_hash]), "fields": "hash,url"},
        )
        return result.get("data") or []

    async def fetch_image(self, image_hash: str) -> Dict[str, Any]:
        """Direct hash lookup; often needs permissions the account lacks."""
        await self._pause()
        return await self.client.get(image_hash, {"fields": "url"})
