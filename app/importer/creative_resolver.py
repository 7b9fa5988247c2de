"""AdAudit - Creative Resolver.

Fetches an ad's creative (with a second detail fetch when the summary is
too thin) and picks the best asset from its asset feed spec by placement.
"""

from typing import Any, Dict, List, Optional, Tuple

from app.connectors.meta.client import MetaAPIError
from app.connectors.meta.endpoints import MetaEndpoints
from app.models.import_models import AssetKind, AssetReference, CreativeDetails
from app.core.logging import get_logger

logger = get_logger("importer.creative")

# Most to least preferred; 9x16 story/reels assets first
PLACEMENT_PRIORITY: List[Tuple[str, str]] = [
    ("instagram", "story"),
    ("facebook", "story"),
    ("instagram", "reels"),
    ("facebook", "reels"),
    ("instagram", "feed"),
    ("facebook", "feed"),
]

# Instagram reports its feed position as "stream"
POSITION_ALIASES: Dict[str, Tuple[str, ...]] = {
    "story": ("story",),
    "reels": ("reels",),
    "feed": ("feed", "stream"),
}


def merge_creative(summary: CreativeDetails, detail: CreativeDetails) -> CreativeDetails:
    """Combine the ad's creative summary with the full creative object.

    Precedence per field: a non-empty summary value wins; the detail fetch
    only fills fields the summary left empty. The summary's ``id`` is kept.
    """
    merged: Dict[str, Any] = detail.model_dump(exclude_none=True)
    for field, value in summary.model_dump().items():
        if value not in (None, "", {}, []):
            merged[field] = value
    merged["id"] = summary.id or detail.id
    return CreativeDetails.model_validate(merged)


async def _preview_thumbnail(endpoints: MetaEndpoints, ad_id: str) -> Optional[str]:
    """Best-effort preview endpoint used as a thumbnail substitute."""
    try:
        previews = await endpoints.fetch_ad_previews(ad_id)
    except MetaAPIError as e:
        logger.warning(f"Could not get preview for ad {ad_id}: {e}", extra={"ad_id": ad_id})
        return None
    if previews:
        logger.info(f"Ad preview available for ad {ad_id}")
        return endpoints.preview_url(ad_id)
    return None


async def resolve_creative(endpoints: MetaEndpoints, ad_id: str) -> Optional[CreativeDetails]:
    """Return the creative details for an ad, or None when they cannot be fetched."""
    try:
        summary_data = await endpoints.fetch_ad_creative(ad_id)
    except MetaAPIError as e:
        logger.error(
            f"Failed to fetch ad creative for ad {ad_id}: {e}",
            extra={"ad_id": ad_id, "status_code": e.status_code},
        )
        return None

    if not summary_data:
        logger.warning(f"No creative found for ad {ad_id}")
        return None

    summary = CreativeDetails.model_validate(summary_data)
    if summary.has_media_structure:
        return summary
    if not summary.id:
        logger.warning(f"No creative ID found for ad {ad_id}")
        return summary

    logger.info(f"Fetching additional creative details for creative {summary.id}")
    try:
        detail_data = await endpoints.fetch_creative(summary.id)
    except MetaAPIError as e:
        logger.error(
            f"Failed to fetch creative details for {summary.id}: {e}",
            extra={"ad_id": ad_id, "status_code": e.status_code},
        )
        return summary

    merged = merge_creative(summary, CreativeDetails.model_validate(detail_data))

    if not merged.thumbnail_url and merged.has_asset_reference:
        merged.preview_thumbnail_url = await _preview_thumbnail(endpoints, ad_id)

    return merged


def _rule_matches(spec: Dict[str, Any], platform: str, position: str) -> bool:
    platforms = spec.get("publisher_platforms") or []
    if isinstance(platforms, str):
        platforms = [platforms]
    if spec.get("publisher_platform"):
        platforms = list(platforms) + [spec["publisher_platform"]]
    if platform not in platforms:
        return False
    positions = spec.get(f"{platform}_positions") or []
    return any(pos in POSITION_ALIASES[position] for pos in positions)


def _label_asset(
    label: Any, assets: List[Dict[str, Any]], id_key: str
) -> Optional[str]:
    """Resolve a rule's video/image label to an asset ID.

    Labels either carry the ID directly or name an adlabel that one of the
    feed's assets is tagged with.
    """
    if not isinstance(label, dict):
        return None
    if label.get(id_key):
        return label[id_key]
    name = label.get("name")
    if not name:
        return None
    for asset in assets:
        labels = asset.get("adlabels") or []
        if any(isinstance(al, dict) and al.get("name") == name for al in labels):
            return asset.get(id_key)
    return None


def pick_best_asset(feed_spec: Optional[Dict[str, Any]]) -> Optional[AssetReference]:
    """Pick the preferred asset from an asset feed spec.

    Customization rules are scanned in placement priority order; within a
    matching rule a video beats an image. Without any matching rule the
    first general video, then the first general image, is used.
    """
    if not feed_spec:
        return None

    videos = [v for v in feed_spec.get("videos") or [] if isinstance(v, dict)]
    images = [i for i in feed_spec.get("images") or [] if isinstance(i, dict)]
    rules = [r for r in feed_spec.get("asset_customization_rules") or [] if isinstance(r, dict)]

    for platform, position in PLACEMENT_PRIORITY:
        placement = f"{platform}_{position}"
        for rule in rules:
            if not _rule_matches(rule.get("customization_spec") or {}, platform, position):
                continue
            video_id = _label_asset(rule.get("video_label"), videos, "video_id")
            if video_id:
                logger.info(f"Found video asset {video_id} for {placement}")
                return AssetReference(asset_id=video_id, kind=AssetKind.VIDEO, placement=placement)
            image_hash = _label_asset(rule.get("image_label"), images, "hash")
            if image_hash:
                logger.info(f"Found image asset {image_hash} for {placement}")
                return AssetReference(asset_id=image_hash, kind=AssetKind.IMAGE, placement=placement)

    if videos and videos[0].get("video_id"):
        return AssetReference(asset_id=videos[0]["video_id"], kind=AssetKind.VIDEO, placement="general")
    if images and images[0].get("hash"):
        return AssetReference(asset_id=images[0]["hash"], kind=AssetKind.IMAGE, placement="general")
    return None
