"""AdAudit - Ad Field Extraction."""

from typing import Any, Dict, Optional

from app.models.import_models import AssetKind, AssetReference, CreativeDetails


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def extract_ad_name(ad: Dict[str, Any]) -> str:
    """Best human-readable name for an ad, falling back to its ID."""
    creative = _dict(ad.get("creative"))
    story = _dict(creative.get("object_story_spec"))
    video_data = _dict(story.get("video_data"))
    link_data = _dict(story.get("link_data"))

    for candidate in (
        ad.get("name"),
        creative.get("name"),
        creative.get("title"),
        video_data.get("title"),
        link_data.get("name"),
        link_data.get("message"),
    ):
        if _text(candidate):
            return _text(candidate)

    body = _text(creative.get("body"))
    if body:
        return body[:50] + "..." if len(body) > 50 else body

    campaign = _text(_dict(ad.get("campaign")).get("name"))
    if campaign:
        return f"Campaign: {campaign}"
    adset = _text(_dict(ad.get("adset")).get("name"))
    if adset:
        return f"AdSet: {adset}"
    return f"Ad {ad.get('id', '')}"


def extract_landing_page(creative: Dict[str, Any]) -> str:
    creative = _dict(creative)
    story = _dict(creative.get("object_story_spec"))

    link = _dict(story.get("link_data")).get("link")
    if link:
        return link

    cta = _dict(_dict(story.get("video_data")).get("call_to_action"))
    cta_link = _dict(cta.get("value")).get("link")
    if cta_link:
        return cta_link

    link_urls = _dict(creative.get("asset_feed_spec")).get("link_urls") or []
    if link_urls and isinstance(link_urls[0], dict) and link_urls[0].get("website_url"):
        return link_urls[0]["website_url"]
    return ""


def extract_video_id(
    ad_creative: Dict[str, Any],
    resolved: Optional[CreativeDetails] = None,
    reference: Optional[AssetReference] = None,
) -> Optional[str]:
    """Video ID from the ad's creative, the resolved creative, or the picked asset."""
    if _dict(ad_creative).get("video_id"):
        return ad_creative["video_id"]
    if resolved is not None:
        if resolved.video_id:
            return resolved.video_id
        videos = _dict(resolved.asset_feed_spec).get("videos") or []
        if videos and isinstance(videos[0], dict) and videos[0].get("video_id"):
            return videos[0]["video_id"]
    if reference is not None and reference.kind == AssetKind.VIDEO:
        return reference.asset_id
    return None
