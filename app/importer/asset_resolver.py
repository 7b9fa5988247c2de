"""AdAudit - Asset URL Resolver.

Turns an ``AssetReference`` into a downloadable URL. Each asset kind has an
ordered list of strategies; the first one to return a URL wins. A strategy
returns None to fall through and raises ``StopResolution`` to end the
chain without a URL.
"""

from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from app.connectors.meta.client import MetaAPIError
from app.connectors.meta.endpoints import MetaEndpoints
from app.importer.scraper import VideoScraper
from app.models.import_models import (
    AssetKind,
    AssetReference,
    CreativeDetails,
    ImportTuning,
)
from app.core.logging import get_logger

logger = get_logger("importer.assets")

CDN_IMAGE_URL_TEMPLATE = "https://scontent.xx.fbcdn.net/v/t45.1600-4/{image_hash}"

Strategy = Callable[[AssetReference], Awaitable[Optional[str]]]


class StopResolution(Exception):
    """Ends a strategy chain; later strategies must not run."""


def guessed_image_url(image_hash: str) -> str:
    """CDN-style URL built from a hash. Unverified until downloaded."""
    return CDN_IMAGE_URL_TEMPLATE.format(image_hash=image_hash)


class AssetUrlResolver:
    """Resolves video IDs and image hashes to download URLs."""

    def __init__(
        self,
        endpoints: MetaEndpoints,
        scraper: VideoScraper | None = None,
        tuning: ImportTuning | None = None,
    ):
        self.endpoints = endpoints
        self.scraper = scraper
        self.tuning = tuning or endpoints.tuning
        self.strategies: Dict[AssetKind, List[Tuple[str, Strategy]]] = {
            AssetKind.VIDEO: [
                ("direct", self._direct_url),
                ("video_source", self._video_source),
                ("scraper", self._scraped_video),
            ],
            AssetKind.IMAGE: [
                ("direct", self._direct_url),
                ("account_images", self._account_image),
                ("image_lookup", self._image_lookup),
                ("cdn_guess", self._guessed_image),
            ],
        }

    async def resolve_download_url(self, reference: AssetReference) -> Optional[str]:
        for name, strategy in self.strategies.get(reference.kind, []):
            try:
                url = await strategy(reference)
            except StopResolution as e:
                logger.warning(
                    f"Resolution of {reference.kind.value} {reference.asset_id} stopped at {name}: {e}",
                    extra={"asset_id": reference.asset_id},
                )
                return None
            if url:
                logger.info(
                    f"Resolved {reference.kind.value} {reference.asset_id} via {name}",
                    extra={"asset_id": reference.asset_id},
                )
                return url
        return None

    # ── Strategies ──

    async def _direct_url(self, reference: AssetReference) -> Optional[str]:
        return reference.source_url

    async def _video_source(self, reference: AssetReference) -> Optional[str]:
        """Video source field; only a permission error falls through to scraping."""
        try:
            data = await self.endpoints.fetch_video_source(reference.asset_id)
        except MetaAPIError as e:
            if e.is_permission_error:
                logger.warning(
                    f"OAuth permission error reading video {reference.asset_id}, trying scraper"
                )
                return None
            raise StopResolution(f"video source lookup failed: {e}") from e
        if data.get("source"):
            return data["source"]
        raise StopResolution("no source URL in response")

    async def _scraped_video(self, reference: AssetReference) -> Optional[str]:
        if self.scraper is None:
            return None
        return await self.scraper.scrape_video_url(reference.asset_id)

    async def _account_image(self, reference: AssetReference) -> Optional[str]:
        try:
            images = await self.endpoints.fetch_account_images(reference.asset_id)
        except MetaAPIError as e:
            logger.warning(f"Failed to fetch image URL for hash {reference.asset_id}: {e}")
            return None
        for image in images:
            if image.get("hash") == reference.asset_id and image.get("url"):
                return image["url"]
        if images and images[0].get("url"):
            logger.info(f"Using first image URL for hash {reference.asset_id}")
            return images[0]["url"]
        return None

    async def _image_lookup(self, reference: AssetReference) -> Optional[str]:
        try:
            data = await self.endpoints.fetch_image(reference.asset_id)
        except MetaAPIError as e:
            logger.info(f"Direct image lookup failed for {reference.asset_id}: {e}")
            return None
        return data.get("url")

    async def _guessed_image(self, reference: AssetReference) -> Optional[str]:
        if not self.tuning.allow_guessed_image_urls:
            return None
        logger.info(f"Falling back to guessed CDN URL for image {reference.asset_id}")
        return guessed_image_url(reference.asset_id)


def legacy_asset_references(
    creative: Optional[CreativeDetails], ad_id: str, placement: str
) -> List[AssetReference]:
    """References derived from pre-feed-spec creative fields, in preference order."""
    if creative is None:
        return []
    refs: List[AssetReference] = []
    if creative.video_id:
        refs.append(AssetReference(asset_id=creative.video_id, kind=AssetKind.VIDEO, placement=placement))
    if creative.image_url:
        refs.append(
            AssetReference(
                asset_id=creative.image_hash or f"img_{ad_id}",
                kind=AssetKind.IMAGE,
                placement=placement,
                source_url=creative.image_url,
            )
        )
    if creative.image_hash:
        refs.append(AssetReference(asset_id=creative.image_hash, kind=AssetKind.IMAGE, placement=placement))
    return refs
