"""AdAudit - Asset Downloader.

Copies a creative binary into the object store exactly once per
(collection, ad, asset) key, with a small linear-backoff retry.
"""

import asyncio
from typing import Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from app.models.asset_models import PersistedAsset
from app.models.import_models import AssetKind, ImportTuning
from app.storage.asset_repository import AssetRepository
from app.storage.object_store import ObjectStore, StorageError
from app.config import settings
from app.core.logging import get_logger

logger = get_logger("importer.downloader")

DEFAULT_CONTENT_TYPES = {AssetKind.VIDEO: "video/mp4", AssetKind.IMAGE: "image/jpeg"}
EXTENSIONS = {
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def _content_type(response: httpx.Response, kind: AssetKind) -> str:
    """Trust the origin's media type only when it matches the asset kind."""
    declared = response.headers.get("content-type", "").split(";")[0].strip().lower()
    if declared in EXTENSIONS and declared.startswith(f"{kind.value}/"):
        return declared
    return DEFAULT_CONTENT_TYPES[kind]


class AssetDownloader:
    """Downloads assets and records them in the metadata store."""

    def __init__(
        self,
        object_store: ObjectStore,
        repository: AssetRepository,
        brand_id: str,
        tuning: ImportTuning | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.object_store = object_store
        self.repository = repository
        self.brand_id = brand_id
        self.tuning = tuning or ImportTuning()
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": settings.meta_user_agent},
                follow_redirects=True,
                timeout=self.tuning.download_timeout,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    def _existing_url(self, collection_id: str, ad_id: str, asset_id: str) -> Optional[str]:
        try:
            existing = self.repository.find_asset(collection_id, ad_id, asset_id)
        except SQLAlchemyError as e:
            logger.warning(f"Asset lookup failed for {asset_id}: {e}")
            return None
        if existing:
            return self.object_store.get_public_url(existing.storage_path)
        return None

    async def download_and_store(
        self,
        url: str,
        asset_id: str,
        kind: AssetKind,
        collection_id: str,
        ad_id: str,
    ) -> Optional[str]:
        """Return the public URL of the stored asset, or None on failure."""
        existing_url = self._existing_url(collection_id, ad_id, asset_id)
        if existing_url:
            logger.info(f"Asset {asset_id} already stored for ad {ad_id}", extra={"asset_id": asset_id})
            return existing_url

        client = await self._get_client()
        max_retries = self.tuning.download_retries

        for attempt in range(max_retries + 1):
            logger.info(f"Downloading {kind.value} asset: {asset_id} (attempt {attempt + 1})")
            delay = self.tuning.download_delay * (attempt + 1)
            if delay > 0:
                await asyncio.sleep(delay)

            try:
                resp = await client.get(
                    url,
                    headers={"Accept": f"{kind.value}/*"},
                    timeout=self.tuning.download_timeout,
                )
            except httpx.TimeoutException:
                logger.warning(f"Timeout downloading asset {asset_id} (attempt {attempt + 1})")
                continue
            except httpx.RequestError as e:
                logger.warning(f"Error downloading asset {asset_id} (attempt {attempt + 1}): {e!r}")
                continue

            if not resp.is_success:
                logger.warning(
                    f"Failed to download asset {asset_id}: {resp.status_code}",
                    extra={"asset_id": asset_id, "status_code": resp.status_code},
                )
                continue

            data = resp.content
            # Tiny payloads are error pages served with a 200
            if len(data) < self.tuning.min_asset_bytes:
                logger.warning(f"Asset {asset_id} too small ({len(data)} bytes), skipping")
                return None

            content_type = _content_type(resp, kind)
            path = f"{self.brand_id}/{asset_id}.{EXTENSIONS[content_type]}"
            try:
                await self.object_store.upload(path, data, content_type)
            except StorageError as e:
                logger.warning(f"Failed to upload asset {asset_id} to storage: {e}")
                continue

            public_url = self.object_store.get_public_url(path)
            self._record(collection_id, ad_id, asset_id, kind, url, path, len(data), content_type)
            return public_url

        logger.warning(f"Failed to download asset {asset_id} after {max_retries + 1} attempts")
        return None

    def _record(
        self,
        collection_id: str,
        ad_id: str,
        asset_id: str,
        kind: AssetKind,
        url: str,
        path: str,
        size: int,
        content_type: str,
    ) -> None:
        """Write the metadata row. The object is already stored, so failures only log."""
        try:
            self.repository.upsert_asset(
                PersistedAsset(
                    collection_id=collection_id,
                    ad_id=ad_id,
                    asset_id=asset_id,
                    asset_type=kind.value,
                    original_url=url,
                    storage_path=path,
                    file_size=size,
                    mime_type=content_type,
                )
            )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to save asset metadata for {asset_id}: {e}")
