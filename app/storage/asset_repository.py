"""AdAudit - Asset Metadata Repository.

Lookup-before-write access to ``ad_assets``; upserts on the natural key
(collection_id, ad_id, asset_id).
"""

from typing import Optional

from sqlmodel import Session, select

from app.models.asset_models import PersistedAsset
from app.core.logging import get_logger

logger = get_logger("storage.assets")


class AssetRepository:
    """Metadata store for persisted creative assets."""

    def __init__(self, session: Session):
        self.session = session

    def find_asset(self, collection_id: str, ad_id: str, asset_id: str) -> Optional[PersistedAsset]:
        return self.session.exec(
            select(PersistedAsset).where(
                PersistedAsset.collection_id == collection_id,
                PersistedAsset.ad_id == ad_id,
                PersistedAsset.asset_id == asset_id,
            )
        ).first()

    def upsert_asset(self, record: PersistedAsset) -> PersistedAsset:
        """Insert the record, or update the existing row with the same key."""
        existing = self.find_asset(record.collection_id, record.ad_id, record.asset_id)
        if existing:
            existing.asset_type = record.asset_type
            existing.original_url = record.original_url
            existing.storage_path = record.storage_path
            existing.file_size = record.file_size
            existing.mime_type = record.mime_type
            record = existing
        try:
            self.session.add(record)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(record)
        return record
