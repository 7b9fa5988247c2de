"""AdAudit - Persisted Asset Models.

One row per stored creative binary. The unique constraint on
(collection_id, ad_id, asset_id) keeps imports idempotent: re-importing
the same ad never stores a second copy.
"""

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field, UniqueConstraint


class PersistedAsset(SQLModel, table=True):
    """Metadata for a creative asset copied into the object store."""

    __tablename__ = "ad_assets"
    __table_args__ = (
        UniqueConstraint(
            "collection_id",
            "ad_id",
            "asset_id",
            name="uq_ad_asset",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    collection_id: str = Field(index=True, description="Audit collection the asset belongs to")
    ad_id: str = Field(index=True, description="Meta ad ID")
    asset_id: str = Field(index=True, description="Video ID or image hash")
    asset_type: str = Field(description="video | image")
    original_url: str = Field(default="", description="Remote URL the binary was fetched from")
    storage_path: str = Field(description="Path inside the object store")
    file_size: int = Field(default=0, description="Bytes stored")
    mime_type: str = Field(default="", description="Content type stored with the object")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
