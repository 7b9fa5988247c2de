"""AdAudit - Brand & Audit Collection Models."""

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field


class Brand(SQLModel, table=True):
    """Brand with its Meta integration settings.

    The access token is stored already decrypted by the credential service.
    """

    __tablename__ = "brands"

    id: str = Field(primary_key=True)
    name: str = Field(default="")
    meta_access_token: str = Field(default="")
    meta_ad_account_id: str = Field(default="")
    meta_default_ad_account_id: str = Field(default="")
    meta_facebook_page_id: str = Field(default="")
    meta_default_facebook_page_id: str = Field(default="")
    meta_facebook_pages_json: str = Field(
        default="[]", description='JSON list of {"id", "name"} page objects'
    )
    meta_manual_page_labels_json: str = Field(
        default="{}", description="JSON object keyed by page ID"
    )


class AuditCollection(SQLModel, table=True):
    """Collection record that receives the ad audit result."""

    __tablename__ = "audit_collections"

    id: str = Field(primary_key=True)
    brand_id: str = Field(index=True, foreign_key="brands.id")
    ad_account_audit_json: str = Field(default="", description="Full AuditResult as JSON")
    stages_completed_json: str = Field(default="{}")
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
