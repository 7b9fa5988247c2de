"""AdAudit - Import Pipeline Models.

Transient shapes that flow through the import pipeline plus the
JSON-serializable result written back to the audit collection.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AssetKind(str, Enum):
    """Media kind of a creative asset."""

    VIDEO = "video"
    IMAGE = "image"
    UNKNOWN = "unknown"
    ERROR = "error"


class AdState(str, Enum):
    """Per-ad processing state inside the batch orchestrator."""

    PENDING = "pending"
    RESOLVING_CREATIVE = "resolving-creative"
    RESOLVING_URL = "resolving-url"
    DOWNLOADING = "downloading"
    DONE = "done"
    ERROR = "error"


class ImportTuning(BaseModel):
    """Rate-limit, retry and batching constants for one import run."""

    spending_tiers: List[float] = [20000, 10000, 5000, 1000, 500, 100, 50, 10]
    max_pages_per_tier: int = 10
    page_size: int = 25
    request_delay: float = 1.0
    lookup_delay: float = 0.2
    request_timeout: float = 10.0
    download_timeout: float = 15.0
    download_delay: float = 2.0
    download_retries: int = 2
    min_asset_bytes: int = 1000
    batch_size: int = 5
    stagger_delay: float = 0.5
    max_errors: int = 20
    scrape_delay: float = 1.0
    allow_guessed_image_urls: bool = True


class MetaCredentials(BaseModel):
    """Decrypted Meta credentials for a brand, as handed over by the credential provider."""

    access_token: str
    ad_account_id: str
    page_ids: List[str] = []


class AssetReference(BaseModel):
    """Abstract pointer to a creative asset (video id or image hash)."""

    asset_id: str
    kind: AssetKind
    placement: str = "general"
    source_url: Optional[str] = None
    """Direct URL when the creative already carries one (legacy image_url)."""


class ResolvedAsset(BaseModel):
    """Outcome of asset resolution for one ad.

    ``remote_url`` is kept even when the download fails; ``local_url`` is set
    only once the binary has been persisted.
    """

    remote_url: str = ""
    kind: AssetKind = AssetKind.UNKNOWN
    local_url: Optional[str] = None
    placement: str = "none"
    asset_id: Optional[str] = None
    download_failed: bool = False


class CreativeDetails(BaseModel):
    """Creative fields used by the resolver. Unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    image_url: Optional[str] = None
    image_hash: Optional[str] = None
    video_id: Optional[str] = None
    thumbnail_url: Optional[str] = None
    object_story_spec: Optional[Dict[str, Any]] = None
    asset_feed_spec: Optional[Dict[str, Any]] = None
    preview_thumbnail_url: Optional[str] = None

    @property
    def has_media_structure(self) -> bool:
        """True when the creative carries enough to pick an asset without a detail fetch."""
        return bool(
            self.asset_feed_spec
            or self.object_story_spec
            or self.image_url
            or self.video_id
        )

    @property
    def has_asset_reference(self) -> bool:
        return bool(self.video_id or self.image_url or self.image_hash)


class AdMetrics(BaseModel):
    """Derived performance metrics for a single ad."""

    spend: float = 0.0
    impressions: int = 0
    purchases: int = 0
    purchase_revenue: float = 0.0
    cpa: float = 0.0
    roas: float = 0.0
    hook_rate: float = 0.0
    hold_rate: float = 0.0
    video3s: int = 0
    video25: int = 0
    video50: int = 0
    video75: int = 0
    video100: int = 0


class CamelModel(BaseModel):
    """Serializes with camelCase keys, accepts either form on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProcessedAdRow(CamelModel):
    """One flattened output row per imported ad."""

    # Identifiers
    id: str
    name: str = ""
    status: Optional[str] = None

    # Asset info
    asset_url: str = ""
    asset_original_url: str = ""
    asset_type: str = AssetKind.UNKNOWN.value
    asset_id: str = ""
    asset_placement: str = "unknown"

    landing_page: str = ""

    # Performance metrics (formatted)
    spend: str = "0.00"
    impressions: int = 0
    cpa: str = "0.00"
    roas: str = "0.00"
    purchase_revenue: str = "0.00"
    hook_rate: str = "0.0"
    hold_rate: str = "0.0"

    # Raw metrics
    purchases: int = 0
    video3s: int = 0
    video25: int = 0
    video50: int = 0
    video75: int = 0
    video100: int = 0

    campaign_name: str = ""
    adset_name: str = ""
    creative_title: str = ""
    creative_body: str = ""

    thumbnail_url: Optional[str] = None
    image_url: Optional[str] = None
    video_id: Optional[str] = None

    # Reserved for the creative analysis stage
    type: Optional[str] = None
    ad_duration: Optional[float] = None
    product_intro: Optional[str] = None
    sit_in_problem: Optional[str] = None
    creators_used: Optional[str] = None
    angle: Optional[str] = None
    format: Optional[str] = None
    emotion: Optional[str] = None
    framework: Optional[str] = None
    transcription: Optional[str] = None

    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    @property
    def is_unprocessed(self) -> bool:
        """Placeholder for an ad that never made it through processing; it carries no metrics."""
        return self.asset_type == AssetKind.ERROR.value


class ImportSummary(CamelModel):
    """Aggregate figures across the imported ads."""

    total_spend: float = 0.0
    total_purchase_revenue: float = 0.0
    total_impressions: int = 0
    total_purchases: int = 0
    average_cpa: float = 0.0
    average_roas: float = 0.0
    average_hook_rate: float = 0.0
    average_hold_rate: float = 0.0
    highest_spend: float = 0.0
    lowest_spend: float = 0.0


class DateRange(BaseModel):
    start: str
    end: str


class AuditResult(CamelModel):
    """Result object stored on the audit collection."""

    ads: List[ProcessedAdRow] = []
    summary: ImportSummary = Field(default_factory=ImportSummary)
    demographic_breakdown: Dict[str, Dict[str, Any]] = Field(
        default_factory=lambda: {"age": {}, "gender": {}}
    )
    last_imported: str = ""
    date_range: Optional[DateRange] = None
    total_ads_imported: int = 0
    import_method: str = "tiered_spending"
