"""AdAudit - Central Configuration via Pydantic Settings."""

import os
from typing import List

from pydantic_settings import BaseSettings

from app.models.import_models import ImportTuning


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_access_token: str = ""
    meta_ad_account_id: str = ""
    meta_api_version: str = "v22.0"
    meta_base_url: str = "https://graph.facebook.com"
    meta_user_agent: str = "Mozilla/5.0 (compatible; AdAudit/1.0)"

    # ── Database ──
    database_url: str = ""

    # ── Asset Storage ──
    storage_root: str = "./storage"
    storage_bucket: str = "onesheet-assets"
    storage_public_base_url: str = "http://localhost:8000/assets"

    # ── App ──
    log_level: str = "INFO"

    # ── Import Tuning ──
    import_spending_tiers: List[float] = [20000, 10000, 5000, 1000, 500, 100, 50, 10]
    import_max_pages_per_tier: int = 10
    import_page_size: int = 25
    import_request_delay: float = 1.0  # Between ad list pages and tiers
    import_lookup_delay: float = 0.2  # Before each creative/asset lookup
    import_request_timeout: float = 10.0
    import_download_timeout: float = 15.0
    import_download_delay: float = 2.0  # Multiplied by attempt number
    import_download_retries: int = 2
    import_min_asset_bytes: int = 1000
    import_batch_size: int = 5
    import_stagger_delay: float = 0.5
    import_max_errors: int = 20
    import_scrape_delay: float = 1.0
    import_allow_guessed_image_urls: bool = True
    import_default_max_ads: int = 500
    import_min_ads: int = 10
    import_max_ads: int = 1000

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/adaudit.db"
        return "sqlite:///./adaudit.db"

    @property
    def meta_graph_url(self) -> str:
        return f"{self.meta_base_url}/{self.meta_api_version}"

    def import_tuning(self) -> ImportTuning:
        """Bundle the import tuning values for injection into the pipeline."""
        return ImportTuning(
            spending_tiers=list(self.import_spending_tiers),
            max_pages_per_tier=self.import_max_pages_per_tier,
            page_size=self.import_page_size,
            request_delay=self.import_request_delay,
            lookup_delay=self.import_lookup_delay,
            request_timeout=self.import_request_timeout,
            download_timeout=self.import_download_timeout,
            download_delay=self.import_download_delay,
            download_retries=self.import_download_retries,
            min_asset_bytes=self.import_min_asset_bytes,
            batch_size=self.import_batch_size,
            stagger_delay=self.import_stagger_delay,
            max_errors=self.import_max_errors,
            scrape_delay=self.import_scrape_delay,
            allow_guessed_image_urls=self.import_allow_guessed_image_urls,
        )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
