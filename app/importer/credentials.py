"""AdAudit - Brand Credential Provider."""

import json
from typing import Any, List

from sqlmodel import Session

from app.connectors.meta.client import normalize_account_id
from app.core.errors import (
    AdAccountNotConfiguredError,
    BrandNotFoundError,
    IntegrationNotConfiguredError,
)
from app.models.brand_models import Brand
from app.models.import_models import MetaCredentials
from app.core.logging import get_logger

logger = get_logger("importer.credentials")


def _load_json(raw: str, default: Any) -> Any:
    try:
        value = json.loads(raw) if raw else default
    except ValueError:
        logger.warning("Ignoring malformed page JSON on brand record")
        return default
    return value if isinstance(value, type(default)) else default


def collect_brand_page_ids(brand: Brand) -> List[str]:
    """All page identifiers known for a brand, de-duplicated in discovery order."""
    pages: List[str] = []
    for page_id in (brand.meta_default_facebook_page_id, brand.meta_facebook_page_id):
        if page_id:
            pages.append(page_id)
    for page in _load_json(brand.meta_facebook_pages_json, []):
        if isinstance(page, dict):
            pages += [str(page[k]) for k in ("id", "name") if page.get(k)]
    pages += list(_load_json(brand.meta_manual_page_labels_json, {}).keys())
    return list(dict.fromkeys(pages))


def get_brand_meta_credentials(session: Session, brand_id: str) -> MetaCredentials:
    """Return the brand's Meta token, ad account and page IDs.

    Raises:
        BrandNotFoundError, IntegrationNotConfiguredError,
        AdAccountNotConfiguredError
    """
    brand = session.get(Brand, brand_id)
    if brand is None:
        raise BrandNotFoundError("Brand not found")
    if not brand.meta_access_token:
        raise IntegrationNotConfiguredError("Meta integration not configured")

    ad_account_id = brand.meta_default_ad_account_id or brand.meta_ad_account_id
    if not ad_account_id:
        raise AdAccountNotConfiguredError("No Meta ad account configured")

    return MetaCredentials(
        access_token=brand.meta_access_token,
        ad_account_id=normalize_account_id(ad_account_id),
        page_ids=collect_brand_page_ids(brand),
    )
