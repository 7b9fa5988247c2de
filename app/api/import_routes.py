"""AdAudit - Ad Import API Routes."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlmodel import Session

from app.database import get_session
from app.core.errors import AdImportError
from app.importer.pipeline import get_audit, rescrape_videos, run_import
from app.models.import_models import DateRange, ImportSummary
from app.core.logging import get_logger

logger = get_logger("api.import")

router = APIRouter(prefix="/ad-audit", tags=["Ad Audit"])


# ── Request / Response Models ──


class ImportRequest(BaseModel):
    """Request body for POST /ad-audit/import."""

    collection_id: str
    date_range: Optional[DateRange] = None
    """Explicit window in YYYY-MM-DD; defaults to the last 30 days."""
    max_ads: Optional[int] = None
    """Defaults to 500, clamped to [10, 1000]."""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"collection_id": "col_123", "max_ads": 200},
                {
                    "collection_id": "col_123",
                    "date_range": {"start": "2026-02-01", "end": "2026-02-28"},
                },
            ]
        }
    }


class ImportData(BaseModel):
    ads_imported: int
    date_range: Optional[DateRange] = None
    import_method: str
    summary: ImportSummary


class ImportResponse(BaseModel):
    status: str = "success"
    data: ImportData


class RescrapeRequest(BaseModel):
    """Request body for POST /ad-audit/rescrape-videos."""

    collection_id: str
    ad_ids: Optional[List[str]] = None
    """Only re-scrape these ads; all video rows when omitted."""


def _raise_http(e: Exception, action: str):
    if isinstance(e, AdImportError):
        logger.warning(f"{action} failed: {e}", extra={"status_code": e.status_code})
        raise HTTPException(status_code=e.status_code, detail=str(e))
    logger.error(f"{action} failed: {e!r}")
    raise HTTPException(status_code=500, detail=f"{action} failed")


# ── Endpoints ──


@router.post("/import", response_model=ImportResponse)
async def import_ads(
    request: ImportRequest,
    http_request: Request,
    session: Session = Depends(get_session),
):
    """Import the brand's top-spending ads into the audit collection.

    Per-ad failures show up as ``status: "error"`` rows in the stored
    result; only run-level failures produce an error response.
    """
    try:
        result = await run_import(
            session=session,
            collection_id=request.collection_id,
            date_range=request.date_range,
            max_ads=request.max_ads,
            scraper_cache=getattr(http_request.app.state, "scraper_cache", None),
        )
    except Exception as e:
        _raise_http(e, "Ad import")

    return ImportResponse(
        data=ImportData(
            ads_imported=result.total_ads_imported,
            date_range=result.date_range,
            import_method=result.import_method,
            summary=result.summary,
        )
    )


@router.post("/rescrape-videos")
async def rescrape(request: RescrapeRequest, session: Session = Depends(get_session)):
    """Retry the page scraper for stored video rows."""
    try:
        outcome = await rescrape_videos(session, request.collection_id, request.ad_ids)
    except Exception as e:
        _raise_http(e, "Video re-scrape")

    return {
        "status": "success",
        "rescraped_count": outcome.rescraped_count,
        "failed_count": outcome.failed_count,
        "rescraped_ads": [row.model_dump(by_alias=True) for row in outcome.rescraped_ads],
    }


@router.get("/{collection_id}")
async def get_ad_audit(collection_id: str, session: Session = Depends(get_session)):
    """Get the stored ad audit for a collection."""
    try:
        audit = get_audit(session, collection_id)
    except Exception as e:
        _raise_http(e, "Audit lookup")

    if audit is None:
        return {"status": "no_data", "message": "No ads have been imported yet."}
    return {"status": "success", "audit": audit.model_dump(by_alias=True)}
