"""AdAudit - FastAPI Application Entry Point.

Tiered Meta ad import with creative asset resolution.
"""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.config import settings
from app.database import init_db, test_connection
from app.api.import_routes import router as import_router
from app.importer.scraper import ScraperCache
from app.core.logging import get_logger

logger = get_logger("main")

STORAGE_DIR = Path(settings.storage_root)
STORAGE_DIR.mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("AdAudit starting up...")
    if test_connection():
        try:
            init_db()
        except Exception as e:
            logger.error(f"Table creation failed: {e}")
    else:
        logger.error("Database NOT connected, endpoints will fail")
    # Scrape outcomes live for the whole process
    app.state.scraper_cache = ScraperCache()
    yield
    logger.info(f"AdAudit shut down ({len(app.state.scraper_cache)} cached scrapes)")


app = FastAPI(
    title="AdAudit",
    description="Import top-spending Meta ads, resolve their creatives to stored media and compute performance metrics.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(import_router)

# Stored creative assets
app.mount("/assets", StaticFiles(directory=str(STORAGE_DIR)), name="assets")


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "adaudit",
        "version": "1.0.0",
    }
