"""AdAudit - Database Engine & Session Factory.

Holds brands, audit collections and the persisted-asset metadata table.
"""

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlmodel import SQLModel, Session, create_engine

from app.config import settings
from app.core.logging import get_logger

logger = get_logger("database")

db_url = settings.effective_database_url


def _mask_url(url: str) -> str:
    """DB URL with the password hidden, for logs."""
    return make_url(url).render_as_string(hide_password=True)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # Sessions cross the threadpool and event-loop threads
        return {"echo": False, "connect_args": {"check_same_thread": False}}
    return {
        "echo": False,
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
    }


engine = create_engine(db_url, **_engine_kwargs(db_url))
logger.info(f"Database engine created for {_mask_url(db_url)}")


def test_connection() -> bool:
    """Test the database connection with SELECT 1."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection test: SUCCESS")
        return True
    except Exception as e:
        logger.error(f"Database connection test: FAILED ({e})")
        return False


def init_db() -> None:
    """Create the brand, collection and asset tables."""
    from app.models import asset_models, brand_models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database tables ready")


def get_session():
    """Dependency: yields a DB session."""
    with Session(engine) as session:
        yield session
