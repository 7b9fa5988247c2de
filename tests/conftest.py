"""Shared fixtures: fake HTTP routing, in-memory database, zero-delay tuning."""

import os
import tempfile

# Keep the app's module-level engine and storage away from the working tree
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORAGE_ROOT", tempfile.mkdtemp(prefix="adaudit-test-"))

from typing import Callable, Dict, List, Optional

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.connectors.meta.client import META_BASE, MetaClient
from app.connectors.meta.endpoints import MetaEndpoints
from app.models.asset_models import PersistedAsset  # noqa: F401
from app.models.brand_models import AuditCollection, Brand
from app.models.import_models import ImportTuning


def graph_url(path: str) -> str:
    return f"{META_BASE}/{path.lstrip('/')}"


def graph_error(status: int, code: int, message: str = "error") -> httpx.Response:
    return httpx.Response(status, json={"error": {"message": message, "code": code}})


def insights(spend: float, impressions: int, **extra) -> Dict:
    row = {"spend": str(spend), "impressions": str(impressions)}
    row.update(extra)
    return {"data": [row]}


class FakeHTTP:
    """Routes mocked requests by URL (query ignored) and records every call."""

    def __init__(self):
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: List[httpx.Request] = []

    def add(
        self,
        url: str,
        status: int = 200,
        json=None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if json is not None:
                return httpx.Response(status, json=json, headers=headers)
            return httpx.Response(status, content=content or b"", headers=headers)

        self.routes[url] = respond

    def add_handler(self, url: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[url] = handler

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        route = self.routes.get(key)
        if route is None:
            return httpx.Response(404, json={"error": {"message": f"No route {key}", "code": 803}})
        return route(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def count(self, url: str) -> int:
        return sum(1 for r in self.calls if str(r.url).split("?")[0] == url)


@pytest.fixture
def fake_http():
    return FakeHTTP()


@pytest.fixture
def tuning():
    return ImportTuning(
        spending_tiers=[1000, 100, 10],
        request_delay=0,
        lookup_delay=0,
        download_delay=0,
        stagger_delay=0,
        scrape_delay=0,
    )


@pytest.fixture
def endpoints(fake_http, tuning):
    client = MetaClient(
        access_token="test-token",
        ad_account_id="act_123",
        timeout=5,
        http_client=fake_http.client(),
    )
    return MetaEndpoints(client, tuning)


@pytest.fixture
def session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def brand(session):
    brand = Brand(
        id="brand1",
        name="Acme",
        meta_access_token="test-token",
        meta_ad_account_id="act_123",
        meta_facebook_page_id="acmepage",
    )
    session.add(brand)
    session.commit()
    return brand


@pytest.fixture
def collection(session, brand):
    collection = AuditCollection(id="col1", brand_id=brand.id)
    session.add(collection)
    session.commit()
    return collection
