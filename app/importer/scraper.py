"""AdAudit - Video Scraper Fallback.

Used when the token may not read a video's source. Candidate Facebook page
URLs are scraped in order for a playable video URL; every outcome,
including failure, is memoized so a video ID is scraped at most once.
"""

import asyncio
import json
import re
from typing import Awaitable, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import httpx

from app.connectors.meta.client import MetaAPIError
from app.connectors.meta.endpoints import MetaEndpoints
from app.models.import_models import ImportTuning
from app.core.logging import get_logger

logger = get_logger("importer.scraper")

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Cache-Control": "no-cache",
}

# Embedded JSON keys in preference order (HD before SD)
VIDEO_URL_PATTERNS = [
    re.compile(r'"browser_native_hd_url"\s*:\s*"([^"]+)"'),
    re.compile(r'"playable_url_quality_hd"\s*:\s*"([^"]+)"'),
    re.compile(r'"hd_src"\s*:\s*"([^"]+)"'),
    re.compile(r'"browser_native_sd_url"\s*:\s*"([^"]+)"'),
    re.compile(r'"playable_url"\s*:\s*"([^"]+)"'),
    re.compile(r'"sd_src"\s*:\s*"([^"]+)"'),
    re.compile(r'<meta[^>]+property="og:video(?::secure_url|:url)?"[^>]+content="([^"]+)"'),
]
FACEBOOK_HOSTS = ("facebook.com", "fb.watch")


def _unescape(raw: str) -> str:
    """Decode JSON string escapes (``\\/``, ``\\u0026``) and HTML ampersands."""
    try:
        value = json.loads(f'"{raw}"')
    except ValueError:
        value = raw.replace("\\/", "/")
    return value.replace("&amp;", "&")


def extract_video_url(html: str) -> Optional[str]:
    """Return the first playable video URL found in a Facebook page."""
    for pattern in VIDEO_URL_PATTERNS:
        match = pattern.search(html)
        if match:
            url = _unescape(match.group(1))
            if url.startswith("http"):
                return url
    return None


def is_facebook_url(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return any(host == h or host.endswith(f".{h}") for h in FACEBOOK_HOSTS)


class FacebookPageScraper:
    """Fetches a public Facebook page and pulls a video URL out of its HTML."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, timeout: float = 15.0):
        self._client = http_client
        self._owns_client = http_client is None
        self.timeout = timeout

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=BROWSER_HEADERS, follow_redirects=True, timeout=self.timeout
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _fetch_html(self, url: str) -> str:
        client = await self._get_client()
        resp = await client.get(url, headers=BROWSER_HEADERS, timeout=self.timeout)
        resp.raise_for_status()
        return resp.text

    async def scrape(self, url: str) -> Optional[str]:
        """Scrape one page URL; None when it is invalid or carries no video."""
        if not is_facebook_url(url):
            logger.warning(f"Invalid Facebook URL: {url}")
            return None

        try:
            html = await self._fetch_html(url)
        except httpx.HTTPError as e:
            if "/videos/" not in url:
                logger.info(f"Failed to fetch {url}: {e!r}")
                return None
            posts_url = url.replace("/videos/", "/posts/")
            logger.info(f"Retrying {url} as {posts_url}")
            try:
                html = await self._fetch_html(posts_url)
            except httpx.HTTPError as e2:
                logger.info(f"Failed to fetch {posts_url}: {e2!r}")
                return None

        return extract_video_url(html)


class ScraperCache:
    """Set-once map of video ID to scraped URL (None records a failure)."""

    def __init__(self, initial: Dict[str, Optional[str]] | None = None):
        self._results: Dict[str, Optional[str]] = dict(initial or {})
        self._inflight: Dict[str, asyncio.Future] = {}

    def __contains__(self, video_id: str) -> bool:
        return video_id in self._results

    def __len__(self) -> int:
        return len(self._results)

    def get(self, video_id: str) -> Optional[str]:
        return self._results.get(video_id)

    def set(self, video_id: str, url: Optional[str]) -> None:
        """Record an outcome. The first outcome for an ID is final."""
        if video_id in self._results:
            return
        self._results[video_id] = url

    async def get_or_compute(self, video_id: str, compute: Callable[[], Awaitable[Optional[str]]]) -> Optional[str]:
        """Return the cached outcome, joining an in-flight scrape for the same ID."""
        if video_id in self._results:
            cached = self._results[video_id]
            logger.info(
                f"Using cached scraper result for video {video_id}: {'success' if cached else 'failed'}"
            )
            return cached
        pending = self._inflight.get(video_id)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[video_id] = future
        try:
            try:
                result = await compute()
            except Exception as e:
                logger.warning(f"Scraper failed for video {video_id}: {e!r}")
                result = None
            self.set(video_id, result)
            future.set_result(result)
            return result
        finally:
            self._inflight.pop(video_id, None)
            if not future.done():
                future.cancel()


def candidate_page_urls(
    video_id: str, owner_page: Optional[str], brand_pages: Iterable[str]
) -> List[str]:
    """Ordered page URLs to try: owner page, generic formats, brand pages."""
    urls: List[str] = []
    if owner_page:
        urls += [
            f"https://www.facebook.com/{owner_page}/videos/{video_id}",
            f"https://www.facebook.com/{owner_page}/posts/{video_id}",
        ]
    urls += [
        f"https://www.facebook.com/video.php?v={video_id}",
        f"https://www.facebook.com/watch/?v={video_id}",
        f"https://fb.watch/{video_id}",
        f"https://www.facebook.com/videos/{video_id}",
    ]
    for page in brand_pages:
        if page and page != owner_page:
            urls += [
                f"https://www.facebook.com/{page}/videos/{video_id}",
                f"https://www.facebook.com/{page}/posts/{video_id}",
            ]
    return urls


class VideoScraper:
    """Memoized scrape of a video ID across candidate page URLs."""

    def __init__(
        self,
        page_scraper: FacebookPageScraper,
        cache: ScraperCache,
        endpoints: MetaEndpoints | None = None,
        brand_pages: Iterable[str] = (),
        tuning: ImportTuning | None = None,
    ):
        self.page_scraper = page_scraper
        self.cache = cache
        self.endpoints = endpoints
        self.brand_pages = list(dict.fromkeys(p for p in brand_pages if p))
        self.tuning = tuning or ImportTuning()

    async def scrape_video_url(self, video_id: str) -> Optional[str]:
        return await self.cache.get_or_compute(video_id, lambda: self._scrape(video_id))

    async def _owner_page(self, video_id: str) -> Optional[str]:
        if self.endpoints is None:
            return None
        try:
            owner = await self.endpoints.fetch_video_owner(video_id)
        except MetaAPIError as e:
            logger.info(f"Could not get page info for video {video_id}: {e}")
            return None
        page = owner.get("username") or owner.get("id")
        if page:
            logger.info(f"Found page info: {page} ({owner.get('name', '')})")
        return page

    async def _scrape(self, video_id: str) -> Optional[str]:
        logger.info(f"No cache found for video {video_id}, starting scraper attempt")
        owner_page = await self._owner_page(video_id)
        urls = candidate_page_urls(video_id, owner_page, self.brand_pages)

        for i, url in enumerate(urls):
            logger.info(f"Trying format {i + 1}/{len(urls)}: {url}")
            video_url = await self.page_scraper.scrape(url)
            if video_url:
                logger.info(f"Extracted video URL for {video_id} using format {i + 1}")
                return video_url
            if i < len(urls) - 1 and self.tuning.scrape_delay > 0:
                await asyncio.sleep(self.tuning.scrape_delay)

        logger.info(f"All URL formats failed for video ID {video_id}")
        return None
