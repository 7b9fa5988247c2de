"""AdAudit - Meta API Client.

Handles authentication, per-call timeouts, optional retry, and error
classification for the Graph API.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from app.config import settings
from app.core.logging import get_logger

logger = get_logger("meta.client")

META_BASE = settings.meta_graph_url
RETRY_BASE_DELAY = 2  # seconds

# Graph API codes meaning "token lacks permission for this object"
PERMISSION_ERROR_CODES = {10} | set(range(200, 300))
INVALID_TOKEN_ERROR_CODE = 190


class MetaAPIError(Exception):
    """Raised when Meta API returns an error."""

    def __init__(self, message: str, status_code: int = 0, error_code: int = 0):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)

    @property
    def is_permission_error(self) -> bool:
        return self.error_code in PERMISSION_ERROR_CODES

    @property
    def is_auth_error(self) -> bool:
        return self.error_code == INVALID_TOKEN_ERROR_CODE or self.status_code == 401


def normalize_account_id(ad_account_id: str) -> str:
    """Strip the ``act_`` prefix; URLs add it back."""
    if ad_account_id.startswith("act_"):
        return ad_account_id[4:]
    return ad_account_id


class MetaClient:
    """Async HTTP client for Meta Marketing API.

    The import pipeline runs with ``max_retries=1``: its callers decide how to
    fall back, so the client only retries when explicitly asked to.
    """

    def __init__(
        self,
        access_token: str | None = None,
        ad_account_id: str | None = None,
        timeout: float | None = None,
        max_retries: int = 1,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.access_token = access_token or settings.meta_access_token
        self.ad_account_id = normalize_account_id(
            ad_account_id or settings.meta_ad_account_id
        )
        self.timeout = timeout or settings.import_request_timeout
        self.max_retries = max(1, max_retries)
        self._client: Optional[httpx.AsyncClient] = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": settings.meta_user_agent},
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Core Request Method ──

    async def _request(
        self,
        method: str,
        url: str,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Make a request with timeout + optional retry on 429/5xx/transport errors."""
        # Paging links carry their own query (cursor, fields, filters); merge into it
        params = dict(params or {})
        params["access_token"] = self.access_token
        request_url = httpx.URL(url).copy_merge_params(params)

        client = await self._get_client()

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await client.request(method, request_url, timeout=self.timeout)

                # Rate limited
                if resp.status_code == 429 and attempt < self.max_retries:
                    wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning(
                        f"Rate limited (429). Retrying in {wait}s (attempt {attempt}/{self.max_retries})"
                    )
                    await asyncio.sleep(wait)
                    continue

                resp.raise_for_status()
                try:
                    return resp.json()
                except ValueError as e:
                    raise MetaAPIError(
                        f"Malformed JSON from {_redact(url)}", resp.status_code
                    ) from e

            except httpx.HTTPStatusError as e:
                body = _error_body(e.response)
                error_msg = body.get("error", {}).get("message", str(e))
                error_code = body.get("error", {}).get("code", 0)

                if attempt < self.max_retries and e.response.status_code >= 500:
                    wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning(
                        f"Server error {e.response.status_code}. Retrying in {wait}s"
                    )
                    await asyncio.sleep(wait)
                    continue

                raise MetaAPIError(error_msg, e.response.status_code, error_code) from e

            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning(f"Request error: {e!r}. Retrying in {wait}s")
                    await asyncio.sleep(wait)
                    continue
                raise MetaAPIError(
                    f"Connection failed after {self.max_retries} attempt(s): {e!r}"
                ) from e

        raise MetaAPIError("Max retries exhausted")

    async def get(self, path: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        """GET a Graph object by path (``/{id}``) or absolute URL (paging links)."""
        url = path if path.startswith("http") else f"{META_BASE}/{path.lstrip('/')}"
        return await self._request("GET", url, params)


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    """Parse the Graph error envelope, tolerating non-JSON error pages."""
    try:
        body = response.json()
    except ValueError:
        return {"error": {"message": response.text[:500]}}
    if not isinstance(body, dict):
        return {}
    if not isinstance(body.get("error"), dict):
        return {"error": {"message": str(body.get("error", ""))}}
    return body


def _redact(url: str) -> str:
    return url.split("access_token=")[0]
