"""Client for the paginated upstream inventory API."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from inventory_mirror.config import get_settings
from inventory_mirror.services.error_classifier import ErrorKind

logger = logging.getLogger(__name__)
settings = get_settings()


class UpstreamError(Exception):
    """Upstream call failure, tagged with its kind where it happened."""

    def __init__(self, message: str, kind: ErrorKind, status_code: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


@dataclass
class UpstreamPage:
    """One page of upstream items plus optional pagination metadata."""

    page: int
    items: list[dict[str, Any]] = field(default_factory=list)
    total: int | None = None
    last_page: int | None = None


def _status_kind(status_code: int) -> ErrorKind:
    if status_code in (401, 403):
        return ErrorKind.AUTH
    if status_code == 404:
        # The items endpoint itself is missing
        return ErrorKind.DEPLOYMENT
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ErrorKind.SERVER
    return ErrorKind.CONFIG


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class RequestRateLimiter:
    """Spaces requests to at most `rate` per second across all callers."""

    def __init__(self, rate: float):
        self.min_interval = 1.0 / rate if rate > 0 else 0.0
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        if not self.min_interval:
            return
        async with self._lock:
            now = time.monotonic()
            wait = self._next_slot - now
            if wait > 0:
                await asyncio.sleep(wait)
                now = time.monotonic()
            self._next_slot = now + self.min_interval


class UpstreamClient:
    """
    Client for the upstream `GET /items?page=&limit=` API.

    Features:
    - Optional API key header
    - Hard deadline on every call
    - Client-side requests-per-second throttling
    - Failures raised as UpstreamError tagged with an ErrorKind

    Retries are not done here; the ingestion pipeline owns the retry policy.
    """

    def __init__(
        self,
        base_url: str = settings.upstream_base_url,
        items_path: str = settings.upstream_items_path,
        api_key: str | None = settings.upstream_api_key,
        api_key_required: bool = settings.upstream_api_key_required,
        timeout: float = settings.upstream_timeout_seconds,
        probe_timeout: float = settings.upstream_probe_timeout_seconds,
        requests_per_second: float = settings.upstream_requests_per_second,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.items_path = items_path
        self.api_key = api_key
        self.api_key_required = api_key_required
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.rate_limiter = RequestRateLimiter(requests_per_second)
        self.transport = transport

        # Build headers
        self.headers: dict[str, str] = {
            "Accept": "application/json",
            "User-Agent": "inventory-mirror/0.1",
        }
        if api_key:
            self.headers["X-API-Key"] = api_key

    @property
    def items_url(self) -> str:
        return f"{self.base_url}{self.items_path}"

    def _check_config(self) -> None:
        if not self.base_url:
            raise UpstreamError("Missing required setting: upstream_base_url", ErrorKind.CONFIG)
        if self.api_key_required and not self.api_key:
            raise UpstreamError("Missing required upstream API key", ErrorKind.AUTH)

    async def _request(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        deadline: float | None = None,
        probe: bool = False,
    ) -> Any:
        """Make one HTTP GET bounded by a hard deadline."""
        self._check_config()
        deadline = deadline or self.timeout
        await self.rate_limiter.acquire()

        try:
            async with httpx.AsyncClient(timeout=deadline, transport=self.transport) as client:
                response = await asyncio.wait_for(
                    client.get(url, headers=self.headers, params=params),
                    timeout=deadline,
                )
                response.raise_for_status()
                return response.json()

        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            kind = ErrorKind.DEPLOYMENT if probe else ErrorKind.TIMEOUT
            what = "Connection test timed out" if probe else "Request timed out"
            raise UpstreamError(f"{what} after {deadline}s: {url}", kind) from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise UpstreamError(
                f"HTTP {status} from {url}", _status_kind(status), status_code=status
            ) from e

        except httpx.ConnectError as e:
            kind = ErrorKind.DEPLOYMENT if probe else ErrorKind.NETWORK
            raise UpstreamError(f"Failed to connect to {url}: {e}", kind) from e

        except httpx.RequestError as e:
            raise UpstreamError(f"Request error for {url}: {e}", ErrorKind.NETWORK) from e

        except ValueError as e:
            # 2xx with a body that is not JSON
            raise UpstreamError(f"Invalid JSON from {url}: {e}", ErrorKind.SERVER) from e

    async def probe(self) -> None:
        """
        Connectivity test against the items endpoint.

        Any timeout or connection failure here means the endpoint is not
        reachable at all, so it is reported as a deployment problem.
        """
        logger.info(f"Probing upstream endpoint {self.items_url}")
        await self._request(
            self.items_url,
            params={"page": 1, "limit": 1},
            deadline=self.probe_timeout,
            probe=True,
        )

    async def fetch_page(
        self,
        page: int,
        limit: int = settings.upstream_page_size,
        filters: dict[str, Any] | None = None,
    ) -> UpstreamPage:
        """
        Fetch one page of items.

        Args:
            page: 1-based page number
            limit: Items per page
            filters: Extra upstream query parameters

        Returns:
            The page's items and, when the upstream sends it, `meta.total`
            and `meta.last_page`.
        """
        params: dict[str, Any] = {"page": page, "limit": limit}
        if filters:
            params.update(filters)

        logger.debug(f"Fetching upstream page {page} (limit={limit})")
        payload = await self._request(self.items_url, params)

        if isinstance(payload, list):
            return UpstreamPage(page=page, items=payload)
        if not isinstance(payload, dict):
            raise UpstreamError(f"Unexpected payload type for page {page}", ErrorKind.SERVER)

        items = payload.get("data") or []
        if not isinstance(items, list):
            raise UpstreamError(f"Unexpected 'data' type for page {page}", ErrorKind.SERVER)

        meta = payload.get("meta") or {}
        return UpstreamPage(
            page=page,
            items=items,
            total=_int_or_none(meta.get("total")),
            last_page=_int_or_none(meta.get("last_page")),
        )
