"""REST source with Link-header pagination."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from ordersync.core.config import settings
from ordersync.core.errors import RateLimitError, TransientNetworkError, UpstreamError
from ordersync.core.logging import get_logger
from ordersync.schemas.sync import Connection, Page, PageQuery, RecordCategory
from .base import BasePageSource

log = get_logger("ingestion.rest")

NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')


def extract_next_cursor(link_header: Optional[str]) -> Optional[str]:
    """Next-page URL from a ``Link`` header, or None on the last page."""
    if not link_header:
        return None
    match = NEXT_LINK_RE.search(link_header)
    return match.group(1) if match else None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """``Retry-After`` as seconds; accepts delta-seconds or an HTTP date."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


class RestPageSource(BasePageSource):
    """Fetches ``{endpoint}/admin/api/{version}/{category}.json`` pages."""

    name = "rest"

    def __init__(
        self,
        api_version: Optional[str] = None,
        auth_header: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_version = api_version or settings.SOURCE_API_VERSION
        self.auth_header = auth_header or settings.SOURCE_AUTH_HEADER
        self.transport = transport

    def first_page_url(self, connection: Connection, query: PageQuery) -> str:
        base = connection.endpoint
        if not base.startswith(("http://", "https://")):
            base = f"https://{base}"
        return f"{base.rstrip('/')}/admin/api/{self.api_version}/{query.category.value}.json"

    @staticmethod
    def first_page_params(query: PageQuery) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": query.page_size}
        if query.category == RecordCategory.ORDERS:
            params["status"] = "any"
        if query.created_at_min:
            params["created_at_min"] = query.created_at_min.isoformat()
        if query.updated_at_min:
            params["updated_at_min"] = query.updated_at_min.isoformat()
        return params

    async def fetch_page(
        self,
        cursor: Optional[str],
        connection: Connection,
        query: PageQuery,
        timeout: float,
    ) -> Page:
        if cursor:
            url, params = cursor, None
        else:
            url, params = self.first_page_url(connection, query), self.first_page_params(query)
        headers = {self.auth_header: connection.access_token}

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                resp = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"Timeout fetching {query.category.value} page: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Connection error fetching {query.category.value} page: {exc}") from exc

        next_cursor = extract_next_cursor(resp.headers.get("link"))

        if resp.status_code == 429:
            raise RateLimitError(
                f"Rate limited by upstream (HTTP 429) for {connection.tenant_id}",
                retry_after=parse_retry_after(resp.headers.get("retry-after")),
                next_cursor=next_cursor,
            )
        if resp.status_code >= 500:
            raise TransientNetworkError(f"Upstream HTTP {resp.status_code}", status_code=resp.status_code, next_cursor=next_cursor)
        if resp.status_code >= 400:
            raise UpstreamError(f"Upstream HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code, next_cursor=next_cursor)

        try:
            data = resp.json()
        except ValueError as exc:
            raise TransientNetworkError(f"Malformed response body: {exc}", status_code=resp.status_code, next_cursor=next_cursor) from exc

        records = (data.get(query.category.value) or []) if isinstance(data, dict) else []
        log.info(f"Fetched {len(records)} {query.category.value} for {connection.tenant_id}")
        return Page(records=records, next_cursor=next_cursor)
