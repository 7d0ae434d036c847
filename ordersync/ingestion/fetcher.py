"""Page fetcher: one upstream page per call, with retry/backoff."""

from __future__ import annotations

from typing import Optional

from ordersync.core.errors import PageFetchError, SyncError
from ordersync.core.logging import get_logger
from ordersync.core.retry import RetryPolicy
from ordersync.schemas.sync import Connection, Page, PageQuery
from .base import BasePageSource

log = get_logger("ingestion.fetcher")


class PageFetcher:
    def __init__(self, source: BasePageSource, retry: RetryPolicy, timeout: float = 30.0):
        self.source = source
        self.retry = retry
        self.timeout = timeout

    async def fetch(self, cursor: Optional[str], connection: Connection, query: PageQuery) -> Page:
        """Return the page at ``cursor``.

        Once retries are exhausted (or on a non-retryable upstream error) this
        raises ``PageFetchError``, carrying any next cursor the failed response
        still advertised.
        """
        try:
            return await self.retry.execute(
                lambda: self.source.fetch_page(cursor, connection, query, self.timeout),
                description=f"fetch {query.category.value} page for {connection.tenant_id}",
            )
        except SyncError as exc:
            log.error(f"Page fetch failed for {connection.tenant_id}: {exc}")
            raise PageFetchError(str(exc), cursor=cursor, next_cursor=getattr(exc, "next_cursor", None)) from exc
