"""Abstract upstream page source."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from ordersync.schemas.sync import Connection, Page, PageQuery


class BasePageSource(ABC):
    """Cursor-paginated upstream API."""

    name: str

    @abstractmethod
    async def fetch_page(
        self,
        cursor: Optional[str],
        connection: Connection,
        query: PageQuery,
        timeout: float,
    ) -> Page:
        """Fetch one page. ``cursor=None`` means the first page described by ``query``.

        Raises ``TransientNetworkError``, ``RateLimitError`` or ``UpstreamError``.
        """
