"""Shared fixtures: in-memory SQLite store, scripted upstream, recording sleep."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from typing import Dict, List, Optional, Set

import pytest

from ordersync.core.config import SyncConfig
from ordersync.core.errors import PersistenceError
from ordersync.core.db import build_engine, build_session_factory
from ordersync.ingestion.base import BasePageSource
from ordersync.models import Base
from ordersync.schemas.sync import Connection, Page, PageQuery
from ordersync.services.connection_service import ConnectionService


class RecordingSleep:
    """Async sleep stand-in that records requested durations and returns at once."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class ScriptedSource(BasePageSource):
    """Serves pages keyed by cursor (``None`` is the first page).

    ``errors[cursor]`` is a list of exceptions raised, in order, before that
    page is served successfully.
    """

    name = "scripted"

    def __init__(self, pages: Dict[Optional[str], Page], errors: Optional[Dict[Optional[str], list]] = None):
        self.pages = pages
        self.errors = {key: list(value) for key, value in (errors or {}).items()}
        self.calls: List[Optional[str]] = []
        self.queries: List[PageQuery] = []

    async def fetch_page(self, cursor, connection: Connection, query: PageQuery, timeout: float) -> Page:
        self.calls.append(cursor)
        self.queries.append(query)
        pending = self.errors.get(cursor)
        if pending:
            raise pending.pop(0)
        return self.pages[cursor]


def make_orders(count: int, start: int = 1) -> List[dict]:
    return [
        {
            "id": 1000 + i,
            "order_number": i,
            "total_price": "19.99",
            "subtotal_price": "17.00",
            "total_tax": "2.99",
            "total_discounts": "0.00",
            "financial_status": "paid",
            "customer": {"id": 77, "email": "buyer@example.com"},
            "created_at": "2026-10-01T10:00:00Z",
            "updated_at": "2026-10-02T10:00:00Z",
        }
        for i in range(start, start + count)
    ]


def two_page_source(errors: Optional[Dict[Optional[str], list]] = None) -> ScriptedSource:
    """250 + 50 orders across two pages."""
    return ScriptedSource(
        {
            None: Page(records=make_orders(250), next_cursor="page-2"),
            "page-2": Page(records=make_orders(50, start=251), next_cursor=None),
        },
        errors,
    )


@pytest.fixture
def engine():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def config():
    return SyncConfig(max_retries=2, initial_delay=1.0, max_delay=60.0)


@pytest.fixture
def connections(session_factory):
    service = ConnectionService(session_factory)
    service.save_connection("shop-a", "shop-a.example.com", "token-a")
    return service


def break_writes(repository, failing_ids: Set[str], times: int = 10_000):
    """Make upserts fail for any batch containing one of ``failing_ids``, ``times`` times."""
    original = repository.upsert_many
    remaining = {"count": times}

    def upsert_many(rows):
        if remaining["count"] > 0 and any(row["source_id"] in failing_ids for row in rows):
            remaining["count"] -= 1
            raise PersistenceError("simulated store outage")
        return original(rows)

    repository.upsert_many = upsert_many
