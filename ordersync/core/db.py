"""Engine, session factory and dialect-aware upsert helper."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Type

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ordersync.core.config import settings


def build_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = build_session_factory(engine)


def upsert(
    db: Session,
    model: Type[Any],
    rows: List[Dict[str, Any]],
    index_elements: Iterable[str],
    update_columns: Iterable[str],
) -> None:
    """Insert-or-overwrite ``rows`` keyed by ``index_elements`` (idempotent write)."""
    if not rows:
        return

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(rows)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(rows)
    else:
        raise ValueError(f"Upsert not supported for dialect: {dialect}")

    stmt = stmt.on_conflict_do_update(
        index_elements=list(index_elements),
        set_={col: stmt.excluded[col] for col in update_columns},
    )
    db.execute(stmt)
