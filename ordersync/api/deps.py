"""API dependencies"""

from typing import Generator

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from ordersync.core.db import SessionLocal
from ordersync.services.sync_service import SyncService


def get_db() -> Generator[Session, None, None]:
    """Database dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_sync_service(request: Request) -> SyncService:
    """The process-wide sync service built in the app lifespan."""
    service = getattr(request.app.state, "sync_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Sync service not initialised")
    return service
