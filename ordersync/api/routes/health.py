"""Health routes - System health and readiness checks."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session
from sqlalchemy import select, text

from ordersync.api.deps import get_db
from ordersync.models.runs import SyncRun
from ordersync.schemas.api import HealthResponse

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
def health(request: Request, response: Response, db: Session = Depends(get_db)):
    """
    Health check endpoint for load balancer and Docker health checks.

    Checks database connectivity and last sync run status.
    Returns 503 if database is unreachable.
    """
    # DB connectivity
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as e:
        response.status_code = 503
        return HealthResponse(database=f"down: {e}", last_sync_status=None)

    # Last sync run
    stmt = select(SyncRun).order_by(SyncRun.started_at.desc()).limit(1)
    last_run = db.execute(stmt).scalar_one_or_none()

    service = getattr(request.app.state, "sync_service", None)
    return HealthResponse(
        database=db_status,
        last_sync_status=last_run.status if last_run else None,
        active_syncs=service.active_count if service else 0,
    )


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)):
    """
    Kubernetes/ELB readiness probe - checks if service can serve traffic.

    Returns 200 if ready, 503 if database is unreachable.
    """
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ready", "timestamp": datetime.now(timezone.utc).isoformat()}
    except Exception as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e), "timestamp": datetime.now(timezone.utc).isoformat()}
