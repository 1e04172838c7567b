"""Sync trigger, status, health and webhook routes."""
import base64
import hashlib
import hmac
import json
import logging
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session, select

from catalog_sync.config import Settings, get_settings
from catalog_sync.db.engine import get_session
from catalog_sync.health.monitor import HealthMonitor
from catalog_sync.models.sync import SCHEDULED, ON_DEMAND, STARTED, SyncRun, utcnow
from catalog_sync.shopify.errors import ConfigurationError
from catalog_sync.shopify.sync_service import SyncOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

HMAC_HEADER = "X-Shopify-Hmac-Sha256"


class SyncTriggerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_wait_seconds: Optional[float] = Field(default=None, alias="maxWaitSeconds", gt=0)
    sync_type: str = Field(default=ON_DEMAND, alias="syncType")


class SyncStatusResponse(BaseModel):
    status: str
    sync_type: Optional[str] = None
    operation_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    item_count: Optional[int] = None
    error_message: Optional[str] = None
    in_progress: bool = False


class HealthResponse(BaseModel):
    window_hours: int
    total_runs: int
    completed: int
    failed: int
    in_progress: int
    success_rate: float
    avg_duration_ms: Optional[float]
    consecutive_failures: int
    last_success_at: Optional[str]
    warnings: List[str]


def get_orchestrator() -> SyncOrchestrator:
    """Dependency; overridden in tests."""
    try:
        return build_orchestrator()
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@router.post("/trigger")
async def trigger_sync(
    request: Optional[SyncTriggerRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Run a full sync and wait for the result.

    200 on success, 409 if another sync holds the lease or a bulk job is
    already running on Shopify, 500 for any other failure.
    """
    request = request or SyncTriggerRequest()
    if request.sync_type not in (ON_DEMAND, SCHEDULED):
        raise HTTPException(status_code=422, detail=f"Unknown sync type: {request.sync_type}")

    result = await orchestrator.run_full_sync(
        sync_type=request.sync_type, max_wait_seconds=request.max_wait_seconds
    )
    if result.success:
        code = 200
    elif result.skipped:
        code = 409
    else:
        code = 500
    return JSONResponse(status_code=code, content=result.to_dict())


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """Return the most recent sync run and whether it still holds the lease."""
    run = session.exec(
        select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
    ).first()
    if not run:
        return SyncStatusResponse(status="never_run")
    lease_cutoff = utcnow() - timedelta(minutes=settings.sync_lease_minutes)
    return SyncStatusResponse(
        status=run.status,
        sync_type=run.sync_type,
        operation_id=run.operation_id,
        started_at=run.started_at,
        completed_at=run.completed_at,
        item_count=run.item_count,
        error_message=run.error_message,
        in_progress=run.status == STARTED and run.started_at >= lease_cutoff,
    )


@router.get("/health", response_model=HealthResponse)
def sync_health(
    window_hours: Optional[int] = None,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    monitor = HealthMonitor(
        session.get_bind(),
        success_rate_threshold=settings.health_success_rate_threshold,
        consecutive_failure_threshold=settings.health_consecutive_failure_threshold,
        window_hours=settings.health_window_hours,
    )
    stats = monitor.get_stats(window_hours)
    return HealthResponse(**asdict(stats))


@router.post("/webhooks/bulk-complete")
async def bulk_operation_finished(
    request: Request,
    settings: Settings = Depends(get_settings),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Shopify bulk_operations/finish webhook.

    Payload: {"admin_graphql_api_id": "gid://shopify/BulkOperation/1",
              "status": "completed", "error_code": null, ...}
    """
    body = await request.body()
    if settings.shopify_webhook_secret:
        if not verify_webhook(body, request.headers.get(HMAC_HEADER), settings.shopify_webhook_secret):
            logger.warning("Rejected webhook with bad signature")
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body is not JSON")

    operation_id = payload.get("admin_graphql_api_id") if isinstance(payload, dict) else None
    if not operation_id:
        raise HTTPException(status_code=400, detail="Missing admin_graphql_api_id")

    result = await orchestrator.handle_job_completion(
        operation_id, payload.get("status") or "", payload.get("error_code")
    )
    # Always 200 once authenticated so Shopify doesn't redeliver a handled event
    return result.to_dict()


def verify_webhook(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Shopify signs the raw body with HMAC-SHA256, base64-encoded."""
    if not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature)
