import logging
from datetime import datetime, timezone

import redis
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trulybot.db import get_db
from trulybot.dependencies import require_cron_secret
from trulybot.errors import envelope, request_id_for
from trulybot.metrics import metrics_endpoint
from trulybot.rate_limit import RedisCounterStore
from trulybot.services.subscriptions import run_subscription_renewal

logger = logging.getLogger("trulybot.ops")

router = APIRouter()

start_time = datetime.now(timezone.utc)


@router.get("/healthz")
def healthz():
    uptime = (datetime.now(timezone.utc) - start_time).total_seconds()
    return {"status": "ok", "uptime_seconds": uptime}


@router.get("/readyz")
def readyz(request: Request, db: Session = Depends(get_db)):
    checks = {}
    try:
        db.execute(text("SELECT 1"))
        checks["db"] = True
    except SQLAlchemyError as e:
        logger.warning(f"Readiness DB check failed: {e.__class__.__name__}")
        checks["db"] = False
    store = request.app.state.rate_limiter.store
    if isinstance(store, RedisCounterStore):
        try:
            checks["redis"] = bool(store.client.ping())
        except redis.RedisError as e:
            logger.warning(f"Readiness Redis check failed: {e.__class__.__name__}")
            checks["redis"] = False
    checks["ok"] = all(checks.values())
    return JSONResponse(checks, status_code=200 if checks["ok"] else 503)


@router.get("/metrics")
def metrics():
    return metrics_endpoint()


@router.post("/api/jobs/subscription-renewal", dependencies=[Depends(require_cron_secret)])
def subscription_renewal(request: Request, db: Session = Depends(get_db)):
    report = run_subscription_renewal(db)
    return envelope(True, request_id=request_id_for(request), data=report.to_dict())
