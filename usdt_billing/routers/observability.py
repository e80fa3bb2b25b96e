from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session
from sqlalchemy import func, text
import time
import psutil
import logging
from datetime import datetime, timedelta, timezone

from ..db import get_db, get_redis
from ..models import User, Payment, CreditLedgerEntry

router = APIRouter()
logger = logging.getLogger(__name__)

def _now() -> datetime:
    return datetime.now(timezone.utc)

@router.get("/health")
async def basic_health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "timestamp": _now().isoformat()}

@router.get("/readyz")
async def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness check for container orchestration.
    Returns 200 if the database is reachable; Redis only backs rate limiting, so it degrades rather than fails.
    """
    checks = {}
    all_healthy = True

    # Database connectivity with latency measurement
    try:
        start_time = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = int((time.time() - start_time) * 1000)
        checks["database"] = {"status": "healthy", "latency_ms": latency_ms}
    except Exception as e:
        checks["database"] = {"status": "unhealthy", "error": str(e)}
        all_healthy = False

    try:
        redis_client = get_redis()
        start_time = time.time()
        redis_client.ping()
        latency_ms = int((time.time() - start_time) * 1000)
        checks["redis"] = {"status": "healthy", "latency_ms": latency_ms}
    except Exception as e:
        checks["redis"] = {"status": "degraded", "error": str(e)}

    response_data = {
        "status": "ready" if all_healthy else "not_ready",
        "checks": checks,
        "timestamp": _now().isoformat()
    }

    if not all_healthy:
        raise HTTPException(status_code=503, detail=response_data)

    return response_data

@router.get("/livez")
async def liveness_check():
    """
    Liveness check for Kubernetes.
    Should only fail if the application is in an unrecoverable state.
    """
    memory = psutil.virtual_memory()
    if memory.percent > 95:  # Critical memory usage
        logger.critical(f"Liveness check failed: memory usage {memory.percent}%")
        raise HTTPException(status_code=503, detail=f"Application not alive: critical memory usage {memory.percent}%")

    return {
        "status": "alive",
        "memory_percent": memory.percent,
        "timestamp": _now().isoformat()
    }

@router.get("/metrics")
async def prometheus_metrics(db: Session = Depends(get_db)):
    """Prometheus-style metrics for payments and credit flow."""
    since = _now() - timedelta(hours=24)
    try:
        total_users = db.query(User).count()
        pro_users = db.query(User).filter(User.plan == "pro").count()

        payments_by_chain = dict(
            db.query(Payment.chain, func.count(Payment.id))
            .filter(Payment.created_at >= since)
            .group_by(Payment.chain)
            .all()
        )
        ledger_totals = dict(
            db.query(CreditLedgerEntry.type, func.coalesce(func.sum(CreditLedgerEntry.amount), 0))
            .filter(CreditLedgerEntry.created_at >= since)
            .group_by(CreditLedgerEntry.type)
            .all()
        )
    except Exception as e:
        logger.error(f"Failed to generate metrics: {e}")
        raise HTTPException(status_code=500, detail="Metrics generation failed")

    memory = psutil.virtual_memory()

    lines = [
        "# HELP usdt_billing_users_total Total number of user records",
        "# TYPE usdt_billing_users_total gauge",
        f"usdt_billing_users_total {total_users}",
        "# HELP usdt_billing_pro_users Users whose stored plan is pro",
        "# TYPE usdt_billing_pro_users gauge",
        f"usdt_billing_pro_users {pro_users}",
        "# HELP usdt_billing_payments_24h Payments settled in the last 24 hours",
        "# TYPE usdt_billing_payments_24h gauge",
    ]
    for chain in ("TRC20", "BEP20"):
        lines.append(f'usdt_billing_payments_24h{{chain="{chain}"}} {payments_by_chain.get(chain, 0)}')
    lines += [
        "# HELP usdt_billing_credits_24h Credits granted or spent in the last 24 hours",
        "# TYPE usdt_billing_credits_24h gauge",
        f'usdt_billing_credits_24h{{type="grant"}} {int(ledger_totals.get("grant", 0))}',
        f'usdt_billing_credits_24h{{type="spend"}} {int(ledger_totals.get("spend", 0))}',
        "# HELP usdt_billing_memory_usage_percent Memory usage percentage",
        "# TYPE usdt_billing_memory_usage_percent gauge",
        f"usdt_billing_memory_usage_percent {memory.percent}",
    ]
    return Response(content="\n".join(lines) + "\n", media_type="text/plain")
