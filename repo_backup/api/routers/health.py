"""Health check endpoints."""

import os
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException

from repo_backup import BackupEngine

from ..dependencies import get_engine
from ..models import HealthStatus

router = APIRouter(prefix="/health", tags=["health"])


def check_backup_dir(engine: BackupEngine) -> bool:
    """Check that the backup base directory exists and is writable."""
    base = engine.store.base_dir
    return base.is_dir() and os.access(base, os.W_OK | os.X_OK)


@router.get("", response_model=HealthStatus)
async def health_check(engine: BackupEngine = Depends(get_engine)) -> HealthStatus:
    """Backup directory status and admission slots of this worker."""
    writable = check_backup_dir(engine)
    return HealthStatus(
        status="healthy" if writable else "unhealthy",
        backup_dir=str(engine.store.base_dir),
        writable=writable,
        in_flight=engine.gate.in_flight,
        available=engine.gate.available,
        max_connections=engine.gate.max_connections,
    )


@router.get("/ready")
async def readiness_probe(engine: BackupEngine = Depends(get_engine)) -> Dict[str, str]:
    """Kubernetes readiness probe."""
    if not check_backup_dir(engine):
        raise HTTPException(status_code=503, detail="Service not ready")
    return {"status": "ready"}


@router.get("/live")
async def liveness_probe() -> Dict[str, str]:
    """Kubernetes liveness probe."""
    return {"status": "alive"}
