"""Full clone endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends, Header

from repo_backup import BackupEngine, CloneReport

from ..dependencies import get_engine

router = APIRouter(tags=["clone"])


@router.get("/clone", response_model=CloneReport)
async def clone_repository(
    authorization: Optional[str] = Header(default=None),
    content_location: Optional[str] = Header(default=None),
    engine: BackupEngine = Depends(get_engine),
) -> CloneReport:
    """Replace the target's backup with a fresh checkout of its ref."""
    return await engine.clone(authorization, content_location)
