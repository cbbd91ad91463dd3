"""Incremental backup endpoint."""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header

from repo_backup import ApplyReport, BackupEngine

from ..dependencies import get_engine

router = APIRouter(tags=["backup"])


@router.post("/backup", response_model=ApplyReport)
async def backup_changes(
    payload: Any = Body(default=None),
    authorization: Optional[str] = Header(default=None),
    content_location: Optional[str] = Header(default=None),
    engine: BackupEngine = Depends(get_engine),
) -> ApplyReport:
    """Apply a change set computed between two commits.

    The body is validated by the engine after authorization, so malformed
    payloads from unauthenticated callers are answered with 401, not 422.
    """
    return await engine.backup(authorization, content_location, payload if payload is not None else {})
