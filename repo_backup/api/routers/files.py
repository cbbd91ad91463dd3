"""Single file upload and delete endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, File, Header, Response, UploadFile

from repo_backup import BackupEngine

from ..dependencies import get_engine

router = APIRouter(tags=["files"])


@router.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    authorization: Optional[str] = Header(default=None),
    content_location: Optional[str] = Header(default=None),
    engine: BackupEngine = Depends(get_engine),
) -> Response:
    """Store one uploaded file at the path named by ``content-location``.

    Used for content that cannot travel as JSON text, such as images.
    """
    content = await file.read()
    await engine.upload(authorization, content_location, content)
    return Response(status_code=200)


@router.delete("/delete")
async def delete_file(
    authorization: Optional[str] = Header(default=None),
    content_location: Optional[str] = Header(default=None),
    engine: BackupEngine = Depends(get_engine),
) -> Response:
    """Delete one file. Succeeds when the file is already gone."""
    await engine.delete(authorization, content_location)
    return Response(status_code=200)
