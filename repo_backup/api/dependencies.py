"""Dependency injection for FastAPI."""

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from repo_backup import BackupEngine


async def get_engine(request: Request) -> "BackupEngine":
    """Get BackupEngine instance from app state."""
    return request.app.state.engine
