"""API routers."""

from . import files, backup, clone, health

__all__ = ["files", "backup", "clone", "health"]
