from .config import BackupConfig
from .location import Target
from .models import ApplyReport, ChangeSet, CloneReport
from .engine import BackupEngine

__version__ = "0.1.0"
__author__ = "repo-backup contributors"
__url__ = "https://github.com/repo-backup/repo-backup"

__all__ = [
    "BackupConfig",
    "BackupEngine",
    "Target",
    "ChangeSet",
    "ApplyReport",
    "CloneReport",
]
