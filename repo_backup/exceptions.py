"""Error taxonomy for the backup engine."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import ApplyReport


class BackupError(Exception):
    """Base class for every error the engine reports to a caller."""

    def __init__(self, reason: str, stage: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.stage = stage

    @property
    def kind(self) -> str:
        return type(self).__name__


class AuthError(BackupError):
    def __init__(self, stage: Optional[str] = None):
        # Never carries detail about why authentication failed
        super().__init__("Unauthorized", stage)


class ValidationError(BackupError):
    pass


class PathEscapeError(ValidationError):
    def __init__(self, path: str, stage: Optional[str] = None):
        super().__init__(f"Path escapes backup root: {path!r}", stage)
        self.path = path


class PayloadTooLargeError(ValidationError):
    def __init__(self, size: int, limit: int, stage: Optional[str] = None):
        super().__init__(f"Payload of {size:,} bytes exceeds limit of {limit:,} bytes", stage)
        self.size = size
        self.limit = limit


class BusyError(BackupError):
    def __init__(self, max_connections: int, stage: Optional[str] = None):
        super().__init__(f"Server busy: {max_connections} requests already in flight", stage)
        self.max_connections = max_connections


class FatalIOError(BackupError):
    def __init__(self, reason: str, report: Optional["ApplyReport"] = None, stage: Optional[str] = None):
        super().__init__(reason, stage)
        self.report = report


class CloneError(BackupError):
    pass
