"""Data models for backup requests and reports."""

from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator

from .location import normalize_path


class RequestState(str, Enum):
    """Lifecycle of one engine request."""
    RECEIVED = "received"
    AUTHORIZING = "authorizing"
    ADMITTED = "admitted"
    DECODING = "decoding"
    APPLYING = "applying"
    COMPLETED = "completed"
    REJECTED = "rejected"


class Operation(str, Enum):
    REMOVE = "remove"
    MODIFY = "modify"
    CREATE = "create"
    DOWNLOAD = "download"


class ChangeSet(BaseModel):
    """Description of one incremental backup between two commits."""

    # sample: {'src/plain/.keep': 'some text'}
    create: Dict[str, str] = Field(default_factory=dict)
    # sample: {'src/plain/main.py': 'src/main.py'} - move/rename
    modify: Dict[str, str] = Field(default_factory=dict)
    # sample: ['matrix/executor.py', 'src/plain/main.py']
    remove: List[str] = Field(default_factory=list)
    # sample: ['src/sample.png'] - bytes can't be JSON encoded
    download: List[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @field_validator("create")
    @classmethod
    def normalize_create(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {normalize_path(path): content for path, content in v.items()}

    @field_validator("modify")
    @classmethod
    def normalize_modify(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {normalize_path(old): normalize_path(new) for old, new in v.items()}

    @field_validator("remove", "download")
    @classmethod
    def normalize_paths(cls, v: List[str]) -> List[str]:
        # Order preserved, duplicates dropped
        return list(dict.fromkeys(normalize_path(path) for path in v))

    def conflicts(self) -> Set[str]:
        """Paths that are both removed and written by this change set."""
        written = set(self.create) | set(self.modify.values())
        return written.intersection(self.remove)

    def is_empty(self) -> bool:
        return not (self.create or self.modify or self.remove or self.download)


class SkippedItem(BaseModel):
    operation: Operation
    path: str
    reason: str


class ApplyReport(BaseModel):
    """Per-item outcome of applying a change set."""
    target: str
    removed: List[str] = Field(default_factory=list)
    renamed: Dict[str, str] = Field(default_factory=dict)
    created: List[str] = Field(default_factory=list)
    pending_download: List[str] = Field(default_factory=list)
    skipped: List[SkippedItem] = Field(default_factory=list)
    fatal_error: Optional[str] = None
    cloned: bool = False

    @property
    def ok(self) -> bool:
        return self.fatal_error is None


class CloneReport(BaseModel):
    target: str
    files: int
    replaced: bool
