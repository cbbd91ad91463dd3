"""Parsing and encoding of the ``content-location`` header.

The header names a backup target and, for single file requests, a path
inside it::

    owner/repo;ref;path     canonical form
    owner/repo;path         shorthand, implies the default ref
    owner/repo;ref          target only (backup and clone requests)
    owner/repo              target only, default ref

Every path is checked lexically here; ``BackupStore`` repeats the check on
the resolved filesystem path.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import quote

from .exceptions import ValidationError

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")
_HEADS_PREFIX = "refs/heads/"
_FORBIDDEN_REF_CHARS = (";", "\\", "\x00")


def _validate_name(value: str, field: str) -> str:
    if not value or not _NAME_PATTERN.match(value) or value in (".", ".."):
        raise ValidationError(f"Invalid {field} name: {value!r}")
    return value


def normalize_ref(ref: str) -> str:
    """Strip ``refs/heads/`` and reject refs that cannot be a single branch or tag."""
    if ref.startswith(_HEADS_PREFIX):
        ref = ref[len(_HEADS_PREFIX):]
    if not ref:
        raise ValidationError("Ref must not be empty")
    if ref.startswith((".", "/")) or ref.endswith("/") or ".." in ref:
        raise ValidationError(f"Invalid ref: {ref!r}")
    if any(char in ref for char in _FORBIDDEN_REF_CHARS) or any(char.isspace() for char in ref):
        raise ValidationError(f"Invalid ref: {ref!r}")
    return ref


def normalize_path(path: str) -> str:
    """Normalize a relative path, rejecting anything that could leave the root."""
    if not path:
        raise ValidationError("Path must not be empty")
    if "\x00" in path or "\\" in path:
        raise ValidationError(f"Invalid characters in path: {path!r}")
    if path.startswith("/"):
        raise ValidationError(f"Absolute paths are not allowed: {path!r}")
    segments = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            raise ValidationError(f"Parent directory segments are not allowed: {path!r}")
        segments.append(segment)
    if not segments:
        raise ValidationError(f"Path must not be empty: {path!r}")
    return "/".join(segments)


@dataclass(frozen=True)
class Target:
    """A repository and ref pair identifying one backup destination tree."""
    owner: str
    repo: str
    ref: str

    def __post_init__(self):
        _validate_name(self.owner, "owner")
        _validate_name(self.repo, "repository")
        object.__setattr__(self, "ref", normalize_ref(self.ref))

    @classmethod
    def parse(cls, repository: str, ref: str) -> "Target":
        parts = repository.strip().split("/")
        if len(parts) != 2:
            raise ValidationError(f"Repository must be 'owner/repo', got {repository!r}")
        return cls(owner=parts[0], repo=parts[1], ref=ref)

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def ref_segment(self) -> str:
        """The ref as a single directory name; ``/`` is percent-encoded."""
        return quote(self.ref, safe="")

    def root_under(self, base: Path) -> Path:
        return base / self.owner / self.repo / self.ref_segment

    def __str__(self) -> str:
        return encode_target(self)


def _split(value: Optional[str]) -> str:
    if value is None or not value.strip():
        raise ValidationError("'content-location' header is missing or empty")
    return value


def decode(value: Optional[str], default_ref: str) -> Tuple[Target, str]:
    """Decode ``owner/repo[;ref];path`` into a target and a normalized path."""
    parts = _split(value).split(";", 2)
    if len(parts) == 3:
        repository, ref, path = parts
    elif len(parts) == 2:
        repository, path = parts
        ref = default_ref
    else:
        raise ValidationError("'content-location' header must include a file path")
    if path != path.strip():
        raise ValidationError(f"Path must not start or end with whitespace: {path!r}")
    repository, ref = repository.strip(), ref.strip()
    if not repository:
        raise ValidationError("'content-location' header has an empty target")
    return Target.parse(repository, ref), normalize_path(path)


def decode_target(value: Optional[str], default_ref: str) -> Target:
    """Decode ``owner/repo[;ref]`` into a target."""
    parts = _split(value).split(";")
    if len(parts) > 2:
        raise ValidationError("'content-location' header must not include a file path here")
    repository = parts[0].strip()
    ref = parts[1].strip() if len(parts) == 2 else default_ref
    if not repository:
        raise ValidationError("'content-location' header has an empty target")
    return Target.parse(repository, ref)


def encode(target: Target, path: str) -> str:
    return f"{encode_target(target)};{normalize_path(path)}"


def encode_target(target: Target) -> str:
    return f"{target.repository};{target.ref}"
