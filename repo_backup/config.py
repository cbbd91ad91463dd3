"""Configuration management for repo-backup."""

import os
from dataclasses import dataclass
from pathlib import Path

from ._utils import parse_size


def _env_bool(key: str, default: str) -> bool:
    value = os.getenv(key, default).strip().lower()
    if value not in ("true", "false", "1", "0", "yes", "no"):
        raise ValueError(f"{key} expected bool, received '{value}'")
    return value in ("true", "1", "yes")


@dataclass(frozen=True)
class BackupConfig:
    """Engine configuration, read once at startup and never mutated."""
    authorization: str
    github_source: Path
    default_ref: str = "main"

    # Admission control
    max_connections: int = 3
    admission_timeout: float = 0.0

    # Request limits
    max_payload_size: int = 100 * 1024 * 1024

    # ChangeSet handling
    reject_conflicts: bool = False
    auto_clone: bool = False

    # Clone source
    clone_url_template: str = "https://github.com/{owner}/{repo}.git"
    clone_timeout: float = 300.0
    clone_retries: int = 3

    @classmethod
    def from_env(cls) -> 'BackupConfig':
        """Create config from environment variables."""
        authorization = os.getenv("AUTHORIZATION")
        if authorization is None:
            raise ValueError("AUTHORIZATION expected a string, received null")
        github_source = os.getenv("GITHUB_SOURCE")
        if github_source is None:
            raise ValueError("GITHUB_SOURCE expected a directory path, received null")
        config = cls(
            authorization=authorization,
            github_source=Path(github_source),
            default_ref=os.getenv("DEFAULT_REF", "main"),
            max_connections=int(os.getenv("MAX_CONNECTIONS", "3")),
            admission_timeout=float(os.getenv("ADMISSION_TIMEOUT", "0.0")),
            max_payload_size=parse_size(os.getenv("MAX_PAYLOAD_SIZE", "100 MB")),
            reject_conflicts=_env_bool("REJECT_CONFLICTS", "false"),
            auto_clone=_env_bool("AUTO_CLONE", "false"),
            clone_url_template=os.getenv("CLONE_URL_TEMPLATE", "https://github.com/{owner}/{repo}.git"),
            clone_timeout=float(os.getenv("CLONE_TIMEOUT", "300")),
            clone_retries=int(os.getenv("CLONE_RETRIES", "3")),
        )
        config.validate_paths()
        return config

    def __post_init__(self):
        """Validate configuration."""
        object.__setattr__(self, "github_source", Path(self.github_source))
        if len(self.authorization) < 4:
            raise ValueError("authorization should be at least 4 or more characters")
        if not self.default_ref:
            raise ValueError("default_ref must not be empty")
        if self.max_connections <= 0:
            raise ValueError(f"max_connections must be positive, got {self.max_connections}")
        if self.admission_timeout < 0:
            raise ValueError(f"admission_timeout must not be negative, got {self.admission_timeout}")
        if self.max_payload_size <= 0:
            raise ValueError(f"max_payload_size must be positive, got {self.max_payload_size}")
        if self.clone_timeout <= 0:
            raise ValueError(f"clone_timeout must be positive, got {self.clone_timeout}")
        if self.clone_retries <= 0:
            raise ValueError(f"clone_retries must be positive, got {self.clone_retries}")
        if "{owner}" not in self.clone_url_template or "{repo}" not in self.clone_url_template:
            raise ValueError("clone_url_template must contain {owner} and {repo} placeholders")

    def validate_paths(self) -> None:
        """Check that the backup base directory exists."""
        if not self.github_source.is_dir():
            raise ValueError(f"GITHUB_SOURCE [{self.github_source}] is not a valid directory")
