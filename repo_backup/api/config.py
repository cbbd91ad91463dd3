"""Configuration for FastAPI application."""

import json
import os
from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_workers() -> int:
    return max(1, (os.cpu_count() or 2) // 2)


class Settings(BaseSettings):
    # API Configuration
    api_title: str = "repo-backup API"
    api_version: str = "0.1.0"

    # Server
    server_host: str = "0.0.0.0"
    server_port: int = 8000
    workers: int = Field(default_factory=_default_workers, description="Number of uvicorn worker processes")

    # CORS origins, regular expressions
    websites: Union[str, List[str]] = Field(default_factory=list)

    @field_validator("websites", mode="before")
    @classmethod
    def parse_websites(cls, v):
        """Parse websites from a JSON array string, a single pattern, or a list."""
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    return [v]
            return [v]
        return v

    # TLS, enabled only when both are set
    key_file: Optional[str] = None
    cert_file: Optional[str] = None

    # Logging
    debug: bool = False
    utc_logging: bool = True
    disable_app_logging: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Engine variables are read by BackupConfig
        frozen=True,
    )

    @property
    def ssl_enabled(self) -> bool:
        return bool(self.key_file and self.cert_file)

    @property
    def cors_origin_regex(self) -> Optional[str]:
        if not self.websites:
            return None
        return "|".join(f"(?:{pattern})" for pattern in self.websites)


settings = Settings()
