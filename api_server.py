#!/usr/bin/env python
"""Run the FastAPI server."""

import uvicorn
from dotenv import load_dotenv


def main():
    """Run the FastAPI application with settings from the environment."""
    load_dotenv()

    from repo_backup.api.config import Settings
    from repo_backup.config import BackupConfig

    settings = Settings()
    # Fail fast on a bad engine config before forking workers
    BackupConfig.from_env()

    ssl_options = {}
    if settings.ssl_enabled:
        ssl_options = {"ssl_keyfile": settings.key_file, "ssl_certfile": settings.cert_file}

    uvicorn.run(
        "repo_backup.api.app:app",
        host=settings.server_host,
        port=settings.server_port,
        workers=settings.workers,
        log_level="debug" if settings.debug else "warning",
        **ssl_options,
    )


if __name__ == "__main__":
    main()
