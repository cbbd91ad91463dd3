"""Tree sources for full clone requests."""

import asyncio
import os
import shutil
from pathlib import Path
from typing import Protocol

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ._utils import logger
from .exceptions import CloneError
from .location import Target


class TreeSource(Protocol):
    async def fetch(self, target: Target, destination: Path) -> None:
        """Materialize the current tree of ``target`` into ``destination``."""
        ...


class GitTreeSource:
    """Fetch a target with a shallow ``git clone`` of its ref."""

    def __init__(
        self,
        url_template: str = "https://github.com/{owner}/{repo}.git",
        timeout: float = 300.0,
        retries: int = 3,
        git_binary: str = "git",
    ):
        self.url_template = url_template
        self.timeout = timeout
        self.retries = retries
        self.git_binary = git_binary

    def clone_url(self, target: Target) -> str:
        return self.url_template.format(owner=target.owner, repo=target.repo)

    @staticmethod
    def branch_name(target: Target) -> str:
        if target.ref.startswith("refs/tags/"):
            return target.ref[len("refs/tags/"):]
        return target.ref

    async def fetch(self, target: Target, destination: Path) -> None:
        if shutil.which(self.git_binary) is None:
            raise CloneError(f"'{self.git_binary}' command line is not available")
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(CloneError),
            reraise=True,
        ):
            with attempt:
                # Leftovers of a failed attempt
                await asyncio.to_thread(shutil.rmtree, destination, ignore_errors=True)
                await self._clone_once(target, destination)

    async def _clone_once(self, target: Target, destination: Path) -> None:
        cmd = [
            self.git_binary, "clone", "--quiet", "--depth", "1",
            "--branch", self.branch_name(target),
            "--", self.clone_url(target), str(destination),
        ]
        logger.info(f"Executing '{' '.join(cmd)}'")
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise CloneError(f"Cloning {target} exceeded {self.timeout}s timeout")
        if process.returncode != 0:
            error = stderr.decode("utf-8", errors="replace").strip()
            logger.error(f"Failed to clone {target}: {error}")
            raise CloneError(f"Failed to clone repo: {target.repository}")
