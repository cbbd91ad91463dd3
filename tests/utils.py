"""Shared helpers for tests."""

from pathlib import Path
from typing import Dict, List

from repo_backup.location import Target

TOKEN = "s3cret-token"
AUTH_HEADER = f"Bearer {TOKEN}"


class FakeTreeSource:
    """Tree source that writes a fixed set of files instead of running git."""

    def __init__(self, files: Dict[str, bytes]):
        self.files = files
        self.calls: List[Target] = []

    async def fetch(self, target: Target, destination: Path) -> None:
        self.calls.append(target)
        destination.mkdir(parents=True, exist_ok=True)
        for path, content in self.files.items():
            file_path = destination / path
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(content)
        (destination / ".git").mkdir(exist_ok=True)
        (destination / ".git" / "HEAD").write_text("ref: refs/heads/main\n")


def write_tree(directory: Path, files: Dict[str, bytes]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for path, content in files.items():
        file_path = directory / path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(content)
    return directory
