"""Global pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from repo_backup.config import BackupConfig
from repo_backup.location import Target
from repo_backup.store import BackupStore
from tests.utils import TOKEN


@pytest.fixture
def backup_dir(tmp_path):
    """Backup base directory."""
    directory = tmp_path / "github_source"
    directory.mkdir()
    return directory


@pytest.fixture
def config(backup_dir):
    return BackupConfig(authorization=TOKEN, github_source=backup_dir)


@pytest.fixture
def store(backup_dir):
    return BackupStore(backup_dir)


@pytest.fixture
def target():
    return Target("org", "repo", "main")
