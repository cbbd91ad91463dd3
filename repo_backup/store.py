"""On-disk mirror of backup targets.

Layout under the base directory::

    <base>/<owner>/<repo>/<ref>            symlink to the live generation
    <base>/<owner>/<repo>/.<ref>.<hex>     generation directory holding the tree

Single-file writes go through a temporary file and ``os.replace``. Full
clones build a new generation and repoint the symlink with ``os.replace``,
so readers see either the previous tree or the new one. Only the
generation replaced by the latest clone is kept; a reader still walking an
older one when two clones land in quick succession loses it.
"""

import errno
import os
import re
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import List, Set, Tuple, Union

from ._utils import is_empty_dir, logger
from .exceptions import PathEscapeError
from .location import Target, normalize_path
from .models import CloneReport


class BackupStore:
    """Owns every filesystem mutation below the backup base directory."""

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)

    def root_path(self, target: Target) -> Path:
        return target.root_under(self.base_dir)

    def has_root(self, target: Target) -> bool:
        return self.root_path(target).is_dir()

    def ensure_root(self, target: Target) -> Path:
        """Create the target's root if absent. Idempotent."""
        root = self.root_path(target)
        if root.is_dir():
            return root
        if root.is_symlink():
            # Generation vanished underneath the link
            logger.warning(f"Removing dangling backup root link {root}")
            root.unlink()
        root.parent.mkdir(parents=True, exist_ok=True)
        generation = self._new_generation(root)
        generation.mkdir()
        try:
            os.symlink(generation.name, root, target_is_directory=True)
        except FileExistsError:
            # Another request created the root first
            generation.rmdir()
            return root
        logger.info(f"Created backup root for {target} at {root}")
        return root

    def resolve(self, target: Target, path: str) -> Path:
        """Return the real location of ``path`` inside the target's root."""
        real, _ = self._locate(target, path)
        return real

    def write_file(self, target: Target, path: str, content: Union[bytes, str]) -> Path:
        """Write ``content`` at ``path``, atomically replacing any existing file."""
        self.ensure_root(target)
        real, _ = self._locate(target, path)
        if real.is_dir() and not real.is_symlink():
            raise IsADirectoryError(errno.EISDIR, "Is a directory", str(real))
        real.parent.mkdir(parents=True, exist_ok=True)

        data = content.encode("utf-8") if isinstance(content, str) else content
        fd, temp_name = tempfile.mkstemp(dir=real.parent, prefix=f".{real.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(temp_name, 0o644)
            os.replace(temp_name, real)
        except BaseException:
            if os.path.lexists(temp_name):
                os.unlink(temp_name)
            raise
        logger.info(f"File content has been updated for {target}:{path} ({len(data):,} bytes)")
        return real

    def rename_file(self, target: Target, old_path: str, new_path: str) -> bool:
        """Move a file within the root.

        Returns False when the source does not exist, which callers treat as
        a recoverable skip.
        """
        src, real_root = self._locate(target, old_path)
        dst, _ = self._locate(target, new_path)
        if not os.path.lexists(src):
            logger.warning(f"Rename source missing for {target}: {old_path} -> {new_path}")
            return False
        if src == dst:
            return True
        if src.is_dir() and not src.is_symlink():
            raise IsADirectoryError(errno.EISDIR, "Is a directory", str(src))
        if dst.is_dir() and not dst.is_symlink():
            raise IsADirectoryError(errno.EISDIR, "Is a directory", str(dst))
        dst.parent.mkdir(parents=True, exist_ok=True)
        os.replace(src, dst)
        logger.info(f"File [{old_path}] has been moved to [{new_path}] in {target}")
        self._prune_empty_dirs(src.parent, real_root)
        return True

    def delete_file(self, target: Target, path: str) -> bool:
        """Remove a file if present. Returns whether anything was deleted."""
        real, real_root = self._locate(target, path)
        if not os.path.lexists(real):
            logger.info(f"File already absent in {target}: {path}")
            return False
        if real.is_dir() and not real.is_symlink():
            raise IsADirectoryError(errno.EISDIR, "Is a directory", str(real))
        real.unlink()
        logger.info(f"Deleted file {target}:{path}")
        self._prune_empty_dirs(real.parent, real_root)
        return True

    def clone_tree(self, target: Target, source_dir: Union[str, Path]) -> CloneReport:
        """Replace the target's whole tree with the contents of ``source_dir``.

        The new tree is staged in a fresh generation directory and swapped in
        by repointing the root symlink. ``.git`` entries are not copied.
        """
        root = self.root_path(target)
        root.parent.mkdir(parents=True, exist_ok=True)
        staging = self._new_generation(root)
        try:
            shutil.copytree(source_dir, staging, symlinks=True, ignore=shutil.ignore_patterns(".git"))
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        files = sum(1 for entry in staging.rglob("*") if entry.is_file() or entry.is_symlink())

        replaced = os.path.lexists(root)
        previous = None
        if root.is_symlink():
            previous = root.resolve()
        elif root.is_dir():
            previous = self._new_generation(root)
            logger.warning(f"Backup root {root} is a plain directory; moving it aside before swap")
            os.rename(root, previous)

        link = root.parent / f".{root.name}.link-{uuid.uuid4().hex[:12]}"
        os.symlink(staging.name, link, target_is_directory=True)
        try:
            os.replace(link, root)
        except BaseException:
            link.unlink()
            shutil.rmtree(staging, ignore_errors=True)
            raise
        logger.info(f"Cloned {files} files into backup root for {target}")

        # The replaced generation stays until the next clone so readers that
        # resolved it before the swap can finish
        keep = {staging.name}
        if previous is not None:
            keep.add(previous.name)
        self._remove_stale_generations(root, keep)
        return CloneReport(target=str(target), files=files, replaced=replaced)

    def exists(self, target: Target, path: str) -> bool:
        real, _ = self._locate(target, path)
        return real.is_file()

    def read_bytes(self, target: Target, path: str) -> bytes:
        real, _ = self._locate(target, path)
        return real.read_bytes()

    def list_files(self, target: Target) -> List[str]:
        """All file paths in the target's tree, relative and sorted."""
        root = self.root_path(target)
        if not root.is_dir():
            return []
        real_root = root.resolve()
        return sorted(
            entry.relative_to(real_root).as_posix()
            for entry in real_root.rglob("*")
            if entry.is_file() or entry.is_symlink()
        )

    # Private helpers

    def _locate(self, target: Target, path: str) -> Tuple[Path, Path]:
        """Canonicalize ``path`` and check that it stays inside the root.

        Only the parent directory is resolved: a symlink in the final
        component is operated on as a link, never followed.
        """
        relative = normalize_path(path)
        root = self.root_path(target)
        real_root = root.resolve()
        candidate = root / relative
        real_parent = candidate.parent.resolve()
        if real_parent != real_root and real_root not in real_parent.parents:
            logger.warning(f"Rejected path escaping backup root of {target}: {path!r}")
            raise PathEscapeError(path)
        return real_parent / candidate.name, real_root

    @staticmethod
    def _new_generation(root: Path) -> Path:
        return root.parent / f".{root.name}.{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _remove_stale_generations(root: Path, keep: Set[str]) -> None:
        pattern = re.compile(rf"^\.{re.escape(root.name)}\.(?:link-)?[0-9a-f]{{12}}$")
        for entry in root.parent.iterdir():
            if entry.name in keep or not pattern.match(entry.name):
                continue
            try:
                if entry.is_symlink():
                    entry.unlink()
                else:
                    shutil.rmtree(entry)
                logger.info(f"Removed stale generation {entry}")
            except OSError as e:
                logger.error(f"Failed to remove stale generation {entry}: {e}")

    @staticmethod
    def _prune_empty_dirs(directory: Path, real_root: Path) -> None:
        """Delete directories left empty, stopping at the root."""
        while directory != real_root and real_root in directory.parents and is_empty_dir(directory):
            try:
                directory.rmdir()
            except OSError as e:
                logger.debug(f"Stopped pruning at {directory}: {e}")
                return
            logger.info(f"Deleted empty directory {directory}")
            directory = directory.parent
