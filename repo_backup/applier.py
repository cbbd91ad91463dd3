"""Best-effort application of a change set to the backup store."""

import threading
from typing import Callable, Optional

from ._utils import logger
from .exceptions import PathEscapeError
from .location import Target
from .models import ApplyReport, ChangeSet, Operation, SkippedItem
from .store import BackupStore

# Per-item conditions that are recorded and skipped. Any other OSError
# (disk full, permission denied, read-only fs) aborts the batch.
RECOVERABLE_ERRORS = (IsADirectoryError, NotADirectoryError, FileExistsError)


class _Abort(Exception):
    def __init__(self, error: OSError):
        super().__init__(str(error))
        self.error = error


class ChangeSetApplier:
    """Apply remove, modify, create and download entries in that order.

    Removing first means a path that is removed and recreated in one batch
    ends up with the new content. Renames run before creates so an unrelated
    create cannot clobber a rename target. Downloads are not fetched; they
    are reported back as ``pending_download``.

    One item's failure never stops the others, except for IO errors that
    make further writes pointless (disk full, permission denied), which
    abort the rest of the batch.
    """

    def __init__(self, store: BackupStore):
        self.store = store

    def apply(self, target: Target, change_set: ChangeSet, cancel: Optional[threading.Event] = None) -> ApplyReport:
        """Apply ``change_set``. Once ``cancel`` is set, items not yet started are skipped."""
        report = ApplyReport(target=str(target))
        try:
            for path in change_set.remove:
                if self._run(report, cancel, Operation.REMOVE, path, lambda p=path: self.store.delete_file(target, p)) is not None:
                    report.removed.append(path)

            for old_path, new_path in change_set.modify.items():
                moved = self._run(
                    report,
                    cancel,
                    Operation.MODIFY,
                    old_path,
                    lambda o=old_path, n=new_path: self.store.rename_file(target, o, n),
                )
                if moved is False:
                    report.skipped.append(SkippedItem(
                        operation=Operation.MODIFY,
                        path=old_path,
                        reason=f"source missing, cannot move to {new_path}",
                    ))
                elif moved:
                    report.renamed[old_path] = new_path

            for path, content in change_set.create.items():
                if self._run(report, cancel, Operation.CREATE, path, lambda p=path, c=content: self.store.write_file(target, p, c)) is not None:
                    report.created.append(path)

        except _Abort as abort:
            report.fatal_error = f"{type(abort.error).__name__}: {abort.error}"
            logger.error(f"Aborted change set for {target}: {report.fatal_error}")
            return report

        if cancel is None or not cancel.is_set():
            report.pending_download.extend(change_set.download)
        logger.info(
            f"Applied change set for {target}: {len(report.removed)} removed, "
            f"{len(report.renamed)} renamed, {len(report.created)} created, "
            f"{len(report.skipped)} skipped, {len(report.pending_download)} pending download"
        )
        return report

    @staticmethod
    def _run(
        report: ApplyReport,
        cancel: Optional[threading.Event],
        operation: Operation,
        path: str,
        action: Callable[[], object],
    ):
        """Run one item, recording a skip on recoverable failure.

        Returns the action's result, or None when the item was skipped.
        """
        if cancel is not None and cancel.is_set():
            reason = "request cancelled before this item started"
            report.skipped.append(SkippedItem(operation=operation, path=path, reason=reason))
            return None
        try:
            return action()
        except PathEscapeError as e:
            reason = e.reason
        except RECOVERABLE_ERRORS as e:
            reason = f"{type(e).__name__}: {e.strerror or e}"
        except OSError as e:
            raise _Abort(e) from e
        logger.warning(f"Skipped {operation.value} of {path}: {reason}")
        report.skipped.append(SkippedItem(operation=operation, path=path, reason=reason))
        return None
