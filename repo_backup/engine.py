"""Composition root: runs each request through auth, admission, decoding and the store."""

import asyncio
import shutil
import tempfile
import threading
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from pydantic import ValidationError as PydanticValidationError

from ._utils import logger
from .applier import RECOVERABLE_ERRORS, ChangeSetApplier
from .auth import AuthGate
from .clone import GitTreeSource, TreeSource
from .config import BackupConfig
from .exceptions import BackupError, FatalIOError, PayloadTooLargeError, ValidationError
from .gate import ConcurrencyGate
from .location import Target, decode, decode_target
from .models import ApplyReport, ChangeSet, CloneReport, RequestState
from .store import BackupStore


async def _drain(work: asyncio.Future) -> None:
    """Wait for ``work`` to finish, riding out repeated cancellation."""
    while not work.done():
        try:
            await asyncio.wait({work})
        except asyncio.CancelledError:
            continue
    if not work.cancelled():
        # Retrieved so the loop does not report it as unhandled
        work.exception()


class _Request:
    """Tracks one request's state for logging and rejection reporting."""

    def __init__(self, kind: str):
        self.kind = kind
        self.request_id = uuid.uuid4().hex[:8]
        self.state = RequestState.RECEIVED

    def advance(self, state: RequestState) -> None:
        logger.debug(f"[{self.request_id}] {self.kind}: {self.state.value} -> {state.value}")
        self.state = state

    def reject(self, error: BackupError) -> BackupError:
        if error.stage is None:
            error.stage = self.state.value
        logger.warning(f"[{self.request_id}] {self.kind} rejected while {error.stage}: {error.reason}")
        self.state = RequestState.REJECTED
        return error

    def complete(self) -> None:
        self.advance(RequestState.COMPLETED)


class BackupEngine:
    """Apply uploads, deletes, change sets and clones to the backup store.

    Every request follows ``received -> authorizing -> admitted -> decoding
    -> applying -> completed`` and is rejected with a ``BackupError`` at the
    first gate it fails. Nothing is retried here; every store primitive is
    idempotent or safely skippable so callers can retry.
    """

    def __init__(
        self,
        config: BackupConfig,
        store: Optional[BackupStore] = None,
        gate: Optional[ConcurrencyGate] = None,
        auth: Optional[AuthGate] = None,
        tree_source: Optional[TreeSource] = None,
    ):
        self.config = config
        self.store = store or BackupStore(config.github_source)
        self.gate = gate or ConcurrencyGate(config.max_connections, config.admission_timeout)
        self.auth = auth or AuthGate(config.authorization)
        self.applier = ChangeSetApplier(self.store)
        self.tree_source = tree_source or GitTreeSource(
            url_template=config.clone_url_template,
            timeout=config.clone_timeout,
            retries=config.clone_retries,
        )

    async def upload(self, authorization: Optional[str], location: Optional[str], content: bytes) -> Path:
        """Write one file, replacing any previous content."""
        request = _Request("upload")
        async with self._admitted(request, authorization):
            request.advance(RequestState.DECODING)
            target, path = decode(location, self.config.default_ref)
            self._check_size(len(content))
            request.advance(RequestState.APPLYING)
            written = await self._run_io(self.store.write_file, target, path, content)
        request.complete()
        return written

    async def delete(self, authorization: Optional[str], location: Optional[str]) -> bool:
        """Delete one file. Returns False when it was already absent."""
        request = _Request("delete")
        async with self._admitted(request, authorization):
            request.advance(RequestState.DECODING)
            target, path = decode(location, self.config.default_ref)
            request.advance(RequestState.APPLYING)
            deleted = await self._run_io(self.store.delete_file, target, path)
        request.complete()
        return deleted

    async def backup(self, authorization: Optional[str], location: Optional[str], payload: Any) -> ApplyReport:
        """Apply a change set. Raises ``FatalIOError`` carrying the partial report."""
        request = _Request("backup")
        async with self._admitted(request, authorization):
            request.advance(RequestState.DECODING)
            target = decode_target(location, self.config.default_ref)
            change_set = self._parse_change_set(payload)
            self._check_size(sum(len(content.encode("utf-8")) for content in change_set.create.values()))
            conflicts = change_set.conflicts()
            if conflicts and self.config.reject_conflicts:
                raise ValidationError(f"Paths both removed and written: {sorted(conflicts)}")

            request.advance(RequestState.APPLYING)
            if self.config.auto_clone and not self.store.has_root(target):
                logger.info(f"Repository '{target}' has no backup yet, cloning instead of applying changes")
                await self._clone_into_store(target)
                report = ApplyReport(target=str(target), cloned=True)
            else:
                cancel = threading.Event()
                report = await self._run_io(self.applier.apply, target, change_set, cancel, cancel=cancel)
            if not report.ok:
                raise FatalIOError(report.fatal_error, report=report)
        request.complete()
        return report

    async def clone(self, authorization: Optional[str], location: Optional[str]) -> CloneReport:
        """Replace a target's whole tree with a fresh checkout."""
        request = _Request("clone")
        async with self._admitted(request, authorization):
            request.advance(RequestState.DECODING)
            target = decode_target(location, self.config.default_ref)
            request.advance(RequestState.APPLYING)
            report = await self._clone_into_store(target)
        request.complete()
        return report

    # Private helpers

    @asynccontextmanager
    async def _admitted(self, request: _Request, authorization: Optional[str]) -> AsyncIterator[None]:
        """Authorize, take a permit, and reject with the current stage on error."""
        try:
            request.advance(RequestState.AUTHORIZING)
            self.auth.authorize(authorization)
            request.advance(RequestState.ADMITTED)
            async with self.gate.admit():
                yield
        except BackupError as e:
            raise request.reject(e)

    async def _clone_into_store(self, target: Target) -> CloneReport:
        scratch = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="repo-backup-clone-"))
        try:
            checkout = scratch / target.repo
            await self.tree_source.fetch(target, checkout)
            return await self._run_io(self.store.clone_tree, target, checkout)
        finally:
            await asyncio.to_thread(shutil.rmtree, scratch, ignore_errors=True)

    @staticmethod
    async def _run_io(func, *args, cancel: Optional[threading.Event] = None):
        """Run blocking store work in a worker thread.

        A cancelled caller still waits for the thread to exit, so the permit
        stays held while the store is being touched. ``cancel`` is set on
        cancellation so the work can skip items it has not started.
        """
        work = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.shield(work)
        except asyncio.CancelledError:
            if cancel is not None:
                cancel.set()
            logger.warning(f"Request cancelled, waiting for {getattr(func, '__name__', func)} to finish")
            await _drain(work)
            raise
        except RECOVERABLE_ERRORS as e:
            raise ValidationError(f"{type(e).__name__}: {e.strerror or e}")
        except OSError as e:
            logger.error(f"IO failure in {getattr(func, '__name__', func)}: {e}")
            raise FatalIOError(f"{type(e).__name__}: {e.strerror or e}")

    def _check_size(self, size: int) -> None:
        if size > self.config.max_payload_size:
            raise PayloadTooLargeError(size, self.config.max_payload_size)

    @staticmethod
    def _parse_change_set(payload: Any) -> ChangeSet:
        if isinstance(payload, ChangeSet):
            return payload
        if not isinstance(payload, dict):
            raise ValidationError("Backup payload must be a JSON object")
        try:
            return ChangeSet.model_validate(payload)
        except PydanticValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
            )
            raise ValidationError(f"Invalid backup payload: {details}")
