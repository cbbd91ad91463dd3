"""Per-worker admission control."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ._utils import logger
from .exceptions import BusyError


class Permit:
    """One admission slot. Releasing more than once is a no-op."""

    def __init__(self, gate: "ConcurrencyGate"):
        self._gate = gate
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._gate._release()


class ConcurrencyGate:
    """Bound the number of requests inside the store for this worker.

    With ``timeout <= 0`` a full gate rejects immediately; otherwise a
    request waits up to ``timeout`` seconds for a slot before being rejected.
    Not coordinated across worker processes.
    """

    def __init__(self, max_connections: int, timeout: float = 0.0):
        if max_connections <= 0:
            raise ValueError(f"max_connections must be positive, got {max_connections}")
        self.max_connections = max_connections
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max_connections)
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def available(self) -> int:
        return self.max_connections - self._in_flight

    async def acquire(self) -> Permit:
        if self.timeout <= 0:
            if self._semaphore.locked():
                logger.warning(f"Rejecting request, {self._in_flight} requests in flight")
                raise BusyError(self.max_connections)
            await self._semaphore.acquire()
        else:
            try:
                await asyncio.wait_for(self._semaphore.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Rejecting request after waiting {self.timeout}s for a slot")
                raise BusyError(self.max_connections)
        self._in_flight += 1
        return Permit(self)

    @asynccontextmanager
    async def admit(self) -> AsyncIterator[Permit]:
        permit = await self.acquire()
        try:
            yield permit
        finally:
            permit.release()

    def _release(self) -> None:
        self._in_flight -= 1
        self._semaphore.release()
