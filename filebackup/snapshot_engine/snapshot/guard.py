"""
Per-source-path operation guard.

At most one capture or restore may run for a given source path. A second
request for the same path is rejected immediately (no queueing) so the
caller can report "already in progress".

Invariants:
    - At most one LockToken per source path at any time
    - try_acquire never blocks and never raises for a busy path
    - Every acquire is paired with a release on every exit path
    - The stale reaper cancels long-running holders but never releases them;
      only the owner releases its lock
    - drain() leaves no locks and no running reaper task

How to change safely:
    - Keep acquisition synchronous; an await between the membership test and
      the insert would let two coroutines acquire the same path
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

from ..progress import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class LockToken:
    """An acquired per-path lock.

    Attributes:
        source_path: Normalized path the lock is held for
        lock_id: Unique id of this acquisition
        acquired_at: Monotonic acquisition time
        cancellation: Token cancelled by the reaper or by drain()
    """

    source_path: str
    lock_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: float = field(default_factory=time.monotonic)
    cancellation: CancellationToken = field(default_factory=CancellationToken)


class OperationGuard:
    """Process-wide table of in-flight operations keyed by source path.

    Example:
        >>> guard = OperationGuard()
        >>> token = guard.try_acquire("/ws/src/app.ts")
        >>> guard.try_acquire("/ws/src/app.ts") is None
        True
        >>> guard.release(token)
    """

    def __init__(
        self,
        stale_timeout_seconds: float = 300.0,
        reap_interval_seconds: float = 60.0,
        log: logging.Logger | None = None,
    ) -> None:
        self.stale_timeout_seconds = stale_timeout_seconds
        self.reap_interval_seconds = reap_interval_seconds
        self._locks: Dict[str, LockToken] = {}
        self._reaper: Optional[asyncio.Task] = None
        self._logger = log or logger

    @staticmethod
    def normalize(source_path: Path | str) -> str:
        return os.path.normpath(os.path.abspath(str(source_path)))

    @property
    def active_count(self) -> int:
        return len(self._locks)

    def is_held(self, source_path: Path | str) -> bool:
        return self.normalize(source_path) in self._locks

    def try_acquire(
        self,
        source_path: Path | str,
        cancellation: CancellationToken | None = None,
    ) -> LockToken | None:
        """Acquire the lock for a path, or return None if it is busy.

        Args:
            source_path: Source file the operation works on
            cancellation: Optional caller token; the lock's token is the
                union of it and the guard's own token

        Returns:
            LockToken on success, None if an operation already holds the path
        """
        key = self.normalize(source_path)
        if key in self._locks:
            self._logger.warning(f"Operation already in progress for file: {key}")
            return None

        token = LockToken(source_path=key)
        if cancellation is not None:
            token.cancellation = CancellationToken.combine(CancellationToken(), cancellation)
        self._locks[key] = token
        self._ensure_reaper()
        self._logger.debug(f"Lock acquired for {key}", extra={"lock_id": token.lock_id})
        return token

    def release(self, token: LockToken | None) -> None:
        """Release a lock. Unknown or already released tokens are ignored."""
        if token is None:
            return
        current = self._locks.get(token.source_path)
        if current is not None and current.lock_id == token.lock_id:
            del self._locks[token.source_path]
            self._logger.debug(f"Lock released for {token.source_path}")

    @asynccontextmanager
    async def hold(
        self,
        source_path: Path | str,
        cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[LockToken | None]:
        """Hold the lock for the duration of a block.

        Yields the LockToken, or None when the path is busy (the block then
        runs without a lock and should bail out).
        """
        token = self.try_acquire(source_path, cancellation)
        try:
            yield token
        finally:
            self.release(token)

    def cancel_all(self) -> int:
        """Cancel every held operation without releasing the locks."""
        for token in self._locks.values():
            token.cancellation.cancel("shutdown")
        return len(self._locks)

    async def drain(self) -> None:
        """Cancel all operations, clear the lock table and stop the reaper."""
        cancelled = self.cancel_all()
        if cancelled:
            self._logger.info(f"Cancelling {cancelled} active operations")
        self._locks.clear()
        await self._stop_reaper()

    def reap_stale(self, now: float | None = None) -> int:
        """Cancel operations that have held their lock past the stale timeout."""
        now = time.monotonic() if now is None else now
        reaped = 0
        for token in self._locks.values():
            if now - token.acquired_at > self.stale_timeout_seconds and not token.cancellation.is_cancelled:
                self._logger.warning(f"Cancelling stale operation for {token.source_path}")
                token.cancellation.cancel("stale")
                reaped += 1
        return reaped

    def _ensure_reaper(self) -> None:
        if self._reaper is not None and not self._reaper.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (synchronous caller); stale reaping is unavailable
            return
        self._reaper = loop.create_task(self._reap_loop())

    async def _reap_loop(self) -> None:
        try:
            while self._locks:
                await asyncio.sleep(self.reap_interval_seconds)
                self.reap_stale()
        except asyncio.CancelledError:
            pass

    async def _stop_reaper(self) -> None:
        if self._reaper is None:
            return
        self._reaper.cancel()
        await asyncio.gather(self._reaper, return_exceptions=True)
        self._reaper = None
