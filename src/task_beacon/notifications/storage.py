"""File persistence for the notification table.

The table is stored as one JSON document. Writes are atomic (temp file +
os.replace) and debounced: every save() issued while a write is pending
shares the same future, and a new window only opens once that write has
started. Anyone awaiting the future therefore sees a file that includes
every mutation made before their save() call.
"""

import asyncio
import contextlib
import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from task_beacon.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_SAVE_DEBOUNCE_SECONDS = 1.0
DATA_DIR_MODE = 0o700
DATA_FILE_MODE = 0o600

Snapshot = dict[str, dict[str, Any]]


def _consume_exception(future: "asyncio.Future[None]") -> None:
    """Mark a failed future's exception as retrieved.

    Debounced saves are usually fire-and-forget; without this, asyncio logs
    "exception was never retrieved" for every failed background write.
    """
    if not future.cancelled():
        future.exception()


class NotificationStorage:
    """Debounced JSON file store addressed by a single path.

    Attributes:
        path: Notifications file.
        debounce_seconds: Window in which save() calls collapse into one write.

    """

    def __init__(
        self,
        path: Path,
        debounce_seconds: float = DEFAULT_SAVE_DEBOUNCE_SECONDS,
    ) -> None:
        """Initialize storage.

        Args:
            path: Notifications file. Its directory is created on first use.
            debounce_seconds: Debounce window for save().

        """
        self.path = path
        self.debounce_seconds = debounce_seconds

        self._dirty = False
        self._pending: asyncio.Future[None] | None = None
        self._timer: asyncio.Task[None] | None = None
        self._write_lock: asyncio.Lock | None = None
        self._snapshot: Callable[[], Snapshot] | None = None

    @property
    def is_dirty(self) -> bool:
        """Whether there are changes not yet written to disk."""
        return self._dirty

    def mark_dirty(self) -> None:
        """Record unsaved changes without scheduling a write."""
        self._dirty = True

    def _get_lock(self) -> asyncio.Lock:
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        return self._write_lock

    # ------------------------------------------------------------------
    # Synchronous file operations (run in a worker thread)
    # ------------------------------------------------------------------

    def _ensure_data_dir(self) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True, mode=DATA_DIR_MODE)
        try:
            os.chmod(directory, DATA_DIR_MODE)
        except OSError as e:
            logger.warning("Failed to set permissions on %s: %s", directory, e)

    def _read_sync(self) -> Snapshot | None:
        self._ensure_data_dir()
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        return data

    def _write_sync(self, data: Snapshot) -> None:
        self._ensure_data_dir()
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, separators=(",", ":"), ensure_ascii=False)
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError):
            if temp_path.exists():
                temp_path.unlink()
            raise

        try:
            os.chmod(self.path, DATA_FILE_MODE)
        except OSError as e:
            logger.warning("Failed to set permissions on %s: %s", self.path, e)

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def load(self) -> Snapshot:
        """Read the persisted table.

        A missing file yields an empty table. A corrupt or unreadable file is
        logged and also yields an empty table, so a bad file never prevents
        the server from starting.

        Returns:
            Subject -> record mapping.

        """
        try:
            data = await asyncio.to_thread(self._read_sync)
        except (OSError, ValueError) as e:
            logger.error("Failed to load notifications from %s: %s", self.path, e)
            self._dirty = False
            return {}

        self._dirty = False
        if data is None:
            logger.info("No notifications file at %s, starting fresh", self.path)
            return {}

        logger.info("Loaded %d notifications from %s", len(data), self.path)
        return data

    async def _write(self, snapshot: Callable[[], Snapshot]) -> None:
        """Write the current snapshot, serialized with other writes.

        Raises:
            PersistenceError: If the write fails. The dirty flag stays set.

        """
        async with self._get_lock():
            # Clear before taking the snapshot: mutations that land while the
            # thread is writing set it again and are picked up next cycle.
            self._dirty = False
            try:
                data = snapshot()
                await asyncio.to_thread(self._write_sync, data)
            except (OSError, TypeError, ValueError) as e:
                self._dirty = True
                logger.error("Failed to save notifications to %s: %s", self.path, e)
                raise PersistenceError(f"Failed to save notifications: {e}", str(self.path)) from e

        logger.debug("Saved %d notifications to %s", len(data), self.path)

    async def _flush_after_delay(self, pending: "asyncio.Future[None]") -> None:
        # Cancelled here only by save_immediate(), which then completes pending
        await asyncio.sleep(self.debounce_seconds)

        # Later save() calls start a new window from here on
        if self._pending is pending:
            self._pending = None
            self._timer = None

        snapshot = self._snapshot
        try:
            if snapshot is not None:
                await self._write(snapshot)
        except asyncio.CancelledError:
            if not pending.done():
                pending.cancel()
            raise
        except Exception as e:
            error = e
            if not isinstance(e, PersistenceError):
                self._dirty = True
                logger.exception("Unexpected error saving notifications to %s", self.path)
                error = PersistenceError(f"Failed to save notifications: {e}", str(self.path))
            if not pending.done():
                pending.set_exception(error)
            return

        if not pending.done():
            pending.set_result(None)

    def save(self, snapshot: Callable[[], Snapshot]) -> "asyncio.Future[None]":
        """Request a debounced write.

        Must be called from a running event loop.

        Args:
            snapshot: Callable returning the table to write. It is invoked at
                write time, so the write reflects the latest state.

        Returns:
            Future shared by every caller in the current window. It resolves
            after the write, or fails with PersistenceError.

        """
        self._dirty = True
        self._snapshot = snapshot

        if self._pending is None:
            loop = asyncio.get_running_loop()
            pending: asyncio.Future[None] = loop.create_future()
            pending.add_done_callback(_consume_exception)
            self._pending = pending
            self._timer = loop.create_task(self._flush_after_delay(pending))

        return self._pending

    async def save_immediate(self, snapshot: Callable[[], Snapshot]) -> None:
        """Write now, bypassing the debounce window.

        Cancels a scheduled debounced write and fulfils its waiters once
        this write completes. Skips the write if nothing is dirty.

        Raises:
            PersistenceError: If the write fails.

        """
        self._snapshot = snapshot
        pending = self._pending
        timer = self._timer
        self._pending = None
        self._timer = None

        if timer is not None and not timer.done():
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer

        try:
            if self._dirty:
                await self._write(snapshot)
        except PersistenceError as e:
            if pending is not None and not pending.done():
                pending.set_exception(e)
            raise

        if pending is not None and not pending.done():
            pending.set_result(None)
