"""
Serialization of bulk locale-file mutations.

One global slot is held by at most one operation type at a time (re-entrant for the
same type, FIFO queue for waiters). A per-file lock map and a per-file mutex guard
single-file writes.
"""
import asyncio
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from src.logging_config import get_logger

logger = get_logger("locks")

T = TypeVar("T")

# A global lock older than this is reclaimed on the next check, in seconds
LOCK_TIMEOUT_SECONDS = 300
# A file lock older than this is reclaimed by the next acquirer, in seconds
FILE_LOCK_TIMEOUT_SECONDS = 30
# Minimum spacing between consecutive file writes, in seconds
FILE_WRITE_DELAY_SECONDS = 0.05
# Default time a waiting acquire may spend in the queue, in seconds
DEFAULT_WAIT_TIMEOUT_SECONDS = 30


class OperationType(str, Enum):
    TRANSLATION_PROJECT = "translation-project"
    TRANSLATION_FILE = "translation-file"
    CLEANUP_UNUSED = "cleanup-unused"
    CLEANUP_INVALID = "cleanup-invalid"
    KEY_MANAGEMENT = "key-management"
    STYLE_FIX = "style-fix"


class LockTimeoutError(TimeoutError):
    """A waiting acquire was not served before its timeout."""


class FileLockError(RuntimeError):
    """A file is locked by a different operation type."""


class LocksForceReleasedError(RuntimeError):
    """Raised into queued waiters when every lock is force released."""


class CancellationToken:
    """Cooperative cancellation flag shared between a lock holder and its operation."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()


@dataclass
class OperationLock:
    type: OperationType
    description: str
    start_time: float
    cancellation_token: Optional[CancellationToken] = None
    # Nesting depth of same-type acquisitions
    count: int = 1


@dataclass
class FileLock:
    path: str
    holder: OperationType
    timestamp: float


@dataclass
class _Waiter:
    type: OperationType
    description: str
    cancellation_token: Optional[CancellationToken]
    future: asyncio.Future = field(repr=False)


def _normalize_path(path: str) -> str:
    return os.path.normcase(os.path.abspath(path))


class FileMutex:
    """
    Per-path async mutex built as a chain of futures.

    Each operation on a path waits for the previous operation on the same path to
    finish, but no longer than ``timeout`` seconds; after that it proceeds anyway and
    a warning is logged, so a wedged holder cannot block others indefinitely.
    """

    def __init__(self, timeout: float = FILE_LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._tails: Dict[str, asyncio.Future] = {}

    @asynccontextmanager
    async def hold(self, path: str):
        key = _normalize_path(path)
        previous = self._tails.get(key)
        done = asyncio.get_running_loop().create_future()
        self._tails[key] = done
        try:
            if previous is not None and not previous.done():
                try:
                    await asyncio.wait_for(asyncio.shield(previous), self.timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"File mutex wait for '{path}' exceeded {self.timeout}s; proceeding")
            yield
        finally:
            if not done.done():
                done.set_result(None)
            if self._tails.get(key) is done:
                del self._tails[key]

    async def run(self, path: str, operation: Callable[[], Awaitable[T]]) -> T:
        async with self.hold(path):
            return await operation()

    def pending_count(self) -> int:
        return len(self._tails)


class OperationLockManager:
    """
    Owner of the global operation slot and the file-lock map.

    State machine: idle (``current is None``) or held by one ``OperationLock`` whose
    ``count`` tracks same-type nesting. Construct one per hosting process and pass it by
    reference; ``clock`` is injectable so lock expiry can be tested without sleeping.
    """

    def __init__(
            self,
            lock_timeout: float = LOCK_TIMEOUT_SECONDS,
            file_lock_timeout: float = FILE_LOCK_TIMEOUT_SECONDS,
            file_write_delay: float = FILE_WRITE_DELAY_SECONDS,
            clock: Callable[[], float] = time.monotonic
    ):
        self.lock_timeout = lock_timeout
        self.file_lock_timeout = file_lock_timeout
        self.file_write_delay = file_write_delay
        self._clock = clock
        self._held: Optional[OperationLock] = None
        self._waiters: List[_Waiter] = []
        self._file_locks: Dict[str, FileLock] = {}
        self._last_file_write: Optional[float] = None
        self.file_mutex = FileMutex(timeout=file_lock_timeout)

    # --- global lock -------------------------------------------------------------

    def is_held(self) -> bool:
        """Whether an operation holds the global lock; reclaims it first if it is stale."""
        if self._held is None:
            return False
        elapsed = self._clock() - self._held.start_time
        if elapsed > self.lock_timeout:
            logger.warning(
                f"Auto-releasing stale lock for {self._held.type.value} "
                f"(\"{self._held.description}\", held {round(elapsed)}s)"
            )
            self._held = None
            self._promote_next_waiter()
        return self._held is not None

    def current_operation(self) -> Optional[OperationLock]:
        if not self.is_held():
            return None
        return self._held

    def blocking_message(self) -> str:
        """Human-readable description of the operation holding the lock, or ''."""
        operation = self.current_operation()
        if operation is None:
            return ''
        elapsed = round(self._clock() - operation.start_time)
        return f'"{operation.description}" is in progress ({elapsed}s elapsed)'

    async def acquire(
            self,
            op_type: OperationType,
            description: str,
            wait: bool = False,
            timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
            cancellation_token: Optional[CancellationToken] = None
    ) -> bool:
        """
        Acquires the global lock for ``op_type``.

        Args:
            op_type: The operation type; a holder of the same type re-enters.
            description: Shown to users blocked by this operation.
            wait: Queue behind the current holder instead of failing fast.
            timeout: Seconds a queued acquire may wait.
            cancellation_token: Stored with the lock so the holder can be cancelled.

        Returns:
            True when acquired; False when held by another type and ``wait`` is False.

        Raises:
            LockTimeoutError: ``wait`` is True and the lock was not handed over in time.
            LocksForceReleasedError: ``force_release_all`` ran while this acquire was queued.
        """
        self._cleanup_stale_locks()

        if self._held is None:
            self._held = OperationLock(op_type, description, self._clock(), cancellation_token)
            return True

        if self._held.type == op_type:
            self._held.count += 1
            return True

        if not wait:
            return False

        waiter = _Waiter(
            type=op_type,
            description=description,
            cancellation_token=cancellation_token,
            future=asyncio.get_running_loop().create_future()
        )
        self._waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter.future, timeout)
        except asyncio.TimeoutError:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            raise LockTimeoutError(f"Timeout waiting for lock: {self.blocking_message()}") from None
        return True

    def release(self, op_type: OperationType, lock: Optional[OperationLock] = None):
        """
        Releases one nesting level; a no-op unless ``op_type`` is the current holder.

        When ``lock`` is given it must be the current lock record, so a holder whose
        stale lock was reclaimed cannot release the lock of whoever acquired it next.
        """
        if self._held is None or self._held.type != op_type:
            return
        if lock is not None and self._held is not lock:
            logger.warning(f"Ignoring release of reclaimed {op_type.value} lock (\"{lock.description}\")")
            return
        self._held.count -= 1
        if self._held.count > 0:
            return
        self._held = None
        self._promote_next_waiter()

    def _promote_next_waiter(self):
        while self._waiters:
            waiter = self._waiters.pop(0)
            if waiter.future.done():
                continue
            self._held = OperationLock(waiter.type, waiter.description, self._clock(), waiter.cancellation_token)
            waiter.future.set_result(True)
            logger.debug(f"Lock handed over to {waiter.type.value} (\"{waiter.description}\")")
            return

    def cancel_current_operation(self) -> bool:
        """Signals the holder's cancellation token, if it has one."""
        operation = self.current_operation()
        if operation is None or operation.cancellation_token is None:
            return False
        operation.cancellation_token.cancel()
        return True

    async def with_global_lock(
            self,
            op_type: OperationType,
            description: str,
            operation: Callable[[Optional[CancellationToken]], Awaitable[T]],
            cancellable: bool = False,
            wait: bool = False,
            timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS
    ) -> Optional[T]:
        """
        Runs ``operation`` while holding the global lock and returns its result.

        ``operation`` receives the lock's cancellation token (None unless ``cancellable``).
        Returns None, after logging a warning naming the blocking operation, when the lock
        cannot be acquired without waiting.
        """
        token = CancellationToken() if cancellable else None
        acquired = await self.acquire(op_type, description, wait=wait, timeout=timeout, cancellation_token=token)
        if not acquired:
            logger.warning(
                f"Cannot start \"{description}\" - {self.blocking_message()}. "
                f"Wait for it to complete or cancel it."
            )
            return None
        held = self._held
        try:
            return await operation(token)
        finally:
            self.release(op_type, held)

    # --- file locks --------------------------------------------------------------

    def _file_lock_blocked(self, key: str, path: str, holder: OperationType) -> bool:
        existing = self._file_locks.get(key)
        if existing is None:
            return False
        if self._clock() - existing.timestamp > self.file_lock_timeout:
            logger.warning(f"Releasing stale file lock for {path} held by {existing.holder.value}")
            del self._file_locks[key]
            return False
        return existing.holder != holder

    async def acquire_file_lock(self, path: str, holder: OperationType) -> bool:
        """
        Takes the write lock on ``path`` for ``holder``.

        Fails when a different holder owns a lock younger than ``file_lock_timeout``.
        Successful acquisitions are spaced at least ``file_write_delay`` after the last
        released write on any file.
        """
        key = _normalize_path(path)
        if self._file_lock_blocked(key, path, holder):
            return False

        if self._last_file_write is not None:
            since_last_write = self._clock() - self._last_file_write
            if since_last_write < self.file_write_delay:
                await asyncio.sleep(self.file_write_delay - since_last_write)
                # Another holder may have taken the file while this one was throttled
                if self._file_lock_blocked(key, path, holder):
                    return False

        self._file_locks[key] = FileLock(key, holder, self._clock())
        return True

    def release_file_lock(self, path: str):
        self._last_file_write = self._clock()
        self._file_locks.pop(_normalize_path(path), None)

    async def with_file_lock(
            self,
            path: str,
            holder: OperationType,
            operation: Callable[[], Awaitable[T]]
    ) -> T:
        if not await self.acquire_file_lock(path, holder):
            raise FileLockError(f"Cannot acquire file lock for {path}")
        try:
            return await operation()
        finally:
            self.release_file_lock(path)

    # --- maintenance -------------------------------------------------------------

    def _cleanup_stale_locks(self):
        now = self._clock()
        for key, lock in list(self._file_locks.items()):
            if now - lock.timestamp > self.file_lock_timeout:
                del self._file_locks[key]
        self.is_held()

    def force_release_all(self):
        """Emergency reset: drops every lock and fails every queued waiter."""
        self._held = None
        self._file_locks.clear()
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.future.done():
                waiter.future.set_exception(LocksForceReleasedError("All locks force released"))

    def stats(self) -> Dict[str, object]:
        return {
            "global_lock": self._held,
            "file_lock_count": len(self._file_locks),
            "waiting_count": len(self._waiters),
        }
