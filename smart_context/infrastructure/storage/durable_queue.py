"""
Durable Store Queue

Serializes and bounds access to the embedded database:

    callers --execute()--> asyncio.Queue --dispatcher--> Semaphore(max_concurrent)
                                                           |
                                                           v
                                        single database thread (sqlite3)

Every operation carries its own timeout. A timed-out operation fails with
StoreTimeout and the dispatcher moves on to the next one. The live database
is snapshotted to disk on a fixed interval, on close() and on SIGINT/SIGTERM
when signal handlers are installed.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
import asyncio
import signal
import sqlite3
import time
import uuid

import structlog

from smart_context.domain.errors import StoreError, StoreTimeout
from .database import EmbeddedDatabase

logger = structlog.get_logger(__name__)

Operation = Callable[[sqlite3.Connection], Any]


@dataclass
class QueuedOperation:
    """An operation waiting for its turn on the database thread"""
    fn: Operation
    future: asyncio.Future
    timeout: float
    name: str = "operation"
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass
class RunResult:
    """Outcome of a write statement"""
    lastrowid: Optional[int]
    rowcount: int


@dataclass
class QueueStats:
    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    timed_out_operations: int = 0
    queued_operations: int = 0
    average_wait_ms: float = 0.0
    average_duration_ms: float = 0.0
    snapshots_written: int = 0

    def record(self, success: bool, wait_ms: float, duration_ms: float, timed_out: bool = False) -> None:
        self.total_operations += 1
        if success:
            self.successful_operations += 1
        else:
            self.failed_operations += 1
        if timed_out:
            self.timed_out_operations += 1

        n = self.total_operations
        self.average_wait_ms = (self.average_wait_ms * (n - 1) + wait_ms) / n
        self.average_duration_ms = (self.average_duration_ms * (n - 1) + duration_ms) / n


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    return dict(row) if row is not None else None


class DurableStoreQueue:
    """Bounded-concurrency, timeout-guarded access to the embedded store"""

    def __init__(
        self,
        database: Optional[EmbeddedDatabase] = None,
        max_concurrent_operations: int = 3,
        operation_timeout: float = 5.0,
        snapshot_interval: float = 30.0,
    ):
        self.database = database or EmbeddedDatabase()
        self.max_concurrent_operations = max_concurrent_operations
        self.operation_timeout = operation_timeout
        self.snapshot_interval = snapshot_interval
        self.stats = QueueStats()

        self._queue: Optional[asyncio.Queue] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._snapshot_task: Optional[asyncio.Task] = None
        self._active: set = set()
        self._signals: List[int] = []
        self._started = False
        self._closing = False

    @classmethod
    def from_config(cls, database_config) -> "DurableStoreQueue":
        return cls(
            database=EmbeddedDatabase(database_config.path),
            max_concurrent_operations=database_config.max_concurrent_operations,
            operation_timeout=database_config.operation_timeout_seconds,
            snapshot_interval=database_config.snapshot_interval_seconds,
        )

    @property
    def is_running(self) -> bool:
        return self._started and not self._closing

    @property
    def active_operations(self) -> int:
        return len(self._active)

    @property
    def queue_length(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        """Open the database and start the dispatcher and snapshot timer"""

        if self._started:
            return

        loop = asyncio.get_running_loop()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="smart-context-db")
        await loop.run_in_executor(self._executor, self.database.open)

        self._queue = asyncio.Queue()
        self._semaphore = asyncio.Semaphore(self.max_concurrent_operations)
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        if self.database.is_persistent:
            self._snapshot_task = asyncio.create_task(self._snapshot_loop())

        self._started = True
        self._closing = False
        logger.info(
            "Store queue started",
            max_concurrent=self.max_concurrent_operations,
            timeout=self.operation_timeout,
            persistent=self.database.is_persistent,
        )

    async def execute(self, operation: Operation, timeout: Optional[float] = None, name: str = "operation") -> Any:
        """Enqueue an operation and wait for its result"""

        if not self.is_running:
            raise StoreError("Store queue is not running")

        loop = asyncio.get_running_loop()
        queued = QueuedOperation(
            fn=operation,
            future=loop.create_future(),
            timeout=timeout if timeout is not None else self.operation_timeout,
            name=name,
        )
        self.stats.queued_operations += 1
        await self._queue.put(queued)
        return await queued.future

    async def get(self, sql: str, params: Sequence[Any] = (), timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single row as a dict"""

        def op(conn: sqlite3.Connection):
            return _row_to_dict(conn.execute(sql, tuple(params)).fetchone())

        return await self.execute(op, timeout=timeout, name="get")

    async def all(self, sql: str, params: Sequence[Any] = (), timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """Fetch all rows as dicts"""

        def op(conn: sqlite3.Connection):
            return [dict(row) for row in conn.execute(sql, tuple(params)).fetchall()]

        return await self.execute(op, timeout=timeout, name="all")

    async def run(self, sql: str, params: Sequence[Any] = (), timeout: Optional[float] = None) -> RunResult:
        """Execute a write statement in its own transaction"""

        def op(conn: sqlite3.Connection):
            with conn:
                cursor = conn.execute(sql, tuple(params))
            return RunResult(lastrowid=cursor.lastrowid, rowcount=cursor.rowcount)

        return await self.execute(op, timeout=timeout, name="run")

    async def transaction(self, operation: Operation, timeout: Optional[float] = None, name: str = "transaction") -> Any:
        """Run an operation inside one transaction, rolled back on any error"""

        def op(conn: sqlite3.Connection):
            with conn:
                return operation(conn)

        return await self.execute(op, timeout=timeout, name=name)

    async def _dispatch_loop(self) -> None:
        while True:
            queued = await self._queue.get()
            await self._semaphore.acquire()
            task = asyncio.create_task(self._run_operation(queued))
            self._active.add(task)
            task.add_done_callback(self._active.discard)

    async def _run_operation(self, queued: QueuedOperation) -> None:
        loop = asyncio.get_running_loop()
        started = time.monotonic()
        wait_ms = (started - queued.enqueued_at) * 1000

        try:
            if queued.future.done():
                # Caller went away while waiting
                return

            result = await asyncio.wait_for(
                loop.run_in_executor(self._executor, queued.fn, self.database.connection),
                timeout=queued.timeout,
            )
            self.stats.record(True, wait_ms, (time.monotonic() - started) * 1000)
            if not queued.future.done():
                queued.future.set_result(result)

        except asyncio.TimeoutError:
            self.stats.record(False, wait_ms, (time.monotonic() - started) * 1000, timed_out=True)
            logger.warning("Store operation timed out", operation_id=queued.id, name=queued.name, timeout=queued.timeout)
            if not queued.future.done():
                queued.future.set_exception(StoreTimeout(queued.id, queued.timeout))

        except sqlite3.Error as e:
            self.stats.record(False, wait_ms, (time.monotonic() - started) * 1000)
            logger.error("Store operation failed", operation_id=queued.id, name=queued.name, error=str(e))
            if not queued.future.done():
                queued.future.set_exception(StoreError(f"SQL error in {queued.name}: {e}", queued.id))

        except Exception as e:
            self.stats.record(False, wait_ms, (time.monotonic() - started) * 1000)
            logger.debug("Store operation raised", operation_id=queued.id, name=queued.name, error=str(e))
            if not queued.future.done():
                queued.future.set_exception(e)

        finally:
            self._semaphore.release()
            self._queue.task_done()

    async def snapshot(self) -> bool:
        """Write the live database to its snapshot file"""

        written = await self.execute(lambda conn: self.database.snapshot(), name="snapshot")
        if written:
            self.stats.snapshots_written += 1
        return written

    async def _snapshot_loop(self) -> None:
        while True:
            await asyncio.sleep(self.snapshot_interval)
            try:
                await self.snapshot()
            except StoreError as e:
                logger.error("Periodic snapshot failed", error=str(e))

    def install_signal_handlers(self, signals=(signal.SIGINT, signal.SIGTERM)) -> None:
        """Snapshot and close on process-exit signals, then re-deliver the signal"""

        loop = asyncio.get_running_loop()
        for sig in signals:
            try:
                loop.add_signal_handler(sig, lambda s=sig: asyncio.ensure_future(self._shutdown_on_signal(s)))
                self._signals.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.warning("Signal handlers not supported on this platform", signal=int(sig))

    async def _shutdown_on_signal(self, sig: int) -> None:
        logger.info("Received exit signal, saving database", signal=int(sig))
        try:
            await self.close()
        finally:
            self._remove_signal_handlers()
            signal.raise_signal(sig)

    def _remove_signal_handlers(self) -> None:
        if not self._signals:
            return
        loop = asyncio.get_running_loop()
        for installed in self._signals:
            loop.remove_signal_handler(installed)
        self._signals = []

    async def close(self) -> None:
        """Drain outstanding operations, write a final snapshot and stop"""

        if not self._started or self._closing:
            return

        self._closing = True
        logger.info("Closing store queue", pending=self.queue_length, active=self.active_operations)

        await self._queue.join()

        for task in (self._snapshot_task, self._dispatcher):
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        loop = asyncio.get_running_loop()
        try:
            written = await loop.run_in_executor(self._executor, self.database.snapshot)
            if written:
                self.stats.snapshots_written += 1
        finally:
            await loop.run_in_executor(self._executor, self.database.close)
            self._executor.shutdown(wait=True)
            self._started = False
            self._remove_signal_handlers()
            logger.info("Store queue closed")

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats
        success_rate = (
            f"{stats.successful_operations / stats.total_operations * 100:.2f}%"
            if stats.total_operations > 0 else "0%"
        )
        return {
            "total_operations": stats.total_operations,
            "successful_operations": stats.successful_operations,
            "failed_operations": stats.failed_operations,
            "timed_out_operations": stats.timed_out_operations,
            "queued_operations": stats.queued_operations,
            "average_wait_ms": round(stats.average_wait_ms, 3),
            "average_duration_ms": round(stats.average_duration_ms, 3),
            "snapshots_written": stats.snapshots_written,
            "queue_length": self.queue_length,
            "active_operations": self.active_operations,
            "is_running": self.is_running,
            "success_rate": success_rate,
        }

    async def health_check(self) -> Dict[str, Any]:
        try:
            await self.get("SELECT 1 AS ok")
            return {"status": "healthy", "stats": self.get_stats()}
        except StoreError as e:
            return {"status": "unhealthy", "error": str(e), "stats": self.get_stats()}
