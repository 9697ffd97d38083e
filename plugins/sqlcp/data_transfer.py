"""
Data Transfer Module

The two halves of the streaming copy: a single SourceReader that fetches
fixed-size batches from the source query into a BatchQueue, and any number
of symmetric TargetWriter workers that drain the queue into the target
database with one batched insert and one commit per batch.

Each component runs on its own thread, owns its own connection, and exposes
its counters through immutable snapshots. Completion is signalled with an
explicit event that is set only after the counters are final and the
connection has been released.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
import logging
import threading
import time

from sqlcp.batch_queue import BatchQueue
from sqlcp.exceptions import DatabaseConnectionError, PreImportError
from sqlcp.row import DEFAULT_FORMATTER, RowFormatter
from sqlcp.sql_util import EXECUTE_FAILED, SqlUtil
from sqlcp.type_mapping import parse_bind_types, type_name
from sqlcp.utils import build_select_statement, truncate_string

logger = logging.getLogger(__name__)

READER_POLL_SECONDS = 0.05
WRITER_POLL_SECONDS = 0.05

SqlFactory = Callable[..., SqlUtil]


@dataclass(frozen=True)
class ReaderStats:
    rows_read: int
    fetches: int
    db_time: float
    wait_time: float
    init_time: float


@dataclass(frozen=True)
class PartialFailure:
    """A batch the target accepted only partly."""

    batch_number: int
    rows_sent: int
    rows_confirmed: int


@dataclass(frozen=True)
class WriterStats:
    rows_inserted: int
    batches_inserted: int
    db_time: float
    wait_time: float
    init_time: float
    partial_failures: Tuple[PartialFailure, ...] = ()


class SourceReader:
    """
    Reads the source query in batches and feeds the batch queue.

    Construction connects and prepares the query, so column metadata is
    available as soon as the object exists. start() runs the fetch loop on a
    daemon thread.

    Usage:
        reader = SourceReader(url, user, password, "items", 50000, 5000, queue)
        reader.start()
        ...
        reader.terminate()
        reader.close()
    """

    def __init__(
        self,
        url: str,
        user: Optional[str],
        password: Optional[str],
        query_data: str,
        max_buffered_rows: int,
        batch_size: int,
        queue: BatchQueue,
        formatter: RowFormatter = DEFAULT_FORMATTER,
        sql_factory: SqlFactory = SqlUtil,
    ):
        """
        Connect to the source and prepare the streaming cursor.

        Args:
            url: Source connection string
            user: Source username
            password: Source password
            query_data: SELECT statement or bare table name
            max_buffered_rows: Pause fetching while the queue holds this many rows
            batch_size: Rows per fetch
            queue: Queue shared with the consumers
            formatter: Value renderer attached to every fetched row
            sql_factory: Creates the access layer (SqlUtil or a test double)

        Raises:
            DatabaseConnectionError: If the source cannot be reached
            PrepareError: If the query cannot be prepared
        """
        if max_buffered_rows < 1:
            raise ValueError(f"max_buffered_rows must be >= 1, got {max_buffered_rows}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.queue = queue
        self.max_buffered_rows = max_buffered_rows
        self.batch_size = batch_size
        self.select_stmt = build_select_statement(query_data)

        self._cancel = threading.Event()
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None
        self._rows_read = 0
        self._completed = False
        self._fetches = 0
        self._db_time = 0.0
        self._wait_time = 0.0

        t0 = time.time()
        self._sql = sql_factory(url, user, password, formatter=formatter)
        try:
            try:
                self._sql.connect(read_only=True)
            except DatabaseConnectionError:
                logger.error(f"Cannot establish connection to source. {self._sql.describe()}")
                raise
            self._sql.set_fetch_size(batch_size)
            self._sql.prepare_chunks(self.select_stmt)
        except Exception:
            self.close()
            raise
        self._init_time = time.time() - t0

        logger.info(
            f"Source prepared in {self._init_time:.2f}s: {self.column_count} columns "
            f"from [[{truncate_string(self.select_stmt, 200)}]]"
        )

    # -- metadata ---------------------------------------------------------

    @property
    def column_count(self) -> int:
        return self._sql.column_count

    @property
    def column_names(self) -> List[str]:
        return list(self._sql.column_names)

    @property
    def column_types(self) -> List[int]:
        return list(self._sql.column_types)

    # -- lifecycle --------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("SourceReader can only be started once")
        self._thread = threading.Thread(target=self.run, name="sqlcp-reader", daemon=True)
        self._thread.start()

    def run(self) -> None:
        """Fetch loop. Runs until the source is exhausted and the queue drained, or cancellation."""
        try:
            while True:
                if self._cancel.is_set():
                    return
                t0 = time.time()
                rows = self._sql.next_chunk()
                with self._lock:
                    self._db_time += time.time() - t0
                if rows is None:
                    break

                with self._lock:
                    self._fetches += 1
                    self._rows_read += len(rows)
                if self._cancel.is_set():
                    return

                self.queue.put(rows)
                t0 = time.time()
                below = self.queue.wait_below(self.max_buffered_rows, self._cancel, READER_POLL_SECONDS)
                with self._lock:
                    self._wait_time += time.time() - t0
                if not below:
                    return

            # all data enqueued, stay alive until the consumers took it
            t0 = time.time()
            drained = self.queue.wait_drained(self._cancel, READER_POLL_SECONDS)
            with self._lock:
                self._wait_time += time.time() - t0
                self._completed = drained
            logger.debug(f"Reader finished: {self._rows_read:,} rows in {self._fetches} fetches")
        except Exception as e:
            logger.error(f"Reader failed after {self._rows_read:,} rows: {e}")
            self._error = e
        finally:
            self._release()
            self._done.set()

    def _release(self) -> None:
        try:
            self._sql.close_chunks()
        finally:
            self._sql.close()

    def terminate(self) -> None:
        """Ask the fetch loop to stop at its next check; wakes any pending wait."""
        self._cancel.set()
        self.queue.wake()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def close(self) -> None:
        """Release the source connection. Idempotent; the loop releases it too."""
        self._sql.close()

    # -- state ------------------------------------------------------------

    @property
    def done(self) -> threading.Event:
        return self._done

    def is_alive(self) -> bool:
        return self._thread is not None and not self._done.is_set()

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def state(self) -> str:
        if self._thread is None:
            return "NEW"
        if not self._done.is_set():
            return "RUNNING"
        if self._error is not None:
            return "FAILED"
        return "DONE" if self._completed else "CANCELLED"

    def snapshot(self) -> ReaderStats:
        with self._lock:
            return ReaderStats(
                rows_read=self._rows_read,
                fetches=self._fetches,
                db_time=self._db_time,
                wait_time=self._wait_time,
                init_time=self._init_time,
            )


def create_insert_statement(target: str, column_names: List[str], paramstyle: str = "?") -> str:
    """
    Build the parameterized insert for a target.

    A target that already is an INSERT statement with a column list is used
    as given; anything else is treated as a table name.

    Examples:
        >>> create_insert_statement("items", ["id", "name"])
        'insert into items(id,name) values (?,?)'
        >>> create_insert_statement("INSERT INTO t (a) VALUES (%s)", ["x"])
        'INSERT INTO t (a) VALUES (%s)'
    """
    stripped = target.strip()
    if stripped.upper().startswith("INSERT ") and stripped.find("(") > 0:
        return stripped
    if not column_names:
        raise ValueError("Cannot build an insert statement without column names")
    columns = ",".join(column_names)
    placeholders = ",".join([paramstyle] * len(column_names))
    return f"insert into {stripped}({columns}) values ({placeholders})"


class TargetWriter:
    """
    One writer worker with its own target connection.

    The connection is opened inside the worker thread, not at construction.
    Any failure is captured in ``error``; it does not stop the reader or the
    other writers.
    """

    def __init__(
        self,
        reader: SourceReader,
        url: str,
        user: Optional[str],
        password: Optional[str],
        target: str,
        bind_types: Optional[str] = None,
        name: str = "writer-1",
        sql_factory: SqlFactory = SqlUtil,
    ):
        """
        Args:
            reader: Reader whose queue and metadata this writer uses
            url: Target connection string
            user: Target username
            password: Target password
            target: Table name or literal INSERT statement
            bind_types: Comma separated bind-type names; without them values are
                        bound exactly as the source driver returned them
            name: Thread name, shown in logs
            sql_factory: Creates the access layer (SqlUtil or a test double)

        Raises:
            ValueError: If bind_types contains an unknown name
        """
        self.reader = reader
        self.queue = reader.queue
        self.url = url
        self.user = user
        self.password = password
        self.target = target
        self.name = name
        self.bind_types = parse_bind_types(bind_types)
        self.insert_stmt: Optional[str] = None

        self._sql_factory = sql_factory
        self._sql: Optional[SqlUtil] = None
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._future: Optional[Future] = None
        self._error: Optional[BaseException] = None
        self._rows_inserted = 0
        self._batches_inserted = 0
        self._db_time = 0.0
        self._wait_time = 0.0
        self._init_time = 0.0
        self._partial_failures: List[PartialFailure] = []

    def execute_sql_before_inserts(self, statement: Optional[str]) -> None:
        """
        Run the pre-import statement on a short-lived connection and commit it.

        Statements shorter than two characters are ignored.

        Raises:
            DatabaseConnectionError: If the target cannot be reached
            PreImportError: If the statement fails
        """
        if not statement or len(statement.strip()) < 2:
            return

        t0 = time.time()
        sql = self._sql_factory(self.url, self.user, self.password)
        try:
            try:
                sql.connect()
            except DatabaseConnectionError:
                logger.error(f"Cannot establish connection to target. {sql.describe()}")
                raise
            try:
                sql.execute_ddl(statement)
                sql.commit()
            except Exception as e:
                logger.error(f"Cannot execute SQL on target. SQL={truncate_string(statement, 500)}")
                raise PreImportError(f"Statement before import failed: {e}") from e
            logger.info(f"Executed statement before import: {truncate_string(statement, 200)}")
        finally:
            sql.close()
            with self._lock:
                self._init_time += time.time() - t0

    def start(self, executor: Optional[ThreadPoolExecutor] = None) -> Future:
        """
        Submit the drain loop to the executor shared by all writers of a copy.

        Without an executor the writer gets a single-thread pool of its own.

        Returns:
            Future that completes when the loop ends and carries its error, if any
        """
        if self._future is not None:
            raise RuntimeError(f"{self.name} can only be started once")
        if executor is None:
            own = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"sqlcp-{self.name}")
            self._future = own.submit(self.run)
            own.shutdown(wait=False)
        else:
            self._future = executor.submit(self.run)
        return self._future

    def _init(self) -> None:
        t0 = time.time()
        self._sql = self._sql_factory(self.url, self.user, self.password)
        try:
            self._sql.connect(read_only=False, autocommit=False)
        except DatabaseConnectionError:
            logger.error(f"Cannot establish connection to target. {self._sql.describe()}")
            raise
        finally:
            with self._lock:
                self._init_time += time.time() - t0

    def run(self) -> None:
        """
        Drain loop. Exits once the reader is done and the queue is empty.

        A failure is kept in error and re-raised so the future carries it.
        """
        try:
            self._init()
            self.insert_stmt = create_insert_statement(
                self.target, self.reader.column_names, self._sql.paramstyle
            )
            bind_types = self.bind_types
            logger.debug(f"{self.name} inserting with: {self.insert_stmt}")
            if bind_types:
                logger.debug(f"{self.name} bind types: {','.join(type_name(t) for t in bind_types)}")

            while True:
                if self.reader.done.is_set() and self.queue.empty():
                    break

                t0 = time.time()
                rows = self.queue.get(timeout=WRITER_POLL_SECONDS)
                self._account_wait(time.time() - t0)
                if rows is None:
                    continue

                t0 = time.time()
                codes = self._sql.execute_batch(self.insert_stmt, rows, bind_types)
                self._sql.commit(silent=True)
                failed = sum(1 for code in codes if code == EXECUTE_FAILED)
                with self._lock:
                    self._batches_inserted += 1
                    self._rows_inserted += len(rows) - failed
                    self._db_time += time.time() - t0
                    if failed:
                        self._partial_failures.append(
                            PartialFailure(self._batches_inserted, len(rows), len(rows) - failed)
                        )
                if failed:
                    logger.warning(
                        f"{self.name}: batch {self._batches_inserted} confirmed "
                        f"{len(rows) - failed} of {len(rows)} rows"
                    )

            self._sql.commit(silent=True)
        except Exception as e:
            logger.error(f"{self.name} failed after {self._rows_inserted:,} rows: {e}")
            self._error = e
            raise
        finally:
            self.close()
            self._done.set()

    def _account_wait(self, seconds: float) -> None:
        with self._lock:
            self._wait_time += seconds

    def close(self) -> None:
        """Release the target connection. Idempotent."""
        if self._sql is not None:
            self._sql.close()

    @property
    def done(self) -> threading.Event:
        return self._done

    def is_alive(self) -> bool:
        return self._future is not None and not self._done.is_set()

    @property
    def future(self) -> Optional[Future]:
        return self._future

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def state(self) -> str:
        if self._future is None:
            return "NEW"
        if not self._done.is_set():
            return "RUNNING"
        return "FAILED" if self._error is not None else "DONE"

    def snapshot(self) -> WriterStats:
        with self._lock:
            return WriterStats(
                rows_inserted=self._rows_inserted,
                batches_inserted=self._batches_inserted,
                db_time=self._db_time,
                wait_time=self._wait_time,
                init_time=self._init_time,
                partial_failures=tuple(self._partial_failures),
            )
