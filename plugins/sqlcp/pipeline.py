"""
Pipeline Orchestrator

Wires a SourceReader, a BatchQueue and the consumer side together for one
run, supervises it, and turns the outcome into a RunResult.

Two variants:

- Db2DbPipeline: N TargetWriter threads insert into a target database
- Db2FilePipeline: a FileSink on the calling thread writes a text file or stdout

Connections are always released, on every path. A run object is used once.
"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TextIO
import gc
import logging
import sys
import time

from sqlcp.batch_queue import BatchQueue
from sqlcp.data_transfer import ReaderStats, SourceReader, TargetWriter, WriterStats
from sqlcp.file_sink import MODE_OVERWRITE, FileSink, prepare_destination
from sqlcp.row import DEFAULT_FORMATTER, RowFormatter
from sqlcp.sql_util import SqlUtil
from sqlcp.utils import (
    MemoryProbe,
    format_bytes,
    format_duration,
    mask_password,
    rows_per_second,
    truncate_string,
)

logger = logging.getLogger(__name__)

SUPERVISOR_POLL_SECONDS = 0.1
READER_JOIN_TIMEOUT_SECONDS = 5.0

DEFAULT_BUFFERED_ROWS = 50000
DEFAULT_BATCH_SIZE = 5000


@dataclass
class Db2DbSettings:
    """Everything a database-to-database run needs."""

    src_url: str
    src_data: str
    dest_url: str
    dest_target: str
    src_user: Optional[str] = None
    src_password: Optional[str] = None
    dest_user: Optional[str] = None
    dest_password: Optional[str] = None
    buffered_rows: int = DEFAULT_BUFFERED_ROWS
    batch_size: int = DEFAULT_BATCH_SIZE
    dest_sql_before_import: Optional[str] = None
    num_threads: int = 1
    bind_types: Optional[str] = None
    gc_interval: int = 0
    status_interval: int = 0
    print_summary: bool = False

    def as_params(self) -> Dict[str, Any]:
        """Settings as printable parameters, passwords masked."""
        params = asdict(self)
        params["src_password"] = mask_password(self.src_password)
        params["dest_password"] = mask_password(self.dest_password)
        return params


@dataclass
class Db2FileSettings:
    """Everything a database-to-file run needs. dest_file None means stdout."""

    src_url: str
    src_data: str
    src_user: Optional[str] = None
    src_password: Optional[str] = None
    buffered_rows: int = DEFAULT_BUFFERED_ROWS
    batch_size: int = DEFAULT_BATCH_SIZE
    dest_file: Optional[str] = None
    dest_mode: str = MODE_OVERWRITE
    separator: str = ";"
    include_header: bool = False
    first_col_counter: bool = False
    formatter: RowFormatter = DEFAULT_FORMATTER
    status_interval: int = 0
    print_summary: bool = False

    def as_params(self) -> Dict[str, Any]:
        params = asdict(self)
        params["src_password"] = mask_password(self.src_password)
        params["formatter"] = {k: v for k, v in asdict(self.formatter).items() if v is not None}
        return params


@dataclass
class RunResult:
    exit_code: int
    errors: List[str] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    reader_stats: Optional[ReaderStats] = None
    writer_stats: List[WriterStats] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def _state_histogram(states: List[str]) -> str:
    """['RUNNING', 'DONE', 'RUNNING'] -> 'RUNNING*2,DONE*1'"""
    counts: Dict[str, int] = {}
    for state in states:
        counts[state] = counts.get(state, 0) + 1
    return ",".join(f"{state}*{n}" for state, n in counts.items())


class Db2DbPipeline:
    """
    Copy a query result from one database into another.

    Usage:
        settings = Db2DbSettings(
            src_url="postgresql://src/db", src_data="SELECT * FROM items",
            dest_url="sqlite:///copy.db", dest_target="items", num_threads=4,
        )
        result = Db2DbPipeline(settings).run()
        sys.exit(result.exit_code)
    """

    def __init__(
        self,
        settings: Db2DbSettings,
        sql_factory: Callable[..., SqlUtil] = SqlUtil,
        memory_probe: Optional[MemoryProbe] = None,
    ):
        if settings.num_threads < 1:
            raise ValueError(f"num_threads must be >= 1, got {settings.num_threads}")
        self.settings = settings
        self.sql_factory = sql_factory
        self.memory_probe = memory_probe or MemoryProbe()
        self.queue = BatchQueue()
        self.reader: Optional[SourceReader] = None
        self.writers: List[TargetWriter] = []
        self.futures: List[Future] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self.gc_time: Optional[float] = None
        self._started = 0.0
        self._inserts_started = 0.0
        self._inserts_finished = 0.0

    def run(self) -> RunResult:
        s = self.settings
        self._started = time.time()
        errors: List[str] = []

        logger.info(
            f"Starting db2db: [[{truncate_string(s.src_data, 200)}]] -> {s.dest_target} "
            f"(threads={s.num_threads}, batch_size={s.batch_size:,}, buffered_rows={s.buffered_rows:,})"
        )

        try:
            self.reader = SourceReader(
                s.src_url, s.src_user, s.src_password, s.src_data,
                s.buffered_rows, s.batch_size, self.queue,
                sql_factory=self.sql_factory,
            )
            self.reader.start()

            first = self._create_writer(1)
            first.execute_sql_before_inserts(s.dest_sql_before_import)

            self._inserts_started = time.time()
            self.writers = [first] + [self._create_writer(i) for i in range(2, s.num_threads + 1)]
            self._executor = ThreadPoolExecutor(max_workers=s.num_threads, thread_name_prefix="sqlcp-writer")
            self.futures = [writer.start(self._executor) for writer in self.writers]

            self._supervise()
            self._inserts_finished = time.time()
        except Exception as e:
            error_msg = f"Copy aborted: {e}"
            logger.error(error_msg)
            errors.append(error_msg)
        finally:
            self._release()

        for writer, future in zip(self.writers, self.futures):
            if future.done() and future.exception() is not None:
                errors.append(f"{writer.name}: {future.exception()}")
            for p in writer.snapshot().partial_failures:
                errors.append(
                    f"{writer.name}: batch {p.batch_number} confirmed {p.rows_confirmed} of {p.rows_sent} rows"
                )
        if self.reader is not None and self.reader.error is not None:
            errors.append(f"reader: {self.reader.error}")

        summary = self.summary() if self.reader is not None else {}
        if s.print_summary and summary:
            self.log_summary(summary)

        if errors:
            logger.error("copy failed")
            for error in errors:
                logger.error(error)
        else:
            logger.info("copy done")

        return RunResult(
            exit_code=1 if errors else 0,
            errors=errors,
            summary=summary,
            reader_stats=self.reader.snapshot() if self.reader is not None else None,
            writer_stats=[w.snapshot() for w in self.writers],
        )

    def _create_writer(self, number: int) -> TargetWriter:
        s = self.settings
        return TargetWriter(
            self.reader, s.dest_url, s.dest_user, s.dest_password, s.dest_target,
            bind_types=s.bind_types, name=f"writer-{number}", sql_factory=self.sql_factory,
        )

    def _supervise(self) -> None:
        """Poll until every writer is terminal; print status and collect garbage on their intervals."""
        s = self.settings
        last_status = 0.0
        last_gc = time.time()
        while not all(f.done() for f in self.futures):
            self.memory_probe.sample()
            now = time.time()
            if s.status_interval > 0 and now - last_status >= s.status_interval:
                logger.info(self.status_line())
                last_status = time.time()

            if s.gc_interval > 0 and now - last_gc >= s.gc_interval:
                t0 = time.time()
                gc.collect()
                self.gc_time = (self.gc_time or 0.0) + time.time() - t0
                last_gc = time.time()

            wait(self.futures, timeout=SUPERVISOR_POLL_SECONDS)

    def _release(self) -> None:
        if self.reader is not None:
            self.reader.terminate()
            if not self.reader.wait(READER_JOIN_TIMEOUT_SECONDS):
                logger.warning("Reader did not stop in time, closing its connection anyway")
            self.reader.close()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        for writer in self.writers:
            writer.close()

    def status_line(self) -> str:
        """
        One-line runtime status, for example:

            mem=58M; queue=15000; T=2350ms; in(RUNNING rcvd=40000 dbT=812ms; waitT=1203ms);
            out*2(RUNNING*2 ins=25000 dbT=1900ms; waitT=31ms)
        """
        mem_mb = self.memory_probe.sample() // (1024 * 1024)
        reader = self.reader.snapshot()
        writers = [w.snapshot() for w in self.writers]
        states = _state_histogram([w.state for w in self.writers])
        elapsed = time.time() - self._started
        return (
            f"mem={mem_mb}M; queue={self.queue.row_count}; T={format_duration(elapsed)}; "
            f"in({self.reader.state} rcvd={reader.rows_read} dbT={format_duration(reader.db_time)}; "
            f"waitT={format_duration(reader.wait_time)}); "
            f"out*{len(self.writers)}({states} ins={sum(w.rows_inserted for w in writers)} "
            f"dbT={format_duration(sum(w.db_time for w in writers))}; "
            f"waitT={format_duration(sum(w.wait_time for w in writers))})"
        )

    def summary(self) -> Dict[str, Any]:
        s = self.settings
        self.memory_probe.sample()
        reader = self.reader.snapshot()
        writers = [w.snapshot() for w in self.writers]
        elapsed = time.time() - self._started
        insert_time = sum(w.db_time for w in writers)
        rows_inserted = sum(w.rows_inserted for w in writers)
        insert_elapsed = 0.0
        if self._inserts_started:
            insert_elapsed = (self._inserts_finished or time.time()) - self._inserts_started
        return {
            'source': {'url': s.src_url, 'user': s.src_user, 'data': s.src_data},
            'destination': {'url': s.dest_url, 'user': s.dest_user, 'target': s.dest_target},
            'reader': {
                'init_time': reader.init_time,
                'wait_time': reader.wait_time,
                'fetch_time': reader.db_time,
                'rows_per_second': rows_per_second(reader.rows_read, reader.db_time + reader.init_time),
                'rows_fetched': reader.rows_read,
            },
            'writers': {
                'init_time': sum(w.init_time for w in writers),
                'wait_time': sum(w.wait_time for w in writers),
                'threads': len(writers),
                'insert_time': insert_time,
                'insert_elapsed': insert_elapsed,
                'rows_per_second': rows_per_second(rows_inserted, insert_elapsed),
                'batches': sum(w.batches_inserted for w in writers),
                'batches_per_writer': [w.batches_inserted for w in writers],
                'rows_inserted': rows_inserted,
                'partial_failures': [asdict(p) for w in writers for p in w.partial_failures],
            },
            'elapsed_time_seconds': elapsed,
            'gc_time': self.gc_time,
            'peak_memory_bytes': self.memory_probe.peak_bytes,
            'rows': reader.rows_read,
            'avg_rows_per_second': rows_per_second(reader.rows_read, elapsed),
        }

    @staticmethod
    def log_summary(summary: Dict[str, Any]) -> None:
        src, dest = summary['source'], summary['destination']
        r, w = summary['reader'], summary['writers']
        logger.info("SUMMARY")
        logger.info(f"source     : url={src['url']}, user={src['user']}, data=[[{src['data']}]]")
        logger.info(f"destination: url={dest['url']}, user={dest['user']}, target={dest['target']}")
        logger.info(
            f"readProc   : init={format_duration(r['init_time'])}, wait={format_duration(r['wait_time'])}, "
            f"fetch={format_duration(r['fetch_time'])}, {r['rows_per_second']:,.0f}rows/sec, "
            f"{r['rows_fetched']}rows fetched"
        )
        logger.info(
            f"writeProc  : init={format_duration(w['init_time'])}, wait={format_duration(w['wait_time'])}, "
            f"threads={w['threads']}, insert={format_duration(w['insert_time'])}, "
            f"{w['rows_per_second']:,.0f}rows/sec, {w['batches']}*batch/commit, "
            f"{w['rows_inserted']}rows inserted"
        )
        if w['partial_failures']:
            logger.warning(f"partial    : {len(w['partial_failures'])} batches with unconfirmed rows")
        line = f"summary    : execTime={format_duration(summary['elapsed_time_seconds'])}"
        if summary['gc_time'] is not None:
            line += f", gcTime={format_duration(summary['gc_time'])}"
        line += (
            f", memPeak={summary['peak_memory_bytes'] // (1024 * 1024)}M, outThreads={w['threads']}"
            f", rows={summary['rows']}, (rows/sec)={summary['avg_rows_per_second']:,.0f}"
        )
        logger.info(line)


class Db2FilePipeline:
    """
    Export a query result to a delimited text file or stdout.

    Usage:
        settings = Db2FileSettings(
            src_url="sqlite:///source.db", src_data="items",
            dest_file="items.txt", include_header=True,
        )
        result = Db2FilePipeline(settings).run()
    """

    def __init__(
        self,
        settings: Db2FileSettings,
        sql_factory: Callable[..., SqlUtil] = SqlUtil,
        memory_probe: Optional[MemoryProbe] = None,
    ):
        self.settings = settings
        self.sql_factory = sql_factory
        self.memory_probe = memory_probe or MemoryProbe()
        self.queue = BatchQueue()
        self.reader: Optional[SourceReader] = None
        self.sink: Optional[FileSink] = None
        self.stream: Optional[TextIO] = None
        self._started = 0.0
        self._finished = 0.0

    def run(self) -> RunResult:
        s = self.settings
        self._started = time.time()
        errors: List[str] = []

        try:
            self.reader = SourceReader(
                s.src_url, s.src_user, s.src_password, s.src_data,
                s.buffered_rows, s.batch_size, self.queue,
                formatter=s.formatter, sql_factory=self.sql_factory,
            )
            self.reader.start()

            self.stream = prepare_destination(s.dest_file, s.dest_mode)
            self.sink = FileSink(
                self.reader, self.stream,
                separator=s.separator,
                include_header=s.include_header,
                first_col_counter=s.first_col_counter,
                memory_probe=self.memory_probe,
            )
            self.sink.run(status=self.status_line, status_interval=s.status_interval)
            self.sink.close()
            self._finished = time.time()
        except Exception as e:
            error_msg = f"Export aborted: {e}"
            logger.error(error_msg)
            errors.append(error_msg)
        finally:
            self._release()

        if self.reader is not None and self.reader.error is not None:
            errors.append(f"reader: {self.reader.error}")

        summary = self.summary() if self.sink is not None else {}
        if s.print_summary and summary:
            self.log_summary(summary)

        return RunResult(
            exit_code=1 if errors else 0,
            errors=errors,
            summary=summary,
            reader_stats=self.reader.snapshot() if self.reader is not None else None,
        )

    def _release(self) -> None:
        if self.sink is not None:
            try:
                self.sink.close()
            except OSError as e:
                logger.error(f"Cannot close destination: {e}")
        elif self.stream is not None and self.stream is not sys.stdout:
            self.stream.close()
        if self.reader is not None:
            self.reader.terminate()
            if not self.reader.wait(READER_JOIN_TIMEOUT_SECONDS):
                logger.warning("Reader did not stop in time, closing its connection anyway")
            self.reader.close()

    def status_line(self) -> str:
        """mem=58M; queue=15000; T=2350ms; in(RUNNING rcvd=40000 dbT=812ms; waitT=1203ms); out(rows=25000)"""
        mem_mb = self.memory_probe.sample() // (1024 * 1024)
        reader = self.reader.snapshot()
        return (
            f"mem={mem_mb}M; queue={self.queue.row_count}; T={format_duration(time.time() - self._started)}; "
            f"in({self.reader.state} rcvd={reader.rows_read} dbT={format_duration(reader.db_time)}; "
            f"waitT={format_duration(reader.wait_time)}); out(rows={self.sink.rows_exported})"
        )

    def summary(self) -> Dict[str, Any]:
        s = self.settings
        finished = self._finished or time.time()
        duration = finished - self._started
        reader = self.reader.snapshot()
        output_size = self.sink.output_size()
        bytes_per_second = rows_per_second(output_size, duration)
        return {
            'target': s.dest_file or "Console",
            'mode': s.dest_mode if s.dest_file else None,
            'started': datetime.fromtimestamp(self._started).isoformat(),
            'finished': datetime.fromtimestamp(finished).isoformat(),
            'elapsed_time_seconds': duration,
            'rows_exported': self.sink.rows_exported,
            'connect_time': reader.init_time,
            'read_time': reader.db_time,
            'wait_time': reader.wait_time,
            'max_buffered_rows': self.reader.max_buffered_rows,
            'output_time': self.sink.write_time,
            'output_bytes': output_size,
            'bytes_per_second': bytes_per_second,
            'mb_per_second': bytes_per_second / (1024 * 1024),
            'rows_per_second': rows_per_second(self.sink.rows_exported, duration),
            'peak_memory_bytes': self.sink.peak_memory,
        }

    @staticmethod
    def log_summary(summary: Dict[str, Any]) -> None:
        logger.info(f"target={summary['target']}")
        if summary['mode'] is not None:
            logger.info(f"mode={summary['mode']}")
        logger.info(f"started={summary['started']}")
        logger.info(f"finished={summary['finished']}")
        logger.info(f"time execution complete={format_duration(summary['elapsed_time_seconds'])}")
        logger.info(f"rows exported={summary['rows_exported']}")
        logger.info(f"time connect to source database={format_duration(summary['connect_time'])}")
        logger.info(f"time read from source database={format_duration(summary['read_time'])}")
        logger.info(
            f"time wait, buffer full (max={summary['max_buffered_rows']}), "
            f"waiting for writer={format_duration(summary['wait_time'])}"
        )
        logger.info(f"time output={format_duration(summary['output_time'])}")
        logger.info(f"output size(bytes)={summary['output_bytes']} ({format_bytes(summary['output_bytes'])})")
        logger.info(f"bytes/sec exported={summary['bytes_per_second']:,.0f}")
        logger.info(f"mb/sec exported={summary['mb_per_second']:.3f}")
        logger.info(f"rows/sec exported={summary['rows_per_second']:,.0f}")
        logger.info(f"max memory usage (mb)={summary['peak_memory_bytes'] // (1024 * 1024)}")
