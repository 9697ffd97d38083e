"""
File Sink

Single consumer for file mode. Runs on the caller's thread, drains the batch
queue and renders every row as one delimited text line:

    "a";"1"
    "b";"2"

Every column is double-quoted with embedded quotes escaped as ``\\"``, null
values render as ``""``, and there is no newline after the last row. The
optional header line and the optional leading row counter are controlled per
sink.
"""

from typing import Callable, List, Optional, TextIO
import logging
import os
import sys
import time

from sqlcp.batch_queue import BatchQueue
from sqlcp.data_transfer import SourceReader
from sqlcp.exceptions import DestinationConflictError
from sqlcp.row import Row
from sqlcp.utils import MemoryProbe

logger = logging.getLogger(__name__)

SINK_POLL_SECONDS = 0.02

MODE_OVERWRITE = "OVERWRITE"
MODE_APPEND = "APPEND"
MODE_CREATE = "CREATE"
DESTINATION_MODES = (MODE_OVERWRITE, MODE_APPEND, MODE_CREATE)


def prepare_destination(path: Optional[str], mode: str = MODE_OVERWRITE) -> TextIO:
    """
    Open the output destination.

    Args:
        path: Output file, or None for standard output
        mode: OVERWRITE replaces an existing file, APPEND extends it,
              CREATE refuses to touch an existing file

    Returns:
        Writable text stream

    Raises:
        DestinationConflictError: If path is a directory, or exists in CREATE mode
        ValueError: If mode is unknown
    """
    mode = mode.upper()
    if mode not in DESTINATION_MODES:
        raise ValueError(f"Unknown destination mode {mode}. Supported: {', '.join(DESTINATION_MODES)}")

    if path is None:
        return sys.stdout

    if os.path.exists(path):
        if os.path.isdir(path):
            raise DestinationConflictError(f"destination file is a directory: {os.path.abspath(path)}")
        if mode == MODE_CREATE:
            raise DestinationConflictError(f"destination file already exists: {os.path.abspath(path)}")
        if mode == MODE_OVERWRITE:
            os.remove(path)
            logger.debug(f"Removed existing destination {path}")

    return open(path, "a" if mode == MODE_APPEND else "w", encoding="utf-8")


def quote(value: Optional[str]) -> str:
    """Double-quote a rendered value; None becomes an empty quoted field."""
    if value is None:
        return '""'
    return '"' + value.replace('"', '\\"') + '"'


class FileSink:
    """
    Writes the reader's batches to a text stream.

    Usage:
        stream = prepare_destination("items.csv", "OVERWRITE")
        sink = FileSink(reader, stream, separator=";", include_header=True)
        sink.run()
    """

    def __init__(
        self,
        reader: SourceReader,
        stream: TextIO,
        separator: str = ";",
        include_header: bool = False,
        first_col_counter: bool = False,
        memory_probe: Optional[MemoryProbe] = None,
    ):
        self.reader = reader
        self.queue: BatchQueue = reader.queue
        self.stream = stream
        self.separator = separator
        self.include_header = include_header
        self.first_col_counter = first_col_counter
        self.memory_probe = memory_probe

        self.rows_exported = 0
        self.chars_written = 0
        self.write_time = 0.0
        self._needs_newline = False
        self._header_written = False

    @property
    def is_stdout(self) -> bool:
        return self.stream is sys.stdout

    @property
    def peak_memory(self) -> int:
        """Peak resident memory in bytes observed while writing."""
        return self.memory_probe.peak_bytes if self.memory_probe else 0

    def run(self, status: Optional[Callable[[], str]] = None, status_interval: int = 0) -> None:
        """
        Drain the queue until the reader is done and nothing is left, then flush.

        Args:
            status: Builds a status line, logged every status_interval seconds
            status_interval: Seconds between status lines, 0 disables them
        """
        last_status = 0.0
        while not (self.reader.done.is_set() and self.queue.empty()):
            if status is not None and status_interval > 0 and time.time() - last_status >= status_interval:
                logger.info(status())
                last_status = time.time()

            rows = self.queue.get(timeout=SINK_POLL_SECONDS)
            if rows is None:
                continue
            self.write_batch(rows)
            if self.memory_probe is not None:
                self.memory_probe.sample()
        self.flush()

    def render_header(self, column_names: List[str]) -> str:
        return self.separator.join(quote(name) for name in column_names)

    def render_row(self, row: Row, counter: Optional[int] = None) -> str:
        fields = [quote(row.get_string(i)) for i in range(len(row))]
        if counter is not None:
            fields.insert(0, str(counter))
        return self.separator.join(fields)

    def write_batch(self, rows) -> None:
        """Render one batch. The header goes out together with the first batch."""
        lines = []
        if self.include_header and not self._header_written:
            lines.append(self.render_header(self.reader.column_names))
            self._header_written = True

        for row in rows:
            self.rows_exported += 1
            counter = self.rows_exported if self.first_col_counter else None
            lines.append(self.render_row(row, counter))

        text = "\n".join(lines)
        if self._needs_newline:
            text = "\n" + text

        t0 = time.time()
        self.stream.write(text)
        self.write_time += time.time() - t0
        self.chars_written += len(text)
        self._needs_newline = True

    def flush(self) -> None:
        t0 = time.time()
        self.stream.flush()
        self.write_time += time.time() - t0

    def close(self) -> None:
        """Flush and close the destination. Standard output is flushed only."""
        if self.is_stdout:
            self.stream.flush()
            return
        if not self.stream.closed:
            t0 = time.time()
            self.stream.close()
            self.write_time += time.time() - t0

    def output_size(self) -> int:
        """Bytes on disk for a file destination, characters written for stdout."""
        if not self.is_stdout:
            name = getattr(self.stream, "name", None)
            if isinstance(name, str) and os.path.exists(name):
                return os.path.getsize(name)
        return self.chars_written
