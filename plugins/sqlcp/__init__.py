"""
sqlcp - Streaming Database Copy

This package copies large query results from a source database into a target
database, or into a delimited text file, through a streaming, chunked and
concurrent pipeline.

Modules:
- sql_util: Driver-agnostic connection, chunked fetch and batched insert
- type_mapping: Bind-type names, SQL type codes and value coercion
- row: Row model and value rendering
- batch_queue: Hand-off queue with row-count backpressure
- data_transfer: Source reader and target writer threads
- file_sink: Delimited text output
- pipeline: db2db and db2file orchestration, status and summary
- cli: Command-line entry point

Supported connection strings:
- postgresql://...   (psycopg2)
- mssql://...        (pymssql)
- sqlite:///path     (sqlite3)
- DRIVER=...;...     (pyodbc)
"""

__version__ = "1.0.0"

from sqlcp import exceptions
from sqlcp import type_mapping
from sqlcp import row
from sqlcp import sql_util
from sqlcp import batch_queue
from sqlcp import data_transfer
from sqlcp import file_sink
from sqlcp import pipeline

__all__ = [
    "exceptions",
    "type_mapping",
    "row",
    "sql_util",
    "batch_queue",
    "data_transfer",
    "file_sink",
    "pipeline",
    "cli",
]
