"""
Error kinds raised by the copy pipeline.

Driver exceptions are wrapped into one of these so callers can tell which
stage of a run failed without knowing the underlying DB-API module.
"""


class SqlcpError(Exception):
    """Base error for all pipeline failures."""


class DatabaseConnectionError(SqlcpError):
    """Source or target connection could not be established."""


class PrepareError(SqlcpError):
    """The source query or its cursor could not be prepared."""


class FetchError(SqlcpError):
    """A batch fetch failed mid-stream."""


class PreImportError(SqlcpError):
    """The statement executed before the inserts failed."""


class InsertError(SqlcpError):
    """A batched insert failed inside one writer."""


class DestinationConflictError(SqlcpError, FileExistsError):
    """File destination is a directory, or exists and may not be overwritten."""
