"""
Utility functions for the copy pipeline.

Formatting helpers for status lines and summaries, plus the process memory
probe used to report current and peak memory.
"""

from typing import Optional
import re

import psutil

_SELECT_TOKEN = re.compile(r"select\s", re.IGNORECASE)


def is_select_statement(query_data: str) -> bool:
    """
    Tell a literal query apart from a bare table name.

    Anything containing the token ``select`` followed by whitespace is a
    statement (SELECT, WITH ... SELECT, ...); everything else is a table name.

    Examples:
        >>> is_select_statement("SELECT * FROM items")
        True
        >>> is_select_statement("with x as (select 1) select * from x")
        True
        >>> is_select_statement("dbo.items")
        False
    """
    return _SELECT_TOKEN.search(query_data) is not None


def build_select_statement(query_data: str) -> str:
    """Return query_data if it is a query, else ``SELECT * FROM <query_data>``."""
    if is_select_statement(query_data):
        return query_data
    return f"SELECT * FROM {query_data.strip()}"


def format_duration(seconds: float) -> str:
    """
    Format a duration the way status lines show it.

    Milliseconds below ten seconds, whole seconds below one hour,
    whole minutes beyond that.

    Examples:
        >>> format_duration(0.25)
        '250ms'
        >>> format_duration(42.7)
        '42sec'
        >>> format_duration(7200)
        '120m'
    """
    ms = int(seconds * 1000)
    if ms < 10000:
        return f"{ms}ms"
    s = ms // 1000
    if s < 3600:
        return f"{s}sec"
    return f"{s // 60}m"


def rows_per_second(rows: int, seconds: float) -> float:
    """Throughput, 0 when no time has elapsed."""
    return rows / seconds if seconds > 0 else 0.0


def format_bytes(num_bytes: float) -> str:
    """
    Format bytes into human-readable format.

    Examples:
        >>> format_bytes(1024)
        '1.0 KB'
        >>> format_bytes(1048576)
        '1.0 MB'
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if num_bytes < 1024.0 or unit == 'TB':
            return f"{num_bytes:.1f} {unit}"
        num_bytes /= 1024.0
    return f"{num_bytes:.1f} PB"


def truncate_string(s: str, max_length: int = 100, suffix: str = "...") -> str:
    """
    Truncate a string to a maximum length.

    Examples:
        >>> truncate_string("short")
        'short'
        >>> truncate_string("a" * 150, max_length=20)
        'aaaaaaaaaaaaaaaaa...'
    """
    if len(s) <= max_length:
        return s
    return s[:max_length - len(suffix)] + suffix


def mask_password(password: Optional[str]) -> str:
    """Never print a password; show its length only."""
    return f"***** (len={len(password)})" if password else ""


class MemoryProbe:
    """Resident set size of this process, with a running peak."""

    def __init__(self):
        self._process = psutil.Process()
        self.peak_bytes = 0

    def sample(self) -> int:
        rss = self._process.memory_info().rss
        if rss > self.peak_bytes:
            self.peak_bytes = rss
        return rss
