"""
Shared fixtures: an in-memory stand-in for SqlUtil and sqlite helpers.
"""

import sqlite3
import threading

import pytest

from sqlcp.exceptions import DatabaseConnectionError, FetchError, InsertError, PrepareError
from sqlcp.row import DEFAULT_FORMATTER, Row
from sqlcp.sql_util import SUCCESS_NO_INFO
from sqlcp.type_mapping import SQL_TYPES


class FakeDatabase:
    """
    Registry of fake sources and targets keyed by connection string.

    Sources are (column_names, rows). Everything inserted is recorded per
    target url together with the name of the thread that inserted it.
    """

    def __init__(self):
        self.sources = {}
        self.inserted = {}
        self.batches = []
        self.ddl = []
        self.commits = 0
        self.unreachable = set()
        self.fail_ddl = False
        self.poison = None
        self.fetch_error_after = None
        self.instances = []
        self.lock = threading.Lock()

    def add_source(self, url, columns, rows):
        self.sources[url] = (list(columns), [tuple(r) for r in rows])

    def factory(self, url, user=None, password=None, formatter=DEFAULT_FORMATTER):
        sql = FakeSqlUtil(self, url, user, password, formatter)
        with self.lock:
            self.instances.append(sql)
        return sql

    def rows_in(self, url):
        return [row for row, _ in self.inserted.get(url, [])]


class FakeSqlUtil:
    driver = "sqlite3"
    paramstyle = "?"

    def __init__(self, db, url, user, password, formatter):
        self.db = db
        self.url = url
        self.user = user
        self.password = password
        self.formatter = formatter
        self.column_names = []
        self.column_types = []
        self.connected = False
        self.closed = False
        self.read_only = None
        self.fetch_size = 5000
        self._rows = None
        self._fetches = 0

    @property
    def column_count(self):
        return len(self.column_names)

    def describe(self):
        return f"url={self.url} user={self.user}"

    def connect(self, read_only=False, autocommit=False):
        if self.url in self.db.unreachable:
            raise DatabaseConnectionError(f"Cannot connect to {self.url}")
        self.connected = True
        self.read_only = read_only

    def set_fetch_size(self, n):
        self.fetch_size = n

    def prepare_chunks(self, query):
        if self.url not in self.db.sources:
            raise PrepareError(f"Cannot prepare query: {query}")
        self.query = query
        columns, rows = self.db.sources[self.url]
        self.column_names = list(columns)
        self.column_types = [SQL_TYPES["VARCHAR"]] * len(columns)
        self._rows = iter(rows)

    def next_chunk(self):
        if self.db.fetch_error_after is not None and self._fetches >= self.db.fetch_error_after:
            raise FetchError("connection reset")
        chunk = []
        for values in self._rows:
            chunk.append(Row(values, self.formatter))
            if len(chunk) == self.fetch_size:
                break
        if not chunk:
            return None
        self._fetches += 1
        return tuple(chunk)

    def close_chunks(self):
        self._rows = None

    def execute_batch(self, statement, rows, bind_types=None):
        if self.db.poison is not None and any(self.db.poison in row.values for row in rows):
            raise InsertError(f"Batch insert of {len(rows)} rows failed: check constraint")
        name = threading.current_thread().name
        with self.db.lock:
            self.db.batches.append((name, len(rows)))
            self.db.inserted.setdefault(self.url, []).extend((row.values, name) for row in rows)
        self.statement = statement
        self.bind_types = bind_types
        return [SUCCESS_NO_INFO] * len(rows)

    def commit(self, silent=False):
        with self.db.lock:
            self.db.commits += 1

    def execute_ddl(self, statement):
        if self.db.fail_ddl:
            raise RuntimeError("syntax error")
        self.db.ddl.append(statement)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def make_sqlite():
    """Create a sqlite file with one table and optional rows; returns its sqlite:/// url."""

    def _make(path, ddl, rows=(), insert=None):
        conn = sqlite3.connect(str(path))
        try:
            conn.execute(ddl)
            if rows:
                conn.executemany(insert, rows)
            conn.commit()
        finally:
            conn.close()
        return f"sqlite:///{path}"

    return _make


@pytest.fixture
def query_sqlite():
    def _query(path, query):
        conn = sqlite3.connect(str(path))
        try:
            return conn.execute(query).fetchall()
        finally:
            conn.close()

    return _query
