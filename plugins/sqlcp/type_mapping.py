"""
SQL Type Code Mapping Module

Bind types are named after the java.sql.Types constants so that bind-type
lists written for the original JDBC tooling keep working. This module maps
those names to their integer codes, maps DB-API cursor descriptions of the
supported drivers onto the same codes, and coerces Python values before they
are bound to an insert statement when a bind-type list is given.
"""

from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
import logging

logger = logging.getLogger(__name__)


# java.sql.Types names and codes accepted in a bind-type list
SQL_TYPES: Dict[str, int] = {
    "ARRAY": 2003,
    "BIGINT": -5,
    "BINARY": -2,
    "BIT": -7,
    "BLOB": 2004,
    "BOOLEAN": 16,
    "CHAR": 1,
    "CLOB": 2005,
    "DATALINK": 70,
    "DATE": 91,
    "DECIMAL": 3,
    "DISTINCT": 2001,
    "DOUBLE": 8,
    "FLOAT": 6,
    "INTEGER": 4,
    "JAVA_OBJECT": 2000,
    "LONGNVARCHAR": -16,
    "LONGVARBINARY": -4,
    "LONGVARCHAR": -1,
    "NCHAR": -15,
    "NCLOB": 2011,
    "NULL": 0,
    "NUMERIC": 2,
    "NVARCHAR": -9,
    "OTHER": 1111,
    "REAL": 7,
    "REF": 2006,
    "REF_CURSOR": 2012,
    "ROWID": -8,
    "SMALLINT": 5,
    "SQLXML": 2009,
    "STRUCT": 2002,
    "TIME": 92,
    "TIME_WITH_TIMEZONE": 2013,
    "TIMESTAMP": 93,
    "TIMESTAMP_WITH_TIMEZONE": 2014,
    "TINYINT": -6,
    "VARBINARY": -3,
    "VARCHAR": 12,
}

_TYPE_NAMES: Dict[int, str] = {code: name for name, code in SQL_TYPES.items()}

STRING_TYPES = frozenset(SQL_TYPES[n] for n in (
    "CHAR", "VARCHAR", "LONGVARCHAR", "NCHAR", "NVARCHAR", "LONGNVARCHAR", "CLOB", "NCLOB", "SQLXML",
))
INTEGER_TYPES = frozenset(SQL_TYPES[n] for n in ("TINYINT", "SMALLINT", "INTEGER", "BIGINT"))
FLOAT_TYPES = frozenset(SQL_TYPES[n] for n in ("FLOAT", "REAL", "DOUBLE"))
DECIMAL_TYPES = frozenset(SQL_TYPES[n] for n in ("DECIMAL", "NUMERIC"))
BOOLEAN_TYPES = frozenset(SQL_TYPES[n] for n in ("BIT", "BOOLEAN"))
BINARY_TYPES = frozenset(SQL_TYPES[n] for n in ("BINARY", "VARBINARY", "LONGVARBINARY", "BLOB"))

# PostgreSQL type OIDs as reported by psycopg2 in cursor.description
POSTGRES_OIDS: Dict[int, str] = {
    16: "BOOLEAN",
    17: "VARBINARY",
    18: "CHAR",
    19: "VARCHAR",
    20: "BIGINT",
    21: "SMALLINT",
    23: "INTEGER",
    25: "VARCHAR",
    26: "BIGINT",
    114: "OTHER",
    142: "SQLXML",
    700: "REAL",
    701: "DOUBLE",
    790: "OTHER",
    1042: "CHAR",
    1043: "VARCHAR",
    1082: "DATE",
    1083: "TIME",
    1114: "TIMESTAMP",
    1184: "TIMESTAMP_WITH_TIMEZONE",
    1266: "TIME_WITH_TIMEZONE",
    1700: "NUMERIC",
    2950: "OTHER",
    3802: "OTHER",
}

# pymssql type objects (STRING=1, BINARY=2, NUMBER=3, DATETIME=4, DECIMAL=5).
# NUMBER covers bit, integer and float columns alike, so it carries no bind type.
PYMSSQL_TYPES: Dict[int, str] = {
    1: "VARCHAR",
    2: "VARBINARY",
    3: "OTHER",
    4: "TIMESTAMP",
    5: "DECIMAL",
}

# Python classes as reported by pyodbc in cursor.description
PYTHON_TYPES: Dict[type, str] = {
    str: "VARCHAR",
    bool: "BIT",
    int: "BIGINT",
    float: "DOUBLE",
    Decimal: "DECIMAL",
    datetime: "TIMESTAMP",
    date: "DATE",
    dt_time: "TIME",
    bytes: "VARBINARY",
    bytearray: "VARBINARY",
}


def type_name(code: int) -> str:
    """Return the bind-type name for a SQL type code, e.g. 12 -> 'VARCHAR'."""
    return _TYPE_NAMES.get(code, str(code))


def parse_bind_types(bind_types: Optional[str]) -> Optional[List[int]]:
    """
    Parse a comma separated list of bind-type names.

    Args:
        bind_types: Text such as "INTEGER,VARCHAR,TIMESTAMP"; None or empty
                    means no override

    Returns:
        List of SQL type codes, or None when no override was given

    Raises:
        ValueError: If a name is not a known bind type
    """
    if not bind_types:
        return None

    codes = []
    for token in bind_types.split(","):
        name = token.strip().upper()
        if not name:
            continue
        if name not in SQL_TYPES:
            raise ValueError(f"cannot map bindtype={token.strip()}. Supported: {', '.join(sorted(SQL_TYPES))}")
        codes.append(SQL_TYPES[name])
    return codes or None


def map_description_type(type_code: Any, driver: str) -> int:
    """
    Map a DB-API cursor.description type_code onto a SQL type code.

    Args:
        type_code: Second element of a cursor.description entry
        driver: Driver key as used by sql_util ('psycopg2', 'pymssql', 'pyodbc', 'sqlite3')

    Returns:
        SQL type code; OTHER when the driver gives no usable information
    """
    name = None
    if type_code is None:
        name = "OTHER"
    elif driver == "psycopg2":
        name = POSTGRES_OIDS.get(type_code)
    elif driver == "pymssql":
        name = PYMSSQL_TYPES.get(type_code)
    elif isinstance(type_code, type):
        name = PYTHON_TYPES.get(type_code)

    if name is None:
        logger.debug(f"Unknown {driver} type code {type_code!r}, binding as OTHER")
        name = "OTHER"
    return SQL_TYPES[name]


def coerce_value(value: Any, sql_type: int) -> Any:
    """
    Convert a Python value so the target driver binds it as the given SQL type.

    None stays None. Values of unknown or OTHER type pass through unchanged.
    """
    if value is None:
        return None

    if sql_type in STRING_TYPES:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).hex()
        return value if isinstance(value, str) else str(value)
    if sql_type in BOOLEAN_TYPES:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "t", "true", "y", "yes")
        return bool(value)
    if sql_type in INTEGER_TYPES:
        return value if isinstance(value, int) else int(value)
    if sql_type in FLOAT_TYPES:
        return value if isinstance(value, float) else float(value)
    if sql_type in DECIMAL_TYPES:
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))
    if sql_type in BINARY_TYPES and isinstance(value, (bytearray, memoryview)):
        return bytes(value)

    return value


def coerce_row(values: Sequence[Any], bind_types: Optional[Sequence[int]]) -> tuple:
    """
    Coerce one row of values by position.

    Columns beyond the end of bind_types are passed through unchanged.
    """
    if not bind_types:
        return tuple(values)
    return tuple(
        coerce_value(value, bind_types[i]) if i < len(bind_types) else value
        for i, value in enumerate(values)
    )
