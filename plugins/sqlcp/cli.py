"""
Command-line interface for sqlcp.

    sqlcp db2db    read from a source database, write into a target database
    sqlcp db2file  read from a source database, write to a file or stdout
    sqlcp info     show driver and server details for one connection string

Every option can also be given through an ``SQLCP_*`` environment variable,
for example ``SQLCP_SRC_PASSWORD``.
"""

from typing import List, Optional
import logging
import sys

import click

from sqlcp import __version__
from sqlcp.exceptions import DatabaseConnectionError
from sqlcp.file_sink import DESTINATION_MODES, MODE_OVERWRITE
from sqlcp.pipeline import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_BUFFERED_ROWS,
    Db2DbPipeline,
    Db2DbSettings,
    Db2FilePipeline,
    Db2FileSettings,
)
from sqlcp.row import RowFormatter
from sqlcp.sql_util import SqlUtil

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stderr,
    )


def source_options(func):
    """Options shared by every command that reads from a source database."""
    options = [
        click.option("--src-jdbc", required=True, envvar="SQLCP_SRC_JDBC",
                     help="Source: connection string"),
        click.option("--src-user", default=None, envvar="SQLCP_SRC_USER",
                     help="Source: username"),
        click.option("--src-password", default=None, envvar="SQLCP_SRC_PASSWORD",
                     help="Source: password"),
        click.option("--src-data", required=True, envvar="SQLCP_SRC_DATA",
                     help="Source: table name or SELECT query"),
        click.option("--buffered-rows", type=click.IntRange(min=1), default=DEFAULT_BUFFERED_ROWS,
                     show_default=True, envvar="SQLCP_BUFFERED_ROWS",
                     help="Maximum number of rows queued for the consumers"),
        click.option("--batch-size", type=click.IntRange(min=1), default=DEFAULT_BATCH_SIZE,
                     show_default=True, envvar="SQLCP_BATCH_SIZE",
                     help="Rows read or written per chunk"),
        click.option("--print-runtime-info", type=click.IntRange(min=0), default=0,
                     show_default=True, envvar="SQLCP_PRINT_RUNTIME_INFO",
                     help="Seconds between status lines, 0 = no status during execution"),
        click.option("--print-summary", is_flag=True, envvar="SQLCP_PRINT_SUMMARY",
                     help="Print statistics and used settings"),
        click.option("--print-params-only", is_flag=True,
                     help="Print the resolved parameters, then exit"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _print_params(params: dict) -> None:
    for key, value in params.items():
        click.echo(f"{key}={value}")


@click.group()
@click.version_option(__version__, prog_name="sqlcp")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, verbose):
    """Copy query results between databases, or from a database to a file."""
    ctx.ensure_object(dict)
    _configure_logging(verbose)
    ctx.obj["verbose"] = verbose


@main.command()
@source_options
@click.option("--dest-jdbc", required=True, envvar="SQLCP_DEST_JDBC",
              help="Target: connection string")
@click.option("--dest-user", default=None, envvar="SQLCP_DEST_USER", help="Target: username")
@click.option("--dest-password", default=None, envvar="SQLCP_DEST_PASSWORD", help="Target: password")
@click.option("--dest-target", required=True, envvar="SQLCP_DEST_TARGET",
              help="Target: table name, or an INSERT statement with a column list")
@click.option("--dest-sql-before-import", default=None, envvar="SQLCP_DEST_SQL_BEFORE_IMPORT",
              help="Target: statement executed once before the inserts (create, truncate, delete...)")
@click.option("--dest-num-threads", type=click.IntRange(min=1), default=1, show_default=True,
              envvar="SQLCP_DEST_NUM_THREADS", help="Target: number of writer threads")
@click.option("--dest-bind-types", default=None, envvar="SQLCP_DEST_BIND_TYPES",
              help="Target: comma separated bind types (VARCHAR,INTEGER,...) overriding the source types")
@click.option("--gc-interval-sec", type=click.IntRange(min=0), default=0, show_default=True,
              envvar="SQLCP_GC_INTERVAL_SEC", help="Run the garbage collector every n seconds, 0 = never")
@click.pass_context
def db2db(ctx, src_jdbc, src_user, src_password, src_data, buffered_rows, batch_size,
          print_runtime_info, print_summary, print_params_only, dest_jdbc, dest_user,
          dest_password, dest_target, dest_sql_before_import, dest_num_threads,
          dest_bind_types, gc_interval_sec):
    """Copy the result of a SELECT directly into a target table.

    \b
    sqlcp db2db --src-jdbc postgresql://host/src --src-data items \\
        --dest-jdbc "DRIVER={ODBC Driver 18 for SQL Server};SERVER=host;DATABASE=dst" \\
        --dest-target dbo.items --dest-num-threads 4
    """
    settings = Db2DbSettings(
        src_url=src_jdbc,
        src_data=src_data,
        dest_url=dest_jdbc,
        dest_target=dest_target,
        src_user=src_user,
        src_password=src_password,
        dest_user=dest_user,
        dest_password=dest_password,
        buffered_rows=buffered_rows,
        batch_size=batch_size,
        dest_sql_before_import=dest_sql_before_import,
        num_threads=dest_num_threads,
        bind_types=dest_bind_types,
        gc_interval=gc_interval_sec,
        status_interval=print_runtime_info,
        print_summary=print_summary,
    )
    if print_params_only:
        _print_params(settings.as_params())
        ctx.exit(0)

    result = Db2DbPipeline(settings).run()
    ctx.exit(result.exit_code)


@main.command()
@source_options
@click.option("--dest-file", default=None, envvar="SQLCP_DEST_FILE",
              help="Output file, stdout if omitted")
@click.option("--dest-file-mode", type=click.Choice(DESTINATION_MODES, case_sensitive=False),
              default=MODE_OVERWRITE, show_default=True, envvar="SQLCP_DEST_FILE_MODE",
              help="OVERWRITE replaces, APPEND extends, CREATE refuses an existing file")
@click.option("--dest-separator", default=";", show_default=True, envvar="SQLCP_DEST_SEPARATOR",
              help="Field separator")
@click.option("--dest-incl-header", is_flag=True, envvar="SQLCP_DEST_INCL_HEADER",
              help="Write the column names as first line")
@click.option("--dest-first-col-counter", is_flag=True, envvar="SQLCP_DEST_FIRST_COL_COUNTER",
              help="Prefix every row with its 1-based row number")
@click.option("--fmt-null", default=None, envvar="SQLCP_FMT_NULL", help="Text for NULL values")
@click.option("--fmt-bool-true", default="TRUE", show_default=True, envvar="SQLCP_FMT_BOOL_TRUE")
@click.option("--fmt-bool-false", default="FALSE", show_default=True, envvar="SQLCP_FMT_BOOL_FALSE")
@click.option("--fmt-date", default=None, envvar="SQLCP_FMT_DATE", help="strftime pattern for dates")
@click.option("--fmt-time", default=None, envvar="SQLCP_FMT_TIME", help="strftime pattern for times")
@click.option("--fmt-datetime", default=None, envvar="SQLCP_FMT_DATETIME",
              help="strftime pattern for date/times")
@click.option("--fmt-timestamp", default=None, envvar="SQLCP_FMT_TIMESTAMP",
              help="strftime pattern for timestamps")
@click.option("--fmt-timestamp-tz", default=None, envvar="SQLCP_FMT_TIMESTAMP_TZ",
              help="strftime pattern for timestamps with time zone")
@click.option("--fmt-currency", default=None, envvar="SQLCP_FMT_CURRENCY",
              help="format() spec for decimals, e.g. ,.2f")
@click.option("--fmt-float", default=None, envvar="SQLCP_FMT_FLOAT",
              help="format() spec for floats, e.g. .6g")
@click.pass_context
def db2file(ctx, src_jdbc, src_user, src_password, src_data, buffered_rows, batch_size,
            print_runtime_info, print_summary, print_params_only, dest_file, dest_file_mode,
            dest_separator, dest_incl_header, dest_first_col_counter, fmt_null, fmt_bool_true,
            fmt_bool_false, fmt_date, fmt_time, fmt_datetime, fmt_timestamp, fmt_timestamp_tz,
            fmt_currency, fmt_float):
    """Export the result of a SELECT to a delimited text file.

    \b
    sqlcp db2file --src-jdbc sqlite:///data.db --src-data "select * from items" \\
        --dest-file items.txt --dest-incl-header
    """
    formatter = RowFormatter(
        null=fmt_null,
        bool_true=fmt_bool_true,
        bool_false=fmt_bool_false,
        date_format=fmt_date,
        time_format=fmt_time,
        datetime_format=fmt_datetime,
        timestamp_format=fmt_timestamp,
        timestamp_tz_format=fmt_timestamp_tz,
        currency_format=fmt_currency,
        float_format=fmt_float,
    )
    settings = Db2FileSettings(
        src_url=src_jdbc,
        src_data=src_data,
        src_user=src_user,
        src_password=src_password,
        buffered_rows=buffered_rows,
        batch_size=batch_size,
        dest_file=dest_file,
        dest_mode=dest_file_mode.upper(),
        separator=dest_separator,
        include_header=dest_incl_header,
        first_col_counter=dest_first_col_counter,
        formatter=formatter,
        status_interval=print_runtime_info,
        print_summary=print_summary,
    )
    if print_params_only:
        _print_params(settings.as_params())
        ctx.exit(0)

    result = Db2FilePipeline(settings).run()
    ctx.exit(result.exit_code)


@main.command()
@click.option("--jdbc", required=True, envvar="SQLCP_JDBC", help="Connection string")
@click.option("--user", default=None, envvar="SQLCP_USER", help="Username")
@click.option("--password", default=None, envvar="SQLCP_PASSWORD", help="Password")
@click.pass_context
def info(ctx, jdbc, user, password):
    """Show driver and server details for a connection string."""
    sql = SqlUtil(jdbc, user, password)
    try:
        sql.connect(read_only=True)
        for key, value in sql.connection_info().items():
            click.echo(f"{key}={value}")
    except DatabaseConnectionError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
    finally:
        sql.close()


def run(argv: Optional[List[str]] = None) -> int:
    """
    Invoke the CLI and return its exit status instead of exiting.

    Usage errors (missing or invalid options) return 1.
    """
    try:
        rv = main.main(args=argv, prog_name="sqlcp", standalone_mode=False)
    except click.ClickException as e:
        e.show()
        return 1
    except click.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except Exception as e:
        logger.exception(f"sqlcp failed: {e}")
        return 1
    return rv if isinstance(rv, int) else 0


def entry() -> None:
    sys.exit(run())


if __name__ == "__main__":
    entry()
