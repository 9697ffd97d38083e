"""
Tests for the sqlcp command-line interface.
"""

import pytest
from click.testing import CliRunner
from unittest.mock import patch
from sqlcp.cli import main, run
from sqlcp.pipeline import Db2DbSettings, Db2FileSettings, RunResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def source_db(tmp_path, make_sqlite):
    return make_sqlite(
        tmp_path / "src.db", "CREATE TABLE t (c1 TEXT, c2 TEXT)",
        [("a", "1"), ("b", "2")], "INSERT INTO t VALUES (?, ?)",
    )


class TestDb2FileCommand:

    def test_export_to_file(self, runner, source_db, tmp_path):
        out = tmp_path / "out.txt"
        result = runner.invoke(main, [
            "db2file", "--src-jdbc", source_db, "--src-data", "t", "--dest-file", str(out),
        ])
        assert result.exit_code == 0, result.output
        assert out.read_text() == '"a";"1"\n"b";"2"'

    def test_export_to_stdout(self, runner, source_db):
        result = runner.invoke(main, [
            "db2file", "--src-jdbc", source_db, "--src-data", "select * from t",
            "--dest-incl-header", "--dest-first-col-counter", "--dest-separator", ",",
        ])
        assert result.exit_code == 0
        assert result.stdout.startswith('"c1","c2"\n1,"a","1"\n2,"b","2"')

    def test_settings_from_options_and_env(self, runner):
        with patch("sqlcp.cli.Db2FilePipeline") as MockPipeline:
            MockPipeline.return_value.run.return_value = RunResult(exit_code=0)
            result = runner.invoke(
                main,
                ["db2file", "--src-data", "t", "--dest-file-mode", "append", "--fmt-null", "\\N",
                 "--fmt-float", ".2f", "--batch-size", "10"],
                env={"SQLCP_SRC_JDBC": "sqlite:///env.db", "SQLCP_SRC_PASSWORD": "pw"},
            )

        assert result.exit_code == 0, result.output
        settings = MockPipeline.call_args.args[0]
        assert isinstance(settings, Db2FileSettings)
        assert settings.src_url == "sqlite:///env.db"
        assert settings.src_password == "pw"
        assert settings.dest_mode == "APPEND"
        assert settings.batch_size == 10
        assert settings.buffered_rows == 50000
        assert settings.separator == ";"
        assert settings.formatter.null == "\\N"
        assert settings.formatter.float_format == ".2f"

    def test_print_params_only(self, runner):
        with patch("sqlcp.cli.Db2FilePipeline") as MockPipeline:
            result = runner.invoke(main, [
                "db2file", "--src-jdbc", "sqlite:///x.db", "--src-data", "t",
                "--src-password", "secret", "--print-params-only",
            ])
        assert result.exit_code == 0
        MockPipeline.assert_not_called()
        assert "src_url=sqlite:///x.db" in result.stdout
        assert "secret" not in result.stdout

    def test_failed_export_exit_code(self, runner, tmp_path):
        result = runner.invoke(main, [
            "db2file", "--src-jdbc", f"sqlite:///{tmp_path / 'missing.db'}", "--src-data", "t",
        ])
        assert result.exit_code == 1


class TestDb2DbCommand:

    def test_copy(self, runner, source_db, tmp_path, make_sqlite, query_sqlite):
        path = tmp_path / "dst.db"
        dst = make_sqlite(path, "CREATE TABLE t (c1 TEXT, c2 TEXT)")
        result = runner.invoke(main, [
            "db2db", "--src-jdbc", source_db, "--src-data", "t",
            "--dest-jdbc", dst, "--dest-target", "t", "--dest-num-threads", "2", "--print-summary",
        ])
        assert result.exit_code == 0, result.output
        assert sorted(query_sqlite(path, "SELECT * FROM t")) == [("a", "1"), ("b", "2")]

    def test_settings(self, runner):
        with patch("sqlcp.cli.Db2DbPipeline") as MockPipeline:
            MockPipeline.return_value.run.return_value = RunResult(exit_code=1, errors=["boom"])
            result = runner.invoke(main, [
                "db2db", "--src-jdbc", "a", "--src-data", "t", "--dest-jdbc", "b",
                "--dest-target", "t", "--dest-bind-types", "VARCHAR,INTEGER",
                "--dest-sql-before-import", "TRUNCATE TABLE t", "--gc-interval-sec", "5",
                "--print-runtime-info", "10",
            ])

        assert result.exit_code == 1
        settings = MockPipeline.call_args.args[0]
        assert isinstance(settings, Db2DbSettings)
        assert settings.num_threads == 1
        assert settings.batch_size == 5000
        assert settings.bind_types == "VARCHAR,INTEGER"
        assert settings.dest_sql_before_import == "TRUNCATE TABLE t"
        assert settings.gc_interval == 5
        assert settings.status_interval == 10


class TestRun:
    """run() maps every failure to exit status 1."""

    def test_missing_option(self, capsys):
        assert run(["db2db", "--src-jdbc", "a"]) == 1
        assert "Missing option" in capsys.readouterr().err

    def test_invalid_value(self):
        assert run(["db2file", "--src-jdbc", "a", "--src-data", "t", "--batch-size", "0"]) == 1
        assert run(["db2file", "--src-jdbc", "a", "--src-data", "t", "--dest-file-mode", "NOPE"]) == 1

    def test_success(self, source_db, tmp_path):
        out = tmp_path / "out.txt"
        assert run(["db2file", "--src-jdbc", source_db, "--src-data", "t", "--dest-file", str(out)]) == 0
        assert out.exists()

    def test_help(self, capsys):
        assert run(["--help"]) == 0
        assert "db2db" in capsys.readouterr().out

    def test_unexpected_error(self):
        with patch("sqlcp.cli.Db2DbPipeline", side_effect=RuntimeError("boom")):
            assert run(["db2db", "--src-jdbc", "a", "--src-data", "t",
                        "--dest-jdbc", "b", "--dest-target", "t"]) == 1


class TestInfoCommand:

    def test_sqlite_info(self, runner, source_db):
        result = runner.invoke(main, ["info", "--jdbc", source_db])
        assert result.exit_code == 0
        assert "driver=sqlite3" in result.output
        assert "paramstyle=qmark" in result.output

    def test_unreachable(self, runner, tmp_path):
        result = runner.invoke(main, ["info", "--jdbc", f"sqlite:///{tmp_path / 'missing.db'}"])
        assert result.exit_code == 1
