"""
Tests for the File Sink: destination handling and row rendering.
"""

import io
import os
import sys
import threading

import pytest
from unittest.mock import Mock
from sqlcp.batch_queue import BatchQueue
from sqlcp.exceptions import DestinationConflictError
from sqlcp.file_sink import FileSink, prepare_destination, quote
from sqlcp.row import Row


def make_reader(column_names, batches):
    """A finished reader stand-in whose queue already holds every batch."""
    queue = BatchQueue()
    for batch in batches:
        queue.put(tuple(Row(values) for values in batch))
    reader = Mock()
    reader.queue = queue
    reader.column_names = column_names
    reader.done = threading.Event()
    reader.done.set()
    return reader


def render(batches, column_names=("name", "value"), **kwargs):
    stream = io.StringIO()
    sink = FileSink(make_reader(list(column_names), batches), stream, **kwargs)
    sink.run()
    return stream.getvalue(), sink


class TestQuote:

    def test_plain(self):
        assert quote("abc") == '"abc"'

    def test_embedded_quotes_backslash_escaped(self):
        assert quote('say "hi"') == '"say \\"hi\\""'

    def test_none_is_empty_field(self):
        assert quote(None) == '""'


class TestRendering:

    def test_two_rows_default_format(self):
        text, sink = render([[("a", "1"), ("b", "2")]])
        assert text == '"a";"1"\n"b";"2"'
        assert sink.rows_exported == 2
        assert sink.chars_written == len(text)

    def test_no_trailing_newline_across_batches(self):
        text, _ = render([[("a", "1")], [("b", "2"), ("c", "3")]])
        assert text == '"a";"1"\n"b";"2"\n"c";"3"'

    def test_header_written_once(self):
        text, _ = render([[("a", "1")], [("b", "2")]], include_header=True)
        lines = text.split("\n")
        assert lines[0] == '"name";"value"'
        assert lines[1:] == ['"a";"1"', '"b";"2"']

    def test_header_quotes_escaped(self):
        text, _ = render([[("a",)]], column_names=['say "x"'], include_header=True)
        assert text.split("\n")[0] == '"say \\"x\\""'

    def test_empty_result_writes_nothing(self):
        text, sink = render([], include_header=True)
        assert text == ""
        assert sink.rows_exported == 0

    def test_row_counter(self):
        text, _ = render([[("a", "1"), ("b", "2")], [("c", "3")]], first_col_counter=True)
        lines = text.split("\n")
        assert [line.split(";")[0] for line in lines] == ["1", "2", "3"]
        assert lines[2] == '3;"c";"3"'

    def test_custom_separator_and_nulls(self):
        text, _ = render([[("a", None)]], separator="|")
        assert text == '"a"|""'

    def test_values_rendered_by_row_formatter(self):
        text, _ = render([[(True, 1.5)]])
        assert text == '"TRUE";"1.5"'

    def test_waits_for_reader(self):
        """Batches arriving before the reader finishes are all written."""
        reader = make_reader(["v"], [])
        reader.done.clear()
        stream = io.StringIO()
        sink = FileSink(reader, stream)

        def produce():
            for i in range(3):
                reader.queue.put((Row((str(i),)),))
            reader.done.set()

        threading.Timer(0.05, produce).start()
        sink.run()
        assert stream.getvalue() == '"0"\n"1"\n"2"'


class TestPrepareDestination:

    def test_stdout_when_no_file(self):
        assert prepare_destination(None) is sys.stdout

    def test_overwrite_replaces_existing(self, tmp_path):
        path = tmp_path / "out.txt"
        path.write_text("old content")
        with prepare_destination(str(path), "OVERWRITE") as stream:
            stream.write("new")
        assert path.read_text() == "new"

    def test_append_extends_existing(self, tmp_path):
        path = tmp_path / "out.txt"
        path.write_text("old")
        with prepare_destination(str(path), "append") as stream:
            stream.write("+new")
        assert path.read_text() == "old+new"

    def test_create_refuses_existing(self, tmp_path):
        path = tmp_path / "out.txt"
        path.write_text("old")
        with pytest.raises(DestinationConflictError):
            prepare_destination(str(path), "CREATE")
        assert path.read_text() == "old"

    def test_create_new_file(self, tmp_path):
        path = tmp_path / "out.txt"
        with prepare_destination(str(path), "CREATE") as stream:
            stream.write("x")
        assert path.read_text() == "x"

    @pytest.mark.parametrize("mode", ["OVERWRITE", "APPEND", "CREATE"])
    def test_directory_refused(self, tmp_path, mode):
        with pytest.raises(DestinationConflictError) as exc_info:
            prepare_destination(str(tmp_path), mode)
        assert "directory" in str(exc_info.value)
        assert isinstance(exc_info.value, FileExistsError)

    def test_unknown_mode(self, tmp_path):
        with pytest.raises(ValueError):
            prepare_destination(str(tmp_path / "x"), "TRUNCATE")


class TestSinkLifecycle:

    def test_close_file_and_output_size(self, tmp_path):
        path = tmp_path / "out.txt"
        stream = prepare_destination(str(path))
        sink = FileSink(make_reader(["v"], [[("a",), ("b",)]]), stream)
        sink.run()
        sink.close()
        sink.close()
        assert stream.closed
        assert path.read_text() == '"a"\n"b"'
        assert sink.output_size() == os.path.getsize(path)

    def test_stdout_is_flushed_not_closed(self, capsys):
        sink = FileSink(make_reader(["v"], [[("a",)]]), sys.stdout)
        sink.run()
        sink.close()
        assert not sys.stdout.closed
        assert capsys.readouterr().out == '"a"'
        assert sink.output_size() == 3

    def test_peak_memory_sampled(self):
        probe = Mock()
        probe.peak_bytes = 123
        _, sink = render([[("a", "1")], [("b", "2")]], memory_probe=probe)
        assert probe.sample.call_count == 2
        assert sink.peak_memory == 123
