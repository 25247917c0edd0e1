import pytest

from rvpipesim.trace import Access, TraceError, main, parse_trace, to_dinero


def test_parse_records():
    assert parse_trace("r 1a\nw 0x20\n") == [Access("r", 0x1a), Access("w", 0x20)]


def test_parse_stops_at_garbage():
    accesses = parse_trace("r 10\nzzz\nw 20\n")
    assert accesses == [Access("r", 0x10)]


def test_parse_stops_at_oversized_address():
    assert parse_trace("r 10\nw 100000000\nr 30\n") == [Access("r", 0x10)]


def test_parse_empty():
    assert parse_trace("  \n") == []


def test_access_kind_must_be_single_character():
    with pytest.raises(TraceError):
        Access("rw", 1)


def test_to_dinero_format():
    assert to_dinero([Access("r", 0x1a), Access("w", 0xFF)]) == "r 1a 1\nw ff 1\n"


def test_to_dinero_one_line_per_access():
    accesses = parse_trace("r 1\nw 2\nr 3\n")
    assert len(to_dinero(accesses).splitlines()) == len(accesses)


def test_main_writes_d4_file(tmp_path):
    path = tmp_path / "trace.txt"
    text = "r 1000\nw 2004\n"
    path.write_text(text)
    assert main([str(path)]) == 0
    assert (tmp_path / "trace.txt.d4").read_text() == to_dinero(parse_trace(text))


def test_main_without_arguments():
    assert main([]) == 1


def test_main_missing_file(tmp_path, capsys):
    missing = str(tmp_path / "absent.txt")
    assert main([missing]) == 1
    assert f"Invalid file path {missing}" in capsys.readouterr().out