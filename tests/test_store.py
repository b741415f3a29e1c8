import random

import pytest

from assetlock.store import DataFile, contains_text, delimiter_for, list_files, shuffled


# --- DataFile ---

def test_csv_file_is_comma_delimited(tmp_path, write_data_file):
    path = write_data_file(tmp_path, "deviceA.csv", "mac, AA:BB:CC ", "ip,10.0.0.7,spare")

    data = DataFile.load(path)

    assert data.value("mac") == "AA:BB:CC"
    assert data.value("ip") == "10.0.0.7"
    assert data.value("ip", column=2) == "spare"
    assert data.dataset_ids == ["mac", "ip"]


def test_txt_file_is_pipe_delimited(tmp_path, write_data_file):
    path = write_data_file(tmp_path, "deviceB.txt", "mac|11:22:33", "note|a,b,c")

    data = DataFile.load(path)

    assert data.value("mac") == "11:22:33"
    assert data.value("note") == "a,b,c"


def test_missing_dataset_and_column_are_none(tmp_path, write_data_file):
    path = write_data_file(tmp_path, "d.csv", "mac,AA", "lonely")
    data = DataFile.load(path)

    assert data.value("serial") is None
    assert data.value("lonely") is None
    assert data.value(None) is None
    assert data.has("lonely")
    assert not data.has("serial")
    assert not data.has(None)


def test_blank_rows_skipped_and_later_rows_win(tmp_path, write_data_file):
    path = write_data_file(tmp_path, "d.csv", "", "mac,first", " ,ignored", "mac,second")

    data = DataFile.load(path)

    assert data.dataset_ids == ["mac"]
    assert data.value("mac") == "second"


def test_as_properties_flattens_first_value(tmp_path, write_data_file):
    path = write_data_file(tmp_path, "d.csv", "mac,AA,BB", "ip,10.0.0.1", "empty")

    assert DataFile.load(path).as_properties() == {"mac": "AA", "ip": "10.0.0.1"}


def test_rows_are_read_only(tmp_path, write_data_file):
    data = DataFile.load(write_data_file(tmp_path, "d.csv", "mac,AA"))

    with pytest.raises(TypeError):
        data.rows["mac"] = ("mac", "BB")


def test_load_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        DataFile.load(tmp_path / "missing.csv")


def test_delimiter_for_extensions():
    assert delimiter_for("a.csv") == ","
    assert delimiter_for("a.TXT") == "|"
    assert delimiter_for("a.json") == ","


# --- Directory helpers ---

def test_list_files_only_returns_regular_files(tmp_path, write_data_file):
    write_data_file(tmp_path, "a.csv", "k,v")
    write_data_file(tmp_path, "b.txt", "k|v")
    (tmp_path / "nested").mkdir()

    files = list_files(tmp_path, random.Random(1))

    assert sorted(p.name for p in files) == ["a.csv", "b.txt"]


def test_list_files_missing_directory_raises(tmp_path):
    with pytest.raises(OSError):
        list_files(tmp_path / "nope")


def test_shuffled_returns_a_permutation_copy():
    items = list(range(20))

    result = shuffled(items, random.Random(3))

    assert sorted(result) == items
    assert result is not items
    assert items == list(range(20))


def test_contains_text_is_case_insensitive(tmp_path, write_data_file):
    path = write_data_file(tmp_path, "d.csv", "mac,AA:BB:CC")

    assert contains_text(path, "aa:bb")
    assert not contains_text(path, "dd:ee")
    assert not contains_text(tmp_path / "missing.csv", "aa")
