from pathlib import Path

import pytest

from taxmap.cache_manager import (
    cached,
    clear_cache,
    compute_checksum,
    get_cache_stats,
    load_cache,
    save_cache,
    set_cache_namespace,
)
from taxmap.config import config


@pytest.fixture
def isolated_cache(tmp_path):
    original_base = config.cache_base_dir
    original_dir = config.cache_dir
    try:
        config.cache_base_dir = str(tmp_path)
        config.cache_dir = str(tmp_path)
        yield set_cache_namespace("pytest_cache")
        clear_cache()
    finally:
        config.cache_base_dir = original_base
        config.cache_dir = original_dir
        config.ensure_directories()


def test_compute_checksum_changes_when_file_updates(tmp_path):
    data_file = tmp_path / "records.csv"
    data_file.write_text("lineage\nA;B\n")

    first = compute_checksum([str(data_file)])
    data_file.write_text("lineage\nA;B\nA;C\n")
    second = compute_checksum([str(data_file)])

    assert first != second


def test_diskcache_round_trip(isolated_cache):
    assert Path(isolated_cache).exists()

    payload = {"value": 42}
    checksum = "unit-test-checksum"
    save_cache("unit_test_key", payload, checksum)

    assert load_cache("unit_test_key", checksum) == payload
    assert load_cache("unit_test_key", "other-checksum") is None
    assert get_cache_stats()["entry_count"] == 1


def test_cached_reuses_result_until_input_changes(isolated_cache, tmp_path):
    calls = []

    @cached(prefix="unit")
    def count_lines(input_file):
        calls.append(input_file)
        return {"lines": len(Path(input_file).read_text().splitlines())}

    data_file = tmp_path / "records.csv"
    data_file.write_text("lineage\nA;B\n")

    assert count_lines(str(data_file)) == {"lines": 2}
    assert count_lines(str(data_file)) == {"lines": 2}
    assert len(calls) == 1

    count_lines(str(data_file), refresh_cache=True)
    assert len(calls) == 2

    data_file.write_text("lineage\nA;B\nA;C\n")
    assert count_lines(str(data_file)) == {"lines": 3}
    assert len(calls) == 3


def test_cached_skips_calls_without_files(isolated_cache):
    calls = []

    @cached(prefix="unit")
    def echo(value):
        calls.append(value)
        return {"value": value}

    echo("not-a-file")
    echo("not-a-file")
    assert len(calls) == 2
