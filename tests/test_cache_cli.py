import math
from itertools import islice

import pytest

from rvpipesim.cache_cli import (
    CSV_HEADER,
    SweepResult,
    main,
    optimized_main,
    run_optimized,
    simulate_cache,
    sweep,
)
from rvpipesim.trace import Access, TraceError, parse_trace


def test_repeated_read_misses_then_hits():
    result = simulate_cache([Access("r", 0), Access("r", 0)], 1024, 16, 1, True, True)
    assert result.miss_rate == 0.5
    assert result.total_cycles == 9


def test_result_echoes_configuration_in_csv_row():
    result = simulate_cache([Access("r", 0)], 1024, 16, 2, True, False)
    assert result.csv_row().startswith("1024,16,2,1,0,")
    assert result.csv_row().endswith(f",{result.total_cycles}\n")


def test_no_accesses_gives_nan_miss_rate():
    result = simulate_cache([], 1024, 16, 1, True, True)
    assert math.isnan(result.miss_rate)
    assert result.total_cycles == 0


def test_write_allocate_lowers_miss_rate():
    accesses = [Access("w", 0x40), Access("r", 0x40)]
    allocate = simulate_cache(accesses, 1024, 16, 1, True, True)
    no_allocate = simulate_cache(accesses, 1024, 16, 1, True, False)
    assert no_allocate.miss_rate > allocate.miss_rate


def test_write_through_costs_more_cycles():
    accesses = [Access("r", 0), Access("w", 0)]
    back = simulate_cache(accesses, 1024, 16, 1, True, True)
    through = simulate_cache(accesses, 1024, 16, 1, False, True)
    assert through.total_cycles > back.total_cycles


def test_miss_rate_in_unit_interval():
    accesses = parse_trace("r 0\nr 400\nw 800\nr 0\nr 404\n")
    result = simulate_cache(accesses, 1024, 16, 1, True, True)
    assert 0.0 <= result.miss_rate <= 1.0


def test_illegal_type_raises():
    with pytest.raises(TraceError):
        simulate_cache([Access("x", 0)], 1024, 16, 1, True, True)


def test_sweep_starts_with_smallest_configuration():
    results = list(islice(sweep([Access("r", 0)]), 4))
    assert all(isinstance(r, SweepResult) for r in results)
    assert [(r.cache_size, r.block_size, r.associativity) for r in results] == [
        (32 * 1024, 1, 1)
    ] * 4
    assert [(r.write_back, r.write_allocate) for r in results] == [
        (True, True), (True, False), (False, True), (False, False)
    ]


def test_run_optimized_counts_l1_accesses():
    accesses = parse_trace("r 0\nw 4\nr 1000\nw 2000\nr 0\n")
    l1 = run_optimized(accesses)
    assert l1.statistics.num_read == 3
    assert l1.statistics.num_write == 2
    assert l1.statistics.num_hit + l1.statistics.num_miss == len(accesses)
    assert l1.lower_cache is not None


def test_optimized_main_prints_l1_statistics(tmp_path, capsys):
    path = tmp_path / "trace.txt"
    path.write_text("r 0\nw 10\n")
    assert optimized_main([str(path)]) == 0
    out = capsys.readouterr().out
    assert out.startswith("L1 Cache:\n-------- STATISTICS ----------\n")
    assert "---------- LOWER CACHE ----------" in out


def test_optimized_main_requires_path():
    assert optimized_main([]) == 1


def test_optimized_main_rejects_illegal_type(tmp_path):
    path = tmp_path / "trace.txt"
    path.write_text("q 0\n")
    assert optimized_main([str(path)]) == 1


def test_main_rejects_unknown_flag():
    assert main(["trace.txt", "-z"]) == 1


def test_main_requires_path():
    assert main(["-v"]) == 1


def test_main_missing_file(tmp_path, capsys):
    missing = str(tmp_path / "absent.txt")
    assert main([missing]) == 1
    assert f"Unable to open file {missing}" in capsys.readouterr().out


def test_csv_header_columns():
    assert CSV_HEADER.strip().split(",") == [
        "cacheSize", "blockSize", "associativity", "writeBack",
        "writeAllocate", "missRate", "totalCycles",
    ]