"""Cache simulation over memory traces: configuration sweep and a fixed two-level setup."""

from __future__ import annotations

import math
import sys
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from rvpipesim.cache import Cache, Policy
from rvpipesim.memory import MemoryManager
from rvpipesim.trace import Access, TraceError, parse_trace

CSV_HEADER = (
    "cacheSize,blockSize,associativity,writeBack,writeAllocate,missRate,totalCycles\n"
)
_WRITE_POLICIES = ((True, True), (True, False), (False, True), (False, False))


@dataclass(frozen=True)
class SweepResult:
    cache_size: int
    block_size: int
    associativity: int
    write_back: bool
    write_allocate: bool
    miss_rate: float
    total_cycles: int

    def csv_row(self) -> str:
        return (
            f"{self.cache_size},{self.block_size},{self.associativity},"
            f"{int(self.write_back)},{int(self.write_allocate)},"
            f"{self.miss_rate:g},{self.total_cycles}\n"
        )


def _doubling(start: int, stop: int) -> Iterator[int]:
    value = start
    while value <= stop:
        yield value
        value *= 2


def _configurations() -> Iterator[tuple[int, int, int, bool, bool]]:
    for cache_size in _doubling(32 * 1024, 32 * 1024 * 1024):
        for block_size in _doubling(1, 4096):
            for associativity in _doubling(1, 32):
                if (cache_size // block_size) % associativity != 0:
                    continue
                for write_back, write_allocate in _WRITE_POLICIES:
                    yield cache_size, block_size, associativity, write_back, write_allocate


def _apply(target: Cache | MemoryManager, access: Access) -> None:
    if access.kind == "r":
        target.get_byte(access.address)
    elif access.kind == "w":
        target.set_byte(access.address, 0)
    else:
        raise TraceError(f"Illegal type {access.kind}")


def _run(
    accesses: Iterable[Access],
    cache_size: int,
    block_size: int,
    associativity: int,
    write_back: bool,
    write_allocate: bool,
    *,
    report: bool = False,
    verbose: bool = False,
    single_step: bool = False,
) -> SweepResult:
    policy = Policy(cache_size, block_size, cache_size // block_size, associativity, 1, 8)
    memory = MemoryManager()
    cache = Cache(memory, policy, None, write_back, write_allocate)
    memory.set_cache(cache)
    if report:
        print(cache.info(False), end="")

    for access in accesses:
        if verbose:
            print(f"{access.kind} {access.address:x}")
        _apply(cache, access)
        if verbose:
            print(cache.info(True), end="")
        if single_step:
            input("Press Enter to Continue...")

    if report:
        print(cache.statistics_report(), end="")
    stats = cache.statistics
    lookups = stats.num_hit + stats.num_miss
    miss_rate = stats.num_miss / lookups if lookups else math.nan
    return SweepResult(
        cache_size, block_size, associativity, write_back, write_allocate,
        miss_rate, stats.total_cycles,
    )


def simulate_cache(
    accesses: Iterable[Access],
    cache_size: int,
    block_size: int,
    associativity: int,
    write_back: bool,
    write_allocate: bool,
) -> SweepResult:
    """Replay ``accesses`` on one single-level cache configuration."""
    return _run(accesses, cache_size, block_size, associativity, write_back, write_allocate)


def sweep(accesses: Sequence[Access]) -> Iterator[SweepResult]:
    """Simulate every configuration of the sweep, lazily, in sweep order."""
    for config in _configurations():
        yield simulate_cache(accesses, *config)


def _optimized_policy(cache_size: int, hit: int, miss: int) -> Policy:
    return Policy(cache_size, 64, cache_size // 64, 8, hit, miss)


def run_optimized(accesses: Iterable[Access]) -> Cache:
    """Replay accesses through memory backed by an L1/L2 hierarchy; return L1."""
    memory = MemoryManager()
    l2 = Cache(memory, _optimized_policy(256 * 1024, 8, 100))
    l1 = Cache(memory, _optimized_policy(32 * 1024, 2, 8), l2)
    memory.set_cache(l1)
    for access in accesses:
        _apply(memory, access)
    return l1


def _read_accesses(path: str) -> list[Access] | None:
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        print(f"Unable to open file {path}")
        return None
    return parse_trace(text)


def main(argv: Sequence[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    verbose = single_step = False
    trace_path: str | None = None
    for arg in args:
        if arg.startswith("-"):
            flag = arg[1:2]
            if flag == "v":
                verbose = True
            elif flag == "s":
                single_step = True
            else:
                return 1
        elif trace_path is None:
            trace_path = arg
        else:
            return 1
    if trace_path is None:
        return 1

    accesses = _read_accesses(trace_path)
    if accesses is None:
        return 1

    csv_path = trace_path + ".csv"
    with open(csv_path, "w", encoding="utf-8") as csv_file:
        csv_file.write(CSV_HEADER)
        for config in _configurations():
            try:
                result = _run(
                    accesses, *config, report=True, verbose=verbose, single_step=single_step
                )
            except TraceError as exc:
                print(exc, file=sys.stderr)
                return 1
            csv_file.write(result.csv_row())
            csv_file.flush()

    print(f"Result has been written to {csv_path}")
    return 0


def optimized_main(argv: Sequence[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        return 1
    accesses = _read_accesses(args[0])
    if accesses is None:
        return 1
    try:
        l1 = run_optimized(accesses)
    except TraceError as exc:
        print(exc, file=sys.stderr)
        return 1
    print("L1 Cache:")
    print(l1.statistics_report(), end="")
    return 0


if __name__ == "__main__":
    sys.exit(main())