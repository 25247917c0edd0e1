"""Command line entry point of the pipelined CPU simulator."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from dataclasses import dataclass

from rvpipesim.branch_predictor import BranchPredictor, Strategy
from rvpipesim.cache import Cache, Policy
from rvpipesim.elf import ElfError, format_elf_info, load_into_memory, read_elf
from rvpipesim.memory import MemoryError_, MemoryManager
from rvpipesim.simulator import SimulationError, Simulator

STACK_BASE_ADDR = 0x80000000
STACK_SIZE = 0x400000

USAGE = (
    "Usage: Simulator riscv-elf-file [-v] [-s] [-d] [-b param]\n"
    "Parameters: \n\t[-v] verbose output \n\t[-s] single step\n"
    "\t[-d] dump memory and register trace to dump.txt\n"
    "\t[-b param] branch perdiction strategy, accepted param AT, NT, BTFNT, BPB\n"
)


@dataclass
class CpuOptions:
    elf_file: str
    verbose: bool = False
    single_step: bool = False
    dump_history: bool = False
    data_forwarding: bool = True
    strategy: Strategy = Strategy.NT


def parse_args(argv: Sequence[str]) -> CpuOptions:
    """Parse command line arguments; raise ValueError when they are invalid."""
    elf_file: str | None = None
    settings: dict[str, object] = {}
    args = iter(argv)
    for arg in args:
        if not arg.startswith("-"):
            if elf_file is not None:
                raise ValueError("Only one ELF file may be given")
            elf_file = arg
            continue
        flag = arg[1:2]
        if flag == "v":
            settings["verbose"] = True
        elif flag == "s":
            settings["single_step"] = True
        elif flag == "d":
            settings["dump_history"] = True
        elif flag == "x":
            settings["data_forwarding"] = False
        elif flag == "b":
            value = next(args, None)
            if value is None:
                raise ValueError("-b needs a strategy")
            try:
                settings["strategy"] = Strategy(value)
            except ValueError as exc:
                raise ValueError(f"Unknown strategy {value}") from exc
        else:
            raise ValueError(f"Unknown option {arg}")
    if elf_file is None:
        raise ValueError("No ELF file given")
    return CpuOptions(elf_file, **settings)  # type: ignore[arg-type]


def _policy(cache_size: int, hit: int, miss: int) -> Policy:
    block_size = 64
    return Policy(cache_size, block_size, cache_size // block_size, 8, hit, miss)


def build_cache_hierarchy(memory: MemoryManager) -> tuple[Cache, Cache, Cache]:
    """Attach a three-level cache hierarchy to ``memory``; return (L1, L2, L3)."""
    l3 = Cache(memory, _policy(8 * 1024 * 1024, 20, 100))
    l2 = Cache(memory, _policy(256 * 1024, 8, 20), l3)
    l1 = Cache(memory, _policy(32 * 1024, 0, 8), l2)
    memory.set_cache(l1)
    return l1, l2, l3


def main(argv: Sequence[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        options = parse_args(args)
    except ValueError:
        print(USAGE, end="")
        return 1

    memory = MemoryManager()
    build_cache_hierarchy(memory)

    try:
        elf = read_elf(options.elf_file)
    except ElfError:
        print(f"Fail to load ELF file {options.elf_file}!", file=sys.stderr)
        return 1

    try:
        if options.verbose:
            print(format_elf_info(elf), end="")
        load_into_memory(elf, memory)
    except ElfError as exc:
        print(exc, file=sys.stderr)
        return 1

    if options.verbose:
        print(memory.info(), end="")

    simulator = Simulator(memory, BranchPredictor(options.strategy))
    simulator.is_single_step = options.single_step
    simulator.verbose = options.verbose
    simulator.should_dump_history = options.dump_history
    simulator.data_forwarding = options.data_forwarding
    simulator.pc = elf.entry & 0xFFFFFFFF
    simulator.init_stack(STACK_BASE_ADDR, STACK_SIZE)
    try:
        return simulator.simulate()
    except (SimulationError, MemoryError_) as exc:
        print(exc, file=sys.stderr)
        simulator.dump_history()
        print("Execution history and memory dump in dump.txt", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())