# rvpipesim

A cycle-level simulator for a five-stage pipelined RISC-V processor (fetch,
decode, execute, memory access, write-back), together with a set-associative
cache model and a few tools for working with memory traces.

Features:

- A 32-bit integer subset of the RISC-V instruction set (`lui`, `auipc`,
  jumps, branches, loads, stores, immediate and register arithmetic, the
  `*w` word forms, `mul`, `div`, `ecall`), plus custom fused multiply-add
  instructions (`fmadd`, `fmaddu`, `fmsub`, `fmsubu`, `fnmadd`, `fnmsub`) on
  opcode `0x0B`. Registers hold 32-bit values.
- Data forwarding (can be turned off), load-use hazard stalls and control
  hazard flushes, with counters for each kind of hazard.
- Branch prediction strategies (`rvpipesim.branch_predictor.Strategy`):
  always taken (`AT`), always not taken (`NT`), backward taken / forward not
  taken (`BTFNT`) and a 2-bit prediction buffer (`BPB`).
- A three-level cache hierarchy in front of a flat 32-bit memory, with LRU
  replacement and write-back/write-through and write-allocate options.
- A small system-call interface for printing strings, characters and
  numbers, reading input and exiting.
- A minimal ELF32/ELF64 reader that loads program segments into memory.

## Installation

```
pip install .
```

## Running a program

Give it a statically linked RISC-V ELF file:

```
rvpipesim program.elf [-v] [-s] [-d] [-x] [-b AT|NT|BTFNT|BPB]
```

- `-v` verbose output: ELF information and every pipeline stage
- `-s` single-step; press Enter to advance, a line containing `d` writes the
  history dump
- `-d` record register history and write it, with a memory dump, to
  `dump.txt` when the program exits
- `-x` disable data forwarding
- `-b` choose the branch prediction strategy (default `NT`)

The memory is fronted by a 32 KiB L1, a 256 KiB L2 and an 8 MiB L3 cache
(64-byte blocks, 8-way). The stack pointer starts at `0x80000000`.

The simulator stops when the program issues the exit system call and prints
instruction and cycle counts, cycles per instruction, branch prediction
accuracy and hazard counts. If the program hits an unsupported instruction,
an unknown system call or a division by zero, the error is reported, the
history is written to `dump.txt` and the command exits with status 1.

System calls use `a7` for the call number and `a0` for the argument:

| a7     | action                  |
|--------|-------------------------|
| 0      | print string at `a0`    |
| 1      | print character         |
| 2      | print number            |
| 3, 93  | exit                    |
| 4      | read a character        |
| 5      | read a number           |

## Cache experiments

Memory traces are text files of records: `r` or `w` followed by a
hexadecimal address.

```
rvpipesim-cachesim trace.txt [-v] [-s]
```

Runs the trace against every single-level cache configuration from 32 KiB to
32 MiB, block sizes 1 to 4096 bytes and associativity 1 to 32, in all four
write-policy combinations (hit latency 1, miss latency 8), prints each
cache's description and statistics, and writes the miss rate and total
cycles for each to `trace.txt.csv`. `-v` prints every access and the cache's
blocks after it; `-s` waits for Enter after each access.

```
rvpipesim-cacheopt trace.txt
```

Runs the trace against a fixed two-level hierarchy (32 KiB L1, 256 KiB L2)
and prints the L1 statistics, followed by those of L2.

```
rvpipesim-dinero trace.txt
```

Converts the trace to the Dinero input format in `trace.txt.d4`.

## Using it from Python

```python
from rvpipesim.memory import MemoryManager
from rvpipesim.branch_predictor import BranchPredictor, Strategy
from rvpipesim.simulator import Simulator
from rvpipesim.elf import read_elf, load_into_memory

memory = MemoryManager()
elf = read_elf("program.elf")
load_into_memory(elf, memory)

sim = Simulator(memory, BranchPredictor(Strategy.BPB))
sim.pc = elf.entry
sim.init_stack(0x80000000, 0x400000)
exit_code = sim.simulate()   # prints the statistics report on exit
print(sim.history.instruction_count, sim.history.cycle_count)
```

`Simulator` takes optional `stdin` and `stdout` text streams for the system
calls, `step()` advances one cycle, and `simulate(max_cycles)` raises
`SimulationError` when the limit is reached before the program exits.

The cache model can be used alone:

```python
from rvpipesim.cache import Cache, Policy
from rvpipesim.memory import MemoryManager

memory = MemoryManager()
policy = Policy(cache_size=32 * 1024, block_size=64, block_num=512,
                associativity=8, hit_latency=1, miss_latency=8)
cache = Cache(memory, policy)
memory.set_cache(cache)
memory.set_int(0x1000, 42)
print(memory.get_int(0x1000), cache.statistics)
print(cache.statistics_report())
```

`rvpipesim.cache_cli.simulate_cache`, `sweep` and `run_optimized` run the
same experiments as the commands on a list of `rvpipesim.trace.Access`
records, as returned by `rvpipesim.trace.parse_trace`.

## Limitations

- `mulh` and `rem` are decoded but stop the simulation when executed; `ld`
  and `sd` are decoded but their 8-byte memory access is reported as an
  unknown length and skipped.
- There is no floating-point unit, no privileged mode and no virtual memory.
- The package does not assemble or compile programs; it only runs existing
  ELF files.

## Tests

```
pip install .[test]
pytest
```