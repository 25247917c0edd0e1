"""Set-associative cache simulator with LRU replacement."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rvpipesim.memory import MemoryManager

MEMORY_LATENCY = 100


class PolicyError(ValueError):
    """Raised when a cache policy is inconsistent."""


def _is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


def _log2(n: int) -> int:
    return n.bit_length() - 1


@dataclass
class Policy:
    """Cache geometry (sizes in bytes) and latencies (in cycles)."""

    cache_size: int
    block_size: int
    block_num: int
    associativity: int
    hit_latency: int
    miss_latency: int

    def validate(self) -> None:
        """Raise PolicyError when the geometry is not usable."""
        if not _is_power_of_two(self.cache_size):
            raise PolicyError(f"Invalid Cache Size {self.cache_size}")
        if not _is_power_of_two(self.block_size):
            raise PolicyError(f"Invalid Block Size {self.block_size}")
        if self.cache_size % self.block_size != 0:
            raise PolicyError("cacheSize % blockSize != 0")
        if self.block_num * self.block_size != self.cache_size:
            raise PolicyError("blockNum * blockSize != cacheSize")
        if self.associativity <= 0:
            raise PolicyError(f"Invalid Associativity {self.associativity}")
        if self.block_num % self.associativity != 0:
            raise PolicyError("blockNum % associativity != 0")


@dataclass
class Block:
    valid: bool = False
    modified: bool = False
    tag: int = 0
    set_index: int = 0
    size: int = 0
    last_reference: int = 0
    data: bytearray = field(default_factory=bytearray)


@dataclass
class Statistics:
    num_read: int = 0
    num_write: int = 0
    num_hit: int = 0
    num_miss: int = 0
    total_cycles: int = 0


class Cache:
    """One cache level, backed either by a lower cache or by main memory.

    ``last_cycles`` holds the latency reported by the most recent
    ``get_byte``/``set_byte`` call (0 when the access reported none).
    """

    def __init__(
        self,
        memory: MemoryManager,
        policy: Policy,
        lower_cache: Cache | None = None,
        write_back: bool = True,
        write_allocate: bool = True,
    ) -> None:
        policy.validate()
        self.memory = memory
        self.policy = policy
        self.lower_cache = lower_cache
        self.write_back = write_back
        self.write_allocate = write_allocate
        self.statistics = Statistics()
        self.last_cycles = 0
        self._reference_counter = 0
        self._offset_bits = _log2(policy.block_size)
        self._index_bits = _log2(policy.block_num // policy.associativity)
        self._blocks = [
            Block(
                size=policy.block_size,
                set_index=i // policy.associativity,
                data=bytearray(policy.block_size),
            )
            for i in range(policy.block_num)
        ]

    # Address decomposition

    def _tag(self, addr: int) -> int:
        shift = self._offset_bits + self._index_bits
        return (addr >> shift) & ((1 << (32 - shift)) - 1)

    def _set_of(self, addr: int) -> int:
        return (addr >> self._offset_bits) & ((1 << self._index_bits) - 1)

    def _offset(self, addr: int) -> int:
        return addr & ((1 << self._offset_bits) - 1)

    def _block_addr(self, block: Block) -> int:
        return (block.tag << (self._offset_bits + self._index_bits)) | (
            block.set_index << self._offset_bits
        )

    def _set_range(self, addr: int) -> range:
        assoc = self.policy.associativity
        begin = self._set_of(addr) * assoc
        return range(begin, begin + assoc)

    # Lookup

    def get_block_id(self, addr: int) -> int | None:
        """Index of the valid block holding ``addr``, or None on a miss."""
        tag = self._tag(addr)
        ways = self._set_range(addr)
        for i, block in enumerate(self._blocks[ways.start : ways.stop], ways.start):
            if block.valid and block.tag == tag:
                return i
        return None

    def in_cache(self, addr: int) -> bool:
        return self.get_block_id(addr) is not None

    def _resident_block(self, addr: int) -> Block:
        block_id = self.get_block_id(addr)
        if block_id is None:
            raise RuntimeError("data not in top level cache")
        return self._blocks[block_id]

    # Accesses

    def _read(self, addr: int) -> tuple[int, int | None]:
        self._reference_counter += 1
        self.statistics.num_read += 1

        block_id = self.get_block_id(addr)
        if block_id is not None:
            block = self._blocks[block_id]
            self.statistics.num_hit += 1
            self.statistics.total_cycles += self.policy.hit_latency
            block.last_reference = self._reference_counter
            return block.data[self._offset(addr)], self.policy.hit_latency

        self.statistics.num_miss += 1
        self.statistics.total_cycles += self.policy.miss_latency
        cycles = self._load_block(addr)
        block = self._resident_block(addr)
        block.last_reference = self._reference_counter
        return block.data[self._offset(addr)], cycles

    def _write(self, addr: int, val: int) -> int | None:
        val &= 0xFF
        self._reference_counter += 1
        self.statistics.num_write += 1

        block_id = self.get_block_id(addr)
        if block_id is not None:
            block = self._blocks[block_id]
            self.statistics.num_hit += 1
            self.statistics.total_cycles += self.policy.hit_latency
            block.modified = True
            block.last_reference = self._reference_counter
            block.data[self._offset(addr)] = val
            if not self.write_back:
                self._write_block_lower(block)
                self.statistics.total_cycles += self.policy.miss_latency
            return self.policy.hit_latency

        self.statistics.num_miss += 1
        self.statistics.total_cycles += self.policy.miss_latency

        if self.write_allocate:
            cycles = self._load_block(addr)
            block = self._resident_block(addr)
            block.modified = True
            block.last_reference = self._reference_counter
            block.data[self._offset(addr)] = val
            return cycles

        if self.lower_cache is None:
            self.memory.set_byte_no_cache(addr, val)
        else:
            self.lower_cache.set_byte(addr, val)
        return None

    def get_byte(self, addr: int) -> int:
        value, cycles = self._read(addr)
        self.last_cycles = cycles or 0
        return value

    def set_byte(self, addr: int, val: int) -> None:
        self.last_cycles = self._write(addr, val) or 0

    # Block movement

    def _load_block(self, addr: int) -> int | None:
        block_size = self.policy.block_size
        begin = addr & ~(block_size - 1)
        data = bytearray(block_size)
        cycles: int | None = None
        for i in range(block_size):
            if self.lower_cache is None:
                data[i] = self.memory.get_byte_no_cache(begin + i)
                cycles = MEMORY_LATENCY
            else:
                data[i], reported = self.lower_cache._read(begin + i)
                if reported is not None:
                    cycles = reported

        new_block = Block(
            valid=True,
            modified=False,
            tag=self._tag(addr),
            set_index=self._set_of(addr),
            size=block_size,
            data=data,
        )
        replace_id = self._replacement_id(self._set_range(addr))
        victim = self._blocks[replace_id]
        if self.write_back and victim.valid and victim.modified:
            self._write_block_lower(victim)
            self.statistics.total_cycles += self.policy.miss_latency
        self._blocks[replace_id] = new_block
        return cycles

    def _replacement_id(self, ways: range) -> int:
        candidates = self._blocks[ways.start : ways.stop]
        for i, block in enumerate(candidates, ways.start):
            if not block.valid:
                return i
        return min(ways, key=lambda i: self._blocks[i].last_reference)

    def _write_block_lower(self, block: Block) -> None:
        base = self._block_addr(block)
        for i, byte in enumerate(block.data[: block.size]):
            if self.lower_cache is None:
                self.memory.set_byte_no_cache(base + i, byte)
            else:
                self.lower_cache.set_byte(base + i, byte)

    # Reports

    def info(self, verbose: bool = False) -> str:
        p = self.policy
        lines = [
            "---------- Cache Info -----------",
            f"Cache Size: {p.cache_size} bytes",
            f"Block Size: {p.block_size} bytes",
            f"Block Num: {p.block_num}",
            f"Associativiy: {p.associativity}",
            f"Hit Latency: {p.hit_latency}",
            f"Miss Latency: {p.miss_latency}",
        ]
        if verbose:
            lines.extend(
                f"Block {j}: tag 0x{b.tag:x} id {b.set_index} "
                f"{'valid' if b.valid else 'invalid'} "
                f"{'modified' if b.modified else 'unmodified'} "
                f"(last ref {b.last_reference})"
                for j, b in enumerate(self._blocks)
            )
        return "\n".join(lines) + "\n"

    def statistics_report(self) -> str:
        s = self.statistics
        report = (
            "-------- STATISTICS ----------\n"
            f"Num Read: {s.num_read}\n"
            f"Num Write: {s.num_write}\n"
            f"Num Hit: {s.num_hit}\n"
            f"Num Miss: {s.num_miss}\n"
            f"Total Cycles: {s.total_cycles}\n"
        )
        if self.lower_cache is not None:
            report += "---------- LOWER CACHE ----------\n"
            report += self.lower_cache.statistics_report()
        return report