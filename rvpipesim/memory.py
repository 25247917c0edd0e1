"""Flat 32-bit byte-addressable memory with an optional cache in front."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rvpipesim.cache import Cache

ADDRESS_LIMIT = 0xFFFFFFFF
PAGE_SIZE = 4096
_ADDR_MASK = 0xFFFFFFFF


class MemoryError_(Exception):
    """Raised on an access to an address outside the simulated space."""


class MemoryManager:
    """A single large page covering the 32-bit address space.

    Storage is allocated lazily per 4 KiB page; untouched bytes read as zero.
    ``last_cycles`` holds the latency reported by the cache for the first
    byte of the most recent cached access (0 when nothing was reported).
    """

    def __init__(self) -> None:
        self._pages: dict[int, bytearray] = {}
        self.cache: Cache | None = None
        self.last_cycles = 0

    def set_cache(self, cache: Cache | None) -> None:
        self.cache = cache

    @staticmethod
    def _check(addr: int, kind: str, action: str) -> None:
        if not 0 <= addr < ADDRESS_LIMIT:
            raise MemoryError_(f"{kind} {action} invalid addr 0x{addr & _ADDR_MASK:x}!")

    def _raw_write(self, addr: int, val: int) -> None:
        page = self._pages.get(addr // PAGE_SIZE)
        if page is None:
            page = self._pages[addr // PAGE_SIZE] = bytearray(PAGE_SIZE)
        page[addr % PAGE_SIZE] = val & 0xFF

    def _raw_read(self, addr: int) -> int:
        page = self._pages.get(addr // PAGE_SIZE)
        return 0 if page is None else page[addr % PAGE_SIZE]

    def _store(self, addr: int, val: int) -> int:
        self._check(addr, "Byte", "write to")
        if self.cache is not None:
            self.cache.set_byte(addr, val)
            return self.cache.last_cycles
        self._raw_write(addr, val)
        return 0

    def _load(self, addr: int) -> tuple[int, int]:
        self._check(addr, "Byte", "read to")
        if self.cache is not None:
            value = self.cache.get_byte(addr)
            return value, self.cache.last_cycles
        return self._raw_read(addr), 0

    def _write_value(self, addr: int, val: int, size: int, kind: str) -> None:
        self._check(addr, kind, "write to")
        data = (val & ((1 << (8 * size)) - 1)).to_bytes(size, "little")
        cycles = 0
        for i, byte in enumerate(data):
            reported = self._store((addr + i) & _ADDR_MASK, byte)
            if i == 0:
                cycles = reported
        self.last_cycles = cycles

    def _read_value(self, addr: int, size: int) -> int:
        cycles = 0
        data = bytearray()
        for i in range(size):
            value, reported = self._load((addr + i) & _ADDR_MASK)
            data.append(value)
            if i == 0:
                cycles = reported
        self.last_cycles = cycles
        return int.from_bytes(data, "little")

    def copy_from(self, src: bytes, dest: int) -> None:
        """Copy the bytes of ``src`` to memory starting at ``dest``."""
        for i, byte in enumerate(bytes(src)):
            addr = dest + i
            if not 0 <= addr < ADDRESS_LIMIT:
                raise MemoryError_(f"Data copy to invalid addr 0x{addr & _ADDR_MASK:x}!")
            self._store(addr, byte)

    def set_byte(self, addr: int, val: int) -> None:
        self.last_cycles = self._store(addr, val)

    def set_byte_no_cache(self, addr: int, val: int) -> None:
        self._check(addr, "Byte", "write to")
        self._raw_write(addr, val)

    def get_byte(self, addr: int) -> int:
        value, self.last_cycles = self._load(addr)
        return value

    def get_byte_no_cache(self, addr: int) -> int:
        self._check(addr, "Byte", "read to")
        return self._raw_read(addr)

    def set_short(self, addr: int, val: int) -> None:
        self._write_value(addr, val, 2, "Short")

    def get_short(self, addr: int) -> int:
        return self._read_value(addr, 2)

    def set_int(self, addr: int, val: int) -> None:
        self._write_value(addr, val, 4, "Int")

    def get_int(self, addr: int) -> int:
        return self._read_value(addr, 4)

    def set_long(self, addr: int, val: int) -> None:
        self._write_value(addr, val, 8, "Long")

    def get_long(self, addr: int) -> int:
        return self._read_value(addr, 8)

    def info(self) -> str:
        return "Memory Info: \nSingle large page covering the entire address space.\n"

    def statistics_report(self) -> str:
        report = "---------- CACHE STATISTICS ----------\n"
        if self.cache is not None:
            report += self.cache.statistics_report()
        return report

    def dump_memory(self) -> str:
        """Dump every page that has been written to, byte by byte."""
        lines = ["Memory Dump: \n"]
        for page_no in sorted(self._pages):
            base = page_no * PAGE_SIZE
            lines.append(f"0x{base:x}-0x{base + PAGE_SIZE:x}\n")
            lines.extend(
                f"  0x{base + offset:x}: 0x{value:x}\n"
                for offset, value in enumerate(self._pages[page_no])
            )
        return "".join(lines)