"""Minimal ELF reader for loading RISC-V programs into simulated memory."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from pathlib import Path

from rvpipesim.memory import MemoryManager

EM_RISCV = 243
ELFCLASS32 = 1
ELFCLASS64 = 2
ELFDATA2LSB = 1
ELFDATA2MSB = 2

_MAGIC = b"\x7fELF"
_IDENT_SIZE = 16
_ADDRESS_LIMIT = 0xFFFFFFFF

# (file header, section header, program header) layouts after e_ident
_LAYOUTS = {
    ELFCLASS32: ("HHIIIIIHHHHHH", "IIIIIIIIII", "IIIIIIII"),
    ELFCLASS64: ("HHIQQQIHHHHHH", "IIQQQQIIQQ", "IIQQQQQQ"),
}


class ElfError(Exception):
    """Raised for files that cannot be read or loaded as ELF programs."""


@dataclass
class Section:
    name: str
    type: int
    flags: int
    address: int
    offset: int
    size: int
    name_offset: int = 0


@dataclass
class Segment:
    type: int
    flags: int
    offset: int
    virtual_address: int
    physical_address: int
    file_size: int
    memory_size: int
    align: int
    data: bytes = b""


@dataclass
class ElfFile:
    elf_class: int
    encoding: int
    machine: int
    entry: int
    file_type: int = 0
    sections: list[Section] = field(default_factory=list)
    segments: list[Segment] = field(default_factory=list)

    @property
    def is_64bit(self) -> bool:
        return self.elf_class == ELFCLASS64


def _segment_from(raw: tuple[int, ...], elf_class: int) -> Segment:
    if elf_class == ELFCLASS32:
        p_type, offset, vaddr, paddr, filesz, memsz, flags, align = raw
    else:
        p_type, flags, offset, vaddr, paddr, filesz, memsz, align = raw
    return Segment(p_type, flags, offset, vaddr, paddr, filesz, memsz, align)


def parse_elf(data: bytes) -> ElfFile:
    """Parse an ELF32 or ELF64 image held in ``data``."""
    data = bytes(data)
    if len(data) < _IDENT_SIZE or data[:4] != _MAGIC:
        raise ElfError("Not an ELF file")
    elf_class = data[4]
    if elf_class not in _LAYOUTS:
        raise ElfError(f"Unsupported ELF class {elf_class}")
    encoding = data[5]
    order = ">" if encoding == ELFDATA2MSB else "<"
    ehdr_fmt, shdr_fmt, phdr_fmt = _LAYOUTS[elf_class]

    try:
        (
            file_type, machine, _version, entry, phoff, shoff, _flags,
            _ehsize, phentsize, phnum, shentsize, shnum, shstrndx,
        ) = struct.unpack_from(order + ehdr_fmt, data, _IDENT_SIZE)
        raw_sections = [
            struct.unpack_from(order + shdr_fmt, data, shoff + i * shentsize)
            for i in range(shnum)
        ]
        raw_segments = [
            struct.unpack_from(order + phdr_fmt, data, phoff + i * phentsize)
            for i in range(phnum)
        ]
    except struct.error as exc:
        raise ElfError("Truncated ELF file") from exc

    sections = [
        Section("", sh_type, flags, addr, offset, size, name_offset)
        for name_offset, sh_type, flags, addr, offset, size, *_ in raw_sections
    ]
    if shstrndx != 0 and shstrndx < len(sections):
        strtab = sections[shstrndx]
        table = data[strtab.offset : strtab.offset + strtab.size]
        for section in sections:
            start = section.name_offset
            if start < len(table):
                end = table.find(b"\0", start)
                raw_name = table[start:] if end < 0 else table[start:end]
                section.name = raw_name.decode("utf-8", errors="replace")

    segments = []
    for raw in raw_segments:
        segment = _segment_from(raw, elf_class)
        payload = data[segment.offset : segment.offset + segment.file_size]
        if len(payload) < segment.file_size:
            raise ElfError("Segment data lies outside the file")
        segment.data = payload
        segments.append(segment)

    return ElfFile(elf_class, encoding, machine, entry, file_type, sections, segments)


def read_elf(path: str | Path) -> ElfFile:
    """Read and parse the ELF file at ``path``."""
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise ElfError(f"Cannot read {path}: {exc}") from exc
    return parse_elf(data)


def format_elf_info(elf: ElfFile) -> str:
    """Describe the file's class, encoding, sections and segments.

    Raises ElfError when the machine is not RISC-V.
    """
    lines = ["==========ELF Information=========="]
    lines.append("Type: ELF32" if elf.elf_class == ELFCLASS32 else "Type: ELF64")
    lines.append(
        "Encoding: Little Endian" if elf.encoding == ELFDATA2LSB else "Encoding: Large Endian"
    )
    if elf.machine != EM_RISCV:
        raise ElfError(f"ISA: Unsupported(0x{elf.machine:x})")
    lines.append(f"ISA: RISC-V(0x{elf.machine:x})")

    lines.append(f"Number of Sections: {len(elf.sections)}")
    lines.append("ID\tName\t\tAddress\tSize")
    lines.extend(
        f"[{i}]\t{s.name:<12}\t0x{s.address:x}\t{s.size}"
        for i, s in enumerate(elf.sections)
    )

    lines.append(f"Number of Segments: {len(elf.segments)}")
    lines.append("ID\tFlags\tAddress\tFSize\tMSize")
    lines.extend(
        f"[{i}]\t0x{s.flags:x}\t0x{s.virtual_address:x}\t{s.file_size}\t{s.memory_size}"
        for i, s in enumerate(elf.segments)
    )
    lines.append("===================================")
    return "\n".join(lines) + "\n"


def load_into_memory(elf: ElfFile, memory: MemoryManager) -> None:
    """Copy every segment into memory, zero-filling beyond its file data."""
    for i, segment in enumerate(elf.segments):
        top = segment.virtual_address + segment.memory_size
        if top > _ADDRESS_LIMIT:
            raise ElfError(
                f"ELF address space larger than 32bit! Seg {i} has max addr of 0x{top:x}"
            )
        size = segment.memory_size
        payload = segment.data[:size]
        payload += bytes(size - len(payload))
        base = segment.virtual_address
        for offset, byte in enumerate(payload):
            memory.set_byte_no_cache(base + offset, byte)