import struct

import pytest

from rvpipesim.elf import (
    EM_RISCV,
    ElfError,
    format_elf_info,
    load_into_memory,
    parse_elf,
    read_elf,
)
from rvpipesim.memory import MemoryManager

CODE = struct.pack("<II", 0x00300893, 0x00000073)
STRTAB = b"\0.text\0.shstrtab\0"


def build_elf(code=CODE, *, cls=1, endian="<", machine=EM_RISCV, vaddr=0x10000,
              memsz=None, entry=0x10000):
    if cls == 1:
        ehdr, phdr_fmt, shdr_fmt, ehsize, phsize, shsize = (
            "HHIIIIIHHHHHH", "IIIIIIII", "IIIIIIIIII", 52, 32, 40)
    else:
        ehdr, phdr_fmt, shdr_fmt, ehsize, phsize, shsize = (
            "HHIQQQIHHHHHH", "IIQQQQQQ", "IIQQQQIIQQ", 64, 56, 64)
    memsz = len(code) if memsz is None else memsz
    code_off = ehsize + phsize
    str_off = code_off + len(code)
    shoff = (str_off + len(STRTAB) + 7) // 8 * 8
    ident = b"\x7fELF" + bytes([cls, 1 if endian == "<" else 2, 1]) + bytes(9)
    header = ident + struct.pack(endian + ehdr, 2, machine, 1, entry, ehsize, shoff, 0,
                                 ehsize, phsize, 1, shsize, 3, 2)
    if cls == 1:
        ph = (1, code_off, vaddr, vaddr, len(code), memsz, 5, 4)
    else:
        ph = (1, 5, code_off, vaddr, vaddr, len(code), memsz, 4)
    phdr = struct.pack(endian + phdr_fmt, *ph)
    blob = header + phdr + code + STRTAB
    blob += bytes(shoff - len(blob))
    sections = [
        (0, 0, 0, 0, 0, 0, 0, 0, 0, 0),
        (1, 1, 6, vaddr, code_off, len(code), 0, 0, 4, 0),
        (7, 3, 0, 0, str_off, len(STRTAB), 0, 0, 1, 0),
    ]
    for sec in sections:
        blob += struct.pack(endian + shdr_fmt, *sec)
    return blob


@pytest.mark.parametrize("cls", [1, 2])
def test_parse_header_sections_and_segments(cls):
    elf = parse_elf(build_elf(cls=cls))
    assert elf.elf_class == cls
    assert elf.machine == EM_RISCV
    assert elf.entry == 0x10000
    assert [s.name for s in elf.sections] == ["", ".text", ".shstrtab"]
    assert len(elf.segments) == 1
    assert elf.segments[0].data == CODE
    assert elf.segments[0].virtual_address == 0x10000


def test_big_endian_fields_are_decoded():
    elf = parse_elf(build_elf(endian=">", entry=0x12340))
    assert elf.entry == 0x12340
    assert "Encoding: Large Endian" in format_elf_info(elf)


def test_bad_magic_rejected():
    with pytest.raises(ElfError):
        parse_elf(b"\x7fXYZ" + bytes(60))


def test_unknown_class_rejected():
    data = bytearray(build_elf())
    data[4] = 3
    with pytest.raises(ElfError):
        parse_elf(bytes(data))


def test_truncated_file_rejected():
    with pytest.raises(ElfError):
        parse_elf(build_elf()[:40])


def test_format_info_lines():
    text = format_elf_info(parse_elf(build_elf()))
    assert text.startswith("==========ELF Information==========\n")
    assert "Type: ELF32\n" in text
    assert "Encoding: Little Endian\n" in text
    assert "ISA: RISC-V(0xf3)\n" in text
    assert "Number of Sections: 3\n" in text
    assert "Number of Segments: 1\n" in text
    assert "[1]\t.text       \t0x10000\t8\n" in text


def test_format_info_rejects_other_machines():
    with pytest.raises(ElfError):
        format_elf_info(parse_elf(build_elf(machine=62)))


def test_load_copies_code_and_zero_fills():
    elf = parse_elf(build_elf(memsz=len(CODE) + 4))
    memory = MemoryManager()
    tail = 0x10000 + len(CODE)
    memory.set_byte_no_cache(tail, 0x5A)
    load_into_memory(elf, memory)
    assert memory.get_int(0x10000) == struct.unpack("<I", CODE[:4])[0]
    assert memory.get_int(0x10004) == struct.unpack("<I", CODE[4:])[0]
    assert memory.get_byte(tail) == 0


def test_load_rejects_segment_beyond_32_bits():
    elf = parse_elf(build_elf(vaddr=0xFFFFFFF0, memsz=0x20))
    with pytest.raises(ElfError):
        load_into_memory(elf, MemoryManager())


def test_read_elf_from_disk(tmp_path):
    path = tmp_path / "prog.elf"
    path.write_bytes(build_elf())
    assert read_elf(path).segments[0].data == CODE


def test_read_elf_missing_file(tmp_path):
    with pytest.raises(ElfError):
        read_elf(tmp_path / "absent.elf")