"""RV64I-subset instruction set definitions used by the pipeline simulator."""

from __future__ import annotations

import enum

REGISTERS_COUNT = 32

REGISTER_NAMES: tuple[str, ...] = (
    "zero", "ra", "sp", "gp", "tp", "t0", "t1", "t2",
    "s0", "s1", "a0", "a1", "a2", "a3", "a4", "a5",
    "a6", "a7", "s2", "s3", "s4", "s5", "s6", "s7",
    "s8", "s9", "s10", "s11", "t3", "t4", "t5", "t6",
)

_MASK32 = 0xFFFFFFFF


class Reg(enum.IntEnum):
    """Integer register numbers by ABI name."""

    ZERO = 0
    RA = 1
    SP = 2
    GP = 3
    TP = 4
    T0 = 5
    T1 = 6
    T2 = 7
    S0 = 8
    S1 = 9
    A0 = 10
    A1 = 11
    A2 = 12
    A3 = 13
    A4 = 14
    A5 = 15
    A6 = 16
    A7 = 17
    S2 = 18
    S3 = 19
    S4 = 20
    S5 = 21
    S6 = 22
    S7 = 23
    S8 = 24
    S9 = 25
    S10 = 26
    S11 = 27
    T3 = 28
    T4 = 29
    T5 = 30
    T6 = 31

    @property
    def abi_name(self) -> str:
        return REGISTER_NAMES[self]


class Instruction(enum.IntEnum):
    """Instructions the simulator knows how to decode."""

    UNKNOWN = -1
    LUI = enum.auto()
    AUIPC = enum.auto()
    JAL = enum.auto()
    JALR = enum.auto()
    BEQ = enum.auto()
    BNE = enum.auto()
    BLT = enum.auto()
    BGE = enum.auto()
    BLTU = enum.auto()
    BGEU = enum.auto()
    LB = enum.auto()
    LH = enum.auto()
    LW = enum.auto()
    LD = enum.auto()
    LBU = enum.auto()
    LHU = enum.auto()
    SB = enum.auto()
    SH = enum.auto()
    SW = enum.auto()
    SD = enum.auto()
    ADDI = enum.auto()
    SLTI = enum.auto()
    SLTIU = enum.auto()
    XORI = enum.auto()
    ORI = enum.auto()
    ANDI = enum.auto()
    SLLI = enum.auto()
    SRLI = enum.auto()
    SRAI = enum.auto()
    ADD = enum.auto()
    SUB = enum.auto()
    SLL = enum.auto()
    SLT = enum.auto()
    SLTU = enum.auto()
    XOR = enum.auto()
    SRL = enum.auto()
    SRA = enum.auto()
    OR = enum.auto()
    AND = enum.auto()
    ECALL = enum.auto()
    ADDIW = enum.auto()
    MUL = enum.auto()
    MULH = enum.auto()
    DIV = enum.auto()
    REM = enum.auto()
    LWU = enum.auto()
    SLLIW = enum.auto()
    SRLIW = enum.auto()
    SRAIW = enum.auto()
    ADDW = enum.auto()
    SUBW = enum.auto()
    SLLW = enum.auto()
    SRLW = enum.auto()
    SRAW = enum.auto()
    FMADD = enum.auto()
    FMADDU = enum.auto()
    FMSUB = enum.auto()
    FMSUBU = enum.auto()
    FNMADD = enum.auto()
    FNMSUB = enum.auto()

    @property
    def mnemonic(self) -> str:
        """Assembly mnemonic, empty for UNKNOWN."""
        return "" if self is Instruction.UNKNOWN else self.name.lower()


class OpCode(enum.IntEnum):
    """Major opcodes (low seven bits of an instruction word)."""

    REG = 0x33
    IMM = 0x13
    LUI = 0x37
    BRANCH = 0x63
    STORE = 0x23
    LOAD = 0x03
    SYSTEM = 0x73
    AUIPC = 0x17
    JAL = 0x6F
    JALR = 0x67
    IMM32 = 0x1B
    OP32 = 0x3B
    FMA = 0x0B


_BRANCHES = frozenset(
    {
        Instruction.BEQ,
        Instruction.BNE,
        Instruction.BLT,
        Instruction.BGE,
        Instruction.BLTU,
        Instruction.BGEU,
    }
)
_JUMPS = frozenset({Instruction.JAL, Instruction.JALR})
_READS = frozenset(
    {
        Instruction.LB,
        Instruction.LH,
        Instruction.LW,
        Instruction.LD,
        Instruction.LBU,
        Instruction.LHU,
        Instruction.LWU,
    }
)


def is_branch(inst: Instruction) -> bool:
    """True for conditional branches."""
    return inst in _BRANCHES


def is_jump(inst: Instruction) -> bool:
    """True for unconditional jumps."""
    return inst in _JUMPS


def is_read_mem(inst: Instruction) -> bool:
    """True for loads."""
    return inst in _READS


def to_signed32(value: int) -> int:
    """Interpret the low 32 bits of ``value`` as a two's-complement integer."""
    return ((value & _MASK32) ^ 0x80000000) - 0x80000000


def to_unsigned32(value: int) -> int:
    """Keep the low 32 bits of ``value`` as an unsigned integer."""
    return value & _MASK32