"""Instruction decoding for the pipeline simulator."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from rvpipesim.isa import REGISTER_NAMES, Instruction, OpCode, Reg, to_signed32

I = Instruction


class DecodeError(Exception):
    """Raised for instruction words the simulator does not support."""


@dataclass(frozen=True)
class DecodedInstruction:
    """An instruction with its operands read from the register file.

    ``rs1``/``rs2``/``rs3`` are None when the instruction does not read that
    source register; ``dest`` is 0 when nothing is written.
    """

    inst: Instruction
    text: str
    dest: int = 0
    rs1: int | None = None
    rs2: int | None = None
    rs3: int | None = None
    op1: int = 0
    op2: int = 0
    op3: int = 0
    offset: int = 0

    @property
    def name(self) -> str:
        return self.inst.mnemonic


def sign_extend(value: int, bits: int) -> int:
    """Sign-extend the low ``bits`` bits of ``value``."""
    value &= (1 << bits) - 1
    sign = 1 << (bits - 1)
    return (value ^ sign) - sign


_REG_OPS = {
    (0x0, 0x00): I.ADD,
    (0x0, 0x01): I.MUL,
    (0x0, 0x20): I.SUB,
    (0x1, 0x00): I.SLL,
    (0x1, 0x01): I.MULH,
    (0x2, 0x00): I.SLT,
    (0x3, 0x00): I.SLTU,
    (0x4, 0x00): I.XOR,
    (0x4, 0x01): I.DIV,
    (0x5, 0x00): I.SRL,
    (0x5, 0x20): I.SRA,
    (0x6, 0x00): I.OR,
    (0x6, 0x01): I.REM,
    (0x7, 0x00): I.AND,
}
_IMM_OPS = {
    0x0: I.ADDI,
    0x2: I.SLTI,
    0x3: I.SLTIU,
    0x4: I.XORI,
    0x6: I.ORI,
    0x7: I.ANDI,
    0x1: I.SLLI,
}
_BRANCH_OPS = {0x0: I.BEQ, 0x1: I.BNE, 0x4: I.BLT, 0x5: I.BGE, 0x6: I.BLTU, 0x7: I.BGEU}
_STORE_OPS = {0x0: I.SB, 0x1: I.SH, 0x2: I.SW, 0x3: I.SD}
_LOAD_OPS = {0x0: I.LB, 0x1: I.LH, 0x2: I.LW, 0x3: I.LD, 0x4: I.LBU, 0x5: I.LHU}
_OP32_OPS = {
    (0x0, 0x00): I.ADDW,
    (0x0, 0x20): I.SUBW,
    (0x1, 0x00): I.SLLW,
    (0x5, 0x00): I.SRLW,
    (0x5, 0x20): I.SRAW,
}
_FMA_OPS = {
    (0x0, 0x0): I.FMADD,
    (0x0, 0x1): I.FMADDU,
    (0x0, 0x2): I.FMSUB,
    (0x0, 0x3): I.FMSUBU,
    (0x1, 0x0): I.FNMADD,
    (0x1, 0x1): I.FNMSUB,
}


def decode(word: int, regs: Sequence[int]) -> DecodedInstruction:
    """Decode ``word``, reading source operands from ``regs``.

    Raises DecodeError for unsupported opcodes or function fields.
    """
    word &= 0xFFFFFFFF
    opcode = word & 0x7F
    funct3 = (word >> 12) & 0x7
    funct7 = (word >> 25) & 0x7F
    rd = (word >> 7) & 0x1F
    rs1 = (word >> 15) & 0x1F
    rs2 = (word >> 20) & 0x1F
    rs3 = (word >> 27) & 0x1F

    imm_i = sign_extend(word >> 20, 12)
    imm_s = sign_extend(((word >> 7) & 0x1F) | ((word >> 20) & 0xFE0), 12)
    imm_sb = sign_extend(
        ((word >> 7) & 0x1E)
        | ((word >> 20) & 0x7E0)
        | ((word << 4) & 0x800)
        | ((word >> 19) & 0x1000),
        13,
    )
    imm_u = sign_extend(word >> 12, 20)
    imm_uj = sign_extend(
        ((word >> 21) & 0x3FF)
        | ((word >> 10) & 0x400)
        | ((word >> 1) & 0x7F800)
        | ((word >> 12) & 0x80000),
        20,
    ) * 2

    def value(index: int) -> int:
        return to_signed32(regs[index])

    names = REGISTER_NAMES

    match opcode:
        case OpCode.FMA:
            fmt = (word >> 25) & 0x3
            inst = _FMA_OPS.get((funct3, fmt))
            if inst is None:
                raise DecodeError(
                    f"Unknown fused instruction with rm 0x{funct3:x} and fmt 0x{fmt:x}"
                )
            text = f"{inst.mnemonic} {names[rd]},{names[rs1]},{names[rs2]},{names[rs3]}"
            return DecodedInstruction(
                inst, text, dest=rd, rs1=rs1, rs2=rs2, rs3=rs3,
                op1=value(rs1), op2=value(rs2), op3=value(rs3),
            )

        case OpCode.REG:
            inst = _REG_OPS.get((funct3, funct7))
            if inst is None:
                raise DecodeError(f"Unknown funct7 0x{funct7:x} for funct3 0x{funct3:x}")
            text = f"{inst.mnemonic} {names[rd]},{names[rs1]},{names[rs2]}"
            return DecodedInstruction(
                inst, text, dest=rd, rs1=rs1, rs2=rs2, op1=value(rs1), op2=value(rs2)
            )

        case OpCode.IMM:
            op2 = imm_i
            if funct3 == 0x5:
                shift_kind = (word >> 26) & 0x3F
                if shift_kind == 0x0:
                    inst = I.SRLI
                elif shift_kind == 0x10:
                    inst = I.SRAI
                else:
                    raise DecodeError(f"Unknown funct7 0x{shift_kind:x} for OP_IMM")
                op2 &= 0x3F
            else:
                inst = _IMM_OPS[funct3]
                if inst is I.SLLI:
                    op2 &= 0x3F
            text = f"{inst.mnemonic} {names[rd]},{names[rs1]},{op2}"
            return DecodedInstruction(inst, text, dest=rd, rs1=rs1, op1=value(rs1), op2=op2)

        case OpCode.LUI | OpCode.AUIPC:
            inst = I.LUI if opcode == OpCode.LUI else I.AUIPC
            text = f"{inst.mnemonic} {names[rd]},{imm_u}"
            return DecodedInstruction(inst, text, dest=rd, op1=imm_u, offset=imm_u)

        case OpCode.JAL:
            text = f"jal {names[rd]},{imm_uj}"
            return DecodedInstruction(I.JAL, text, dest=rd, op1=imm_uj, offset=imm_uj)

        case OpCode.JALR:
            text = f"jalr {names[rd]},{names[rs1]},{imm_i}"
            return DecodedInstruction(
                I.JALR, text, dest=rd, rs1=rs1, op1=value(rs1), op2=imm_i
            )

        case OpCode.BRANCH:
            inst = _BRANCH_OPS.get(funct3)
            if inst is None:
                raise DecodeError(f"Unknown funct3 0x{funct3:x} at OP_BRANCH")
            text = f"{inst.mnemonic} {names[rs1]},{names[rs2]},{imm_sb}"
            return DecodedInstruction(
                inst, text, rs1=rs1, rs2=rs2, op1=value(rs1), op2=value(rs2), offset=imm_sb
            )

        case OpCode.STORE:
            inst = _STORE_OPS.get(funct3)
            if inst is None:
                raise DecodeError(f"Unknown funct3 0x{funct3:x} for OP_STORE")
            text = f"{inst.mnemonic} {names[rs2]},{imm_s}({names[rs1]})"
            return DecodedInstruction(
                inst, text, rs1=rs1, rs2=rs2, op1=value(rs1), op2=value(rs2), offset=imm_s
            )

        case OpCode.LOAD:
            inst = _LOAD_OPS.get(funct3)
            if inst is None:
                raise DecodeError(f"Unknown funct3 0x{funct3:x} for OP_LOAD")
            text = f"{inst.mnemonic} {names[rd]},{imm_i}({names[rs1]})"
            return DecodedInstruction(
                inst, text, dest=rd, rs1=rs1, op1=value(rs1), op2=imm_i, offset=imm_i
            )

        case OpCode.SYSTEM:
            if funct3 != 0x0 or funct7 != 0x0:
                raise DecodeError(
                    f"Unknown OP_SYSTEM inst with funct3 0x{funct3:x} and funct7 0x{funct7:x}"
                )
            return DecodedInstruction(
                I.ECALL, "ecall", dest=Reg.A0, rs1=Reg.A0, rs2=Reg.A7,
                op1=value(Reg.A0), op2=value(Reg.A7),
            )

        case OpCode.IMM32:
            if funct3 == 0x0:
                inst = I.ADDIW
            elif funct3 == 0x1:
                inst = I.SLLIW
            elif funct3 == 0x5:
                if funct7 == 0x0:
                    inst = I.SRLIW
                elif funct7 == 0x20:
                    inst = I.SRAIW
                else:
                    raise DecodeError(f"Unknown shift inst type 0x{funct7:x}")
            else:
                raise DecodeError(f"Unknown funct3 0x{funct3:x} for OP_ADDIW")
            text = f"{inst.mnemonic} {names[rd]},{names[rs1]},{imm_i}"
            return DecodedInstruction(inst, text, dest=rd, rs1=rs1, op1=value(rs1), op2=imm_i)

        case OpCode.OP32:
            if funct3 not in (0x0, 0x1, 0x5):
                raise DecodeError(f"Unknown 32bit funct3 0x{funct3:x}")
            inst = _OP32_OPS.get((funct3, funct7))
            if inst is None:
                raise DecodeError(f"Unknown 32bit funct7 0x{funct7:x}")
            text = f"{inst.mnemonic} {names[rd]},{names[rs1]},{names[rs2]}"
            return DecodedInstruction(
                inst, text, dest=rd, rs1=rs1, rs2=rs2, op1=value(rs1), op2=value(rs2)
            )

    raise DecodeError(f"Unsupported opcode 0x{opcode:x}!")