"""Five-stage pipelined RISC-V simulator with hazard handling."""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass, field
from typing import TextIO

from rvpipesim.branch_predictor import BranchPredictor
from rvpipesim.decoder import DecodeError, decode
from rvpipesim.isa import (
    REGISTER_NAMES,
    REGISTERS_COUNT,
    Instruction,
    Reg,
    is_branch,
    is_jump,
    is_read_mem,
    to_signed32,
    to_unsigned32,
)
from rvpipesim.memory import MemoryError_, MemoryManager

I = Instruction
_RECORD_LIMIT = 100000
_NO_REG = -1


class SimulationError(Exception):
    """Raised when the simulated program cannot continue."""


class ProgramExit(Exception):
    """Raised when the simulated program calls exit."""

    def __init__(self, code: int = 0) -> None:
        super().__init__(f"program exited with code {code}")
        self.code = code


@dataclass
class _FReg:
    bubble: bool = False
    stall: int = 0
    pc: int = 0
    inst: int = 0
    length: int = 0


@dataclass
class _DReg:
    bubble: bool = False
    stall: int = 0
    dest: int = 0
    rs1: int = 0
    rs2: int = 0
    rs3: int = 0
    op1: int = 0
    op2: int = 0
    op3: int = 0
    offset: int = 0
    pc: int = 0
    inst: Instruction = I.UNKNOWN
    text: str = ""
    predicted_branch: bool = False
    predicted_pc: int = 0
    another_pc: int = 0


@dataclass
class _EReg:
    bubble: bool = False
    stall: int = 0
    text: str = ""
    pc: int = 0
    inst: Instruction = I.UNKNOWN
    op2: int = 0
    write_register: bool = False
    dest: int = 0
    out: int = 0
    write_memory: bool = False
    read_memory: bool = False
    read_sign_ext: bool = False
    mem_len: int = 0


@dataclass
class _MReg:
    bubble: bool = False
    inst: Instruction = I.UNKNOWN
    text: str = ""
    out: int = 0
    write_back: bool = False
    dest: int = 0


@dataclass
class History:
    """Counters and traces collected while simulating."""

    instruction_count: int = 0
    cycle_count: int = 0
    stalled_cycle_count: int = 0
    predicted_branch: int = 0
    unpredicted_branch: int = 0
    data_hazard_count: int = 0
    control_hazard_count: int = 0
    memory_hazard_count: int = 0
    inst_record: list[str] = field(default_factory=list)
    reg_record: list[str] = field(default_factory=list)


def _ratio(num: int, den: int) -> float:
    if den == 0:
        return math.nan if num == 0 else math.inf
    return num / den


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


class Simulator:
    """Fetch, decode, execute, memory and write-back stages over a MemoryManager."""

    def __init__(
        self,
        memory: MemoryManager,
        predictor: BranchPredictor,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self.memory = memory
        self.branch_predictor = predictor
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.is_single_step = False
        self.verbose = False
        self.should_dump_history = False
        self.data_forwarding = True
        self.dump_path = "dump.txt"
        self.pc = 0
        self.reg = [0] * REGISTERS_COUNT
        self.stack_base = 0
        self.maximum_stack_size = 0
        self.history = History()
        self._f = _FReg(bubble=True)
        self._d = _DReg(bubble=True)
        self._e = _EReg(bubble=True)
        self._m = _MReg(bubble=True)
        self._f_new = _FReg()
        self._d_new = _DReg()
        self._e_new = _EReg()
        self._m_new = _MReg()
        self._execute_write_back = False
        self._execute_wb_reg = _NO_REG
        self._pushback = ""

    def init_stack(self, base_addr: int, max_size: int) -> None:
        self.reg[Reg.SP] = to_unsigned32(base_addr)
        self.stack_base = to_unsigned32(base_addr)
        self.maximum_stack_size = to_unsigned32(max_size)

    # Output helpers

    def _say(self, text: str) -> None:
        if self.verbose:
            self.stdout.write(text)

    # Main loop

    def step(self) -> None:
        """Advance the pipeline by one cycle."""
        self._say("\n")
        self.reg[Reg.ZERO] = 0
        if self.reg[Reg.SP] < to_unsigned32(self.stack_base - self.maximum_stack_size):
            print("Stack Overflow!", file=sys.stderr)

        self._execute_write_back = False
        self._execute_wb_reg = _NO_REG

        self._write_back()
        self._fetch()
        self._decode()
        self._execute()
        self._memory_access()

        if self._f.stall == 0:
            self._f = self._f_new
            self._say("Assigned fRegNew to fReg\n")
        else:
            self._f.stall -= 1
            self.pc = to_unsigned32(self.pc - self._f.length)

        if self._d.stall == 0:
            self._d = self._d_new
            self._say("Assigned dRegNew to dReg\n")
        else:
            self._d.stall -= 1
        self._e = self._e_new
        self._m = self._m_new

        self._f_new = _FReg()
        self._d_new = _DReg()
        self._e_new = _EReg()
        self._m_new = _MReg()

        if (
            not self._d.bubble
            and self._d.stall == 0
            and self._f.stall == 0
            and self._d.predicted_branch
        ):
            self.pc = self._d.predicted_pc

        self.history.cycle_count += 1

        if self.should_dump_history:
            self.history.reg_record.append(self.reg_info_str())
            if len(self.history.reg_record) >= _RECORD_LIMIT:
                self.history.reg_record.clear()
                self.history.inst_record.clear()

        if self.verbose:
            self.stdout.write(self.reg_info_str())

        if self.is_single_step:
            self.stdout.write("Type d to dump memory in dump.txt, press ENTER to continue: ")
            self.stdout.flush()
            if "d" in self.stdin.readline():
                self.dump_history()

    def simulate(self, max_cycles: int | None = None) -> int:
        """Run until the program exits; return its exit code."""
        cycles = 0
        try:
            while max_cycles is None or cycles < max_cycles:
                self.step()
                cycles += 1
        except ProgramExit as done:
            return done.code
        raise SimulationError(f"Cycle limit {max_cycles} reached")

    # Stages

    def _fetch(self) -> None:
        if self.pc % 2 != 0:
            print(f"Illegal PC 0x{self.pc:x}!", file=sys.stderr)
        word = self.memory.get_int(self.pc)
        self._say(f"Fetched instruction: 0x{word:x} at 0x{self.pc:x}\n")
        self._f_new.bubble = False
        self._f_new.inst = word
        self._f_new.length = 4
        self._f_new.pc = self.pc
        self.pc = to_unsigned32(self.pc + 4)

    def _decode(self) -> None:
        f = self._f
        if f.bubble or f.inst == 0:
            self._say("Decode: Bubble\n")
            self._d_new.bubble = True
            return
        try:
            decoded = decode(f.inst, self.reg)
        except DecodeError as exc:
            raise SimulationError(str(exc)) from exc

        self.history.inst_record.append(f"0x{f.pc:x}: {decoded.text}\n")
        self._say(f"Decoded instruction 0x{f.inst:08x} as {decoded.text}\n")

        d = self._d_new
        predicted = False
        if is_branch(decoded.inst):
            predicted = self.branch_predictor.predict(
                f.pc, decoded.inst, decoded.op1, decoded.op2, decoded.offset
            )
            if predicted:
                d.predicted_pc = to_unsigned32(f.pc + decoded.offset)
                d.another_pc = to_unsigned32(f.pc + 4)
                self._f_new.bubble = True
            else:
                d.another_pc = to_unsigned32(f.pc + decoded.offset)

        d.text = decoded.text
        d.bubble = False
        d.rs1 = _NO_REG if decoded.rs1 is None else int(decoded.rs1)
        d.rs2 = _NO_REG if decoded.rs2 is None else int(decoded.rs2)
        d.rs3 = _NO_REG if decoded.rs3 is None else int(decoded.rs3)
        d.pc = f.pc
        d.inst = decoded.inst
        d.predicted_branch = predicted
        d.dest = int(decoded.dest)
        d.op1 = decoded.op1
        d.op2 = decoded.op2
        d.op3 = decoded.op3
        d.offset = decoded.offset

    def _execute(self) -> None:
        d = self._d
        if d.stall != 0 or d.bubble:
            self._say("Execute: Bubble\n")
            self._e_new.bubble = True
            return

        self._say(f"Execute: {d.text}\n")
        self.history.instruction_count += 1

        inst = d.inst
        op1, op2, op3, offset = d.op1, d.op2, d.op3, d.offset
        pc = d.pc
        dest = d.dest
        write_reg = False
        write_mem = False
        read_mem = False
        sign_ext = False
        mem_len = 0
        branch = False
        out = 0
        u1, u2 = to_unsigned32(op1), to_unsigned32(op2)

        match inst:
            case I.FMADD | I.FMADDU | I.FMSUB | I.FMSUBU | I.FNMADD | I.FNMSUB:
                write_reg = True
                if inst is I.FMADD:
                    out = op1 * op2 + op3
                elif inst is I.FMADDU:
                    out = u1 * u2 + op3
                elif inst is I.FMSUB:
                    out = op1 * op2 - op3
                elif inst is I.FMSUBU:
                    out = u1 * u2 - op3
                elif inst is I.FNMADD:
                    out = -(op1 * op2) + op3
                else:
                    out = -(op1 * op2) - op3
                self.history.cycle_count += 3
            case I.LUI:
                write_reg, out = True, offset << 12
            case I.AUIPC:
                write_reg, out = True, pc + (offset << 12)
            case I.JAL:
                write_reg, out, branch = True, pc + 4, True
                pc = to_unsigned32(pc + op1)
            case I.JALR:
                write_reg, out, branch = True, pc + 4, True
                pc = to_unsigned32(op1 + op2) & ~1
            case I.BEQ | I.BNE | I.BLT | I.BGE | I.BLTU | I.BGEU:
                taken = {
                    I.BEQ: op1 == op2,
                    I.BNE: op1 != op2,
                    I.BLT: op1 < op2,
                    I.BGE: op1 >= op2,
                    I.BLTU: u1 < u2,
                    I.BGEU: u1 >= u2,
                }[inst]
                if taken:
                    branch = True
                    pc = to_unsigned32(pc + offset)
            case I.LB | I.LH | I.LW | I.LD | I.LBU | I.LHU | I.LWU:
                read_mem = write_reg = True
                mem_len = {I.LB: 1, I.LH: 2, I.LW: 4, I.LD: 8, I.LBU: 1, I.LHU: 2, I.LWU: 4}[inst]
                sign_ext = inst in (I.LB, I.LH, I.LW, I.LD)
                out = op1 + offset
            case I.SB | I.SH | I.SW | I.SD:
                write_mem = True
                mem_len = {I.SB: 1, I.SH: 2, I.SW: 4, I.SD: 8}[inst]
                out = op1 + offset
                if inst is I.SB:
                    op2 &= 0xFF
                elif inst is I.SH:
                    op2 &= 0xFFFF
            case I.ADDI | I.ADD | I.ADDIW | I.ADDW:
                write_reg, out = True, op1 + op2
            case I.SUB | I.SUBW:
                write_reg, out = True, op1 - op2
            case I.MUL:
                write_reg, out = True, op1 * op2
                self.history.cycle_count += 3
            case I.DIV:
                if op2 == 0:
                    raise SimulationError("Division by zero")
                write_reg, out = True, _trunc_div(op1, op2)
            case I.SLTI | I.SLT:
                write_reg, out = True, int(op1 < op2)
            case I.SLTIU | I.SLTU:
                write_reg, out = True, int(u1 < u2)
            case I.XORI | I.XOR:
                write_reg, out = True, op1 ^ op2
            case I.ORI | I.OR:
                write_reg, out = True, op1 | op2
            case I.ANDI | I.AND:
                write_reg, out = True, op1 & op2
            case I.SLLI | I.SLL | I.SLLIW | I.SLLW:
                write_reg, out = True, op1 << (op2 & 0x1F)
            case I.SRLI | I.SRL | I.SRLIW | I.SRLW:
                write_reg, out = True, u1 >> (u2 & 0x1F)
            case I.SRAI | I.SRA | I.SRAIW | I.SRAW:
                write_reg, out = True, op1 >> (op2 & 0x1F)
            case I.ECALL:
                out = self._system_call(op1, op2)
                write_reg = True
            case _:
                raise SimulationError(f"Unknown instruction type {int(inst)}")
        out = to_signed32(out)
        op2 = to_signed32(op2)

        if is_branch(inst):
            if d.predicted_branch == branch:
                self.history.predicted_branch += 1
                self._say(f"Branch Predicted: PC = 0x{pc:x} -> 0x{self.pc:x}\n")
            else:
                self.pc = d.another_pc
                self._f_new.bubble = True
                self._d_new.bubble = True
                self.history.unpredicted_branch += 1
                self.history.control_hazard_count += 1
                self._say(f"Control Hazard: PC = 0x{pc:x} -> 0x{self.pc:x}\n")
            self.branch_predictor.update(d.pc, branch)
        if is_jump(inst):
            self.pc = pc
            self._f_new.bubble = True
            self._d_new.bubble = True
            self.history.control_hazard_count += 1
            self._say(f"Control Hazard: PC = 0x{pc:x} -> 0x{self.pc:x}\n")

        nd = self._d_new
        uses_dest = dest in (nd.rs1, nd.rs2, nd.rs3)
        if is_read_mem(inst) and uses_dest:
            if self.data_forwarding:
                self._f_new.stall = 2
                nd.stall = 2
                self.history.cycle_count -= 1
            else:
                self._f.stall = 2
                d.stall = 2
                d.bubble = True
            self.history.memory_hazard_count += 1
            self._say("EXE stage detected memory hazard\n")

        if write_reg and dest != Reg.ZERO and not is_read_mem(inst):
            if self.data_forwarding:
                for attr in ("1", "2", "3"):
                    if getattr(nd, "rs" + attr) == dest:
                        setattr(nd, "op" + attr, out)
                        self._execute_wb_reg = dest
                        self._execute_write_back = True
                        self.history.data_hazard_count += 1
                        self._say(f"  Forward Data {REGISTER_NAMES[dest]} to Decode op{attr}\n")
            elif uses_dest:
                self._say("EXE stage detected data hazard (w/o data forwarding)\n")
                self._f.stall = 2
                d.stall = 2
                d.bubble = True
                self.history.data_hazard_count += 1

        e = self._e_new
        e.bubble = False
        e.pc = pc
        e.inst = inst
        e.text = d.text
        e.op2 = op2
        e.write_register = write_reg
        e.dest = dest
        e.out = out
        e.write_memory = write_mem
        e.read_memory = read_mem
        e.read_sign_ext = sign_ext
        e.mem_len = mem_len

    def _memory_access(self) -> None:
        e = self._e
        if e.stall != 0 or e.bubble:
            self._m_new.bubble = True
            self._say("Memory Access: Bubble\n")
            return

        out = e.out
        addr = to_unsigned32(out)
        cycles = 0

        if e.write_memory:
            writers = {1: self.memory.set_byte, 2: self.memory.set_short, 4: self.memory.set_int}
            writer = writers.get(e.mem_len)
            if writer is None:
                print(f"Unknown memLen {e.mem_len}", file=sys.stderr)
            else:
                try:
                    writer(addr, to_unsigned32(e.op2))
                    cycles = self.memory.last_cycles
                except MemoryError_:
                    print("Invalid Mem Access!", file=sys.stderr)

        if e.read_memory:
            readers = {1: self.memory.get_byte, 2: self.memory.get_short, 4: self.memory.get_int}
            reader = readers.get(e.mem_len)
            if reader is None:
                print(f"Unknown memLen {e.mem_len}", file=sys.stderr)
            else:
                try:
                    out = to_signed32(reader(addr))
                    cycles = self.memory.last_cycles
                except MemoryError_:
                    print("Invalid Mem Access!", file=sys.stderr)
                    out = 0

        self.history.cycle_count += cycles
        self._say(f"Memory Access: {e.text}\n")

        dest = e.dest
        if e.write_register and dest != Reg.ZERO:
            if self.data_forwarding:
                targets = []
                if not self._execute_write_back or self._execute_wb_reg != dest:
                    targets.append(self._d_new)
                if self._d.stall != 0:
                    targets.append(self._d)
                for target in targets:
                    for attr in ("1", "2", "3"):
                        if getattr(target, "rs" + attr) == dest:
                            setattr(target, "op" + attr, out)
                            self.history.data_hazard_count += 1
                            self._say(f"  Forward Data {REGISTER_NAMES[dest]} to Decode op{attr}\n")
            else:
                nd = self._d_new
                if not nd.bubble and dest in (nd.rs1, nd.rs2, nd.rs3):
                    self._say("MEM stage detected data hazard (w/o data forwarding)\n")
                    self._f.stall = 1
                    self._d.stall = 1
                    self._d.bubble = True
                    self.history.data_hazard_count += 1

        m = self._m_new
        m.bubble = False
        m.inst = e.inst
        m.text = e.text
        m.dest = dest
        m.write_back = e.write_register
        m.out = out

    def _write_back(self) -> None:
        m = self._m
        if m.bubble:
            self._say("WriteBack: Bubble\n")
            return
        self._say(f"WriteBack: {m.text}\n")
        if m.write_back and m.dest != Reg.ZERO:
            self.reg[m.dest] = to_unsigned32(m.out)

    # System calls

    def _getc(self) -> str:
        if self._pushback:
            ch, self._pushback = self._pushback[0], self._pushback[1:]
            return ch
        return self.stdin.read(1)

    def _skip_space(self) -> str:
        ch = self._getc()
        while ch and ch.isspace():
            ch = self._getc()
        return ch

    def _read_number(self) -> int | None:
        ch = self._skip_space()
        text = ""
        if ch in ("+", "-"):
            text, ch = ch, self._getc()
        while ch and ch.isdigit():
            text += ch
            ch = self._getc()
        if ch:
            self._pushback = ch + self._pushback
        digits = text.lstrip("+-")
        return int(text) if digits else None

    def _system_call(self, op1: int, op2: int) -> int:
        kind, arg = op2, op1
        match kind:
            case 0:
                addr = to_unsigned32(arg)
                chars = []
                ch = self.memory.get_byte(addr)
                while ch != 0:
                    chars.append(chr(ch))
                    addr = to_unsigned32(addr + 1)
                    ch = self.memory.get_byte(addr)
                self.stdout.write("".join(chars))
            case 1:
                self.stdout.write(chr(arg & 0xFF))
            case 2:
                self.stdout.write(str(to_signed32(arg)))
            case 3 | 93:
                self.stdout.write("Program exit from an exit() system call\n")
                if self.should_dump_history:
                    self.stdout.write("Dumping history to dump.txt...")
                    self.dump_history()
                self.stdout.write(self.statistics_report())
                raise ProgramExit(0)
            case 4:
                ch = self._skip_space()
                if ch:
                    op1 = to_signed32((op1 & ~0xFF) | (ord(ch) & 0xFF))
            case 5:
                number = self._read_number()
                if number is not None:
                    op1 = to_signed32(number)
            case _:
                raise SimulationError(f"Unknown syscall type {kind}")
        return op1

    # Reports

    def reg_info_str(self) -> str:
        parts = ["------------ CPU STATE ------------\n", f"PC: 0x{self.pc:x}\n"]
        for i, value in enumerate(self.reg):
            parts.append(f"{REGISTER_NAMES[i]}: 0x{value:x}({value}) ")
            if i % 4 == 3:
                parts.append("\n")
        parts.append("-----------------------------------\n")
        return "".join(parts)

    def statistics_report(self) -> str:
        h = self.history
        cpi = _ratio(h.cycle_count, h.instruction_count)
        accuracy = _ratio(h.predicted_branch, h.predicted_branch + h.unpredicted_branch)
        return (
            "------------ STATISTICS -----------\n"
            f"Number of Instructions: {h.instruction_count}\n"
            f"Number of Cycles: {h.cycle_count}\n"
            f"Avg Cycles per Instrcution: {cpi:.4f}\n"
            f"Branch Perdiction Accuacy: {accuracy:.4f} "
            f"(Strategy: {self.branch_predictor.strategy_name()})\n"
            f"Number of Control Hazards: {h.control_hazard_count}\n"
            f"Number of Data Hazards: {h.data_hazard_count}\n"
            f"Number of Memory Hazards: {h.memory_hazard_count}\n"
            "-----------------------------------\n"
        )

    def dump_history(self, path: str | None = None) -> None:
        """Write the execution trace and a memory dump to ``path``."""
        with open(path or self.dump_path, "w", encoding="utf-8") as out:
            out.write("================== Excecution History ==================\n")
            for inst, regs in zip(self.history.inst_record, self.history.reg_record):
                out.write(inst)
                out.write(regs)
            out.write("========================================================\n\n")
            out.write("====================== Memory Dump ======================\n")
            out.write(self.memory.dump_memory())
            out.write("=========================================================\n\n")