"""ISA: instruction encodings and helpers."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum


class OpCode(IntEnum):
    """Keeps opcodes from all operations."""

    UNKNOWN = 0
    SYS = 1  # 0nnn, ignored

    CLS = 10  # 00E0
    RET = 11  # 00EE
    JP = 12  # 1nnn
    CALL = 13  # 2nnn
    JP_V0 = 14  # Bnnn: PC = nnn + V0

    SE_BYTE = 20  # 3xkk
    SNE_BYTE = 21  # 4xkk
    SE_REG = 22  # 5xy0
    SNE_REG = 23  # 9xy0
    SKP = 24  # Ex9E
    SKNP = 25  # ExA1

    LD_BYTE = 30  # 6xkk
    ADD_BYTE = 31  # 7xkk
    RND = 32  # Cxkk

    LD_REG = 40  # 8xy0
    OR = 41  # 8xy1
    AND = 42  # 8xy2
    XOR = 43  # 8xy3
    ADD_REG = 44  # 8xy4, VF = carry
    SUB = 45  # 8xy5, VF = not borrow
    SHR = 46  # 8xy6, VF = lsb
    SUBN = 47  # 8xy7, VF = not borrow
    SHL = 48  # 8xyE, VF = msb

    LD_I = 50  # Annn
    ADD_I = 51  # Fx1E
    LD_F = 52  # Fx29
    LD_B = 53  # Fx33
    STORE_REGS = 54  # Fx55
    LOAD_REGS = 55  # Fx65

    DRW = 60  # Dxyn

    LD_VX_DT = 70  # Fx07
    LD_VX_K = 71  # Fx0A
    LD_DT_VX = 72  # Fx15
    LD_ST_VX = 73  # Fx18


# Every instruction is one big-endian 16-bit word.
INSTR_SIZE = 2

# opcode -> fixed bits of the word; operand fields are OR-ed in by encode_instr
_TEMPLATES: dict[OpCode, int] = {
    OpCode.SYS: 0x0000,
    OpCode.CLS: 0x00E0,
    OpCode.RET: 0x00EE,
    OpCode.JP: 0x1000,
    OpCode.CALL: 0x2000,
    OpCode.SE_BYTE: 0x3000,
    OpCode.SNE_BYTE: 0x4000,
    OpCode.SE_REG: 0x5000,
    OpCode.LD_BYTE: 0x6000,
    OpCode.ADD_BYTE: 0x7000,
    OpCode.LD_REG: 0x8000,
    OpCode.OR: 0x8001,
    OpCode.AND: 0x8002,
    OpCode.XOR: 0x8003,
    OpCode.ADD_REG: 0x8004,
    OpCode.SUB: 0x8005,
    OpCode.SHR: 0x8006,
    OpCode.SUBN: 0x8007,
    OpCode.SHL: 0x800E,
    OpCode.SNE_REG: 0x9000,
    OpCode.LD_I: 0xA000,
    OpCode.JP_V0: 0xB000,
    OpCode.RND: 0xC000,
    OpCode.DRW: 0xD000,
    OpCode.SKP: 0xE09E,
    OpCode.SKNP: 0xE0A1,
    OpCode.LD_VX_DT: 0xF007,
    OpCode.LD_VX_K: 0xF00A,
    OpCode.LD_DT_VX: 0xF015,
    OpCode.LD_ST_VX: 0xF018,
    OpCode.ADD_I: 0xF01E,
    OpCode.LD_F: 0xF029,
    OpCode.LD_B: 0xF033,
    OpCode.STORE_REGS: 0xF055,
    OpCode.LOAD_REGS: 0xF065,
}

# top nibble -> opcode, for families decided by the top nibble alone
_BY_NIBBLE: dict[int, OpCode] = {
    0x1: OpCode.JP,
    0x2: OpCode.CALL,
    0x3: OpCode.SE_BYTE,
    0x4: OpCode.SNE_BYTE,
    0x6: OpCode.LD_BYTE,
    0x7: OpCode.ADD_BYTE,
    0xA: OpCode.LD_I,
    0xB: OpCode.JP_V0,
    0xC: OpCode.RND,
    0xD: OpCode.DRW,
}

_ALU: dict[int, OpCode] = {
    0x0: OpCode.LD_REG,
    0x1: OpCode.OR,
    0x2: OpCode.AND,
    0x3: OpCode.XOR,
    0x4: OpCode.ADD_REG,
    0x5: OpCode.SUB,
    0x6: OpCode.SHR,
    0x7: OpCode.SUBN,
    0xE: OpCode.SHL,
}

_KEYS: dict[int, OpCode] = {
    0x9E: OpCode.SKP,
    0xA1: OpCode.SKNP,
}

_MISC: dict[int, OpCode] = {
    0x07: OpCode.LD_VX_DT,
    0x0A: OpCode.LD_VX_K,
    0x15: OpCode.LD_DT_VX,
    0x18: OpCode.LD_ST_VX,
    0x1E: OpCode.ADD_I,
    0x29: OpCode.LD_F,
    0x33: OpCode.LD_B,
    0x55: OpCode.STORE_REGS,
    0x65: OpCode.LOAD_REGS,
}


@dataclass(frozen=True)
class Instruction:
    """One decoded instruction word.

    All operand fields are sliced out of the word regardless of the opcode,
    so an instruction can be inspected or re-encoded without consulting the
    opcode table again.
    """

    op: OpCode
    word: int
    x: int = 0
    y: int = 0
    n: int = 0
    kk: int = 0
    nnn: int = 0


def _classify(word: int) -> OpCode:
    top = word >> 12
    if top in _BY_NIBBLE:
        return _BY_NIBBLE[top]
    if top == 0x0:
        if word == 0x00E0:
            return OpCode.CLS
        if word == 0x00EE:
            return OpCode.RET
        return OpCode.SYS
    if top in (0x5, 0x9):
        if word & 0x000F:
            return OpCode.UNKNOWN
        return OpCode.SE_REG if top == 0x5 else OpCode.SNE_REG
    if top == 0x8:
        return _ALU.get(word & 0x000F, OpCode.UNKNOWN)
    if top == 0xE:
        return _KEYS.get(word & 0x00FF, OpCode.UNKNOWN)
    # top == 0xF
    return _MISC.get(word & 0x00FF, OpCode.UNKNOWN)


def decode_word(word: int) -> Instruction:
    """Classify a 16-bit word into an Instruction.

    Unrecognized bit patterns decode to OpCode.UNKNOWN; it is up to the
    caller to decide what to do with them.
    """
    word = int(word) & 0xFFFF
    return Instruction(
        op=_classify(word),
        word=word,
        x=(word & 0x0F00) >> 8,
        y=(word & 0x00F0) >> 4,
        n=word & 0x000F,
        kk=word & 0x00FF,
        nnn=word & 0x0FFF,
    )


def decode_instr(blob: bytes, offset: int) -> Instruction:
    """Decode instruction from bytes at offset.

    Raises EOFError if not enough bytes.
    """
    b = blob[offset : offset + INSTR_SIZE]
    if offset < 0 or len(b) < INSTR_SIZE:
        err = "End of program"
        raise EOFError(err)
    (word,) = struct.unpack(">H", b)
    return decode_word(word)


def encode_instr(opcode: OpCode, x: int = 0, y: int = 0, n: int = 0, kk: int = 0, nnn: int = 0) -> bytes:
    """Encode instruction into 2 big-endian bytes.

    Operand fields are masked to their width and OR-ed into the opcode's
    fixed bits, so callers pass only the fields the opcode uses.
    """
    if opcode not in _TEMPLATES:
        err = f"Cannot encode {opcode.name}"
        raise ValueError(err)
    word = _TEMPLATES[opcode]
    word |= (x & 0xF) << 8
    word |= (y & 0xF) << 4
    word |= n & 0xF
    word |= kk & 0xFF
    word |= nnn & 0xFFF
    return struct.pack(">H", word)


def mnemonic(instr: Instruction) -> str:
    """Get operation mnemonic."""
    op, x, y = instr.op, instr.x, instr.y
    if op == OpCode.UNKNOWN:
        return f"DW 0x{instr.word:04X}"
    if op == OpCode.SYS:
        return f"SYS 0x{instr.nnn:03X}"
    if op in (OpCode.CLS, OpCode.RET):
        return op.name
    if op in (OpCode.JP, OpCode.CALL):
        return f"{op.name} 0x{instr.nnn:03X}"
    if op == OpCode.JP_V0:
        return f"JP V0, 0x{instr.nnn:03X}"
    if op == OpCode.LD_I:
        return f"LD I, 0x{instr.nnn:03X}"
    if op in (OpCode.SE_BYTE, OpCode.SNE_BYTE, OpCode.LD_BYTE, OpCode.ADD_BYTE, OpCode.RND):
        name = op.name.split("_")[0]
        return f"{name} V{x:X}, 0x{instr.kk:02X}"
    if op in (OpCode.SE_REG, OpCode.SNE_REG, OpCode.LD_REG, OpCode.ADD_REG):
        name = op.name.split("_")[0]
        return f"{name} V{x:X}, V{y:X}"
    if op in (OpCode.OR, OpCode.AND, OpCode.XOR, OpCode.SUB, OpCode.SUBN):
        return f"{op.name} V{x:X}, V{y:X}"
    if op in (OpCode.SHR, OpCode.SHL, OpCode.SKP, OpCode.SKNP):
        return f"{op.name} V{x:X}"
    if op == OpCode.DRW:
        return f"DRW V{x:X}, V{y:X}, {instr.n}"
    formats = {
        OpCode.LD_VX_DT: "LD V{x:X}, DT",
        OpCode.LD_VX_K: "LD V{x:X}, K",
        OpCode.LD_DT_VX: "LD DT, V{x:X}",
        OpCode.LD_ST_VX: "LD ST, V{x:X}",
        OpCode.ADD_I: "ADD I, V{x:X}",
        OpCode.LD_F: "LD F, V{x:X}",
        OpCode.LD_B: "LD B, V{x:X}",
        OpCode.STORE_REGS: "LD [I], V{x:X}",
        OpCode.LOAD_REGS: "LD V{x:X}, [I]",
    }
    return formats[op].format(x=x)


def disassemble(blob: bytes, origin: int = 0) -> list[str]:
    """Render `blob` as 'ADDR - WORD - MNEMONIC' lines.

    `origin` is the address of the first byte. A trailing odd byte is dumped
    as raw hex.
    """
    lines: list[str] = []
    pc = 0
    while pc + INSTR_SIZE <= len(blob):
        instr = decode_instr(blob, pc)
        lines.append(f"0x{origin + pc:03X} - {instr.word:04X} - {mnemonic(instr)}")
        pc += INSTR_SIZE
    if pc < len(blob):
        rest = blob[pc:].hex().upper()
        lines.append(f"0x{origin + pc:03X} - {rest} - <incomplete>")
    return lines
