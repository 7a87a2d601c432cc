"""Decoder tests: classification, operand slicing, encoding and mnemonics."""

from __future__ import annotations

import pytest
from isa import INSTR_SIZE, Instruction, OpCode, decode_instr, decode_word, disassemble, encode_instr, mnemonic

DECODE_TABLE = [
    (0x00E0, OpCode.CLS),
    (0x00EE, OpCode.RET),
    (0x0123, OpCode.SYS),
    (0x12E4, OpCode.JP),
    (0x2ABC, OpCode.CALL),
    (0x3A12, OpCode.SE_BYTE),
    (0x4A12, OpCode.SNE_BYTE),
    (0x5AB0, OpCode.SE_REG),
    (0x6A3C, OpCode.LD_BYTE),
    (0x7A01, OpCode.ADD_BYTE),
    (0x8AB0, OpCode.LD_REG),
    (0x8AB1, OpCode.OR),
    (0x8AB2, OpCode.AND),
    (0x8AB3, OpCode.XOR),
    (0x8AB4, OpCode.ADD_REG),
    (0x8AB5, OpCode.SUB),
    (0x8AB6, OpCode.SHR),
    (0x8AB7, OpCode.SUBN),
    (0x8ABE, OpCode.SHL),
    (0x9AB0, OpCode.SNE_REG),
    (0xA123, OpCode.LD_I),
    (0xB300, OpCode.JP_V0),
    (0xCA0F, OpCode.RND),
    (0xDAB5, OpCode.DRW),
    (0xEA9E, OpCode.SKP),
    (0xEAA1, OpCode.SKNP),
    (0xFA07, OpCode.LD_VX_DT),
    (0xFA0A, OpCode.LD_VX_K),
    (0xFA15, OpCode.LD_DT_VX),
    (0xFA18, OpCode.LD_ST_VX),
    (0xFA1E, OpCode.ADD_I),
    (0xFA29, OpCode.LD_F),
    (0xFA33, OpCode.LD_B),
    (0xFA55, OpCode.STORE_REGS),
    (0xFA65, OpCode.LOAD_REGS),
]


@pytest.mark.parametrize(("word", "op"), DECODE_TABLE, ids=[f"{w:04X}" for w, _ in DECODE_TABLE])
def test_decode_classifies_every_instruction(word: int, op: OpCode) -> None:
    assert decode_word(word).op == op


@pytest.mark.parametrize("word", [0x5AB1, 0x9AB8, 0x8AB8, 0x8ABF, 0xEA00, 0xEA9F, 0xF000, 0xFAFF])
def test_decode_unknown_patterns(word: int) -> None:
    instr = decode_word(word)
    assert instr.op == OpCode.UNKNOWN
    assert instr.word == word


def test_decode_slices_operand_fields() -> None:
    instr = decode_word(0xD4A7)
    assert instr == Instruction(op=OpCode.DRW, word=0xD4A7, x=0x4, y=0xA, n=0x7, kk=0xA7, nnn=0x4A7)


def test_decode_instr_is_big_endian() -> None:
    blob = bytes([0x00, 0x6A, 0x3C])
    instr = decode_instr(blob, 1)
    assert instr.op == OpCode.LD_BYTE
    assert (instr.x, instr.kk) == (0xA, 0x3C)


def test_decode_instr_past_end() -> None:
    with pytest.raises(EOFError):
        decode_instr(bytes([0x12]), 0)


@pytest.mark.parametrize(("word", "op"), DECODE_TABLE, ids=[f"{w:04X}" for w, _ in DECODE_TABLE])
def test_encode_reproduces_word(word: int, op: OpCode) -> None:
    instr = decode_word(word)
    encoded = encode_instr(op, x=instr.x, y=instr.y, n=instr.n, kk=instr.kk, nnn=instr.nnn)
    assert len(encoded) == INSTR_SIZE
    assert int.from_bytes(encoded, "big") == word


def test_encode_with_only_used_fields() -> None:
    assert encode_instr(OpCode.LD_BYTE, x=0xA, kk=0x3C) == bytes([0x6A, 0x3C])
    assert encode_instr(OpCode.JP, nnn=0x2E4) == bytes([0x12, 0xE4])
    assert encode_instr(OpCode.SUB, x=1, y=2) == bytes([0x81, 0x25])
    assert encode_instr(OpCode.LD_B, x=3) == bytes([0xF3, 0x33])


def test_encode_unknown_is_rejected() -> None:
    with pytest.raises(ValueError, match="UNKNOWN"):
        encode_instr(OpCode.UNKNOWN)


@pytest.mark.parametrize(
    ("word", "text"),
    [
        (0x6A3C, "LD VA, 0x3C"),
        (0x12E4, "JP 0x2E4"),
        (0xB300, "JP V0, 0x300"),
        (0x00E0, "CLS"),
        (0x8125, "SUB V1, V2"),
        (0x8126, "SHR V1"),
        (0xD015, "DRW V0, V1, 5"),
        (0xF233, "LD B, V2"),
        (0xF555, "LD [I], V5"),
        (0xF565, "LD V5, [I]"),
        (0xF50A, "LD V5, K"),
        (0x5121, "DW 0x5121"),
    ],
)
def test_mnemonic(word: int, text: str) -> None:
    assert mnemonic(decode_word(word)) == text


def test_disassemble_marks_trailing_byte() -> None:
    lines = disassemble(bytes([0x6A, 0x3C, 0x12]), 0x200)
    assert lines == ["0x200 - 6A3C - LD VA, 0x3C", "0x202 - 12 - <incomplete>"]
