"""Golden-test runner for program images.

Each golden YAML record holds a program (hex words), an optional config and
key script, and the machine state expected once the run stops.
"""

from __future__ import annotations

import logging
from typing import Any

import pytest
from generate_golden_fields import build_code_hex, program_bytes, run_record

# fields compared verbatim against generate_golden_fields.observe()
SCALAR_FIELDS = ("steps", "state", "pc", "index", "sp", "delay", "sound", "beeps", "lit", "fault", "unknown")


@pytest.mark.golden_test("golden/*.yaml")
def test_program_golden(golden: Any, caplog: Any) -> None:
    """Run one golden record and compare the observed machine state."""
    assert "__yaml_load_error__" not in golden, golden.get("__yaml_load_error__")
    caplog.set_level(logging.DEBUG)

    cu, observed = run_record(golden)
    dp = cu.dp
    expect = golden.get("expect") or {}

    def _mismatch(msg_title: str, got_text: Any, expected_text: Any) -> str:
        return f"{golden['__name__']}: {msg_title}\n--- got ---\n{got_text}\n--- expected ---\n{expected_text}"

    for field in SCALAR_FIELDS:
        if field in expect:
            assert observed.get(field) == expect[field], _mismatch(field, observed.get(field), expect[field])

    # registers not listed must be zero
    if "registers" in expect:
        assert observed["registers"] == expect["registers"], _mismatch(
            "registers", observed["registers"], expect["registers"]
        )

    if "memory" in expect:
        for k, v in expect["memory"].items():
            addr = int(k)
            assert dp.memory[addr] == int(v), _mismatch(f"memory[{addr}]", dp.memory[addr], v)

    if "screen" in expect:
        got_rows = dp.display.render_text().splitlines()
        for i, exp_row in enumerate(expect["screen"]):
            assert got_rows[i].startswith(exp_row), _mismatch(f"screen row {i}", got_rows[i], exp_row)

    if "pixels_on" in expect:
        for x, y in expect["pixels_on"]:
            assert dp.display.get_pixel(x, y) == 1, _mismatch("pixel", (x, y), "on")

    if "out_code_hex" in expect:
        got = build_code_hex(program_bytes(golden), dp.load_address)
        exp = expect["out_code_hex"].strip()
        assert got.strip() == exp, _mismatch("code hex", got, exp)

    # every fault and anomaly leaves a trace in the log
    if "fault" in expect:
        assert any(r.levelno == logging.ERROR for r in caplog.records)
    if "unknown" in expect:
        assert any(r.levelno == logging.WARNING for r in caplog.records)
