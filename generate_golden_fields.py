#!/usr/bin/env python3
"""
Fill the `expect` block of a golden YAML program record.

Runs the record's program and writes the observed machine state
(registers, timers, screen, disassembly ...) back into the file.
Usage: python generate_golden_fields.py path/to/golden.yaml
"""

from __future__ import annotations

import os
import sys
from typing import Any

import yaml

from isa import disassemble
from processor import ControlUnit, run_bytes


def program_bytes(record: dict[str, Any]) -> bytes:
    """Assemble the record's `program`: hex words, ';' starts a comment."""
    src = record.get("program")
    if not src:
        err = "record has no program"
        raise ValueError(err)
    lines = src if isinstance(src, list) else str(src).splitlines()
    digits = "".join("".join(str(line).split(";", 1)[0].split()) for line in lines)
    return bytes.fromhex(digits)


def build_code_hex(code_bytes: bytes, origin: int = 0x200) -> str:
    return "\n".join(disassemble(code_bytes, origin))


def observe(cu: ControlUnit, steps: int, state: str) -> dict[str, Any]:
    """Collect the comparable machine state after a run."""
    dp = cu.dp
    result: dict[str, Any] = {
        "steps": steps,
        "state": state,
        "pc": dp.PC,
        "index": dp.I,
        "sp": dp.SP,
        "registers": {f"V{i:X}": v for i, v in enumerate(dp.V) if v},
        "delay": dp.timers.delay,
        "sound": dp.timers.sound,
        "beeps": dp.beeps,
        "lit": dp.display.lit(),
    }
    if cu.anomalies:
        result["unknown"] = [f"0x{w:04X}" for w in cu.anomalies]
    if cu.last_fault is not None:
        result["fault"] = cu.last_fault.fault
    return result


def run_record(record: dict[str, Any]) -> tuple[ControlUnit, dict[str, Any]]:
    """Run one golden record and return the machine plus its observed state."""
    cu, steps, state = run_bytes(
        program_bytes(record),
        record.get("config"),
        key_schedule=record.get("key_schedule"),
    )
    return cu, observe(cu, steps, state)


def main(path: str) -> None:
    if not os.path.exists(path):
        print("File not found:", path)
        sys.exit(2)

    with open(path, "r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}

    if "program" not in doc:
        print("No 'program' found in YAML - nothing to run")
        sys.exit(2)

    cu, observed = run_record(doc)
    target = doc.setdefault("expect", {})
    target.update(observed)
    if observed["lit"]:
        target["screen"] = cu.dp.display.render_text().splitlines()
    target["out_code_hex"] = build_code_hex(program_bytes(doc), cu.dp.load_address)

    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(doc, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    print(f"Updated {path} with observed state and out_code_hex.")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: generate_golden_fields.py path/to/golden.yaml")
        sys.exit(1)
    main(sys.argv[1])
