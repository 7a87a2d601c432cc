"""CHIP-8 machine: register file and memory (Datapath), execution (ControlUnit), runner CLI.

Provides VM execution, logging initialization and a headless runner that
prints the final frame of a program image as text.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from config import ConfigError, load_config
from devices import FONT_SET, GLYPH_SIZE, Keypad, KeyState, RandomSource, SeededRandom, TimerUnit
from display import Display
from isa import INSTR_SIZE, Instruction, OpCode, decode_instr, disassemble, mnemonic

LOGFILE = "processor.log"
VF = 0xF


def init_logging(logfile: str = LOGFILE, debug: bool = False, console: bool = False) -> None:
    """Configure root logger to write to `logfile`.

    If debug=True set DEBUG level. If console=True also echo logs to stdout.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    lvl = logging.DEBUG if debug else logging.CRITICAL
    root.setLevel(lvl)

    if debug:
        file_fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"
    else:
        file_fmt = "%(levelname)-5s %(message)s"

    fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter(file_fmt))
    root.addHandler(fh)

    if debug and console:
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)5s %(message)s"))
        root.addHandler(ch)


# ---------- errors and outcomes ----------
class MachineError(Exception):
    """Base class for everything the machine raises."""


class LoadError(MachineError):
    """Program image does not fit into memory."""


class MachineFault(MachineError):
    """Fatal execution fault; the machine halts."""

    kind = "fault"

    def __init__(self, msg: str, addr: int | None = None) -> None:
        super().__init__(msg)
        self.addr = addr


class StackFault(MachineFault):
    """CALL on a full stack or RET on an empty one."""

    def __init__(self, kind: str, msg: str, addr: int | None = None) -> None:
        super().__init__(msg, addr)
        self.kind = kind


class MemoryFault(MachineFault):
    """Access outside memory capacity."""

    kind = "memory"


class Status(Enum):
    OK = "ok"
    UNKNOWN_OPCODE = "unknown_opcode"
    FAULT = "fault"


@dataclass(frozen=True)
class Outcome:
    """Result of one step."""

    status: Status
    opcode: int | None = None
    fault: str | None = None


OK = Outcome(Status.OK)


class Mode(Enum):
    RUNNING = "running"
    AWAITING_KEY = "awaiting_key"


class Datapath:
    """Datapath (memory + registers + stack + timers + display) for the VM."""

    # configuration
    mem_size: int
    load_address: int
    font_address: int
    stack_depth: int
    steps_per_tick: int
    step_limit: int
    pause_step: int | None
    lenient_log: bool

    memory: bytearray
    program_len: int

    # registers
    V: bytearray
    I: int  # noqa: E741
    PC: int
    stack: list[int]
    SP: int  # number of return addresses on the stack

    timers: TimerUnit
    display: Display
    keypad: KeyState
    rng: RandomSource

    mode: Mode
    wait_register: int | None

    steps: int
    beeps: int
    halted: bool
    idle: bool
    key_schedule: list[tuple[int, int, bool]]

    def __init__(
        self,
        mem_size: int = 4096,
        load_address: int = 0x200,
        font_address: int = 0x000,
        screen_width: int = 64,
        screen_height: int = 32,
        stack_depth: int = 16,
        keypad: KeyState | None = None,
        rng: RandomSource | None = None,
        steps_per_tick: int = 12,
        step_limit: int = 100000,
        pause_step: int | None = None,
        lenient_log: bool = False,
    ) -> None:
        """Fresh memory holding only the font; PC starts at load_address."""
        self.mem_size = int(mem_size)
        self.load_address = int(load_address)
        self.font_address = int(font_address)
        if not (0 <= self.load_address < self.mem_size):
            err = f"load_address 0x{self.load_address:03X} outside memory"
            raise ValueError(err)
        if self.font_address < 0 or self.font_address + len(FONT_SET) > self.mem_size:
            err = f"font_address 0x{self.font_address:03X} leaves no room for the font"
            raise ValueError(err)

        self.memory = bytearray(self.mem_size)
        self.memory[self.font_address : self.font_address + len(FONT_SET)] = FONT_SET
        self.program_len = 0

        self.V = bytearray(16)
        self.I = 0
        self.PC = self.load_address
        self.stack_depth = int(stack_depth)
        self.stack = [0] * self.stack_depth
        self.SP = 0

        self.timers = TimerUnit()
        self.display = Display(screen_width, screen_height)
        self.keypad = keypad if keypad is not None else Keypad()
        self.rng = rng if rng is not None else SeededRandom()

        self.mode = Mode.RUNNING
        self.wait_register = None

        self.steps_per_tick = max(1, int(steps_per_tick))
        self.step_limit = int(step_limit)
        self.pause_step = pause_step
        self.lenient_log = bool(lenient_log)

        self.steps = 0
        self.beeps = 0
        self.halted = False
        self.idle = False
        self.key_schedule = []

    # --- program image ---
    def load_program(self, image: bytes) -> None:
        """Copy `image` verbatim to the load address.

        Raises LoadError if it does not fit.
        """
        image = bytes(image)
        room = self.mem_size - self.load_address
        if len(image) > room:
            err = f"Program image is {len(image)} bytes, only {room} fit at 0x{self.load_address:03X}"
            raise LoadError(err)
        self.memory[self.load_address : self.load_address + len(image)] = image
        self.program_len = len(image)
        logging.debug("Datapath: loaded %d bytes at 0x%03X", len(image), self.load_address)

    # --- memory helpers ---
    def _check_range(self, addr: int, length: int, what: str) -> None:
        if addr < 0 or addr + length > self.mem_size:
            err = f"{what} of {length} bytes at 0x{addr:03X} outside memory (size {self.mem_size})"
            raise MemoryFault(err, addr)

    def read_byte(self, addr: int) -> int:
        self._check_range(addr, 1, "read")
        return self.memory[addr]

    def read_block(self, addr: int, length: int) -> bytes:
        """Read `length` bytes at `addr`.

        Raises MemoryFault for out-of-range reads.
        """
        self._check_range(addr, length, "read")
        return bytes(self.memory[addr : addr + length])

    def write_block(self, addr: int, data: bytes) -> None:
        """Write `data` at `addr`; nothing is written if any byte is out of range."""
        self._check_range(addr, len(data), "write")
        self.memory[addr : addr + len(data)] = data

    def fetch(self) -> Instruction:
        """Decode the instruction word at PC."""
        self._check_range(self.PC, INSTR_SIZE, "fetch")
        return decode_instr(self.memory, self.PC)

    # --- return-address stack ---
    # SP indexes the newest entry; slot 0 is never written, so SP == 0 is empty
    def push_return(self, addr: int) -> None:
        if self.SP + 1 >= self.stack_depth:
            err = f"stack overflow: SP would pass {self.stack_depth - 1}"
            raise StackFault("stack_overflow", err, self.PC)
        self.SP += 1
        self.stack[self.SP] = addr

    def pop_return(self) -> int:
        if self.SP == 0:
            err = "stack underflow: return with empty stack"
            raise StackFault("stack_underflow", err, self.PC)
        addr = self.stack[self.SP]
        self.SP -= 1
        return addr

    # --- scripted host input ---
    def schedule_keys(self, schedule: Iterable[Sequence[Any]]) -> None:
        """Attach a key script: (step, key) or (step, key, "down"|"up") events.

        An event fires right before the step with that 0-based index.
        """
        if not isinstance(self.keypad, Keypad):
            err = "key schedules need the bundled Keypad"
            raise TypeError(err)
        events: list[tuple[int, int, bool]] = []
        for entry in schedule:
            step = int(entry[0])
            # keys written as strings are hex digits ("A"), ints are taken as-is
            key = int(entry[1], 16) if isinstance(entry[1], str) else int(entry[1])
            action = str(entry[2]).lower() if len(entry) > 2 else "down"
            if action not in ("down", "up"):
                err = f"Bad key action {entry[2]!r} (expected 'down' or 'up')"
                raise ValueError(err)
            events.append((step, key, action == "down"))
        self.key_schedule = sorted(events, key=lambda e: e[0])
        logging.debug("Datapath.schedule_keys called, %d events attached", len(self.key_schedule))

    def apply_key_events(self) -> None:
        """Apply scheduled key events that are due at the current step."""
        keypad = self.keypad
        if not self.key_schedule:
            return
        if not isinstance(keypad, Keypad):
            err = "key schedules need the bundled Keypad"
            raise TypeError(err)
        while self.key_schedule and self.key_schedule[0][0] <= self.steps:
            _, key, down = self.key_schedule.pop(0)
            if down:
                keypad.press(key)
            else:
                keypad.release(key)

    def describe(self) -> str:
        """Human-readable register dump."""
        regs = " ".join(f"V{i:X}={v:02X}" for i, v in enumerate(self.V))
        stack = ", ".join(f"0x{a:03X}" for a in self.stack[1 : self.SP + 1])
        return (
            f"PC=0x{self.PC:03X} I=0x{self.I:03X} SP={self.SP} DT={self.timers.delay} ST={self.timers.sound} "
            f"MODE={self.mode.value}\n{regs}\nSTACK: [{stack}]"
        )


class ControlUnit:
    """Runs instructions against a Datapath and owns the step/tick loop."""

    dp: Datapath
    anomalies: list[int]
    last_fault: Outcome | None
    on_beep: Callable[[], None] | None

    def __init__(self, dp: Datapath, on_beep: Callable[[], None] | None = None) -> None:
        """`on_beep` is called each time the sound timer runs out."""
        self.dp = dp
        self.anomalies = []
        self.last_fault = None
        self.on_beep = on_beep

    def _log_step(self, state: str, pc: int, instr: str) -> None:
        # per-step trace is the bulk of the log
        if self.dp.lenient_log:
            return
        dp = self.dp
        regs = " ".join(f"{v:02X}" for v in dp.V)
        left = f"STATE: {state:<12} STEP: {dp.steps:6d} PC: 0x{pc:03X} I: 0x{dp.I:03X} SP: {dp.SP:2d} "
        right = f"DT: {dp.timers.delay:3d} ST: {dp.timers.sound:3d} V: {regs}\tINSTR: {instr}"
        logging.debug(left + right)

    def step(self) -> Outcome:
        """Fetch, decode and execute one instruction.

        While awaiting a key only the key-state query is polled. Faults halt
        the machine; later calls return the same fault without executing.
        """
        dp = self.dp
        if dp.halted and self.last_fault is not None:
            return self.last_fault
        dp.steps += 1
        dp.idle = False
        pc = dp.PC
        try:
            if dp.mode is Mode.AWAITING_KEY:
                return self._poll_key()
            instr = dp.fetch()
            self._log_step("RUNNING", pc, mnemonic(instr))
            dp.PC = (pc + INSTR_SIZE) & 0xFFFF
            return self.exec(instr, pc)
        except MachineFault as e:
            dp.halted = True
            word = (dp.memory[pc] << 8 | dp.memory[pc + 1]) if 0 <= pc < dp.mem_size - 1 else None
            self.last_fault = Outcome(Status.FAULT, opcode=word, fault=e.kind)
            logging.error("[step %d] %s at 0x%03X: %s -> HALT", dp.steps, e.kind, pc, e)
            return self.last_fault

    def _poll_key(self) -> Outcome:
        dp = self.dp
        x = dp.wait_register
        if x is None:
            err = "awaiting a key without a target register"
            raise RuntimeError(err)
        key = dp.keypad.take_new_press()
        if key is None:
            self._log_step("AWAITING_KEY", dp.PC, "wait")
            return OK
        self._store_key(x, key)
        dp.PC = (dp.PC + INSTR_SIZE) & 0xFFFF
        return OK

    def _store_key(self, x: int, key: int) -> None:
        dp = self.dp
        dp.V[x] = key & 0xF
        dp.mode = Mode.RUNNING
        dp.wait_register = None
        logging.debug("[step %d] key 0x%X -> V%X, running", dp.steps, key & 0xF, x)

    def tick(self) -> bool:
        """Advance the delay and sound timers by one tick; return True on beep."""
        dp = self.dp
        beep = dp.timers.tick()
        if beep:
            dp.beeps += 1
            logging.debug("[step %d] sound timer expired -> beep", dp.steps)
            if self.on_beep is not None:
                self.on_beep()
        return beep

    def run(self, max_steps: int | None = None) -> tuple[int, str]:
        """Execute the datapath until halt/idle/pause or the step limit.

        Timers tick every `steps_per_tick` steps. Returns (steps, state).
        """
        dp = self.dp
        limit = dp.step_limit if max_steps is None else int(max_steps)
        state = "stopped"
        while dp.steps < limit:
            if dp.halted:
                state = "halted"
                break
            if dp.pause_step is not None and dp.steps == dp.pause_step:
                self._log_step("PAUSED", dp.PC, "pause")
                state = "paused"
                break

            dp.apply_key_events()
            outcome = self.step()
            if dp.steps % dp.steps_per_tick == 0:
                self.tick()

            if outcome.status is Status.FAULT:
                state = "halted"
                break
            if dp.idle:
                logging.debug("Jump to self at 0x%03X -> idle", dp.PC)
                state = "idle"
                break
            if dp.mode is Mode.AWAITING_KEY and not dp.key_schedule:
                logging.debug("Awaiting key with no scripted input left -> waiting")
                state = "waiting"
                break

        logging.debug("run finished: steps=%d state=%s", dp.steps, state)
        return dp.steps, state

    def exec(self, instr: Instruction, addr: int) -> Outcome:  # noqa: C901
        """Execute a single decoded instruction fetched from `addr`.

        PC already points past the instruction.
        """
        dp = self.dp
        op, x, y = instr.op, instr.x, instr.y
        V = dp.V

        if op == OpCode.UNKNOWN:
            self.anomalies.append(instr.word)
            logging.warning("[step %d] unknown opcode 0x%04X at 0x%03X -> skipped", dp.steps, instr.word, addr)
            return Outcome(Status.UNKNOWN_OPCODE, opcode=instr.word)
        if op == OpCode.SYS:
            logging.debug("SYS 0x%03X ignored", instr.nnn)
            return OK

        # --- control flow ---
        if op == OpCode.CLS:
            dp.display.clear()
            return OK
        if op == OpCode.RET:
            dp.PC = dp.pop_return()
            return OK
        if op == OpCode.JP:
            if instr.nnn == addr:
                dp.idle = True
            dp.PC = instr.nnn
            return OK
        if op == OpCode.CALL:
            dp.push_return(dp.PC)
            dp.PC = instr.nnn
            return OK
        if op == OpCode.JP_V0:
            dp.PC = instr.nnn + V[0]
            return OK

        # --- skips ---
        skip = None
        if op == OpCode.SE_BYTE:
            skip = V[x] == instr.kk
        elif op == OpCode.SNE_BYTE:
            skip = V[x] != instr.kk
        elif op == OpCode.SE_REG:
            skip = V[x] == V[y]
        elif op == OpCode.SNE_REG:
            skip = V[x] != V[y]
        elif op == OpCode.SKP:
            skip = dp.keypad.is_pressed(V[x] & 0xF)
        elif op == OpCode.SKNP:
            skip = not dp.keypad.is_pressed(V[x] & 0xF)
        if skip is not None:
            if skip:
                dp.PC = (dp.PC + INSTR_SIZE) & 0xFFFF
            return OK

        # --- byte immediates ---
        if op == OpCode.LD_BYTE:
            V[x] = instr.kk
            return OK
        if op == OpCode.ADD_BYTE:
            V[x] = (V[x] + instr.kk) & 0xFF
            return OK
        if op == OpCode.RND:
            V[x] = dp.rng.random_byte() & instr.kk
            return OK

        # --- register ALU; VF is written after Vx ---
        if op == OpCode.LD_REG:
            V[x] = V[y]
            return OK
        if op == OpCode.OR:
            V[x] |= V[y]
            return OK
        if op == OpCode.AND:
            V[x] &= V[y]
            return OK
        if op == OpCode.XOR:
            V[x] ^= V[y]
            return OK
        if op == OpCode.ADD_REG:
            total = V[x] + V[y]
            V[x] = total & 0xFF
            V[VF] = 1 if total > 0xFF else 0
            return OK
        if op == OpCode.SUB:
            vx, vy = V[x], V[y]
            V[x] = (vx - vy) & 0xFF
            V[VF] = 1 if vx >= vy else 0
            return OK
        if op == OpCode.SUBN:
            vx, vy = V[x], V[y]
            V[x] = (vy - vx) & 0xFF
            V[VF] = 1 if vy >= vx else 0
            return OK
        if op == OpCode.SHR:
            vx = V[x]
            V[x] = vx >> 1
            V[VF] = vx & 0x1
            return OK
        if op == OpCode.SHL:
            vx = V[x]
            V[x] = (vx << 1) & 0xFF
            V[VF] = (vx & 0x80) >> 7
            return OK

        # --- index register and memory ---
        if op == OpCode.LD_I:
            dp.I = instr.nnn & 0xFFF
            return OK
        if op == OpCode.ADD_I:
            dp.I = (dp.I + V[x]) & 0xFFF
            return OK
        if op == OpCode.LD_F:
            dp.I = (dp.font_address + (V[x] & 0xF) * GLYPH_SIZE) & 0xFFF
            return OK
        if op == OpCode.LD_B:
            value = V[x]
            dp.write_block(dp.I, bytes([value // 100, (value // 10) % 10, value % 10]))
            return OK
        if op == OpCode.STORE_REGS:
            dp.write_block(dp.I, bytes(V[: x + 1]))
            return OK
        if op == OpCode.LOAD_REGS:
            V[: x + 1] = dp.read_block(dp.I, x + 1)
            return OK

        if op == OpCode.DRW:
            sprite = dp.read_block(dp.I, instr.n)
            collision = dp.display.draw_sprite(V[x], V[y], sprite)
            V[VF] = 1 if collision else 0
            return OK

        # --- timers and keys ---
        if op == OpCode.LD_VX_DT:
            V[x] = dp.timers.delay
            return OK
        if op == OpCode.LD_DT_VX:
            dp.timers.set_delay(V[x])
            return OK
        if op == OpCode.LD_ST_VX:
            dp.timers.set_sound(V[x])
            return OK
        if op == OpCode.LD_VX_K:
            # only a press made while waiting counts
            stale = dp.keypad.take_new_press()
            if stale is not None:
                logging.debug("[step %d] dropped key 0x%X pressed before LD V%X, K", dp.steps, stale, x)
            dp.PC = addr
            dp.mode = Mode.AWAITING_KEY
            dp.wait_register = x
            logging.debug("[step %d] LD V%X, K -> awaiting key", dp.steps, x)
            return OK

        self.anomalies.append(instr.word)
        logging.warning("[step %d] unhandled opcode 0x%04X at 0x%03X -> skipped", dp.steps, instr.word, addr)
        return Outcome(Status.UNKNOWN_OPCODE, opcode=instr.word)


# ---------- Public API ----------
def build_machine(
    program: bytes,
    config: str | dict[str, Any] | None = None,
    keypad: KeyState | None = None,
    rng: RandomSource | None = None,
    on_beep: Callable[[], None] | None = None,
) -> ControlUnit:
    """Create a configured machine with `program` loaded at the load address."""
    cfg = load_config(config)
    dp = Datapath(
        mem_size=cfg["mem_size"],
        load_address=cfg["load_address"],
        font_address=cfg["font_address"],
        screen_width=cfg["screen_width"],
        screen_height=cfg["screen_height"],
        stack_depth=cfg["stack_depth"],
        keypad=keypad,
        rng=rng if rng is not None else SeededRandom(cfg["seed"]),
        steps_per_tick=round(cfg["cpu_hz"] / cfg["timer_hz"]),
        step_limit=cfg["step_limit"],
        pause_step=cfg["pause_step"],
        lenient_log=cfg["lenient_log"],
    )
    dp.load_program(program)
    return ControlUnit(dp, on_beep=on_beep)


def run_bytes(
    program: bytes,
    config: str | dict[str, Any] | None = None,
    key_schedule: Iterable[Sequence[Any]] | None = None,
) -> tuple[ControlUnit, int, str]:
    """Run VM on given bytes and config and return (control_unit, steps, state)."""
    cu = build_machine(program, config)
    if key_schedule:
        cu.dp.schedule_keys(key_schedule)
    steps, state = cu.run()
    return cu, steps, state


def parse_key_script(path: str) -> list[tuple[int, str, str]]:
    """Parse key script file with lines "<step> <hex key> [down|up]".

    Blank lines and lines starting with '#' are skipped.
    """
    result: list[tuple[int, str, str]] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split()
            if len(parts) not in (2, 3):
                err = f"Bad key script line: {line!r}"
                raise ValueError(err)
            try:
                step = int(parts[0])
                int(parts[1], 16)
            except ValueError as e:
                err = f"Bad key script line (bad step or key): {line!r}"
                raise ValueError(err) from e
            action = parts[2] if len(parts) == 3 else "down"
            result.append((step, parts[1], action))
    return result


# ---------- CLI ----------
def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(
        description="Headless VM runner. Runs a program image and prints the final frame as text."
    )
    ap.add_argument("program", help="program image (raw bytes, loaded at the load address)")
    ap.add_argument("--config", help="path to yaml config", default=None)
    ap.add_argument("--steps", type=int, default=None, help="stop after this many steps (overrides step_limit)")
    ap.add_argument("--keys", default=None, help="key script file ('<step> <hex key> [down|up]' per line)")
    ap.add_argument("--disasm", action="store_true", help="print the disassembly and exit")

    help_debug = "enable debug logging to logfile (detailed per-step state)."
    help_logfile = "path to processor log"
    help_console = "also echo logs to console (only when --debug)"
    ap.add_argument("--debug", action="store_true", help=help_debug)
    ap.add_argument("--logfile", default=LOGFILE, help=help_logfile)
    ap.add_argument("--console", action="store_true", help=help_console)
    args = ap.parse_args(argv)

    init_logging(logfile=args.logfile, debug=args.debug, console=args.console)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("Bad config:", e)
        return 2

    code_path = Path(args.program)
    if not code_path.exists():
        print("Program file not found:", args.program)
        return 2
    image = code_path.read_bytes()

    if args.disasm:
        sys.stdout.write("\n".join(disassemble(image, cfg["load_address"])))
        sys.stdout.write("\n")
        return 0

    try:
        cu = build_machine(image, cfg)
    except LoadError as e:
        print("Cannot load program:", e)
        return 2

    if args.keys:
        if not Path(args.keys).exists():
            print("Key script file not found:", args.keys)
            return 2
        try:
            cu.dp.schedule_keys(parse_key_script(args.keys))
        except ValueError as e:
            print("Bad key script:", e)
            return 2

    steps, state = cu.run(args.steps)

    sys.stdout.write(cu.dp.display.render_text())
    sys.stdout.write("\n")
    if state == "halted":
        sys.stdout.write(cu.dp.describe())
        sys.stdout.write("\n")
    sys.stdout.write(f"STEPS: {steps}\nSTATE: {state}\n")
    return 1 if state == "halted" else 0


if __name__ == "__main__":
    sys.exit(main())
