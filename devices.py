"""Peripherals around the core: font set, keypad, random source and timers."""

from __future__ import annotations

import logging
import random
from collections import deque
from collections.abc import Iterable
from typing import Protocol

# 16 glyphs (0..F), 5 bytes each, one row per byte
FONT_SET = bytes(
    [
        0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
        0x20, 0x60, 0x20, 0x20, 0x70,  # 1
        0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
        0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
        0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
        0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
        0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
        0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
        0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
        0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
        0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
        0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
        0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
        0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
        0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
        0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
    ]
)  # fmt: skip
GLYPH_SIZE = 5
KEY_COUNT = 16


# ---------- keys ----------
class KeyState(Protocol):
    """What the core asks of the host's keyboard."""

    def is_pressed(self, key: int) -> bool: ...

    def take_new_press(self) -> int | None: ...


class Keypad:
    """Host-side key state: the set of held keys plus the latest unconsumed press.

    A press is recorded on the transition from released to held; holding a
    key down does not record it again. A newer press replaces one that was
    never taken.
    """

    held: set[int]
    pending: deque[int]

    def __init__(self) -> None:
        self.held = set()
        self.pending = deque(maxlen=1)

    @staticmethod
    def _check(key: int) -> int:
        key = int(key)
        if not 0 <= key < KEY_COUNT:
            msg = f"Key {key} out of range 0..{KEY_COUNT - 1}"
            raise ValueError(msg)
        return key

    def press(self, key: int) -> None:
        key = self._check(key)
        if key not in self.held:
            self.held.add(key)
            self.pending.append(key)
            logging.debug("[KEY] 0x%X down", key)

    def release(self, key: int) -> None:
        key = self._check(key)
        if key in self.held:
            self.held.discard(key)
            logging.debug("[KEY] 0x%X up", key)

    def set_pressed(self, keys: Iterable[int]) -> None:
        """Replace the held set with `keys`, recording the new presses."""
        wanted = {self._check(k) for k in keys}
        for key in sorted(self.held - wanted):
            self.release(key)
        for key in sorted(wanted - self.held):
            self.press(key)

    def clear(self) -> None:
        self.held.clear()
        self.pending.clear()

    def is_pressed(self, key: int) -> bool:
        return (int(key) & 0xF) in self.held

    def take_new_press(self) -> int | None:
        """Return the key pressed since the last query, or None."""
        if not self.pending:
            return None
        return self.pending.popleft()


# ---------- randomness ----------
class RandomSource(Protocol):
    """Byte generator used by RND."""

    def random_byte(self) -> int: ...


class SeededRandom:
    """Random bytes from a private generator; a fixed seed makes runs repeatable."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def random_byte(self) -> int:
        return self._rng.randint(0, 255)


class SequenceRandom:
    """Replay a fixed cycle of bytes (for tests)."""

    def __init__(self, values: Iterable[int]) -> None:
        self.values = [int(v) & 0xFF for v in values]
        if not self.values:
            msg = "SequenceRandom needs at least one value"
            raise ValueError(msg)
        self.pos = 0

    def random_byte(self) -> int:
        v = self.values[self.pos]
        self.pos = (self.pos + 1) % len(self.values)
        return v


# ---------- timers ----------
class TimerUnit:
    """Delay and sound counters, decremented once per external tick."""

    delay: int
    sound: int

    def __init__(self) -> None:
        self.delay = 0
        self.sound = 0

    def set_delay(self, value: int) -> None:
        self.delay = int(value) & 0xFF

    def set_sound(self, value: int) -> None:
        self.sound = int(value) & 0xFF

    @property
    def sound_active(self) -> bool:
        return self.sound > 0

    def tick(self) -> bool:
        """Decrement both counters; return True when the sound timer runs out."""
        if self.delay > 0:
            self.delay -= 1
        beep = False
        if self.sound > 0:
            self.sound -= 1
            beep = self.sound == 0
        return beep
