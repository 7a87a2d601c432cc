"""Monochrome frame buffer and the XOR sprite compositor."""

from __future__ import annotations

import logging

SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32


class Display:
    """Binary pixel grid, stored row-major with one byte per pixel."""

    width: int
    height: int
    pixels: bytearray
    dirty: bool

    def __init__(self, width: int = SCREEN_WIDTH, height: int = SCREEN_HEIGHT) -> None:
        if width <= 0 or height <= 0:
            msg = f"Bad display size {width}x{height}"
            raise ValueError(msg)
        self.width = int(width)
        self.height = int(height)
        self.pixels = bytearray(self.width * self.height)
        # set on every change; the host clears it after presenting a frame
        self.dirty = True

    def clear(self) -> None:
        """Turn every pixel off."""
        self.pixels[:] = bytes(len(self.pixels))
        self.dirty = True

    def get_pixel(self, x: int, y: int) -> int:
        """Return 1 if pixel is ON, return 0 if pixel is OFF (coordinates wrap)."""
        return self.pixels[(y % self.height) * self.width + (x % self.width)]

    def draw_sprite(self, x: int, y: int, sprite: bytes) -> bool:
        """XOR `sprite` onto the grid with its top-left corner at (x, y).

        Each sprite byte is one row of 8 pixels, most-significant bit first.
        Both the origin and every pixel position wrap at the screen edges.
        Returns True if any lit pixel was turned off (a collision).
        """
        collision = False
        x0 = x % self.width
        y0 = y % self.height
        for row, sprite_byte in enumerate(sprite):
            # increment y by one for each sprite byte, wrapping at the bottom
            base = ((y0 + row) % self.height) * self.width
            for bit in range(8):
                if not (sprite_byte >> (7 - bit)) & 1:
                    continue
                idx = base + (x0 + bit) % self.width
                if self.pixels[idx]:
                    collision = True
                self.pixels[idx] ^= 1
        self.dirty = True
        logging.debug("draw_sprite at (%d, %d) rows=%d collision=%s", x0, y0, len(sprite), collision)
        return collision

    def frame(self) -> bytes:
        """Return a read-only copy of the pixels, row-major."""
        return bytes(self.pixels)

    def rows(self) -> list[list[int]]:
        """Return the pixels as a list of rows."""
        w = self.width
        return [list(self.pixels[r * w : (r + 1) * w]) for r in range(self.height)]

    def lit(self) -> int:
        """Count pixels that are ON."""
        return sum(self.pixels)

    def render_text(self, on: str = "#", off: str = ".") -> str:
        """Render the frame as text, one line per row."""
        return "\n".join("".join(on if p else off for p in row) for row in self.rows())
