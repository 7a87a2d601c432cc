"""Machine settings: defaults, YAML overrides and range checks."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from devices import FONT_SET


DEFAULTS: dict[str, Any] = {
    "mem_size": 4096,
    "load_address": 0x200,
    "font_address": 0x000,
    "screen_width": 64,
    "screen_height": 32,
    "stack_depth": 16,
    "cpu_hz": 700,
    "timer_hz": 60,
    "step_limit": 100000,
    "pause_step": None,
    "seed": None,
    "lenient_log": False,
}

# I is a 12-bit register, so nothing past 4 KiB is addressable
MAX_MEM_SIZE = 0x1000

_INT_KEYS = (
    "mem_size",
    "load_address",
    "font_address",
    "screen_width",
    "screen_height",
    "stack_depth",
    "cpu_hz",
    "timer_hz",
    "step_limit",
)
_OPTIONAL_INT_KEYS = ("pause_step", "seed")


class ConfigError(ValueError):
    """Settings could not be read or are out of range."""


def _as_int(v: Any) -> int:
    # YAML users write addresses as "0x200"
    if isinstance(v, str):
        return int(v, 0)
    if isinstance(v, bool):
        msg = f"expected integer, got {v!r}"
        raise TypeError(msg)
    return int(v)


def _as_bool(v: Any) -> bool:
    if not isinstance(v, bool):
        msg = f"expected true or false, got {v!r}"
        raise TypeError(msg)
    return v


def _convert_types(cfg: dict[str, Any]) -> None:
    """Coerce every setting to int/None/bool in place."""
    try:
        for key in _INT_KEYS:
            v = cfg.get(key)
            cfg[key] = _as_int(DEFAULTS[key] if v is None else v)

        for key in _OPTIONAL_INT_KEYS:
            v = cfg.get(key)
            cfg[key] = None if v is None else _as_int(v)

        cfg["lenient_log"] = _as_bool(cfg["lenient_log"])
    except (TypeError, ValueError) as e:
        msg = f"Bad value type: {e}"
        raise ConfigError(msg) from e


def _validate_cfg(cfg: dict[str, Any]) -> None:
    """Check ranges and the memory layout of a converted config."""
    if not (0 < cfg["mem_size"] <= MAX_MEM_SIZE):
        msg = f"mem_size must be in range 1..{MAX_MEM_SIZE}"
        raise ConfigError(msg)

    if not (0 <= cfg["load_address"] < cfg["mem_size"]):
        max_idx = cfg["mem_size"] - 1
        msg = f"load_address ({cfg['load_address']}) out of memory range (0..{max_idx})"
        raise ConfigError(msg)

    if cfg["load_address"] % 2:
        msg = "load_address must be even"
        raise ConfigError(msg)

    font_end = cfg["font_address"] + len(FONT_SET)
    if cfg["font_address"] < 0 or font_end > cfg["load_address"]:
        msg = f"font region (0x{cfg['font_address']:03X}..0x{font_end:03X}) must end before load_address"
        raise ConfigError(msg)

    for key in ("screen_width", "screen_height", "stack_depth", "cpu_hz", "timer_hz"):
        if cfg[key] <= 0:
            msg = f"{key} must be positive"
            raise ConfigError(msg)

    if cfg["timer_hz"] > cfg["cpu_hz"]:
        msg = "timer_hz must not exceed cpu_hz"
        raise ConfigError(msg)

    if cfg["step_limit"] < 0:
        msg = "step_limit must be non-negative"
        raise ConfigError(msg)

    if cfg["pause_step"] is not None and cfg["pause_step"] < 0:
        msg = "pause_step must be non-negative or null"
        raise ConfigError(msg)


def _read_yaml(path: str) -> dict[str, Any]:
    p = Path(path)
    if not p.is_file():
        msg = f"Config file not found: {path}"
        raise ConfigError(msg)
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        msg = f"Cannot read config file {path}: {e}"
        raise ConfigError(msg) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Config file {path} must hold a mapping of settings"
        raise ConfigError(msg)
    return data


def load_config(source: str | dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a machine configuration from `source`.

    `source` may be None (all defaults), a dict of overrides or the path of a
    YAML file with overrides. Missing keys fall back to DEFAULTS; unknown keys,
    bad types and out-of-range values raise ConfigError.
    """
    if source is None:
        overrides: dict[str, Any] = {}
    elif isinstance(source, dict):
        overrides = source
    elif isinstance(source, str):
        overrides = _read_yaml(source)
    else:
        msg = f"Cannot load config from {type(source).__name__}"
        raise ConfigError(msg)

    unknown = sorted(set(overrides) - set(DEFAULTS))
    if unknown:
        msg = f"Unknown config keys: {', '.join(unknown)}"
        raise ConfigError(msg)

    cfg = {**DEFAULTS, **overrides}
    _convert_types(cfg)
    _validate_cfg(cfg)
    return cfg
