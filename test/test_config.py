"""Config loader: defaults, overlays, YAML files and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from config import DEFAULTS, ConfigError, load_config


def test_defaults() -> None:
    cfg = load_config()
    assert cfg == DEFAULTS
    assert cfg is not DEFAULTS


def test_dict_overlay() -> None:
    cfg = load_config({"screen_width": 128, "seed": "7"})
    assert cfg["screen_width"] == 128
    assert cfg["seed"] == 7
    assert cfg["mem_size"] == 4096


def test_yaml_file(tmp_path: Path) -> None:
    p = tmp_path / "cfg.yaml"
    p.write_text("load_address: 0x300\ncpu_hz: 500\nlenient_log: true\n", encoding="utf-8")
    cfg = load_config(str(p))
    assert cfg["load_address"] == 0x300
    assert cfg["cpu_hz"] == 500
    assert cfg["lenient_log"] is True


def test_hex_strings_are_accepted() -> None:
    assert load_config({"font_address": "0x50"})["font_address"] == 0x50


def test_missing_file() -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config("/nonexistent/cfg.yaml")


def test_yaml_must_be_mapping(tmp_path: Path) -> None:
    p = tmp_path / "cfg.yaml"
    p.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(str(p))


def test_unsupported_input() -> None:
    with pytest.raises(ConfigError):
        load_config(42)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "override",
    [
        {"mem_size": 0},
        {"mem_size": 0x2000},
        {"load_address": 4096},
        {"load_address": 0x201},
        {"font_address": 0x1D0},
        {"screen_width": 0},
        {"stack_depth": -1},
        {"timer_hz": 0},
        {"timer_hz": 1000},
        {"step_limit": -5},
        {"pause_step": -1},
        {"cpu_hz": "fast"},
        {"step_limit": True},
        {"lenient_log": "false"},
        {"lenient_log": 1},
        {"no_such_key": 1},
    ],
)
def test_invalid_values(override: dict) -> None:
    with pytest.raises(ConfigError):
        load_config(override)
