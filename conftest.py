"""Shared pytest hooks: golden program records and a machine factory."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from devices import Keypad, SequenceRandom
from processor import ControlUnit, build_machine

GOLDEN_GLOB = "golden/*.yaml"


def pytest_configure(config: Any) -> None:
    config.addinivalue_line(
        "markers",
        "golden_test(pattern): run the test once per YAML program record matching pattern",
    )


def _load_record(path: Path) -> dict[str, Any]:
    # a broken record still becomes a test case so the failure names the file
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        data = {"__yaml_load_error__": str(e)}
    if not isinstance(data, dict):
        data = {"__yaml_load_error__": f"expected a mapping, got {type(data).__name__}"}
    data.setdefault("__path__", str(path))
    data.setdefault("__name__", path.name)
    return data


def pytest_generate_tests(metafunc: Any) -> None:
    if "golden" not in metafunc.fixturenames:
        return

    markers = list(metafunc.definition.iter_markers(name="golden_test"))
    patterns = [m.args[0] for m in markers if m.args] or [GOLDEN_GLOB]

    root = Path(metafunc.config.rootpath)
    paths = [p for pat in patterns for p in sorted(root.glob(pat))]

    metafunc.parametrize(
        "golden",
        [_load_record(p) for p in paths],
        ids=[p.stem for p in paths],
    )


@pytest.fixture
def machine() -> Callable[..., ControlUnit]:
    """Factory: build a machine from instruction words with a scripted keypad and RNG."""

    def _make(*chunks: bytes, rng: list[int] | None = None, **config: Any) -> ControlUnit:
        return build_machine(
            b"".join(chunks),
            config or None,
            keypad=Keypad(),
            rng=SequenceRandom(rng or [0]),
        )

    return _make
