"""Load custom scenarios from a Python file via importlib."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

from ledgerload._internal.errors import ConfigError, ScenarioError
from ledgerload.dsl.scenario import Scenario


def load_scenarios(file_path: str | Path) -> list[Scenario]:
    """Import ``file_path`` and return every module-level :class:`Scenario`.

    Args:
        file_path: Path to a ``.py`` file defining scenarios.

    Returns:
        The scenarios in definition order.

    Raises:
        ScenarioError: If the file is missing, cannot be imported, or
            defines no scenario.
        ConfigError: If a scenario in the file fails validation.
    """
    path = Path(file_path)

    if not path.exists():
        msg = f"Scenario file not found: {path}"
        raise ScenarioError(msg)

    if path.suffix != ".py":
        msg = f"Scenario file must be a .py file, got: {path}"
        raise ScenarioError(msg)

    module_name = f"ledgerload_scenario_{path.stem}"

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        msg = f"Could not create module spec for: {path}"
        raise ScenarioError(msg)

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module

    try:
        spec.loader.exec_module(module)
    except ConfigError:
        sys.modules.pop(module_name, None)
        raise
    except Exception as exc:
        sys.modules.pop(module_name, None)
        msg = f"Failed to import scenario file {path}: {exc}"
        raise ScenarioError(msg) from exc

    scenarios = [obj for obj in vars(module).values() if isinstance(obj, Scenario)]

    if not scenarios:
        sys.modules.pop(module_name, None)
        msg = f"No Scenario defined at module level in {path}"
        raise ScenarioError(msg)

    return scenarios


def load_scenario(file_path: str | Path, name: str | None = None) -> Scenario:
    """Return the scenario called ``name`` from ``file_path``, or its first one.

    Raises:
        ScenarioError: If ``name`` is given and not defined in the file.
    """
    scenarios = load_scenarios(file_path)
    if name is None:
        return scenarios[0]
    for scenario in scenarios:
        if scenario.name == name:
            return scenario
    msg = f"Scenario {name!r} not found in {file_path}"
    raise ScenarioError(msg)
