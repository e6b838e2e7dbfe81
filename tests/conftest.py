"""Shared fixtures: specification files and loading of generated modules.

Generated source is executed inside a fresh module object registered in
sys.modules, so dataclasses and ABCs behave as in an imported module.
"""

import itertools
import sys
import types
from pathlib import Path

import pytest

from machine_factory import CodeGenerator

FIXTURES = Path(__file__).parent / "fixtures"

_counter = itertools.count()


@pytest.fixture(scope="session")
def fixtures_dir() -> Path:
    """Directory holding the XML specification fixtures."""
    return FIXTURES


@pytest.fixture(scope="session")
def spec_text():
    """Read a specification fixture by file stem."""

    def _read(stem: str) -> str:
        return (FIXTURES / f"{stem}.xml").read_text(encoding="utf-8")

    return _read


@pytest.fixture
def load_module():
    """Execute generated source as a module, removed from sys.modules afterwards."""
    loaded = []

    def _load(source: str, name: str = "generated"):
        module_name = f"_machine_factory_test_{name}_{next(_counter)}"
        module = types.ModuleType(module_name)
        sys.modules[module_name] = module
        loaded.append(module_name)
        exec(compile(source, f"<{module_name}>", "exec"), module.__dict__)
        return module

    yield _load

    for module_name in loaded:
        sys.modules.pop(module_name, None)


@pytest.fixture
def build_machine(load_module, spec_text):
    """Generate and load the module for a specification fixture."""

    def _build(stem: str):
        source = CodeGenerator().render_string(spec_text(stem), source=f"{stem}.xml")
        return load_module(source, stem)

    return _build
