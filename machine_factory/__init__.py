"""
machine_factory: declarative state machine code generator

Turns an XML specification block into a Python module holding either a
deterministic (typestate) machine or an event-driven machine dispatched
through a frozen transition table.
"""

from machine_factory.codegen import CodeGenerator
from machine_factory.errors import (
    CodeGenerationError,
    MachineFactoryError,
    SpecParseError,
    SpecSemanticError,
)
from machine_factory.spec_parser import SpecParser, StateMachineSpec
from machine_factory.transition_table import TransitionTable, TransitionTableBuilder
from machine_factory.validator import SpecValidator

__version__ = "0.1.0"

__all__ = [
    "CodeGenerator",
    "CodeGenerationError",
    "MachineFactoryError",
    "SpecParseError",
    "SpecParser",
    "SpecSemanticError",
    "SpecValidator",
    "StateMachineSpec",
    "TransitionTable",
    "TransitionTableBuilder",
    "generate_source",
]


def generate_source(text: str, source=None) -> str:
    """Parse, validate and render one specification block, returning the module source"""
    return CodeGenerator().render_string(text, source=source)
