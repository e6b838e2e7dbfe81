"""
Runtime support for generated state machines

Generated modules import this module and nothing else from machine_factory.
It holds the transition-table entry types, the dispatch outcome and step
enumerations, and the errors a generated machine can raise to its caller.

Cancellation hazard (event-driven machines):
    handle_event() runs pre_transition, should_exit, on_exit, the transition
    body, on_enter and post_transition one after another. They are not one
    atomic step. If a hook raises, or an asynchronous dispatch is cancelled
    between two steps, hooks that already ran keep their effects on the
    context and nothing is rolled back. The machine remembers the step that
    was in flight (``interrupted_step``) and refuses further events with
    DispatchInterruptedError until the caller inspects the context and calls
    ``recover()``.
"""

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple


class EntryKind(enum.Enum):
    """How a (state, event) pair of the transition table is resolved"""
    EXPLICIT = "explicit"
    CATCH_ALL = "catch_all"
    UNHANDLED = "unhandled"


@dataclass(frozen=True)
class Entry:
    """One resolved cell of the transition table"""
    kind: EntryKind
    handler: Optional[Callable[..., Any]] = None


UNHANDLED = Entry(EntryKind.UNHANDLED)


def explicit(handler: Callable[..., Any]) -> Entry:
    """Entry for a transition declared under its state"""
    return Entry(EntryKind.EXPLICIT, handler)


def catch_all(handler: Callable[..., Any]) -> Entry:
    """Entry falling back to the catch-all body"""
    return Entry(EntryKind.CATCH_ALL, handler)


def freeze_table(entries: Dict[Tuple[str, str], Entry]) -> Mapping[Tuple[str, str], Entry]:
    """Read-only view of a transition table, keyed by (state variant, event variant)"""
    return MappingProxyType(dict(entries))


class DispatchOutcome(enum.Enum):
    """Result of handing an event to an event-driven machine"""
    TRANSITIONED = "transitioned"
    # should_exit() returned False: no other hook ran, state unchanged
    REFUSED = "refused"
    # no explicit entry and no catch-all: state unchanged
    UNHANDLED = "unhandled"

    @property
    def handled(self) -> bool:
        return self is not DispatchOutcome.UNHANDLED


class DispatchStep(enum.Enum):
    """Steps of one dispatch, in execution order"""
    PRE_TRANSITION = 1
    SHOULD_EXIT = 2
    ON_EXIT = 3
    TRANSITION = 4
    ON_ENTER = 5
    POST_TRANSITION = 6


class MachineError(Exception):
    """Base class for errors raised by generated machines"""


class ConsumedMachineError(MachineError):
    """A deterministic machine instance was used after a transition consumed it"""


class StateTagError(MachineError, TypeError):
    """A transition produced a state value of the wrong type for its destination"""


class VariantError(MachineError, TypeError):
    """A value cannot be converted to a state or event enumeration variant"""


class DispatchInterruptedError(MachineError):
    """A previous dispatch stopped between two steps; call recover() first"""

    def __init__(self, step: DispatchStep):
        self.step = step
        super().__init__(
            f"previous dispatch was interrupted at {step.name}; "
            f"the context may be partially updated, call recover() before dispatching again"
        )
