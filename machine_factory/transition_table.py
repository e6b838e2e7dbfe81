"""
Transition table for event-driven machines

Compiles the transitions declared under each state into a complete
(state, event) -> entry mapping. Pairs without an explicit transition
resolve to the catch-all body when one is declared and to UNHANDLED
otherwise. The generated module carries the same mapping as a frozen
dict, so dispatch is a single keyed lookup.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from machine_factory.errors import SpecSemanticError
from machine_factory.runtime import EntryKind
from machine_factory.spec_parser import StateMachineSpec, TransitionSpec

CATCH_ALL_HANDLER = '_handle__unhandled_event'


def handler_name(state: str, event: str) -> str:
    """Name of the generated function holding the body of one transition"""
    return f"_handle__{state}__{event}"


@dataclass(frozen=True)
class TableEntry:
    """Resolved transition for one (state, event) pair"""
    state: str
    event: str
    kind: EntryKind
    handler: Optional[str] = None
    transition: Optional[TransitionSpec] = None


class TransitionTable:
    """Immutable (state, event) -> TableEntry mapping, rows in document order"""

    def __init__(self, entries: Dict[Tuple[str, str], TableEntry], states: List[str], events: List[str]):
        self._entries: Mapping[Tuple[str, str], TableEntry] = MappingProxyType(dict(entries))
        self.states = tuple(states)
        self.events = tuple(events)

    def lookup(self, state: str, event: str) -> TableEntry:
        return self._entries[(state, event)]

    @property
    def entries(self) -> Mapping[Tuple[str, str], TableEntry]:
        return self._entries

    def explicit_entries(self) -> List[TableEntry]:
        return [e for e in self._entries.values() if e.kind is EntryKind.EXPLICIT]

    @property
    def has_catch_all(self) -> bool:
        return any(e.kind is EntryKind.CATCH_ALL for e in self._entries.values())

    def __iter__(self) -> Iterator[TableEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


class TransitionTableBuilder:
    """Builds the transition table of a validated event-driven spec"""

    def build(self, spec: StateMachineSpec) -> TransitionTable:
        if not spec.is_event_driven:
            raise ValueError(f"machine '{spec.name}' is deterministic and has no transition table")

        explicit: Dict[Tuple[str, str], TransitionSpec] = {}
        for state in spec.states:
            for transition in state.transitions:
                pair = (state.name, transition.trigger)
                if pair in explicit:
                    raise SpecSemanticError("transition defined twice for the same (state, event) pair",
                                            f"{state.name} on {transition.trigger}", transition.line)
                explicit[pair] = transition

        states = [s.name for s in spec.states]
        events = [e.name for e in spec.event_specs()]
        fallback = EntryKind.CATCH_ALL if spec.catch_all is not None else EntryKind.UNHANDLED

        entries: Dict[Tuple[str, str], TableEntry] = {}
        for state in states:
            for event in events:
                transition = explicit.get((state, event))
                if transition is not None:
                    entries[(state, event)] = TableEntry(
                        state, event, EntryKind.EXPLICIT, handler_name(state, event), transition)
                elif fallback is EntryKind.CATCH_ALL:
                    entries[(state, event)] = TableEntry(state, event, fallback, CATCH_ALL_HANDLER)
                else:
                    entries[(state, event)] = TableEntry(state, event, fallback)

        return TransitionTable(entries, states, events)
