#!/usr/bin/env python3
"""
State Machine Specification Parser

Parses the XML specification block of a state machine and extracts the
model used by validation and code generation.

The root element selects the execution model:
    <deterministic_state_machine name="...">   typestate machine
    <event_driven_state_machine name="...">    table-dispatched machine
"""

import dataclasses
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from lxml import etree

from machine_factory.errors import SpecParseError

DETERMINISTIC = 'deterministic'
EVENT_DRIVEN = 'event_driven'

ROOT_TAGS = {
    'deterministic_state_machine': DETERMINISTIC,
    'event_driven_state_machine': EVENT_DRIVEN,
}

# Top-level fields; event-driven machines accept the second set too
COMMON_FIELDS = ('attribute', 'prelude', 'context', 'state_trait', 'states')
EVENT_DRIVEN_FIELDS = ('state_enum', 'event_enum', 'event_trait', 'events')

VISIBILITIES = ('public', 'private')

# Lifecycle hooks of event-driven machines: name -> (parameters, return annotation, default body)
STATE_HOOKS = {
    'on_enter': (['context'], 'None', 'pass'),
    'on_exit': (['context'], 'None', 'pass'),
    'should_exit': (['context', 'event'], 'bool', 'return True'),
}
EVENT_HOOKS = {
    'pre_transition': (['context'], 'None', 'pass'),
    'post_transition': (['context'], 'None', 'pass'),
}


def local_name(elem) -> str:
    """Tag name without namespace"""
    return etree.QName(elem).localname


def child_elements(elem) -> list:
    """Child elements, skipping comments and processing instructions"""
    return [child for child in elem if isinstance(child.tag, str)]


def body_text(elem) -> str:
    """
    Element text as a code block

    Leading and trailing blank lines are dropped and the common
    indentation removed, so bodies can be indented to match the XML.
    """
    lines = (elem.text or '').splitlines()
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return textwrap.dedent('\n'.join(lines))


@dataclass
class FieldSpec:
    """Data field of a state or event type"""
    name: str
    type: str = ""
    default: Optional[str] = None  # Python expression
    factory: Optional[str] = None  # callable used as default_factory
    line: int = 0

    @property
    def has_default(self) -> bool:
        return self.default is not None or self.factory is not None


@dataclass
class MethodSpec:
    """Trait method declaration, or a state/event implementation of one"""
    name: str
    params: Optional[str] = None  # parameter list without self, None = not given
    returns: str = ""
    body: str = ""
    is_async: Optional[bool] = None  # None = not given, resolved against the machine flag
    generated: bool = False  # default added for a lifecycle hook the user did not declare
    line: int = 0

    @property
    def is_abstract(self) -> bool:
        return not self.body.strip()


@dataclass
class TraitSpec:
    """Trait every state (or event) type must satisfy"""
    name: str
    bases: List[str] = field(default_factory=list)  # extra capability bounds
    methods: List[MethodSpec] = field(default_factory=list)
    line: int = 0

    def method(self, name: str) -> Optional[MethodSpec]:
        for method in self.methods:
            if method.name == name:
                return method
        return None


@dataclass
class TransitionSpec:
    """
    Transition declared under a state

    Deterministic: trigger is a method name, target the destination state
    (None for an in-place mutator), params its parameter list.
    Event-driven: trigger is an event name; a target without body is the
    default-construction shorthand.
    """
    source: str
    trigger: str
    target: Optional[str] = None
    body: str = ""
    params: str = ""
    line: int = 0

    @property
    def is_mutator(self) -> bool:
        return self.target is None

    @property
    def is_shorthand(self) -> bool:
        return self.target is not None and not self.body.strip()


@dataclass
class StateSpec:
    """State definition"""
    name: str
    fields: List[FieldSpec] = field(default_factory=list)
    impls: List[MethodSpec] = field(default_factory=list)
    transitions: List[TransitionSpec] = field(default_factory=list)
    line: int = 0

    def impl(self, name: str) -> Optional[MethodSpec]:
        for method in self.impls:
            if method.name == name:
                return method
        return None

    @property
    def is_default_constructible(self) -> bool:
        return all(f.has_default for f in self.fields)


@dataclass
class EventSpec:
    """Event definition (event-driven machines)"""
    name: str
    fields: List[FieldSpec] = field(default_factory=list)
    impls: List[MethodSpec] = field(default_factory=list)
    inline: bool = False  # only referenced inside <states>
    line: int = 0

    def impl(self, name: str) -> Optional[MethodSpec]:
        for method in self.impls:
            if method.name == name:
                return method
        return None


@dataclass
class EnumSpec:
    """Generated state-value or event-value enumeration"""
    name: str
    attributes: List[str] = field(default_factory=list)
    line: int = 0


@dataclass
class CatchAllSpec:
    """Fallback transition body for pairs without an explicit entry"""
    body: str
    line: int = 0


@dataclass
class StateMachineSpec:
    """Parsed specification block; exists only during generation"""
    kind: str
    name: str
    visibility: str = 'public'
    attributes: List[str] = field(default_factory=list)
    is_async: bool = False
    context: str = ""
    prelude: str = ""
    state_trait: Optional[TraitSpec] = None
    states: List[StateSpec] = field(default_factory=list)

    # Event-driven only
    state_enum: Optional[EnumSpec] = None
    event_enum: Optional[EnumSpec] = None
    event_trait: Optional[TraitSpec] = None
    declared_events: List[EventSpec] = field(default_factory=list)
    catch_alls: List[CatchAllSpec] = field(default_factory=list)

    source: Optional[str] = None
    line: int = 0

    @property
    def is_event_driven(self) -> bool:
        return self.kind == EVENT_DRIVEN

    @property
    def is_public(self) -> bool:
        return self.visibility == 'public'

    @property
    def catch_all(self) -> Optional[CatchAllSpec]:
        return self.catch_alls[0] if self.catch_alls else None

    def state(self, name: str) -> Optional[StateSpec]:
        for state in self.states:
            if state.name == name:
                return state
        return None

    def event_specs(self) -> List[EventSpec]:
        """
        Event variants in document order

        Events first referenced inside <states> come first, followed by the
        remaining <events> declarations. Declared events win over inline
        references to the same name.
        """
        declared: Dict[str, EventSpec] = {}
        for event in self.declared_events:
            declared.setdefault(event.name, event)

        ordered: Dict[str, EventSpec] = {}
        for state in self.states:
            for transition in state.transitions:
                name = transition.trigger
                if name not in ordered:
                    ordered[name] = declared.get(name) or EventSpec(
                        name=name, inline=True, line=transition.line)
        for name, event in declared.items():
            ordered.setdefault(name, event)
        return list(ordered.values())

    def trait_name(self, which: str) -> Optional[str]:
        """Name of the state or event trait, synthesized for event-driven machines"""
        trait = self.state_trait if which == 'state' else self.event_trait
        if trait is not None:
            return trait.name
        if self.is_event_driven:
            return f"{self.name}{which.capitalize()}Trait"
        return None

    def trait_methods(self, which: str) -> List[MethodSpec]:
        """
        Effective methods of the state or event trait

        User declarations first, then default lifecycle hooks the user left
        out. Parameters of declared hooks default to the expected ones and
        asynchronous-ness is resolved: hooks follow the machine flag, other
        methods are synchronous unless marked.

        Returns copies; the spec itself is never modified.
        """
        trait = self.state_trait if which == 'state' else self.event_trait
        hooks = {}
        if self.is_event_driven:
            hooks = STATE_HOOKS if which == 'state' else EVENT_HOOKS

        methods = []
        for method in (trait.methods if trait else []):
            resolved = dataclasses.replace(method)
            if method.name in hooks:
                if resolved.params is None:
                    resolved.params = ', '.join(hooks[method.name][0])
                if resolved.is_async is None:
                    resolved.is_async = self.is_async
            else:
                if resolved.params is None:
                    resolved.params = ''
                if resolved.is_async is None:
                    resolved.is_async = False
            methods.append(resolved)

        declared = {m.name for m in methods}
        for name, (params, returns, default_body) in hooks.items():
            if name in declared:
                continue
            methods.append(MethodSpec(
                name=name,
                params=', '.join(params),
                returns=returns,
                body=default_body,
                is_async=self.is_async,
                generated=True,
            ))
        return methods


class SpecParser:
    """
    Specification block parser

    Parses the XML grammar into a StateMachineSpec. Only the shape of the
    document is checked here; names and cross references are checked by
    SpecValidator.
    """

    def __init__(self):
        self.spec = None
        self.source = None

    def parse_file(self, spec_path: str) -> StateMachineSpec:
        """
        Parse specification file and return model

        Args:
            spec_path: Path to the XML specification

        Returns:
            StateMachineSpec with the extracted state machine structure
        """
        self.source = str(spec_path)
        try:
            tree = etree.parse(str(spec_path), self._xml_parser())
        except etree.XMLSyntaxError as e:
            raise SpecParseError(f"malformed specification: {e.msg}", line=e.lineno) from e
        return self._parse_root(tree.getroot())

    def parse_string(self, text: str, source: Optional[str] = None) -> StateMachineSpec:
        """Parse specification block given as text"""
        self.source = source
        try:
            root = etree.fromstring(text.encode('utf-8'), self._xml_parser())
        except etree.XMLSyntaxError as e:
            raise SpecParseError(f"malformed specification: {e.msg}", line=e.lineno) from e
        return self._parse_root(root)

    def _xml_parser(self):
        # Comments are dropped so they never split a code body
        return etree.XMLParser(remove_comments=True, resolve_entities=False, no_network=True)

    def _parse_root(self, root) -> StateMachineSpec:
        tag = local_name(root)
        if tag not in ROOT_TAGS:
            raise SpecParseError(
                f"unknown specification root <{tag}>", line=root.sourceline,
                expected="<deterministic_state_machine> or <event_driven_state_machine>")
        kind = ROOT_TAGS[tag]

        self._check_attributes(root, ('name', 'visibility', 'async'))
        name = self._require(root, 'name', 'machine name')

        visibility = root.get('visibility', 'public')
        if visibility not in VISIBILITIES:
            raise SpecParseError(f"invalid visibility '{visibility}'", line=root.sourceline,
                                 expected="public or private")

        is_async = self._parse_bool(root, 'async', False)
        if is_async and kind == DETERMINISTIC:
            raise SpecParseError("async marker is only valid for event-driven machines",
                                 line=root.sourceline)

        self.spec = StateMachineSpec(
            kind=kind,
            name=name,
            visibility=visibility,
            is_async=is_async,
            source=self.source,
            line=root.sourceline,
        )

        allowed = COMMON_FIELDS + (EVENT_DRIVEN_FIELDS if kind == EVENT_DRIVEN else ())
        seen = set()

        for elem in child_elements(root):
            label = local_name(elem)
            if label not in allowed:
                if label in EVENT_DRIVEN_FIELDS:
                    raise SpecParseError(f"<{label}> is only valid for event-driven machines",
                                         line=elem.sourceline)
                raise SpecParseError(f"unrecognized field <{label}>", line=elem.sourceline,
                                     expected="one of " + ', '.join(f"<{f}>" for f in allowed))
            if label != 'attribute':
                if label in seen:
                    raise SpecParseError(f"duplicate <{label}> field", line=elem.sourceline)
                seen.add(label)

            if label == 'attribute':
                self.spec.attributes.append(self._parse_attribute(elem))
            elif label == 'prelude':
                self._no_children(elem)
                self.spec.prelude = body_text(elem)
            elif label == 'context':
                self._check_attributes(elem, ('type',))
                self.spec.context = self._require(elem, 'type', 'context type name')
            elif label == 'state_trait':
                self.spec.state_trait = self._parse_trait(elem)
            elif label == 'event_trait':
                self.spec.event_trait = self._parse_trait(elem)
            elif label == 'state_enum':
                self.spec.state_enum = self._parse_enum(elem)
            elif label == 'event_enum':
                self.spec.event_enum = self._parse_enum(elem)
            elif label == 'states':
                self._parse_states(elem)
            elif label == 'events':
                self._parse_events(elem)

        required = ['context', 'states']
        if kind == EVENT_DRIVEN:
            required += ['state_enum', 'event_enum']
        for label in required:
            if label not in seen:
                raise SpecParseError(f"machine '{name}' is missing <{label}>", line=root.sourceline,
                                     expected=f"<{label}> field")

        return self.spec

    def _parse_attribute(self, elem) -> str:
        """<attribute> holds a decorator expression, with or without the leading @"""
        self._no_children(elem)
        text = (elem.text or '').strip()
        if not text:
            raise SpecParseError("empty <attribute>", line=elem.sourceline,
                                 expected="decorator expression")
        return text[1:].strip() if text.startswith('@') else text

    def _parse_trait(self, elem) -> TraitSpec:
        self._check_attributes(elem, ('name', 'bases'))
        trait = TraitSpec(
            name=self._require(elem, 'name', 'trait name'),
            bases=[b.strip() for b in elem.get('bases', '').split(',') if b.strip()],
            line=elem.sourceline,
        )
        for child in child_elements(elem):
            if local_name(child) != 'method':
                raise SpecParseError(f"unexpected <{local_name(child)}> in trait '{trait.name}'",
                                     line=child.sourceline, expected="<method>")
            trait.methods.append(self._parse_method(child))
        return trait

    def _parse_method(self, elem) -> MethodSpec:
        """Trait method; an empty body makes it abstract"""
        self._check_attributes(elem, ('name', 'params', 'returns', 'async'))
        self._no_children(elem)
        return MethodSpec(
            name=self._require(elem, 'name', 'method name'),
            params=elem.get('params'),
            returns=elem.get('returns', ''),
            body=body_text(elem),
            is_async=self._parse_bool(elem, 'async', None),
            line=elem.sourceline,
        )

    def _parse_impl(self, elem) -> MethodSpec:
        """Implementation of a trait method; signature comes from the trait"""
        self._check_attributes(elem, ('name', 'async'))
        self._no_children(elem)
        method = MethodSpec(
            name=self._require(elem, 'name', 'trait method name'),
            body=body_text(elem),
            is_async=self._parse_bool(elem, 'async', None),
            line=elem.sourceline,
        )
        if method.is_abstract:
            raise SpecParseError(f"<impl name=\"{method.name}\"> has no body", line=elem.sourceline,
                                 expected="method body")
        return method

    def _parse_enum(self, elem) -> EnumSpec:
        self._check_attributes(elem, ('name',))
        enum_spec = EnumSpec(name=self._require(elem, 'name', 'enumeration name'), line=elem.sourceline)
        for child in child_elements(elem):
            if local_name(child) != 'attribute':
                raise SpecParseError(f"unexpected <{local_name(child)}> in <{local_name(elem)}>",
                                     line=child.sourceline, expected="<attribute>")
            enum_spec.attributes.append(self._parse_attribute(child))
        return enum_spec

    def _parse_states(self, elem):
        """
        Parse <states>

        Holds <state> definitions and, for event-driven machines, the
        <catch_all> body used for pairs without an explicit transition.
        """
        self._check_attributes(elem, ())
        for child in child_elements(elem):
            tag = local_name(child)
            if tag == 'state':
                self.spec.states.append(self._parse_state(child))
            elif tag == 'catch_all' and self.spec.is_event_driven:
                self._check_attributes(child, ())
                self._no_children(child)
                body = body_text(child)
                if not body.strip():
                    raise SpecParseError("empty <catch_all>", line=child.sourceline,
                                         expected="catch-all transition body")
                self.spec.catch_alls.append(CatchAllSpec(body=body, line=child.sourceline))
            else:
                expected = "<state> or <catch_all>" if self.spec.is_event_driven else "<state>"
                raise SpecParseError(f"unexpected <{tag}> in <states>", line=child.sourceline,
                                     expected=expected)

    def _parse_state(self, elem) -> StateSpec:
        self._check_attributes(elem, ('name',))
        state = StateSpec(name=self._require(elem, 'name', 'state name'), line=elem.sourceline)
        transition_tag = 'on' if self.spec.is_event_driven else 'method'

        for child in child_elements(elem):
            tag = local_name(child)
            if tag == 'field':
                state.fields.append(self._parse_field(child))
            elif tag == 'impl':
                state.impls.append(self._parse_impl(child))
            elif tag == transition_tag:
                if self.spec.is_event_driven:
                    state.transitions.append(self._parse_on(child, state.name))
                else:
                    state.transitions.append(self._parse_state_method(child, state.name))
            else:
                raise SpecParseError(f"unexpected <{tag}> in state '{state.name}'",
                                     line=child.sourceline,
                                     expected=f"<field>, <impl> or <{transition_tag}>")
        return state

    def _parse_state_method(self, elem, state_name: str) -> TransitionSpec:
        """Deterministic transition (target given) or in-place mutator"""
        self._check_attributes(elem, ('name', 'target', 'params'))
        self._no_children(elem)
        return TransitionSpec(
            source=state_name,
            trigger=self._require(elem, 'name', 'method name'),
            target=elem.get('target'),
            params=elem.get('params', ''),
            body=body_text(elem),
            line=elem.sourceline,
        )

    def _parse_on(self, elem, state_name: str) -> TransitionSpec:
        """Event-driven transition: either a target shorthand or a full body"""
        self._check_attributes(elem, ('event', 'target'))
        self._no_children(elem)
        target = elem.get('target')
        body = body_text(elem)
        if target is not None and body.strip():
            raise SpecParseError(
                f"transition on '{elem.get('event')}' in state '{state_name}' has both a target and a body",
                line=elem.sourceline, expected="either target attribute or body")
        if target is None and not body.strip():
            raise SpecParseError(
                f"transition on '{elem.get('event')}' in state '{state_name}' has no target",
                line=elem.sourceline, expected="target attribute or body")
        return TransitionSpec(
            source=state_name,
            trigger=self._require(elem, 'event', 'event name'),
            target=target,
            body=body,
            line=elem.sourceline,
        )

    def _parse_field(self, elem) -> FieldSpec:
        self._check_attributes(elem, ('name', 'type', 'default', 'factory'))
        self._no_children(elem)
        field_spec = FieldSpec(
            name=self._require(elem, 'name', 'field name'),
            type=elem.get('type', ''),
            default=elem.get('default'),
            factory=elem.get('factory'),
            line=elem.sourceline,
        )
        if field_spec.default is not None and field_spec.factory is not None:
            raise SpecParseError(f"field '{field_spec.name}' has both default and factory",
                                 line=elem.sourceline, expected="default or factory")
        return field_spec

    def _parse_events(self, elem):
        """Parse <events>: events declared up front, with optional fields and trait impls"""
        self._check_attributes(elem, ())
        for child in child_elements(elem):
            if local_name(child) != 'event':
                raise SpecParseError(f"unexpected <{local_name(child)}> in <events>",
                                     line=child.sourceline, expected="<event>")
            self._check_attributes(child, ('name',))
            event = EventSpec(name=self._require(child, 'name', 'event name'), line=child.sourceline)
            for item in child_elements(child):
                tag = local_name(item)
                if tag == 'field':
                    event.fields.append(self._parse_field(item))
                elif tag == 'impl':
                    event.impls.append(self._parse_impl(item))
                else:
                    raise SpecParseError(f"unexpected <{tag}> in event '{event.name}'",
                                         line=item.sourceline, expected="<field> or <impl>")
            self.spec.declared_events.append(event)

    def _require(self, elem, attr: str, expected: str) -> str:
        value = elem.get(attr)
        if value is None or not value.strip():
            raise SpecParseError(f"<{local_name(elem)}> is missing '{attr}'",
                                 line=elem.sourceline, expected=expected)
        return value.strip()

    def _check_attributes(self, elem, allowed):
        for attr in elem.attrib:
            if attr not in allowed:
                expected = ', '.join(allowed) if allowed else "no attributes"
                raise SpecParseError(f"unknown attribute '{attr}' on <{local_name(elem)}>",
                                     line=elem.sourceline, expected=expected)

    def _no_children(self, elem):
        children = child_elements(elem)
        if children:
            raise SpecParseError(f"unexpected <{local_name(children[0])}> inside <{local_name(elem)}>",
                                 line=children[0].sourceline, expected="code text")

    def _parse_bool(self, elem, attr: str, default):
        value = elem.get(attr)
        if value is None:
            return default
        if value in ('true', 'false'):
            return value == 'true'
        raise SpecParseError(f"invalid value '{value}' for '{attr}'", line=elem.sourceline,
                             expected="true or false")


if __name__ == '__main__':
    import sys

    if len(sys.argv) < 2:
        print("Usage: python -m machine_factory.spec_parser <spec_file>")
        sys.exit(1)

    parser = SpecParser()
    spec = parser.parse_file(sys.argv[1])

    print(f"Machine: {spec.name} ({spec.kind})")
    print(f"Context: {spec.context}")
    print(f"States: {len(spec.states)}")
    if spec.is_event_driven:
        print(f"Events: {len(spec.event_specs())}")
        print(f"Catch-all: {spec.catch_all is not None}")
    print(f"Async: {spec.is_async}")
    print(f"Source: {Path(spec.source).name}")
