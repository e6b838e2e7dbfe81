"""
Semantic validation of a parsed specification

Checks run in order of increasing cost and the first failure aborts
generation with SpecSemanticError:

    1. identifiers and name uniqueness
    2. deterministic destinations
    3. event-driven events, targets and (state, event) pairs
    4. trait methods, lifecycle hook signatures and implementations
    5. Python syntax of every user supplied code fragment
"""

import ast
import keyword
from typing import Dict, List, Optional

from machine_factory.errors import SpecSemanticError
from machine_factory.spec_parser import (
    EVENT_HOOKS,
    STATE_HOOKS,
    MethodSpec,
    StateMachineSpec,
    TraitSpec,
)

# Attributes of the generated deterministic machine that state methods must not shadow
MACHINE_API = frozenset([
    'new', 'context', 'state', 'into_context', 'into_state', 'into_parts',
    'STATE_TYPE',
])

# Attributes of the generated state and event enumerations that trait methods must not shadow
ENUM_API = frozenset(['of', 'variant', 'value', 'VARIANTS'])

# Names every deterministic transition body receives before its own parameters
BODY_ARGUMENTS = frozenset(['state', 'context'])

# Module-level names of generated modules: template imports and private tables
MODULE_NAMES = frozenset([
    'abc', 'dataclass', 'field',
    'Any', 'Generic', 'Optional', 'Tuple', 'Type', 'TypeVar', 'Union',
    'ConsumedMachineError', 'StateTagError',
    'UNHANDLED', 'DispatchInterruptedError', 'DispatchOutcome', 'DispatchStep', 'EntryKind',
    'VariantError', 'catch_all', 'explicit', 'freeze_table',
    '_S', '_MACHINE_CLASSES', '_TRANSITIONS', '_STATE_VARIANTS', '_EVENT_VARIANTS',
])


def is_identifier(name: str) -> bool:
    return name.isidentifier() and not keyword.iskeyword(name)


def is_dotted_name(name: str) -> bool:
    return all(is_identifier(part) for part in name.split('.'))


class SpecValidator:
    """Semantic validator for StateMachineSpec"""

    def validate(self, spec: StateMachineSpec) -> StateMachineSpec:
        """
        Validate spec, raising SpecSemanticError on the first violation

        Returns:
            The same spec, unchanged
        """
        self._check_names(spec)
        if spec.is_event_driven:
            self._check_event_driven(spec)
        else:
            self._check_deterministic(spec)
        self._check_traits(spec)
        self._check_syntax(spec)
        return spec

    # 1. Names

    def _check_names(self, spec: StateMachineSpec):
        if not is_identifier(spec.name):
            raise SpecSemanticError("machine name is not a valid identifier", spec.name, spec.line)
        if not is_dotted_name(spec.context):
            raise SpecSemanticError("context is not a valid (dotted) type name", spec.context, spec.line)
        if not spec.states:
            raise SpecSemanticError("machine declares no states", spec.name, spec.line)

        # Every generated top-level name must be unique within the module
        generated: Dict[str, str] = {
            name: "a name reserved by the generated module" for name in MODULE_NAMES
        }

        def claim(name: str, what: str, line: int):
            if not is_identifier(name):
                raise SpecSemanticError(f"{what} name is not a valid identifier", name, line)
            if name in generated:
                raise SpecSemanticError(f"duplicate name: {what} clashes with {generated[name]}", name, line)
            generated[name] = what

        claim(spec.name, "machine", spec.line)
        for state in spec.states:
            if state.name in generated and generated[state.name] == "state":
                raise SpecSemanticError("duplicate state name", state.name, state.line)
            claim(state.name, "state", state.line)
            for field_spec in state.fields:
                if not is_identifier(field_spec.name):
                    raise SpecSemanticError("field name is not a valid identifier",
                                            f"{state.name}.{field_spec.name}", field_spec.line)

        if spec.state_trait is not None:
            claim(spec.state_trait.name, "state trait", spec.state_trait.line)

        if not spec.is_event_driven:
            for state in spec.states:
                claim(f"{spec.name}{state.name}", f"machine class for state '{state.name}'", state.line)
            return

        if spec.state_trait is None:
            claim(spec.trait_name('state'), "state trait", spec.line)
        claim(spec.trait_name('event'), "event trait",
              spec.event_trait.line if spec.event_trait else spec.line)
        claim(spec.state_enum.name, "state enum", spec.state_enum.line)
        claim(spec.event_enum.name, "event enum", spec.event_enum.line)

        seen_events = set()
        for event in spec.declared_events:
            if event.name in seen_events:
                raise SpecSemanticError("duplicate event name", event.name, event.line)
            seen_events.add(event.name)
            for field_spec in event.fields:
                if not is_identifier(field_spec.name):
                    raise SpecSemanticError("field name is not a valid identifier",
                                            f"{event.name}.{field_spec.name}", field_spec.line)

    # 2. Deterministic machines

    def _check_deterministic(self, spec: StateMachineSpec):
        state_names = {s.name for s in spec.states}
        for state in spec.states:
            methods = set()
            for transition in state.transitions:
                element = f"{state.name}.{transition.trigger}"
                if not is_identifier(transition.trigger):
                    raise SpecSemanticError("method name is not a valid identifier", element, transition.line)
                if transition.trigger in methods:
                    raise SpecSemanticError("method defined twice in the same state", element, transition.line)
                methods.add(transition.trigger)
                if transition.trigger in MACHINE_API or transition.trigger.startswith('_'):
                    raise SpecSemanticError("method name is reserved by the generated machine",
                                            element, transition.line)
                if transition.target is not None and transition.target not in state_names:
                    raise SpecSemanticError(f"destination state '{transition.target}' is not declared",
                                            element, transition.line)
                if (transition.target is not None and not transition.body.strip()
                        and not spec.state(transition.target).is_default_constructible):
                    raise SpecSemanticError(
                        f"destination state '{transition.target}' cannot be default-constructed "
                        f"(give every field a default, or write a method body)",
                        element, transition.line)
                if transition.params:
                    args = self._parse_params(transition.params, element, transition.line)
                    names = {a.arg for a in args.posonlyargs + args.args + args.kwonlyargs}
                    names |= {a.arg for a in (args.vararg, args.kwarg) if a is not None}
                    clash = sorted(names & BODY_ARGUMENTS)
                    if clash:
                        raise SpecSemanticError(f"parameter name '{clash[0]}' is reserved for the method body",
                                                element, transition.line)

    # 3. Event-driven machines

    def _check_event_driven(self, spec: StateMachineSpec):
        states = {s.name: s for s in spec.states}
        declared = {e.name for e in spec.declared_events}
        generated = {spec.name, spec.state_enum.name, spec.event_enum.name,
                     spec.trait_name('state'), spec.trait_name('event')} | MODULE_NAMES

        pairs = set()
        for state in spec.states:
            for transition in state.transitions:
                element = f"{state.name} on {transition.trigger}"
                if transition.trigger not in declared:
                    # Inline events become generated classes of their own
                    if not is_identifier(transition.trigger):
                        raise SpecSemanticError("event name is not a valid identifier",
                                                transition.trigger, transition.line)
                    if transition.trigger in states or transition.trigger in generated:
                        raise SpecSemanticError("event name clashes with another generated name",
                                                transition.trigger, transition.line)
                pair = (state.name, transition.trigger)
                if pair in pairs:
                    raise SpecSemanticError("transition defined twice for the same (state, event) pair",
                                            element, transition.line)
                pairs.add(pair)

                if transition.target is not None:
                    target = states.get(transition.target)
                    if target is None:
                        raise SpecSemanticError(f"target state '{transition.target}' is not declared",
                                                element, transition.line)
                    if not target.is_default_constructible:
                        raise SpecSemanticError(
                            f"target state '{target.name}' cannot be default-constructed "
                            f"(give every field a default, or write a transition body)",
                            element, transition.line)

        for event in spec.declared_events:
            if event.name in states or event.name in generated:
                raise SpecSemanticError("event name clashes with another generated name",
                                        event.name, event.line)

        if len(spec.catch_alls) > 1:
            raise SpecSemanticError("multiple catch-all transitions", "_", spec.catch_alls[1].line)

        if not spec.event_specs():
            raise SpecSemanticError("event-driven machine declares no events", spec.name, spec.line)

    # 4. Traits and lifecycle hooks

    def _check_traits(self, spec: StateMachineSpec):
        if spec.state_trait is None and not spec.is_event_driven:
            for state in spec.states:
                if state.impls:
                    raise SpecSemanticError("trait method implemented but no state_trait is declared",
                                            f"{state.name}.{state.impls[0].name}", state.impls[0].line)
            return

        state_hooks = STATE_HOOKS if spec.is_event_driven else {}
        self._check_trait_declaration(spec, spec.state_trait, state_hooks)
        state_methods = spec.trait_methods('state')
        for state in spec.states:
            self._check_field_clash(state_methods, state.name, state.fields)
            self._check_implementations(spec.trait_name('state'), state_methods, state.name,
                                        state.impls, state.line)

        if not spec.is_event_driven:
            return

        self._check_trait_declaration(spec, spec.event_trait, EVENT_HOOKS)
        event_methods = spec.trait_methods('event')
        for event in spec.event_specs():
            self._check_field_clash(event_methods, event.name, event.fields)
            self._check_implementations(spec.trait_name('event'), event_methods, event.name,
                                        event.impls, event.line)

    def _check_trait_declaration(self, spec: StateMachineSpec, trait: Optional[TraitSpec], hooks):
        if trait is None:
            return
        for base in trait.bases:
            if not is_dotted_name(base):
                raise SpecSemanticError("trait base is not a valid (dotted) name",
                                        f"{trait.name}({base})", trait.line)

        seen = set()
        for method in trait.methods:
            element = f"{trait.name}.{method.name}"
            if not is_identifier(method.name):
                raise SpecSemanticError("method name is not a valid identifier", element, method.line)
            if method.name in seen:
                raise SpecSemanticError("method declared twice in trait", element, method.line)
            seen.add(method.name)
            if spec.is_event_driven and (method.name in ENUM_API or method.name.startswith('_')):
                raise SpecSemanticError("method name is reserved by the generated enumerations",
                                        element, method.line)
            if method.is_async and not spec.is_async:
                raise SpecSemanticError("asynchronous method in a machine without the async marker",
                                        element, method.line)
            if method.name in hooks:
                self._check_hook_signature(spec, method, hooks[method.name], element)

    def _check_hook_signature(self, spec: StateMachineSpec, method: MethodSpec, hook, element: str):
        """User-declared lifecycle hook must keep the shape the dispatch routine calls"""
        expected_params, expected_returns, _ = hook
        if method.params is not None:
            args = self._parse_params(method.params, element, method.line)
            positional = args.posonlyargs + args.args
            if args.vararg or args.kwarg or any(
                    d is None for d in args.kw_defaults) or len(positional) != len(expected_params):
                raise SpecSemanticError(
                    f"lifecycle hook must accept ({', '.join(expected_params)})",
                    element, method.line)
            context_arg = positional[0]
            if context_arg.annotation is not None:
                annotation = ast.unparse(context_arg.annotation).strip('\'"')
                if annotation != spec.context:
                    raise SpecSemanticError(
                        f"first parameter must be annotated with the context type '{spec.context}'",
                        element, method.line)
        if method.returns and method.returns != expected_returns:
            raise SpecSemanticError(f"lifecycle hook must return {expected_returns}",
                                    element, method.line)

    def _check_field_clash(self, methods: List[MethodSpec], owner: str, fields):
        method_names = {m.name for m in methods}
        for field_spec in fields:
            if field_spec.name in method_names:
                raise SpecSemanticError("field name clashes with a trait method",
                                        f"{owner}.{field_spec.name}", field_spec.line)

    def _check_implementations(self, trait_name: str, methods: List[MethodSpec], owner: str,
                               impls: List[MethodSpec], line: int):
        by_name = {m.name: m for m in methods}
        implemented = set()
        for impl in impls:
            element = f"{owner}.{impl.name}"
            declared = by_name.get(impl.name)
            if declared is None:
                raise SpecSemanticError(f"'{impl.name}' is not a method of trait '{trait_name}'",
                                        element, impl.line)
            if impl.name in implemented:
                raise SpecSemanticError("trait method implemented twice", element, impl.line)
            implemented.add(impl.name)
            if impl.is_async is not None and impl.is_async != declared.is_async:
                kind = "asynchronous" if declared.is_async else "synchronous"
                raise SpecSemanticError(f"implementation must be {kind} like the trait declaration",
                                        element, impl.line)

        for method in methods:
            if method.is_abstract and method.name not in implemented:
                raise SpecSemanticError(
                    f"required trait method '{method.name}' of '{trait_name}' is neither "
                    f"implemented nor given a default body",
                    owner, line)

    # 5. Python syntax of user code

    def _check_syntax(self, spec: StateMachineSpec):
        if spec.prelude:
            self._parse_code(spec.prelude, "prelude", spec.line, mode='exec')
        for attribute in spec.attributes:
            self._parse_code(attribute, f"{spec.name} attribute", spec.line)
        for enum_spec in (spec.state_enum, spec.event_enum):
            if enum_spec is not None:
                for attribute in enum_spec.attributes:
                    self._parse_code(attribute, f"{enum_spec.name} attribute", enum_spec.line)

        for which in ('state', 'event'):
            for method in spec.trait_methods(which):
                element = f"{spec.trait_name(which)}.{method.name}"
                self._parse_params(method.params, element, method.line)
                if method.returns:
                    self._parse_code(method.returns, element, method.line)
                self._parse_body(method.body, method.is_async, element, method.line)

        async_methods = {m.name for m in spec.trait_methods('state') if m.is_async}
        for state in spec.states:
            self._check_fields(state.name, state.fields)
            for impl in state.impls:
                self._parse_body(impl.body, impl.name in async_methods,
                                 f"{state.name}.{impl.name}", impl.line)
            for transition in state.transitions:
                element = f"{state.name}.{transition.trigger}"
                if transition.params:
                    self._parse_params(transition.params, element, transition.line)
                self._parse_body(transition.body, spec.is_async, element, transition.line)

        if spec.is_event_driven:
            async_methods = {m.name for m in spec.trait_methods('event') if m.is_async}
            for event in spec.declared_events:
                self._check_fields(event.name, event.fields)
                for impl in event.impls:
                    self._parse_body(impl.body, impl.name in async_methods,
                                     f"{event.name}.{impl.name}", impl.line)
            if spec.catch_all is not None:
                self._parse_body(spec.catch_all.body, spec.is_async, "_", spec.catch_all.line)

    def _check_fields(self, owner: str, fields):
        seen = set()
        seen_default = False
        for field_spec in fields:
            element = f"{owner}.{field_spec.name}"
            if field_spec.name in seen:
                raise SpecSemanticError("field declared twice", element, field_spec.line)
            seen.add(field_spec.name)
            if field_spec.type:
                self._parse_code(field_spec.type, element, field_spec.line)
            if field_spec.default is not None:
                self._parse_code(field_spec.default, element, field_spec.line)
            if field_spec.factory is not None:
                self._parse_code(field_spec.factory, element, field_spec.line)
            if field_spec.has_default:
                seen_default = True
            elif seen_default:
                raise SpecSemanticError("field without default follows a field with a default",
                                        element, field_spec.line)

    def _parse_params(self, params: str, element: str, line: int) -> ast.arguments:
        try:
            tree = ast.parse(f"def _f(self, {params}): pass" if params else "def _f(self): pass")
        except SyntaxError as e:
            raise SpecSemanticError(f"invalid parameter list '{params}': {e.msg}", element, line) from e
        args = tree.body[0].args
        # drop self
        if args.posonlyargs:
            args.posonlyargs = args.posonlyargs[1:]
        else:
            args.args = args.args[1:]
        return args

    def _parse_body(self, body: str, is_async: bool, element: str, line: int):
        """Bodies are checked inside a function so return and await are legal"""
        if not body.strip():
            return
        prefix = "async def" if is_async else "def"
        indented = '\n'.join('    ' + text for text in body.splitlines())
        try:
            ast.parse(f"{prefix} _body():\n{indented}\n")
        except SyntaxError as e:
            raise SpecSemanticError(f"invalid Python in body: {e.msg}", element,
                                    line + max((e.lineno or 2) - 2, 0)) from e

    def _parse_code(self, code: str, element: str, line: int, mode: str = 'eval'):
        try:
            ast.parse(code, mode=mode)
        except SyntaxError as e:
            raise SpecSemanticError(f"invalid Python '{code.strip()[:40]}': {e.msg}", element, line) from e
