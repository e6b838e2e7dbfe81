#!/usr/bin/env python3
"""
State Machine Code Generator (Python + Jinja2)

Generates Python state machine modules from XML specification blocks.
Parsing and validation are host-agnostic; only the templates know the
shape of the emitted Python.
"""

import argparse
import ast
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from machine_factory.errors import CodeGenerationError, MachineFactoryError
from machine_factory.header_config import get_generated_code_header, get_hazard_text
from machine_factory.spec_parser import DETERMINISTIC, EVENT_DRIVEN, SpecParser, StateMachineSpec
from machine_factory.transition_table import CATCH_ALL_HANDLER, TransitionTable, TransitionTableBuilder
from machine_factory.validator import SpecValidator

TEMPLATES = {
    DETERMINISTIC: 'deterministic.py.jinja2',
    EVENT_DRIVEN: 'event_driven.py.jinja2',
}


class CodeGenerator:
    """
    Code generator for declarative state machine specifications

    Uses Jinja2 templates to generate Python modules from validated
    StateMachineSpec models. render() is pure: identical specifications
    produce identical source text.
    """

    def __init__(self, template_dir=None):
        if template_dir is None:
            template_dir = Path(__file__).parent / 'templates'

        # Setup Jinja2 environment
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(['html', 'xml'], default_for_string=False),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

        # Add custom filters
        self.env.filters['body'] = self._format_body
        self.env.filters['call_args'] = self._call_args
        self.env.filters['pystr'] = self._escape_py_string

    def _format_body(self, text, width=8):
        """Indent a code body for emission; empty bodies become 'pass'"""
        if not text or not text.strip():
            return ' ' * width + 'pass'
        prefix = ' ' * width
        return '\n'.join(prefix + line if line.strip() else '' for line in text.splitlines())

    def _call_args(self, params):
        """Argument list forwarding every parameter of a parameter list"""
        if not params or not params.strip():
            return ''
        args = ast.parse(f"def _f({params}): pass").body[0].args
        parts = [a.arg for a in args.posonlyargs + args.args]
        if args.vararg:
            parts.append('*' + args.vararg.arg)
        parts += [f"{a.arg}={a.arg}" for a in args.kwonlyargs]
        if args.kwarg:
            parts.append('**' + args.kwarg.arg)
        return ', '.join(parts)

    def _escape_py_string(self, text):
        """Python string literal"""
        return repr(str(text or ''))

    def _analyze_spec(self, spec: StateMachineSpec, table: Optional[TransitionTable]) -> Dict[str, Any]:
        """
        Build the template context

        Resolves trait methods (with generated lifecycle defaults), the
        public names of the module and, for event-driven machines, which
        dispatch steps must be awaited.
        """
        source = Path(spec.source).name if spec.source else None
        state_methods = spec.trait_methods('state')
        context: Dict[str, Any] = {
            'spec': spec,
            'header': get_generated_code_header(source),
            'state_trait_name': spec.trait_name('state'),
            'state_methods': state_methods,
            'state_methods_by_name': {m.name: m for m in state_methods},
        }

        exports: List[str] = []
        if spec.trait_name('state'):
            exports.append(spec.trait_name('state'))

        if spec.kind == DETERMINISTIC:
            exports += [s.name for s in spec.states]
            if spec.is_public:
                exports.append(spec.name)
                exports += [f"{spec.name}{s.name}" for s in spec.states]
            context['exports'] = exports
            return context

        events = spec.event_specs()
        event_methods = spec.trait_methods('event')
        hook_async = {m.name: m.is_async for m in state_methods + event_methods}

        exports.append(spec.trait_name('event'))
        exports += [s.name for s in spec.states]
        exports += [e.name for e in events]
        if spec.is_public:
            exports += [spec.state_enum.name, spec.event_enum.name, spec.name]

        context.update({
            'exports': exports,
            'event_trait_name': spec.trait_name('event'),
            'event_methods': event_methods,
            'event_methods_by_name': {m.name: m for m in event_methods},
            'events': events,
            'table': table,
            'explicit_entries': table.explicit_entries(),
            'catch_all_handler': CATCH_ALL_HANDLER,
            'awaits': {name: 'await ' if is_async else '' for name, is_async in hook_async.items()},
            'handler_await': 'await ' if spec.is_async else '',
            'hazard': get_hazard_text('cancellation'),
        })
        return context

    def prepare(self, spec: StateMachineSpec) -> Optional[TransitionTable]:
        """Validate spec and build its transition table (event-driven only)"""
        SpecValidator().validate(spec)
        if spec.is_event_driven:
            return TransitionTableBuilder().build(spec)
        return None

    def render(self, spec: StateMachineSpec) -> str:
        """
        Render the Python module for spec

        Raises:
            SpecSemanticError: spec failed validation
            CodeGenerationError: rendered output is not valid Python
        """
        table = self.prepare(spec)
        return self._render(spec, table)

    def render_string(self, text: str, source: Optional[str] = None) -> str:
        """Parse, validate and render a specification block given as text"""
        spec = SpecParser().parse_string(text, source=source)
        return self.render(spec)

    def _render(self, spec: StateMachineSpec, table: Optional[TransitionTable]) -> str:
        template = self.env.get_template(TEMPLATES[spec.kind])
        output = template.render(**self._analyze_spec(spec, table))

        # All-or-nothing: never hand out a module that does not parse
        try:
            ast.parse(output)
        except SyntaxError as e:
            raise CodeGenerationError(
                f"generated module for '{spec.name}' is not valid Python "
                f"(line {e.lineno}: {e.msg})") from e
        return output

    def generate(self, spec_path: str, output_dir: str) -> bool:
        """
        Generate Python code from specification file

        Args:
            spec_path: Path to XML specification file
            output_dir: Directory for generated Python file

        Returns:
            True if generation succeeded, False otherwise
        """
        try:
            # Parse specification
            parser = SpecParser()
            spec = parser.parse_file(spec_path)

            print(f"Generating code for: {spec.name}")
            print(f"  Model: {spec.kind}")
            print(f"  States: {len(spec.states)}")

            table = self.prepare(spec)
            if table is not None:
                print(f"  Events: {len(table.events)}")
                print(f"  Table entries: {len(table)} ({len(table.explicit_entries())} explicit)")
                print(f"  Catch-all: {table.has_catch_all}")
                print(f"  Async: {spec.is_async}")

            output = self._render(spec, table)

            # Use input filename (without extension) for output filename
            input_stem = Path(spec_path).stem

            # Write output file
            output_path = Path(output_dir) / f"{input_stem}_sm.py"
            output_path.parent.mkdir(parents=True, exist_ok=True)

            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(output)

            print(f"  ✓ Generated: {output_path}")
            return True

        except MachineFactoryError as e:
            print(f"Error generating code: {e}", file=sys.stderr)
            return False
        except OSError as e:
            print(f"Error writing generated code: {e}", file=sys.stderr)
            return False

    def check(self, spec_path: str) -> bool:
        """Parse and validate only; nothing is rendered or written"""
        try:
            spec = SpecParser().parse_file(spec_path)
            self.prepare(spec)
        except MachineFactoryError as e:
            print(f"Error: {e}", file=sys.stderr)
            return False
        print(f"✓ {spec.name}: specification is valid")
        return True


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Generate Python state machine code from XML specification blocks'
    )
    parser.add_argument('spec_file', help='Input specification file')
    parser.add_argument('-o', '--output-dir', default='.',
                        help='Output directory for generated files')
    parser.add_argument('-t', '--template-dir', default=None,
                        help='Template directory (default: bundled templates)')
    parser.add_argument('--stdout', action='store_true',
                        help='Print the generated module instead of writing it')
    parser.add_argument('--check', action='store_true',
                        help='Only parse and validate the specification')

    args = parser.parse_args(argv)

    # Check input file exists
    if not Path(args.spec_file).exists():
        print(f"Error: specification file not found: {args.spec_file}", file=sys.stderr)
        return 1

    generator = CodeGenerator(template_dir=args.template_dir)

    if args.check:
        return 0 if generator.check(args.spec_file) else 1

    if args.stdout:
        try:
            spec = SpecParser().parse_file(args.spec_file)
            sys.stdout.write(generator.render(spec))
        except MachineFactoryError as e:
            print(f"Error generating code: {e}", file=sys.stderr)
            return 1
        return 0

    # Generate code
    success = generator.generate(args.spec_file, args.output_dir)

    return 0 if success else 1


if __name__ == '__main__':
    sys.exit(main())
