"""Tests for CodeGenerator rendering, file generation and the command line."""

import ast

import pytest

from machine_factory import generate_source
from machine_factory.codegen import CodeGenerator, main
from machine_factory.errors import CodeGenerationError, SpecParseError, SpecSemanticError
from machine_factory.spec_parser import SpecParser

INVALID = """<deterministic_state_machine name="M">
  <context type="dict"/>
  <states>
    <state name="A"><method name="go" target="Nowhere"/></state>
  </states>
</deterministic_state_machine>
"""


NO_EVENTS = """<event_driven_state_machine name="Idle">
  <context type="dict"/>
  <state_enum name="IdleState"/>
  <event_enum name="IdleEvent"/>
  <states>
    <state name="Only"/>
    <catch_all>return state</catch_all>
  </states>
</event_driven_state_machine>
"""


class TestRender:
    """Test the pure render path."""

    @pytest.mark.parametrize("stem", ["traffic_light", "intersection", "camera"])
    def test_output_is_python(self, spec_text, stem: str) -> None:
        """Test rendered modules parse as Python."""
        ast.parse(generate_source(spec_text(stem)))

    @pytest.mark.parametrize("stem", ["traffic_light", "intersection", "camera"])
    def test_render_is_idempotent(self, spec_text, stem: str) -> None:
        """Test identical specifications render identical text."""
        generator = CodeGenerator()
        spec = SpecParser().parse_string(spec_text(stem), source=f"{stem}.xml")

        assert generator.render(spec) == generator.render(spec)
        assert generator.render(spec) == CodeGenerator().render_string(spec_text(stem), source=f"{stem}.xml")

    def test_header(self, spec_text) -> None:
        """Test generated modules start with the configured header."""
        source = generate_source(spec_text("traffic_light"), source="specs/traffic_light.xml")

        lines = source.splitlines()
        assert lines[0] == "# SPDX-License-Identifier: MIT"
        assert "# Generated by machine-factory from: traffic_light.xml" in lines

    def test_event_driven_documents_hazard(self, spec_text) -> None:
        """Test event-driven modules document the cancellation hazard."""
        source = generate_source(spec_text("camera"))

        docstring = " ".join(ast.get_docstring(ast.parse(source)).split())
        assert "recover()" in docstring
        assert "rolled back" in docstring

    def test_semantic_error_propagates(self) -> None:
        """Test render raises instead of producing output."""
        with pytest.raises(SpecSemanticError):
            generate_source(INVALID)

    def test_event_driven_without_events_rejected(self) -> None:
        """Test a machine with no events fails validation instead of rendering broken code."""
        with pytest.raises(SpecSemanticError, match="declares no events"):
            generate_source(NO_EVENTS)

    def test_invalid_template_output(self, tmp_path, spec_text) -> None:
        """Test a template producing broken Python raises CodeGenerationError."""
        (tmp_path / "deterministic.py.jinja2").write_text("def broken(:\n", encoding="utf-8")
        generator = CodeGenerator(template_dir=tmp_path)

        with pytest.raises(CodeGenerationError, match="not valid Python"):
            generator.render_string(spec_text("traffic_light"))


class TestFilters:
    """Test the custom Jinja2 filters."""

    def test_body_indents(self) -> None:
        """Test bodies are indented and blank lines kept empty."""
        generator = CodeGenerator()

        assert generator._format_body("a = 1\n\nreturn a", 4) == "    a = 1\n\n    return a"
        assert generator._format_body("", 8) == "        pass"

    @pytest.mark.parametrize(
        ("params", "expected"),
        [
            ("", ""),
            ("seconds: int = 5", "seconds"),
            ("a, /, b, *rest, flag=False, **extra", "a, b, *rest, flag=flag, **extra"),
        ],
    )
    def test_call_args(self, params: str, expected: str) -> None:
        """Test parameter lists are forwarded by name."""
        assert CodeGenerator()._call_args(params) == expected


class TestGenerate:
    """Test writing generated files."""

    def test_writes_stem_file(self, tmp_path, fixtures_dir, capsys) -> None:
        """Test generate() writes <stem>_sm.py and reports progress."""
        assert CodeGenerator().generate(str(fixtures_dir / "intersection.xml"), str(tmp_path))

        output = tmp_path / "intersection_sm.py"
        assert output.exists()
        ast.parse(output.read_text(encoding="utf-8"))
        out = capsys.readouterr().out
        assert "Generating code for: Intersection" in out
        assert "Table entries: 12 (4 explicit)" in out

    def test_invalid_spec_writes_nothing(self, tmp_path, capsys) -> None:
        """Test failed generation returns False and leaves no file behind."""
        spec_path = tmp_path / "broken.xml"
        spec_path.write_text(INVALID, encoding="utf-8")
        out_dir = tmp_path / "out"

        assert not CodeGenerator().generate(str(spec_path), str(out_dir))

        assert not (out_dir / "broken_sm.py").exists()
        assert "Error generating code" in capsys.readouterr().err


class TestMain:
    """Test the command line entry point."""

    def test_generate(self, tmp_path, fixtures_dir) -> None:
        """Test the default mode writes the module and exits 0."""
        code = main([str(fixtures_dir / "traffic_light.xml"), "-o", str(tmp_path)])

        assert code == 0
        assert (tmp_path / "traffic_light_sm.py").exists()

    def test_stdout(self, fixtures_dir, capsys) -> None:
        """Test --stdout prints the module."""
        assert main([str(fixtures_dir / "camera.xml"), "--stdout"]) == 0

        assert "class Camera:" in capsys.readouterr().out

    def test_check(self, tmp_path, fixtures_dir, capsys) -> None:
        """Test --check validates without writing."""
        assert main([str(fixtures_dir / "camera.xml"), "--check", "-o", str(tmp_path)]) == 0

        assert list(tmp_path.iterdir()) == []
        assert "specification is valid" in capsys.readouterr().out

    def test_check_reports_errors(self, tmp_path, capsys) -> None:
        """Test --check exits 1 with the error on stderr."""
        spec_path = tmp_path / "broken.xml"
        spec_path.write_text(INVALID, encoding="utf-8")

        assert main([str(spec_path), "--check"]) == 1
        assert "line 4" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys) -> None:
        """Test a missing specification exits 1."""
        assert main([str(tmp_path / "absent.xml")]) == 1
        assert "not found" in capsys.readouterr().err

    def test_parse_error_exit_code(self, tmp_path) -> None:
        """Test malformed XML exits 1."""
        spec_path = tmp_path / "bad.xml"
        spec_path.write_text("<deterministic_state_machine", encoding="utf-8")

        assert main([str(spec_path)]) == 1

    def test_parse_error_type(self, tmp_path) -> None:
        """Test parse_file raises SpecParseError for malformed XML."""
        spec_path = tmp_path / "bad.xml"
        spec_path.write_text("<deterministic_state_machine", encoding="utf-8")

        with pytest.raises(SpecParseError):
            SpecParser().parse_file(str(spec_path))
