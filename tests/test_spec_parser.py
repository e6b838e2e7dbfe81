"""Tests for SpecParser - XML specification block to StateMachineSpec."""

import pytest

from machine_factory.errors import SpecParseError
from machine_factory.spec_parser import DETERMINISTIC, EVENT_DRIVEN, SpecParser


def parse(text: str):
    return SpecParser().parse_string(text)


class TestParseDeterministic:
    """Test parsing of deterministic machines."""

    def test_parses_fixture(self, fixtures_dir) -> None:
        """Test the deterministic fixture yields states, fields and methods."""
        spec = SpecParser().parse_file(str(fixtures_dir / "traffic_light.xml"))

        assert spec.kind == DETERMINISTIC
        assert spec.name == "TrafficLight"
        assert spec.context == "LightContext"
        assert spec.is_public
        assert [s.name for s in spec.states] == ["Red", "Green", "Yellow"]
        assert spec.source.endswith("traffic_light.xml")

        red = spec.state("Red")
        assert [t.trigger for t in red.transitions] == ["go", "car_passed"]
        assert red.transitions[0].target == "Green"
        assert red.transitions[1].is_mutator

        green = spec.state("Green")
        assert green.fields[0].name == "remaining"
        assert green.fields[0].default == "30"
        assert green.transitions[0].params == "seconds: int = 5"

    def test_bodies_are_dedented(self, fixtures_dir) -> None:
        """Test code bodies lose the indentation of the XML document."""
        spec = SpecParser().parse_file(str(fixtures_dir / "traffic_light.xml"))

        assert spec.state("Red").transitions[0].body == "context.cycles += 1\nreturn Green()"
        assert spec.prelude.startswith("class LightContext:")

    def test_trait_method_without_body_is_abstract(self, fixtures_dir) -> None:
        """Test a trait method with no body is abstract."""
        spec = SpecParser().parse_file(str(fixtures_dir / "traffic_light.xml"))

        assert spec.state_trait.name == "Light"
        assert spec.state_trait.method("color").is_abstract
        assert spec.trait_methods("state")[0].params == ""

    def test_attribute_strips_at_sign(self) -> None:
        """Test decorator attributes are stored without the leading @."""
        spec = parse("""
            <deterministic_state_machine name="M">
              <attribute>@functools.total_ordering</attribute>
              <context type="dict"/>
              <states><state name="A"/></states>
            </deterministic_state_machine>
        """)
        assert spec.attributes == ["functools.total_ordering"]

    def test_comments_are_ignored(self) -> None:
        """Test XML comments inside bodies are dropped."""
        spec = parse("""
            <deterministic_state_machine name="M">
              <context type="dict"/>
              <states>
                <state name="A">
                  <method name="to_b" target="B">
                    <!-- default-constructed -->
                  </method>
                </state>
                <state name="B"/>
              </states>
            </deterministic_state_machine>
        """)
        assert spec.state("A").transitions[0].body == ""


class TestParseEventDriven:
    """Test parsing of event-driven machines."""

    def test_parses_fixture(self, fixtures_dir) -> None:
        """Test the event-driven fixture yields enums, catch-all and events."""
        spec = SpecParser().parse_file(str(fixtures_dir / "intersection.xml"))

        assert spec.kind == EVENT_DRIVEN
        assert spec.state_enum.name == "SignalStateEnum"
        assert spec.event_enum.name == "SignalEvent"
        assert spec.catch_all is not None
        assert [e.name for e in spec.declared_events] == ["Emergency"]
        assert spec.state("Red").transitions[0].is_shorthand

    def test_event_order_is_first_appearance(self, fixtures_dir) -> None:
        """Test events referenced under states come first, then the declared rest."""
        spec = SpecParser().parse_file(str(fixtures_dir / "intersection.xml"))

        events = spec.event_specs()
        assert [e.name for e in events] == ["Timer", "Reset", "Emergency"]
        assert events[0].inline
        assert not events[2].inline

    def test_async_marker(self, fixtures_dir) -> None:
        """Test the async marker resolves hook asyncness."""
        spec = SpecParser().parse_file(str(fixtures_dir / "camera.xml"))

        assert spec.is_async
        methods = {m.name: m for m in spec.trait_methods("event")}
        assert methods["pre_transition"].is_async
        assert not methods["post_transition"].is_async
        state_methods = {m.name: m for m in spec.trait_methods("state")}
        assert not state_methods["label"].is_async
        assert state_methods["should_exit"].generated
        assert state_methods["should_exit"].is_async

    def test_synthesized_trait_names(self) -> None:
        """Test missing traits get names derived from the machine name."""
        spec = parse("""
            <event_driven_state_machine name="Door">
              <context type="dict"/>
              <state_enum name="DoorState"/>
              <event_enum name="DoorEvent"/>
              <states>
                <state name="Open"><on event="Close" target="Closed"/></state>
                <state name="Closed"/>
              </states>
            </event_driven_state_machine>
        """)
        assert spec.trait_name("state") == "DoorStateTrait"
        assert spec.trait_name("event") == "DoorEventTrait"
        assert [m.name for m in spec.trait_methods("state")] == ["on_enter", "on_exit", "should_exit"]

    def test_trait_methods_do_not_modify_spec(self, fixtures_dir) -> None:
        """Test resolving trait methods returns copies."""
        spec = SpecParser().parse_file(str(fixtures_dir / "intersection.xml"))
        before = [m.is_async for m in spec.state_trait.methods]

        spec.trait_methods("state")

        assert [m.is_async for m in spec.state_trait.methods] == before


class TestParseErrors:
    """Test malformed specifications raise SpecParseError with line numbers."""

    def test_malformed_xml(self) -> None:
        """Test XML syntax errors carry the line."""
        with pytest.raises(SpecParseError) as exc_info:
            parse("<deterministic_state_machine name='M'>\n<context type='x'>\n</deterministic_state_machine>")
        assert exc_info.value.line is not None
        assert "malformed" in str(exc_info.value)

    def test_unknown_root(self) -> None:
        """Test an unknown root element is rejected."""
        with pytest.raises(SpecParseError, match="unknown specification root"):
            parse("<state_machine name='M'/>")

    def test_unknown_field(self) -> None:
        """Test unknown fields point at their line."""
        with pytest.raises(SpecParseError) as exc_info:
            parse("""<deterministic_state_machine name="M">
  <context type="dict"/>
  <transitions/>
  <states><state name="A"/></states>
</deterministic_state_machine>""")
        assert exc_info.value.line == 3
        assert str(exc_info.value).startswith("line 3:")

    def test_duplicate_field(self) -> None:
        """Test each field may appear once."""
        with pytest.raises(SpecParseError, match="duplicate <context>"):
            parse("""
                <deterministic_state_machine name="M">
                  <context type="dict"/>
                  <context type="list"/>
                  <states><state name="A"/></states>
                </deterministic_state_machine>
            """)

    def test_missing_required_field(self) -> None:
        """Test event-driven machines require both enumerations."""
        with pytest.raises(SpecParseError, match="missing <event_enum>"):
            parse("""
                <event_driven_state_machine name="M">
                  <context type="dict"/>
                  <state_enum name="S"/>
                  <states><state name="A"/></states>
                </event_driven_state_machine>
            """)

    def test_event_driven_field_in_deterministic(self) -> None:
        """Test event-driven fields are rejected by deterministic machines."""
        with pytest.raises(SpecParseError, match="only valid for event-driven"):
            parse("""
                <deterministic_state_machine name="M">
                  <context type="dict"/>
                  <state_enum name="S"/>
                  <states><state name="A"/></states>
                </deterministic_state_machine>
            """)

    def test_async_deterministic(self) -> None:
        """Test the async marker is rejected for deterministic machines."""
        with pytest.raises(SpecParseError, match="async marker"):
            parse("""
                <deterministic_state_machine name="M" async="true">
                  <context type="dict"/>
                  <states><state name="A"/></states>
                </deterministic_state_machine>
            """)

    @pytest.mark.parametrize(
        "on",
        [
            '<on event="Go" target="B">return B()</on>',
            '<on event="Go"/>',
        ],
    )
    def test_on_needs_target_or_body(self, on: str) -> None:
        """Test <on> must have exactly one of target and body."""
        with pytest.raises(SpecParseError, match="transition on 'Go'"):
            parse(f"""
                <event_driven_state_machine name="M">
                  <context type="dict"/>
                  <state_enum name="S"/>
                  <event_enum name="E"/>
                  <states><state name="A">{on}</state><state name="B"/></states>
                </event_driven_state_machine>
            """)

    def test_invalid_visibility(self) -> None:
        """Test visibility must be public or private."""
        with pytest.raises(SpecParseError, match="invalid visibility"):
            parse("""
                <deterministic_state_machine name="M" visibility="internal">
                  <context type="dict"/>
                  <states><state name="A"/></states>
                </deterministic_state_machine>
            """)

    def test_field_with_default_and_factory(self) -> None:
        """Test a field cannot have both a default and a factory."""
        with pytest.raises(SpecParseError, match="both default and factory"):
            parse("""
                <deterministic_state_machine name="M">
                  <context type="dict"/>
                  <states>
                    <state name="A"><field name="x" default="1" factory="list"/></state>
                  </states>
                </deterministic_state_machine>
            """)
