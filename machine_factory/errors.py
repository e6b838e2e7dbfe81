"""
Generation-time errors

Any of these aborts generation as a whole: no artifact is written.
"""

from typing import Optional


class MachineFactoryError(Exception):
    """Base class for every error raised while generating a state machine"""


class SpecParseError(MachineFactoryError):
    """
    Malformed specification block

    Raised for XML syntax errors, unknown or duplicate fields, missing
    required fields and fields with the wrong shape.
    """

    def __init__(self, message: str, line: Optional[int] = None, expected: Optional[str] = None):
        self.message = message
        self.line = line
        self.expected = expected
        super().__init__(self._format())

    def _format(self) -> str:
        text = self.message
        if self.expected:
            text = f"{text} (expected {self.expected})"
        if self.line is not None:
            text = f"line {self.line}: {text}"
        return text


class SpecSemanticError(MachineFactoryError):
    """
    Well-formed specification that cannot be generated

    Carries the name of the offending specification element
    (state, event, trait method...) and its source line.
    """

    def __init__(self, message: str, element: Optional[str] = None, line: Optional[int] = None):
        self.message = message
        self.element = element
        self.line = line
        super().__init__(self._format())

    def _format(self) -> str:
        text = self.message
        if self.element:
            text = f"{self.element}: {text}"
        if self.line:
            text = f"line {self.line}: {text}"
        return text


class CodeGenerationError(MachineFactoryError):
    """Rendered output is not valid Python (template defect)"""
