"""Tests for transpiler errors and diagnostics."""

from surn.ast import builders as b
from surn.ast.nodes import SourcePosition
from surn.errors import (
    ConfigurationError,
    Diagnostic,
    DuplicateLabelBinding,
    ExtensionFailure,
    MappingSyntaxError,
    MissingProperty,
    NestingTooDeep,
    ReportKind,
    RuleConflict,
    TranslationError,
    TranspilerError,
    UnsupportedConstruct,
)


def test_error_without_node():
    """Test an error message without location."""
    error = TranspilerError("Something failed")
    assert str(error) == "Something failed"
    assert error.position is None


def test_error_location_from_node():
    """Test that the file and line of the node are appended."""
    node = b.identifier("a", position=SourcePosition("/src/main.sn", 12, 4))
    error = UnsupportedConstruct("No rule for Identifier", node, key="Identifier")
    assert str(error) == "No rule for Identifier in main.sn at line 12"
    assert error.message == "No rule for Identifier"
    assert error.lineno == 12


def test_error_line_without_file():
    """Test the location of a node with a line but no file."""
    node = b.identifier("a", position=SourcePosition(line=3))
    assert str(TranslationError("Bad", node)) == "Bad at line 3"


def test_with_node_keeps_type():
    """Test rebinding an error to another node."""
    error = ExtensionFailure("failed")
    node = b.identifier("a", position=SourcePosition("x.sn", 1))
    rebound = error.with_node(node)
    assert isinstance(rebound, ExtensionFailure)
    assert str(rebound) == "failed in x.sn at line 1"


def test_hierarchy_and_codes():
    """Test the configuration and translation error families."""
    assert issubclass(DuplicateLabelBinding, ConfigurationError)
    assert issubclass(RuleConflict, ConfigurationError)
    assert issubclass(MappingSyntaxError, ConfigurationError)
    assert issubclass(MissingProperty, TranslationError)
    assert issubclass(UnsupportedConstruct, TranslationError)
    assert issubclass(NestingTooDeep, TranslationError)
    codes = [
        DuplicateLabelBinding.code,
        RuleConflict.code,
        MappingSyntaxError.code,
        MissingProperty.code,
        UnsupportedConstruct.code,
        ExtensionFailure.code,
        NestingTooDeep.code,
    ]
    assert len(set(codes)) == len(codes)


def test_specific_messages():
    """Test the messages of errors with structured fields."""
    assert "already bound to label 'AssignMut'" in str(
        DuplicateLabelBinding("let", "AssignMut", "AssignConst", "javascript")
    )
    assert "explicit override" in str(RuleConflict("php", "Literal"))
    assert str(MappingSyntaxError("bad", 2, 5, "js.smtt")) == "js.smtt:2:5: bad"
    assert str(MappingSyntaxError("bad")) == "<mapping>: bad"


def test_diagnostic_from_error():
    """Test converting an error to a diagnostic."""
    node = b.identifier("a", position=SourcePosition("main.sn", 2, 1))
    error = UnsupportedConstruct("No rule for Identifier", node, key="Identifier")
    diagnostic = Diagnostic.from_error(error, ReportKind.WARNING)
    assert diagnostic.kind is ReportKind.WARNING
    assert diagnostic.code == 32
    assert diagnostic.key == "Identifier"
    assert str(diagnostic) == "main.sn:2:1: warning[32]: No rule for Identifier"
