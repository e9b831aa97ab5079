"""
Exceptions and error handling for the surn transpiler.

This module defines the exceptions raised while configuring target languages
and while translating an AST, together with the diagnostic records that
translation failures are reported as.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any


class TranspilerError(Exception):
    """Base class for every error raised by the transpiler.

    The class tracks the source file and line number of the AST node the
    error is about, when one is given, and appends them to the message.

    Examples:
        >>> raise TranspilerError("No rule for CallExpression")
        TranspilerError: No rule for CallExpression
    """

    code = 1

    def __init__(self, message: str, node: Any | None = None):
        """Initialize the exception with a message and optional AST node.

        Args:
            message: The error message
            node: Optional AST node where the error occurred
        """
        self.message = message
        self.node = node
        self.position = getattr(node, "position", None)
        self.file_path = getattr(self.position, "file", None)
        self.lineno = getattr(self.position, "line", None)

        location_info = ""
        if self.file_path:
            location_info = f" in {os.path.basename(self.file_path)}"
            if self.lineno:
                location_info += f" at line {self.lineno}"
        elif self.lineno:
            location_info = f" at line {self.lineno}"

        super().__init__(f"{message}{location_info}")

    def with_node(self, node: Any) -> "TranspilerError":
        """Create a new error of the same type bound to a different node."""
        error = self.__class__.__new__(self.__class__)
        TranspilerError.__init__(error, self.message, node)
        return error


class AstStructureError(TranspilerError):
    """Raised when an edit would share a node between parents or form a cycle."""

    code = 10


# Configuration-time errors: fatal to loading one language.


class ConfigurationError(TranspilerError):
    """Raised while building or registering a target language."""

    code = 20


class DuplicateLabelBinding(ConfigurationError):
    """A token was bound to two different labels of the same language."""

    code = 21

    def __init__(self, token: str, existing: str, label: str, language: str):
        self.token = token
        self.existing = existing
        self.label = label
        self.language = language
        super().__init__(
            f"Token '{token}' is already bound to label '{existing}' "
            f"in {language}, cannot bind it to '{label}'"
        )


class RuleConflict(ConfigurationError):
    """A rule was installed over an existing one without an override."""

    code = 22

    def __init__(self, language: str, key: str, direction: str = "plug"):
        self.language = language
        self.key = key
        self.direction = direction
        super().__init__(
            f"A {direction} rule for '{key}' already exists in {language}; "
            "use an explicit override to replace it"
        )


class UndefinedRule(ConfigurationError):
    """An override or copy named a rule that does not exist."""

    code = 23


class MappingSyntaxError(ConfigurationError):
    """A mapping definition could not be read."""

    code = 24

    def __init__(
        self,
        message: str,
        line: int | None = None,
        column: int | None = None,
        source: str | None = None,
    ):
        self.line = line
        self.column = column
        self.source = source
        where = source or "<mapping>"
        if line is not None:
            where += f":{line}"
            if column is not None:
                where += f":{column}"
        super().__init__(f"{where}: {message}")


class IncompatibleExtension(ConfigurationError):
    """A native extension reported an unsupported bridge API version."""

    code = 25

    def __init__(self, name: str, api_version: int, expected: int):
        self.name = name
        self.api_version = api_version
        self.expected = expected
        super().__init__(
            f"Extension '{name}' targets bridge API v{api_version}, "
            f"expected v{expected}"
        )


# Translation-time errors: reported per compilation unit.


class TranslationError(TranspilerError):
    """Raised while translating one compilation unit."""

    code = 30


class MissingProperty(TranslationError):
    """A rule asked a node for a property it does not have."""

    code = 31

    def __init__(self, name: str, node: Any | None = None):
        self.property_name = name
        kind = getattr(node, "kind", "node")
        super().__init__(f"{kind} has no property '{name}'", node)


class UnsupportedConstruct(TranslationError):
    """No effective rule exists for a node, or a rule could not be applied."""

    code = 32

    def __init__(self, message: str, node: Any | None = None, key: str | None = None):
        self.key = key
        super().__init__(message, node)


class ExtensionFailure(TranslationError):
    """A native extension's transform call reported failure."""

    code = 33


class NestingTooDeep(TranslationError):
    """The AST is nested deeper than the recursive walk can follow."""

    code = 34


# Diagnostics


class ReportKind(Enum):
    """Severity of a diagnostic."""

    ERROR = "error"
    WARNING = "warning"
    NOTICE = "notice"


@dataclass(frozen=True)
class Diagnostic:
    """A structured report about one compilation unit.

    Attributes:
        kind: Severity
        code: Numeric error code of the originating exception
        message: Human-readable message without location
        position: Source position of the offending node, if known
        key: Dispatch key involved, if any
    """

    kind: ReportKind
    code: int
    message: str
    position: Any | None = None
    key: str | None = None

    @classmethod
    def from_error(
        cls, error: TranspilerError, kind: ReportKind = ReportKind.ERROR
    ) -> "Diagnostic":
        return cls(
            kind=kind,
            code=error.code,
            message=error.message,
            position=error.position,
            key=getattr(error, "key", None),
        )

    def __str__(self) -> str:
        where = f"{self.position}: " if self.position else ""
        return f"{where}{self.kind.value}[{self.code}]: {self.message}"
