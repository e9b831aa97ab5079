"""Fixtures and configuration for pytest."""

import pytest

from surn.ast import builders as b
from surn.ast.nodes import AstNode
from surn.transpiler import create_registry
from surn.transpiler.mapping import parse_mapping
from surn.transpiler.options import TranslationOptions
from surn.transpiler.registry import LanguageDescriptor

# A small language used by engine tests, independent of the bundled ones
TEST_MAPPING = """
@name test
@file_type tst

label AssignMut = "var" "let"
label AssignConst = "const"

@> Program { ${"\\n" <@ x.children} }

@> AssignMut as x {
    let $name${x.ty}@if x.value {${" = "}${x.value}};
    @> x.ty {}
}

@> Literal { $raw }
@> Identifier { $name }
@> CallExpression { ${x.callee}(${", " <@ x.args}) }
"""


@pytest.fixture
def registry():
    """A registry with the bundled languages."""
    return create_registry()


@pytest.fixture
def make_translator():
    """Build a translator for a mapping given as text."""

    def factory(text: str, options: TranslationOptions | None = None):
        descriptor = LanguageDescriptor.from_mapping(parse_mapping(text))
        descriptor.validate()
        return descriptor.translator(options)

    return factory


@pytest.fixture
def hello_var() -> AstNode:
    """`var hello: string = "Hello, {?}"`"""
    return b.variable("hello", b.literal("Hello, {?}"), type="string", token="var")


@pytest.fixture
def point_object() -> AstNode:
    """An object with properties `x: number` and `y: number`."""
    return b.object_statement(
        "Point",
        [
            b.object_property("x", "number", b.literal(0)),
            b.object_property("y", "number", b.literal(0)),
        ],
    )


@pytest.fixture
def greet_function() -> AstNode:
    """`fn greet(name: string) { return "Hi " + name }`"""
    return b.function(
        "greet",
        [b.identifier("name", type="string")],
        [b.return_statement(b.binary(b.literal("Hi "), "+", b.identifier("name")))],
    )


@pytest.fixture
def test_mapping() -> str:
    """Text of the small engine-test language."""
    return TEST_MAPPING
