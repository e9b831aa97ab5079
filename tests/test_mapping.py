"""Tests for reading mapping definitions."""

import pytest

from surn.errors import DuplicateLabelBinding, MappingSyntaxError, UndefinedRule
from surn.transpiler.mapping import (
    ImplDecl,
    LabelDecl,
    RuleDecl,
    compile_template,
    load_mapping,
    normalize_body,
    parse_mapping,
    unescape,
)
from surn.transpiler.rules import Direction
from surn.transpiler.template import (
    Compare,
    Conditional,
    HasCapability,
    Interpolation,
    Join,
    NestedPlug,
    OptionSet,
    Present,
    Text,
)

HEADER = """
@name demo
@description "Demo language"
@version 1.2.3
@author "Someone"
@file_type .dm dmx
@threading false
@typing static
@erase types
@option objects.base-object = Base
"""


def test_directives():
    """Test that metadata directives fill the definition."""
    definition = parse_mapping(HEADER)
    assert definition.name == "demo"
    assert definition.description == "Demo language"
    assert definition.version == "1.2.3"
    assert definition.author == "Someone"
    assert definition.file_types == ("dm", "dmx")
    assert definition.threading_allowed is False
    assert definition.typing == "static"
    assert definition.erase_types is True
    assert definition.options == {"objects.base-object": "Base"}


def test_defaults_when_directives_missing():
    """Test the defaults of an almost empty definition."""
    definition = parse_mapping("@name bare")
    assert definition.typing == "dynamic"
    assert definition.threading_allowed is True
    assert definition.erase_types is None
    assert definition.declarations == []


def test_missing_name():
    """Test that a definition must name its language."""
    with pytest.raises(MappingSyntaxError, match="missing @name"):
        parse_mapping("@typing static")


def test_unknown_directive_reports_position():
    """Test that errors carry the line and column of the problem."""
    with pytest.raises(MappingSyntaxError) as exc:
        parse_mapping("@name x\n\n@frobnicate yes", source="bad.smtt")
    assert exc.value.line == 3
    assert exc.value.column == 1
    assert "bad.smtt:3:1" in str(exc.value)


def test_unknown_typing_mode():
    """Test that only static and dynamic typing are accepted."""
    with pytest.raises(MappingSyntaxError, match="unknown typing mode 'gradual'"):
        parse_mapping("@name x\n@typing gradual")


def test_labels_types_and_impl_in_order():
    """Test that declarations are kept in declaration order."""
    definition = parse_mapping(
        """
@name demo
label AssignMut = "var" "let"
label AssignConst = "const"
type string = "const char*"
@> AssignConst { const $name; }
impl AssignConst to! AssignStatic
impl AssignConst to AssignFinal
"""
    )
    assert definition.types == {"string": "const char*"}
    decls = definition.declarations
    assert decls[0] == LabelDecl("AssignMut", ("var", "let"), 3)
    assert isinstance(decls[2], RuleDecl)
    assert decls[3] == ImplDecl("AssignConst", "AssignStatic", True, 7)
    assert decls[4] == ImplDecl("AssignConst", "AssignFinal", False, 8)


def test_build_applies_declarations():
    """Test that building produces label and rule tables."""
    definition = parse_mapping(
        """
@name demo
label AssignConst = "const"
@> AssignConst { const $name; }
@< AssignConst { const }
impl AssignConst to! AssignStatic
"""
    )
    labels, rules = definition.build()
    assert labels.resolve("const", "demo") == "AssignConst"
    assert rules.resolve("demo", "AssignStatic").copied_from == "AssignConst"
    assert rules.resolve("demo", "AssignConst", Direction.UNPLUG).body == (Text("const"),)


def test_build_reports_duplicate_labels():
    """Test that a token bound twice fails the build."""
    definition = parse_mapping('@name d\nlabel A = "x"\nlabel B = "x"')
    with pytest.raises(DuplicateLabelBinding):
        definition.build()


def test_build_reports_impl_of_undefined_rule():
    """Test that `impl` needs its source rule to be declared first."""
    definition = parse_mapping("@name d\nimpl Missing to! Other")
    with pytest.raises(UndefinedRule):
        definition.build()


def test_rule_binder_and_line():
    """Test the `as` binder and the recorded line of a rule."""
    definition = parse_mapping("@name d\n\n@> Class as c { class $name {} }")
    rule = definition.declarations[0].rule
    assert rule.key == "Class"
    assert rule.binder == "c"
    assert rule.line == 3


def test_comments_are_ignored():
    """Test that `//` comments between items are skipped."""
    definition = parse_mapping("// header\n@name d // trailing\n// more\n@> Literal { $raw }")
    assert definition.name == "d"
    assert len(definition.declarations) == 1


def test_unclosed_rule_block():
    """Test that an unclosed rule body is reported."""
    with pytest.raises(MappingSyntaxError, match="unclosed block for rule Literal"):
        parse_mapping("@name d\n@> Literal { $raw")


def test_invalid_path_in_body_reports_line():
    """Test that body errors point at the line inside the mapping file."""
    text = "@name d\n@> Literal {\n    ok\n    ${x.}\n}"
    with pytest.raises(MappingSyntaxError, match="invalid property path") as exc:
        parse_mapping(text)
    assert exc.value.line == 4


def test_load_mapping_from_file(tmp_path):
    """Test loading a mapping definition file."""
    path = tmp_path / "demo.smtt"
    path.write_text("@name demo\n@> Literal { $raw }\n", encoding="utf-8")
    definition = load_mapping(path)
    assert definition.name == "demo"
    assert definition.source == str(path)


def test_unescape():
    """Test the escapes of mapping strings."""
    assert unescape(r"a\nb\t\"c\"\\") == 'a\nb\t"c"\\'


def test_normalize_single_and_multi_line():
    """Test that bodies are stripped and dedented."""
    assert normalize_body("  const $name;  ") == "const $name;"
    assert normalize_body("\n    a\n        b\n    c\n  ") == "a\n    b\nc"


class TestBodySegments:
    """Tests for compiling rule bodies to segments."""

    def test_text_and_interpolation(self):
        """Test plain text with `$name` and `${path}`."""
        body = compile_template("let $name = ${x.value};")
        assert body == (
            Text("let "),
            Interpolation(("name",)),
            Text(" = "),
            Interpolation(("x", "value")),
            Text(";"),
        )

    def test_dollar_escape(self):
        """Test that `$$` emits a literal dollar sign."""
        assert compile_template("$$$name") == (Text("$"), Interpolation(("name",)))
        assert compile_template("a $ b") == (Text("a $ b"),)

    def test_quoted_literal_and_default(self):
        """Test `${"text"}` and `${path ?? "default"}`."""
        body = compile_template('${" = "}${x.value ?? "null"}')
        assert body == (Text(" = "), Interpolation(("x", "value"), "null"))

    def test_join(self):
        """Test `${"sep" <@ path}`."""
        body = compile_template('${",\\n" <@ x.args}')
        assert body == (Join(",\n", ("x", "args")),)

    def test_nested_plug_emits_no_line(self):
        """Test that a line holding only a nested plug is removed."""
        body = compile_template("let $name${x.ty};\n@> x.ty {}")
        assert body[-1] == NestedPlug(("x", "ty"), "ty", ())
        assert body[-2] == Text(";")

    def test_nested_plug_with_binder(self):
        """Test `@> path as name { body }`."""
        (plug,) = compile_template("@> x.params as p { ${p.ty} $name }")
        assert plug.path == ("x", "params")
        assert plug.binder == "p"
        assert plug.body == (
            Interpolation(("p", "ty")),
            Text(" "),
            Interpolation(("name",)),
        )

    def test_inline_conditional_after_word(self):
        """Test an `@if` directly after text."""
        body = compile_template('return@if x.value {${" "}${x.value}};')
        assert body[0] == Text("return")
        cond = body[1]
        assert isinstance(cond, Conditional)
        assert cond.condition == Present(path=("x", "value"))
        assert cond.body == (Text(" "), Interpolation(("x", "value")))
        assert body[2] == Text(";")

    def test_conditional_with_else_chain(self):
        """Test `if ... else if ... else` with comparisons."""
        (cond,) = compile_template(
            'if label == "let" { var } else if label != "const" { other } else { $label }'
        )
        assert cond.condition == Compare(path=("label",), value="let")
        (chained,) = cond.orelse
        assert chained.condition == Compare(negate=True, path=("label",), value="const")
        assert chained.body == (Text("other"),)
        assert chained.orelse == (Interpolation(("label",)),)

    def test_option_and_capability_conditions(self):
        """Test `option key` and `binder.is_class()` conditions."""
        (first, second) = compile_template(
            "@if option objects.parse-as-class {a}@if !x.is_plain_object() {b}"
        )
        assert first.condition == OptionSet(key="objects.parse-as-class")
        assert second.condition == HasCapability(
            negate=True, binder="x", capability="PLAIN_OBJECT"
        )

    def test_unknown_capability(self):
        """Test that only known capability checks are accepted."""
        with pytest.raises(MappingSyntaxError, match="unknown capability check"):
            compile_template("@if x.is_array() {a}")

    def test_if_in_target_text_is_text(self):
        """Test that `if` followed by a non-binder stays target text."""
        body = compile_template("if (ready) { go(); }")
        assert body == (Text("if (ready) { go(); }"),)

    def test_line_level_conditional_keeps_lines(self):
        """Test that a conditional on its own line emits its line break."""
        body = compile_template("a\n@if x.b {\n    b\n}\nc")
        assert body[0] == Text("a\n")
        cond = body[1]
        assert cond.body == (Text("b"), Text("\n"))
        assert body[2] == Text("c")
