"""
Reader for mapping definitions (SMTT, the Surn Mapped Token Tree format).

A mapping definition describes one target language: its metadata, its label
vocabulary, its type spellings and its plug/unplug rules. Reading a
definition produces a `MappingDefinition`, which builds the language's
`LabelRegistry` and `RuleTable`.

Example:
    @name javascript
    @file_type js mjs

    label AssignMut = "var" "let"

    @> AssignMut as x {
        let $name${x.ty} = ${x.value};
        @> x.ty {}
    }
"""

import re
import textwrap
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from loguru import logger

from surn.errors import MappingSyntaxError
from surn.transpiler.labels import LabelRegistry
from surn.transpiler.rules import Direction, Rule, RuleTable
from surn.transpiler.template import (
    CAPABILITY_METHODS,
    Compare,
    Condition,
    Conditional,
    HasCapability,
    Interpolation,
    Join,
    NestedPlug,
    OptionSet,
    Present,
    Rewrite,
    Segment,
    Text,
)

_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_KEY = re.compile(r"[A-Za-z_][A-Za-z0-9_.\-]*")
_PATH = re.compile(r"[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*")
_STRING = re.compile(r'"((?:[^"\\]|\\.)*)"')
_IF = re.compile(
    r"(?P<at>@)?if\s+(?P<neg>!\s*)?"
    r"(?P<cond>option\s+[A-Za-z_][\w.\-]*"
    r"|[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*(?:\(\))?"
    r"(?:\s*(?:==|!=)\s*(?:\"(?:[^\"\\]|\\.)*\"|[\w.\-]+))?)"
    r"\s*\{"
)
_REWRITE = re.compile(r"@rewrite[ \t]+(?P<name>[A-Za-z_][A-Za-z0-9_.\-]*)")
_ESCAPES = {"n": "\n", "t": "\t", '"': '"', "\\": "\\", "r": "\r"}


def unescape(text: str) -> str:
    """Process the escapes allowed in mapping string literals."""
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), text)


# =============================================================================
# Mapping definition
# =============================================================================


@dataclass(frozen=True)
class LabelDecl:
    label: str
    tokens: tuple[str, ...]
    line: int


@dataclass(frozen=True)
class RuleDecl:
    direction: Direction
    rule: Rule


@dataclass(frozen=True)
class ImplDecl:
    from_key: str
    to_key: str
    force: bool
    line: int


@dataclass
class MappingDefinition:
    """Everything a mapping definition declares, in declaration order."""

    name: str
    description: str = ""
    version: str = "0.0.0"
    author: str = ""
    file_types: tuple[str, ...] = ()
    threading_allowed: bool = True
    typing: str = "dynamic"
    erase_types: bool | None = None
    options: dict[str, Any] = field(default_factory=dict)
    types: dict[str, str] = field(default_factory=dict)
    declarations: list[LabelDecl | RuleDecl | ImplDecl] = field(default_factory=list)
    source: str | None = None

    def build(self) -> tuple[LabelRegistry, RuleTable]:
        """Apply the declarations in order to fresh tables.

        Raises:
            DuplicateLabelBinding: If a token is bound to two labels
            RuleConflict: If a rule is declared twice without override
            UndefinedRule: If `impl` copies an undefined rule
        """
        labels = LabelRegistry()
        rules = RuleTable()
        for decl in self.declarations:
            match decl:
                case LabelDecl(label, tokens, _):
                    labels.define(label, list(tokens), self.name)
                case RuleDecl(Direction.PLUG, rule):
                    rules.install_plug(self.name, rule.key, rule)
                case RuleDecl(Direction.UNPLUG, rule):
                    rules.install_unplug(self.name, rule.key, rule)
                case ImplDecl(from_key, to_key, force, _):
                    rules.copy_rule(self.name, from_key, to_key, force=force)
        return labels, rules


# =============================================================================
# Block scanning
# =============================================================================


def _skip_string(text: str, i: int) -> int:
    """Return the index after the string literal starting at `i`."""
    i += 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == '"':
            return i + 1
        i += 1
    raise ValueError("unterminated string")


def _skip_interpolation(text: str, i: int) -> int:
    """Return the index after the `}` closing an interpolation opened before `i`."""
    while i < len(text):
        c = text[i]
        if c == '"':
            i = _skip_string(text, i)
            continue
        if c == "}":
            return i + 1
        i += 1
    raise ValueError("unterminated interpolation")


def _find_block_end(text: str, i: int) -> int:
    """Return the index of the `}` that closes the block whose body starts at `i`."""
    depth = 0
    while i < len(text):
        if text.startswith("$$", i):
            i += 2
            continue
        if text.startswith("${", i):
            i = _skip_interpolation(text, i + 2)
            continue
        c = text[i]
        if c == "{":
            depth += 1
        elif c == "}":
            if depth == 0:
                return i
            depth -= 1
        i += 1
    raise ValueError("unclosed block")


def normalize_body(raw: str) -> str:
    """Normalise the raw text between a block's braces.

    Single-line bodies are stripped. Multi-line bodies lose their first line
    when it is blank, their trailing blank lines, and common indentation.
    """
    if "\n" not in raw:
        return raw.strip()
    lines = raw.split("\n")
    first = None
    if lines[0].strip():
        first = lines[0].strip()
    lines = lines[1:]
    while lines and not lines[-1].strip():
        lines.pop()
    rest = textwrap.dedent("\n".join(lines))
    if first is None:
        return rest
    return f"{first}\n{rest}" if rest else first


# =============================================================================
# Body parser
# =============================================================================


class _BodyParser:
    """Parses a normalised block body into segments."""

    def __init__(self, text: str, binders: tuple[str, ...], line: int, source: str | None):
        self.text = text
        self.binders = binders
        self.line = line
        self.source = source

    def error(self, message: str, index: int | None = None) -> MappingSyntaxError:
        line = self.line
        if index is not None:
            line += self.text.count("\n", 0, index)
        return MappingSyntaxError(message, line, source=self.source)

    def parse(self) -> tuple[Segment, ...]:
        text = self.text
        segments: list[Segment] = []
        buf: list[str] = []
        dirty = False  # current output line has content
        i = 0

        def flush() -> None:
            if buf:
                segments.append(Text("".join(buf)))
                buf.clear()

        def pop_indent() -> str:
            indent: list[str] = []
            while buf and buf[-1] in " \t":
                indent.append(buf.pop())
            return "".join(reversed(indent))

        def drop_line_break() -> None:
            if buf:
                if buf[-1] == "\n":
                    buf.pop()
                return
            for k in range(len(segments) - 1, -1, -1):
                segment = segments[k]
                if isinstance(segment, NestedPlug | Rewrite):
                    continue
                if isinstance(segment, Text) and segment.value.endswith("\n"):
                    segments[k] = Text(segment.value[:-1])
                return

        def rest_of_line_blank(j: int) -> tuple[bool, int]:
            k = j
            while k < len(text) and text[k] in " \t":
                k += 1
            if k >= len(text):
                return True, k
            if text[k] == "\n":
                return True, k + 1
            return False, j

        while i < len(text):
            if text.startswith("$$", i):
                buf.append("$")
                dirty = True
                i += 2
            elif text.startswith("${", i):
                try:
                    end = _skip_interpolation(text, i + 2)
                except ValueError:
                    raise self.error("unterminated interpolation", i) from None
                flush()
                segments.append(self.parse_expression(text[i + 2 : end - 1], i))
                dirty = True
                i = end
            elif text[i] == "$" and _IDENT.match(text, i + 1):
                m = _IDENT.match(text, i + 1)
                flush()
                segments.append(Interpolation((m.group(0),)))
                dirty = True
                i = m.end()
            elif text.startswith("@>", i) or text.startswith("@rewrite", i):
                # Declarations emit nothing; a line holding only one is removed.
                line_level = not dirty
                indent = pop_indent() if line_level else ""
                if text.startswith("@>", i):
                    segment, end = self.parse_nested_plug(i)
                else:
                    m = _REWRITE.match(text, i)
                    if not m:
                        raise self.error("expected a synthesizer name after @rewrite", i)
                    segment, end = Rewrite(m.group("name")), m.end()
                blank, after = rest_of_line_blank(end)
                if line_level and blank:
                    if after == len(text) and not text.endswith("\n"):
                        drop_line_break()
                    i = after
                else:
                    buf.append(indent)
                    i = end
                flush()
                segments.append(segment)
            elif self.is_conditional(i):
                line_level = not dirty
                indent = pop_indent() if line_level else ""
                segment, end = self.parse_conditional(i, indent)
                flush()
                blank, after = rest_of_line_blank(end)
                if line_level and blank:
                    if after > end and text[after - 1] == "\n":
                        segment = _append_text(segment, "\n")
                    i = after
                else:
                    i = end
                segments.append(segment)
                dirty = not (line_level and blank)
            else:
                c = text[i]
                buf.append(c)
                if c == "\n":
                    dirty = False
                elif not c.isspace():
                    dirty = True
                i += 1
        flush()
        return tuple(segments)

    # --- Expressions ---

    def parse_path(self, text: str, index: int) -> tuple[str, ...]:
        text = text.strip()
        if not _PATH.fullmatch(text):
            raise self.error(f"invalid property path '{text}'", index)
        return tuple(text.split("."))

    def parse_expression(self, expr: str, index: int) -> Segment:
        expr = expr.strip()
        if expr.startswith('"'):
            m = _STRING.match(expr)
            if not m:
                raise self.error("unterminated string in interpolation", index)
            value = unescape(m.group(1))
            rest = expr[m.end() :].strip()
            if not rest:
                return Text(value)
            if rest.startswith("<@"):
                return Join(value, self.parse_path(rest[2:], index))
            raise self.error(f"expected '<@' after separator, found '{rest}'", index)
        if "??" in expr:
            left, right = expr.split("??", 1)
            right = right.strip()
            m = _STRING.fullmatch(right)
            default = unescape(m.group(1)) if m else right
            return Interpolation(self.parse_path(left, index), default)
        return Interpolation(self.parse_path(expr, index))

    # --- Nested plugs ---

    def parse_nested_plug(self, i: int) -> tuple[NestedPlug, int]:
        text = self.text
        header = re.compile(r"@>\s*(?P<path>[A-Za-z_][\w.]*)(?:\s+as\s+(?P<binder>[A-Za-z_]\w*))?\s*\{")
        m = header.match(text, i)
        if not m:
            raise self.error("malformed nested plug; expected '@> path [as name] {'", i)
        path = self.parse_path(m.group("path"), i)
        binder = m.group("binder") or path[-1]
        body, end = self.parse_block(m.end(), self.binders + (binder,))
        return NestedPlug(path, binder, body), end

    def parse_block(self, start: int, binders: tuple[str, ...], indent: str = "") -> tuple[tuple[Segment, ...], int]:
        """Parse the block whose body starts at `start`; return (body, index after `}`)."""
        try:
            close = _find_block_end(self.text, start)
        except ValueError:
            raise self.error("unclosed block", start) from None
        raw = self.text[start:close]
        body = normalize_body(raw)
        if indent and body:
            body = textwrap.indent(body, indent)
        line = self.line + self.text.count("\n", 0, start)
        parser = _BodyParser(body, binders, line, self.source)
        return parser.parse(), close + 1

    # --- Conditionals ---

    def is_conditional(self, i: int) -> bool:
        text = self.text
        if text[i] != "@" and i > 0 and (text[i - 1].isalnum() or text[i - 1] == "_"):
            return False
        m = _IF.match(text, i)
        if not m:
            return False
        if m.group("at"):
            return True
        head = re.match(r"[A-Za-z_]\w*", m.group("cond")).group(0)
        return head in ("label", "option") or head in self.binders

    def parse_condition(self, cond: str, negate: bool, index: int) -> Condition:
        cond = cond.strip()
        if cond.startswith("option"):
            return OptionSet(negate=negate, key=cond[len("option") :].strip())
        m = re.fullmatch(r"(?P<path>[\w.]+)\s*(?P<op>==|!=)\s*(?P<value>.+)", cond)
        if m:
            value = m.group("value").strip()
            sm = _STRING.fullmatch(value)
            if sm:
                value = unescape(sm.group(1))
            if m.group("op") == "!=":
                negate = not negate
            return Compare(negate=negate, path=self.parse_path(m.group("path"), index), value=value)
        if cond.endswith("()"):
            path = self.parse_path(cond[:-2], index)
            if len(path) != 2 or path[1] not in CAPABILITY_METHODS:
                known = ", ".join(CAPABILITY_METHODS)
                raise self.error(f"unknown capability check '{cond}' (known: {known})", index)
            return HasCapability(negate=negate, binder=path[0], capability=CAPABILITY_METHODS[path[1]])
        return Present(negate=negate, path=self.parse_path(cond, index))

    def parse_conditional(self, i: int, indent: str) -> tuple[Conditional, int]:
        text = self.text
        m = _IF.match(text, i)
        condition = self.parse_condition(m.group("cond"), bool(m.group("neg")), i)
        body, end = self.parse_block(m.end(), self.binders, indent)
        orelse: tuple[Segment, ...] = ()

        j = end
        while j < len(text) and text[j].isspace():
            j += 1
        if text.startswith("else", j) and not (j + 4 < len(text) and (text[j + 4].isalnum() or text[j + 4] == "_")):
            k = j + 4
            while k < len(text) and text[k].isspace():
                k += 1
            if _IF.match(text, k):
                chained, end = self.parse_conditional(k, indent)
                orelse = (chained,)
            elif k < len(text) and text[k] == "{":
                orelse, end = self.parse_block(k + 1, self.binders, indent)
            else:
                raise self.error("expected '{' or 'if' after else", k)
        return Conditional(condition, body, orelse), end


def _append_text(segment: Conditional, suffix: str) -> Conditional:
    """Append `suffix` to every non-empty branch of a conditional chain."""

    def extend(body: tuple[Segment, ...]) -> tuple[Segment, ...]:
        if not body:
            return body
        if len(body) == 1 and isinstance(body[0], Conditional):
            return (_append_text(body[0], suffix),)
        return body + (Text(suffix),)

    return replace(segment, body=extend(segment.body), orelse=extend(segment.orelse))


def compile_template(
    text: str, binders: tuple[str, ...] = ("x",), source: str | None = None
) -> tuple[Segment, ...]:
    """Compile template text, as found inside a plug block, to segments."""
    return _BodyParser(normalize_body(text), binders, 1, source).parse()


# =============================================================================
# Top-level parser
# =============================================================================


class _MappingParser:
    def __init__(self, text: str, source: str | None):
        self.text = text
        self.source = source
        self.i = 0

    # --- Scanning helpers ---

    def position(self, index: int | None = None) -> tuple[int, int]:
        index = self.i if index is None else index
        line = self.text.count("\n", 0, index) + 1
        column = index - (self.text.rfind("\n", 0, index) + 1) + 1
        return line, column

    def error(self, message: str, index: int | None = None) -> MappingSyntaxError:
        line, column = self.position(index)
        return MappingSyntaxError(message, line, column, self.source)

    def eof(self) -> bool:
        return self.i >= len(self.text)

    def skip_blank(self, newlines: bool = True) -> None:
        text = self.text
        while self.i < len(text):
            c = text[self.i]
            if c == "\n" and not newlines:
                return
            if c.isspace():
                self.i += 1
            elif text.startswith("//", self.i):
                end = text.find("\n", self.i)
                self.i = len(text) if end < 0 else end
            else:
                return

    def at_line_end(self) -> bool:
        self.skip_blank(newlines=False)
        return self.eof() or self.text[self.i] == "\n"

    def expect(self, literal: str) -> None:
        self.skip_blank(newlines=False)
        if not self.text.startswith(literal, self.i):
            raise self.error(f"expected '{literal}'")
        self.i += len(literal)

    def read(self, pattern: re.Pattern[str], what: str) -> str:
        self.skip_blank(newlines=False)
        m = pattern.match(self.text, self.i)
        if not m:
            raise self.error(f"expected {what}")
        self.i = m.end()
        return m.group(0)

    def read_string(self) -> str:
        self.skip_blank(newlines=False)
        m = _STRING.match(self.text, self.i)
        if not m:
            raise self.error("expected a double-quoted string")
        self.i = m.end()
        return unescape(m.group(1))

    def read_word_or_string(self) -> str:
        self.skip_blank(newlines=False)
        if self.text.startswith('"', self.i):
            return self.read_string()
        return self.read(re.compile(r"[^\s,\"]+"), "a value")

    def read_values(self) -> list[str]:
        """Read space or comma separated values up to the end of the line."""
        values = []
        while not self.at_line_end():
            if self.text[self.i] == ",":
                self.i += 1
                continue
            values.append(self.read_word_or_string())
        return values

    # --- Items ---

    def parse(self) -> MappingDefinition:
        definition = MappingDefinition(name="", source=self.source)
        while True:
            self.skip_blank()
            if self.eof():
                break
            text = self.text
            if text.startswith("@>", self.i):
                self.parse_rule(definition, Direction.PLUG)
            elif text.startswith("@<", self.i):
                self.parse_rule(definition, Direction.UNPLUG)
            elif text.startswith("@", self.i):
                self.parse_directive(definition)
            elif self.keyword("label"):
                self.parse_label(definition)
            elif self.keyword("type"):
                self.parse_type(definition)
            elif self.keyword("impl"):
                self.parse_impl(definition)
            else:
                raise self.error("expected a directive, label, type, impl or rule")
        if not definition.name:
            raise MappingSyntaxError("missing @name directive", source=self.source)
        return definition

    def keyword(self, word: str) -> bool:
        m = _IDENT.match(self.text, self.i)
        if m and m.group(0) == word:
            self.i = m.end()
            return True
        return False

    def parse_directive(self, definition: MappingDefinition) -> None:
        start = self.i
        self.i += 1
        name = self.read(_IDENT, "a directive name")
        if name == "name":
            definition.name = self.read(_KEY, "a language name")
        elif name == "description":
            definition.description = self.read_string()
        elif name == "version":
            definition.version = self.read_word_or_string()
        elif name == "author":
            definition.author = self.read_string()
        elif name == "file_type":
            definition.file_types = tuple(v.lstrip(".") for v in self.read_values())
        elif name == "threading":
            definition.threading_allowed = self.read_bool()
        elif name == "typing":
            mode = self.read(_IDENT, "static or dynamic")
            if mode not in ("static", "dynamic"):
                raise self.error(f"unknown typing mode '{mode}'", start)
            definition.typing = mode
        elif name == "erase":
            what = self.read(_IDENT, "types or none")
            if what not in ("types", "none"):
                raise self.error(f"unknown erase policy '{what}'", start)
            definition.erase_types = what == "types"
        elif name == "option":
            key = self.read(_KEY, "an option name")
            self.expect("=")
            definition.options[key] = self.read_word_or_string()
        else:
            raise self.error(f"unknown directive '@{name}'", start)
        if not self.at_line_end():
            raise self.error(f"unexpected text after @{name}")

    def read_bool(self) -> bool:
        value = self.read(_IDENT, "true or false").lower()
        if value in ("true", "yes", "on"):
            return True
        if value in ("false", "no", "off"):
            return False
        raise self.error(f"expected true or false, found '{value}'")

    def parse_label(self, definition: MappingDefinition) -> None:
        line, _ = self.position()
        label = self.read(_IDENT, "a label name")
        self.expect("=")
        tokens = self.read_values()
        if not tokens:
            raise self.error(f"label {label} has no tokens")
        definition.declarations.append(LabelDecl(label, tuple(tokens), line))

    def parse_type(self, definition: MappingDefinition) -> None:
        source_type = self.read(_KEY, "a source type name")
        self.expect("=")
        definition.types[source_type] = self.read_word_or_string()

    def parse_impl(self, definition: MappingDefinition) -> None:
        line, _ = self.position()
        from_key = self.read(_IDENT, "a rule key")
        self.expect("to")
        force = False
        if self.text.startswith("!", self.i):
            force = True
            self.i += 1
        to_key = self.read(_IDENT, "a rule key")
        definition.declarations.append(ImplDecl(from_key, to_key, force, line))

    def parse_rule(self, definition: MappingDefinition, direction: Direction) -> None:
        start = self.i
        self.i += 2
        key = self.read(_IDENT, "a label or node kind")
        binder = "x"
        self.skip_blank(newlines=False)
        if self.keyword("as"):
            binder = self.read(_IDENT, "a binder name")
        self.expect("{")
        body_start = self.i
        try:
            close = _find_block_end(self.text, body_start)
        except ValueError:
            raise self.error(f"unclosed block for rule {key}", start) from None
        line, _ = self.position(body_start)
        raw = self.text[body_start:close]
        # A body whose first line is blank starts on the following line.
        if "\n" in raw and not raw.split("\n", 1)[0].strip():
            line += 1
        body = _BodyParser(normalize_body(raw), (binder,), line, self.source).parse()
        self.i = close + 1
        rule = Rule(key=key, body=body, binder=binder, line=self.position(start)[0])
        definition.declarations.append(RuleDecl(direction, rule))


def parse_mapping(text: str, source: str | None = None) -> MappingDefinition:
    """Read a mapping definition.

    Raises:
        MappingSyntaxError: If the text is malformed
    """
    definition = _MappingParser(text, source).parse()
    rules = sum(isinstance(d, RuleDecl) for d in definition.declarations)
    logger.debug(f"Read mapping for {definition.name} from {source or '<text>'}: {rules} rules")
    return definition


def load_mapping(path: str | Path) -> MappingDefinition:
    path = Path(path)
    return parse_mapping(path.read_text(encoding="utf-8"), str(path))
