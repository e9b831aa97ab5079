"""
Traversal engine: walks an AST and applies a language's plug rules.

For each node the engine picks a dispatch key (the label bound to the node's
originating token, or its structural kind), resolves the single effective
rule, binds the node in a fresh plug context and renders the rule body.
Rendering a property that holds a node translates that node the same way, so
the walk is a depth-first recursive descent in source order.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from surn.ast.nodes import AstNode, Capability
from surn.errors import (
    Diagnostic,
    MissingProperty,
    NestingTooDeep,
    ReportKind,
    TranslationError,
    UnsupportedConstruct,
)
from surn.transpiler.labels import LabelRegistry
from surn.transpiler.options import (
    CustomOptions,
    DispatchPrecedence,
    FailurePolicy,
    TranslationOptions,
)
from surn.transpiler.rules import Direction, Rule, RuleTable
from surn.transpiler.synthesizers import Synthesizer
from surn.transpiler.template import (
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
from surn.transpiler.types import TypeEngine, TypeView, Unsupported

# Scoped overrides opened by nested plugs, keyed by (owning context id, path)
Overrides = dict[tuple[int, tuple[str, ...]], NestedPlug]


@dataclass
class PlugContext:
    """Binding environment of one rule invocation or nested plug.

    Attributes:
        value: The bound value, usually an AstNode
        binder: Name the value is bound to in the rule body
        origin: The node whose rule is executing, used in diagnostics
        token: Originating surface token, visible as `label`
        options: Custom options of the pass
        types: Type engine of the target language
        parent: Enclosing context for nested plugs, None for a rule invocation
        capability: Shape of the bound value, computed once
    """

    value: Any
    binder: str
    origin: AstNode | None
    token: str | None
    options: CustomOptions
    types: TypeEngine
    parent: "PlugContext | None" = None
    capability: Capability = field(init=False)

    def __post_init__(self) -> None:
        self.capability = Capability.of(self.value)

    def lookup(self, binder: str) -> "PlugContext | None":
        """Return the innermost context binding `binder`."""
        ctx: PlugContext | None = self
        while ctx is not None:
            if ctx.binder == binder:
                return ctx
            ctx = ctx.parent
        return None

    def bind(self, value: Any, binder: str) -> "PlugContext":
        """Open a nested context binding `value` as `binder`."""
        origin = value if isinstance(value, AstNode) else self.origin
        return PlugContext(
            value, binder, origin, self.token, self.options, self.types, parent=self
        )


@dataclass
class TranslationResult:
    """Outcome of translating one compilation unit.

    `text` is None when the unit failed; failures never yield partial output.
    """

    language: str
    unit: str | None
    text: str | None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    error: TranslationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.kind is ReportKind.WARNING]

    def unwrap(self) -> str:
        """Return the text, or raise the error the unit failed with."""
        if self.error is not None:
            raise self.error
        return self.text or ""


class Translator:
    """Applies one language's rules to AST trees.

    A translator holds the diagnostics of the pass in progress and must only
    run one pass at a time; create one per pass.
    """

    def __init__(
        self,
        language: str,
        labels: LabelRegistry,
        rules: RuleTable,
        types: TypeEngine,
        options: TranslationOptions | None = None,
        synthesizers: Mapping[str, Synthesizer] | None = None,
    ):
        self.language = language
        self.labels = labels
        self.rules = rules
        self.types = types
        self.options = options or TranslationOptions()
        self.synthesizers = dict(synthesizers or {})
        self._diagnostics: list[Diagnostic] = []

    # --- Entry points ---

    def translate(self, root: AstNode) -> TranslationResult:
        """Translate a whole compilation unit.

        Translation errors are reported in the result, never raised. Under
        the abort policy the first unsupported construct discards the output.
        """
        self._diagnostics = []
        unit = self.options.unit or (root.position.file if root.position else None)
        logger.debug(f"Translating {unit or root!r} to {self.language}")
        try:
            try:
                text = self.translate_node(root)
            except RecursionError as e:
                raise NestingTooDeep(
                    f"{root.kind} is nested too deeply to translate", root
                ) from e
        except TranslationError as e:
            logger.error(f"Translation to {self.language} failed: {e}")
            self._diagnostics.append(Diagnostic.from_error(e))
            return TranslationResult(
                self.language, unit, None, list(self._diagnostics), error=e
            )
        return TranslationResult(self.language, unit, text, list(self._diagnostics))

    def translate_node(self, node: AstNode) -> str:
        """Translate one node through its effective plug rule.

        Raises:
            UnsupportedConstruct: If no rule applies and the policy is abort
        """
        try:
            key, rule = self.resolve(node)
            ctx = PlugContext(
                node,
                rule.binder,
                node,
                node.token,
                self.options.custom_opts,
                self.types,
            )
            return self.invoke(rule, ctx, key)
        except UnsupportedConstruct as e:
            if self.options.failure_policy is not FailurePolicy.SKIP:
                raise
            logger.warning(f"Skipping {node.kind}: {e}")
            self._diagnostics.append(Diagnostic.from_error(e, ReportKind.WARNING))
            return ""

    def unplug(self, token: str, node: AstNode | None = None) -> str:
        """Run the parse-direction rule for a surface token.

        The rule is looked up under the token's label, falling back to the
        token itself. Inside the rule body `label` is the token.

        Raises:
            UnsupportedConstruct: If no unplug rule exists for the token
        """
        label = self.labels.resolve(token, self.language)
        keys = [k for k in (label, token) if k]
        for key in keys:
            rule = self.rules.resolve(self.language, key, Direction.UNPLUG)
            if rule is not None:
                ctx = PlugContext(
                    node, rule.binder, node, token, self.options.custom_opts, self.types
                )
                return self.invoke(rule, ctx, key)
        raise UnsupportedConstruct(
            f"No unplug rule for token '{token}' in {self.language}",
            node,
            key=keys[0] if keys else token,
        )

    # --- Dispatch ---

    def dispatch_keys(self, node: AstNode) -> list[str]:
        """Candidate keys for a node, in precedence order."""
        label = self.labels.resolve(node.token, self.language)
        if self.options.precedence is DispatchPrecedence.KIND_FIRST:
            ordered = [node.kind, label]
        else:
            ordered = [label, node.kind]
        keys: list[str] = []
        for key in ordered:
            if key and key not in keys:
                keys.append(key)
        return keys

    def resolve(self, node: AstNode) -> tuple[str, Rule]:
        keys = self.dispatch_keys(node)
        for key in keys:
            rule = self.rules.resolve(self.language, key)
            if rule is not None:
                logger.debug(f"[{self.language}] {node!r} -> rule {key}")
                return key, rule
        tried = " or ".join(keys) or repr(node.kind)
        raise UnsupportedConstruct(
            f"No rule for {tried} in {self.language}",
            node,
            key=keys[0] if keys else node.kind,
        )

    def invoke(self, rule: Rule, ctx: PlugContext, key: str) -> str:
        try:
            if rule.is_synthesizer:
                return self.synthesize(rule.body, ctx, key)
            return self.render(rule.body, ctx, {})
        except MissingProperty as e:
            raise UnsupportedConstruct(
                f"Rule {key} needs property '{e.property_name}', "
                f"which {getattr(ctx.origin, 'kind', 'the node')} does not have",
                ctx.origin,
                key=key,
            ) from e

    def synthesize(self, synthesizer: Synthesizer, ctx: PlugContext, key: str) -> str:
        """Run a structural rule and translate the subtree it returns."""
        subtree = synthesizer(ctx.value, ctx)
        if subtree is None:
            raise UnsupportedConstruct(f"Rule {key} declined the node", ctx.origin, key=key)
        return self.translate_node(subtree)

    # --- Rendering ---

    def render(self, body: tuple[Segment, ...], ctx: PlugContext, overrides: Overrides) -> str:
        """Render a rule body.

        Nested plugs are hoisted: they apply to every reference to their path
        in the body, wherever they are declared, and emit nothing themselves.
        """
        declared = [s for s in body if isinstance(s, NestedPlug)]
        if declared:
            overrides = dict(overrides)
            for plug in declared:
                overrides[self._override_key(plug.path, ctx)] = plug

        parts: list[str] = []
        for segment in body:
            match segment:
                case Text(value):
                    parts.append(value)
                case Interpolation(path, default):
                    parts.append(self._interpolate(path, default, ctx, overrides))
                case Join(separator, path):
                    parts.append(self._join(separator, path, ctx, overrides))
                case Conditional(condition, then, orelse):
                    branch = then if self._test(condition, ctx) else orelse
                    parts.append(self.render(branch, ctx, overrides))
                case Rewrite(name):
                    rewritten = self._rewrite(name, ctx)
                    if rewritten is not None:
                        parts.append(rewritten)
                        break
                case NestedPlug():
                    pass
        return "".join(parts)

    def _override_key(self, path: tuple[str, ...], ctx: PlugContext) -> tuple[int, tuple[str, ...]]:
        owner = ctx.lookup(path[0])
        if owner is not None:
            return id(owner), path[1:]
        return id(ctx), path

    def _resolve(self, path: tuple[str, ...], ctx: PlugContext) -> Any:
        """Resolve a property path.

        The head is a binder in scope, `label` for the originating token, or
        otherwise a property of the innermost binder.

        Raises:
            MissingProperty: If a step of the path does not exist
        """
        head, rest = path[0], path[1:]
        owner = ctx.lookup(head)
        if owner is not None:
            value = owner.value
        elif head == "label" and not rest:
            return ctx.token
        else:
            value, rest = ctx.value, path
        for attr in rest:
            value = self._attribute(value, attr, ctx)
        return value

    def _attribute(self, value: Any, attr: str, ctx: PlugContext) -> Any:
        if isinstance(value, AstNode):
            if attr in ("ty", "type"):
                return self.types.view(value)
            return value.get(attr)
        if isinstance(value, TypeView) and attr in ("name", "source", "erased"):
            return getattr(value, attr)
        if isinstance(value, Mapping) and attr in value:
            return value[attr]
        raise MissingProperty(attr, ctx.origin)

    def _interpolate(
        self,
        path: tuple[str, ...],
        default: str | None,
        ctx: PlugContext,
        overrides: Overrides,
    ) -> str:
        key = self._override_key(path, ctx)
        try:
            value = self._resolve(path, ctx)
        except MissingProperty:
            if default is None:
                raise
            return default
        if default is not None and _is_empty(value):
            return default
        if key in overrides:
            return self._render_override(overrides[key], key, value, ctx, overrides)
        return self._text(value, ctx)

    def _render_override(
        self,
        plug: NestedPlug,
        key: tuple[int, tuple[str, ...]],
        value: Any,
        ctx: PlugContext,
        overrides: Overrides,
    ) -> str:
        if not plug.body:
            return ""
        if isinstance(value, Unsupported):
            value = TypeView("", self.types.name_of(value.semantic_type), value.semantic_type)
        inner = {k: v for k, v in overrides.items() if k != key}
        return self.render(plug.body, ctx.bind(value, plug.binder), inner)

    def _join(
        self,
        separator: str,
        path: tuple[str, ...],
        ctx: PlugContext,
        overrides: Overrides,
    ) -> str:
        key = self._override_key(path, ctx)
        value = self._resolve(path, ctx)
        if value is None:
            return ""
        elements = value if isinstance(value, tuple | list) else (value,)
        results = []
        for element in elements:
            if key in overrides:
                text = self._render_override(overrides[key], key, element, ctx, overrides)
            else:
                text = self._text(element, ctx)
            if text:
                results.append(text)
        return separator.join(results)

    def _text(self, value: Any, ctx: PlugContext) -> str:
        """Turn a resolved value into target text, translating nodes."""
        match value:
            case None:
                return ""
            case bool():
                return "true" if value else "false"
            case str():
                return value
            case AstNode():
                return self.translate_node(value)
            case tuple() | list():
                return "".join(self._text(v, ctx) for v in value)
            case TypeView():
                return value.name
            case Unsupported():
                if self.types.type_system.erase_unsupported:
                    logger.debug(f"[{self.language}] erased type: {value.reason}")
                    return ""
                raise UnsupportedConstruct(
                    f"{self.language} cannot represent the type here: {value.reason}",
                    ctx.origin,
                    key="type",
                )
        return str(value)

    def _rewrite(self, name: str, ctx: PlugContext) -> str | None:
        synthesizer = self.synthesizers.get(name)
        if synthesizer is None:
            raise UnsupportedConstruct(
                f"Unknown synthesizer '{name}' in {self.language}", ctx.origin, key=name
            )
        subtree = synthesizer(ctx.value, ctx)
        if subtree is None:
            return None
        logger.debug(f"[{self.language}] {name} rewrote {ctx.value!r} as {subtree!r}")
        return self.translate_node(subtree)

    # --- Conditions ---

    def _test(self, condition: Condition, ctx: PlugContext) -> bool:
        match condition:
            case OptionSet(key=key):
                result = ctx.options.is_set(key)
            case HasCapability(binder=binder, capability=capability):
                owner = ctx.lookup(binder)
                result = owner is not None and owner.capability.name == capability
            case Compare(path=path, value=expected):
                try:
                    actual = self._resolve(path, ctx)
                except MissingProperty:
                    actual = None
                result = _scalar(actual) == expected
            case Present(path=path):
                try:
                    result = not _is_empty(self._resolve(path, ctx))
                except MissingProperty:
                    result = False
            case _:
                result = False
        return result != condition.negate


def _is_empty(value: Any) -> bool:
    if value is None or isinstance(value, Unsupported):
        return True
    if isinstance(value, TypeView):
        return value.erased
    if isinstance(value, str | tuple | list):
        return len(value) == 0
    return False


def _scalar(value: Any) -> str:
    """Comparable text of a value: nodes by name, types by spelling."""
    match value:
        case None:
            return ""
        case bool():
            return "true" if value else "false"
        case AstNode():
            return value.name or ""
        case TypeView():
            return value.name
    return str(value)
