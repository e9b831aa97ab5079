"""Rule table: the compiled form of a mapping definition."""

from dataclasses import dataclass, replace
from enum import Enum, IntEnum

from loguru import logger

from surn.errors import ConfigurationError, RuleConflict, UndefinedRule
from surn.transpiler.synthesizers import Synthesizer
from surn.transpiler.template import Rewrite, Segment, walk_segments


class Direction(Enum):
    """Rule namespaces. Plug and unplug rules never resolve across."""

    PLUG = "plug"
    UNPLUG = "unplug"


class Priority(IntEnum):
    NORMAL = 0
    OVERRIDE = 1


@dataclass(frozen=True)
class Rule:
    """One plug or unplug transformation.

    Attributes:
        key: Label or node kind the rule is installed under
        body: Template segments, or a synthesizer callable
        binder: Name the bound node is visible as inside the body
        priority: OVERRIDE for rules installed by an explicit override
        copied_from: Key this rule's body was copied from, if any
        line: Line of the mapping definition the rule came from
    """

    key: str
    body: tuple[Segment, ...] | Synthesizer
    binder: str = "x"
    priority: Priority = Priority.NORMAL
    copied_from: str | None = None
    line: int | None = None

    @classmethod
    def template(cls, key: str, text: str, binder: str = "x") -> "Rule":
        """Compile a rule from template text written in mapping syntax."""
        from surn.transpiler.mapping import compile_template

        return cls(key=key, body=compile_template(text, binders=(binder,)), binder=binder)

    @property
    def is_synthesizer(self) -> bool:
        return callable(self.body)

    def rewrites(self) -> list[str]:
        """Names of the synthesizers this rule's body invokes."""
        if self.is_synthesizer:
            return []
        return [s.synthesizer for s in walk_segments(self.body) if isinstance(s, Rewrite)]


class RuleTable:
    """Plug and unplug rules keyed by (language, key).

    At most one rule is effective per key and direction: installing over an
    existing rule requires an explicit override.
    """

    def __init__(self) -> None:
        self._rules: dict[Direction, dict[tuple[str, str], Rule]] = {
            direction: {} for direction in Direction
        }
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def _check_mutable(self, language: str) -> None:
        if self._frozen:
            raise ConfigurationError(
                f"Rule table for {language} is frozen; "
                "rebuild and re-register the language to change rules"
            )

    def _install(
        self, direction: Direction, language: str, key: str, rule: Rule, override: bool
    ) -> None:
        self._check_mutable(language)
        slot = (language, key)
        table = self._rules[direction]
        if slot in table and not override:
            raise RuleConflict(language, key, direction.value)
        if rule.key != key:
            rule = replace(rule, key=key)
        if override:
            rule = replace(rule, priority=Priority.OVERRIDE)
        table[slot] = rule
        logger.debug(f"[{language}] installed {direction.value} rule {key}")

    def install_plug(self, language: str, key: str, rule: Rule, override: bool = False) -> None:
        """Register an emission rule.

        Raises:
            RuleConflict: If `key` already has a rule and `override` is False
        """
        self._install(Direction.PLUG, language, key, rule, override)

    def install_unplug(self, language: str, key: str, rule: Rule, override: bool = False) -> None:
        """Register a parse-direction rule. Mirrors `install_plug`."""
        self._install(Direction.UNPLUG, language, key, rule, override)

    def copy_rule(
        self,
        language: str,
        from_key: str,
        to_key: str,
        direction: Direction = Direction.PLUG,
        force: bool = False,
    ) -> Rule:
        """Copy `from_key`'s rule into `to_key`'s slot by value.

        With `force` the copy takes priority over whatever `to_key` held;
        without it an occupied slot is a conflict.

        Raises:
            UndefinedRule: If `from_key` has no rule
            RuleConflict: If `to_key` is occupied and `force` is False
        """
        self._check_mutable(language)
        source = self._rules[direction].get((language, from_key))
        if source is None:
            raise UndefinedRule(
                f"Cannot copy {direction.value} rule '{from_key}' to '{to_key}' "
                f"in {language}: '{from_key}' is not defined"
            )
        # Rules and their bodies are immutable, so sharing the body is a copy.
        copied = replace(source, key=to_key, copied_from=from_key)
        self._install(direction, language, to_key, copied, force)
        logger.debug(f"[{language}] {from_key} copied to {to_key} (priority: {force})")
        return self._rules[direction][(language, to_key)]

    def override(
        self,
        language: str,
        from_key: str,
        to_key: str,
        direction: Direction = Direction.PLUG,
    ) -> Rule:
        """`impl from_key to! to_key`: copy and take priority."""
        return self.copy_rule(language, from_key, to_key, direction, force=True)

    def resolve(
        self, language: str, key: str, direction: Direction = Direction.PLUG
    ) -> Rule | None:
        """Return the single effective rule, or None."""
        return self._rules[direction].get((language, key))

    def keys(self, language: str, direction: Direction = Direction.PLUG) -> list[str]:
        return [key for lang, key in self._rules[direction] if lang == language]

    def rules(self, language: str | None = None) -> list[Rule]:
        return [
            rule
            for table in self._rules.values()
            for (lang, _), rule in table.items()
            if language is None or lang == language
        ]
