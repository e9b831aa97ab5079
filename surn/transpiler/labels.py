"""Label registry: surface tokens to semantic roles, per target language."""

from loguru import logger

from surn.errors import ConfigurationError, DuplicateLabelBinding


class LabelRegistry:
    """Maps surface tokens (e.g. `let`, `const`) to labels (e.g. `AssignMut`).

    Several tokens may share a label. Within one language a token belongs to
    exactly one label.
    """

    def __init__(self) -> None:
        self._bindings: dict[str, dict[str, str]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Make the registry read-only for the lifetime of its language."""
        self._frozen = True

    def define(self, label: str, tokens: str | list[str] | tuple[str, ...], target_language: str) -> None:
        """Bind one or more tokens to `label` for `target_language`.

        Raises:
            DuplicateLabelBinding: If a token is already bound to another label
            ConfigurationError: If the registry is frozen
        """
        if self._frozen:
            raise ConfigurationError(
                f"Label registry for {target_language} is frozen; "
                "rebuild the language to change labels"
            )
        if isinstance(tokens, str):
            tokens = [tokens]
        bindings = self._bindings.setdefault(target_language, {})
        for token in tokens:
            existing = bindings.get(token)
            if existing is not None and existing != label:
                raise DuplicateLabelBinding(token, existing, label, target_language)
        for token in tokens:
            bindings[token] = label
            logger.debug(f"[{target_language}] label {label} <- '{token}'")

    def resolve(self, token: str | None, target_language: str) -> str | None:
        """Return the label bound to `token`, or None when there is none."""
        if token is None:
            return None
        return self._bindings.get(target_language, {}).get(token)

    def tokens_for(self, label: str, target_language: str) -> list[str]:
        bindings = self._bindings.get(target_language, {})
        return [token for token, bound in bindings.items() if bound == label]

    def labels(self, target_language: str) -> list[str]:
        seen: dict[str, None] = {}
        for label in self._bindings.get(target_language, {}).values():
            seen.setdefault(label, None)
        return list(seen)
