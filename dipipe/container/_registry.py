import logging
from typing import Dict, Iterable, Iterator, List, Optional

from dipipe.api.providers import (
    PROVIDER_TYPES,
    ProviderDefinition,
    Token,
    token_repr,
)
from dipipe.exceptions import DuplicateTokenError, RegistryFrozenError

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Provider definitions of a single module, keyed by token"""

    __slots__ = ("_providers", "_frozen", "_owner")

    _providers: Dict[Token, ProviderDefinition]

    def __init__(
        self, definitions: Iterable[ProviderDefinition] = (), *, owner: str = ""
    ) -> None:
        self._providers = {}
        self._frozen = False
        self._owner = owner
        for definition in definitions:
            self.register(definition)

    def register(self, definition: ProviderDefinition) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register {token_repr(definition.token)} in {self._owner or 'registry'}:"
                " providers are immutable once the container has been built"
            )
        if not isinstance(definition, PROVIDER_TYPES):
            raise TypeError(f"{definition!r} is not a provider definition")
        token = definition.token
        if token in self._providers and not definition.override:
            raise DuplicateTokenError(
                f"{token_repr(token)} is already registered in {self._owner or 'registry'}."
                " Pass override=True to replace it.",
                token=token,
            )
        self._providers[token] = definition
        logger.debug(
            "Registered %s as %s in %s",
            token_repr(token),
            type(definition).__name__,
            self._owner or "registry",
        )

    def lookup(self, token: Token) -> Optional[ProviderDefinition]:
        return self._providers.get(token)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def tokens(self) -> List[Token]:
        return list(self._providers)

    def __contains__(self, token: object) -> bool:
        return token in self._providers

    def __iter__(self) -> Iterator[ProviderDefinition]:
        return iter(list(self._providers.values()))

    def __len__(self) -> int:
        return len(self._providers)
