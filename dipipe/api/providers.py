from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncGenerator,
    Callable,
    Coroutine,
    Generator,
    Hashable,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from dipipe.api.scopes import Scope

T = TypeVar("T")

Token = Hashable

CallableProvider = Callable[..., T]
CoroutineProvider = Callable[..., Coroutine[Any, Any, T]]
GeneratorProvider = Callable[..., Generator[T, None, None]]
AsyncGeneratorProvider = Callable[..., AsyncGenerator[T, None]]

FactoryCallable = Union[
    AsyncGeneratorProvider[Any],
    CoroutineProvider[Any],
    GeneratorProvider[Any],
    CallableProvider[Any],
]


@dataclass(frozen=True, eq=False)
class ClassProvider:
    """Build `token` by calling `cls` with its dependencies.

    If `dependencies` is None they are read from the annotations of `cls.__init__`.
    """

    token: Token
    cls: Callable[..., Any]
    dependencies: Optional[Sequence[Token]] = None
    scope: Scope = Scope.SINGLETON
    override: bool = False


@dataclass(frozen=True, eq=False)
class ValueProvider:
    token: Token
    value: Any
    override: bool = False

    @property
    def scope(self) -> Scope:
        return Scope.SINGLETON


@dataclass(frozen=True, eq=False)
class FactoryProvider:
    """Build `token` by calling `factory` with its dependencies.

    The factory can be a plain function, a coroutine function,
    or a (async) generator function in which case the code after `yield`
    is run when the scope that owns the value is torn down.
    """

    token: Token
    factory: FactoryCallable
    dependencies: Sequence[Token] = field(default=())
    scope: Scope = Scope.SINGLETON
    override: bool = False


@dataclass(frozen=True, eq=False)
class AliasProvider:
    token: Token
    alias_of: Token
    override: bool = False


ProviderDefinition = Union[ClassProvider, ValueProvider, FactoryProvider, AliasProvider]

PROVIDER_TYPES: Tuple[type, ...] = (
    ClassProvider,
    ValueProvider,
    FactoryProvider,
    AliasProvider,
)


def token_repr(token: Token) -> str:
    if isinstance(token, type):
        return token.__qualname__
    return repr(token)
