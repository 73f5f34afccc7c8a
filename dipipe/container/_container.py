import logging
from types import TracebackType
from typing import (
    Any,
    Iterable,
    List,
    MutableMapping,
    Optional,
    Type,
    Union,
)

from dipipe.api.providers import (
    AliasProvider,
    ProviderDefinition,
    Token,
    ValueProvider,
)
from dipipe.api.scopes import Scope
from dipipe.container._module import Module, ModuleGraph
from dipipe.container._resolver import Resolver
from dipipe.container._scope_manager import ScopeManager
from dipipe.container._state import RequestScope
from dipipe.exceptions import RegistryFrozenError

logger = logging.getLogger(__name__)


class Container:
    """Resolves providers of a module graph.

    Register providers (on the root module or on any module of the graph),
    then either resolve lazily or use the container as an async context
    manager to build the graph, construct singletons eagerly and
    tear them down on exit.
    Once built, the module graph and every registry in it are immutable.
    """

    __slots__ = ("_root", "_eager", "_graph", "_scopes", "_resolver", "_targets")

    _graph: Optional[ModuleGraph]
    _resolver: Optional[Resolver]

    def __init__(self, root: Optional[Module] = None, *, eager: bool = True) -> None:
        self._root = root if root is not None else Module("root")
        self._eager = eager
        self._graph = None
        self._resolver = None
        self._scopes = ScopeManager()
        self._targets: List[Module] = []

    @property
    def root(self) -> Module:
        return self._root

    def register(
        self,
        definitions: Union[ProviderDefinition, Iterable[ProviderDefinition]],
        *,
        module: Optional[Module] = None,
    ) -> None:
        """Register provider definitions, on the root module unless `module` is given.

        `module` must be imported (directly or not) by the root module by the time
        the container is built, otherwise `build()` raises ValueError.
        """
        if self._graph is not None:
            raise RegistryFrozenError(
                "Providers cannot be registered after the container has been built"
            )
        if isinstance(definitions, Iterable):
            definitions = list(definitions)
        else:
            definitions = [definitions]
        target = module if module is not None else self._root
        if target not in self._targets:
            self._targets.append(target)
        for definition in definitions:
            target.register(definition)

    def build(self) -> ModuleGraph:
        """Build and validate the module graph.

        This raises any configuration error (cycles, missing tokens, scope violations).
        Calling it more than once is a no-op.
        """
        if self._graph is None:
            graph = ModuleGraph(self._root)
            for target in self._targets:
                if target not in graph.modules:
                    raise ValueError(
                        f"Providers were registered on {target!r},"
                        f" which is not imported by {self._root!r} or any module it imports"
                    )
            resolver = Resolver(graph, self._scopes)
            resolver.validate()
            self._graph, self._resolver = graph, resolver
            logger.debug(
                "Built container for %r with %d modules", self._root, len(graph.modules)
            )
        return self._graph

    @property
    def graph(self) -> ModuleGraph:
        return self.build()

    def can_resolve(self, token: Token, module: Optional[Module] = None) -> bool:
        return self.graph.can_resolve(
            module if module is not None else self._root, token
        )

    async def resolve(
        self,
        token: Token,
        module: Optional[Module] = None,
        request: Optional[RequestScope] = None,
    ) -> Any:
        """Resolve `token` as seen from `module` (the root module by default).

        `request` is required to resolve request scoped providers.
        """
        self.build()
        assert self._resolver is not None
        return await self._resolver.resolve(
            token, module if module is not None else self._root, request
        )

    def enter_request(
        self, extras: Optional[MutableMapping[Any, Any]] = None
    ) -> RequestScope:
        """Open a request scope, torn down (with its instances) when the `async with` block ends"""
        return RequestScope(extras)

    async def startup(self) -> None:
        graph = self.build()
        if not self._eager:
            return
        for module in graph.modules:
            for definition in module.registry:
                if isinstance(definition, (AliasProvider, ValueProvider)):
                    continue
                if definition.scope is Scope.SINGLETON:
                    await self.resolve(definition.token, module)

    async def aclose(self) -> None:
        await self._scopes.aclose()

    async def __aenter__(self) -> "Container":
        try:
            await self.startup()
        except BaseException:
            # tear down whatever singletons were constructed before the failure
            await self.aclose()
            raise
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        await self.aclose()
