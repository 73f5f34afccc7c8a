import inspect
import logging
from contextlib import AsyncExitStack, asynccontextmanager, contextmanager
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from dipipe._utils.inspect import (
    get_init_parameters,
    get_type,
    is_async_gen_callable,
    is_gen_callable,
)
from dipipe.api.providers import (
    AliasProvider,
    ClassProvider,
    FactoryProvider,
    ProviderDefinition,
    Token,
    ValueProvider,
    token_repr,
)
from dipipe.api.scopes import Scope
from dipipe.container._module import Module, ModuleGraph
from dipipe.container._scope_manager import ScopeManager
from dipipe.container._state import RequestScope
from dipipe.container._utils import get_path_str
from dipipe.exceptions import (
    CircularDependencyError,
    ScopeViolationError,
    TokenNotFoundError,
    WiringError,
)

logger = logging.getLogger(__name__)


def autowire(definition: ClassProvider) -> List[Token]:
    """Dependency tokens of a class, read from the annotations of its __init__.

    Parameters with a default value (and everything after them) are left
    to their defaults.
    """
    tokens: List[Token] = []
    for param in get_init_parameters(definition.cls):
        if param.default is not inspect.Parameter.empty:
            break
        annotation = get_type(param)
        if annotation is None:
            raise WiringError(
                f"The parameter {param.name} to {definition.cls!r} has no type annotation"
                " and no default value. Either annotate it, give it a default"
                " or pass `dependencies=` explicitly.",
                path=[definition.token],
            )
        tokens.append(annotation.value)
    return tokens


class Resolver:
    """Depth-first resolution of provider dependencies.

    Every resolution pass keeps a stack of the providers it is currently building,
    meeting one of them again means the providers form a cycle.
    """

    __slots__ = ("graph", "scopes", "_dependencies")

    _dependencies: Dict[ProviderDefinition, Tuple[Token, ...]]

    def __init__(self, graph: ModuleGraph, scopes: ScopeManager) -> None:
        self.graph = graph
        self.scopes = scopes
        self._dependencies = {}

    def dependencies_of(self, definition: ProviderDefinition) -> Tuple[Token, ...]:
        deps = self._dependencies.get(definition)
        if deps is None:
            if isinstance(definition, ClassProvider):
                if definition.dependencies is None:
                    deps = tuple(autowire(definition))
                else:
                    deps = tuple(definition.dependencies)
            elif isinstance(definition, FactoryProvider):
                deps = tuple(definition.dependencies)
            else:
                deps = ()
            self._dependencies[definition] = deps
        return deps

    def _lookup(
        self, module: Module, token: Token, path: Sequence[Token]
    ) -> Tuple[Module, ProviderDefinition]:
        binding = self.graph.lookup(module, token)
        if binding is None:
            full_path = [*path, token]
            raise TokenNotFoundError(
                f"{token_repr(token)} is not provided by {module!r} or exported by any of its imports"
                f"\nPath: {get_path_str(full_path)}",
                path=full_path,
            )
        return binding

    def _check_cycle(
        self,
        definition: ProviderDefinition,
        in_progress: List[ProviderDefinition],
        path: List[Token],
    ) -> None:
        if definition in in_progress:
            start = in_progress.index(definition)
            cycle = [*path[start:], definition.token]
            raise CircularDependencyError(
                f"Providers are in a cycle: {get_path_str(cycle)}",
                path=cycle,
            )

    async def resolve(
        self, token: Token, module: Module, request: Optional[RequestScope] = None
    ) -> Any:
        return await self._resolve(token, module, request, [], [])

    async def _resolve(
        self,
        token: Token,
        module: Module,
        request: Optional[RequestScope],
        in_progress: List[ProviderDefinition],
        path: List[Token],
    ) -> Any:
        owner, definition = self._lookup(module, token, path)
        self._check_cycle(definition, in_progress, path)
        if isinstance(definition, ValueProvider):
            return definition.value
        in_progress.append(definition)
        path.append(definition.token)
        try:
            if isinstance(definition, AliasProvider):
                return await self._resolve(
                    definition.alias_of, owner, request, in_progress, path
                )

            # transient dependencies of a singleton are torn down with the container
            dep_request = None if definition.scope is Scope.SINGLETON else request

            async def factory(stack: AsyncExitStack) -> Any:
                args = [
                    await self._resolve(dep, owner, dep_request, in_progress, path)
                    for dep in self.dependencies_of(definition)
                ]
                return await self._construct(definition, args, stack)

            return await self.scopes.get_or_create(
                definition, definition.scope, request, factory
            )
        finally:
            in_progress.pop()
            path.pop()

    async def _construct(
        self,
        definition: ProviderDefinition,
        args: List[Any],
        stack: AsyncExitStack,
    ) -> Any:
        logger.debug(
            "Creating %s (%s)", token_repr(definition.token), definition.scope.value  # type: ignore[union-attr]
        )
        if isinstance(definition, ClassProvider):
            return definition.cls(*args)
        assert isinstance(definition, FactoryProvider)
        call = definition.factory
        if is_async_gen_callable(call):
            return await stack.enter_async_context(asynccontextmanager(call)(*args))  # type: ignore[arg-type]
        if is_gen_callable(call):
            return stack.enter_context(contextmanager(call)(*args))  # type: ignore[arg-type]
        value = call(*args)
        if inspect.isawaitable(value):
            value = await value
        return value

    def validate(self) -> None:
        """Walk every provider without instantiating anything.

        Surfaces missing tokens, cycles, wiring errors and scope violations
        at startup instead of on the first request that needs them.
        """
        checked: Set[Tuple[ProviderDefinition, Optional[Scope]]] = set()
        for module in self.graph.modules:
            for definition in module.registry:
                self._validate(definition.token, module, None, [], [], checked)

    def _validate(
        self,
        token: Token,
        module: Module,
        holder: Optional[Scope],
        in_progress: List[ProviderDefinition],
        path: List[Token],
        checked: Set[Tuple[ProviderDefinition, Optional[Scope]]],
    ) -> None:
        owner, definition = self._lookup(module, token, path)
        self._check_cycle(definition, in_progress, path)
        if (definition, holder) in checked:
            return
        if isinstance(definition, ValueProvider):
            checked.add((definition, holder))
            return
        scope: Optional[Scope] = getattr(definition, "scope", None)
        if scope is Scope.REQUEST and holder is Scope.SINGLETON:
            violation = [*path, definition.token]
            raise ScopeViolationError(
                f"{token_repr(definition.token)} is request scoped"
                " and cannot be injected into a singleton, which outlives every request"
                f"\nPath: {get_path_str(violation)}",
                path=violation,
            )
        # transient providers are owned by whoever requested them,
        # so they inherit the lifetime of their holder
        if scope is not None and scope is not Scope.TRANSIENT:
            holder = scope
        in_progress.append(definition)
        path.append(definition.token)
        try:
            if isinstance(definition, AliasProvider):
                self._validate(
                    definition.alias_of, owner, holder, in_progress, path, checked
                )
            else:
                for dep in self.dependencies_of(definition):
                    self._validate(dep, owner, holder, in_progress, path, checked)
        finally:
            in_progress.pop()
            path.pop()
        checked.add((definition, holder))
