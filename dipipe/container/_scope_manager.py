from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

import anyio

from dipipe._utils.types import UNSET
from dipipe.api.scopes import Scope
from dipipe.container._state import RequestScope
from dipipe.exceptions import UnknownScopeError

InstanceFactory = Callable[[AsyncExitStack], Awaitable[Any]]


class ScopeManager:
    """Decides whether an instance is reused or created.

    Singletons are cached for the lifetime of the manager and torn down by `aclose()`.
    Construction of a singleton happens at most once: concurrent first requests
    for the same key wait on the construction already in flight.
    Request scoped instances are cached on the RequestScope.
    Transient instances are never cached.
    """

    __slots__ = ("_singletons", "_locks", "stack")

    _singletons: Dict[Hashable, Any]
    _locks: Dict[Hashable, anyio.Lock]

    def __init__(self) -> None:
        self._singletons = {}
        self._locks = {}
        self.stack = AsyncExitStack()

    async def get_or_create(
        self,
        key: Hashable,
        scope: Scope,
        request: Optional[RequestScope],
        factory: InstanceFactory,
    ) -> Any:
        if scope is Scope.SINGLETON:
            return await self._get_or_create_singleton(key, factory)
        if scope is Scope.REQUEST:
            if request is None:
                raise UnknownScopeError(
                    f"{key!r} is request scoped but no request scope was entered."
                    " Did you forget to pass `request=`?"
                )
            value = request.cache.get(key, UNSET)
            if value is UNSET:
                value = await factory(request.stack)
                request.cache[key] = value
            return value
        if scope is Scope.TRANSIENT:
            stack = request.stack if request is not None else self.stack
            return await factory(stack)
        raise UnknownScopeError(f"Unknown scope {scope!r}")  # pragma: no cover

    async def _get_or_create_singleton(
        self, key: Hashable, factory: InstanceFactory
    ) -> Any:
        value = self._singletons.get(key, UNSET)
        if value is not UNSET:
            return value
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = anyio.Lock()
        async with lock:
            # someone else may have finished constructing while we waited
            value = self._singletons.get(key, UNSET)
            if value is UNSET:
                value = await factory(self.stack)
                self._singletons[key] = value
        return value

    def is_cached(self, key: Hashable) -> bool:
        return key in self._singletons

    async def aclose(self) -> None:
        stack, self.stack = self.stack, AsyncExitStack()
        self._singletons.clear()
        self._locks.clear()
        await stack.aclose()
